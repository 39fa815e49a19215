"""
Unit tests for vcloud_launcher.controlplane.vcloud.

The HTTP layer is replaced with canned responses, so these tests check how
vCD documents are read and written without needing a vCloud Director.
"""

import unittest
import xml.etree.ElementTree as ET
from unittest import mock

import requests

from .. import dto
from ..controlplane import vcloud
from ..controlplane.exceptions import *
from ..controlplane.vcloud import VCloudSession, _NS


ENDPOINT = 'https://vcloud.example.com/api'
VM_HREF = ENDPOINT + '/vApp/vm-1'
TASK_HREF = ENDPOINT + '/task/1'


def error_xml(status_code, error_code, message):
    return (
        '<Error xmlns="http://www.vmware.com/vcloud/v1.5" '
        'majorErrorCode="{}" minorErrorCode="{}" message="{}" />'
    ).format(status_code, error_code, message)


def task_xml(status = 'running', owner = VM_HREF, error = None):
    return """\
<Task xmlns="http://www.vmware.com/vcloud/v1.5" href="{href}" operationName="vappUpdateVm" status="{status}">
    <Owner href="{owner}" type="application/vnd.vmware.vcloud.vm+xml" />
    {error}
</Task>
""".format(
        href = TASK_HREF, status = status, owner = owner,
        error = error_xml(500, 'INTERNAL_SERVER_ERROR', error) if error else ''
    )


VM_XML = """\
<Vm xmlns="http://www.vmware.com/vcloud/v1.5"
    xmlns:ovf="http://schemas.dmtf.org/ovf/envelope/1"
    xmlns:rasd="http://schemas.dmtf.org/wbem/wscim/1/cim-schema/2/CIM_ResourceAllocationSettingData"
    xmlns:vcloud="http://www.vmware.com/vcloud/v1.5"
    href="{href}" name="web" status="4">
    <ovf:VirtualHardwareSection>
        <ovf:Item>
            <rasd:ElementName>2 virtual CPU(s)</rasd:ElementName>
            <rasd:InstanceID>4</rasd:InstanceID>
            <rasd:ResourceType>3</rasd:ResourceType>
            <rasd:VirtualQuantity>2</rasd:VirtualQuantity>
        </ovf:Item>
        <ovf:Item>
            <rasd:ElementName>4096 MB of memory</rasd:ElementName>
            <rasd:InstanceID>5</rasd:InstanceID>
            <rasd:ResourceType>4</rasd:ResourceType>
            <rasd:VirtualQuantity>4096</rasd:VirtualQuantity>
        </ovf:Item>
        <ovf:Item>
            <rasd:ElementName>Hard disk 2</rasd:ElementName>
            <rasd:HostResource vcloud:capacity="1024" />
            <rasd:InstanceID>2001</rasd:InstanceID>
            <rasd:ResourceType>17</rasd:ResourceType>
        </ovf:Item>
        <ovf:Item>
            <rasd:ElementName>Hard disk 1</rasd:ElementName>
            <rasd:HostResource vcloud:capacity="10240" />
            <rasd:InstanceID>2000</rasd:InstanceID>
            <rasd:ResourceType>17</rasd:ResourceType>
        </ovf:Item>
    </ovf:VirtualHardwareSection>
    <NetworkConnectionSection>
        <PrimaryNetworkConnectionIndex>1</PrimaryNetworkConnectionIndex>
        <NetworkConnection network="frontend">
            <NetworkConnectionIndex>0</NetworkConnectionIndex>
            <IpAddress>192.168.2.10</IpAddress>
            <IsConnected>true</IsConnected>
            <MACAddress>00:50:56:01:01:01</MACAddress>
            <IpAddressAllocationMode>MANUAL</IpAddressAllocationMode>
        </NetworkConnection>
        <NetworkConnection network="backend">
            <NetworkConnectionIndex>1</NetworkConnectionIndex>
            <IsConnected>false</IsConnected>
            <IpAddressAllocationMode>DHCP</IpAddressAllocationMode>
        </NetworkConnection>
    </NetworkConnectionSection>
    <GuestCustomizationSection>
        <Enabled>true</Enabled>
        <CustomizationScript>echo hello</CustomizationScript>
        <ComputerName>web01</ComputerName>
    </GuestCustomizationSection>
    <StorageProfile href="{endpoint}/vdcStorageProfile/2" name="Fast" />
</Vm>
""".format(href = VM_HREF, endpoint = ENDPOINT)


DISKS_XML = """\
<RasdItemsList xmlns="http://www.vmware.com/vcloud/v1.5"
               xmlns:rasd="http://schemas.dmtf.org/wbem/wscim/1/cim-schema/2/CIM_ResourceAllocationSettingData"
               xmlns:ovf="http://schemas.dmtf.org/ovf/envelope/1"
               xmlns:vcloud="http://www.vmware.com/vcloud/v1.5">
    <ovf:Item>
        <rasd:Address>0</rasd:Address>
        <rasd:ElementName>SCSI Controller 0</rasd:ElementName>
        <rasd:InstanceID>2</rasd:InstanceID>
        <rasd:ResourceType>6</rasd:ResourceType>
    </ovf:Item>
    <ovf:Item>
        <rasd:AddressOnParent>0</rasd:AddressOnParent>
        <rasd:ElementName>Hard disk 1</rasd:ElementName>
        <rasd:HostResource vcloud:capacity="10240" vcloud:busType="6" />
        <rasd:InstanceID>2000</rasd:InstanceID>
        <rasd:Parent>2</rasd:Parent>
        <rasd:ResourceType>17</rasd:ResourceType>
    </ovf:Item>
</RasdItemsList>
"""


METADATA_XML = """\
<Metadata xmlns="http://www.vmware.com/vcloud/v1.5"
          xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance">
    <MetadataEntry>
        <Key>is_true</Key>
        <TypedValue xsi:type="MetadataBooleanValue"><Value>true</Value></TypedValue>
    </MetadataEntry>
    <MetadataEntry>
        <Key>is_integer</Key>
        <TypedValue xsi:type="MetadataNumberValue"><Value>-999.0</Value></TypedValue>
    </MetadataEntry>
    <MetadataEntry>
        <Key>is_string</Key>
        <TypedValue xsi:type="MetadataStringValue"><Value>Hello World</Value></TypedValue>
    </MetadataEntry>
    <MetadataEntry>
        <Key>is_date</Key>
        <TypedValue xsi:type="MetadataDateTimeValue"><Value>2013-10-23T12:00:00.000Z</Value></TypedValue>
    </MetadataEntry>
</Metadata>
"""


GUEST_CUSTOMIZATION_XML = """\
<GuestCustomizationSection xmlns="http://www.vmware.com/vcloud/v1.5"
                           xmlns:ovf="http://schemas.dmtf.org/ovf/envelope/1">
    <ovf:Info>Specifies Guest OS Customization Settings</ovf:Info>
    <Enabled>false</Enabled>
    <AdminPasswordEnabled>true</AdminPasswordEnabled>
    <AdminPassword>secret</AdminPassword>
    <ComputerName>template</ComputerName>
</GuestCustomizationSection>
"""


class FakeHttp:
    """
    Stands in for a ``requests.Session``, returning canned responses.
    """
    def __init__(self):
        self.headers = {}
        self.responses = {}
        self.requests = []

    def respond(self, method, url, text = '', status_code = 200, headers = None):
        if isinstance(text, Exception):
            self.responses[(method, url)] = text
        else:
            self.responses[(method, url)] = mock.Mock(
                status_code = status_code, text = text, headers = headers or {}
            )

    def request(self, method, url, data = None, **kwargs):
        self.requests.append((method, url, data, kwargs))
        response = self.responses.get((method, url))
        if response is None:
            return mock.Mock(
                status_code = 404,
                text = error_xml(404, 'RESOURCE_NOT_FOUND', 'No such resource'),
                headers = {}
            )
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, *args, **kwargs):
        return self.request('GET', url, *args, **kwargs)

    def post(self, url, *args, **kwargs):
        return self.request('POST', url, *args, **kwargs)

    def put(self, url, *args, **kwargs):
        return self.request('PUT', url, *args, **kwargs)

    def delete(self, url, *args, **kwargs):
        return self.request('DELETE', url, *args, **kwargs)

    def close(self):
        pass

    def last(self, method):
        return next(r for r in reversed(self.requests) if r[0] == method)


class TestVCloudSession(unittest.TestCase):

    def setUp(self):
        self.http = FakeHttp()
        self.http.respond(
            'POST', ENDPOINT + '/sessions', headers = { 'x-vcloud-authorization' : 'token' }
        )
        patcher = mock.patch.object(vcloud.requests, 'Session', return_value = self.http)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.session = VCloudSession(ENDPOINT + '/', 'admin@example', 'password')
        self.vm = self.session._parse_vm(ET.fromstring(VM_XML))

    def test_login(self):
        method, url, _, kwargs = self.http.requests[0]
        self.assertEqual((method, url), ('POST', ENDPOINT + '/sessions'))
        self.assertEqual(kwargs['auth'], ('admin@example', 'password'))
        self.assertEqual(self.http.headers['x-vcloud-authorization'], 'token')
        self.assertEqual(self.http.headers['Accept'], 'application/*+xml;version=5.5')

    def test_error_mapping(self):
        cases = [
            (401, 'UNAUTHORIZED', 'Bad credentials', AuthenticationError),
            (403, 'ACCESS_TO_RESOURCE_IS_FORBIDDEN', 'Forbidden', PermissionsError),
            (404, 'RESOURCE_NOT_FOUND', 'Not found', NoSuchResourceError),
            (400, 'DUPLICATE_NAME', 'Duplicate name', DuplicateNameError),
            (400, 'BAD_REQUEST', 'Validation error on field name', BadRequestError),
            (400, 'BAD_REQUEST', 'The VM is busy', InvalidActionError),
            (400, 'OPERATION_LIMITS_EXCEEDED', 'Too many operations', ImplementationError),
            (500, 'INTERNAL_SERVER_ERROR', 'Oops', ProviderUnavailableError),
            (503, 'SERVICE_UNAVAILABLE', 'Down', ProviderConnectionError),
        ]
        for status_code, error_code, message, exc_class in cases:
            with self.subTest(error_code = error_code, message = message):
                self.http.respond(
                    'GET', VM_HREF, error_xml(status_code, error_code, message), status_code
                )
                with self.assertRaises(exc_class):
                    self.session.get_vm(VM_HREF)

    def test_error_without_body(self):
        self.http.respond('GET', VM_HREF, 'Not XML', 400)
        with self.assertRaises(ImplementationError):
            self.session.get_vm(VM_HREF)

    def test_vcd_error_is_chained(self):
        self.http.respond('GET', VM_HREF, error_xml(404, 'RESOURCE_NOT_FOUND', 'Not found'), 404)
        with self.assertRaises(NoSuchResourceError) as ctx:
            self.session.get_vm(VM_HREF)
        cause = ctx.exception.__cause__
        self.assertIsInstance(cause, vcloud.VCloudError)
        self.assertEqual(cause.__error_code__, 'RESOURCE_NOT_FOUND')

    def test_connection_error(self):
        self.http.respond('GET', VM_HREF, requests.exceptions.ConnectionError())
        with self.assertRaises(ProviderConnectionError):
            self.session.get_vm(VM_HREF)

    def test_get_vm(self):
        self.http.respond('GET', VM_HREF, VM_XML)
        vm = self.session.get_vm(VM_HREF)
        self.assertEqual(vm.name, 'web')
        self.assertIs(vm.status, dto.ResourceStatus.POWERED_ON)
        self.assertEqual((vm.cpu, vm.memory), (2, 4096))
        # Disks are ordered by instance id
        self.assertEqual(
            vm.disks,
            (dto.Disk('Hard disk 1', 10240, 2000), dto.Disk('Hard disk 2', 1024, 2001))
        )
        self.assertEqual(vm.primary_network_index, '1')
        frontend, backend = vm.network_connections
        self.assertEqual(frontend.ip_address, '192.168.2.10')
        self.assertEqual(frontend.mac_address, '00:50:56:01:01:01')
        self.assertTrue(frontend.is_connected)
        self.assertEqual(backend.allocation_mode, 'DHCP')
        self.assertIsNone(backend.ip_address)
        self.assertFalse(backend.is_connected)
        self.assertEqual(vm.primary_connection, backend)
        self.assertEqual(vm.customization, dto.GuestCustomization(True, 'echo hello', 'web01'))
        self.assertEqual(vm.storage_profile, 'Fast')

    def test_get_metadata(self):
        self.http.respond('GET', VM_HREF + '/metadata', METADATA_XML)
        metadata = self.session.get_metadata(VM_HREF)
        self.assertEqual(metadata['is_true'], dto.MetadataValue(dto.MetadataType.BOOLEAN, True))
        self.assertEqual(metadata['is_integer'], dto.MetadataValue(dto.MetadataType.NUMBER, -999))
        self.assertEqual(metadata['is_string'].value, 'Hello World')
        self.assertIs(metadata['is_date'].type, dto.MetadataType.DATETIME)
        self.assertEqual(metadata['is_date'].value.year, 2013)

    def test_get_metadata_missing(self):
        self.assertEqual(self.session.get_metadata(VM_HREF), {})

    def test_get_task(self):
        self.http.respond('GET', TASK_HREF, task_xml('error', error = 'Not enough storage'))
        task = self.session.get_task(dto.Task(TASK_HREF, 'vappUpdateVm', dto.TaskStatus.RUNNING))
        self.assertIs(task.status, dto.TaskStatus.ERROR)
        self.assertEqual(task.owner, VM_HREF)
        self.assertIn('Not enough storage', task.error)

    def test_unreadable_documents(self):
        task = dto.Task(TASK_HREF, 'vappUpdateVm', dto.TaskStatus.RUNNING)
        # A successful response whose body is not XML
        self.http.respond('GET', TASK_HREF, 'Service starting...')
        with self.assertRaises(BadConfigurationError) as ctx:
            self.session.get_task(task)
        self.assertIsInstance(ctx.exception.__cause__, ET.ParseError)
        # A task with no status
        self.http.respond('GET', TASK_HREF, task_xml().replace(' status="running"', ''))
        with self.assertRaises(BadConfigurationError) as ctx:
            self.session.get_task(task)
        self.assertIsInstance(ctx.exception.__cause__, KeyError)
        # A task with a status that vCD does not define
        self.http.respond('GET', TASK_HREF, task_xml('sleeping'))
        with self.assertRaises(BadConfigurationError):
            self.session.get_task(task)

    def test_update_disks(self):
        disks_href = VM_HREF + '/virtualHardwareSection/disks'
        self.http.respond('GET', disks_href, DISKS_XML)
        self.http.respond('PUT', disks_href, task_xml())
        task = self.session.update_disks(
            self.vm, [dto.DiskSpec('Hard disk 2', 1024, 0), dto.DiskSpec('Hard disk 3', 2048, 1)]
        )
        self.assertEqual(task.href, TASK_HREF)
        self.assertIs(task.status, dto.TaskStatus.RUNNING)
        _, _, data, kwargs = self.http.last('PUT')
        self.assertEqual(
            kwargs['headers']['Content-Type'],
            'application/vnd.vmware.vcloud.rasdItemsList+xml'
        )
        items = ET.fromstring(data).findall('ovf:Item', _NS)
        self.assertEqual(len(items), 4)
        new_disks = items[2:]
        self.assertEqual(
            [item.find('rasd:ElementName', _NS).text for item in new_disks],
            ['Hard disk 2', 'Hard disk 3']
        )
        self.assertEqual(
            [item.find('rasd:InstanceID', _NS).text for item in new_disks],
            ['2001', '2002']
        )
        self.assertEqual(
            [item.find('rasd:HostResource', _NS).attrib[vcloud._tag('vcd', 'capacity')] for item in new_disks],
            ['1024', '2048']
        )
        # vCD chooses the position on the controller
        for item in new_disks:
            self.assertIsNone(item.find('rasd:AddressOnParent', _NS))
            self.assertEqual(item.find('rasd:Parent', _NS).text, '2')

    def test_update_hardware_item(self):
        item_href = VM_HREF + '/virtualHardwareSection/memory'
        self.http.respond('GET', item_href, """\
<Item xmlns="http://schemas.dmtf.org/ovf/envelope/1"
      xmlns:rasd="http://schemas.dmtf.org/wbem/wscim/1/cim-schema/2/CIM_ResourceAllocationSettingData">
    <rasd:ResourceType>4</rasd:ResourceType>
    <rasd:VirtualQuantity>1024</rasd:VirtualQuantity>
</Item>
""")
        self.http.respond('PUT', item_href, task_xml())
        self.session.update_hardware_item(self.vm, 'memory', 8192)
        _, _, data, _ = self.http.last('PUT')
        self.assertEqual(ET.fromstring(data).find('rasd:VirtualQuantity', _NS).text, '8192')
        with self.assertRaises(ImplementationError):
            self.session.update_hardware_item(self.vm, 'gpu', 1)

    def test_update_network_section(self):
        section_href = VM_HREF + '/networkConnectionSection/'
        self.http.respond('PUT', section_href, task_xml())
        self.session.update_network_section(
            self.vm,
            [
                dto.NetworkConnection('frontend', '0', 'MANUAL', '192.168.2.10'),
                dto.NetworkConnection('backend', '1', 'POOL'),
            ],
            '0'
        )
        _, _, data, _ = self.http.last('PUT')
        section = ET.fromstring(data)
        self.assertEqual(section.find('vcd:PrimaryNetworkConnectionIndex', _NS).text, '0')
        connections = section.findall('vcd:NetworkConnection', _NS)
        self.assertEqual([c.attrib['network'] for c in connections], ['frontend', 'backend'])
        self.assertEqual(connections[0].find('vcd:IpAddress', _NS).text, '192.168.2.10')
        self.assertIsNone(connections[1].find('vcd:IpAddress', _NS))
        self.assertEqual(connections[1].find('vcd:IpAddressAllocationMode', _NS).text, 'POOL')

    def test_add_metadata(self):
        url = VM_HREF + '/metadata/my%20key'
        self.http.respond('PUT', url, task_xml())
        self.session.add_metadata(VM_HREF, 'my key', dto.MetadataValue.from_python('a < b'))
        _, _, data, kwargs = self.http.last('PUT')
        self.assertEqual(
            kwargs['headers']['Content-Type'],
            'application/vnd.vmware.vcloud.metadata.value+xml'
        )
        typed_value = ET.fromstring(data).find('vcd:TypedValue', _NS)
        self.assertEqual(
            typed_value.attrib['{{{}}}type'.format(_NS['xsi'])], 'MetadataStringValue'
        )
        self.assertEqual(typed_value.find('vcd:Value', _NS).text, 'a < b')

    def test_set_guest_customization(self):
        section_href = VM_HREF + '/guestCustomizationSection/'
        self.http.respond('GET', section_href, GUEST_CUSTOMIZATION_XML)
        self.http.respond('PUT', section_href, task_xml())
        self.session.set_guest_customization(self.vm, '#!/bin/sh\necho "a & b"', 'web01')
        _, _, data, _ = self.http.last('PUT')
        section = ET.fromstring(data)
        self.assertEqual(section.find('vcd:Enabled', _NS).text, 'true')
        self.assertEqual(section.find('vcd:ComputerName', _NS).text, 'web01')
        self.assertEqual(
            section.find('vcd:CustomizationScript', _NS).text, '#!/bin/sh\necho "a & b"'
        )
        self.assertIsNone(section.find('vcd:AdminPassword', _NS))
        # The script must come immediately before the computer name
        tags = [child.tag for child in section]
        self.assertEqual(
            tags.index(vcloud._tag('vcd', 'CustomizationScript')) + 1,
            tags.index(vcloud._tag('vcd', 'ComputerName'))
        )

    def test_set_power_state(self):
        self.http.respond('POST', VM_HREF + '/power/action/powerOn', task_xml())
        self.http.respond('POST', VM_HREF + '/action/undeploy', task_xml())
        self.assertEqual(self.session.set_power_state(VM_HREF, True).href, TASK_HREF)
        self.session.set_power_state(VM_HREF, False)
        _, _, data, _ = self.http.last('POST')
        self.assertEqual(
            ET.fromstring(data).find('vcd:UndeployPowerAction', _NS).text, 'powerOff'
        )

    def test_close(self):
        self.http.respond('DELETE', ENDPOINT + '/session', error_xml(500, 'ERROR', 'Oops'), 500)
        # Errors are logged rather than raised
        with self.assertLogs(vcloud.__name__, 'WARNING'):
            self.session.close()
        with self.assertRaises(InvalidActionError):
            self.session.get_vm(VM_HREF)
        # Closing again is fine
        self.session.close()


if __name__ == "__main__":
    unittest.main()
