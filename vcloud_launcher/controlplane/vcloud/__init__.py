"""
This module defines an implementation of the control plane interface for the
`VMWare vCloud Director 5.5 <http://pubs.vmware.com/vcd-55/index.jsp>`_ API.
"""

import copy
import functools
import logging
import os
import re
import xml.etree.ElementTree as ET
from urllib.parse import quote

import requests
from jinja2 import Environment, FileSystemLoader

from ... import dto
from .. import Session
from ..exceptions import *


# Prefixes for vCD namespaces
_NS = {
    'vcd'  : 'http://www.vmware.com/vcloud/v1.5',
    'xsi'  : 'http://www.w3.org/2001/XMLSchema-instance',
    'ovf'  : 'http://schemas.dmtf.org/ovf/envelope/1',
    'rasd' : 'http://schemas.dmtf.org/wbem/wscim/1/cim-schema/2/CIM_ResourceAllocationSettingData',
    'vmw'  : 'http://www.vmware.com/schema/ovf',
}
for _prefix, _uri in _NS.items():
    ET.register_namespace('' if _prefix == 'vcd' else _prefix, _uri)

# Required headers for all requests
_REQUIRED_HEADERS = { 'Accept':'application/*+xml;version=5.5' }

# Media types for the documents we send
_MEDIA_TYPE = 'application/vnd.vmware.vcloud.{}+xml'

# OVF resource types for virtual hardware items
_RESOURCE_TYPES = { 'cpu' : '3', 'memory' : '4', 'disk' : '17' }

# Jinja2 environment for loading XML templates from the same directory as this
# script is in
_ENV = Environment(
    loader = FileSystemLoader(os.path.dirname(os.path.realpath(__file__))),
    autoescape = True
)

# Logger
_log = logging.getLogger(__name__)


def _tag(prefix, name):
    return '{{{}}}{}'.format(_NS[prefix], name)


def _text(element, path, default = None):
    """
    Returns the text of the element at the given path, or the default.
    """
    found = element.find(path, _NS)
    if found is None or found.text is None:
        return default
    return found.text


def _int(value, default = None):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def convert_parse_errors(f):
    """
    Decorator that converts failures to understand a vCD document into
    :py:class:`~vcloud_launcher.controlplane.exceptions.BadConfigurationError`.
    """
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except ET.ParseError as exc:
            raise BadConfigurationError('vCloud Director returned invalid XML') from exc
        except (KeyError, ValueError, AttributeError) as exc:
            raise BadConfigurationError(
                'Unexpected document from vCloud Director: {!r}'.format(exc)
            ) from exc
    return wrapper


###############################################################################
###############################################################################


class VCloudError(ProviderSpecificError):
    """
    Provider specific error class for the vCloud Director control plane.

    .. py:attribute:: __endpoint__

        The API endpoint that raised the error.

    .. py:attribute:: __user__

        The user when the error was raised.

    .. py:attribute:: __status_code__

        The majorErrorCode from the vCD error - always matches the HTTP status
        code of the response.

    .. py:attribute:: __error_code__

        The minorErrorCode from the vCD error.
    """
    def __init__(self, endpoint, user, status_code, error_code, error_message):
        self.__endpoint__    = endpoint
        self.__user__        = user
        self.__status_code__ = status_code
        self.__error_code__  = error_code
        super().__init__(error_message)

    def __str__(self):
        return "[{}] [{}] [{}] [{}] {}".format(
            self.__endpoint__, self.__user__,
            self.__status_code__, self.__error_code__, super().__str__()
        )

    @classmethod
    def from_xml(cls, endpoint, user, error):
        """
        Creates and returns a new :py:class:`VCloudError` from the given XML. The
        XML can be given either as a string or as an ``ElementTree.Element``.

        Raises ``ValueError`` if the given XML string is not a valid vCD error.

        :param endpoint: The endpoint that produced the XML
        :param user: The user whose session produced the XML
        :param error: The XML or ElementTree Element containing a vCD error
        :returns: A :py:class:`VCloudError`
        """
        try:
            if not isinstance(error, ET.Element):
                error = ET.fromstring(error)
            return cls(
                endpoint, user,
                int(error.attrib['majorErrorCode']),
                error.attrib['minorErrorCode'].upper(),
                error.attrib['message']
            )
        except (ValueError, KeyError, AttributeError, ET.ParseError):
            raise ValueError('Given XML is not a valid vCD Error')


###############################################################################
###############################################################################


class VCloudSession(Session):
    """
    Session implementation for the vCloud Director 5.5 API.

    :param endpoint: The API endpoint, e.g. ``https://vcloud.example.com/api``
    :param user: The user to authenticate as, in the form ``user@org``
    :param password: The password for the user
    :param verify_ssl: Indicates whether to verify SSL certificates
    """
    def __init__(self, endpoint, user, password, verify_ssl = True):
        self.__endpoint = endpoint.rstrip('/')
        self.__user = user
        self.__org = user.split('@').pop() if '@' in user else None
        self.__verify_ssl = verify_ssl

        # Create a requests session that can inject the required headers
        self.__session = requests.Session()
        self.__session.headers.update(_REQUIRED_HEADERS)

        # Get an auth token for the session and inject it into the headers for
        # future requests
        res = self.api_request('POST', 'sessions', auth = (user, password))
        auth_token = res.headers['x-vcloud-authorization']
        self.__session.headers.update({ 'x-vcloud-authorization' : auth_token })

    def api_request(self, method, path, *args, **kwargs):
        """
        Makes a request to the vCloud Director API, injecting auth headers etc.,
        and returns the response if it has a 20x status code.

        If the status code is not 20x, a relevant exception is thrown.

        :param method: HTTP method to use (case-insensitive)
        :param path: Path to request
                     Can be relative (endpoint is prepended) or fully-qualified
        :param *args: Other positional arguments to be passed to ``requests``
        :param **kwargs: Other keyword arguments to be passed to ``requests``
        :returns: The ``requests.Response``
        """
        # Deduce the path to use
        if not re.match(r'https?://', path):
            path = '/'.join([self.__endpoint, path.strip('/')])
        # Make the request
        if self.__session is None:
            raise InvalidActionError('Session has already been closed')
        func = getattr(self.__session, method.lower(), None)
        if func is None:
            raise ImplementationError('Invalid HTTP method - {}'.format(method))
        # Convert exceptions from requests into connection errors
        # Since we don't configure requests to throw HTTP exceptions (we deal
        # with status codes instead), if we see an exception it is a problem
        _log.info('[%s] [%s] %s request to %s',
                  self.__endpoint, self.__user, method.upper(), path)
        try:
            res = func(path, *args, verify = self.__verify_ssl, **kwargs)
        except requests.exceptions.RequestException:
            raise ProviderConnectionError('Cannot connect to vCloud Director API')
        # If the response status is an error (i.e. 4xx or 5xx), try to raise an
        # appropriate error, otherwise return the response
        if res.status_code == 503:
            # A 503 error probably means we couldn't even contact vCD
            raise ProviderConnectionError('Cannot connect to vCloud Director API')
        elif res.status_code >= 500:
            # Any other 5xx error indicates a problem on the server
            # If there is a vCD Error in the response, extract it in order to wrap it
            # However, it is entirely possible that one is not present
            ex = ProviderUnavailableError('vCloud Director API encountered an error')
            try:
                raise VCloudError.from_xml(self.__endpoint, self.__user, res.text)
            except VCloudError as e:
                raise ex from e
            except ValueError:
                raise ex
        elif res.status_code >= 400:
            # 4xx errors indicate that there was a problem with our request, so
            # we expect vCD to provide an Error in the response
            # For the status codes returned by the vCD API, see
            # http://pubs.vmware.com/vcd-55/topic/com.vmware.vcloud.api.doc_55/GUID-D2B2E6D4-7A92-4D1B-80C0-F32AE0CA3D11.html
            try:
                raise VCloudError.from_xml(self.__endpoint, self.__user, res.text)
            except VCloudError as e:
                if e.__status_code__ == 401:
                    # 401 is reported if authentication failed
                    raise AuthenticationError('Authentication failed') from e
                elif e.__status_code__ == 403:
                    # 403 is reported if the authenticated user doesn't have adequate
                    # permissions, or if the resource doesn't exist
                    raise PermissionsError('Insufficient permissions') from e
                elif e.__status_code__ == 404:
                    # 404 is reported if the resource doesn't exist
                    raise NoSuchResourceError('Resource does not exist') from e
                # DUPLICATE_NAME is sent when a name is duplicated
                elif e.__error_code__ == 'DUPLICATE_NAME':
                    raise DuplicateNameError('Name is already in use') from e
                # BAD_REQUEST is sent when an action is invalid given the current state
                # or when a badly formatted request is sent
                elif e.__error_code__ == 'BAD_REQUEST':
                    # To distinguish, we need to check the message
                    if 'validation error' in str(e).lower():
                        raise BadRequestError('Badly formatted request: {}'.format(e)) from e
                    else:
                        raise InvalidActionError(
                            'Action is invalid for current state: {}'.format(e)) from e
                # Otherwise, assume the request was incorrectly specified by the implementation
                raise ImplementationError('Bad request') from e
            except ValueError:
                raise ImplementationError('Bad request (HTTP {})'.format(res.status_code))
        else:
            return res

    def _get_xml(self, path):
        return ET.fromstring(self.api_request('GET', path).text)

    def _send_xml(self, method, path, payload, media_type):
        """
        Sends the given payload with the given vCD media type and returns the
        response as an ``ElementTree.Element``.
        """
        if isinstance(payload, ET.Element):
            payload = ET.tostring(payload, encoding = 'UTF-8')
        else:
            payload = payload.encode('utf-8')
        res = self.api_request(
            method, path, payload,
            headers = { 'Content-Type' : _MEDIA_TYPE.format(media_type) }
        )
        return ET.fromstring(res.text)

    def _get_org(self):
        """
        Returns the ``ElementTree.Element`` for the org of the session.
        """
        session = self._get_xml('session')
        org_refs = session.findall('.//vcd:Link[@type="application/vnd.vmware.vcloud.org+xml"]', _NS)
        org_ref = next(
            (ref for ref in org_refs if ref.attrib.get('name') == self.__org),
            org_refs[0] if org_refs else None
        )
        if org_ref is None:
            raise BadConfigurationError('Unable to find organisation for user')
        return self._get_xml(org_ref.attrib['href'])

    ###########################################################################
    ## Parsing
    ###########################################################################

    def _parse_task(self, task, operation = None):
        """
        Converts a vCD Task element into a :py:class:`~vcloud_launcher.dto.Task`.
        """
        owner = task.find('vcd:Owner', _NS)
        error = task.find('vcd:Error', _NS)
        error_detail = None
        if error is not None:
            try:
                error_detail = str(VCloudError.from_xml(self.__endpoint, self.__user, error))
            except ValueError:
                error_detail = error.attrib.get('message')
        return dto.Task(
            task.attrib['href'],
            task.attrib.get('operationName', operation or ''),
            dto.TaskStatus.parse(task.attrib['status']),
            owner.attrib.get('href') if owner is not None else None,
            error_detail
        )

    def _task_from_entity(self, entity, operation):
        """
        Returns the first task of an entity that was returned by a creation request.

        vCD returns the entity being created, with its tasks embedded.
        """
        task = entity.find('./vcd:Tasks/vcd:Task', _NS)
        if task is None:
            raise BadConfigurationError('No task returned for {}'.format(operation))
        task = self._parse_task(task, operation)
        # The embedded task may not report an owner, but we know what it is
        if task.owner is None:
            task = dto.Task(task.href, task.operation, task.status, entity.attrib['href'], task.error)
        return task

    def _parse_vm(self, vm):
        """
        Converts a vCD Vm element into a :py:class:`~vcloud_launcher.dto.Vm`.
        """
        cpu = memory = None
        disks = []
        items = vm.findall('./ovf:VirtualHardwareSection/ovf:Item', _NS)
        for item in items:
            resource_type = _text(item, 'rasd:ResourceType')
            if resource_type == _RESOURCE_TYPES['cpu']:
                cpu = _int(_text(item, 'rasd:VirtualQuantity'))
            elif resource_type == _RESOURCE_TYPES['memory']:
                memory = _int(_text(item, 'rasd:VirtualQuantity'))
            elif resource_type == _RESOURCE_TYPES['disk']:
                host_resource = item.find('rasd:HostResource', _NS)
                capacity = None
                if host_resource is not None:
                    capacity = host_resource.attrib.get(_tag('vcd', 'capacity'))
                disks.append(dto.Disk(
                    _text(item, 'rasd:ElementName'),
                    _int(capacity),
                    _int(_text(item, 'rasd:InstanceID'))
                ))
        connections = tuple(
            dto.NetworkConnection(
                conn.attrib.get('network'),
                _text(conn, 'vcd:NetworkConnectionIndex'),
                _text(conn, 'vcd:IpAddressAllocationMode'),
                _text(conn, 'vcd:IpAddress'),
                _text(conn, 'vcd:IsConnected', 'true').lower() == 'true',
                _text(conn, 'vcd:MACAddress')
            )
            for conn in vm.findall('./vcd:NetworkConnectionSection/vcd:NetworkConnection', _NS)
        )
        customization = vm.find('./vcd:GuestCustomizationSection', _NS)
        if customization is not None:
            customization = dto.GuestCustomization(
                _text(customization, 'vcd:Enabled', 'false').lower() == 'true',
                _text(customization, 'vcd:CustomizationScript'),
                _text(customization, 'vcd:ComputerName')
            )
        else:
            customization = dto.GuestCustomization()
        storage_profile = vm.find('./vcd:StorageProfile', _NS)
        return dto.Vm(
            vm.attrib['href'],
            vm.attrib['name'],
            dto.STATUS_CODES.get(_int(vm.attrib.get('status')), dto.ResourceStatus.UNRECOGNISED),
            cpu,
            memory,
            tuple(sorted(disks, key = lambda d: d.instance_id or 0)),
            _text(vm, './vcd:NetworkConnectionSection/vcd:PrimaryNetworkConnectionIndex'),
            connections,
            customization,
            storage_profile.attrib.get('name') if storage_profile is not None else None
        )

    def _parse_vapp(self, app):
        """
        Converts a vCD VApp element into a :py:class:`~vcloud_launcher.dto.Vapp`.
        """
        networks = tuple(
            net.attrib[_tag('ovf', 'name')]
            for net in app.findall('./ovf:NetworkSection/ovf:Network', _NS)
        )
        vdc_ref = app.find('./vcd:Link[@type="application/vnd.vmware.vcloud.vdc+xml"]', _NS)
        return dto.Vapp(
            app.attrib['href'],
            app.attrib['name'],
            dto.STATUS_CODES.get(_int(app.attrib.get('status')), dto.ResourceStatus.UNRECOGNISED),
            networks,
            tuple(self._parse_vm(vm) for vm in app.findall('./vcd:Children/vcd:Vm', _NS)),
            vdc_ref.attrib['href'] if vdc_ref is not None else None,
            app.attrib.get('deployed', 'false').lower() == 'true'
        )

    ###########################################################################
    ## Reads
    ###########################################################################

    @convert_parse_errors
    def get_vdc(self, name):
        """
        See :py:meth:`vcloud_launcher.controlplane.Session.get_vdc`.
        """
        org = self._get_org()
        vdc_ref = org.find(
            './vcd:Link[@type="application/vnd.vmware.vcloud.vdc+xml"][@name="{}"]'.format(name),
            _NS
        )
        if vdc_ref is None:
            raise NoSuchResourceError('Could not find vDC {}'.format(name))
        vdc = self._get_xml(vdc_ref.attrib['href'])
        networks = {
            net.attrib['name']: net.attrib['href']
            for net in vdc.findall('./vcd:AvailableNetworks/vcd:Network', _NS)
        }
        storage_profiles = {
            profile.attrib['name']: profile.attrib['href']
            for profile in vdc.findall('./vcd:VdcStorageProfiles/vcd:VdcStorageProfile', _NS)
        }
        return dto.Vdc(vdc.attrib['href'], vdc.attrib['name'], networks, storage_profiles)

    @convert_parse_errors
    def get_template(self, catalog, item):
        """
        See :py:meth:`vcloud_launcher.controlplane.Session.get_template`.
        """
        org = self._get_org()
        cat_ref = org.find(
            './vcd:Link[@type="application/vnd.vmware.vcloud.catalog+xml"][@name="{}"]'.format(catalog),
            _NS
        )
        if cat_ref is None:
            raise NoSuchResourceError('Could not find catalog {}'.format(catalog))
        cat = self._get_xml(cat_ref.attrib['href'])
        item_ref = cat.find('.//vcd:CatalogItem[@name="{}"]'.format(item), _NS)
        if item_ref is None:
            raise NoSuchResourceError('Could not find catalog item {}'.format(item))
        cat_item = self._get_xml(item_ref.attrib['href'])
        # The catalog item might be some other type of media, e.g. an ISO
        entity = cat_item.find(
            './/vcd:Entity[@type="application/vnd.vmware.vcloud.vAppTemplate+xml"]', _NS
        )
        if entity is None:
            raise NoSuchResourceError('Catalog item {} is not a vApp template'.format(item))
        template = self._get_xml(entity.attrib['href'])
        return dto.VappTemplate(
            template.attrib['href'],
            template.attrib['name'],
            tuple(
                dto.TemplateVm(vm.attrib['href'], vm.attrib['name'])
                for vm in template.findall('./vcd:Children/vcd:Vm', _NS)
            )
        )

    @convert_parse_errors
    def find_vapp(self, vdc, name):
        """
        See :py:meth:`vcloud_launcher.controlplane.Session.find_vapp`.
        """
        # Use a fresh copy of the vDC, since the vApps it contains change
        vdc = self._get_xml(vdc.href)
        entity = vdc.find(
            './vcd:ResourceEntities/vcd:ResourceEntity'
            '[@type="application/vnd.vmware.vcloud.vApp+xml"][@name="{}"]'.format(name),
            _NS
        )
        if entity is None:
            return None
        return self.get_vapp(entity.attrib['href'])

    @convert_parse_errors
    def get_vapp(self, href):
        """
        See :py:meth:`vcloud_launcher.controlplane.Session.get_vapp`.
        """
        return self._parse_vapp(self._get_xml(href))

    @convert_parse_errors
    def get_vm(self, href):
        """
        See :py:meth:`vcloud_launcher.controlplane.Session.get_vm`.
        """
        return self._parse_vm(self._get_xml(href))

    _TYPE_KEY = '{{{}}}type'.format(_NS['xsi'])
    @convert_parse_errors
    def get_metadata(self, href):
        """
        See :py:meth:`vcloud_launcher.controlplane.Session.get_metadata`.
        """
        try:
            xml = self._get_xml('{}/metadata'.format(href.rstrip('/')))
        except NoSuchResourceError:
            return {}
        meta = {}
        for entry in xml.findall('.//vcd:MetadataEntry', _NS):
            key = entry.find('./vcd:Key', _NS).text
            value = entry.find('.//vcd:Value', _NS).text
            type_ = entry.find('./vcd:TypedValue', _NS).attrib[self._TYPE_KEY]
            # The type attribute may carry a namespace prefix
            type_ = type_.split(':').pop()
            try:
                meta[key] = dto.MetadataValue.deserialize(type_, value)
            except (ValueError, TypeError, OverflowError):
                raise BadConfigurationError('Invalid metadata value for {}'.format(key))
        return meta

    @convert_parse_errors
    def get_task(self, task):
        """
        See :py:meth:`vcloud_launcher.controlplane.Session.get_task`.
        """
        return self._parse_task(self._get_xml(task.href), task.operation)

    ###########################################################################
    ## Mutations
    ###########################################################################

    @convert_parse_errors
    def create_vapp(self, vdc, name, template, networks):
        """
        See :py:meth:`vcloud_launcher.controlplane.Session.create_vapp`.
        """
        payload = _ENV.get_template('ComposeVAppParams.xml').render({
            'appliance': {
                'name'        : name,
                'description' : 'Created from {}'.format(template.name),
            },
            'networks': [
                { 'name' : network, 'href' : vdc.networks[network] }
                for network in networks
            ],
        })
        app = self._send_xml(
            'POST', '{}/action/composeVApp'.format(vdc.href), payload, 'composeVAppParams'
        )
        return self._task_from_entity(app, 'vdcComposeVapp')

    @convert_parse_errors
    def create_vm(self, vapp, template_vm, name):
        """
        See :py:meth:`vcloud_launcher.controlplane.Session.create_vm`.
        """
        payload = _ENV.get_template('RecomposeVAppParams.xml').render({
            'vapp_name' : vapp.name,
            'vm' : { 'name' : name, 'href' : template_vm.href },
        })
        task = self._send_xml(
            'POST', '{}/action/recomposeVApp'.format(vapp.href), payload, 'recomposeVAppParams'
        )
        return self._parse_task(task, 'vdcRecomposeVapp')

    @convert_parse_errors
    def update_network_section(self, vm, connections, primary_index):
        """
        See :py:meth:`vcloud_launcher.controlplane.Session.update_network_section`.
        """
        section_href = '{}/networkConnectionSection/'.format(vm.href.rstrip('/'))
        payload = _ENV.get_template('NetworkConnectionSection.xml').render({
            'href'          : section_href,
            'primary_index' : primary_index,
            'connections'   : connections,
        })
        task = self._send_xml('PUT', section_href, payload, 'networkConnectionSection')
        return self._parse_task(task, 'vappUpdateVm')

    @convert_parse_errors
    def update_hardware_item(self, vm, resource, quantity):
        """
        See :py:meth:`vcloud_launcher.controlplane.Session.update_hardware_item`.
        """
        if resource not in ('cpu', 'memory'):
            raise ImplementationError('Unknown hardware item - {}'.format(resource))
        item_href = '{}/virtualHardwareSection/{}'.format(vm.href.rstrip('/'), resource)
        item = self._get_xml(item_href)
        item.find('rasd:VirtualQuantity', _NS).text = str(quantity)
        task = self._send_xml('PUT', item_href, item, 'rasdItem')
        return self._parse_task(task, 'vappUpdateVm')

    @convert_parse_errors
    def update_disks(self, vm, disks):
        """
        See :py:meth:`vcloud_launcher.controlplane.Session.update_disks`.
        """
        list_href = '{}/virtualHardwareSection/disks'.format(vm.href.rstrip('/'))
        items = self._get_xml(list_href)
        # The disk list also contains the disk controllers
        existing = [
            item
            for item in items.findall('ovf:Item', _NS)
            if _text(item, 'rasd:ResourceType') == _RESOURCE_TYPES['disk']
        ]
        if not existing:
            raise BadConfigurationError('VM has no base disk to model new disks on')
        instance_ids = [_int(_text(item, 'rasd:InstanceID'), 0) for item in items.findall('ovf:Item', _NS)]
        next_id = max(instance_ids) + 1
        for disk in disks:
            # New disks are modelled on the last existing disk, so that they
            # are attached to the same controller
            new_disk = copy.deepcopy(existing[-1])
            address = new_disk.find('rasd:AddressOnParent', _NS)
            if address is not None:
                new_disk.remove(address)
            new_disk.find('rasd:InstanceID', _NS).text = str(next_id)
            new_disk.find('rasd:ElementName', _NS).text = disk.name
            new_disk.find('rasd:HostResource', _NS).set(_tag('vcd', 'capacity'), str(disk.size))
            items.append(new_disk)
            next_id += 1
        task = self._send_xml('PUT', list_href, items, 'rasdItemsList')
        return self._parse_task(task, 'vappUpdateVm')

    @convert_parse_errors
    def add_metadata(self, href, key, value):
        """
        See :py:meth:`vcloud_launcher.controlplane.Session.add_metadata`.
        """
        payload = _ENV.get_template('MetadataValue.xml').render({
            'type'  : value.type.value,
            'value' : value.serialize(),
        })
        task = self._send_xml(
            'PUT',
            '{}/metadata/{}'.format(href.rstrip('/'), quote(key, safe = '')),
            payload,
            'metadata.value'
        )
        return self._parse_task(task, 'metadataUpdate')

    @convert_parse_errors
    def set_guest_customization(self, vm, script, computer_name):
        """
        See :py:meth:`vcloud_launcher.controlplane.Session.set_guest_customization`.
        """
        section_href = '{}/guestCustomizationSection/'.format(vm.href.rstrip('/'))
        section = self._get_xml(section_href)
        section.find('vcd:Enabled', _NS).text = 'true'
        computer_name_elem = section.find('vcd:ComputerName', _NS)
        computer_name_elem.text = computer_name
        if script is not None:
            # ElementTree escapes the script as required
            script_elem = section.find('vcd:CustomizationScript', _NS)
            if script_elem is None:
                # CustomizationScript must appear just before ComputerName
                script_elem = ET.Element(_tag('vcd', 'CustomizationScript'))
                section.insert(list(section).index(computer_name_elem), script_elem)
            script_elem.text = script
        # vCD rejects the section if it contains the existing admin password
        admin_pass = section.find('vcd:AdminPassword', _NS)
        if admin_pass is not None:
            section.remove(admin_pass)
        task = self._send_xml('PUT', section_href, section, 'guestCustomizationSection')
        return self._parse_task(task, 'vappUpdateVm')

    @convert_parse_errors
    def set_storage_profile(self, vm, name, href):
        """
        See :py:meth:`vcloud_launcher.controlplane.Session.set_storage_profile`.
        """
        payload = _ENV.get_template('VmStorageProfile.xml').render({
            'vm'      : { 'name' : vm.name },
            'profile' : { 'name' : name, 'href' : href },
        })
        task = self._send_xml('PUT', vm.href, payload, 'vm')
        return self._parse_task(task, 'vappUpdateVm')

    @convert_parse_errors
    def set_power_state(self, href, on):
        """
        See :py:meth:`vcloud_launcher.controlplane.Session.set_power_state`.
        """
        if on:
            task = ET.fromstring(self.api_request(
                'POST', '{}/power/action/powerOn'.format(href.rstrip('/'))
            ).text)
            return self._parse_task(task, 'vappDeploy')
        else:
            payload = _ENV.get_template('UndeployVAppParams.xml').render()
            task = self._send_xml(
                'POST', '{}/action/undeploy'.format(href.rstrip('/')), payload, 'undeployVAppParams'
            )
            return self._parse_task(task, 'vappUndeployPowerOff')

    @convert_parse_errors
    def delete_vapp(self, href):
        """
        See :py:meth:`vcloud_launcher.controlplane.Session.delete_vapp`.
        """
        task = ET.fromstring(self.api_request('DELETE', href).text)
        return self._parse_task(task, 'vdcDeleteVapp')

    def close(self):
        """
        See :py:meth:`vcloud_launcher.controlplane.Session.close`.
        """
        if self.__session is None:
            # Already closed, so nothing to do
            return
        # Send a request to vCD to kill our session
        # We catch any errors and log them, since this could be called when an
        # exception has been thrown by a context manager
        try:
            self.api_request('DELETE', 'session')
            self.__session.close()
        except ControlPlaneError:
            _log.warning('[%s] [%s] Error closing session', self.__endpoint, self.__user)
        finally:
            self.__session = None
