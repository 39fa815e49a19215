"""
This module defines an in-memory implementation of the control plane interface.

Mutations follow the same lifecycle as on vCloud Director: every mutating call
returns a task, and the effect of the call only becomes visible once the task
has been polled to success. Failures can be injected per operation, which
makes this session suitable for tests and for dry runs.
"""

import collections
import copy
import logging
import threading
import uuid

from .. import dto
from . import Session as BaseSession
from .exceptions import *


_log = logging.getLogger(__name__)


#: The base URL for the hrefs of mock resources
BASE_URL = 'https://vcloud.mock/api'

#: The operation names accepted by the failure injection methods
OPERATIONS = (
    'create_vapp',
    'create_vm',
    'update_network_section',
    'update_hardware_item',
    'update_disks',
    'add_metadata',
    'set_guest_customization',
    'set_storage_profile',
    'power_on',
    'power_off',
    'delete_vapp',
)


def _href(kind):
    return '{}/{}/{}-{}'.format(BASE_URL, kind, kind.lower(), uuid.uuid4())


class Session(BaseSession):
    """
    In-memory control plane session.

    :param vdcs: Iterable of :py:class:`~vcloud_launcher.dto.Vdc`
    :param templates: Mapping of ``(catalog, item)`` to
                      :py:class:`~vcloud_launcher.dto.VappTemplate`
    :param task_polls: The number of polls before a task becomes terminal
    :param base_disk_size: The size in MB of the disk of a cloned template VM
    """
    def __init__(self, vdcs = (), templates = None, task_polls = 1, base_disk_size = 10240):
        self._lock = threading.RLock()
        self._vdcs = { vdc.name: vdc for vdc in vdcs }
        self._templates = dict(templates or {})
        self._task_polls = task_polls
        self._base_disk_size = base_disk_size
        self._vapps = {}
        self._vms = {}
        self._metadata = collections.defaultdict(dict)
        self._tasks = {}
        self._ip_counter = 0
        # Failure injection
        self._task_failures = {}
        self._rejections = {}
        self._hangs = set()
        self._connection_failures = collections.Counter()
        self._failing_metadata_keys = set()
        #: Number of requests made for each mutating operation, including
        #: requests that failed to connect
        self.calls = collections.Counter()
        #: The accepted mutating requests, in order, as ``(operation, href)``
        self.history = []
        #: Number of times each task was polled, by task href
        self.polls = collections.Counter()
        self.closed = False

    @classmethod
    def for_specs(cls, specs, **kwargs):
        """
        Returns a session that contains everything the given provisioning specs
        reference, i.e. the vDCs, networks, storage profiles and templates.
        """
        vdcs = {}
        templates = {}
        for spec in specs:
            networks, profiles = vdcs.setdefault(spec.vdc_name, ({}, {}))
            for network in spec.networks:
                networks.setdefault(network, _href('network'))
            for vm in spec.vms:
                if vm.storage_profile:
                    profiles.setdefault(vm.storage_profile, _href('vdcStorageProfile'))
            template = templates.setdefault(
                (spec.catalog, spec.catalog_item),
                { 'href': _href('vAppTemplate'), 'vms': [] }
            )
            for vm in spec.vms:
                source = vm.source_vm or spec.catalog_item
                if source not in template['vms']:
                    template['vms'].append(source)
        return cls(
            [
                dto.Vdc(_href('vdc'), name, networks, profiles)
                for name, (networks, profiles) in vdcs.items()
            ],
            {
                key: dto.VappTemplate(
                    template['href'],
                    key[1],
                    tuple(dto.TemplateVm(_href('vm'), name) for name in template['vms'])
                )
                for key, template in templates.items()
            },
            **kwargs
        )

    ###########################################################################
    ## Failure injection
    ###########################################################################

    def fail_task(self, operation, message = 'Task failed', skip = 0):
        """
        Makes tasks for the given operation finish with an error, after the
        first ``skip`` tasks for the operation.
        """
        self._task_failures[operation] = [message, skip]

    def reject_request(self, operation, exc):
        """
        Makes requests for the given operation raise the given exception.
        """
        self._rejections[operation] = exc

    def hang_task(self, operation):
        """
        Makes tasks for the given operation never reach a terminal state.
        """
        self._hangs.add(operation)

    def drop_connection(self, operation, times = 1):
        """
        Makes the next ``times`` requests for the given operation fail to connect.
        """
        self._connection_failures[operation] += times

    def fail_metadata_key(self, key):
        """
        Makes tasks that write the given metadata key finish with an error.
        """
        self._failing_metadata_keys.add(key)

    ###########################################################################
    ## Internals
    ###########################################################################

    def _check_open(self):
        if self.closed:
            raise InvalidActionError('Session has already been closed')

    def _request(self, operation, href, effect, owner = None, fail = None):
        """
        Records a mutating request and returns the task for it.

        The effect is a callable that is applied when the task succeeds.
        """
        self._check_open()
        _log.info('[mock] %s request for %s', operation, href)
        self.calls[operation] += 1
        if self._connection_failures[operation] > 0:
            self._connection_failures[operation] -= 1
            raise ProviderConnectionError('Cannot connect to mock control plane')
        if operation in self._rejections:
            raise self._rejections[operation]
        self.history.append((operation, href))
        task = dto.Task(_href('task'), operation, dto.TaskStatus.QUEUED, owner or href)
        self._tasks[task.href] = {
            'task'   : task,
            'polls'  : 0,
            'effect' : effect,
            'hang'   : operation in self._hangs,
            'error'  : fail or self._injected_failure(operation),
        }
        return task

    def _injected_failure(self, operation):
        failure = self._task_failures.get(operation)
        if failure is None:
            return None
        if failure[1] > 0:
            failure[1] -= 1
            return None
        return failure[0]

    def _vapp_doc(self, href):
        record = self._vapps.get(href)
        if record is None:
            raise NoSuchResourceError('Resource does not exist')
        return dto.Vapp(
            href,
            record['name'],
            record['status'],
            tuple(record['networks']),
            tuple(self._vm_doc(vm_href) for vm_href in record['vms']),
            record['vdc_href'],
            record['deployed']
        )

    def _vm_doc(self, href):
        record = self._vms.get(href)
        if record is None:
            raise NoSuchResourceError('Resource does not exist')
        return dto.Vm(**copy.deepcopy(record))

    def _next_ip(self):
        self._ip_counter += 1
        return '10.0.{}.{}'.format(self._ip_counter // 250, self._ip_counter % 250 + 2)

    def _find_vapp_of_vm(self, vm_href):
        return next(
            href for href, record in self._vapps.items() if vm_href in record['vms']
        )

    ###########################################################################
    ## Reads
    ###########################################################################

    def get_vdc(self, name):
        with self._lock:
            self._check_open()
            try:
                return self._vdcs[name]
            except KeyError:
                raise NoSuchResourceError('Could not find vDC {}'.format(name))

    def get_template(self, catalog, item):
        with self._lock:
            self._check_open()
            try:
                return self._templates[(catalog, item)]
            except KeyError:
                raise NoSuchResourceError(
                    'Could not find catalog item {}/{}'.format(catalog, item)
                )

    def find_vapp(self, vdc, name):
        with self._lock:
            self._check_open()
            href = next(
                (
                    href
                    for href, record in self._vapps.items()
                    if record['name'] == name and record['vdc_href'] == vdc.href
                ),
                None
            )
            return self._vapp_doc(href) if href else None

    def get_vapp(self, href):
        with self._lock:
            self._check_open()
            return self._vapp_doc(href)

    def get_vm(self, href):
        with self._lock:
            self._check_open()
            return self._vm_doc(href)

    def get_metadata(self, href):
        with self._lock:
            self._check_open()
            return dict(self._metadata.get(href, {}))

    def get_task(self, task):
        with self._lock:
            self._check_open()
            try:
                record = self._tasks[task.href]
            except KeyError:
                raise NoSuchResourceError('Resource does not exist')
            self.polls[task.href] += 1
            current = record['task']
            if current.status.is_terminal() or record['hang']:
                return current
            record['polls'] += 1
            if record['polls'] < self._task_polls:
                current = dto.Task(
                    current.href, current.operation, dto.TaskStatus.RUNNING, current.owner
                )
            elif record['error']:
                current = dto.Task(
                    current.href, current.operation,
                    dto.TaskStatus.ERROR, current.owner, record['error']
                )
                if current.operation == 'create_vapp':
                    self._vapps[current.owner]['status'] = dto.ResourceStatus.FAILED_CREATION
            else:
                current = dto.Task(
                    current.href, current.operation, dto.TaskStatus.SUCCESS, current.owner
                )
                record['effect']()
            record['task'] = current
            return current

    ###########################################################################
    ## Mutations
    ###########################################################################

    def create_vapp(self, vdc, name, template, networks):
        with self._lock:
            self._check_open()
            if any(
                r['name'] == name and r['vdc_href'] == vdc.href
                for r in self._vapps.values()
            ):
                self.calls['create_vapp'] += 1
                raise DuplicateNameError('Name is already in use')
            for network in networks:
                if network not in vdc.networks:
                    self.calls['create_vapp'] += 1
                    raise BadRequestError('Badly formatted request: no network {}'.format(network))
            href = _href('vApp')
            def effect():
                self._vapps[href]['status'] = dto.ResourceStatus.POWERED_OFF
                self._vapps[href]['networks'] = list(networks)
            task = self._request('create_vapp', vdc.href, effect, owner = href)
            # The vApp exists as soon as the request is accepted
            self._vapps[href] = {
                'name'     : name,
                'status'   : dto.ResourceStatus.UNRESOLVED,
                'networks' : [],
                'vms'      : [],
                'vdc_href' : vdc.href,
                'deployed' : False,
            }
            return task

    def create_vm(self, vapp, template_vm, name):
        with self._lock:
            href = _href('vm')
            def effect():
                self._vms[href] = {
                    'href'   : href,
                    'name'   : name,
                    'status' : dto.ResourceStatus.POWERED_OFF,
                    'cpu'    : 1,
                    'memory' : 1024,
                    'disks'  : (dto.Disk('Hard disk 1', self._base_disk_size, 2000), ),
                    'customization' : dto.GuestCustomization(computer_name = template_vm.name),
                }
                self._vapps[vapp.href]['vms'].append(href)
            if vapp.href not in self._vapps:
                raise NoSuchResourceError('Resource does not exist')
            return self._request('create_vm', vapp.href, effect)

    def update_network_section(self, vm, connections, primary_index):
        with self._lock:
            def effect():
                self._vms[vm.href]['network_connections'] = tuple(
                    dto.NetworkConnection(
                        conn.network,
                        str(conn.index),
                        conn.allocation_mode,
                        conn.ip_address if conn.allocation_mode == 'MANUAL' else (
                            self._next_ip() if conn.allocation_mode == 'POOL' else None
                        ),
                        conn.is_connected,
                        '00:50:56:00:00:{:02x}'.format(int(conn.index))
                    )
                    for conn in connections
                )
                self._vms[vm.href]['primary_network_index'] = (
                    str(primary_index) if primary_index is not None else None
                )
            return self._request('update_network_section', vm.href, effect)

    def update_hardware_item(self, vm, resource, quantity):
        with self._lock:
            if resource not in ('cpu', 'memory'):
                raise ImplementationError('Unknown hardware item - {}'.format(resource))
            def effect():
                self._vms[vm.href][resource] = quantity
            return self._request('update_hardware_item', vm.href, effect)

    def update_disks(self, vm, disks):
        with self._lock:
            disks = list(disks)
            def effect():
                existing = list(self._vms[vm.href]['disks'])
                next_id = max((d.instance_id for d in existing), default = 1999) + 1
                for disk in disks:
                    existing.append(dto.Disk(disk.name, disk.size, next_id))
                    next_id += 1
                self._vms[vm.href]['disks'] = tuple(existing)
            return self._request('update_disks', vm.href, effect)

    def add_metadata(self, href, key, value):
        with self._lock:
            def effect():
                self._metadata[href][key] = value
            fail = None
            if key in self._failing_metadata_keys:
                fail = 'Failed to write metadata key {}'.format(key)
            return self._request('add_metadata', href, effect, fail = fail)

    def set_guest_customization(self, vm, script, computer_name):
        with self._lock:
            def effect():
                current = self._vms[vm.href]['customization']
                self._vms[vm.href]['customization'] = dto.GuestCustomization(
                    True,
                    script if script is not None else current.script,
                    computer_name
                )
            return self._request('set_guest_customization', vm.href, effect)

    def set_storage_profile(self, vm, name, href):
        with self._lock:
            def effect():
                self._vms[vm.href]['storage_profile'] = name
            return self._request('set_storage_profile', vm.href, effect)

    def set_power_state(self, href, on):
        with self._lock:
            if href in self._vapps:
                vm_hrefs = list(self._vapps[href]['vms'])
                vapp_href = href
            elif href in self._vms:
                vm_hrefs = [href]
                vapp_href = self._find_vapp_of_vm(href)
            else:
                raise NoSuchResourceError('Resource does not exist')
            status = dto.ResourceStatus.POWERED_ON if on else dto.ResourceStatus.POWERED_OFF
            def effect():
                for vm_href in vm_hrefs:
                    self._vms[vm_href]['status'] = status
                vapp = self._vapps[vapp_href]
                statuses = { self._vms[v]['status'] for v in vapp['vms'] } or { status }
                vapp['deployed'] = any(s.is_on() for s in statuses)
                vapp['status'] = (
                    statuses.pop() if len(statuses) == 1 else dto.ResourceStatus.MIXED
                )
            return self._request('power_on' if on else 'power_off', href, effect)

    def delete_vapp(self, href):
        with self._lock:
            record = self._vapps.get(href)
            if record is None:
                self.calls['delete_vapp'] += 1
                raise NoSuchResourceError('Resource does not exist')
            if record['deployed']:
                self.calls['delete_vapp'] += 1
                raise InvalidActionError(
                    'Action is invalid for current state: vApp must be undeployed'
                )
            def effect():
                removed = self._vapps.pop(href)
                for vm_href in removed['vms']:
                    self._vms.pop(vm_href, None)
                    self._metadata.pop(vm_href, None)
                self._metadata.pop(href, None)
            return self._request('delete_vapp', href, effect)

    def close(self):
        self.closed = True
