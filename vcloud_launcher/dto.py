"""
This module defines data-transfer objects used by the launcher.

There are two families of objects here:

  * The desired state, as loaded from a configuration file
    (:py:class:`ProvisioningSpec` and the objects it contains).
  * Documents returned by the control plane (:py:class:`Vapp`, :py:class:`Vm`,
    :py:class:`Task` etc.).

All of them are immutable.
"""

import datetime
import enum
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

import dateutil.parser


def resource_id(href):
    """
    Returns the id of a resource given its href, i.e. the last path segment.
    """
    return href.rstrip('/').split('/').pop() if href else None


@enum.unique
class ResourceStatus(enum.Enum):
    """
    Defines the states that a vApp or VM may be in.
    """

    """Resource could not be created."""
    FAILED_CREATION = 'Failed Creation'

    """Resource has been accepted but not yet created."""
    UNRESOLVED = 'Unresolved'

    """Resource is created but not deployed."""
    RESOLVED = 'Resolved'

    """Resource is suspended."""
    SUSPENDED = 'Suspended'

    """Resource is powered on."""
    POWERED_ON = 'Powered On'

    """Resource is waiting for user input."""
    WAITING_FOR_INPUT = 'Waiting for input...'

    """Resource is in an unknown state."""
    UNKNOWN = 'Unknown'

    """Resource is in an unrecognised state."""
    UNRECOGNISED = 'Unrecognised'

    """Resource is powered off."""
    POWERED_OFF = 'Powered Off'

    """Resource is in an inconsistent state."""
    INCONSISTENT = 'Inconsistent'

    """Some children of the resource are in different states."""
    MIXED = 'Mixed'

    def is_on(self):
        """
        Indicates if this status represents a powered on resource.

        :returns: True or False
        """
        return self in [ResourceStatus.POWERED_ON, ResourceStatus.MIXED]


#: Map of vCD status codes to :py:class:`ResourceStatus` instances
STATUS_CODES = {
    -1 : ResourceStatus.FAILED_CREATION,
     0 : ResourceStatus.UNRESOLVED,
     1 : ResourceStatus.RESOLVED,
     3 : ResourceStatus.SUSPENDED,
     4 : ResourceStatus.POWERED_ON,
     5 : ResourceStatus.WAITING_FOR_INPUT,
     6 : ResourceStatus.UNKNOWN,
     7 : ResourceStatus.UNRECOGNISED,
     8 : ResourceStatus.POWERED_OFF,
     9 : ResourceStatus.INCONSISTENT,
    10 : ResourceStatus.MIXED,
}


@enum.unique
class TaskStatus(enum.Enum):
    """
    Defines the states that a control plane task may be in.
    """
    QUEUED = 'queued'
    PRE_RUNNING = 'preRunning'
    RUNNING = 'running'
    SUCCESS = 'success'
    ERROR = 'error'
    CANCELED = 'canceled'
    ABORTED = 'aborted'

    @classmethod
    def parse(cls, value):
        """
        Returns the status for the given (case-insensitive) vCD status string.
        """
        status = next((s for s in cls if s.value.lower() == value.lower()), None)
        if status is None:
            raise ValueError('unrecognised task status: {}'.format(value))
        return status

    def is_terminal(self):
        """
        Indicates if a task in this state will never change state again.

        :returns: True or False
        """
        return self in [TaskStatus.SUCCESS,
                        TaskStatus.ERROR,
                        TaskStatus.CANCELED,
                        TaskStatus.ABORTED]


@dataclass(frozen = True)
class Task:
    """
    Represents a long-running operation on the control plane.

    Tasks are returned by every mutating call and are never reused: once a
    task reaches a terminal state, a new call produces a new task.
    """
    #: The href used to poll the task
    href: str
    #: The name of the operation, e.g. ``vdcComposeVapp``
    operation: str
    #: The current status of the task
    status: TaskStatus = TaskStatus.QUEUED
    #: The href of the resource that the task acts on, if known
    owner: Optional[str] = None
    #: Error detail reported by the control plane, if the task failed
    error: Optional[str] = None

    @property
    def id(self):
        return resource_id(self.href)


@enum.unique
class MetadataType(enum.Enum):
    """
    The typed values that a metadata entry can hold, named as vCD names them.
    """
    STRING = 'MetadataStringValue'
    NUMBER = 'MetadataNumberValue'
    BOOLEAN = 'MetadataBooleanValue'
    DATETIME = 'MetadataDateTimeValue'


@dataclass(frozen = True)
class MetadataValue:
    """
    A metadata value tagged with its type.

    Each variant has an explicit serialisation so that a value read back from
    the control plane is equal to the value that was written.
    """
    type: MetadataType
    value: Any

    @classmethod
    def from_python(cls, value):
        """
        Returns a tagged value for the given Python value.

        ``bool`` is checked before ``int``, since ``True`` is also an ``int``.
        """
        if isinstance(value, MetadataValue):
            return value
        if isinstance(value, bool):
            return cls(MetadataType.BOOLEAN, value)
        if isinstance(value, int):
            return cls(MetadataType.NUMBER, value)
        if isinstance(value, (datetime.datetime, datetime.date)):
            if not isinstance(value, datetime.datetime):
                value = datetime.datetime.combine(value, datetime.time())
            return cls(MetadataType.DATETIME, value)
        return cls(MetadataType.STRING, str(value))

    def serialize(self):
        """
        Returns the text that represents this value on the wire.
        """
        if self.type is MetadataType.BOOLEAN:
            return 'true' if self.value else 'false'
        if self.type is MetadataType.NUMBER:
            return str(int(self.value))
        if self.type is MetadataType.DATETIME:
            return self.value.isoformat()
        return str(self.value)

    @classmethod
    def deserialize(cls, type_name, text):
        """
        Returns a tagged value from a vCD type name and the text of the value.

        Raises ``ValueError`` if the text is not valid for the type.
        """
        type_ = next((t for t in MetadataType if t.value == type_name), MetadataType.STRING)
        text = text or ''
        if type_ is MetadataType.NUMBER:
            # Number actually means int, but the number can be in the format 10.0
            try:
                return cls(type_, int(text))
            except ValueError:
                return cls(type_, int(float(text)))
        elif type_ is MetadataType.BOOLEAN:
            return cls(type_, text.strip().lower() == 'true')
        elif type_ is MetadataType.DATETIME:
            return cls(type_, dateutil.parser.isoparse(text))
        else:
            return cls(type_, text)


###############################################################################
## Desired state
###############################################################################


@enum.unique
class AllocationMode(enum.Enum):
    """
    IP address allocation modes for a network connection.
    """
    MANUAL = 'MANUAL'
    POOL = 'POOL'
    DHCP = 'DHCP'


@dataclass(frozen = True)
class NetworkInterfaceSpec:
    """
    Represents a network interface of a VM.
    """
    #: The name of the network to connect to
    network: str
    #: The position of the interface, which becomes the connection index
    index: int
    #: How the IP address is allocated
    allocation_mode: AllocationMode = AllocationMode.POOL
    #: The IP address to use in MANUAL mode
    ip_address: Optional[str] = None
    #: Indicates that this interface is the primary one
    primary: bool = False


@dataclass(frozen = True)
class DiskSpec:
    """
    Represents a disk to add to a VM, in addition to the template's base disk.
    """
    #: The name of the disk
    name: str
    #: The size of the disk in MB
    size: int
    #: The order in which the disk is created
    position: int = 0


@dataclass(frozen = True)
class VmSpec:
    """
    Represents the desired state of a single VM.
    """
    #: The name of the VM
    #: If not given, it is derived from the vApp name, see ProvisioningSpec.vm_name
    name: Optional[str] = None
    #: The name of the VM in the catalog template to clone
    #: If not given, the first VM in the template is used
    source_vm: Optional[str] = None
    #: The number of virtual CPUs
    cpu: Optional[int] = None
    #: The memory size in MB
    memory: Optional[int] = None
    #: The network interfaces, ordered by index
    network_interfaces: Sequence[NetworkInterfaceSpec] = ()
    #: The extra disks, in creation order
    disks: Sequence[DiskSpec] = ()
    #: The metadata entries
    metadata: Mapping[str, MetadataValue] = field(default_factory = dict)
    #: The guest customization script body
    script: Optional[str] = None
    #: The computer name for guest customization
    #: If not given, the VM name is used
    computer_name: Optional[str] = None
    #: The name of the storage profile
    storage_profile: Optional[str] = None

    @property
    def primary_index(self):
        """
        The index of the primary network interface, or ``None`` if there are
        no interfaces.
        """
        primary = next((nic for nic in self.network_interfaces if nic.primary), None)
        if primary is not None:
            return primary.index
        return 0 if self.network_interfaces else None


@dataclass(frozen = True)
class ProvisioningSpec:
    """
    Represents the desired state of a vApp.
    """
    #: The name of the vApp
    name: str
    #: The name of the virtual datacenter to create the vApp in
    vdc_name: str
    #: The name of the catalog containing the template
    catalog: str
    #: The name of the vApp template in the catalog
    catalog_item: str
    #: The VMs in the vApp
    vms: Sequence[VmSpec] = ()
    #: Indicates if the VMs should be powered on once configured
    power_on: bool = True

    @property
    def networks(self):
        """
        The names of the networks used by the VMs, in order of first use.
        """
        seen = []
        for vm in self.vms:
            for nic in vm.network_interfaces:
                if nic.network not in seen:
                    seen.append(nic.network)
        return tuple(seen)

    def vm_name(self, position):
        """
        Returns the name for the VM at the given position.
        """
        vm = self.vms[position]
        if vm.name:
            return vm.name
        elif len(self.vms) == 1:
            return self.name
        else:
            return '{}-{}'.format(self.name, position)


@dataclass(frozen = True)
class LaunchOptions:
    """
    Options for a launch.
    """
    #: Indicates if VMs should be powered on
    power_on: bool = True
    #: Indicates if created resources should be kept when a launch fails
    retain_on_failure: bool = False
    #: The maximum time to wait for a single task, in seconds
    task_timeout: float = 3600
    #: The interval between polls of a task, in seconds
    poll_interval: float = 2
    #: The number of times to retry a request that could not reach the control plane
    request_retries: int = 3
    #: The backoff between retries, in seconds (multiplied by the attempt number)
    retry_backoff: float = 1


###############################################################################
## Control plane documents
###############################################################################


@dataclass(frozen = True)
class Vdc:
    """
    Represents a virtual datacenter.
    """
    href: str
    name: str
    #: Mapping of available network name => href
    networks: Mapping[str, str] = field(default_factory = dict)
    #: Mapping of storage profile name => href
    storage_profiles: Mapping[str, str] = field(default_factory = dict)


@dataclass(frozen = True)
class TemplateVm:
    """
    Represents a VM inside a vApp template.
    """
    href: str
    name: str


@dataclass(frozen = True)
class VappTemplate:
    """
    Represents a vApp template from a catalog.
    """
    href: str
    name: str
    vms: Sequence[TemplateVm] = ()

    def find_vm(self, name = None):
        """
        Returns the template VM with the given name, or the first VM if no name
        is given. Returns ``None`` if there is no such VM.
        """
        if name is None:
            return self.vms[0] if self.vms else None
        return next((vm for vm in self.vms if vm.name == name), None)


@dataclass(frozen = True)
class Disk:
    """
    Represents a hard disk attached to a VM.
    """
    #: The name of the disk, e.g. 'Hard disk 2'
    name: str
    #: The size of the disk in MB
    size: int
    #: The instance id of the disk within the hardware section
    instance_id: Optional[int] = None


@dataclass(frozen = True)
class NetworkConnection:
    """
    Represents a network connection of a VM.
    """
    network: str
    #: The connection index, as reported by the control plane (a string)
    index: str
    allocation_mode: str
    ip_address: Optional[str] = None
    is_connected: bool = True
    mac_address: Optional[str] = None


@dataclass(frozen = True)
class GuestCustomization:
    """
    Represents the guest customization section of a VM.
    """
    enabled: bool = False
    script: Optional[str] = None
    computer_name: Optional[str] = None


@dataclass(frozen = True)
class Vm:
    """
    Represents a VM in a vApp.
    """
    href: str
    name: str
    status: ResourceStatus = ResourceStatus.UNKNOWN
    #: The number of virtual CPUs
    cpu: Optional[int] = None
    #: The memory size in MB
    memory: Optional[int] = None
    #: All the disks of the VM, including the base disk, ordered by instance id
    disks: Sequence[Disk] = ()
    #: The index of the primary network connection, as a string
    primary_network_index: Optional[str] = None
    network_connections: Sequence[NetworkConnection] = ()
    customization: GuestCustomization = GuestCustomization()
    #: The name of the storage profile
    storage_profile: Optional[str] = None

    @property
    def id(self):
        return resource_id(self.href)

    @property
    def primary_connection(self):
        """
        The primary network connection, or ``None``.
        """
        return next(
            (
                conn
                for conn in self.network_connections
                if conn.index == self.primary_network_index
            ),
            None
        )


@dataclass(frozen = True)
class Vapp:
    """
    Represents a vApp.
    """
    href: str
    name: str
    status: ResourceStatus = ResourceStatus.UNKNOWN
    #: The names of the vApp networks
    networks: Sequence[str] = ()
    vms: Sequence[Vm] = ()
    #: The href of the vDC that the vApp lives in, if known
    vdc_href: Optional[str] = None
    #: Indicates if the vApp is deployed, i.e. must be undeployed before deletion
    deployed: bool = False

    @property
    def id(self):
        return resource_id(self.href)

    def find_vm(self, name):
        """
        Returns the VM with the given name or ``None``.
        """
        return next((vm for vm in self.vms if vm.name == name), None)
