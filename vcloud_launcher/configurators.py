"""
This module defines the configurators that bring a freshly cloned VM to its
desired state.

Each configurator handles one aspect of a VM and is stateless apart from its
arguments. Every change is made through the task waiter, so a configurator
only returns once the control plane has applied it. The configurators run in
the order given by :py:data:`DEFAULT_CONFIGURATORS`.
"""

import abc
import logging
from dataclasses import dataclass
from typing import Any, Optional

from . import dto, errors


_log = logging.getLogger(__name__)


@dataclass(frozen = True)
class Context:
    """
    Everything a configurator needs to know beyond the VM and its spec.
    """
    #: The control plane session
    session: Any
    #: The :py:class:`~vcloud_launcher.tasks.TaskWaiter`
    waiter: Any
    #: The vApp spec that the VM belongs to
    spec: dto.ProvisioningSpec
    #: The target vDC
    vdc: dto.Vdc
    #: The vApp that the VM lives in
    vapp: dto.Vapp
    options: dto.LaunchOptions = dto.LaunchOptions()
    #: Event that cancels the launch when set
    cancel: Optional[Any] = None

    def run(self, call, *args, resource = None):
        """
        Submits a mutating call and waits for its task.
        """
        return self.waiter.run(
            call, *args,
            resource = resource,
            cancel = self.cancel,
            timeout = self.options.task_timeout
        )


class Configurator(metaclass = abc.ABCMeta):
    """
    Base class for a configurator.
    """
    #: The name of the step, as reported in the list of applied steps
    name = None

    @abc.abstractmethod
    def configure(self, vm, vm_spec, context):
        """
        Applies the configuration of the given spec to the VM.

        :param vm: The :py:class:`~vcloud_launcher.dto.Vm`
        :param vm_spec: The :py:class:`~vcloud_launcher.dto.VmSpec`
        :param context: The :py:class:`Context`
        :returns: ``True`` if anything was changed, ``False`` if there was nothing to do
        """


class ComputeConfigurator(Configurator):
    """
    Sets the number of CPUs and the memory size, as two separate updates.
    """
    name = 'compute'

    def configure(self, vm, vm_spec, context):
        items = [
            (resource, quantity)
            for resource, quantity in (('cpu', vm_spec.cpu), ('memory', vm_spec.memory))
            if quantity is not None
        ]
        applied = []
        for resource, quantity in items:
            _log.info('[%s] Setting %s to %s', vm.name, resource, quantity)
            try:
                context.run(
                    context.session.update_hardware_item, vm, resource, quantity,
                    resource = vm.href
                )
            except errors.RunCancelledError:
                raise
            except errors.Error as exc:
                if not applied:
                    raise
                raise errors.PartialConfigurationError(
                    'Updated {} but failed to update {}: {}'.format(
                        ', '.join(applied), resource, exc
                    ),
                    vm.href,
                    applied
                ) from exc
            applied.append(resource)
        return bool(applied)


class DiskConfigurator(Configurator):
    """
    Appends the extra disks to the VM, in order, keeping its existing disks.
    """
    name = 'disks'

    def configure(self, vm, vm_spec, context):
        if not vm_spec.disks:
            return False
        disks = sorted(vm_spec.disks, key = lambda d: d.position)
        _log.info('[%s] Adding %s disk(s)', vm.name, len(disks))
        try:
            context.run(context.session.update_disks, vm, disks, resource = vm.href)
        except errors.TaskCancelledError:
            raise
        except (errors.ValidationError, errors.RemoteFailure) as exc:
            raise errors.CapacityError(
                'Could not add disks {}: {}'.format(
                    ', '.join('{} ({} MB)'.format(d.name, d.size) for d in disks), exc
                ),
                vm.href
            ) from exc
        return True


class NetworkConfigurator(Configurator):
    """
    Replaces the network connection section of the VM with the interfaces from
    the spec.
    """
    name = 'network'

    def configure(self, vm, vm_spec, context):
        if not vm_spec.network_interfaces:
            return False
        missing = [
            nic.network
            for nic in vm_spec.network_interfaces
            if nic.network not in context.vapp.networks
        ]
        if missing:
            raise errors.ValidationError(
                'Networks not present in vApp: {}'.format(', '.join(missing)),
                vm.href
            )
        connections = [
            dto.NetworkConnection(
                nic.network,
                str(nic.index),
                nic.allocation_mode.value,
                nic.ip_address if nic.allocation_mode is dto.AllocationMode.MANUAL else None
            )
            for nic in sorted(vm_spec.network_interfaces, key = lambda n: n.index)
        ]
        _log.info('[%s] Connecting to %s', vm.name, ', '.join(c.network for c in connections))
        context.run(
            context.session.update_network_section, vm, connections, vm_spec.primary_index,
            resource = vm.href
        )
        return True


class StorageProfileConfigurator(Configurator):
    """
    Moves the VM to the named storage profile of the target vDC.
    """
    name = 'storage_profile'

    def configure(self, vm, vm_spec, context):
        if not vm_spec.storage_profile:
            return False
        href = context.vdc.storage_profiles.get(vm_spec.storage_profile)
        if href is None:
            raise errors.NotFoundError(
                'Storage profile {} does not exist in vDC {}'.format(
                    vm_spec.storage_profile, context.vdc.name
                ),
                vm.href
            )
        _log.info('[%s] Setting storage profile to %s', vm.name, vm_spec.storage_profile)
        context.run(
            context.session.set_storage_profile, vm, vm_spec.storage_profile, href,
            resource = vm.href
        )
        return True


class MetadataConfigurator(Configurator):
    """
    Writes each metadata entry separately.

    Every key is attempted, and the keys that failed are reported together.
    """
    name = 'metadata'

    def configure(self, vm, vm_spec, context):
        if not vm_spec.metadata:
            return False
        applied = []
        failures = {}
        for key, value in vm_spec.metadata.items():
            try:
                context.run(
                    context.session.add_metadata, vm.href, key, value, resource = vm.href
                )
            except errors.RunCancelledError:
                raise
            except errors.Error as exc:
                _log.warning('[%s] Failed to write metadata key %s: %s', vm.name, key, exc)
                failures[key] = exc
            else:
                applied.append(key)
        if failures:
            raise errors.MetadataError(failures, vm.href, applied)
        return True


class GuestCustomizationConfigurator(Configurator):
    """
    Enables guest customization with the script and computer name.
    """
    name = 'guest_customization'

    def configure(self, vm, vm_spec, context):
        computer_name = vm_spec.computer_name or vm.name
        _log.info('[%s] Enabling guest customization as %s', vm.name, computer_name)
        context.run(
            context.session.set_guest_customization, vm, vm_spec.script, computer_name,
            resource = vm.href
        )
        return True


class PowerStateConfigurator(Configurator):
    """
    Powers the VM on, unless the launch asked for it to stay off.
    """
    name = 'power'

    def configure(self, vm, vm_spec, context):
        if not (context.options.power_on and context.spec.power_on):
            _log.info('[%s] Leaving powered off', vm.name)
            return False
        _log.info('[%s] Powering on', vm.name)
        context.run(context.session.set_power_state, vm.href, True, resource = vm.href)
        return True


#: The configurators, in the order they are applied
DEFAULT_CONFIGURATORS = (
    ComputeConfigurator(),
    DiskConfigurator(),
    NetworkConfigurator(),
    StorageProfileConfigurator(),
    MetadataConfigurator(),
    GuestCustomizationConfigurator(),
    PowerStateConfigurator(),
)
