"""
This module contains the provisioners that create a vApp and its VMs.
"""

import logging

from . import errors
from .configurators import Context, DEFAULT_CONFIGURATORS


_log = logging.getLogger(__name__)


class VmProvisioner:
    """
    Adds VMs to a vApp and configures them.

    :param session: The :py:class:`~vcloud_launcher.controlplane.Session`
    :param waiter: The :py:class:`~vcloud_launcher.tasks.TaskWaiter`
    :param spec: The :py:class:`~vcloud_launcher.dto.ProvisioningSpec` of the vApp
    :param vdc: The target :py:class:`~vcloud_launcher.dto.Vdc`
    :param template: The :py:class:`~vcloud_launcher.dto.VappTemplate` to clone VMs from
    :param options: The :py:class:`~vcloud_launcher.dto.LaunchOptions`
    :param cancel: A ``threading.Event`` that cancels provisioning when set
    :param configurators: The configurators to apply, in order
    """
    def __init__(self, session, waiter, spec, vdc, template,
                       options, cancel = None, configurators = DEFAULT_CONFIGURATORS):
        self.session = session
        self.waiter = waiter
        self.spec = spec
        self.vdc = vdc
        self.template = template
        self.options = options
        self.cancel = cancel
        self.configurators = tuple(configurators)

    @errors.convert_exceptions
    def _find_vm(self, vapp, name):
        vm = self.session.get_vapp(vapp.href).find_vm(name)
        if vm is None:
            raise errors.RemoteFailure('VM {} not found after creation'.format(name), vapp.href)
        return vm

    @errors.convert_exceptions
    def _get_vm(self, href):
        return self.session.get_vm(href)

    def provision(self, vapp, vm_spec, position):
        """
        Creates the VM at the given position of the vApp spec and applies its
        configuration.

        :param vapp: The :py:class:`~vcloud_launcher.dto.Vapp` to add the VM to
        :param vm_spec: The :py:class:`~vcloud_launcher.dto.VmSpec`
        :param position: The position of the VM in the vApp spec
        :returns: The configured :py:class:`~vcloud_launcher.dto.Vm`
        """
        name = self.spec.vm_name(position)
        template_vm = self.template.find_vm(vm_spec.source_vm)
        if template_vm is None:
            cause = errors.NotFoundError(
                'Template {} has no VM {}'.format(self.template.name, vm_spec.source_vm),
                self.template.href
            )
            raise errors.VmProvisioningError(cause, name)
        _log.info('[%s] Creating VM %s from %s', vapp.name, name, template_vm.name)
        try:
            self.waiter.run(
                self.session.create_vm, vapp, template_vm, name,
                resource = vapp.href,
                cancel = self.cancel,
                timeout = self.options.task_timeout
            )
            vm = self._find_vm(vapp, name)
        except errors.Error as exc:
            raise errors.VmProvisioningError(exc, name) from exc
        context = Context(
            self.session, self.waiter, self.spec, self.vdc, vapp, self.options, self.cancel
        )
        applied = []
        for configurator in self.configurators:
            try:
                if configurator.configure(vm, vm_spec, context):
                    applied.append(configurator.name)
            except errors.Error as exc:
                _log.error('[%s] Step %s failed for VM %s: %s',
                           vapp.name, configurator.name, name, exc)
                raise errors.VmProvisioningError(exc, name, vm, applied) from exc
        try:
            return self._get_vm(vm.href)
        except errors.Error as exc:
            raise errors.VmProvisioningError(exc, name, vm, applied) from exc


class VappProvisioner:
    """
    Creates a vApp and provisions its VMs one by one.

    :param session: The :py:class:`~vcloud_launcher.controlplane.Session`
    :param waiter: The :py:class:`~vcloud_launcher.tasks.TaskWaiter`
    :param options: The :py:class:`~vcloud_launcher.dto.LaunchOptions`
    :param cancel: A ``threading.Event`` that cancels provisioning when set
    :param configurators: The configurators to apply to each VM, in order
    """
    def __init__(self, session, waiter, options, cancel = None,
                       configurators = DEFAULT_CONFIGURATORS):
        self.session = session
        self.waiter = waiter
        self.options = options
        self.cancel = cancel
        self.configurators = configurators

    @errors.convert_exceptions
    def _get_vapp(self, href):
        return self.session.get_vapp(href)

    @errors.convert_exceptions
    def _resolve(self, spec):
        return (
            self.session.get_vdc(spec.vdc_name),
            self.session.get_template(spec.catalog, spec.catalog_item)
        )

    def create_vapp(self, spec, vdc, template, on_created = None):
        """
        Creates the empty vApp, with a vApp network bridged to each vDC network
        used by the VMs.

        The href of the vApp is passed to ``on_created`` as soon as the control
        plane accepts the request, i.e. before the creation has finished.

        :returns: The created :py:class:`~vcloud_launcher.dto.Vapp`
        """
        _log.info('[%s] Creating vApp in %s from %s/%s',
                  spec.name, vdc.name, spec.catalog, spec.catalog_item)
        task = self.waiter.request(
            self.session.create_vapp, vdc, spec.name, template, spec.networks,
            resource = spec.name, cancel = self.cancel
        )
        if on_created is not None and task.owner:
            on_created(task.owner)
        task = self.waiter.wait(task, timeout = self.options.task_timeout, cancel = self.cancel)
        return self._get_vapp(task.owner)

    def provision_vms(self, vapp, spec, vdc, template):
        """
        Provisions the VMs of the spec in order.

        :returns: The refreshed :py:class:`~vcloud_launcher.dto.Vapp`
        """
        vm_provisioner = VmProvisioner(
            self.session, self.waiter, spec, vdc, template,
            self.options, self.cancel, self.configurators
        )
        vms = []
        for position, vm_spec in enumerate(spec.vms):
            try:
                vms.append(vm_provisioner.provision(vapp, vm_spec, position))
            except errors.Error as exc:
                raise errors.VappProvisioningError(exc, vapp, vms) from exc
        return self._get_vapp(vapp.href)

    def provision(self, spec, on_created = None):
        """
        Creates the vApp for the given spec and provisions all its VMs.

        :param spec: The :py:class:`~vcloud_launcher.dto.ProvisioningSpec`
        :param on_created: Called with the href of the vApp once it is accepted
        :returns: The provisioned :py:class:`~vcloud_launcher.dto.Vapp`
        """
        vdc, template = self._resolve(spec)
        vapp = self.create_vapp(spec, vdc, template, on_created)
        return self.provision_vms(vapp, spec, vdc, template)
