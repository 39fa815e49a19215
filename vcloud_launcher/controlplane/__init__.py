"""
This module contains the interface that defines the operations that the launcher
requires from the control plane that it drives, e.g. creating vApps and
configuring VMs.

Every mutating operation returns a :py:class:`~vcloud_launcher.dto.Task` that
must be polled (see :py:mod:`vcloud_launcher.tasks`). Read operations return
documents from :py:mod:`vcloud_launcher.dto`.
"""

import abc

from .exceptions import *


class Session(metaclass = abc.ABCMeta):
    """
    Abstract base class for an authenticated session with a control plane.

    Implementations must be safe to use from several threads, as long as the
    threads act on different resources.

    Sessions can also be used as context managers, e.g.:

    ::

        with VCloudSession("https://vcloud.example.com/api", "user@org", "pass") as s:
            vdc = s.get_vdc("my-vdc")
            task = s.create_vapp(vdc, "my-vapp", template, ["my-network"])
    """

    def __enter__(self):
        """
        Context manager entry point - just returns self
        """
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        """
        Context manager exit point - just calls close and lets exceptions propagate
        """
        self.close()

    @abc.abstractmethod
    def get_vdc(self, name):
        """
        Finds a virtual datacenter by name.

        :param name: The name of the vDC
        :returns: A :py:class:`~vcloud_launcher.dto.Vdc`
        """

    @abc.abstractmethod
    def get_template(self, catalog, item):
        """
        Finds a vApp template by catalog and catalog item name.

        :param catalog: The name of the catalog
        :param item: The name of the catalog item
        :returns: A :py:class:`~vcloud_launcher.dto.VappTemplate`
        """

    @abc.abstractmethod
    def find_vapp(self, vdc, name):
        """
        Finds a vApp by name within a vDC.

        :param vdc: The :py:class:`~vcloud_launcher.dto.Vdc`
        :param name: The name of the vApp
        :returns: A :py:class:`~vcloud_launcher.dto.Vapp` or ``None``
        """

    @abc.abstractmethod
    def get_vapp(self, href):
        """
        Gets the vApp with the given href, including its VMs.

        :param href: The href of the vApp
        :returns: A :py:class:`~vcloud_launcher.dto.Vapp`
        """

    @abc.abstractmethod
    def get_vm(self, href):
        """
        Gets the VM with the given href.

        :param href: The href of the VM
        :returns: A :py:class:`~vcloud_launcher.dto.Vm`
        """

    @abc.abstractmethod
    def get_metadata(self, href):
        """
        Gets the metadata attached to a resource.

        :param href: The href of the resource
        :returns: A dictionary of key => :py:class:`~vcloud_launcher.dto.MetadataValue`
        """

    @abc.abstractmethod
    def get_task(self, task):
        """
        Gets the current state of a task. This must not have side effects.

        :param task: The :py:class:`~vcloud_launcher.dto.Task` to refresh
        :returns: The refreshed :py:class:`~vcloud_launcher.dto.Task`
        """

    @abc.abstractmethod
    def create_vapp(self, vdc, name, template, networks):
        """
        Creates an empty vApp from the context of a template, with a vApp network
        bridged to each of the given vDC networks.

        The returned task has the href of the new vApp as its owner.

        :param vdc: The :py:class:`~vcloud_launcher.dto.Vdc` to create the vApp in
        :param name: The name of the vApp
        :param template: The :py:class:`~vcloud_launcher.dto.VappTemplate`
        :param networks: The names of the vDC networks
        :returns: A :py:class:`~vcloud_launcher.dto.Task`
        """

    @abc.abstractmethod
    def create_vm(self, vapp, template_vm, name):
        """
        Adds a VM to a vApp by cloning a VM from a template.

        :param vapp: The :py:class:`~vcloud_launcher.dto.Vapp`
        :param template_vm: The :py:class:`~vcloud_launcher.dto.TemplateVm`
        :param name: The name for the new VM
        :returns: A :py:class:`~vcloud_launcher.dto.Task`
        """

    @abc.abstractmethod
    def update_network_section(self, vm, connections, primary_index):
        """
        Replaces the network connection section of a VM.

        :param vm: The :py:class:`~vcloud_launcher.dto.Vm`
        :param connections: A list of :py:class:`~vcloud_launcher.dto.NetworkConnection`
        :param primary_index: The index of the primary connection
        :returns: A :py:class:`~vcloud_launcher.dto.Task`
        """

    @abc.abstractmethod
    def update_hardware_item(self, vm, resource, quantity):
        """
        Updates a single item of the virtual hardware section of a VM.

        :param vm: The :py:class:`~vcloud_launcher.dto.Vm`
        :param resource: ``cpu`` or ``memory``
        :param quantity: The number of CPUs or the memory size in MB
        :returns: A :py:class:`~vcloud_launcher.dto.Task`
        """

    @abc.abstractmethod
    def update_disks(self, vm, disks):
        """
        Appends disks to the disk section of a VM. The existing disks are kept.

        :param vm: The :py:class:`~vcloud_launcher.dto.Vm`
        :param disks: A list of :py:class:`~vcloud_launcher.dto.DiskSpec`, in order
        :returns: A :py:class:`~vcloud_launcher.dto.Task`
        """

    @abc.abstractmethod
    def add_metadata(self, href, key, value):
        """
        Writes a single metadata entry on a resource.

        :param href: The href of the resource
        :param key: The metadata key
        :param value: The :py:class:`~vcloud_launcher.dto.MetadataValue`
        :returns: A :py:class:`~vcloud_launcher.dto.Task`
        """

    @abc.abstractmethod
    def set_guest_customization(self, vm, script, computer_name):
        """
        Enables guest customization on a VM with the given script and computer name.

        :param vm: The :py:class:`~vcloud_launcher.dto.Vm`
        :param script: The customization script body, or ``None``
        :param computer_name: The computer name
        :returns: A :py:class:`~vcloud_launcher.dto.Task`
        """

    @abc.abstractmethod
    def set_storage_profile(self, vm, name, href):
        """
        Moves a VM to a storage profile.

        :param vm: The :py:class:`~vcloud_launcher.dto.Vm`
        :param name: The name of the storage profile
        :param href: The href of the storage profile
        :returns: A :py:class:`~vcloud_launcher.dto.Task`
        """

    @abc.abstractmethod
    def set_power_state(self, href, on):
        """
        Powers a vApp or VM on, or powers it off and undeploys it.

        :param href: The href of the vApp or VM
        :param on: ``True`` to power on, ``False`` to power off
        :returns: A :py:class:`~vcloud_launcher.dto.Task`
        """

    @abc.abstractmethod
    def delete_vapp(self, href):
        """
        Deletes a vApp. The vApp must be undeployed.

        :param href: The href of the vApp
        :returns: A :py:class:`~vcloud_launcher.dto.Task`
        """

    @abc.abstractmethod
    def close(self):
        """
        Closes the session and frees any resources.

        Should avoid throwing any exceptions, and just do the best it can.
        """
