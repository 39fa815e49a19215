"""
This module provides utilities for unit and integration testing using the
unittest module
"""

import abc

from .. import dto
from ..controlplane import mock
from ..tasks import TaskWaiter


class IntegrationTest(metaclass = abc.ABCMeta):
    """
    This class provides functionality for describing an integration test as
    a series of steps as a mixin

    All step methods (even the first!) should take an argument that is the
    result of the previous step
    If there is no previous step, or there was no return value, None will be given
    """

    @abc.abstractmethod
    def steps(self):
        """
        Returns an ordered dictionary mapping step name to a callable for the step
        for each step of the integration test in the order that they must be executed
        """

    def test_integration(self):
        """
        Runs the steps for the integration test as sub-tests
        """
        result = None
        print()  # Print an empty line first for formatting
        for name, step in self.steps().items():
            print("    Running step: {} ...".format(name), end = " ", flush = True)
            result = step(result)
            print("ok")


class FakeClock:
    """
    Clock for the task waiter whose time only moves when it sleeps.
    """
    def __init__(self):
        self.now = 0
        self.sleeps = []

    def time(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


VDC_NAME = 'test-vdc'
CATALOG = 'test-catalog'
CATALOG_ITEM = 'centos-7'


def make_session(**kwargs):
    """
    Returns an in-memory session containing a vDC with two networks and two
    storage profiles, and a template with two VMs.
    """
    vdc = dto.Vdc(
        mock.BASE_URL + '/vdc/vdc-1',
        VDC_NAME,
        {
            'frontend' : mock.BASE_URL + '/network/network-1',
            'backend'  : mock.BASE_URL + '/network/network-2',
        },
        {
            'Standard' : mock.BASE_URL + '/vdcStorageProfile/profile-1',
            'Fast'     : mock.BASE_URL + '/vdcStorageProfile/profile-2',
        }
    )
    template = dto.VappTemplate(
        mock.BASE_URL + '/vAppTemplate/vappTemplate-1',
        CATALOG_ITEM,
        (
            dto.TemplateVm(mock.BASE_URL + '/vm/vm-template-1', 'base'),
            dto.TemplateVm(mock.BASE_URL + '/vm/vm-template-2', 'db'),
        )
    )
    return mock.Session([vdc], { (CATALOG, CATALOG_ITEM): template }, **kwargs)


def make_waiter(session, clock = None, **kwargs):
    """
    Returns a task waiter that never really sleeps.
    """
    clock = clock or FakeClock()
    kwargs.setdefault('timeout', 60)
    kwargs.setdefault('poll_interval', 1)
    return TaskWaiter(session, clock = clock.time, sleep = clock.sleep, **kwargs)


def make_vm_spec(**kwargs):
    """
    Returns a VM spec with two interfaces, two extra disks and some metadata.
    """
    values = dict(
        cpu = 4,
        memory = 8192,
        network_interfaces = (
            dto.NetworkInterfaceSpec('frontend', 0, dto.AllocationMode.MANUAL, '192.168.2.10'),
            dto.NetworkInterfaceSpec('backend', 1, dto.AllocationMode.MANUAL, '192.168.1.10'),
        ),
        disks = (
            dto.DiskSpec('Hard disk 2', 1024, 0),
            dto.DiskSpec('Hard disk 3', 2048, 1),
        ),
        metadata = {
            'is_true'    : dto.MetadataValue.from_python(True),
            'is_integer' : dto.MetadataValue.from_python(-999),
            'is_string'  : dto.MetadataValue.from_python('Hello World'),
        },
        script = '#!/bin/sh\necho "message: hello world"\n',
        storage_profile = 'Fast'
    )
    values.update(kwargs)
    return dto.VmSpec(**values)


def make_spec(name = 'test-vapp', vms = None, **kwargs):
    """
    Returns a provisioning spec for the vDC and template of :py:func:`make_session`.
    """
    return dto.ProvisioningSpec(
        name,
        VDC_NAME,
        CATALOG,
        CATALOG_ITEM,
        tuple(vms) if vms is not None else (make_vm_spec(), ),
        **kwargs
    )
