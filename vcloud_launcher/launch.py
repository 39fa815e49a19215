"""
This module contains the launch orchestrator, which takes a provisioning spec
all the way to a running vApp, and cleans up after itself if it can't.
"""

import concurrent.futures
import enum
import logging
import threading
from dataclasses import dataclass
from typing import Any, Optional

from . import dto, errors
from .controlplane import exceptions as cp_exceptions
from .configurators import DEFAULT_CONFIGURATORS
from .provisioner import VappProvisioner
from .tasks import TaskWaiter


_log = logging.getLogger(__name__)


@enum.unique
class LaunchState(enum.Enum):
    """
    The states of a launch.
    """
    PENDING = 'PENDING'
    VAPP_CREATING = 'VAPP_CREATING'
    VMS_PROVISIONING = 'VMS_PROVISIONING'
    COMPLETE = 'COMPLETE'
    FAILED = 'FAILED'


@dataclass(frozen = True)
class LaunchResult:
    """
    The outcome of launching a single spec with :py:meth:`Launch.run_all`.
    """
    spec: dto.ProvisioningSpec
    #: The launched vApp, if the launch succeeded
    vapp: Optional[dto.Vapp] = None
    #: The error, if the launch failed
    error: Optional[Any] = None

    @property
    def ok(self):
        return self.error is None


class Launch:
    """
    Launches a single vApp.

    A launch owns every vApp it creates until it completes. If it fails, the
    vApps it created are deleted unless ``retain_on_failure`` is set.

    :param session: The :py:class:`~vcloud_launcher.controlplane.Session`
    :param waiter: The :py:class:`~vcloud_launcher.tasks.TaskWaiter` to use
                   If not given, one is created from the launch options
    :param configurators: The configurators to apply to each VM, in order
    """
    def __init__(self, session, waiter = None, configurators = DEFAULT_CONFIGURATORS):
        self.session = session
        self.waiter = waiter
        self.configurators = configurators
        self.state = LaunchState.PENDING
        #: The states that the launch has been through, in order
        self.history = [LaunchState.PENDING]
        #: The hrefs of the vApps created by the launch
        self.created = []

    def _transition(self, spec, state):
        _log.info('[%s] %s -> %s', spec.name, self.state.value, state.value)
        self.state = state
        self.history.append(state)

    @errors.convert_exceptions
    def _validate(self, spec):
        """
        Checks that everything the spec references exists, and that the vApp
        name is not already taken.
        """
        vdc = self.session.get_vdc(spec.vdc_name)
        template = self.session.get_template(spec.catalog, spec.catalog_item)
        for position, vm_spec in enumerate(spec.vms):
            if template.find_vm(vm_spec.source_vm) is None:
                raise errors.NotFoundError(
                    'Template {} has no VM {} (required by {})'.format(
                        template.name, vm_spec.source_vm, spec.vm_name(position)
                    ),
                    template.href
                )
        missing = [n for n in spec.networks if n not in vdc.networks]
        if missing:
            raise errors.NotFoundError(
                'Networks do not exist in vDC {}: {}'.format(vdc.name, ', '.join(missing)),
                vdc.href
            )
        for vm_spec in spec.vms:
            if vm_spec.storage_profile and vm_spec.storage_profile not in vdc.storage_profiles:
                raise errors.NotFoundError(
                    'Storage profile {} does not exist in vDC {}'.format(
                        vm_spec.storage_profile, vdc.name
                    ),
                    vdc.href
                )
        existing = self.session.find_vapp(vdc, spec.name)
        if existing is not None:
            raise errors.ConflictError(
                'vApp {} already exists in vDC {}'.format(spec.name, vdc.name),
                existing.href
            )
        return vdc, template

    def run(self, spec, options = None, cancel = None):
        """
        Launches the vApp described by the given spec.

        :param spec: The :py:class:`~vcloud_launcher.dto.ProvisioningSpec`
        :param options: The :py:class:`~vcloud_launcher.dto.LaunchOptions`
        :param cancel: A ``threading.Event`` that cancels the launch when set
        :returns: The launched :py:class:`~vcloud_launcher.dto.Vapp`
        """
        options = options or dto.LaunchOptions()
        waiter = self.waiter or TaskWaiter.from_options(self.session, options)
        provisioner = VappProvisioner(
            self.session, waiter, options, cancel, self.configurators
        )
        try:
            vdc, template = self._validate(spec)
            self._transition(spec, LaunchState.VAPP_CREATING)
            vapp = provisioner.create_vapp(spec, vdc, template, self.created.append)
            self._transition(spec, LaunchState.VMS_PROVISIONING)
            vapp = provisioner.provision_vms(vapp, spec, vdc, template)
        except Exception as exc:
            self._transition(spec, LaunchState.FAILED)
            _log.error('[%s] Launch failed: %s', spec.name, exc)
            self._cleanup(spec, exc, waiter, options)
            raise
        self._transition(spec, LaunchState.COMPLETE)
        return vapp

    @errors.convert_exceptions
    def _delete_vapp(self, href, waiter, options):
        try:
            vapp = self.session.get_vapp(href)
        except cp_exceptions.NoSuchResourceError:
            _log.info('[%s] vApp no longer exists', href)
            return
        if vapp.deployed:
            waiter.run(
                self.session.set_power_state, href, False,
                resource = href, timeout = options.task_timeout
            )
        waiter.run(self.session.delete_vapp, href, resource = href, timeout = options.task_timeout)

    def _cleanup(self, spec, primary, waiter, options):
        """
        Deletes the vApps created by the launch, attaching any failure to the
        primary error.
        """
        if not self.created:
            return
        if options.retain_on_failure:
            _log.warning('[%s] Retaining vApp(s) after failure: %s',
                         spec.name, ', '.join(self.created))
            return
        for href in list(reversed(self.created)):
            _log.info('[%s] Deleting vApp %s', spec.name, href)
            try:
                self._delete_vapp(href, waiter, options)
            except errors.Error as exc:
                _log.exception('[%s] Failed to delete vApp %s', spec.name, href)
                failure = errors.CleanupFailure(
                    'Failed to delete vApp: {}'.format(exc), href
                )
                failure.__cause__ = exc
                primary.cleanup_error = failure
            else:
                self.created.remove(href)

    @classmethod
    def run_all(cls, session, specs, options = None, continue_on_error = False,
                     max_workers = 1, cancel = None, **kwargs):
        """
        Launches each of the given specs in its own :py:class:`Launch`.

        The launches run one after another, or concurrently if ``max_workers``
        is greater than one. Unless ``continue_on_error`` is set, the first
        failure stops any launches that have not yet started.

        :param session: The :py:class:`~vcloud_launcher.controlplane.Session`
        :param specs: The :py:class:`~vcloud_launcher.dto.ProvisioningSpec`s
        :param options: The :py:class:`~vcloud_launcher.dto.LaunchOptions`
        :param continue_on_error: Indicates whether to keep going after a failure
        :param max_workers: The maximum number of launches to run at once
        :param cancel: A ``threading.Event`` that cancels all the launches when set
        :param **kwargs: Passed to the :py:class:`Launch` constructor
        :returns: A list of :py:class:`LaunchResult`, in the same order as the specs
        """
        stop = threading.Event()

        def launch(spec):
            if stop.is_set():
                return LaunchResult(
                    spec, error = errors.RunCancelledError(
                        'Not started due to an earlier failure', spec.name
                    )
                )
            if cancel is not None and cancel.is_set():
                return LaunchResult(
                    spec, error = errors.RunCancelledError('Launch was cancelled', spec.name)
                )
            try:
                vapp = cls(session, **kwargs).run(spec, options, cancel)
            except errors.Error as exc:
                if not continue_on_error:
                    stop.set()
                return LaunchResult(spec, error = exc)
            return LaunchResult(spec, vapp)

        if max_workers > 1:
            with concurrent.futures.ThreadPoolExecutor(max_workers = max_workers) as executor:
                return list(executor.map(launch, specs))
        else:
            return [launch(spec) for spec in specs]
