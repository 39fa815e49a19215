"""
This module defines the errors that can be raised while launching a vApp.

Every error is structured: it has a ``kind`` that callers can branch on, a
human-readable ``detail`` and the ``resource`` (href or name) that it concerns.
"""

import functools

from .controlplane import exceptions as cp_exceptions


class Error(Exception):
    """
    Base class for all other errors in this module.
    """
    #: The kind of the error
    kind = 'Error'

    def __init__(self, detail, resource = None):
        super().__init__(detail)
        self.detail = detail
        self.resource = resource
        #: A :py:class:`CleanupFailure` if cleanup was attempted after this
        #: error and did not succeed
        self.cleanup_error = None

    def __str__(self):
        if self.resource:
            return '[{}] {}'.format(self.resource, self.detail)
        return self.detail


class ConfigurationError(Error):
    """
    Raised when a configuration file is invalid.
    """
    kind = 'ConfigurationError'

    def __init__(self, detail, errors = None, resource = None):
        super().__init__(detail, resource)
        self._errors = errors or {}

    @property
    def errors(self):
        """
        Mapping of field path => message for each invalid field.
        """
        return self._errors

    def __str__(self):
        lines = [super().__str__()]
        lines.extend('  {}: {}'.format(path, msg) for path, msg in sorted(self.errors.items()))
        return '\n'.join(lines)


class ValidationError(Error):
    """
    Raised when the desired state references something that does not exist, or
    the control plane rejects a request as invalid.
    """
    kind = 'ValidationError'


class NotFoundError(ValidationError):
    """
    Raised when a named object (e.g. a storage profile) cannot be found.
    """
    kind = 'NotFoundError'


class RemoteFailure(Error):
    """
    Raised when the control plane reports that an operation failed.
    """
    kind = 'RemoteFailure'


class TaskTimeoutError(Error):
    """
    Raised when a task does not reach a terminal state in time.
    """
    kind = 'Timeout'


class TaskCancelledError(RemoteFailure):
    """
    Raised when a task is cancelled or aborted on the control plane.
    """
    kind = 'Cancelled'


class RunCancelledError(Error):
    """
    Raised when the caller cancels a launch.
    """
    kind = 'Cancelled'


class CapacityError(RemoteFailure):
    """
    Raised when the control plane rejects a requested size.
    """
    kind = 'CapacityError'


class ConflictError(Error):
    """
    Raised when the target name is already in use.
    """
    kind = 'ConflictError'


class PartialConfigurationError(Error):
    """
    Raised when a multi-step configuration fails after some steps were applied.
    """
    kind = 'PartialConfigurationError'

    def __init__(self, detail, resource = None, applied = ()):
        super().__init__(detail, resource)
        #: The steps that were applied before the failure
        self.applied = tuple(applied)


class MetadataError(PartialConfigurationError):
    """
    Raised when at least one metadata entry could not be written.

    All the entries are attempted; this error lists every key that failed.
    """
    def __init__(self, failures, resource = None, applied = ()):
        self.failures = dict(failures)
        super().__init__(
            'Failed to write metadata keys: {}'.format(', '.join(sorted(self.failures))),
            resource,
            applied
        )


class CleanupFailure(Error):
    """
    Raised (or attached to a primary error) when best-effort cleanup fails.
    """
    kind = 'CleanupFailure'


class WrappedError(Error):
    """
    Base class for errors that wrap the error that caused them.

    The kind of a wrapped error is the kind of its cause, so callers can
    branch on what actually went wrong.
    """
    def __init__(self, detail, cause, resource = None):
        super().__init__(detail, resource)
        self.cause = cause

    @property
    def kind(self):
        return getattr(self.cause, 'kind', Error.kind)

    @property
    def root_cause(self):
        """
        The innermost non-wrapper error.
        """
        cause = self.cause
        while isinstance(cause, WrappedError):
            cause = cause.cause
        return cause


class VmProvisioningError(WrappedError):
    """
    Raised when provisioning a VM fails.
    """
    def __init__(self, cause, vm_name, vm = None, applied = ()):
        super().__init__(
            'Failed to provision VM {}: {}'.format(vm_name, cause),
            cause,
            vm.href if vm is not None else vm_name
        )
        self.vm_name = vm_name
        #: The VM reference, or ``None`` if the VM was never created
        self.vm = vm
        #: The configuration steps that completed before the failure
        self.applied = tuple(applied)


class VappProvisioningError(WrappedError):
    """
    Raised when provisioning the VMs of a vApp fails.
    """
    def __init__(self, cause, vapp, vms = ()):
        super().__init__(
            'Failed to provision vApp {}: {}'.format(vapp.name, cause),
            cause,
            vapp.href
        )
        self.vapp = vapp
        #: The VMs that were fully provisioned before the failure
        self.vms = tuple(vms)


def convert(exc, resource = None):
    """
    Returns the error from this module that corresponds to the given control
    plane exception.
    """
    if isinstance(exc, Error):
        return exc
    message = str(exc)
    if isinstance(exc, cp_exceptions.NoSuchResourceError):
        return NotFoundError(message, resource)
    elif isinstance(exc, cp_exceptions.DuplicateNameError):
        return ConflictError(message, resource)
    elif isinstance(exc, (cp_exceptions.BadRequestError, cp_exceptions.InvalidActionError)):
        return ValidationError(message, resource)
    else:
        return RemoteFailure(message, resource)


def convert_exceptions(f):
    """
    Decorator that converts control plane exceptions into errors from this module.
    """
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except cp_exceptions.ControlPlaneError as exc:
            raise convert(exc) from exc
    return wrapper
