"""
This module defines the exceptions that can be raised by control plane sessions.

A lot of the time, errors will be raised with a :py:class:`ProviderSpecificError`
as the cause, i.e. using the ``raise ... from ...`` syntax.

These are transport-level errors. The orchestration layer converts them into
the structured errors of :py:mod:`vcloud_launcher.errors` at the point where
a request is made.
"""


class ControlPlaneError(RuntimeError):
    """Base class for all errors raised by control plane sessions."""

class ProviderConnectionError(ControlPlaneError):
    """Raised if the control plane cannot be connected to."""

class ProviderUnavailableError(ControlPlaneError):
    """Raised when the control plane connects but reports an error."""

class ProviderSpecificError(ControlPlaneError):
    """Base class for provider specific errors."""

class ImplementationError(ControlPlaneError):
    """Raised when an error occurs in the implementation or the implementation
       issues a bad request."""

class AuthenticationError(ControlPlaneError):
    """Raised when authentication with the control plane fails."""

class PermissionsError(ControlPlaneError):
    """Raised when a session has insufficient permissions to perform an action."""

class NoSuchResourceError(ControlPlaneError):
    """Raised when a resource is requested that does not exist."""

class BadRequestError(ControlPlaneError):
    """Raised when a badly formatted request is made to the control plane."""

class BadConfigurationError(ControlPlaneError):
    """Raised when the control plane returns a document the client cannot use."""

class DuplicateNameError(ControlPlaneError):
    """Raised when a name conflicts with a resource that already exists."""

class InvalidActionError(ControlPlaneError):
    """Raised when an action is invalid given the current state of an entity."""
