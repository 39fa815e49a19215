"""
This module provides the task waiter, which mediates every mutation of the
control plane.

Mutating calls return a :py:class:`~vcloud_launcher.dto.Task` straight away.
The waiter polls the task until it reaches a terminal state, and is the only
place where a launch suspends. Polling is never retried: only the request that
submits a task is retried, and only when the control plane could not be
reached, since in that case the request cannot have been accepted.
"""

import logging
import time

from . import errors
from .controlplane import exceptions as cp_exceptions
from .dto import TaskStatus


_log = logging.getLogger(__name__)


class TaskWaiter:
    """
    Submits mutating requests and waits for the resulting tasks.

    The waiter holds no mutable state, so a single instance can be shared by
    threads that drive independent tasks.

    :param session: The :py:class:`~vcloud_launcher.controlplane.Session`
    :param timeout: The default maximum time to wait for a task, in seconds
    :param poll_interval: The default interval between polls, in seconds
    :param retries: The number of times to retry a request that failed to connect
    :param backoff: The backoff between retries, multiplied by the attempt number
    :param clock: Function returning the current time in seconds
    :param sleep: Function used to sleep between polls; if not given, the
                  cancellation event is waited on instead
    """
    def __init__(self, session, timeout = 3600, poll_interval = 2,
                       retries = 3, backoff = 1, clock = time.monotonic, sleep = None):
        if poll_interval <= 0:
            raise ValueError('poll_interval must be strictly positive')
        self.session = session
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.retries = retries
        self.backoff = backoff
        self._clock = clock
        self._sleep = sleep

    @classmethod
    def from_options(cls, session, options, **kwargs):
        """
        Returns a waiter configured from :py:class:`~vcloud_launcher.dto.LaunchOptions`.
        """
        return cls(
            session,
            timeout = options.task_timeout,
            poll_interval = options.poll_interval,
            retries = options.request_retries,
            backoff = options.retry_backoff,
            **kwargs
        )

    def _pause(self, seconds, cancel):
        if self._sleep is not None:
            self._sleep(seconds)
        elif cancel is not None:
            cancel.wait(seconds)
        else:
            time.sleep(seconds)

    def _check_cancelled(self, cancel, resource):
        if cancel is not None and cancel.is_set():
            raise errors.RunCancelledError('Launch was cancelled', resource)

    def wait(self, task, timeout = None, poll_interval = None, cancel = None):
        """
        Polls the given task until it reaches a terminal state.

        :param task: The :py:class:`~vcloud_launcher.dto.Task` to wait for
        :param timeout: The maximum time to wait, in seconds
        :param poll_interval: The interval between polls, in seconds
        :param cancel: A ``threading.Event`` that cancels the wait when set
        :returns: The successful :py:class:`~vcloud_launcher.dto.Task`
        """
        timeout = self.timeout if timeout is None else timeout
        poll_interval = self.poll_interval if poll_interval is None else poll_interval
        if poll_interval <= 0:
            raise ValueError('poll_interval must be strictly positive')
        resource = task.owner or task.href
        deadline = self._clock() + timeout
        while True:
            self._check_cancelled(cancel, resource)
            try:
                task = self.session.get_task(task)
            except cp_exceptions.ControlPlaneError as exc:
                raise errors.RemoteFailure(
                    'Error polling task {}: {}'.format(task.operation, exc), resource
                ) from exc
            _log.debug('[%s] Task %s is %s', resource, task.operation, task.status.value)
            if task.status is TaskStatus.SUCCESS:
                _log.info('[%s] Task %s succeeded', resource, task.operation)
                return task
            elif task.status is TaskStatus.ERROR:
                raise errors.RemoteFailure(
                    task.error or 'Task {} failed'.format(task.operation), resource
                )
            elif task.status in (TaskStatus.CANCELED, TaskStatus.ABORTED):
                raise errors.TaskCancelledError(
                    'Task {} was {}'.format(task.operation, task.status.value), resource
                )
            remaining = deadline - self._clock()
            if remaining <= 0:
                raise errors.TaskTimeoutError(
                    'Task {} did not complete within {}s'.format(task.operation, timeout),
                    resource
                )
            self._pause(min(poll_interval, remaining), cancel)

    def request(self, call, *args, resource = None, cancel = None):
        """
        Submits a mutating request, retrying only when the control plane could
        not be reached.

        Other control plane exceptions are converted into errors from
        :py:mod:`vcloud_launcher.errors`. Nothing is submitted once the
        cancellation event is set, including retries.

        :param call: The session method to call
        :param args: The arguments for the call
        :param resource: The resource to report in errors
        :param cancel: A ``threading.Event`` that cancels the request when set
        :returns: The :py:class:`~vcloud_launcher.dto.Task` returned by the call
        """
        attempt = 0
        while True:
            self._check_cancelled(cancel, resource)
            attempt += 1
            try:
                return call(*args)
            except cp_exceptions.ProviderConnectionError as exc:
                if attempt > self.retries:
                    raise errors.RemoteFailure(
                        'Giving up after {} attempts: {}'.format(attempt, exc), resource
                    ) from exc
                delay = self.backoff * attempt
                _log.warning(
                    '[%s] %s failed to connect (attempt %s), retrying in %ss',
                    resource, call.__name__, attempt, delay
                )
                self._pause(delay, cancel)
            except cp_exceptions.ControlPlaneError as exc:
                raise errors.convert(exc, resource) from exc

    def run(self, call, *args, resource = None, cancel = None, timeout = None):
        """
        Submits a mutating request and waits for the resulting task.

        :returns: The successful :py:class:`~vcloud_launcher.dto.Task`
        """
        task = self.request(call, *args, resource = resource, cancel = cancel)
        return self.wait(task, timeout = timeout, cancel = cancel)
