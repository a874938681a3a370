"""Supervised service client.

A :class:`ServiceClient` binds one service directory to one
:class:`~svcmgr.profiles.BackendProfile`. It talks directly to the supervisor
of the service (``runsv``, ``supervise`` or ``s6-supervise``) through the
files it maintains::

    <service>/
        supervise/
            control     named pipe, one command character per operation
            status      binary status record

No state is cached: every call goes back to the supervisor files.
"""

import errno
import logging
import os
import threading
import time

from svcmgr import _utils
from svcmgr import exc
from svcmgr import logcontext
from svcmgr import profiles
from svcmgr import status as svc_status
from svcmgr import watcher as svc_watcher

_LOGGER = logging.getLogger(__name__)

#: Default deadline of status reads and control writes, in seconds.
DEFAULT_TIMEOUT = 5.0

#: Attempts at reading a complete status record.
DEFAULT_RETRY_ATTEMPTS = 5

#: First pause between two attempts, doubled after each one.
DEFAULT_RETRY_BACKOFF = 0.01

_MAX_BACKOFF = 1.0

_MISSING_ERRNOS = (errno.ENOENT, errno.ENOTDIR)
_RETRY_ERRNOS = (errno.EAGAIN, errno.EWOULDBLOCK, errno.EINTR)


class ServiceClient:
    """Control and status access to one supervised service.

    :param ``str`` service_dir:
        Service directory. A bare name is resolved against the service root
        of the profile.
    :param ``BackendProfile`` profile:
        Suite the service is supervised by (runit when not given).
    :param ``float`` timeout:
        Deadline applied to status reads and control writes when the caller
        does not provide one.
    :param ``float`` poll_interval:
        Sampling interval of watch and wait.
    """
    __slots__ = (
        '_dir',
        '_profile',
        '_timeout',
        '_poll_interval',
        '_retry_attempts',
        '_retry_backoff',
        '_watcher',
        '_watcher_lock',
        '_log',
    )

    def __init__(self, service_dir, profile=None, timeout=DEFAULT_TIMEOUT,
                 poll_interval=svc_watcher.DEFAULT_POLL_INTERVAL,
                 retry_attempts=DEFAULT_RETRY_ATTEMPTS,
                 retry_backoff=DEFAULT_RETRY_BACKOFF):
        if profile is None:
            profile = profiles.get_profile(profiles.BackendKind.runit)

        if os.sep not in service_dir:
            service_dir = os.path.join(profile.config.service_dir, service_dir)

        self._dir = os.path.abspath(service_dir)
        self._profile = profile
        self._timeout = timeout
        self._poll_interval = poll_interval
        self._retry_attempts = max(1, retry_attempts)
        self._retry_backoff = retry_backoff
        self._watcher = None
        self._watcher_lock = threading.Lock()
        self._log = logcontext.ServiceAdapter(
            _LOGGER, (profile.kind, self._dir)
        )

    def __repr__(self):
        return '{type}({kind}, {svc!r})'.format(
            type=self.__class__.__name__,
            kind=self._profile.kind.value,
            svc=self._dir,
        )

    @property
    def service_dir(self):
        """Absolute path of the service directory."""
        return self._dir

    @property
    def name(self):
        """Name of the service."""
        return os.path.basename(self._dir)

    @property
    def profile(self):
        """Profile of the supervision suite."""
        return self._profile

    @property
    def control_path(self):
        """Path of the control pipe."""
        return os.path.join(self._dir, self._profile.control_file)

    @property
    def status_path(self):
        """Path of the status file."""
        return os.path.join(self._dir, self._profile.status_file)

    def _error(self, error_cls, msg, **kwargs):
        return error_cls(
            msg, service_dir=self._dir, kind=self._profile.kind, **kwargs
        )

    def _deadline(self, timeout):
        if timeout is None:
            timeout = self._timeout
        return _utils.Deadline(timeout)

    def status(self, timeout=None):
        """Read and decode the current status of the service.

        Incomplete records, as seen while the supervisor rewrites the file,
        are retried a few times before giving up.

        :returns ``Status``:
            Current status.
        :raises ``exc.BackendUnavailableError``:
            If the service is not supervised.
        :raises ``exc.DecodeError``:
            If the record stays malformed.
        :raises ``exc.DeadlineExceededError``:
            If `timeout` elapsed while retrying.
        """
        deadline = self._deadline(timeout)
        backoff = self._retry_backoff
        attempt = 0

        while True:
            attempt += 1
            try:
                data = _utils.status_read(
                    self.status_path, self._profile.max_status_size
                )
            except (IOError, OSError) as err:
                if err.errno in _MISSING_ERRNOS:
                    raise self._error(
                        exc.BackendUnavailableError,
                        'status file missing, supervisor not running'
                    )
                raise self._error(
                    exc.SupervisionError,
                    'unable to read status: {}'.format(err)
                )

            try:
                return svc_status.decode_status(data, self._profile)
            except exc.DecodeError as err:
                if attempt >= self._retry_attempts:
                    raise self._error(
                        exc.DecodeError, err.message, size=err.size
                    )
                self._log.debug(
                    'Incomplete status record (%d bytes), retrying',
                    len(data)
                )

            if deadline.expired():
                raise self._error(
                    exc.DeadlineExceededError,
                    'timed out reading status'
                )
            time.sleep(deadline.bound(backoff))
            backoff = min(backoff * 2, _MAX_BACKOFF)

    def control(self, operation, timeout=None):
        """Send a control command to the supervisor.

        The write is non-blocking: a missing supervisor is reported right
        away, a full pipe is retried until the deadline.

        :param ``Operation|str`` operation:
            Operation to perform.
        :raises ``exc.UnsupportedOperationError``:
            If the suite has no encoding for `operation`. Nothing is written.
        :raises ``exc.ControlChannelUnavailableError``:
            If the control pipe is missing or has no reader.
        :raises ``exc.DeadlineExceededError``:
            If the command could not be written in time.
        """
        operation = profiles.Operation(operation)
        command = self._profile.control_char(
            operation, service_dir=self._dir
        ).encode()

        deadline = self._deadline(timeout)
        backoff = self._retry_backoff

        while True:
            try:
                _utils.control_write(self.control_path, command)
                self._log.debug('Sent %s (%r)', operation.value, command)
                return

            except OSError as err:
                if err.errno in _MISSING_ERRNOS:
                    raise self._error(
                        exc.ControlChannelUnavailableError,
                        'control pipe missing, supervisor not running'
                    )
                if err.errno == errno.ENXIO:
                    raise self._error(
                        exc.ControlChannelUnavailableError,
                        'no supervisor reading the control pipe'
                    )
                if err.errno not in _RETRY_ERRNOS:
                    raise self._error(
                        exc.SupervisionError,
                        'unable to send {}: {}'.format(operation.value, err)
                    )
                self._log.debug('Control pipe busy, retrying')

            if deadline.expired():
                raise self._error(
                    exc.DeadlineExceededError,
                    'timed out sending {}'.format(operation.value)
                )
            time.sleep(deadline.bound(backoff))
            backoff = min(backoff * 2, _MAX_BACKOFF)

    def up(self, timeout=None):
        """Start the service and keep it up."""
        self.control(profiles.Operation.up, timeout=timeout)

    def once(self, timeout=None):
        """Start the service, do not restart it when it exits."""
        self.control(profiles.Operation.once, timeout=timeout)

    def down(self, timeout=None):
        """Stop the service and keep it down."""
        self.control(profiles.Operation.down, timeout=timeout)

    def term(self, timeout=None):
        """Send SIGTERM to the service."""
        self.control(profiles.Operation.term, timeout=timeout)

    def kill(self, timeout=None):
        """Send SIGKILL to the service."""
        self.control(profiles.Operation.kill, timeout=timeout)

    def quit(self, timeout=None):
        """Send SIGQUIT to the service."""
        self.control(profiles.Operation.quit, timeout=timeout)

    def interrupt(self, timeout=None):
        """Send SIGINT to the service."""
        self.control(profiles.Operation.interrupt, timeout=timeout)

    def hup(self, timeout=None):
        """Send SIGHUP to the service."""
        self.control(profiles.Operation.hup, timeout=timeout)

    def alarm(self, timeout=None):
        """Send SIGALRM to the service."""
        self.control(profiles.Operation.alarm, timeout=timeout)

    def pause(self, timeout=None):
        """Send SIGSTOP to the service."""
        self.control(profiles.Operation.pause, timeout=timeout)

    def cont(self, timeout=None):
        """Send SIGCONT to the service."""
        self.control(profiles.Operation.cont, timeout=timeout)

    def usr1(self, timeout=None):
        """Send SIGUSR1 to the service."""
        self.control(profiles.Operation.usr1, timeout=timeout)

    def usr2(self, timeout=None):
        """Send SIGUSR2 to the service."""
        self.control(profiles.Operation.usr2, timeout=timeout)

    def exit(self, timeout=None):
        """Make the supervisor exit once the service is down."""
        self.control(profiles.Operation.exit, timeout=timeout)

    def is_supervised(self):
        """Checks if a supervisor is attached to the service."""
        return _utils.has_reader(self.control_path)

    def _get_watcher(self):
        with self._watcher_lock:
            if self._watcher is None:
                self._watcher = svc_watcher.StatusWatcher(
                    self.status,
                    poll_interval=self._poll_interval,
                    name=self.name
                )
            return self._watcher

    def watch(self, timeout=None, cancel=None):
        """Stream status changes of the service.

        The first event is the current status, following events are only
        produced when the status changes.

        :param ``float`` timeout:
            Lifetime of the stream, unbounded when ``None``.
        :param ``threading.Event`` cancel:
            Terminates the stream when set.
        :returns ``Watch``:
            Iterable of ``WatchEvent`` with a ``stop()`` method.
        """
        return svc_watcher.Watch(
            self._get_watcher(), timeout=timeout, cancel=cancel
        )

    def wait(self, states=None, timeout=None, cancel=None):
        """Wait for the service to reach one of `states`.

        With no `states`, wait for the first status change after the call.

        :param ``iterable`` states:
            Target ``State`` values.
        :returns ``Status``:
            The matching status.
        :raises ``exc.DeadlineExceededError``:
            If `timeout` elapsed or `cancel` was set first.
        """
        targets = frozenset(svc_status.State(state) for state in states or ())
        deadline = _utils.Deadline(timeout)

        if targets:
            current = self.status(timeout=deadline.remaining())
            if current.state in targets:
                return current

        # Only samples taken after subscribing count, the snapshot read
        # right after it is the baseline.
        with svc_watcher.Watch(self._get_watcher(),
                               timeout=deadline.remaining(),
                               cancel=cancel,
                               replay=False) as stream:
            baseline = self.status(timeout=deadline.remaining())
            if baseline.state in targets:
                return baseline

            for event in stream:
                if event.error is not None:
                    raise event.error

                if targets:
                    if event.status.state in targets:
                        return event.status
                elif event.status != baseline:
                    return event.status

        raise self._error(
            exc.DeadlineExceededError,
            'timed out waiting for {}'.format(
                ', '.join(sorted(state.value for state in targets))
                or 'a status change'
            )
        )


__all__ = [
    'DEFAULT_TIMEOUT',
    'ServiceClient',
]
