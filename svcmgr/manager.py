"""Bulk operations over many supervised services.
"""

import collections
import logging
import threading

from concurrent import futures

from svcmgr import _utils
from svcmgr import client as svc_client
from svcmgr import exc
from svcmgr import logcontext
from svcmgr import profiles

_LOGGER = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 10
DEFAULT_TIMEOUT = 5.0


def _unique(services):
    """Drop duplicate services, keeping the first occurrence."""
    return list(collections.OrderedDict.fromkeys(services))


class Manager:
    """Runs one operation across a list of services with bounded concurrency.

    Every service gets its own client and its own deadline; the failure of
    one service never hides the result of another.

    :param ``BackendProfile`` profile:
        Suite of the services (runit when not given).
    :param ``int`` concurrency:
        Maximum number of services handled at the same time.
    :param ``float`` timeout:
        Deadline of each per-service operation, in seconds.
    :param ``callable`` client_factory:
        ``(service_dir, profile, timeout) -> ServiceClient``.
    """
    __slots__ = (
        '_profile',
        '_concurrency',
        '_timeout',
        '_client_factory',
    )

    def __init__(self, profile=None, concurrency=DEFAULT_CONCURRENCY,
                 timeout=DEFAULT_TIMEOUT, client_factory=None):
        if profile is None:
            profile = profiles.get_profile(profiles.BackendKind.runit)
        if client_factory is None:
            client_factory = _default_client_factory

        self._profile = profile
        self._concurrency = max(1, int(concurrency or 1))
        self._timeout = timeout
        self._client_factory = client_factory

    @property
    def profile(self):
        """Profile of the managed services."""
        return self._profile

    @property
    def concurrency(self):
        """Maximum number of services handled at the same time."""
        return self._concurrency

    @property
    def timeout(self):
        """Per-service deadline."""
        return self._timeout

    def _service_timeout(self, deadline):
        """Deadline of one service operation within the call deadline."""
        remaining = deadline.remaining()
        if remaining is None:
            return self._timeout
        if self._timeout is None:
            return remaining
        return min(self._timeout, remaining)

    def _execute(self, services, func, timeout=None, cancel=None):
        """Run `func(client, timeout)` for each service.

        Services not started yet when `cancel` is set or `timeout` elapses
        fail with ``DeadlineExceededError``.

        :returns ``(dict, dict)``:
            Results and errors, keyed by service.
        """
        services = _unique(services)
        results = {}
        errors = {}
        lock = threading.Lock()
        deadline = _utils.Deadline(timeout)

        if not services:
            return results, errors

        def _run(service):
            with logcontext.LogContext(_LOGGER, service) as log:
                if cancel is not None and cancel.is_set():
                    reason = 'cancelled before start'
                elif deadline.expired():
                    reason = 'timed out before start'
                else:
                    reason = None

                if reason is not None:
                    log.debug('Skipped: %s', reason)
                    with lock:
                        errors[service] = exc.DeadlineExceededError(
                            reason, service_dir=service,
                            kind=self._profile.kind
                        )
                    return

                op_timeout = self._service_timeout(deadline)
                try:
                    client = self._client_factory(
                        service, self._profile, op_timeout
                    )
                    result = func(client, op_timeout)
                except exc.SupervisionError as err:
                    log.debug('Failed: %s', err)
                    with lock:
                        errors[service] = err
                    return
                except Exception as err:  # pylint: disable=broad-except
                    log.exception('Unexpected failure')
                    with lock:
                        errors[service] = err
                    return

                with lock:
                    results[service] = result

        workers = min(self._concurrency, len(services))
        with futures.ThreadPoolExecutor(max_workers=workers) as executor:
            for future in [executor.submit(_run, svc) for svc in services]:
                future.result()

        _LOGGER.debug(
            '%d service(s): %d ok, %d failed',
            len(services), len(results), len(errors)
        )
        return results, errors

    def control(self, operation, *services, timeout=None, cancel=None):
        """Send `operation` to every service.

        :param ``float`` timeout:
            Deadline of the whole call, unbounded when ``None``.
        :param ``threading.Event`` cancel:
            Services not started yet when set are not touched.
        :raises ``exc.PartialFailureError``:
            Enumerating every service that failed.
        """
        operation = profiles.Operation(operation)
        _LOGGER.info('%s: %d service(s)', operation.value, len(services))

        _results, errors = self._execute(
            services,
            lambda client, op_timeout: client.control(
                operation, timeout=op_timeout
            ),
            timeout=timeout,
            cancel=cancel,
        )
        if errors:
            raise exc.PartialFailureError(errors, kind=self._profile.kind)

    def up(self, *services, timeout=None, cancel=None):
        """Start every service."""
        self.control(
            profiles.Operation.up, *services, timeout=timeout, cancel=cancel
        )

    def once(self, *services, timeout=None, cancel=None):
        """Start every service once."""
        self.control(
            profiles.Operation.once, *services, timeout=timeout, cancel=cancel
        )

    def down(self, *services, timeout=None, cancel=None):
        """Stop every service."""
        self.control(
            profiles.Operation.down, *services, timeout=timeout, cancel=cancel
        )

    def term(self, *services, timeout=None, cancel=None):
        """Send SIGTERM to every service."""
        self.control(
            profiles.Operation.term, *services, timeout=timeout, cancel=cancel
        )

    def kill(self, *services, timeout=None, cancel=None):
        """Send SIGKILL to every service."""
        self.control(
            profiles.Operation.kill, *services, timeout=timeout, cancel=cancel
        )

    def status(self, *services, timeout=None, cancel=None):
        """Read the status of every service.

        :param ``float`` timeout:
            Deadline of the whole call, unbounded when ``None``.
        :param ``threading.Event`` cancel:
            Services not read yet when set are reported as failed.
        :returns ``(dict, PartialFailureError|None)``:
            Status of every service, ``None`` for those that failed, and the
            failures (``None`` when all answered).
        """
        results, errors = self._execute(
            services,
            lambda client, op_timeout: client.status(timeout=op_timeout),
            timeout=timeout,
            cancel=cancel,
        )
        for service in errors:
            results[service] = None

        if errors:
            return results, exc.PartialFailureError(
                errors, kind=self._profile.kind
            )
        return results, None


def _default_client_factory(service_dir, profile, timeout):
    return svc_client.ServiceClient(service_dir, profile, timeout=timeout)


__all__ = [
    'DEFAULT_CONCURRENCY',
    'DEFAULT_TIMEOUT',
    'Manager',
]
