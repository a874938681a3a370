"""Supervision client exceptions.
"""


class SupervisionError(Exception):
    """Base class for all svcmgr errors.

    Carries the service directory and the backend kind the error relates to
    so callers can act on it without parsing the message.
    """

    __slots__ = (
        'service_dir',
        'kind',
    )

    @property
    def message(self):
        """The :class:`~SupervisionError`'s message.
        """
        # pylint: disable=unsubscriptable-object
        return self.args[0]

    def __init__(self, msg, service_dir=None, kind=None):
        super(SupervisionError, self).__init__(str(msg))
        self.service_dir = service_dir
        self.kind = kind

    def __str__(self):
        if self.service_dir is None:
            return self.message

        return '{kind} {svc!r}: {msg}'.format(
            kind=getattr(self.kind, 'value', self.kind) or 'service',
            svc=self.service_dir,
            msg=self.message,
        )


class UnsupportedOperationError(SupervisionError):
    """Operation has no control encoding for the backend."""

    __slots__ = (
        'operation',
    )

    def __init__(self, operation, service_dir=None, kind=None):
        super(UnsupportedOperationError, self).__init__(
            'operation {!r} not supported by this backend'.format(
                getattr(operation, 'value', operation)
            ),
            service_dir=service_dir,
            kind=kind
        )
        self.operation = operation


class BackendUnavailableError(SupervisionError):
    """The supervisor is not running (supervise directory or file missing)."""

    __slots__ = ()


class ControlChannelUnavailableError(BackendUnavailableError):
    """The control pipe is missing or has no reader."""

    __slots__ = ()


class DecodeError(SupervisionError):
    """Status bytes could not be decoded."""

    __slots__ = (
        'size',
    )

    def __init__(self, msg, size=None, service_dir=None, kind=None):
        super(DecodeError, self).__init__(
            msg, service_dir=service_dir, kind=kind
        )
        self.size = size


class DeadlineExceededError(SupervisionError):
    """A blocking call exceeded its deadline or was cancelled."""

    __slots__ = ()


class PartialFailureError(SupervisionError):
    """A bulk operation failed for a subset of its services.

    ``errors`` maps each failed service to the error it raised.
    """

    __slots__ = (
        'errors',
    )

    def __init__(self, errors, kind=None):
        self.errors = dict(errors)
        super(PartialFailureError, self).__init__(
            '{count} service(s) failed: {details}'.format(
                count=len(self.errors),
                details='; '.join(
                    '{}: {}'.format(svc, err)
                    for svc, err in sorted(self.errors.items())
                )
            ),
            kind=kind
        )

    @property
    def services(self):
        """Sorted list of the failed services."""
        return sorted(self.errors)


class InvalidConfigError(SupervisionError):
    """Configuration document is not valid."""

    __slots__ = (
        'source',
    )

    def __init__(self, source, msg):
        super(InvalidConfigError, self).__init__(msg)
        self.source = source


__all__ = [
    'BackendUnavailableError',
    'ControlChannelUnavailableError',
    'DeadlineExceededError',
    'DecodeError',
    'InvalidConfigError',
    'PartialFailureError',
    'SupervisionError',
    'UnsupportedOperationError',
]
