"""Log context helper classes.
"""

import logging
import threading

LOCAL_ = threading.local()


def _context_stack():
    """Thread local stack of log contexts."""
    try:
        return LOCAL_.ctx
    except AttributeError:
        LOCAL_.ctx = []
        return LOCAL_.ctx


class Adapter(logging.LoggerAdapter):
    """
    Prepends the log messages with the str representation of the thread local
    list's last element if there's any.

    This adapter makes possible to
    * tag log records with the service directory an operation works on
      w/o having to alter the log formatter's definition
    * use logging (_LOGGER) in the same way as before apart from the
      initialization of _LOGGER in a given module.
    """

    def __init__(self, logger, extra=None):
        """
        Allow initializing w/o any 'extra' value.
        """
        super(Adapter, self).__init__(logger, extra)

        if self.extra:
            self.extra = [self.extra]
        else:
            self.extra = None

    def process(self, msg, kwargs):
        """
        Add extra content to the log line but don't modify it if no element
        is contained by the thread local variable.
        """
        extra = self.extra if self.extra is not None else _context_stack()
        if not extra:
            return msg, kwargs

        return '%s - %s' % (self._fmt(extra[-1]), msg), kwargs

    def _fmt(self, extra):
        """Format the 'extra' content as it will be represented in the logs."""
        return extra

    def isEnabledFor(self, level):
        """Is this logger enabled for level 'level'?

        Monkey patched so Adapters can be passed to LogContext below.
        """
        return self.logger.isEnabledFor(level)


class ServiceAdapter(Adapter):
    """
    Adapter to insert the backend kind and service directory into the log
    record.
    """

    def _fmt(self, extra):
        """Format the 'extra' content as it will be represented in the logs."""
        if isinstance(extra, tuple):
            kind, service_dir = extra
            return '{kind}:{svc}'.format(
                kind=getattr(kind, 'value', kind),
                svc=service_dir
            )
        return extra


class LogContext:
    """
    Context manager wrapping a logger adapter instance.

    Ensures that a log record is processed always by the log adapter and the
    corresponding internal state without having to worry about restoring the
    logger's state to its original in case of an exception etc.
    """

    def __init__(self, logger, extra, adapter_cls=Adapter):
        self.extra = extra
        self.logger = logger
        self.adapter_cls = adapter_cls

    def __enter__(self):
        """
        Save the original internal state of the logger adapter and
        replace it with the one got when instantiated.
        """
        _context_stack().append(self.extra)
        return self.adapter_cls(self.logger)

    def __exit__(self, *args):
        """Restore the original internal state of the logger adapter."""
        _context_stack().pop()
