"""Low level supervisor file utilities.
"""

import errno
import io
import logging
import os
import time

_LOGGER = logging.getLogger(__name__)


def status_read(filename, max_size):
    """Read a status record.

    :param ``str`` filename:
        Status file to read from.
    :param ``int`` max_size:
        Largest record size to expect. One extra byte is read so that an
        oversized file is reported with its real length.
    :returns ``bytes``:
        File content.
    """
    with io.open(filename, 'rb') as f:
        return f.read(max_size + 1)


def control_write(filename, data):
    """Write control bytes to a supervisor control pipe, without blocking.

    :param ``str`` filename:
        Control pipe to write to.
    :param ``bytes`` data:
        Command bytes.
    :raises ``OSError``:
        ``ENXIO`` if no supervisor has the pipe open, ``EAGAIN`` if the pipe
        is full, ``ENOENT`` if it does not exist.
    """
    fd = os.open(filename, os.O_WRONLY | os.O_NONBLOCK)
    try:
        written = os.write(fd, data)
    finally:
        os.close(fd)

    if written != len(data):
        raise OSError(errno.EAGAIN, 'short control write', filename)


def has_reader(filename):
    """Checks if some process has the pipe `filename` open for reading.
    """
    try:
        fd = os.open(filename, os.O_WRONLY | os.O_NONBLOCK)
    except OSError as err:
        if err.errno in (errno.ENXIO, errno.ENOENT):
            return False
        raise

    os.close(fd)
    return True


class Deadline:
    """Tracks the time left before a timeout expires.

    A ``None`` timeout never expires.
    """
    __slots__ = (
        '_expires',
    )

    def __init__(self, timeout=None):
        if timeout is None:
            self._expires = None
        else:
            self._expires = time.monotonic() + max(0.0, timeout)

    def remaining(self):
        """Seconds left, ``None`` if unbounded."""
        if self._expires is None:
            return None
        return max(0.0, self._expires - time.monotonic())

    def expired(self):
        """Whether the deadline passed."""
        return self._expires is not None and \
            time.monotonic() >= self._expires

    def bound(self, interval):
        """Clamp `interval` to the time left."""
        remaining = self.remaining()
        if remaining is None:
            return interval
        return min(interval, remaining)


__all__ = (
    'Deadline',
    'control_write',
    'has_reader',
    'status_read',
)
