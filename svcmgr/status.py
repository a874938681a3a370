"""Supervisor status decoding.

The supervisors persist their view of a service in ``supervise/status``, a
fixed-width binary record. The layouts differ per suite (see
:mod:`svcmgr.profiles`) but they all carry a TAI64N timestamp of the last
transition, the pid of the service, the wanted state and a few flag bits.

Timestamps are TAI64N labels: an 8 byte big-endian second count offset by
``2**62`` (plus the 10 seconds TAI was ahead of UTC at the epoch) followed by
a 4 byte big-endian nanosecond count.
"""

import collections
import enum
import logging
import struct
import time

from svcmgr import exc

_LOGGER = logging.getLogger(__name__)

TAI64_BASE = (1 << 62) + 10

# Labels past year 9999 are considered garbage.
_MAX_UNIX_SECONDS = 253402300800

_TAI64N = struct.Struct('>QI')
_WSTAT = struct.Struct('>H')

# runsv run state byte.
_RUNIT_RUN = 1
_RUNIT_FINISH = 2

# s6-supervise flag bits.
_S6_PAUSED = 0x01
_S6_FINISHING = 0x02
_S6_WANT_UP = 0x04
_S6_READY = 0x08


class State(enum.Enum):
    """Enumeration of service states."""
    down = 'down'
    starting = 'starting'
    running = 'running'
    stopping = 'stopping'
    finishing = 'finishing'
    crashed = 'crashed'


#: States in which the service has a live process.
PROCESS_STATES = frozenset([
    State.starting,
    State.running,
    State.stopping,
])


Flags = collections.namedtuple('Flags', ['want_up', 'want_down'])


class Status(collections.namedtuple('Status', [
        'state',
        'pid',
        'since',
        'flags',
        'paused',
        'ready',
        'ready_since',
        'exit_status'])):
    """Snapshot of a service status.

    ``since`` and ``ready_since`` are unix timestamps. ``exit_status`` is the
    raw wait status of the last process exit when the suite records it.
    """
    __slots__ = ()

    def uptime(self, now=None):
        """Seconds spent in the current state while a process is up.
        """
        if self.pid <= 0:
            return 0.0

        if now is None:
            now = time.time()

        return max(0.0, now - self.since)

    def to_dict(self):
        """Plain representation of the snapshot."""
        return {
            'state': self.state.value,
            'pid': self.pid,
            'since': self.since,
            'want_up': self.flags.want_up,
            'want_down': self.flags.want_down,
            'paused': self.paused,
            'ready': self.ready,
            'ready_since': self.ready_since,
            'exit_status': self.exit_status,
        }


def tai64n_to_unix(seconds, nanoseconds=0):
    """Convert a TAI64N label into a unix timestamp.

    Labels outside of the representable range convert to ``0.0``.
    """
    unix_seconds = seconds - TAI64_BASE
    if unix_seconds < 0 or unix_seconds >= _MAX_UNIX_SECONDS:
        return 0.0
    if nanoseconds > 999999999:
        nanoseconds = 0

    return unix_seconds + nanoseconds / 1e9


def unix_to_tai64n(timestamp):
    """Convert a unix timestamp into a ``(seconds, nanoseconds)`` label.
    """
    if timestamp is None or timestamp < 0:
        timestamp = 0.0

    seconds = int(timestamp)
    nanoseconds = int(round((timestamp - seconds) * 1e9))
    if nanoseconds > 999999999:
        seconds += 1
        nanoseconds = 0

    return seconds + TAI64_BASE, nanoseconds


def _unpack_stamp(data, offset):
    return tai64n_to_unix(*_TAI64N.unpack_from(data, offset))


def _pack_stamp(buf, offset, timestamp):
    _TAI64N.pack_into(buf, offset, *unix_to_tai64n(timestamp))


def _derive_state(pid, want_up, want_down, ready, finishing, crashed,
                  has_readiness):
    """Map the decoded fields onto a service state.
    """
    # pylint: disable=too-many-arguments,too-many-return-statements
    if pid > 0:
        if want_down:
            return State.stopping
        if has_readiness and not ready:
            return State.starting
        return State.running

    if finishing:
        return State.finishing
    if crashed and want_up:
        return State.crashed
    return State.down


def decode_status(data, profile):
    """Decode a raw status record.

    :param ``bytes`` data:
        Content of the status file.
    :param ``BackendProfile`` profile:
        Profile of the suite that wrote the record.
    :returns ``Status``:
        Decoded status.
    :raises ``exc.DecodeError``:
        If the size of `data` matches no layout of the suite.
    """
    layout = profile.layout_for(len(data))
    if layout is None:
        raise exc.DecodeError(
            'invalid status size: {} bytes (expected {})'.format(
                len(data),
                ' or '.join(str(size) for size in profile.status_sizes)
            ),
            size=len(data),
            kind=profile.kind
        )

    since = _unpack_stamp(data, layout.stamp_offset)
    (pid,) = struct.unpack_from(layout.pid_format, data, layout.pid_offset)
    flags_at = layout.flags_offset
    finishing = False
    crashed = False
    exit_status = None

    if layout.family == 's6':
        flag_byte = bytearray(data)[flags_at]
        paused = bool(flag_byte & _S6_PAUSED)
        finishing = bool(flag_byte & _S6_FINISHING)
        want_up = bool(flag_byte & _S6_WANT_UP)
        want_down = not want_up
        ready = bool(flag_byte & _S6_READY)
        (exit_status,) = _WSTAT.unpack_from(data, layout.wstat_offset)
        crashed = exit_status != 0
        ready_since = (
            _unpack_stamp(data, layout.ready_offset) if ready else None
        )

    else:
        raw = bytearray(data)
        paused = raw[flags_at] != 0
        want_up = raw[flags_at + 1] == ord('u')
        want_down = raw[flags_at + 1] == ord('d')
        if layout.family == 'runit':
            # While ./finish runs the pid field is the finish script's.
            finishing = raw[flags_at + 3] == _RUNIT_FINISH
        ready = pid > 0 and not finishing
        ready_since = since if ready else None

    if finishing:
        pid = 0

    if pid <= 0:
        pid = 0
        ready = False
        ready_since = None

    state = _derive_state(
        pid, want_up, want_down, ready, finishing, crashed,
        profile.has_readiness
    )

    return Status(
        state=state,
        pid=pid,
        since=since,
        flags=Flags(want_up=want_up, want_down=want_down),
        paused=paused,
        ready=ready,
        ready_since=ready_since,
        exit_status=exit_status,
    )


def encode_status(status, profile, layout=None):
    """Encode a status into the binary record of a suite.

    This is the inverse of :func:`decode_status` for the fields the record
    can represent; used to build status fixtures.

    :returns ``bytes``:
        Status record.
    """
    if layout is None:
        layout = profile.layouts[0]

    buf = bytearray(layout.size)
    _pack_stamp(buf, layout.stamp_offset, status.since)
    struct.pack_into(layout.pid_format, buf, layout.pid_offset, status.pid)
    flags_at = layout.flags_offset

    if layout.family == 's6':
        if status.ready_since is not None:
            _pack_stamp(buf, layout.ready_offset, status.ready_since)
        exit_status = status.exit_status or 0
        if status.state is State.crashed and not exit_status:
            # Any abnormal wait status will do, use a SIGKILL death.
            exit_status = 9
        _WSTAT.pack_into(buf, layout.wstat_offset, exit_status)
        flag_byte = 0
        if status.paused:
            flag_byte |= _S6_PAUSED
        if status.state is State.finishing:
            flag_byte |= _S6_FINISHING
        if status.flags.want_up:
            flag_byte |= _S6_WANT_UP
        if status.ready:
            flag_byte |= _S6_READY
        buf[flags_at] = flag_byte

    else:
        buf[flags_at] = 1 if status.paused else 0
        if status.flags.want_up:
            buf[flags_at + 1] = ord('u')
        elif status.flags.want_down:
            buf[flags_at + 1] = ord('d')
        if layout.family == 'runit':
            if status.state is State.finishing:
                buf[flags_at + 3] = _RUNIT_FINISH
            elif status.pid > 0:
                buf[flags_at + 3] = _RUNIT_RUN

    return bytes(buf)


__all__ = [
    'Flags',
    'PROCESS_STATES',
    'State',
    'Status',
    'decode_status',
    'encode_status',
    'tai64n_to_unix',
    'unix_to_tai64n',
]
