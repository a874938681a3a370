"""Supervision suite profiles.

Each supported suite (runit, daemontools, s6) is described by an immutable
:class:`BackendProfile` value: where its service directories live, the names
of the control and status files under ``supervise/``, the control character
of every operation it understands and the binary layouts of its status file.

Differences between the suites are data, not code: the client and the status
decoder are driven entirely by the profile they are given.
"""

import collections
import enum
import logging
import os

from svcmgr import exc

_LOGGER = logging.getLogger(__name__)

SUPERVISE_DIR = 'supervise'
CONTROL_FILE = 'control'
STATUS_FILE = 'status'


class Operation(enum.Enum):
    """Enumeration of abstract control operations."""
    # pylint complains: Invalid class attribute name "up"
    up = 'up'  # pylint: disable=C0103
    once = 'once'
    down = 'down'
    term = 'term'
    kill = 'kill'
    quit = 'quit'
    interrupt = 'interrupt'
    hup = 'hup'
    alarm = 'alarm'
    pause = 'pause'
    cont = 'cont'
    usr1 = 'usr1'
    usr2 = 'usr2'
    exit = 'exit'


class BackendKind(enum.Enum):
    """Enumeration of supported supervision suites."""
    runit = 'runit'
    daemontools = 'daemontools'
    s6 = 's6'


BackendConfig = collections.namedtuple(
    'BackendConfig',
    [
        'service_dir',
        'chpst_path',
        'logger_path',
        'runsvdir_path',
    ]
)


StatusLayout = collections.namedtuple(
    'StatusLayout',
    [
        'name',
        'family',
        'size',
        'stamp_offset',
        'ready_offset',
        'pid_offset',
        'pid_format',
        'wstat_offset',
        'flags_offset',
    ]
)

# runsv: tai64n stamp, pid (LE uint32), paused, want, got TERM, run state.
RUNIT_LAYOUT = StatusLayout(
    name='runit',
    family='runit',
    size=20,
    stamp_offset=0,
    ready_offset=None,
    pid_offset=12,
    pid_format='<I',
    wstat_offset=None,
    flags_offset=16,
)

# supervise: tai64n stamp, pid (LE uint32), paused, want.
DAEMONTOOLS_LAYOUT = StatusLayout(
    name='daemontools',
    family='daemontools',
    size=18,
    stamp_offset=0,
    ready_offset=None,
    pid_offset=12,
    pid_format='<I',
    wstat_offset=None,
    flags_offset=16,
)

# s6-supervise: stamp, readystamp, pid (BE uint64), pgid, wstat, flags.
S6_LAYOUT = StatusLayout(
    name='s6',
    family='s6',
    size=43,
    stamp_offset=0,
    ready_offset=12,
    pid_offset=24,
    pid_format='>Q',
    wstat_offset=40,
    flags_offset=42,
)

# s6-supervise before the pgid field was added.
S6_LEGACY_LAYOUT = StatusLayout(
    name='s6-legacy',
    family='s6',
    size=35,
    stamp_offset=0,
    ready_offset=12,
    pid_offset=24,
    pid_format='>Q',
    wstat_offset=32,
    flags_offset=34,
)


_SIGNAL_CONTROLS = {
    Operation.up: 'u',
    Operation.once: 'o',
    Operation.down: 'd',
    Operation.term: 't',
    Operation.kill: 'k',
    Operation.interrupt: 'i',
    Operation.hup: 'h',
    Operation.alarm: 'a',
    Operation.pause: 'p',
    Operation.cont: 'c',
    Operation.exit: 'x',
}

_RUNIT_CONTROLS = dict(_SIGNAL_CONTROLS)
_RUNIT_CONTROLS.update({
    Operation.quit: 'q',
    Operation.usr1: '1',
    Operation.usr2: '2',
})

# svc has no quit and no user signals.
_DAEMONTOOLS_CONTROLS = dict(_SIGNAL_CONTROLS)

_S6_CONTROLS = dict(_RUNIT_CONTROLS)


class BackendProfile:
    """Static description of one supervision suite.
    """
    __slots__ = (
        '_kind',
        '_config',
        '_controls',
        '_layouts',
        '_has_readiness',
    )

    def __init__(self, kind, config, controls, layouts, has_readiness=False):
        self._kind = BackendKind(kind)
        self._config = config
        self._controls = dict(controls)
        self._layouts = tuple(layouts)
        self._has_readiness = bool(has_readiness)

    def __repr__(self):
        return '{type}({kind}, {svcdir!r})'.format(
            type=self.__class__.__name__,
            kind=self._kind.value,
            svcdir=self._config.service_dir,
        )

    def __eq__(self, other):
        if not isinstance(other, BackendProfile):
            return NotImplemented
        return (
            self._kind == other.kind and
            self._config == other.config and
            self._controls == other.controls and
            self._layouts == other.layouts and
            self._has_readiness == other.has_readiness
        )

    def __hash__(self):
        return hash((self._kind, self._config))

    @property
    def kind(self):
        """Suite kind.

        :returns ``BackendKind``:
            Kind of the suite.
        """
        return self._kind

    @property
    def config(self):
        """Tool locations and default service root.

        :returns ``BackendConfig``:
            Configuration of the suite.
        """
        return self._config

    @property
    def controls(self):
        """Copy of the operation to control character mapping."""
        return dict(self._controls)

    @property
    def layouts(self):
        """Status file layouts understood by this suite."""
        return self._layouts

    @property
    def has_readiness(self):
        """Whether the supervisor tracks readiness notifications."""
        return self._has_readiness

    @property
    def supervise_dir(self):
        """Name of the supervisor state directory in a service."""
        return SUPERVISE_DIR

    @property
    def control_file(self):
        """Control pipe path relative to the service directory."""
        return os.path.join(SUPERVISE_DIR, CONTROL_FILE)

    @property
    def status_file(self):
        """Status file path relative to the service directory."""
        return os.path.join(SUPERVISE_DIR, STATUS_FILE)

    @property
    def status_sizes(self):
        """Valid status file sizes, in bytes."""
        return tuple(layout.size for layout in self._layouts)

    @property
    def max_status_size(self):
        """Largest status file size of the suite."""
        return max(self.status_sizes)

    def is_operation_supported(self, operation):
        """Check whether the suite has a control encoding for `operation`.
        """
        return Operation(operation) in self._controls

    def control_char(self, operation, service_dir=None):
        """Return the control character of `operation`.

        :raises ``exc.UnsupportedOperationError``:
            If the suite has no encoding for `operation`.
        """
        operation = Operation(operation)
        try:
            return self._controls[operation]
        except KeyError:
            raise exc.UnsupportedOperationError(
                operation, service_dir=service_dir, kind=self._kind
            )

    def layout_for(self, size):
        """Return the status layout matching a status file of `size` bytes.

        :returns ``StatusLayout | None``:
            Matching layout or None.
        """
        for layout in self._layouts:
            if layout.size == size:
                return layout
        return None

    def with_config(self, **overrides):
        """Return a copy of the profile with some config fields replaced.
        """
        overrides = {
            key: value
            for key, value in overrides.items()
            if value is not None
        }
        return BackendProfile(
            self._kind,
            self._config._replace(**overrides),
            self._controls,
            self._layouts,
            has_readiness=self._has_readiness,
        )


_PROFILES = {
    BackendKind.runit: BackendProfile(
        BackendKind.runit,
        BackendConfig(
            service_dir='/etc/service',
            chpst_path='chpst',
            logger_path='svlogd',
            runsvdir_path='runsvdir',
        ),
        _RUNIT_CONTROLS,
        (RUNIT_LAYOUT,),
    ),
    BackendKind.daemontools: BackendProfile(
        BackendKind.daemontools,
        BackendConfig(
            service_dir='/service',
            chpst_path='setuidgid',
            logger_path='multilog',
            runsvdir_path='svscan',
        ),
        _DAEMONTOOLS_CONTROLS,
        (DAEMONTOOLS_LAYOUT,),
    ),
    BackendKind.s6: BackendProfile(
        BackendKind.s6,
        BackendConfig(
            service_dir='/run/service',
            chpst_path='s6-setuidgid',
            logger_path='s6-log',
            runsvdir_path='s6-svscan',
        ),
        _S6_CONTROLS,
        (S6_LAYOUT, S6_LEGACY_LAYOUT),
        has_readiness=True,
    ),
}


def get_profile(kind, config=None):
    """Return the profile of a supervision suite.

    :param ``BackendKind|str`` kind:
        Suite kind.
    :param ``dict`` config:
        Optional ``BackendConfig`` field overrides.
    :returns ``BackendProfile``:
        Profile of the suite.
    """
    try:
        profile = _PROFILES[BackendKind(kind)]
    except ValueError:
        raise exc.SupervisionError(
            'Unknown supervision suite: {!r}'.format(kind)
        )

    if config:
        _LOGGER.debug('Overriding %s config: %r', profile.kind.value, config)
        profile = profile.with_config(**config)

    return profile


def all_profiles():
    """Return the default profiles of every supported suite."""
    return [_PROFILES[kind] for kind in BackendKind]


__all__ = [
    'BackendConfig',
    'BackendKind',
    'BackendProfile',
    'Operation',
    'StatusLayout',
    'all_profiles',
    'get_profile',
]
