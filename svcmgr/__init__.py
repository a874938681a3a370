"""Unified client for the runit, daemontools and s6 supervision suites."""

from .client import ServiceClient
from .exc import (
    BackendUnavailableError,
    ControlChannelUnavailableError,
    DeadlineExceededError,
    DecodeError,
    InvalidConfigError,
    PartialFailureError,
    SupervisionError,
    UnsupportedOperationError,
)
from .manager import Manager
from .profiles import (
    BackendConfig,
    BackendKind,
    BackendProfile,
    Operation,
    get_profile,
)
from .status import Flags, State, Status, decode_status, encode_status
from .watcher import Watch, WatchEvent

__version__ = '1.0'

__all__ = [
    'BackendConfig',
    'BackendKind',
    'BackendProfile',
    'BackendUnavailableError',
    'ControlChannelUnavailableError',
    'DeadlineExceededError',
    'DecodeError',
    'Flags',
    'InvalidConfigError',
    'Manager',
    'Operation',
    'PartialFailureError',
    'ServiceClient',
    'State',
    'Status',
    'SupervisionError',
    'UnsupportedOperationError',
    'Watch',
    'WatchEvent',
    'decode_status',
    'encode_status',
    'get_profile',
]
