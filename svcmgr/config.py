"""svcmgr configuration.

The configuration is a YAML document naming the default suite, tool location
overrides per suite and the manager/watch settings::

    backend: s6
    backends:
      s6:
        service_dir: /run/s6/services
        logger_path: /command/s6-log
    manager:
      concurrency: 20
      timeout: 2.5
    watch:
      poll_interval: 0.1

Every section is optional. The file is found through the ``path`` argument or
the ``SVCMGR_CONFIG`` environment variable.
"""

import io
import logging
import os

import jsonschema
import yaml

try:
    from yaml import CSafeLoader as Loader
except ImportError:
    from yaml import SafeLoader as Loader

from svcmgr import client as svc_client
from svcmgr import exc
from svcmgr import manager as svc_manager
from svcmgr import profiles
from svcmgr import watcher as svc_watcher

_LOGGER = logging.getLogger(__name__)

CONFIG_ENV = 'SVCMGR_CONFIG'

_BACKEND_KINDS = [kind.value for kind in profiles.BackendKind]

_BACKEND_SCHEMA = {
    'type': 'object',
    'additionalProperties': False,
    'properties': {
        'service_dir': {'type': 'string', 'minLength': 1},
        'chpst_path': {'type': 'string', 'minLength': 1},
        'logger_path': {'type': 'string', 'minLength': 1},
        'runsvdir_path': {'type': 'string', 'minLength': 1},
    },
}

SCHEMA = {
    'type': 'object',
    'additionalProperties': False,
    'properties': {
        'backend': {'type': 'string', 'enum': _BACKEND_KINDS},
        'backends': {
            'type': 'object',
            'additionalProperties': False,
            'properties': {
                kind: _BACKEND_SCHEMA for kind in _BACKEND_KINDS
            },
        },
        'manager': {
            'type': 'object',
            'additionalProperties': False,
            'properties': {
                'concurrency': {'type': 'integer', 'minimum': 1},
                'timeout': {'type': 'number', 'minimum': 0},
            },
        },
        'watch': {
            'type': 'object',
            'additionalProperties': False,
            'properties': {
                'poll_interval': {
                    'type': 'number',
                    'minimum': 0,
                    'exclusiveMinimum': True,
                },
            },
        },
    },
}


class Config:
    """Validated svcmgr configuration.
    """
    __slots__ = (
        '_data',
        '_source',
    )

    def __init__(self, data=None, source=None):
        if data is None:
            data = {}

        try:
            jsonschema.Draft4Validator(SCHEMA).validate(data)
        except jsonschema.exceptions.ValidationError as err:
            raise exc.InvalidConfigError(
                source,
                'Invalid configuration {}: {}'.format(
                    source or '<inline>', err.message
                )
            )

        self._data = data
        self._source = source

    @property
    def source(self):
        """File the configuration was read from, if any."""
        return self._source

    @property
    def backend(self):
        """Default suite kind."""
        return profiles.BackendKind(
            self._data.get('backend', profiles.BackendKind.runit.value)
        )

    @property
    def concurrency(self):
        """Manager concurrency."""
        return self._data.get('manager', {}).get(
            'concurrency', svc_manager.DEFAULT_CONCURRENCY
        )

    @property
    def timeout(self):
        """Per-operation deadline."""
        return self._data.get('manager', {}).get(
            'timeout', svc_manager.DEFAULT_TIMEOUT
        )

    @property
    def poll_interval(self):
        """Watch sampling interval."""
        return self._data.get('watch', {}).get(
            'poll_interval', svc_watcher.DEFAULT_POLL_INTERVAL
        )

    def profile(self, kind=None):
        """Profile of suite `kind` (default suite if not given) with the
        configured overrides applied.
        """
        if kind is None:
            kind = self.backend
        kind = profiles.BackendKind(kind)
        overrides = self._data.get('backends', {}).get(kind.value)
        return profiles.get_profile(kind, config=overrides)

    def client(self, service_dir, kind=None):
        """Create a client for `service_dir`."""
        return svc_client.ServiceClient(
            service_dir,
            self.profile(kind),
            timeout=self.timeout,
            poll_interval=self.poll_interval,
        )

    def manager(self, kind=None):
        """Create a manager for services of suite `kind`."""
        return svc_manager.Manager(
            self.profile(kind),
            concurrency=self.concurrency,
            timeout=self.timeout,
        )


def load(path=None):
    """Load the configuration.

    :param ``str`` path:
        YAML file to read. Defaults to ``$SVCMGR_CONFIG``; no file means the
        default configuration.
    :returns ``Config``:
        Loaded configuration.
    """
    if path is None:
        path = os.environ.get(CONFIG_ENV)

    if not path:
        return Config()

    _LOGGER.info('Loading configuration: %s', path)
    try:
        with io.open(path, 'r') as f:
            data = yaml.load(stream=f, Loader=Loader)
    except (IOError, OSError) as err:
        raise exc.InvalidConfigError(
            path, 'Unable to read configuration {}: {}'.format(path, err)
        )
    except yaml.YAMLError as err:
        raise exc.InvalidConfigError(
            path, 'Invalid YAML in {}: {}'.format(path, err)
        )

    return Config(data, source=path)


__all__ = [
    'CONFIG_ENV',
    'Config',
    'SCHEMA',
    'load',
]
