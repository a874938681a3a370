"""svcmgr logging helpers.
"""

import io
import json
import logging
import logging.config
import os

_PACKAGE_ROOT = __name__.split('.', 1)[0]

APPROOT_ENV = 'SVCMGR_APPROOT'


def set_log_level(log_level):
    """Set loglevel for all svcmgr modules
    """
    # pylint: disable=consider-iterating-dictionary
    # yes, we need to iterate keys
    logger_keys = [
        lk for lk in logging.Logger.manager.loggerDict.keys()
        if lk == _PACKAGE_ROOT or lk.startswith(_PACKAGE_ROOT + '.')
    ]

    logging.getLogger().setLevel(log_level)
    for logger_key in logger_keys:
        logging.getLogger(logger_key).setLevel(log_level)


def _load_logging_file(name):
    """Load logging config json file packaged as svcmgr/logging/xxx.json
    """
    log_conf_file = os.path.join(os.path.dirname(__file__), name)
    with io.open(log_conf_file, encoding='utf8') as f:
        return json.load(f)


def load_logging_conf(name):
    """Load a logging configuration.

    A file with the same name under ``$SVCMGR_APPROOT/logging`` takes
    precedence over the packaged one.
    """
    # Shortcut - check if logging already exists.
    logconf_path = os.path.join(
        os.environ.get(APPROOT_ENV, ''),
        'logging',
        name
    )

    if os.environ.get(APPROOT_ENV) and os.path.exists(logconf_path):
        with io.open(logconf_path) as f:
            return json.loads(f.read())

    return _load_logging_file(name)


def list_logging_conf():
    """List all packaged logging configurations."""
    return {
        cfg for cfg in os.listdir(os.path.dirname(__file__))
        if cfg.endswith('.json')
    }


def configure(name='client.json', log_level=None):
    """Apply a logging configuration.
    """
    logging.config.dictConfig(load_logging_conf(name))
    if log_level is not None:
        set_log_level(log_level)


__all__ = [
    'configure',
    'list_logging_conf',
    'load_logging_conf',
    'set_log_level',
]
