"""
Settings for the launcher, and the logging configuration.

Settings are read from an optional YAML file and from ``VCLOUD_LAUNCHER_*``
environment variables, with the environment taking precedence, e.g.
``VCLOUD_LAUNCHER_ENDPOINT=https://vcloud.example.com/api``.
"""

import logging
import logging.config
import os

import voluptuous as v
import yaml

from . import dto, errors
from .validation import boolean, use_schema


#: Prefix for environment variables that provide settings
ENV_PREFIX = 'VCLOUD_LAUNCHER_'


def _positive_number():
    return v.All(
        v.Any(int, float, str, msg = 'expected a number'),
        v.Coerce(float, msg = 'expected a number'),
        v.Range(min = 0, min_included = False, msg = 'must be greater than zero')
    )


class Settings:
    """
    Settings object for the launcher.
    """

    ####
    # Connection settings
    ####
    #: The vCloud Director API endpoint, e.g. https://vcloud.example.com/api
    ENDPOINT = None
    #: The user to authenticate as, in the form user@org
    USERNAME = None
    #: The password for the user
    PASSWORD = None
    #: Indicates whether to verify SSL when connecting over HTTPS
    VERIFY_SSL = True

    ####
    # Task settings
    ####
    #: The maximum time to wait for a single task, in seconds
    TASK_TIMEOUT = 3600
    #: The interval between polls of a task, in seconds
    POLL_INTERVAL = 2
    #: The number of times to retry a request that could not reach vCD
    REQUEST_RETRIES = 3
    #: The backoff between retries, in seconds
    RETRY_BACKOFF = 1

    ####
    # Launch settings
    ####
    #: Indicates whether vApps should be kept when a launch fails
    NO_DELETE_VAPP = False

    #: The level of the root logger
    LOG_LEVEL = 'INFO'

    _validate = staticmethod(use_schema(v.Schema({
        v.Optional('ENDPOINT'): v.Any(None, v.All(str, v.Match(r'^https?://', msg = 'expected an http(s) URL'))),
        v.Optional('USERNAME'): v.Any(None, str),
        v.Optional('PASSWORD'): v.Any(None, str),
        v.Optional('VERIFY_SSL'): boolean(),
        v.Optional('TASK_TIMEOUT'): _positive_number(),
        v.Optional('POLL_INTERVAL'): _positive_number(),
        v.Optional('REQUEST_RETRIES'): v.All(v.Any(int, str), v.Coerce(int), v.Range(min = 0)),
        v.Optional('RETRY_BACKOFF'): v.All(v.Any(int, float, str), v.Coerce(float), v.Range(min = 0)),
        v.Optional('NO_DELETE_VAPP'): boolean(),
        v.Optional('LOG_LEVEL'): v.All(
            str, v.Upper, v.In(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'])
        ),
    })))

    def __init__(self, **values):
        for key, value in self._validate(values, 'settings').items():
            setattr(self, key, value)

    @classmethod
    def load(cls, path = None, environ = None):
        """
        Loads settings from the given YAML file (if any) and the environment.

        :param path: The path to a YAML settings file
        :param environ: The environment to use, defaulting to ``os.environ``
        :returns: A :py:class:`Settings`
        """
        values = {}
        if path:
            try:
                with open(path) as fh:
                    loaded = yaml.safe_load(fh) or {}
            except OSError as exc:
                raise errors.ConfigurationError(
                    'Could not read settings file', { '<file>': str(exc) }, path
                ) from exc
            except yaml.YAMLError as exc:
                raise errors.ConfigurationError(
                    'Invalid YAML', { '<yaml>': str(exc) }, path
                ) from exc
            if not isinstance(loaded, dict):
                raise errors.ConfigurationError('Settings file must be a mapping', resource = path)
            values.update(loaded)
        environ = os.environ if environ is None else environ
        values.update(
            (key[len(ENV_PREFIX):], value)
            for key, value in environ.items()
            if key.startswith(ENV_PREFIX) and key[len(ENV_PREFIX):] in cls._names()
        )
        return cls(**values)

    @classmethod
    def _names(cls):
        return { name for name in vars(cls) if name.isupper() }

    def launch_options(self, **overrides):
        """
        Returns the :py:class:`~vcloud_launcher.dto.LaunchOptions` for these settings.
        """
        options = dict(
            retain_on_failure = self.NO_DELETE_VAPP,
            task_timeout = self.TASK_TIMEOUT,
            poll_interval = self.POLL_INTERVAL,
            request_retries = self.REQUEST_RETRIES,
            retry_backoff = self.RETRY_BACKOFF
        )
        options.update(overrides)
        return dto.LaunchOptions(**options)


class LessThanWarning(logging.Filter):
    """
    Logging filter that only accepts records with a level < WARNING.
    """
    def filter(self, record):
        return record.levelno < logging.WARNING


LOG_FORMAT = '[%(levelname)s] [%(asctime)s] [%(name)s:%(lineno)s] [%(threadName)s] %(message)s'
LOGGING = {
    'version' : 1,
    'disable_existing_loggers' : False,
    'formatters' : {
        'default' : {
            'format' : LOG_FORMAT,
        },
    },
    'filters' : {
        # This allows us to log level >= WARNING to stderr and level < WARNING to stdout
        'less_than_warning' : {
            '()': LessThanWarning,
        },
    },
    'handlers' : {
        'stdout' : {
            'class' : 'logging.StreamHandler',
            'stream' : 'ext://sys.stdout',
            'formatter' : 'default',
            'filters': ['less_than_warning'],
        },
        'stderr' : {
            'class' : 'logging.StreamHandler',
            'stream' : 'ext://sys.stderr',
            'formatter' : 'default',
            'level' : 'WARNING',
        },
    },
    'loggers' : {
        '' : {
            'handlers' : ['stdout', 'stderr'],
            'level' : 'INFO',
            'propagate' : True,
        },
    },
}


def configure_logging(level = 'INFO'):
    """
    Configures process-wide logging, with the root logger at the given level.
    """
    config = dict(LOGGING, loggers = { '' : dict(LOGGING['loggers'][''], level = level) })
    logging.config.dictConfig(config)
