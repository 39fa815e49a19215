"""
Unit tests for vcloud_launcher.settings.
"""

import logging
import os
import shutil
import tempfile
import unittest

from .. import errors
from ..settings import Settings, LessThanWarning, configure_logging


class TestSettings(unittest.TestCase):

    def setUp(self):
        self.directory = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.directory)

    def write(self, content):
        path = os.path.join(self.directory, 'settings.yaml')
        with open(path, 'w') as fh:
            fh.write(content)
        return path

    def test_defaults(self):
        settings = Settings.load(environ = {})
        self.assertIsNone(settings.ENDPOINT)
        self.assertTrue(settings.VERIFY_SSL)
        self.assertEqual(settings.TASK_TIMEOUT, 3600)
        self.assertEqual(settings.POLL_INTERVAL, 2)
        self.assertFalse(settings.NO_DELETE_VAPP)

    def test_environment_overrides_file(self):
        path = self.write(
            'ENDPOINT: https://vcloud.example.com/api\n'
            'USERNAME: admin@example\n'
            'POLL_INTERVAL: 5\n'
        )
        settings = Settings.load(path, {
            'VCLOUD_LAUNCHER_POLL_INTERVAL': '0.5',
            'VCLOUD_LAUNCHER_VERIFY_SSL': 'no',
            'VCLOUD_LAUNCHER_NO_DELETE_VAPP': 'True',
            # Unknown names are ignored
            'VCLOUD_LAUNCHER_COLOUR': 'blue',
            'POLL_INTERVAL': '10',
        })
        self.assertEqual(settings.ENDPOINT, 'https://vcloud.example.com/api')
        self.assertEqual(settings.USERNAME, 'admin@example')
        self.assertEqual(settings.POLL_INTERVAL, 0.5)
        self.assertFalse(settings.VERIFY_SSL)
        self.assertTrue(settings.NO_DELETE_VAPP)
        self.assertFalse(hasattr(settings, 'COLOUR'))

    def test_invalid_values(self):
        with self.assertRaises(errors.ConfigurationError) as ctx:
            Settings.load(environ = {
                'VCLOUD_LAUNCHER_ENDPOINT': 'vcloud.example.com',
                'VCLOUD_LAUNCHER_POLL_INTERVAL': '0',
                'VCLOUD_LAUNCHER_VERIFY_SSL': 'maybe',
            })
        self.assertEqual(
            set(ctx.exception.errors),
            { 'ENDPOINT', 'POLL_INTERVAL', 'VERIFY_SSL' }
        )

    def test_file_must_be_a_mapping(self):
        with self.assertRaises(errors.ConfigurationError):
            Settings.load(self.write('- ENDPOINT\n'), {})

    def test_missing_file(self):
        with self.assertRaises(errors.ConfigurationError):
            Settings.load(os.path.join(self.directory, 'missing.yaml'), {})

    def test_launch_options(self):
        settings = Settings(TASK_TIMEOUT = 30, NO_DELETE_VAPP = 'yes')
        options = settings.launch_options(power_on = False)
        self.assertEqual(options.task_timeout, 30)
        self.assertEqual(options.poll_interval, 2)
        self.assertTrue(options.retain_on_failure)
        self.assertFalse(options.power_on)


class TestLogging(unittest.TestCase):

    def setUp(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        def restore():
            root.handlers[:] = handlers
            root.setLevel(level)
        self.addCleanup(restore)

    def test_configure_logging(self):
        configure_logging('DEBUG')
        root = logging.getLogger()
        self.assertEqual(root.level, logging.DEBUG)
        self.assertEqual(len(root.handlers), 2)

    def test_less_than_warning(self):
        log_filter = LessThanWarning()
        def record(level):
            return logging.LogRecord('test', level, __file__, 1, 'message', None, None)
        self.assertTrue(log_filter.filter(record(logging.INFO)))
        self.assertFalse(log_filter.filter(record(logging.WARNING)))


if __name__ == "__main__":
    unittest.main()
