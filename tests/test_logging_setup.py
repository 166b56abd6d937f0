"""
Application logging tests: handlers, fallback file and gzip rotation.

Author: antiscan Project
License: GNU GPL v3
"""

import gzip
import logging
import logging.handlers
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from fakes import make_config

from antiscan.utils import logging as log_utils


class TestSetupLogging(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        root = logging.getLogger()
        self.saved = (root.level, root.handlers[:])

    def tearDown(self):
        root = logging.getLogger()
        for handler in root.handlers:
            if handler not in self.saved[1]:
                handler.close()
        root.setLevel(self.saved[0])
        root.handlers[:] = self.saved[1]
        self.tmpdir.cleanup()

    def test_console_and_rotating_file(self):
        config = make_config(self.tmpdir.name, log_max_bytes=1024, log_backup_count=2)

        log_utils.setup_logging(logging.INFO, config)

        handlers = logging.getLogger().handlers
        rotating = [h for h in handlers if isinstance(h, logging.handlers.RotatingFileHandler)]
        self.assertEqual(len(rotating), 1)
        self.assertEqual(rotating[0].maxBytes, 1024)
        self.assertEqual(rotating[0].backupCount, 2)
        self.assertTrue(Path(config.app_log_file).exists())
        self.assertEqual(logging.getLogger('urllib3').level, logging.WARNING)

    def test_debug_level_keeps_library_loggers(self):
        log_utils.setup_logging(logging.DEBUG, make_config(self.tmpdir.name))

        self.assertEqual(logging.getLogger('urllib3').level, logging.DEBUG)

    def test_unwritable_path_falls_back(self):
        fallback = Path(self.tmpdir.name) / 'fallback.log'
        blocker = Path(self.tmpdir.name) / 'not-a-dir'
        blocker.write_text("")

        with patch.object(log_utils, 'FALLBACK_LOG_FILE', fallback):
            chosen = log_utils._writable_log_file(blocker / 'antiscan.log')

        self.assertEqual(chosen, fallback)

    def test_gzip_rotator(self):
        source = Path(self.tmpdir.name) / 'antiscan.log'
        source.write_text("line\n")
        dest = Path(self.tmpdir.name) / 'antiscan.log.1'

        log_utils._gzip_rotator(str(source), str(dest))

        self.assertFalse(source.exists())
        with gzip.open(f'{dest}.gz', 'rt') as f:
            self.assertEqual(f.read(), "line\n")


if __name__ == '__main__':
    unittest.main()
