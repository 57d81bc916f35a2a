"""
Unit tests for logging utilities.
"""

import logging
import os
import tempfile
import unittest

from log_utils import setup_logging


class TestLogUtils(unittest.TestCase):
    """Test logging utilities."""

    def tearDown(self):
        self._reset_root()

    def _reset_root(self):
        root = logging.getLogger()
        for handler in list(root.handlers):
            handler.close()
            root.removeHandler(handler)

    def test_setup_logging_default(self):
        """Test default logging setup logs to the console only."""
        logger = setup_logging()
        self.assertIsInstance(logger, logging.Logger)
        self.assertEqual(logging.getLogger().level, logging.INFO)
        self.assertFalse(
            any(isinstance(h, logging.FileHandler) for h in logging.getLogger().handlers)
        )

    def test_setup_logging_verbose(self):
        """Test verbose logging setup."""
        setup_logging(verbose=True)
        self.assertEqual(logging.getLogger().level, logging.DEBUG)

    def test_setup_logging_with_log_file(self):
        """Test an optional log file receives records."""
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "build.log")
            logger = setup_logging(log_file=path)
            logger.info("remote build started")
            for handler in logging.getLogger().handlers:
                handler.flush()

            with open(path, encoding="utf-8") as f:
                self.assertIn("INFO - remote build started", f.read())
            self._reset_root()


if __name__ == "__main__":
    unittest.main()
