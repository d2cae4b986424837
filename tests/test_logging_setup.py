import logging
import tempfile
import unittest
from pathlib import Path

from taskcal.logging_setup import _ConsoleNoiseFilter, setup_logging


def _record(name: str, level: int) -> logging.LogRecord:
    return logging.LogRecord(name, level, __file__, 1, "message", None, None)


class LoggingSetupTests(unittest.TestCase):
    def setUp(self) -> None:
        root = logging.getLogger()
        self._saved = (list(root.handlers), root.level)

    def tearDown(self) -> None:
        root = logging.getLogger()
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
        handlers, level = self._saved
        for handler in handlers:
            root.addHandler(handler)
        root.setLevel(level)
        logging.captureWarnings(False)

    def test_console_filter(self) -> None:
        noise = _ConsoleNoiseFilter()
        self.assertTrue(noise.filter(_record("taskcal.sync_engine", logging.DEBUG)))
        self.assertFalse(noise.filter(_record("caldav", logging.INFO)))
        self.assertTrue(noise.filter(_record("urllib3.connectionpool", logging.WARNING)))
        self.assertFalse(noise.filter(_record("asyncio", logging.WARNING)))

    def test_file_handler_receives_debug(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            setup_logging(log_dir=temp_dir)
            logging.getLogger("taskcal.test").debug("debounce fired for %s", "a.md")
            for handler in logging.getLogger().handlers:
                handler.flush()
            text = (Path(temp_dir) / "taskcal.log").read_text(encoding="utf-8")
            self.assertIn("debounce fired for a.md", text)
            for handler in list(logging.getLogger().handlers):
                logging.getLogger().removeHandler(handler)
                handler.close()


if __name__ == "__main__":
    unittest.main()
