import logging
import tempfile
import unittest
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from artifact_tracker.config.models import FileLoggingSettings, LoggingSettings
from artifact_tracker.logging import init_logging


class InitLoggingTests(unittest.TestCase):
    def setUp(self) -> None:
        root = logging.getLogger()
        saved_handlers = list(root.handlers)
        saved_level = root.level

        def restore() -> None:
            for handler in list(root.handlers):
                root.removeHandler(handler)
                handler.close()
            for handler in saved_handlers:
                root.addHandler(handler)
            root.setLevel(saved_level)

        self.addCleanup(restore)

    def test_stream_only_by_default(self) -> None:
        init_logging(LoggingSettings(level="debug"))

        root = logging.getLogger()
        self.assertEqual(root.level, logging.DEBUG)
        self.assertEqual(len(root.handlers), 1)
        self.assertEqual(logging.getLogger("aiohttp.access").level, logging.INFO)

    def test_rotating_file_handler(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "logs" / "tracker.log"
            init_logging(LoggingSettings(level="INFO", file=FileLoggingSettings(path=str(path))))

            handlers = [h for h in logging.getLogger().handlers if isinstance(h, TimedRotatingFileHandler)]
            self.assertEqual(len(handlers), 1)
            logging.getLogger("artifact_tracker.test").info("Artifact cache refreshed. windows=%d", 3)
            handlers[0].flush()
            handlers[0].close()
            logging.getLogger().removeHandler(handlers[0])

            self.assertIn("[INFO][artifact_tracker.test] Artifact cache refreshed. windows=3", path.read_text("utf-8"))

    def test_invalid_level(self) -> None:
        with self.assertRaises(ValueError):
            init_logging(LoggingSettings(level="chatty"))


if __name__ == "__main__":
    unittest.main()
