import errno
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import yaml

from taskcal.config_manager import MASK, ConfigManager
from taskcal.models import AppConfig


class ConfigManagerTests(unittest.TestCase):
    def test_creates_default_config_file(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "nested" / "config.yaml"
            manager = ConfigManager(str(config_path))
            self.assertTrue(config_path.exists())
            config = manager.load()
            self.assertFalse(config.export.enabled)
            self.assertEqual(config.task_store.link_field, "calendarEventId")

    def test_save_fallback_when_replace_ebusy(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "config.yaml"
            manager = ConfigManager(str(config_path))
            config = AppConfig.from_dict(
                {
                    "caldav": {"base_url": "https://dav.example.com", "username": "u", "password": "p"},
                    "export": {"enabled": True, "target_calendar_id": "cal-1"},
                }
            )

            original_replace = Path.replace

            def replace_side_effect(self: Path, target: Path) -> Path:
                if str(self).endswith(".tmp"):
                    raise OSError(errno.EBUSY, "Device or resource busy")
                return original_replace(self, target)

            with mock.patch("pathlib.Path.replace", new=replace_side_effect):
                manager.save(config)

            self.assertTrue(config_path.exists())
            self.assertFalse(Path(f"{config_path}.tmp").exists())
            data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
            self.assertEqual(data["caldav"]["base_url"], "https://dav.example.com")
            self.assertEqual(data["export"]["target_calendar_id"], "cal-1")

    def test_update_deep_merges(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            manager = ConfigManager(str(Path(temp_dir) / "config.yaml"))
            manager.update({"export": {"enabled": True, "debounce_ms": 250}})
            config = manager.update({"export": {"concurrency_limit": 2}})
            self.assertTrue(config.export.enabled)
            self.assertEqual(config.export.debounce_ms, 250)
            self.assertEqual(config.export.concurrency_limit, 2)
            self.assertEqual(manager.load(), config)

    def test_masked_hides_password(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            manager = ConfigManager(str(Path(temp_dir) / "config.yaml"))
            self.assertEqual(manager.masked()["caldav"]["password"], "")
            manager.update({"caldav": {"password": "secret"}})
            self.assertEqual(manager.masked()["caldav"]["password"], MASK)
            self.assertEqual(manager.load().caldav.password, "secret")


if __name__ == "__main__":
    unittest.main()
