import errno
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import yaml

from docket.config_manager import ConfigManager
from docket.models import AppConfig


class ConfigManagerTests(unittest.TestCase):
    def test_missing_file_is_created_with_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "nested" / "config.yaml"
            manager = ConfigManager(str(config_path))
            self.assertTrue(config_path.exists())
            config = manager.load()
            self.assertEqual(config.permissions.sync_roles, ["SOCIO", "ADMIN"])
            self.assertEqual(config.reminders.default_minutes, 1440)
            self.assertEqual(config.logging.level, "INFO")

    def test_save_fallback_when_replace_ebusy(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "config.yaml"
            manager = ConfigManager(str(config_path))
            config = AppConfig.from_dict(
                {
                    "bridge": {"base_url": "https://bridge.example.com", "secret": "s3cret"},
                    "reminders": {"default_minutes": 60},
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
            self.assertFalse(config_path.with_suffix(".yaml.tmp").exists())
            data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
            self.assertEqual(data["bridge"]["base_url"], "https://bridge.example.com")
            self.assertEqual(data["reminders"]["default_minutes"], 60)

    def test_update_deep_merges(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            manager = ConfigManager(str(Path(temp_dir) / "config.yaml"))
            manager.update({"bridge": {"base_url": "https://bridge.example.com", "secret": "s3cret"}})
            updated = manager.update({"bridge": {"timeout_seconds": 10}})
            self.assertEqual(updated.bridge.base_url, "https://bridge.example.com")
            self.assertEqual(updated.bridge.secret, "s3cret")
            self.assertEqual(updated.bridge.timeout_seconds, 10)

    def test_environment_overrides_file_but_is_not_persisted(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "config.yaml"
            manager = ConfigManager(str(config_path))
            manager.update({"bridge": {"base_url": "https://file.example.com"}})
            env = {"DOCKET_BRIDGE_BASE_URL": "https://env.example.com", "DOCKET_BRIDGE_SECRET": "from-env"}
            with mock.patch.dict(os.environ, env):
                config = manager.load()
                manager.update({"reminders": {"enabled": False}})
            self.assertEqual(config.bridge.base_url, "https://env.example.com")
            self.assertEqual(config.bridge.secret, "from-env")
            data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
            self.assertEqual(data["bridge"]["base_url"], "https://file.example.com")
            self.assertEqual(data["bridge"]["secret"], "")

    def test_masked_hides_secret(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            manager = ConfigManager(str(Path(temp_dir) / "config.yaml"))
            self.assertEqual(manager.masked()["bridge"]["secret"], "")
            manager.update({"bridge": {"secret": "s3cret"}})
            self.assertEqual(manager.masked()["bridge"]["secret"], "***")


if __name__ == "__main__":
    unittest.main()
