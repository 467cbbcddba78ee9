"""Configuration loading tests."""

import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from storeforge.app.config import AgentConfig, StoreForgeConfig


class TestStoreForgeConfig(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)

    def tearDown(self):
        self.temp_dir.cleanup()

    def test_missing_file_gives_defaults(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            config = StoreForgeConfig.load(self.root / "absent.json")

        self.assertEqual(config.agents.bulk_concurrency, 3)
        self.assertEqual(config.llm.provider, "openrouter")

    def test_save_and_load_round_trip(self):
        config = StoreForgeConfig(data_dir=self.root, log_level="DEBUG")
        config.llm.api_key = "secret"
        config.llm.fast_model = "vendor/fast"
        config.agents.bulk_concurrency = 5
        path = config.save(self.root / "config.json")

        self.assertNotIn("secret", path.read_text(encoding="utf-8"))
        with mock.patch.dict(os.environ, {}, clear=True):
            loaded = StoreForgeConfig.load(path)

        self.assertEqual(loaded.llm.fast_model, "vendor/fast")
        self.assertIsNone(loaded.llm.api_key)
        self.assertEqual(loaded.agents.bulk_concurrency, 5)
        self.assertEqual(loaded.log_level, "DEBUG")
        self.assertEqual(loaded.db_path, self.root / "storeforge.db")

    def test_environment_overrides_file(self):
        path = self.root / "config.json"
        path.write_text(json.dumps({"llm": {"pro_model": "file/pro"}}), encoding="utf-8")
        env = {
            "STOREFORGE_PRO_MODEL": "env/pro",
            "STOREFORGE_DB_PATH": str(self.root / "other.db"),
            "STOREFORGE_LOG_LEVEL": "warning",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            config = StoreForgeConfig.load(path)

        self.assertEqual(config.llm.pro_model, "env/pro")
        self.assertEqual(config.db_path, self.root / "other.db")
        self.assertEqual(config.log_level, "WARNING")

    def test_agent_config_ignores_unknown_keys(self):
        config = AgentConfig.from_dict({"manager_max_steps": 12, "turbo": True})
        self.assertEqual(config.manager_max_steps, 12)
        self.assertFalse(hasattr(config, "turbo"))


if __name__ == "__main__":
    unittest.main()
