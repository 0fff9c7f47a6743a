from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

from resloader.config import ConfigError, LoaderConfig, load_config, save_config


class ConfigFileTest(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "conf" / "resloader.json"

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_missing_file_gives_defaults(self) -> None:
        self.assertEqual(load_config(self.path), LoaderConfig())

    def test_save_and_load(self) -> None:
        config = LoaderConfig(
            cache_dir=Path(self._tmp.name) / "cache",
            user_agent="custom/1.0",
            hours_changing=2,
            hours_stable=-1,
            timeout=(5.0, 30.0),
            max_redirects=4,
            offline=True,
        )
        save_config(self.path, config)
        self.assertEqual(load_config(self.path), config)

    def test_partial_file_keeps_defaults(self) -> None:
        self.path.parent.mkdir(parents=True)
        self.path.write_text(json.dumps({"hours_stable": 48, "timeout": 10}), encoding="utf-8")
        config = load_config(self.path)
        self.assertEqual(config.hours_stable, 48)
        self.assertEqual(config.timeout, (10.0, 10.0))
        self.assertEqual(config.hours_changing, LoaderConfig().hours_changing)

    def test_null_cache_dir_means_memory_only(self) -> None:
        self.path.parent.mkdir(parents=True)
        self.path.write_text(json.dumps({"cache_dir": None}), encoding="utf-8")
        self.assertIsNone(load_config(self.path).cache_dir)

    def test_invalid_json(self) -> None:
        self.path.parent.mkdir(parents=True)
        self.path.write_text("{not json", encoding="utf-8")
        with self.assertRaises(ConfigError):
            load_config(self.path)

    def test_invalid_values(self) -> None:
        self.path.parent.mkdir(parents=True)
        for payload in ({"hours_changing": "soon"}, {"timeout": [1, 2, 3]}, ["not", "an", "object"]):
            with self.subTest(payload=payload):
                self.path.write_text(json.dumps(payload), encoding="utf-8")
                with self.assertRaises(ConfigError):
                    load_config(self.path)

    def test_with_overrides_skips_none(self) -> None:
        config = LoaderConfig().with_overrides(user_agent=None, hours_stable=12)
        self.assertEqual(config.user_agent, LoaderConfig().user_agent)
        self.assertEqual(config.hours_stable, 12)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
