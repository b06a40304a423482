"""
Tests for JSON-backed settings.
"""

import sys
import os
import json
import shutil
import tempfile
import unittest

# Ensure project root is on sys.path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from settings.settings_manager import SettingsManager


class TestSettingsManager(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.mkdtemp(prefix="comfygraph_settings_")

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def test_defaults(self):
        settings = SettingsManager(settings_dir=self.tmp)
        self.assertEqual(settings.get("server.port"), 8010)
        self.assertEqual(settings.get("builder.filename_prefix"), "ComfyUI")
        self.assertTrue(settings.get("builder.fallback_to_minimal"))
        self.assertEqual(settings.get("no.such.key", "x"), "x")

    def test_set_persists(self):
        settings = SettingsManager(settings_dir=self.tmp)
        settings.set("builder.add_save_node", True)
        reloaded = SettingsManager(settings_dir=self.tmp)
        self.assertTrue(reloaded.get("builder.add_save_node"))
        # untouched defaults survive the merge
        self.assertEqual(reloaded.get("server.host"), "127.0.0.1")

    def test_set_section(self):
        settings = SettingsManager(settings_dir=self.tmp)
        settings.set_section("builder", {"filename_prefix": "fox", "add_save_node": True})
        with open(settings.settings_path, encoding="utf-8") as f:
            saved = json.load(f)
        self.assertEqual(saved["builder"]["filename_prefix"], "fox")
        self.assertEqual(settings.get_section("builder")["add_save_node"], True)

    def test_listener(self):
        settings = SettingsManager(settings_dir=self.tmp)
        changes = []
        settings.add_listener(lambda key, value: changes.append((key, value)))
        settings.set("server.port", 9000, save=False)
        settings.set("server.port", 9000, save=False)
        self.assertEqual(changes, [("server.port", 9000)])

    def test_reset_section(self):
        settings = SettingsManager(settings_dir=self.tmp)
        settings.set("server.port", 9000)
        settings.reset_to_defaults("server")
        self.assertEqual(settings.get("server.port"), 8010)

    def test_corrupt_file_falls_back_to_defaults(self):
        with open(os.path.join(self.tmp, "settings.json"), "w", encoding="utf-8") as f:
            f.write("{not json")
        with self.assertLogs("settings", level="WARNING"):
            settings = SettingsManager(settings_dir=self.tmp)
        self.assertEqual(settings.get("server.port"), 8010)

    def test_get_all_is_a_copy(self):
        settings = SettingsManager(settings_dir=self.tmp)
        snapshot = settings.get_all()
        snapshot["server"]["port"] = 1
        self.assertEqual(settings.get("server.port"), 8010)


if __name__ == "__main__":
    unittest.main(verbosity=2)
