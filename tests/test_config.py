import copy
import json
import tempfile
import unittest
from pathlib import Path

from rdwguard.bin.core.config_manager import ConfigManager
from rdwguard.bin.core.config_validator import ConfigValidator, validate_config_file


class ConfigManagerTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.path = Path(self._tmp.name) / "config" / "rdwguard_config.json"

    def test_creates_default_file(self) -> None:
        manager = ConfigManager(str(self.path))
        self.assertTrue(self.path.exists())
        self.assertEqual(manager.get("correction.gross_factor"), 10.0)
        self.assertEqual(manager.get("rebase.visual_root_node"), "avatarRoot")
        self.assertEqual(manager.get("missing.key", "fallback"), "fallback")

    def test_set_save_and_reload(self) -> None:
        manager = ConfigManager(str(self.path))
        changes = []
        manager.config_changed.connect(lambda key, value: changes.append((key, value)))
        manager.set("correction.smoothing_rate", 0.5, save_immediately=True)
        self.assertEqual(changes, [("correction.smoothing_rate", 0.5)])

        reloaded = ConfigManager(str(self.path))
        self.assertEqual(reloaded.get("correction.smoothing_rate"), 0.5)
        # Keys missing from the file come back from defaults
        self.assertEqual(reloaded.get("consistency_scan.interval"), 1.0)

    def test_partial_file_is_merged_with_defaults(self) -> None:
        self.path.parent.mkdir(parents=True)
        self.path.write_text(json.dumps({"correction": {"gross_factor": 8.0}}), encoding="utf-8")
        manager = ConfigManager(str(self.path))
        self.assertEqual(manager.get("correction.gross_factor"), 8.0)
        self.assertEqual(manager.get("correction.smoothing_rate"), 0.35)

    def test_corrupted_file_restores_backup(self) -> None:
        manager = ConfigManager(str(self.path))
        manager.set("correction.gross_factor", 12.0)
        manager.save_config()
        manager.set("correction.gross_factor", 14.0)
        manager.save_config()

        self.path.write_text("{ not json", encoding="utf-8")
        restored = ConfigManager(str(self.path))
        self.assertEqual(restored.get("correction.gross_factor"), 12.0)

    def test_empty_file_without_backup_uses_defaults(self) -> None:
        self.path.parent.mkdir(parents=True)
        self.path.write_text("", encoding="utf-8")
        manager = ConfigManager(str(self.path))
        self.assertEqual(manager.get("performance.frame_rate"), 90)

    def test_reset_export_import(self) -> None:
        manager = ConfigManager(str(self.path))
        manager.set("rebase.ground_level", 0.2)
        manager.reset_to_defaults("rebase")
        self.assertEqual(manager.get("rebase.ground_level"), 0.0)

        export_path = Path(self._tmp.name) / "export.json"
        manager.set("diagnostics.max_events", 64)
        self.assertTrue(manager.export_config(str(export_path)))

        other = ConfigManager(str(Path(self._tmp.name) / "other.json"))
        self.assertTrue(other.import_config(str(export_path)))
        self.assertEqual(other.get("diagnostics.max_events"), 64)
        self.assertFalse(other.import_config(str(Path(self._tmp.name) / "nope.json")))

    def test_avatar_layout_is_a_copy(self) -> None:
        manager = ConfigManager(str(self.path))
        layout = manager.get_avatar_layout()
        layout[0]["name"] = "Changed"
        self.assertEqual(manager.get_avatar_layout()[0]["name"], "RDW")


class ConfigValidatorTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        manager = ConfigManager(str(Path(self._tmp.name) / "rdwguard_config.json"))
        self.config = copy.deepcopy(manager.config)
        self.validator = ConfigValidator()

    def test_defaults_are_valid(self) -> None:
        self.assertTrue(self.validator.validate_config(self.config))
        self.assertEqual(self.validator.get_errors(), [])

    def test_missing_section(self) -> None:
        del self.config["avatar"]
        self.assertFalse(self.validator.validate_config(self.config))
        self.assertIn("Missing required configuration section: avatar", self.validator.get_errors())

    def test_bad_correction_values(self) -> None:
        self.config["correction"]["smoothing_rate"] = 1.5
        self.config["correction"]["gross_factor"] = 0.5
        self.assertFalse(self.validator.validate_config(self.config))
        self.assertEqual(len(self.validator.get_errors()), 2)

    def test_small_gross_factor_warns(self) -> None:
        self.config["correction"]["gross_factor"] = 3.0
        self.assertTrue(self.validator.validate_config(self.config))
        self.assertEqual(len(self.validator.get_warnings()), 1)

    def test_bad_layout(self) -> None:
        layout = self.config["avatar"]["layout"]
        layout.append({"name": "Ghost", "parent": None})
        layout.append({"name": "Hand", "parent": "Arm", "recovery_policy": "teleport"})
        self.assertFalse(self.validator.validate_config(self.config))
        errors = " | ".join(self.validator.get_errors())
        self.assertIn("exactly one root, found 2", errors)
        self.assertIn("references parent Arm", errors)
        self.assertIn("Hand: recovery_policy", errors)

    def test_unknown_source_and_suspended_node(self) -> None:
        self.config["redirection"]["source"] = "oculus"
        self.config["reset"]["suspended_nodes"] = ["Tail"]
        self.assertFalse(self.validator.validate_config(self.config))
        self.assertEqual(len(self.validator.get_errors()), 1)
        self.assertIn("reset.suspended_nodes names unknown node: Tail", self.validator.get_warnings())

    def test_validate_config_file(self) -> None:
        self.assertFalse(validate_config_file(str(Path(self._tmp.name) / "missing.json")))

        bad = Path(self._tmp.name) / "bad.json"
        bad.write_text("[", encoding="utf-8")
        self.assertFalse(validate_config_file(str(bad)))

        self.assertTrue(validate_config_file(str(Path(self._tmp.name) / "rdwguard_config.json")))


if __name__ == "__main__":
    unittest.main()
