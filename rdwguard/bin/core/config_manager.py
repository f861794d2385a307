"""
Configuration Manager - Handles settings and the avatar layout table for RDW Guard
Enhanced with backup and validation so a corrupted file never stops the guard
"""

import copy
import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional
from PySide6.QtCore import QObject, Signal

from .config_validator import ConfigValidator
from .invariants import DEFAULT_AVATAR_LAYOUT


class ConfigManager(QObject):
    """Manages application configuration with corruption protection"""

    config_changed = Signal(str, object)  # setting_name, new_value
    config_loaded = Signal()
    config_saved = Signal()

    def __init__(self, config_file: Optional[str] = None):
        super().__init__()
        self.logger = logging.getLogger(__name__)

        # Configuration file path
        if config_file:
            self.config_file = Path(config_file)
        else:
            # Default to project directory
            project_root = Path(__file__).parent.parent.parent
            self.config_file = project_root / "config" / "rdwguard_config.json"

        self.backup_file = self.config_file.with_suffix('.json.backup')

        # Ensure config directory exists
        self.config_file.parent.mkdir(parents=True, exist_ok=True)

        # Default configuration
        self.default_config = {
            # Application settings
            "app": {
                "version": "1.0.0",
                "name": "RDW Guard",
            },

            # Corrector settings
            "correction": {
                "gross_factor": 10.0,          # gross threshold = tolerance * factor
                "smoothing_rate": 0.35,        # fraction of the offset removed per frame
                "max_smoothing_frames": 30,
                "sanity_ceiling": 1000.0       # meters, local position
            },

            # Secondary full-tree scan
            "consistency_scan": {
                "interval": 1.0,               # seconds
                "world_ceiling": 1000.0        # meters from the rig root
            },

            # Reset gating
            "reset": {
                "suspended_nodes": ["Head", "Body"]
            },

            # Visual rebasing
            "rebase": {
                "head_node": "Head",
                "visual_root_node": "avatarRoot",
                "ground_level": 0.0,
                "heading_epsilon": 0.001
            },

            # Diagnostics stream
            "diagnostics": {
                "max_events": 256,
                "summary_interval": 5.0,
                "warning_interval": 2.0
            },

            # Redirection collaborator
            "redirection": {
                "source": "simulated",
                "walk_speed": 0.0,
                "turn_rate": 0.0,
                "max_lost_frames": 30
            },

            # Avatar layout table
            "avatar": {
                "layout": copy.deepcopy(DEFAULT_AVATAR_LAYOUT)
            },

            # Performance settings
            "performance": {
                "frame_rate": 90,
                "frame_budget_ms": 2.0,
                "log_level": "INFO"
            }
        }

        # Current configuration
        self.config = copy.deepcopy(self.default_config)
        self.validator = ConfigValidator()

        # Load configuration
        self.load_config()

    def load_config(self) -> bool:
        """Load configuration from file with validation and auto-restore"""
        try:
            if self.config_file.exists():
                try:
                    with open(self.config_file, 'r', encoding='utf-8') as f:
                        content = f.read()
                        if not content.strip():
                            raise ValueError("Empty config file")
                        loaded_config = json.loads(content)
                except (json.JSONDecodeError, ValueError) as e:
                    self.logger.error(f"Config file corrupted: {e}")
                    loaded_config = self._restore_from_backup()

                self.config = self._merge_configs(self.default_config, loaded_config)

                if not self.validator.validate_config(self.config):
                    self.logger.warning("Configuration validation found issues:")
                    self.validator.print_validation_report()
                else:
                    self.logger.info("Configuration validation passed")

                self.logger.info(f"Configuration loaded from: {self.config_file}")
            else:
                self.config = copy.deepcopy(self.default_config)
                if not self.backup_file.exists():
                    self.save_config()
                self.logger.info("Created default configuration")
            self.config_loaded.emit()
            return True
        except OSError as e:
            self.logger.error(f"Failed to load configuration: {e}")
            self.config = copy.deepcopy(self.default_config)
            return False

    def _restore_from_backup(self) -> dict:
        if not self.backup_file.exists():
            self.logger.warning("No backup found, using defaults")
            return {}
        try:
            shutil.copy2(self.backup_file, self.config_file)
            with open(self.config_file, 'r', encoding='utf-8') as f:
                restored = json.load(f)
            self.logger.info("Restored config from backup")
            return restored
        except (OSError, json.JSONDecodeError) as e:
            self.logger.error(f"Backup also corrupted ({e}), using defaults")
            return {}

    def save_config(self) -> bool:
        """Save configuration to file with atomic write and backup protection"""
        try:
            if self.config_file.exists():
                shutil.copy2(self.config_file, self.backup_file)
            try:
                json.loads(json.dumps(self.config, indent=2, ensure_ascii=False))
            except (TypeError, ValueError) as e:
                self.logger.error(f"Configuration is not serializable: {e}")
                return False
            dirpath = os.path.dirname(self.config_file)
            with tempfile.NamedTemporaryFile('w', dir=dirpath, delete=False, encoding='utf-8') as tf:
                json.dump(self.config, tf, indent=2, ensure_ascii=False)
                tempname = tf.name
            os.replace(tempname, self.config_file)
            self.logger.info(f"Configuration saved to: {self.config_file}")
            self.config_saved.emit()
            return True
        except OSError as e:
            self.logger.error(f"Failed to save configuration: {e}")
            if self.backup_file.exists():
                try:
                    shutil.copy2(self.backup_file, self.config_file)
                    self.logger.info("Restored configuration from backup")
                except OSError as restore_error:
                    self.logger.error(f"Failed to restore backup: {restore_error}")
            return False

    def _merge_configs(self, default: dict, loaded: dict) -> dict:
        """Recursively merge loaded config with defaults"""
        result = copy.deepcopy(default)

        for key, value in loaded.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'correction.gross_factor')"""
        keys = key_path.split('.')
        try:
            value = self.config
            for key in keys:
                value = value[key]
            return value

        except (KeyError, TypeError):
            if default is not None:
                return default

            # Try to get from defaults
            try:
                value = self.default_config
                for key in keys:
                    value = value[key]
                return value
            except (KeyError, TypeError):
                return None

    def set(self, key_path: str, value: Any, save_immediately: bool = False):
        """Set configuration value using dot notation"""
        keys = key_path.split('.')
        config_ref = self.config

        # Navigate to the parent of the target key
        for key in keys[:-1]:
            if key not in config_ref or not isinstance(config_ref[key], dict):
                config_ref[key] = {}
            config_ref = config_ref[key]

        old_value = config_ref.get(keys[-1])
        config_ref[keys[-1]] = value

        if old_value != value:
            self.config_changed.emit(key_path, value)

        if save_immediately:
            self.save_config()

        self.logger.debug(f"Config set: {key_path} = {value}")

    def get_section(self, section: str) -> dict:
        """Get entire configuration section"""
        return self.config.get(section, {})

    def reset_to_defaults(self, section: Optional[str] = None):
        """Reset configuration to defaults"""
        if section:
            if section in self.default_config:
                self.config[section] = copy.deepcopy(self.default_config[section])
                self.config_changed.emit(section, self.config[section])
        else:
            self.config = copy.deepcopy(self.default_config)
            self.config_changed.emit("*", self.config)

        self.logger.info(f"Configuration reset to defaults: {section or 'all'}")

    def export_config(self, file_path: str) -> bool:
        """Export configuration to a file"""
        try:
            export_path = Path(file_path)
            with open(export_path, 'w', encoding='utf-8') as f:
                json.dump(self.config, f, indent=2)

            self.logger.info(f"Configuration exported to: {export_path}")
            return True

        except OSError as e:
            self.logger.error(f"Failed to export configuration: {e}")
            return False

    def import_config(self, file_path: str) -> bool:
        """Import configuration from a file"""
        import_path = Path(file_path)
        if not import_path.exists():
            self.logger.error(f"Import file not found: {import_path}")
            return False

        try:
            with open(import_path, 'r', encoding='utf-8') as f:
                imported_config = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.error(f"Failed to import configuration: {e}")
            return False

        self.config = self._merge_configs(self.config, imported_config)
        self.config_changed.emit("*", self.config)

        self.logger.info(f"Configuration imported from: {import_path}")
        return True

    def get_avatar_layout(self) -> List[Dict]:
        """Avatar layout table used to build the pose tree and invariant registry"""
        return copy.deepcopy(self.get('avatar.layout'))

    def __str__(self) -> str:
        return f"ConfigManager(file={self.config_file})"

    def __repr__(self) -> str:
        return self.__str__()
