"""
Configuration Validator for RDW Guard
Validates configuration files and provides helpful error messages
"""

import json
import logging
from typing import Any, Dict, List


class ConfigValidator:
    """Validates RDW Guard configuration dictionaries"""

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self.errors = []
        self.warnings = []

    def validate_config(self, config: Dict[str, Any]) -> bool:
        """Validate a configuration dictionary"""
        self.errors.clear()
        self.warnings.clear()

        # Validate required sections
        required_sections = ['app', 'correction', 'consistency_scan', 'reset', 'rebase',
                             'diagnostics', 'redirection', 'avatar', 'performance']
        for section in required_sections:
            if section not in config:
                self.errors.append(f"Missing required configuration section: {section}")

        if self.errors:
            return False

        self._validate_correction_section(config.get('correction', {}))
        self._validate_consistency_section(config.get('consistency_scan', {}))
        self._validate_rebase_section(config.get('rebase', {}))
        self._validate_diagnostics_section(config.get('diagnostics', {}))
        self._validate_redirection_section(config.get('redirection', {}))
        layout_names = self._validate_avatar_section(config.get('avatar', {}))
        self._validate_reset_section(config.get('reset', {}), layout_names)
        self._validate_performance_section(config.get('performance', {}))

        return len(self.errors) == 0

    def _positive_number(self, section: str, values: Dict[str, Any], field: str):
        if field in values:
            value = values[field]
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                self.errors.append(f"{section}.{field} must be a positive number")

    def _validate_correction_section(self, correction: Dict[str, Any]):
        """Validate corrector settings"""
        for field in ('sanity_ceiling', 'max_smoothing_frames'):
            self._positive_number('correction', correction, field)

        gross_factor = correction.get('gross_factor')
        if gross_factor is not None:
            if not isinstance(gross_factor, (int, float)) or gross_factor <= 1:
                self.errors.append("correction.gross_factor must be greater than 1")
            elif gross_factor < 5:
                self.warnings.append("correction.gross_factor below 5 snaps most drift instantly")

        rate = correction.get('smoothing_rate')
        if rate is not None and (not isinstance(rate, (int, float)) or rate <= 0 or rate > 1):
            self.errors.append("correction.smoothing_rate must be in (0, 1]")

    def _validate_consistency_section(self, scan: Dict[str, Any]):
        """Validate consistency scan settings"""
        for field in ('interval', 'world_ceiling'):
            self._positive_number('consistency_scan', scan, field)

    def _validate_rebase_section(self, rebase: Dict[str, Any]):
        """Validate visual rebasing settings"""
        self._positive_number('rebase', rebase, 'heading_epsilon')
        if 'ground_level' in rebase and not isinstance(rebase['ground_level'], (int, float)):
            self.errors.append("rebase.ground_level must be a number")

    def _validate_diagnostics_section(self, diagnostics: Dict[str, Any]):
        """Validate diagnostics settings"""
        if 'max_events' in diagnostics:
            value = diagnostics['max_events']
            if not isinstance(value, int) or value <= 0:
                self.errors.append("diagnostics.max_events must be a positive integer")
        self._positive_number('diagnostics', diagnostics, 'summary_interval')

    def _validate_redirection_section(self, redirection: Dict[str, Any]):
        """Validate redirection source settings"""
        source = redirection.get('source', 'simulated')
        if source not in ('simulated', 'steamvr'):
            self.errors.append(f"redirection.source must be 'simulated' or 'steamvr', got {source!r}")

    def _validate_avatar_section(self, avatar: Dict[str, Any]) -> List[str]:
        """Validate the avatar layout table, returns the node names"""
        layout = avatar.get('layout')
        if not isinstance(layout, list) or not layout:
            self.errors.append("avatar.layout must be a non-empty list of node entries")
            return []

        names = []
        roots = 0
        for index, entry in enumerate(layout):
            if not isinstance(entry, dict) or 'name' not in entry:
                self.errors.append(f"avatar.layout[{index}] must be an object with a name")
                continue
            name = entry['name']
            if name in names:
                self.errors.append(f"Duplicate node in avatar layout: {name}")
            parent = entry.get('parent')
            if parent is None:
                roots += 1
            elif parent not in names:
                self.errors.append(f"Node {name} references parent {parent} before it is declared")

            position = entry.get('canonical_position', [0.0, 0.0, 0.0])
            if not isinstance(position, list) or len(position) != 3:
                self.errors.append(f"{name}: canonical_position must be [x, y, z]")
            rotation = entry.get('canonical_rotation', [1.0, 0.0, 0.0, 0.0])
            if not isinstance(rotation, list) or len(rotation) != 4:
                self.errors.append(f"{name}: canonical_rotation must be [w, x, y, z]")

            tolerance = entry.get('tolerance_radius', 0.01)
            if not isinstance(tolerance, (int, float)) or tolerance < 0:
                self.errors.append(f"{name}: tolerance_radius must be a non-negative number")

            policy = entry.get('recovery_policy', 'snap')
            if policy not in ('snap', 'smooth'):
                self.errors.append(f"{name}: recovery_policy must be 'snap' or 'smooth'")
            names.append(name)

        if roots != 1:
            self.errors.append(f"avatar.layout must have exactly one root, found {roots}")
        return names

    def _validate_reset_section(self, reset: Dict[str, Any], layout_names: List[str]):
        """Validate reset gating settings"""
        suspended = reset.get('suspended_nodes', [])
        if not isinstance(suspended, list):
            self.errors.append("reset.suspended_nodes must be a list of node names")
            return
        for name in suspended:
            if layout_names and name not in layout_names:
                self.warnings.append(f"reset.suspended_nodes names unknown node: {name}")

    def _validate_performance_section(self, performance: Dict[str, Any]):
        """Validate performance settings"""
        if 'frame_rate' in performance:
            fps = performance['frame_rate']
            if not isinstance(fps, int) or fps <= 0:
                self.errors.append("performance.frame_rate must be a positive integer")
        self._positive_number('performance', performance, 'frame_budget_ms')

    def get_errors(self) -> List[str]:
        """Get list of validation errors"""
        return self.errors.copy()

    def get_warnings(self) -> List[str]:
        """Get list of validation warnings"""
        return self.warnings.copy()

    def print_validation_report(self):
        """Log validation errors and warnings"""
        if self.errors:
            self.logger.error("Configuration validation errors:")
            for error in self.errors:
                self.logger.error(f"  ❌ {error}")

        if self.warnings:
            self.logger.warning("Configuration validation warnings:")
            for warning in self.warnings:
                self.logger.warning(f"  ⚠️ {warning}")

        if not self.errors and not self.warnings:
            self.logger.info("✅ Configuration validation passed")
        elif not self.errors:
            self.logger.info("✅ Configuration validation passed (with warnings)")
        else:
            self.logger.error("❌ Configuration validation failed")


def validate_config_file(config_path: str) -> bool:
    """Validate a configuration file"""
    validator = ConfigValidator()

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = json.load(f)
    except FileNotFoundError:
        validator.logger.error(f"Configuration file not found: {config_path}")
        return False
    except json.JSONDecodeError as e:
        validator.logger.error(f"Invalid JSON in configuration file: {e}")
        return False

    is_valid = validator.validate_config(config)
    validator.print_validation_report()
    return is_valid
