# -*- coding: utf-8 -*-
"""
Feature availability per operating mode.

The matrix mirrors the tables of the vendor mobile app:
- Table 1: features (X-Fan, health, energy saving, ...)
- Table 2: wind settings (manual fan speed, quiet, turbo)
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, FrozenSet, List, Mapping, Optional, Set

from .constants import (
    ALL_MODES, MODE_AUTO, MODE_COOL, MODE_DRY, MODE_FAN, MODE_FAN_ONLY, MODE_HEAT,
)


class ValidationMode(str, Enum):
    """How a device enforces validation results."""

    NONE = "none"      # skip validation
    WARN = "warn"      # log violations, send anyway
    STRICT = "strict"  # raise FeatureValidationError


@dataclass(frozen=True)
class ValidationMatrix:
    """Modes in which each feature and wind setting is allowed."""
    features: Mapping[str, FrozenSet[str]]
    wind_settings: Mapping[str, FrozenSet[str]]


_NOT_DRY = frozenset([MODE_AUTO, MODE_COOL, MODE_HEAT, MODE_FAN])

DEFAULT_MATRIX = ValidationMatrix(
    features=MappingProxyType({
        # X-Fan
        "blow": frozenset([MODE_COOL, MODE_DRY]),
        "health": ALL_MODES,
        "uvc": ALL_MODES,
        "powersave": frozenset([MODE_COOL]),
        "energysaving": frozenset([MODE_COOL]),
        "safetyheating": ALL_MODES,
        "air": ALL_MODES,
    }),
    wind_settings=MappingProxyType({
        "fanspeed": _NOT_DRY,
        "auto": _NOT_DRY,
        "quiet": _NOT_DRY,
        "turbo": frozenset([MODE_COOL, MODE_HEAT]),
    }),
)

# Column order of the printed matrix
MATRIX_MODES = (MODE_AUTO, MODE_COOL, MODE_HEAT, MODE_FAN, MODE_DRY)
MATRIX_FEATURES = ("blow", "health", "powersave", "safetyheating", "air")
MATRIX_WIND_SETTINGS = ("fanspeed", "auto", "quiet", "turbo")

WIND_SETTING_LABELS = MappingProxyType({
    "fanspeed": "Manual fan speed",
    "quiet": "Quiet mode",
    "turbo": "Turbo mode",
})


def normalize_mode(mode: Optional[str]) -> Optional[str]:
    """Lowercase a mode and map the codec's "fan_only" onto "fan"."""
    if not mode:
        return None
    mode = mode.lower()
    return MODE_FAN if mode == MODE_FAN_ONLY else mode


class FeatureValidator:
    """Checks requested features against a ValidationMatrix."""

    def __init__(self, matrix: ValidationMatrix = DEFAULT_MATRIX):
        self.matrix = matrix

    def is_feature_available(self, feature: Optional[str], mode: Optional[str]) -> bool:
        return self._is_available(self.matrix.features, feature, mode)

    def is_wind_setting_available(self, setting: Optional[str], mode: Optional[str]) -> bool:
        return self._is_available(self.matrix.wind_settings, setting, mode)

    @staticmethod
    def _is_available(
        table: Mapping[str, FrozenSet[str]],
        name: Optional[str],
        mode: Optional[str],
    ) -> bool:
        mode = normalize_mode(mode)
        if not name or mode is None:
            return False

        modes = table.get(name.lower())
        if modes is None:
            # Not restricted
            return True

        return mode in modes

    def available_modes_for_feature(self, feature: Optional[str]) -> FrozenSet[str]:
        if not feature:
            return frozenset()
        return self.matrix.features.get(feature.lower(), frozenset())

    def available_modes_for_wind_setting(self, setting: Optional[str]) -> FrozenSet[str]:
        if not setting:
            return frozenset()
        return self.matrix.wind_settings.get(setting.lower(), frozenset())

    def available_features_for_mode(self, mode: Optional[str]) -> Set[str]:
        mode = normalize_mode(mode)
        if mode is None:
            return set()
        return {feature for feature, modes in self.matrix.features.items() if mode in modes}

    def validate(
        self,
        mode: Optional[str],
        requested: Mapping[str, Any],
        check_wind_settings: bool = True,
    ) -> List[str]:
        """Validate a control request against a mode.

        Only features being turned on are checked; a feature being turned
        off is always allowed. Wind settings are checked only when
        check_wind_settings is set.

        Args:
            mode: Current (or requested) operating mode
            requested: {feature: value}; booleans for features, a label
                for "fanspeed"
            check_wind_settings: Also check fan speed, quiet and turbo

        Returns:
            List of error messages, empty when the request is allowed
        """
        if not mode:
            return ["Mode cannot be empty for feature validation"]

        errors: List[str] = []

        for feature, value in requested.items():
            if value is True and not self.is_feature_available(feature, mode):
                errors.append(
                    f"Feature '{feature}' is not available in mode '{mode}'. "
                    f"Available in: {sorted(self.available_modes_for_feature(feature))}"
                )

            if check_wind_settings and value is not None:
                error = self._check_wind_setting(feature, value, mode)
                if error:
                    errors.append(error)

        return errors

    def _check_wind_setting(self, feature: str, value: Any, mode: str) -> Optional[str]:
        setting = feature.lower()

        if setting == "fanspeed":
            if not isinstance(value, str) or value.lower() == "auto":
                return None
        elif setting in ("quiet", "turbo"):
            if value is not True:
                return None
        else:
            return None

        if self.is_wind_setting_available(setting, mode):
            return None

        return (
            f"{WIND_SETTING_LABELS[setting]} ({setting}) is not available in mode '{mode}'. "
            f"Available in: {sorted(self.available_modes_for_wind_setting(setting))}"
        )

    def feature_matrix(self) -> str:
        """Render both availability tables as text."""
        header = "| ".join(f"{mode.capitalize():<5}" for mode in MATRIX_MODES)
        divider = "-----------------|" + "------|" * len(MATRIX_MODES)

        lines = ["GREE AC Feature Availability by Mode:", ""]

        lines.append("=== TABLE 1: FEATURES ===")
        lines.append(f"Feature          | {header}|")
        lines.append(divider)
        for feature in MATRIX_FEATURES:
            lines.append(self._matrix_row(feature, self.is_feature_available))

        lines.append("")
        lines.append("=== TABLE 2: WIND SETTINGS ===")
        lines.append(f"Wind Setting     | {header}|")
        lines.append(divider)
        for setting in MATRIX_WIND_SETTINGS:
            lines.append(self._matrix_row(setting, self.is_wind_setting_available))

        lines.extend([
            "",
            "Notes:",
            "- Dry mode has the most restrictions (no wind controls)",
            "- Turbo is only available in Cool and Heat modes",
            "- X-Fan (blow) only works in Cool and Dry modes",
            "- Energy Saving (powersave) only works in Cool mode",
        ])

        return "\n".join(lines) + "\n"

    @staticmethod
    def _matrix_row(name: str, check) -> str:
        cells = "".join(
            (" ✓    |" if check(name, mode) else " ✗    |") for mode in MATRIX_MODES
        )
        return f"{name:<16} |{cells}"
