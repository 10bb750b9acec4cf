# -*- coding: utf-8 -*-
"""
Property translation between human names and Gree vendor codes.

Human side: {"power": True, "mode": "cool", "temperature": 24}
Vendor side: {"Pow": 1, "Mod": 1, "SetTem": 24}
"""

import logging
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping

_LOGGER = logging.getLogger(__name__)


# =============================================================================
# PROPERTY TABLE
# =============================================================================

PROPERTIES = MappingProxyType({
    "power": "Pow",
    "mode": "Mod",
    "temperatureUnit": "TemUn",
    "temperature": "SetTem",
    "currentTemperature": "TemSen",
    "fanSpeed": "WdSpd",
    "air": "Air",
    "blow": "Blo",
    "health": "Health",
    "sleep": "SwhSlp",
    "lights": "Lig",
    "swingHor": "SwingLfRig",
    "swingVert": "SwUpDn",
    "quiet": "Quiet",
    "turbo": "Tur",
    "powerSave": "SvSt",
    "safetyHeating": "StHt",
})

VENDOR_CODES = MappingProxyType({code: name for name, code in PROPERTIES.items()})

BOOLEAN_PROPERTIES = frozenset([
    "power", "blow", "health", "sleep", "lights", "turbo", "powerSave", "safetyHeating",
])

ON_OFF = MappingProxyType({"off": 0, "on": 1})


def _ordinals(*labels: str) -> MappingProxyType:
    return MappingProxyType({label: index for index, label in enumerate(labels)})


ENUM_VALUES = MappingProxyType({
    "mode": _ordinals("auto", "cool", "dry", "fan_only", "heat"),
    "temperatureUnit": _ordinals("celsius", "fahrenheit"),
    "fanSpeed": _ordinals("auto", "low", "mediumLow", "medium", "mediumHigh", "high"),
    "air": _ordinals("off", "inside", "outside", "mode3"),
    "swingHor": _ordinals(
        "default", "full", "fixedLeft", "fixedMidLeft", "fixedMid",
        "fixedMidRight", "fixedRight", "fullAlt",
    ),
    "swingVert": _ordinals(
        "default", "full", "fixedTop", "fixedMidTop", "fixedMid", "fixedMidBottom",
        "fixedBottom", "swingBottom", "swingMidBottom", "swingMid", "swingMidTop", "swingTop",
    ),
    "quiet": _ordinals("off", "mode1", "mode2", "mode3"),
})

# Extra spellings accepted on input
ENUM_ALIASES = MappingProxyType({
    "mode": MappingProxyType({"fan": "fan_only"}),
})

TEMPERATURE_MIN = 16
TEMPERATURE_MAX = 30
TEMPERATURE_SENSOR_OFFSET = 40

# Columns requested by every status poll
POLLED_PROPERTIES = tuple(PROPERTIES)


# =============================================================================
# CODEC
# =============================================================================

class PropertyCodec:
    """Stateless translator between the human and the vendor property model."""

    def to_vendor(self, properties: Mapping[str, Any]) -> Dict[str, Any]:
        """Translate human properties into vendor codes and values.

        Unknown names are dropped.

        Raises:
            ValueError: On a temperature out of range or an unknown label
        """
        vendor: Dict[str, Any] = {}

        for name, value in properties.items():
            code = PROPERTIES.get(name)
            if code is None:
                _LOGGER.debug("Dropping unknown property %s", name)
                continue
            vendor[code] = self._value_to_vendor(name, value)

        return vendor

    def from_vendor(self, vendor: Mapping[str, Any]) -> Dict[str, Any]:
        """Translate vendor codes and values into human properties.

        Unknown codes are dropped; unknown ordinals are kept as-is.
        """
        properties: Dict[str, Any] = {}

        for code, value in vendor.items():
            name = VENDOR_CODES.get(code)
            if name is None:
                _LOGGER.debug("Dropping unknown vendor code %s", code)
                continue
            properties[name] = self._value_from_vendor(name, value)

        return properties

    def array_to_vendor(self, names: Iterable[str]) -> List[str]:
        """Translate a list of human names into vendor codes, dropping unknown ones."""
        return [PROPERTIES[name] for name in names if name in PROPERTIES]

    # =========================================================================
    # VALUE TRANSFORMS
    # =========================================================================

    @staticmethod
    def _value_to_vendor(name: str, value: Any) -> Any:
        if name in BOOLEAN_PROPERTIES:
            return _bool_to_vendor(name, value)

        if name == "temperature":
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"temperature must be an integer, got {value!r}")
            if not TEMPERATURE_MIN <= value <= TEMPERATURE_MAX:
                raise ValueError(
                    f"temperature {value} out of range "
                    f"{TEMPERATURE_MIN}..{TEMPERATURE_MAX}"
                )
            return value

        if name in ENUM_VALUES:
            return _enum_to_vendor(name, value)

        # Sensor readings pass through; the offset only applies when reading
        return value

    @staticmethod
    def _value_from_vendor(name: str, value: Any) -> Any:
        if name in BOOLEAN_PROPERTIES:
            return bool(value)

        if name == "currentTemperature":
            if isinstance(value, int) and not isinstance(value, bool):
                return value - TEMPERATURE_SENSOR_OFFSET
            return value

        if name in ENUM_VALUES:
            for label, ordinal in ENUM_VALUES[name].items():
                if ordinal == value:
                    return label
            _LOGGER.debug("Unknown %s ordinal %r", name, value)

        return value


def _bool_to_vendor(name: str, value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, str) and value.lower() in ON_OFF:
        return ON_OFF[value.lower()]
    if isinstance(value, int) and value in (0, 1):
        return value
    raise ValueError(f"{name} expects a boolean or 'on'/'off', got {value!r}")


def _enum_to_vendor(name: str, value: Any) -> int:
    if not isinstance(value, str):
        raise ValueError(f"{name} expects a string label, got {value!r}")

    wanted = value.lower()
    wanted = ENUM_ALIASES.get(name, {}).get(wanted, wanted).lower()

    for label, ordinal in ENUM_VALUES[name].items():
        if label.lower() == wanted:
            return ordinal

    raise ValueError(
        f"Unknown {name} value {value!r}. Expected one of: {list(ENUM_VALUES[name])}"
    )
