# -*- coding: utf-8 -*-
"""
Gree Message structures.

Defines the envelope, device records and the exception hierarchy.
"""

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Optional

from .constants import CLIENT_CID, CLIENT_UID, MSG_PACK


@dataclass(frozen=True)
class Envelope:
    """Outer wire message.

    Attributes:
        cid: Sender id ("app" for the client, device MAC otherwise)
        i: Sequence number (best-effort, per connection)
        t: Outer type, "pack" for every encrypted message
        uid: User id (0 for the client)
        pack: Base64 ciphertext of the inner JSON document
        tag: Base64 GCM tag, only for AEAD messages
    """
    cid: str = CLIENT_CID
    i: int = 0
    t: str = MSG_PACK
    uid: int = CLIENT_UID
    pack: str = ""
    tag: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Return the JSON-ready form, omitting an absent tag."""
        data = {
            "cid": self.cid,
            "i": self.i,
            "t": self.t,
            "uid": self.uid,
            "pack": self.pack,
        }
        if self.tag is not None:
            data["tag"] = self.tag
        return data


@dataclass(frozen=True)
class EncryptedPack:
    """Result of encrypting one inner payload."""
    pack: str
    tag: Optional[str]
    algorithm: str
    key: bytes


@dataclass
class DeviceInfo:
    """Device found by a scan.

    Attributes:
        mac: Device MAC address (also the device id)
        name: Friendly name reported by the device
        version: Firmware version
        address: IP address the reply came from
    """
    mac: str
    name: str = "Unknown Device"
    version: str = "Unknown"
    address: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict, address: Optional[str] = None) -> "DeviceInfo":
        """Create DeviceInfo from a decrypted "dev" payload."""
        return cls(
            mac=data.get("mac") or data.get("cid") or "",
            name=data.get("name") or "Unknown Device",
            version=data.get("ver") or "Unknown",
            address=address,
        )


@dataclass
class DeviceStatus:
    """Human-readable device status.

    Fields are None when the device has not reported them.
    """
    device_id: Optional[str] = None
    power: Optional[bool] = None
    mode: Optional[str] = None
    temperature_unit: Optional[str] = None
    temperature: Optional[int] = None
    current_temperature: Optional[int] = None
    fan_speed: Optional[str] = None
    air: Optional[str] = None
    blow: Optional[bool] = None
    health: Optional[bool] = None
    sleep: Optional[bool] = None
    lights: Optional[bool] = None
    swing_horizontal: Optional[str] = None
    swing_vertical: Optional[str] = None
    quiet: Optional[bool] = None
    turbo: Optional[bool] = None
    power_save: Optional[bool] = None
    safety_heating: Optional[bool] = None

    @classmethod
    def from_properties(cls, properties: dict, device_id: Optional[str] = None) -> "DeviceStatus":
        """Create DeviceStatus from a human property map."""
        quiet = properties.get("quiet")
        return cls(
            device_id=device_id,
            power=properties.get("power"),
            mode=properties.get("mode"),
            temperature_unit=properties.get("temperatureUnit"),
            temperature=properties.get("temperature"),
            current_temperature=properties.get("currentTemperature"),
            fan_speed=properties.get("fanSpeed"),
            air=properties.get("air"),
            blow=properties.get("blow"),
            health=properties.get("health"),
            sleep=properties.get("sleep"),
            lights=properties.get("lights"),
            swing_horizontal=properties.get("swingHor"),
            swing_vertical=properties.get("swingVert"),
            quiet=None if quiet is None else quiet != "off",
            turbo=properties.get("turbo"),
            power_save=properties.get("powerSave"),
            safety_heating=properties.get("safetyHeating"),
        )


@dataclass
class DeviceControl:
    """Requested changes; None means "leave as is"."""
    power: Optional[bool] = None
    mode: Optional[str] = None
    temperature: Optional[int] = None
    fan_speed: Optional[str] = None
    swing_horizontal: Optional[str] = None
    swing_vertical: Optional[str] = None
    lights: Optional[bool] = None
    turbo: Optional[bool] = None
    quiet: Optional[bool] = None
    health: Optional[bool] = None
    power_save: Optional[bool] = None
    sleep: Optional[bool] = None
    air: Optional[bool] = None
    blow: Optional[bool] = None
    safety_heating: Optional[bool] = None

    def to_properties(self) -> Dict[str, Any]:
        """Build the human property map for the fields that are set."""
        properties: Dict[str, Any] = {}

        for name, value in (
            ("power", self.power),
            ("lights", self.lights),
            ("turbo", self.turbo),
            ("health", self.health),
            ("powerSave", self.power_save),
            ("sleep", self.sleep),
            ("blow", self.blow),
            ("safetyHeating", self.safety_heating),
        ):
            if value is not None:
                properties[name] = bool(value)

        # Quiet and fresh air are multi-level on the wire; a flag picks
        # the first level
        if self.quiet is not None:
            properties["quiet"] = "mode1" if self.quiet else "off"
        if self.air is not None:
            properties["air"] = "inside" if self.air else "off"

        if self.temperature is not None:
            properties["temperature"] = self.temperature

        for name, value in (
            ("mode", self.mode),
            ("fanSpeed", self.fan_speed),
            ("swingHor", self.swing_horizontal),
            ("swingVert", self.swing_vertical),
        ):
            if value is not None:
                properties[name] = value

        return properties

    def to_features(self) -> Dict[str, Any]:
        """Build the validator request: enabled flags plus manual fan speed."""
        features: Dict[str, Any] = {}

        for name, value in (
            ("blow", self.blow),
            ("health", self.health),
            ("powersave", self.power_save),
            ("safetyheating", self.safety_heating),
            ("air", self.air),
            ("quiet", self.quiet),
            ("turbo", self.turbo),
        ):
            if value:
                features[name] = True

        if self.fan_speed is not None and self.fan_speed.lower() != "auto":
            features["fanspeed"] = self.fan_speed

        return features


# =============================================================================
# EXCEPTIONS
# =============================================================================

class GreeError(Exception):
    """Base exception for Gree errors."""
    pass


class TransportError(GreeError):
    """Socket, send or receive failure."""
    pass


class CryptoError(GreeError):
    """Error during encryption/decryption."""
    pass


class ProtocolError(GreeError):
    """Malformed or unexpected envelope or payload."""
    pass


class NotConnectedError(GreeError):
    """Operation attempted while the session is not bound."""

    def __init__(self, message: str = "Client is not connected to the HVAC"):
        super().__init__(message)


class ConnectCancelledError(GreeError):
    """Pending connect was cancelled by disconnect."""

    def __init__(self, message: str = "Connecting to HVAC was cancelled"):
        super().__init__(message)


class FeatureValidationError(GreeError):
    """Requested features are not available in the AC mode.

    Built either for one feature (with the modes it is allowed in) or for
    a list of error messages.
    """

    def __init__(
        self,
        mode: str,
        errors: Optional[List[str]] = None,
        feature: Optional[str] = None,
        available_modes: Optional[FrozenSet[str]] = None,
    ):
        self.mode = mode
        self.feature = feature
        self.available_modes = available_modes

        if feature is not None:
            message = (
                f"Feature '{feature}' is not available in mode '{mode}'. "
                f"Available in: {sorted(available_modes or ())}"
            )
            self.errors = [message]
        else:
            self.errors = list(errors or [])
            message = (
                f"Multiple feature validation errors in mode '{mode}': "
                + "; ".join(self.errors)
            )

        super().__init__(message)

    @property
    def has_multiple_errors(self) -> bool:
        """Whether more than one rule was violated."""
        return len(self.errors) > 1
