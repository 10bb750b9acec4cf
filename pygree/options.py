# -*- coding: utf-8 -*-
"""Client options and their validation schema."""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional

import voluptuous as vol

from .constants import (
    BIND_RETRY_DELAY, DEFAULT_CONNECT_TIMEOUT, DEFAULT_HOST, DEFAULT_PORT,
    DEFAULT_POLLING_INTERVAL, DEFAULT_POLLING_TIMEOUT,
)
from .validator import ValidationMode

CONF_HOST = "host"
CONF_PORT = "port"
CONF_CONNECT_TIMEOUT = "connect_timeout"
CONF_POLL = "poll"
CONF_POLLING_INTERVAL = "polling_interval"
CONF_POLLING_TIMEOUT = "polling_timeout"
CONF_BIND_RETRY_DELAY = "bind_retry_delay"
CONF_VALIDATION_MODE = "validation_mode"
CONF_VALIDATE_WIND_SETTINGS = "validate_wind_settings"
CONF_ENABLE_DEBUG = "enable_debug"

_SECONDS = vol.All(vol.Coerce(float), vol.Range(min=0, min_included=False))

OPTIONS_SCHEMA = vol.Schema(
    {
        vol.Required(CONF_HOST, default=DEFAULT_HOST): vol.All(str, vol.Length(min=1)),
        vol.Required(CONF_PORT, default=DEFAULT_PORT): vol.All(
            vol.Coerce(int), vol.Range(min=1, max=65535)
        ),
        vol.Required(CONF_CONNECT_TIMEOUT, default=DEFAULT_CONNECT_TIMEOUT): _SECONDS,
        vol.Required(CONF_POLL, default=True): bool,
        vol.Required(CONF_POLLING_INTERVAL, default=DEFAULT_POLLING_INTERVAL): _SECONDS,
        vol.Required(CONF_POLLING_TIMEOUT, default=DEFAULT_POLLING_TIMEOUT): _SECONDS,
        vol.Required(CONF_BIND_RETRY_DELAY, default=BIND_RETRY_DELAY): _SECONDS,
        vol.Required(CONF_VALIDATION_MODE, default=ValidationMode.WARN.value): vol.All(
            vol.Lower, vol.In([mode.value for mode in ValidationMode])
        ),
        vol.Required(CONF_VALIDATE_WIND_SETTINGS, default=True): bool,
        vol.Required(CONF_ENABLE_DEBUG, default=False): bool,
    }
)


@dataclass
class ClientOptions:
    """Connection, polling and validation settings of one device session."""
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    poll: bool = True
    polling_interval: float = DEFAULT_POLLING_INTERVAL
    polling_timeout: float = DEFAULT_POLLING_TIMEOUT
    bind_retry_delay: float = BIND_RETRY_DELAY
    validation_mode: ValidationMode = ValidationMode.WARN
    validate_wind_settings: bool = True
    enable_debug: bool = False

    @classmethod
    def from_dict(cls, config: Optional[Mapping[str, Any]] = None) -> "ClientOptions":
        """Validate a config mapping and build options from it.

        Raises:
            vol.Invalid: If a value is missing its type or range
        """
        data = dict(config or {})
        if isinstance(data.get(CONF_VALIDATION_MODE), ValidationMode):
            data[CONF_VALIDATION_MODE] = data[CONF_VALIDATION_MODE].value

        data = OPTIONS_SCHEMA(data)
        data[CONF_VALIDATION_MODE] = ValidationMode(data[CONF_VALIDATION_MODE])
        return cls(**data)

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data[CONF_VALIDATION_MODE] = self.validation_mode.value
        return data
