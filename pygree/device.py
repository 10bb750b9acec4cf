# -*- coding: utf-8 -*-
"""
Gree Device communication module.

Provides the asyncio session with one HVAC unit:

    DISCONNECTED -> SCANNING -> BINDING (ECB) -> BINDING (GCM) -> BOUND

Everything (receive task, timers, polling task) runs on one event loop, so
session state is only ever touched from that loop.
"""

import asyncio
import logging
import weakref
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from .cipher import Algorithm, CipherSuite
from .constants import (
    BIND_RESULT_OK,
    MSG_BINDOK, MSG_DAT, MSG_DEV, MSG_RES,
)
from .message import (
    ConnectCancelledError, CryptoError, DeviceControl, DeviceInfo, DeviceStatus,
    Envelope, FeatureValidationError, GreeError, NotConnectedError, ProtocolError,
)
from .options import ClientOptions
from .properties import POLLED_PROPERTIES, PropertyCodec
from .protocol import (
    bind_payload, build_scan, command_payload, pack_message, parse_dat, parse_res,
    status_payload, unpack_message,
)
from .transport import Transport, UdpTransport
from .validator import FeatureValidator, ValidationMode

_LOGGER = logging.getLogger(__name__)


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    SCANNING = "scanning"
    BINDING = "binding"
    BOUND = "bound"


# =============================================================================
# LOGGING ADAPTER
# =============================================================================

class GreeLoggingAdapter(logging.LoggerAdapter):
    """Adapter that adds device ID to log messages."""

    def process(self, msg, kwargs):
        dev_id = self.extra.get("device_id") or "???"
        # Show last 6 chars of the MAC
        short_id = f"...{dev_id[-6:]}" if len(dev_id) > 6 else dev_id
        return f"[{short_id}] {msg}", kwargs


# =============================================================================
# LISTENER INTERFACE
# =============================================================================

class GreeListener(ABC):
    """Receives session events of a GreeDevice.

    status_updated and disconnected must be implemented; the other
    callbacks default to doing nothing.
    """

    def connected(self) -> None:
        """Called once the session is bound."""

    @abstractmethod
    def status_updated(self, status: Dict[str, Any]) -> None:
        """Called when a status reply changed any property.

        Args:
            status: Full property snapshot {human_name: value}
        """

    def no_response(self) -> None:
        """Called when a status request went unanswered."""

    def command_acknowledged(self, properties: Dict[str, Any]) -> None:
        """Called with the values the device confirmed for a command."""

    @abstractmethod
    def disconnected(self) -> None:
        """Called after disconnect()."""

    def error(self, error: Exception) -> None:
        """Called with errors raised where no caller can receive them."""


class EmptyListener(GreeListener):
    """Listener that does nothing."""

    def status_updated(self, status: Dict[str, Any]) -> None:
        pass

    def disconnected(self) -> None:
        pass


# =============================================================================
# DEVICE SESSION
# =============================================================================

class GreeDevice:
    """Session with one Gree HVAC unit."""

    def __init__(
        self,
        options: Optional[ClientOptions] = None,
        transport: Optional[Transport] = None,
        codec: Optional[PropertyCodec] = None,
        validator: Optional[FeatureValidator] = None,
    ):
        """Initialize a device session.

        Args:
            options: Connection, polling and validation settings
            transport: Datagram transport (UdpTransport by default)
            codec: Property codec
            validator: Feature validator holding the availability matrix
        """
        self.options = options or ClientOptions()
        self.enable_debug = self.options.enable_debug

        self._transport = transport or UdpTransport()
        self._codec = codec or PropertyCodec()
        self._validator = validator or FeatureValidator()
        self._suite = CipherSuite()
        self._logger = GreeLoggingAdapter(_LOGGER, {"device_id": self.options.host})

        self.state = SessionState.DISCONNECTED
        self.device_id: Optional[str] = None
        self.device_info: Optional[DeviceInfo] = None
        self.bind_attempt = 0
        self.reconnect_attempts = 0

        # Vendor values last confirmed by the device; replaced, never mutated
        self._cache: Dict[str, Any] = {}

        self._address: Optional[str] = None
        self._seqno = 0
        self._open = False
        self._listeners: List[weakref.ref] = []

        self._connect_future: Optional[asyncio.Future] = None
        self._connect_timer: Optional[asyncio.TimerHandle] = None
        self._bind_timer: Optional[asyncio.TimerHandle] = None
        self._status_timer: Optional[asyncio.TimerHandle] = None
        self._receive_task: Optional[asyncio.Task] = None
        self._poll_task: Optional[asyncio.Task] = None

        self._handlers: Dict[str, Callable[[Envelope, Dict[str, Any]], None]] = {
            MSG_DEV: self._handle_dev,
            MSG_BINDOK: self._handle_bindok,
            MSG_DAT: self._handle_dat,
            MSG_RES: self._handle_res,
        }

    def __repr__(self) -> str:
        return f"GreeDevice(host={self.options.host!r}, device_id={self.device_id!r}, state={self.state.value})"

    def debug(self, msg: str, *args) -> None:
        """Log debug if enabled."""
        if self.enable_debug:
            self._logger.debug(msg, *args)

    # =========================================================================
    # LISTENERS
    # =========================================================================

    def add_listener(self, listener: GreeListener) -> None:
        """Register a listener. Only a weak reference is kept."""
        if listener not in self._live_listeners():
            self._listeners.append(weakref.ref(listener))

    def remove_listener(self, listener: GreeListener) -> None:
        self._listeners = [ref for ref in self._listeners if ref() not in (None, listener)]

    def _live_listeners(self) -> List[GreeListener]:
        listeners = [ref() for ref in self._listeners]
        return [listener for listener in listeners if listener is not None]

    def _notify(self, event: str, *args) -> None:
        for listener in self._live_listeners():
            try:
                getattr(listener, event)(*args)
            except Exception:
                self._logger.exception("Error in %s callback", event)

    def _fire_error(self, error: Exception) -> None:
        self._logger.warning("%s", error)
        self._notify("error", error)

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    @property
    def is_connected(self) -> bool:
        return self.state is SessionState.BOUND

    @property
    def properties(self) -> Dict[str, Any]:
        """Translated snapshot of the confirmed device properties."""
        return self._codec.from_vendor(self._cache)

    @property
    def status(self) -> DeviceStatus:
        return DeviceStatus.from_properties(self.properties, self.device_id)

    async def connect(self) -> None:
        """Scan for the device and bind to it.

        Returns once the session is bound. Calling again while a connect is
        pending waits for the same attempt; calling on a bound session
        returns immediately.

        Raises:
            TransportError: If the socket cannot be opened or the scan fails
            ConnectCancelledError: If disconnect() is called before binding
        """
        if self.state is SessionState.BOUND:
            return

        if self._connect_future is not None and not self._connect_future.done():
            await asyncio.shield(self._connect_future)
            return

        loop = asyncio.get_running_loop()
        future = self._connect_future = loop.create_future()
        self._open = True
        self._logger.info("Connecting to %s:%d", self.options.host, self.options.port)

        try:
            await self._transport.create()
            self._address = await self._transport.resolve(self.options.host)
            if future.done():
                # disconnect() raced the socket setup
                self._transport.close()
            else:
                self._receive_task = loop.create_task(self._receive_loop())
                self._start_scan()
        except GreeError as e:
            self._resolve_connect(e)
            await self._teardown()

        await asyncio.shield(future)

    async def disconnect(self) -> None:
        """Stop the session. Safe to call more than once."""
        if not self._open:
            return

        await self._teardown()
        self._resolve_connect(ConnectCancelledError())

        self._logger.info("Disconnected")
        self._notify("disconnected")

    def request_status(self) -> None:
        """Ask the device for every polled property.

        The reply arrives asynchronously as a status_updated event; if none
        arrives within polling_timeout the cache is cleared and no_response
        fires.

        Raises:
            NotConnectedError: If the session is not bound
            TransportError: If sending fails
        """
        self._ensure_bound()

        cols = self._codec.array_to_vendor(POLLED_PROPERTIES)
        self._send_packed(status_payload(self.device_id, cols))

        self._cancel_timer(self._status_timer)
        self._status_timer = asyncio.get_running_loop().call_later(
            self.options.polling_timeout, self._on_status_timeout
        )

    def set_properties(self, properties: Mapping[str, Any]) -> None:
        """Send human properties to the device as one command.

        Raises:
            NotConnectedError: If the session is not bound
            ValueError: If a value cannot be translated
            TransportError: If sending fails
        """
        self._ensure_bound()

        vendor = self._codec.to_vendor(properties)
        if not vendor:
            self.debug("No known properties in %s, nothing sent", list(properties))
            return

        self.debug("Setting properties: %s", vendor)
        self._send_packed(command_payload(vendor))

    def set_property(self, name: str, value: Any) -> None:
        self.set_properties({name: value})

    def control(self, control: DeviceControl) -> None:
        """Apply a DeviceControl, gated by the configured validation mode.

        Raises:
            FeatureValidationError: Under STRICT validation, if any requested
                feature is not available in the mode
            NotConnectedError: If the session is not bound
        """
        self._ensure_bound()

        properties = control.to_properties()
        if not properties:
            self._logger.warning("No properties to update")
            return

        self._check_control(control)
        self.set_properties(properties)

    def validate_control(self, control: DeviceControl) -> List[str]:
        """Validation errors for a control, against its mode or the current one."""
        mode = control.mode or self.status.mode
        if mode is None:
            return ["Mode is required for validation"]

        return self._validator.validate(
            mode, control.to_features(), self.options.validate_wind_settings
        )

    def is_feature_available(self, feature: str) -> bool:
        mode = self.status.mode
        if mode is None:
            # Unknown mode; let the device decide
            return True
        return self._validator.is_feature_available(feature, mode)

    def is_wind_setting_available(self, setting: str) -> bool:
        mode = self.status.mode
        if mode is None:
            return True
        return self._validator.is_wind_setting_available(setting, mode)

    def available_features(self) -> Set[str]:
        return self._validator.available_features_for_mode(self.status.mode)

    def set_feature_safely(self, feature: str, value: bool) -> None:
        """Set a single feature flag, validating it against the current mode.

        Raises:
            GreeError: If the current mode is unknown
            ValueError: If the feature cannot be set this way
            FeatureValidationError: Under STRICT validation, if unavailable
        """
        mode = self.status.mode
        if mode is None:
            raise GreeError("Cannot determine current AC mode")

        fields = {
            "blow": "blow",
            "health": "health",
            "powersave": "power_save",
            "safetyheating": "safety_heating",
            "air": "air",
            "quiet": "quiet",
            "turbo": "turbo",
        }
        field_name = fields.get(feature.lower())
        if field_name is None:
            raise ValueError(f"Unknown feature: {feature}")

        control = DeviceControl(**{field_name: bool(value)})
        errors = self._validator.validate(
            mode, control.to_features(), self.options.validate_wind_settings
        )
        if errors and self.options.validation_mode is ValidationMode.STRICT:
            raise FeatureValidationError(mode, errors=errors)

        self.control(control)

    # =========================================================================
    # VALIDATION GATE
    # =========================================================================

    def _check_control(self, control: DeviceControl) -> None:
        validation_mode = self.options.validation_mode
        if validation_mode is ValidationMode.NONE:
            return

        mode = control.mode or self.status.mode
        if mode is None:
            self.debug("Current mode unknown, skipping feature validation")
            return

        errors = self._validator.validate(
            mode, control.to_features(), self.options.validate_wind_settings
        )
        if not errors:
            return

        if validation_mode is ValidationMode.STRICT:
            raise FeatureValidationError(mode, errors=errors)

        self._logger.warning("Feature validation failed: %s", "; ".join(errors))

    # =========================================================================
    # CONNECTION STEPS
    # =========================================================================

    def _start_scan(self) -> None:
        self._suite.reset()
        self._seqno = 0
        self.bind_attempt = 0
        self.state = SessionState.SCANNING

        self._cancel_timer(self._bind_timer)
        self._cancel_timer(self._connect_timer)
        self._connect_timer = asyncio.get_running_loop().call_later(
            self.options.connect_timeout, self._on_connect_timeout
        )

        self.debug("Scanning %s", self._address)
        self._transport.send(build_scan(), self._address, self.options.port)

    def _send_bind(self) -> None:
        self.bind_attempt += 1
        self.state = SessionState.BINDING
        self.debug("Bind attempt %d (%s)", self.bind_attempt, self._suite.algorithm.value)

        if self.bind_attempt == 1:
            self._cancel_timer(self._bind_timer)
            self._bind_timer = asyncio.get_running_loop().call_later(
                self.options.bind_retry_delay, self._on_bind_retry
            )

        self._send_packed(bind_payload(self.device_id))

    def _on_bind_retry(self) -> None:
        self._bind_timer = None
        if self.state is not SessionState.BINDING or self.bind_attempt != 1:
            return

        self.debug("No bindok with ECB, retrying bind with GCM")
        self._suite.use_algorithm(Algorithm.AEAD)
        try:
            self._send_bind()
        except GreeError as e:
            self._fire_error(e)

    def _on_connect_timeout(self) -> None:
        self._connect_timer = None
        if self.state in (SessionState.DISCONNECTED, SessionState.BOUND):
            return

        self.reconnect_attempts += 1
        self._logger.warning(
            "Not bound after %.1fs, reconnecting (attempt %d)",
            self.options.connect_timeout, self.reconnect_attempts,
        )
        try:
            self._start_scan()
        except GreeError as e:
            self._fire_error(e)

    def _on_status_timeout(self) -> None:
        self._status_timer = None
        if self.state is not SessionState.BOUND:
            return

        self._logger.warning("No status reply within %.1fs", self.options.polling_timeout)
        self._cache = {}
        self._notify("no_response")

    # =========================================================================
    # POLLING
    # =========================================================================

    def _start_polling(self) -> None:
        if not self.options.poll or self._poll_task is not None:
            return

        async def poll_loop():
            self.debug("Polling started")
            try:
                while self.state is SessionState.BOUND:
                    await asyncio.sleep(self.options.polling_interval)
                    if self.state is not SessionState.BOUND:
                        break
                    try:
                        self.request_status()
                    except GreeError as e:
                        self._fire_error(e)
            except asyncio.CancelledError:
                self.debug("Polling cancelled")
                raise

        self._poll_task = asyncio.get_running_loop().create_task(poll_loop())

    # =========================================================================
    # INBOUND
    # =========================================================================

    async def _receive_loop(self) -> None:
        while True:
            datagram = await self._transport.receive()
            if datagram is None:
                self.debug("Receive loop stopped")
                return
            data, _addr = datagram
            try:
                self._handle_datagram(data)
            except Exception:
                self._logger.exception("Unexpected error handling datagram")

    def _handle_datagram(self, data: bytes) -> None:
        try:
            envelope, payload = unpack_message(self._suite, data)
        except CryptoError as e:
            self._logger.warning("Dropping datagram that failed to decrypt: %s", e)
            return
        except ProtocolError as e:
            self._logger.warning("Dropping malformed datagram: %s", e)
            return

        msg_type = payload["t"]
        handler = self._handlers.get(msg_type)
        if handler is None:
            self.debug("Ignoring message of type %s", msg_type)
            return

        try:
            handler(envelope, payload)
        except ProtocolError as e:
            self._logger.warning("Dropping malformed %s message: %s", msg_type, e)
        except GreeError as e:
            self._fire_error(e)

    def _handle_dev(self, envelope: Envelope, payload: Dict[str, Any]) -> None:
        if self.state is not SessionState.SCANNING:
            self.debug("Ignoring dev while %s", self.state.value)
            return

        device_id = payload.get("cid") or payload.get("mac")
        if not device_id:
            raise ProtocolError("dev reply carries no device id")
        if not isinstance(device_id, str):
            raise ProtocolError(f"dev reply carries a non-string device id: {device_id!r}")

        self.device_id = device_id
        self.device_info = DeviceInfo.from_dict(payload, address=self._address)
        self._logger.extra["device_id"] = device_id
        self._logger.info("Found %s (firmware %s)", self.device_info.name, self.device_info.version)

        self._send_bind()

    def _handle_bindok(self, envelope: Envelope, payload: Dict[str, Any]) -> None:
        if self.state is not SessionState.BINDING:
            self.debug("Ignoring bindok while %s", self.state.value)
            return

        result = payload.get("r")
        if result is not None and result != BIND_RESULT_OK:
            self._logger.warning("Bind rejected with result %s", result)
            return

        key = payload.get("key")
        try:
            self._suite.set_key(key)
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"bindok carries an unusable key: {e}") from e

        self._cancel_timer(self._connect_timer)
        self._cancel_timer(self._bind_timer)
        self._connect_timer = self._bind_timer = None
        self.state = SessionState.BOUND
        self.reconnect_attempts = 0
        self._logger.info("Bound using %s", self._suite.algorithm.value.upper())

        try:
            self.request_status()
        except GreeError as e:
            self._fire_error(e)
        self._start_polling()

        self._resolve_connect()
        self._notify("connected")

    def _handle_dat(self, envelope: Envelope, payload: Dict[str, Any]) -> None:
        if self.state is not SessionState.BOUND:
            return

        values = parse_dat(payload)
        self._cancel_timer(self._status_timer)
        self._status_timer = None

        changed = values != self._cache
        self._cache = dict(values)

        if changed:
            self.debug("Status changed: %s", values)
            self._notify("status_updated", self.properties)

    def _handle_res(self, envelope: Envelope, payload: Dict[str, Any]) -> None:
        if self.state is not SessionState.BOUND:
            return

        values = parse_res(payload)
        cache = dict(self._cache)
        cache.update(values)
        self._cache = cache

        self.debug("Command acknowledged: %s", values)
        self._notify("command_acknowledged", self._codec.from_vendor(values))

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _ensure_bound(self) -> None:
        if self.state is not SessionState.BOUND:
            raise NotConnectedError()

    def _send_packed(self, payload: Dict[str, Any]) -> None:
        self._seqno += 1
        data = pack_message(self._suite, payload, self._seqno)
        self._transport.send(data, self._address, self.options.port)

    def _resolve_connect(self, error: Optional[Exception] = None) -> None:
        future = self._connect_future
        if future is None or future.done():
            return
        if error is None:
            future.set_result(None)
        else:
            future.set_exception(error)
            # Mark retrieved; waiters still get the error
            future.exception()

    @staticmethod
    def _cancel_timer(timer: Optional[asyncio.TimerHandle]) -> None:
        if timer is not None:
            timer.cancel()

    async def _teardown(self) -> None:
        self._open = False
        self.state = SessionState.DISCONNECTED

        for timer in (self._connect_timer, self._bind_timer, self._status_timer):
            self._cancel_timer(timer)
        self._connect_timer = self._bind_timer = self._status_timer = None

        current = asyncio.current_task()

        if self._poll_task is not None:
            task, self._poll_task = self._poll_task, None
            task.cancel()
            if task is not current:
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        self._transport.close()

        if self._receive_task is not None:
            task, self._receive_task = self._receive_task, None
            if task is not current:
                await task


# =============================================================================
# CONNECTION FUNCTION
# =============================================================================

async def connect(
    host: str,
    listener: Optional[GreeListener] = None,
    timeout: Optional[float] = None,
    transport: Optional[Transport] = None,
    **options: Any
) -> GreeDevice:
    """Connect to a Gree device.

    Args:
        host: Device IP address, host name or broadcast address
        listener: Session listener (optional)
        timeout: Give up after this many seconds (default: keep retrying)
        transport: Datagram transport (default UdpTransport)
        **options: Other ClientOptions keys

    Returns:
        Bound GreeDevice

    Raises:
        asyncio.TimeoutError: If not bound within timeout
    """
    device = GreeDevice(ClientOptions.from_dict({"host": host, **options}), transport=transport)
    if listener is not None:
        device.add_listener(listener)

    try:
        await asyncio.wait_for(device.connect(), timeout=timeout)
    except BaseException:
        await device.disconnect()
        raise

    return device
