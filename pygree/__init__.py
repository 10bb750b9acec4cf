# -*- coding: utf-8 -*-
"""
PyGree - Python module for Gree WiFi air conditioners.

Speaks the LAN protocol on UDP port 7000, with both the ECB (older) and
GCM (newer) firmware ciphers.
"""

__version__ = "1.0.0"

# =============================================================================
# PUBLIC API
# =============================================================================

# Connection
from .device import (
    connect,
    GreeDevice,
    GreeListener,
    EmptyListener,
    GreeLoggingAdapter,
    SessionState,
)

# Discovery
from .discovery import discover, GreeDiscovery

# Options
from .options import ClientOptions, OPTIONS_SCHEMA

# Message types
from .message import (
    Envelope,
    EncryptedPack,
    DeviceInfo,
    DeviceStatus,
    DeviceControl,
)

# Exceptions
from .message import (
    GreeError,
    TransportError,
    CryptoError,
    ProtocolError,
    NotConnectedError,
    ConnectCancelledError,
    FeatureValidationError,
)

# Properties and validation
from .properties import PropertyCodec, POLLED_PROPERTIES
from .validator import (
    DEFAULT_MATRIX,
    FeatureValidator,
    ValidationMatrix,
    ValidationMode,
)

# Protocol functions (for advanced use)
from .protocol import (
    build_scan,
    pack_message,
    unpack_message,
)

# Cipher (for advanced use)
from .cipher import (
    Algorithm,
    AESCipher,
    CipherSuite,
    decrypt_generic,
    encrypt_generic,
)

# Transport
from .transport import Transport, UdpTransport

# Constants
from .constants import DEFAULT_PORT, DEFAULT_HOST

# Version info
version_tuple = tuple(int(x) for x in __version__.split("."))
version = __version__


# =============================================================================
# __all__ - Exported symbols
# =============================================================================

__all__ = [
    # Version
    "__version__",
    "version",
    "version_tuple",
    # Connection
    "connect",
    "GreeDevice",
    "GreeListener",
    "EmptyListener",
    "GreeLoggingAdapter",
    "SessionState",
    # Discovery
    "discover",
    "GreeDiscovery",
    # Options
    "ClientOptions",
    "OPTIONS_SCHEMA",
    # Messages
    "Envelope",
    "EncryptedPack",
    "DeviceInfo",
    "DeviceStatus",
    "DeviceControl",
    # Exceptions
    "GreeError",
    "TransportError",
    "CryptoError",
    "ProtocolError",
    "NotConnectedError",
    "ConnectCancelledError",
    "FeatureValidationError",
    # Properties and validation
    "PropertyCodec",
    "POLLED_PROPERTIES",
    "DEFAULT_MATRIX",
    "FeatureValidator",
    "ValidationMatrix",
    "ValidationMode",
    # Protocol
    "build_scan",
    "pack_message",
    "unpack_message",
    # Cipher
    "Algorithm",
    "AESCipher",
    "CipherSuite",
    "decrypt_generic",
    "encrypt_generic",
    # Transport
    "Transport",
    "UdpTransport",
    # Constants
    "DEFAULT_PORT",
    "DEFAULT_HOST",
]
