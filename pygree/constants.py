# -*- coding: utf-8 -*-
"""
Gree LAN Protocol Constants.

Protocol notes:
- UDP, port 7000, one JSON envelope per datagram
- Inner payloads are AES-128 encrypted and base64 encoded ("pack")
- Older firmware: ECB with PKCS7 padding
- Newer firmware: GCM with a fixed nonce and AAD, tag sent separately
"""

# =============================================================================
# NETWORK
# =============================================================================

DEFAULT_PORT = 7000
DEFAULT_HOST = "192.168.1.255"

# Envelope fields for client-originated messages
CLIENT_CID = "app"
CLIENT_UID = 0

# =============================================================================
# MESSAGE TYPES
# =============================================================================

# Outer envelope type for every encrypted message
MSG_PACK = "pack"

# Inner payload types
MSG_SCAN = "scan"
MSG_DEV = "dev"
MSG_BIND = "bind"
MSG_BINDOK = "bindok"
MSG_STATUS = "status"
MSG_DAT = "dat"
MSG_CMD = "cmd"
MSG_RES = "res"

# =============================================================================
# ENCRYPTION
# =============================================================================

# Generic keys, used only for discovery and the bind handshake
ECB_GENERIC_KEY = b"a3K8Bx%2r8Y7#xDh"
GCM_GENERIC_KEY = b"{yxAHAY_Lm6pbC/<"

# GCM parameters (fixed by device firmware, never randomized)
GCM_NONCE = bytes.fromhex("5440784449675a516c5e6313")
GCM_AAD = b"qualcomm-test"
GCM_NONCE_SIZE = 12  # 96 bits
GCM_TAG_SIZE = 16    # 128 bits

# AES
AES_BLOCK_SIZE = 16
AES_KEY_SIZE = 16

# =============================================================================
# TIMING
# =============================================================================

DEFAULT_CONNECT_TIMEOUT = 3.0   # seconds until scan/bind is retried
DEFAULT_POLLING_INTERVAL = 3.0  # seconds between status polls
DEFAULT_POLLING_TIMEOUT = 1.0   # seconds to wait for a "dat" reply
BIND_RETRY_DELAY = 0.5          # seconds before the second (GCM) bind
DISCOVERY_TIMEOUT = 3.0         # seconds to collect scan replies

# =============================================================================
# OPERATING MODES
# =============================================================================

MODE_AUTO = "auto"
MODE_COOL = "cool"
MODE_DRY = "dry"
MODE_FAN = "fan"
MODE_HEAT = "heat"

ALL_MODES = frozenset([MODE_AUTO, MODE_COOL, MODE_DRY, MODE_FAN, MODE_HEAT])

# Codec label for fan mode, accepted by the validator as MODE_FAN
MODE_FAN_ONLY = "fan_only"

# =============================================================================
# BIND RESULT
# =============================================================================

BIND_RESULT_OK = 200
