# -*- coding: utf-8 -*-
"""
Gree Protocol message packing and unpacking.

Datagram format:
===============

    {"cid": "app", "i": 1, "t": "pack", "uid": 0, "pack": "<base64>", "tag": "<base64>"}
    - pack: encrypted inner JSON document, whose "t" names the message kind
    - tag: only present for GCM

The discovery probe is the exception: a bare, unencrypted {"t": "scan"}.

Inner payloads:
    bind    {"mac", "t": "bind", "uid"}
    bindok  {"key", "r"?}
    status  {"cols", "mac", "t": "status"}
    dat     {"cols", "dat"}
    cmd     {"opt", "p", "t": "cmd"}
    res     {"opt", "val" | "p"}
"""

import json
from typing import Any, Dict, Mapping, Sequence, Tuple

from .cipher import CipherSuite
from .constants import (
    CLIENT_CID, CLIENT_UID,
    MSG_PACK, MSG_SCAN, MSG_BIND, MSG_STATUS, MSG_CMD,
)
from .message import Envelope, ProtocolError


# =============================================================================
# OUTBOUND
# =============================================================================

def _dumps(data: Mapping[str, Any]) -> bytes:
    return json.dumps(data, separators=(",", ":")).encode("utf-8")


def build_scan() -> bytes:
    """Build the unencrypted discovery probe."""
    return _dumps({"t": MSG_SCAN})


def pack_message(suite: CipherSuite, payload: Mapping[str, Any], seqno: int) -> bytes:
    """Encrypt an inner payload and wrap it into a client envelope.

    Args:
        suite: Cipher suite with the algorithm/key to use
        payload: Inner JSON document
        seqno: Envelope sequence number

    Returns:
        Datagram bytes
    """
    encrypted = suite.encrypt(payload)
    envelope = Envelope(
        cid=CLIENT_CID,
        i=seqno,
        t=MSG_PACK,
        uid=CLIENT_UID,
        pack=encrypted.pack,
        tag=encrypted.tag,
    )
    return _dumps(envelope.to_dict())


def bind_payload(mac: str) -> Dict[str, Any]:
    return {"mac": mac, "t": MSG_BIND, "uid": CLIENT_UID}


def status_payload(mac: str, cols: Sequence[str]) -> Dict[str, Any]:
    return {"cols": list(cols), "mac": mac, "t": MSG_STATUS}


def command_payload(vendor_properties: Mapping[str, Any]) -> Dict[str, Any]:
    """Build a "cmd" payload; "opt" and "p" keep the same order."""
    return {
        "opt": list(vendor_properties.keys()),
        "p": list(vendor_properties.values()),
        "t": MSG_CMD,
    }


# =============================================================================
# INBOUND
# =============================================================================

def parse_envelope(data: bytes) -> Envelope:
    """Parse a datagram into an Envelope.

    Raises:
        ProtocolError: If the datagram is not JSON or misses required fields
    """
    try:
        raw = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolError(f"Datagram is not JSON: {e}") from e

    if not isinstance(raw, dict):
        raise ProtocolError("Datagram is not a JSON object")

    if raw.get("t") != MSG_PACK:
        raise ProtocolError(f"Unexpected envelope type: {raw.get('t')!r}")

    if not raw.get("pack"):
        raise ProtocolError("Envelope has no pack")

    try:
        seqno = int(raw.get("i", 0))
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"Invalid envelope sequence: {raw.get('i')!r}") from e

    return Envelope(
        cid=str(raw.get("cid", "")),
        i=seqno,
        t=MSG_PACK,
        uid=raw.get("uid", 0),
        pack=raw["pack"],
        tag=raw.get("tag"),
    )


def unpack_message(suite: CipherSuite, data: bytes) -> Tuple[Envelope, Dict[str, Any]]:
    """Parse and decrypt a datagram.

    Returns:
        Tuple of (envelope, inner payload)

    Raises:
        ProtocolError: If the envelope or the inner type is malformed
        CryptoError: If the pack cannot be decrypted
    """
    envelope = parse_envelope(data)
    payload = suite.decrypt(envelope)

    if not isinstance(payload.get("t"), str):
        raise ProtocolError("Inner payload has no type")

    return envelope, payload


def parse_dat(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Zip a "dat" reply into {vendor_code: value}.

    Raises:
        ProtocolError: If cols/dat are missing or of different length
    """
    return _zip_columns(payload, "cols", "dat")


def parse_res(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Zip a "res" reply into {vendor_code: value}, preferring "val" over "p".

    Raises:
        ProtocolError: If opt/values are missing or of different length
    """
    values_key = "val" if "val" in payload else "p"
    return _zip_columns(payload, "opt", values_key)


def _zip_columns(payload: Mapping[str, Any], keys_name: str, values_name: str) -> Dict[str, Any]:
    keys = payload.get(keys_name)
    values = payload.get(values_name)

    if not isinstance(keys, list) or not isinstance(values, list):
        raise ProtocolError(
            f"Payload '{payload.get('t')}' needs '{keys_name}' and '{values_name}' arrays"
        )
    if len(keys) != len(values):
        raise ProtocolError(
            f"Payload '{payload.get('t')}' has {len(keys)} {keys_name} "
            f"but {len(values)} {values_name}"
        )
    if not all(isinstance(key, str) for key in keys):
        raise ProtocolError(f"Payload '{payload.get('t')}' has non-string {keys_name}")

    return dict(zip(keys, values))

