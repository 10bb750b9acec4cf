# -*- coding: utf-8 -*-
"""
AES Cipher module for Gree communication.

Provides:
- ECB mode encryption/decryption (older firmware)
- GCM mode encryption/decryption with fixed nonce and AAD (newer firmware)
- CipherSuite: active algorithm + key, JSON in, base64 pack out
"""

import base64
import binascii
import json
from enum import Enum
from typing import Any, Mapping, Optional, Tuple, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .constants import (
    AES_BLOCK_SIZE, AES_KEY_SIZE,
    ECB_GENERIC_KEY, GCM_GENERIC_KEY,
    GCM_AAD, GCM_NONCE, GCM_NONCE_SIZE, GCM_TAG_SIZE,
)
from .message import CryptoError, EncryptedPack, Envelope


class Algorithm(str, Enum):
    """Symmetric modes spoken by the firmware."""

    ECB = "ecb"
    AEAD = "gcm"


GENERIC_KEYS = {
    Algorithm.ECB: ECB_GENERIC_KEY,
    Algorithm.AEAD: GCM_GENERIC_KEY,
}


def _to_key(key: Union[str, bytes]) -> bytes:
    if isinstance(key, str):
        key = key.encode("utf-8")
    if len(key) != AES_KEY_SIZE:
        raise ValueError(f"AES key must be {AES_KEY_SIZE} bytes, got {len(key)}")
    return key


class AESCipher:
    """AES-128 cipher for Gree device communication.

    Supports both ECB mode (older firmware) and GCM mode (newer firmware).
    """

    def __init__(self, key: Union[str, bytes]):
        """Initialize cipher with encryption key.

        Args:
            key: 16-byte AES key (generic key or device session key)
        """
        self.key = _to_key(key)
        self._ecb_cipher = Cipher(
            algorithms.AES(self.key),
            modes.ECB(),
            backend=default_backend()
        )

    # =========================================================================
    # ECB MODE
    # =========================================================================

    def encrypt_ecb(self, plaintext: bytes) -> bytes:
        """Encrypt data using AES-ECB mode with PKCS7 padding."""
        encryptor = self._ecb_cipher.encryptor()
        return encryptor.update(self._pkcs7_pad(plaintext)) + encryptor.finalize()

    def decrypt_ecb(self, ciphertext: bytes) -> bytes:
        """Decrypt data using AES-ECB mode and strip PKCS7 padding.

        Raises:
            CryptoError: If the length or the padding is invalid
        """
        if not ciphertext or len(ciphertext) % AES_BLOCK_SIZE:
            raise CryptoError(
                f"ECB ciphertext length {len(ciphertext)} is not a multiple of {AES_BLOCK_SIZE}"
            )
        decryptor = self._ecb_cipher.decryptor()
        plaintext = decryptor.update(ciphertext) + decryptor.finalize()
        return self._pkcs7_unpad(plaintext)

    # =========================================================================
    # GCM MODE
    # =========================================================================

    def encrypt_gcm(
        self,
        plaintext: bytes,
        nonce: bytes = GCM_NONCE,
        aad: Optional[bytes] = GCM_AAD
    ) -> Tuple[bytes, bytes]:
        """Encrypt data using AES-GCM mode.

        Args:
            plaintext: Data to encrypt
            nonce: 12-byte nonce/IV for GCM
            aad: Additional authenticated data

        Returns:
            Tuple of (ciphertext, tag)
        """
        if len(nonce) != GCM_NONCE_SIZE:
            raise ValueError(f"GCM nonce must be {GCM_NONCE_SIZE} bytes, got {len(nonce)}")

        cipher = Cipher(
            algorithms.AES(self.key),
            modes.GCM(nonce),
            backend=default_backend()
        )
        encryptor = cipher.encryptor()

        if aad:
            encryptor.authenticate_additional_data(aad)

        ciphertext = encryptor.update(plaintext) + encryptor.finalize()

        return ciphertext, encryptor.tag

    def decrypt_gcm(
        self,
        ciphertext: bytes,
        tag: bytes,
        nonce: bytes = GCM_NONCE,
        aad: Optional[bytes] = GCM_AAD
    ) -> bytes:
        """Decrypt data using AES-GCM mode with authentication.

        Raises:
            CryptoError: If the tag is malformed or authentication fails
        """
        if len(nonce) != GCM_NONCE_SIZE:
            raise ValueError(f"GCM nonce must be {GCM_NONCE_SIZE} bytes, got {len(nonce)}")
        if len(tag) != GCM_TAG_SIZE:
            raise CryptoError(f"GCM tag must be {GCM_TAG_SIZE} bytes, got {len(tag)}")

        cipher = Cipher(
            algorithms.AES(self.key),
            modes.GCM(nonce, tag),
            backend=default_backend()
        )
        decryptor = cipher.decryptor()

        if aad:
            decryptor.authenticate_additional_data(aad)

        try:
            return decryptor.update(ciphertext) + decryptor.finalize()
        except InvalidTag as e:
            raise CryptoError("GCM authentication failed") from e

    # =========================================================================
    # PADDING
    # =========================================================================

    @staticmethod
    def _pkcs7_pad(data: bytes) -> bytes:
        """Apply PKCS7 padding to data."""
        pad_len = AES_BLOCK_SIZE - (len(data) % AES_BLOCK_SIZE)
        return data + bytes([pad_len] * pad_len)

    @staticmethod
    def _pkcs7_unpad(data: bytes) -> bytes:
        """Remove PKCS7 padding from data."""
        pad_len = data[-1]
        if pad_len > AES_BLOCK_SIZE or pad_len == 0:
            raise CryptoError(f"Invalid PKCS7 padding length {pad_len}")
        if data[-pad_len:] != bytes([pad_len] * pad_len):
            raise CryptoError("Invalid PKCS7 padding bytes")
        return data[:-pad_len]


# =============================================================================
# CIPHER SUITE
# =============================================================================

class CipherSuite:
    """Active algorithm and key for one device session.

    The suite only executes the algorithm it is told to use. Switching to
    GCM and installing the device key after "bindok" are done by the
    session that owns it.
    """

    def __init__(self, algorithm: Algorithm = Algorithm.ECB, key: Optional[Union[str, bytes]] = None):
        self._algorithm = Algorithm(algorithm)
        self._cipher = AESCipher(key if key is not None else GENERIC_KEYS[self._algorithm])

    @property
    def algorithm(self) -> Algorithm:
        """Algorithm used for the next encrypt/decrypt."""
        return self._algorithm

    @property
    def key(self) -> bytes:
        """Key currently in use."""
        return self._cipher.key

    def use_algorithm(self, algorithm: Algorithm) -> None:
        """Switch algorithm and load its generic key."""
        self._algorithm = Algorithm(algorithm)
        self._cipher = AESCipher(GENERIC_KEYS[self._algorithm])

    def set_key(self, key: Union[str, bytes]) -> None:
        """Install a device session key, keeping the algorithm."""
        self._cipher = AESCipher(key)

    def reset(self) -> None:
        """Back to ECB with the generic key."""
        self.use_algorithm(Algorithm.ECB)

    def encrypt(self, document: Mapping[str, Any]) -> EncryptedPack:
        """Serialize and encrypt one inner payload."""
        plaintext = json.dumps(document, separators=(",", ":")).encode("utf-8")

        if self._algorithm is Algorithm.AEAD:
            ciphertext, tag = self._cipher.encrypt_gcm(plaintext)
            return EncryptedPack(
                pack=base64.b64encode(ciphertext).decode("ascii"),
                tag=base64.b64encode(tag).decode("ascii"),
                algorithm=self._algorithm.value,
                key=self.key,
            )

        return EncryptedPack(
            pack=base64.b64encode(self._cipher.encrypt_ecb(plaintext)).decode("ascii"),
            tag=None,
            algorithm=self._algorithm.value,
            key=self.key,
        )

    def decrypt(self, envelope: Union[Envelope, Mapping[str, Any]]) -> dict:
        """Decrypt the pack of an envelope into its JSON document.

        Raises:
            CryptoError: On bad base64, missing/wrong tag, bad padding,
                failed authentication or a non-JSON plaintext
        """
        if isinstance(envelope, Envelope):
            pack, tag = envelope.pack, envelope.tag
        else:
            pack, tag = envelope.get("pack"), envelope.get("tag")

        if not pack:
            raise CryptoError("Envelope has no pack")

        ciphertext = _b64decode(pack, "pack")

        if self._algorithm is Algorithm.AEAD:
            if not tag:
                raise CryptoError("GCM envelope has no tag")
            plaintext = self._cipher.decrypt_gcm(ciphertext, _b64decode(tag, "tag"))
        else:
            plaintext = self._cipher.decrypt_ecb(ciphertext)

        return _load_document(plaintext)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _b64decode(value: str, field_name: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise CryptoError(f"Invalid base64 in {field_name}: {e}") from e


def _load_document(plaintext: bytes) -> dict:
    try:
        document = json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CryptoError(f"Decrypted pack is not JSON: {e}") from e
    if not isinstance(document, dict):
        raise CryptoError("Decrypted pack is not a JSON object")
    return document


def encrypt_generic(document: Mapping[str, Any]) -> str:
    """Encrypt a document with ECB and the generic key.

    Returns:
        Base64 pack
    """
    return CipherSuite().encrypt(document).pack


def decrypt_generic(pack: str) -> dict:
    """Decrypt a single generic-key pack, as sent in scan replies.

    Raises:
        CryptoError: If the pack cannot be decrypted
    """
    return _load_document(AESCipher(ECB_GENERIC_KEY).decrypt_ecb(_b64decode(pack, "pack")))
