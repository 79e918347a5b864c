"""End-to-end encrypted relay session."""

from __future__ import annotations

import base64
import binascii
import hashlib
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Union

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from nacl.bindings import (
    crypto_aead_xchacha20poly1305_ietf_decrypt,
    crypto_aead_xchacha20poly1305_ietf_encrypt,
    crypto_aead_xchacha20poly1305_ietf_NPUBBYTES,
)
from nacl.exceptions import CryptoError

SESSION_INFO = "muxagent-session-v1"
AAD_PREFIX = "muxagent-aad-v1"
KEY_SIZE = 32
NONCE_SIZE = crypto_aead_xchacha20poly1305_ietf_NPUBBYTES


class DecryptionError(ValueError):
    """A relay message could not be decoded or authenticated."""


def _text(value: Union[str, Enum]) -> str:
    return value.value if isinstance(value, Enum) else str(value)


def build_aad(machine_id: str, msg_type: Union[str, Enum], msg_id: str) -> str:
    """Return the associated data that binds a ciphertext to its envelope."""
    return "|".join((AAD_PREFIX, machine_id, _text(msg_type), msg_id))


def derive_session_key(shared_secret: bytes, transcript: str) -> bytes:
    """Derive the 32-byte session key from the X25519 secret and handshake transcript."""
    salt = hashlib.sha256(transcript.encode("utf-8")).digest()
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt,
        info=SESSION_INFO.encode("utf-8"),
    )
    return hkdf.derive(bytes(shared_secret))


def _b64decode(value: str, what: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecryptionError(f"invalid {what}: {exc}") from exc


@dataclass(eq=False)
class RelaySession:
    """Session key bound to one machine and one relay connection epoch."""

    machine_id: str
    key: bytes
    conn_epoch: int = 0

    def __post_init__(self) -> None:
        self.key = bytes(self.key)
        if len(self.key) != KEY_SIZE:
            raise ValueError(f"session key must be {KEY_SIZE} bytes")

    def encrypt(
        self, msg_type: Union[str, Enum], msg_id: str, plaintext: Union[bytes, str]
    ) -> tuple[str, str]:
        """Seal ``plaintext``; return the base64 nonce and ciphertext."""
        if isinstance(plaintext, str):
            plaintext = plaintext.encode("utf-8")
        nonce = secrets.token_bytes(NONCE_SIZE)
        aad = build_aad(self.machine_id, msg_type, msg_id).encode("utf-8")
        ciphertext = crypto_aead_xchacha20poly1305_ietf_encrypt(plaintext, aad, nonce, self.key)
        return (
            base64.b64encode(nonce).decode("ascii"),
            base64.b64encode(ciphertext).decode("ascii"),
        )

    def decrypt(
        self, msg_type: Union[str, Enum], msg_id: str, nonce_b64: str, ciphertext_b64: str
    ) -> bytes:
        """Open a sealed message; raise DecryptionError if it does not authenticate."""
        nonce = _b64decode(nonce_b64, "nonce")
        if len(nonce) != NONCE_SIZE:
            raise DecryptionError("invalid nonce size")
        ciphertext = _b64decode(ciphertext_b64, "ciphertext")
        aad = build_aad(self.machine_id, msg_type, msg_id).encode("utf-8")
        try:
            return crypto_aead_xchacha20poly1305_ietf_decrypt(ciphertext, aad, nonce, self.key)
        except CryptoError as exc:
            raise DecryptionError("message authentication failed") from exc