"""Local master key storage.

A random 32-byte master key is kept in a storage backend and loaded once per
store. The file backend is selected through the MUXAGENT_LOCALKEY_FILE
environment variable; without it no secure storage is available.
"""

from __future__ import annotations

import binascii
import os
import secrets
import threading
from dataclasses import dataclass
from typing import Optional, Protocol

from muxagent import privdir

MASTER_KEY_SIZE = 32
FILE_BACKEND_ENV = "MUXAGENT_LOCALKEY_FILE"

_UNAVAILABLE_HINT = (
    "On macOS ensure Keychain Access is enabled. "
    "On Linux ensure a Secret Service provider (gnome-keyring, KeePassXC) is running."
)


class LocalKeyError(Exception):
    """The master key could not be stored, loaded or decoded."""


class KeyNotFoundError(LocalKeyError):
    """No master key is stored yet."""


class _Backend(Protocol):
    def get(self) -> str: ...

    def set(self, value: str) -> None: ...

    def delete(self) -> None: ...


@dataclass
class FileBackend:
    """Stores the master key in a single owner-only file."""

    path: str

    def get(self) -> str:
        try:
            with open(self.path, encoding="utf-8") as fh:
                return fh.read().strip()
        except FileNotFoundError as exc:
            raise KeyNotFoundError(str(exc)) from exc

    def set(self, value: str) -> None:
        privdir.ensure(os.path.dirname(os.path.abspath(self.path)))
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(value)

    def delete(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass


class UnsupportedBackend:
    """Stand-in used when no secure storage is available."""

    _MESSAGE = "OS keychain not supported on this platform"

    def get(self) -> str:
        raise LocalKeyError(self._MESSAGE)

    def set(self, value: str) -> None:
        raise LocalKeyError(self._MESSAGE)

    def delete(self) -> None:
        raise LocalKeyError(self._MESSAGE)


def decode_master_key(encoded: str) -> bytes:
    """Decode a hex-encoded master key, checking its size."""
    try:
        key = binascii.unhexlify(encoded)
    except (binascii.Error, ValueError) as exc:
        raise LocalKeyError(f"corrupt master key in keychain: {exc}") from exc
    if len(key) != MASTER_KEY_SIZE:
        raise LocalKeyError("corrupt master key in keychain: wrong size")
    return key


def default_backend() -> FileBackend | UnsupportedBackend:
    """Pick the file backend when its environment variable is set."""
    path = os.environ.get(FILE_BACKEND_ENV, "").strip()
    if path:
        return FileBackend(path)
    return UnsupportedBackend()


def _unavailable(exc: Exception) -> LocalKeyError:
    return LocalKeyError(f"OS keychain unavailable: {exc}\n{_UNAVAILABLE_HINT}")


class MasterKeyStore:
    """Loads or creates the master key once and caches the outcome."""

    def __init__(self, backend: Optional[_Backend] = None) -> None:
        self.backend = backend if backend is not None else default_backend()
        self._lock = threading.Lock()
        self._loaded = False
        self._key: Optional[bytes] = None
        self._error: Optional[LocalKeyError] = None

    def master_key(self) -> bytes:
        """Return the master key, creating and storing one if none exists."""
        with self._lock:
            if not self._loaded:
                try:
                    self._key = self._load_or_create()
                except LocalKeyError as exc:
                    self._error = exc
                self._loaded = True
            if self._error is not None:
                raise self._error
            assert self._key is not None
            return self._key

    def delete(self) -> None:
        """Remove the stored master key and forget the cached one."""
        self.backend.delete()
        self.reset()

    def reset(self) -> None:
        """Forget the cached key so the next call reads the backend again."""
        with self._lock:
            self._loaded = False
            self._key = None
            self._error = None

    def _load_or_create(self) -> bytes:
        try:
            stored = self.backend.get()
        except KeyNotFoundError:
            pass
        except (LocalKeyError, OSError) as exc:
            raise _unavailable(exc) from exc
        else:
            return decode_master_key(stored)

        key = secrets.token_bytes(MASTER_KEY_SIZE)
        try:
            self.backend.set(key.hex())
        except (LocalKeyError, OSError) as exc:
            raise _unavailable(exc) from exc
        return key