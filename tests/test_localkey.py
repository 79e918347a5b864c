import os
import stat

import pytest

from muxagent.localkey import (
    FILE_BACKEND_ENV,
    FileBackend,
    KeyNotFoundError,
    LocalKeyError,
    MasterKeyStore,
    UnsupportedBackend,
    decode_master_key,
    default_backend,
)

VALID_HEX = "0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef"


class FakeBackend:
    def __init__(self, stored="", get_error=None, set_error=None, delete_error=None):
        self.stored = stored
        self.get_error = get_error
        self.set_error = set_error
        self.delete_error = delete_error
        self.get_calls = 0
        self.set_calls = 0

    def get(self):
        self.get_calls += 1
        if self.get_error is not None:
            raise self.get_error
        return self.stored

    def set(self, value):
        self.set_calls += 1
        if self.set_error is not None:
            raise self.set_error
        self.get_error = None
        self.stored = value

    def delete(self):
        self.stored = ""
        self.get_error = KeyNotFoundError("fake not found")
        if self.delete_error is not None:
            raise self.delete_error


def test_master_key_consistent_and_created_once():
    fake = FakeBackend(get_error=KeyNotFoundError("fake not found"))
    store = MasterKeyStore(fake)
    key1 = store.master_key()
    key2 = store.master_key()
    assert key1 == key2
    assert len(key1) == 32
    assert fake.stored == key1.hex()
    assert fake.get_calls == 1
    assert fake.set_calls == 1


def test_master_key_loaded_from_stored_hex():
    store = MasterKeyStore(FakeBackend(stored=VALID_HEX))
    key = store.master_key()
    assert key == bytes.fromhex(VALID_HEX)
    assert key[0] == 0x01


def test_new_store_reuses_persisted_key():
    fake = FakeBackend(get_error=KeyNotFoundError("fake not found"))
    first = MasterKeyStore(fake).master_key()
    second = MasterKeyStore(fake).master_key()
    assert first == second
    assert fake.set_calls == 1


def test_backend_failure_is_cached_until_reset():
    fake = FakeBackend(get_error=LocalKeyError("boom"))
    store = MasterKeyStore(fake)
    with pytest.raises(LocalKeyError, match="OS keychain unavailable"):
        store.master_key()
    with pytest.raises(LocalKeyError):
        store.master_key()
    assert fake.get_calls == 1
    fake.get_error = None
    fake.stored = VALID_HEX
    store.reset()
    assert store.master_key() == bytes.fromhex(VALID_HEX)
    assert fake.get_calls == 2


def test_set_failure_reported():
    fake = FakeBackend(get_error=KeyNotFoundError("fake not found"), set_error=OSError("read-only"))
    with pytest.raises(LocalKeyError, match="read-only"):
        MasterKeyStore(fake).master_key()


def test_delete_forgets_cached_key():
    fake = FakeBackend(stored=VALID_HEX)
    store = MasterKeyStore(fake)
    assert store.master_key() == bytes.fromhex(VALID_HEX)
    store.delete()
    fresh = store.master_key()
    assert fresh != bytes.fromhex(VALID_HEX)
    assert fake.set_calls == 1


def test_delete_error_propagates():
    fake = FakeBackend(stored=VALID_HEX, delete_error=LocalKeyError("nope"))
    with pytest.raises(LocalKeyError, match="nope"):
        MasterKeyStore(fake).delete()


def test_decode_master_key_valid():
    key = decode_master_key(VALID_HEX)
    assert key[0] == 0x01
    assert len(key) == 32


def test_decode_master_key_invalid_hex():
    with pytest.raises(LocalKeyError, match="corrupt master key"):
        decode_master_key("not-hex")


def test_decode_master_key_wrong_size():
    with pytest.raises(LocalKeyError, match="wrong size"):
        decode_master_key("0123456789abcdef0123456789abcdef")


def test_default_backend_uses_file_when_env_set(tmp_path, monkeypatch):
    monkeypatch.setenv(FILE_BACKEND_ENV, str(tmp_path / "master.key"))
    backend = default_backend()
    assert isinstance(backend, FileBackend)
    assert backend.path == os.environ[FILE_BACKEND_ENV]


def test_default_backend_unsupported_without_env(monkeypatch):
    monkeypatch.delenv(FILE_BACKEND_ENV, raising=False)
    backend = default_backend()
    assert isinstance(backend, UnsupportedBackend)
    with pytest.raises(LocalKeyError) as excinfo:
        backend.get()
    assert not isinstance(excinfo.value, KeyNotFoundError)


def test_unsupported_backend_store_fails():
    with pytest.raises(LocalKeyError, match="not supported"):
        MasterKeyStore(UnsupportedBackend()).master_key()


def test_file_backend_round_trip(tmp_path):
    path = tmp_path / "nested" / "master.key"
    backend = FileBackend(str(path))
    backend.set("abcd1234")
    assert backend.get() == "abcd1234"
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
    backend.delete()
    with pytest.raises(KeyNotFoundError):
        backend.get()


def test_file_backend_delete_missing_is_ok(tmp_path):
    backend = FileBackend(str(tmp_path / "absent.key"))
    backend.delete()
    assert not (tmp_path / "absent.key").exists()


def test_file_backend_store_persists_key(tmp_path):
    path = tmp_path / "master.key"
    key = MasterKeyStore(FileBackend(str(path))).master_key()
    assert path.read_text() == key.hex()
    assert MasterKeyStore(FileBackend(str(path))).master_key() == key