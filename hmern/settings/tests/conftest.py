"""
Test fixtures for the settings service.

- MemoryDocumentStore stands in for PostgreSQL
- A manual clock drives cache expiry
- A real codec with a fixed passphrase, so envelopes at rest are real
"""

from __future__ import annotations

import pytest
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from hmern.config import CredentialDefaults
from hmern.settings.service import SettingsService
from hmern.settings.store import MemoryDocumentStore
from hmern.vault.crypto import CredentialCodec, legacy_key_iv, reset_codec_stats

PASSPHRASE = "test-encryption-key"


class ManualClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def _clear_codec_stats():
    reset_codec_stats()
    yield
    reset_codec_stats()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def codec() -> CredentialCodec:
    return CredentialCodec(passphrase=PASSPHRASE)


@pytest.fixture
def defaults() -> CredentialDefaults:
    """Credential values as they would come from the environment."""
    return CredentialDefaults(
        cache_endpoint="redis-12345.cloud.example.com:12345",
        cache_password="env-redis-password",
        storage_bucket="hmern",
        storage_token="env-r2-token",
        storage_access_key_id="env-access-key-id",
        storage_secret_access_key="env-secret-access-key",
        storage_endpoint_url="https://account.r2.cloudflarestorage.com",
    )


@pytest.fixture
def store() -> MemoryDocumentStore:
    return MemoryDocumentStore()


@pytest.fixture
def service(store, codec, defaults, clock) -> SettingsService:
    return SettingsService(store, codec, defaults, cache_ttl=300, clock=clock)


@pytest.fixture
def legacy_encrypt():
    """Factory producing legacy (pre-v1) envelopes under the test passphrase."""

    def _encrypt(plaintext: str, passphrase: str = PASSPHRASE) -> str:
        key, iv = legacy_key_iv(passphrase)
        padder = padding.PKCS7(128).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        return (encryptor.update(padded) + encryptor.finalize()).hex()

    return _encrypt
