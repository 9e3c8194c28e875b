"""
Credential envelope codec — AES-256-CBC at rest, fail-open at the boundary.

Two envelope formats are understood:

    v1      hex(iv) + ":" + hex(ciphertext)
            key = scrypt(passphrase, salt, N=2**14, r=8, p=1, 32 bytes)
            iv  = 16 random bytes per call
    legacy  hex(ciphertext)
            key, iv = EVP_BytesToKey(MD5, passphrase, no salt, 1 round)

Only v1 is ever written. Legacy envelopes are decrypted forever so values
stored before the v1 upgrade stay readable; ``hmern settings reencrypt``
rewrites them as v1.

The public encrypt/decrypt functions never raise. When no passphrase is
configured, or when a cipher operation fails, the input comes back unchanged.
Both outcomes are logged and counted (see ``codec_stats``) so a value quietly
stored in plaintext shows up in logs instead of going unnoticed.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from collections import Counter
from dataclasses import dataclass
from enum import StrEnum
from functools import lru_cache

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

logger = logging.getLogger(__name__)

DEFAULT_SALT = "salt"
KEY_LENGTH = 32
IV_LENGTH = 16
SEPARATOR = ":"

# scrypt cost parameters (match the values v1 envelopes were written with)
SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1


class CredentialFormat(StrEnum):
    V1 = "v1"
    LEGACY = "legacy"


class CodecEvent(StrEnum):
    ENCRYPTED = "encrypted"
    DECRYPTED_V1 = "decrypted_v1"
    DECRYPTED_LEGACY = "decrypted_legacy"
    SKIPPED_NO_KEY = "skipped_no_key"
    ENCRYPT_FAILED = "encrypt_failed"
    DECRYPT_FAILED = "decrypt_failed"


class CredentialDecryptError(ValueError):
    """Raised by ``decrypt_strict`` when a value is not a decryptable envelope."""


_stats: Counter[str] = Counter()


def codec_stats() -> dict[str, int]:
    """Return event counts since process start (or the last reset)."""
    return {event.value: _stats[event.value] for event in CodecEvent}


def reset_codec_stats() -> None:
    """Zero the event counters. Only for testing."""
    _stats.clear()


def _record(event: CodecEvent) -> None:
    _stats[event.value] += 1


# ── Key derivation ──


@lru_cache(maxsize=8)
def derive_key(passphrase: str, salt: str = DEFAULT_SALT) -> bytes:
    """Derive the 32-byte v1 key. Cached per (passphrase, salt)."""
    kdf = Scrypt(salt=salt.encode("utf-8"), length=KEY_LENGTH, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
    return kdf.derive(passphrase.encode("utf-8"))


def legacy_key_iv(passphrase: str) -> tuple[bytes, bytes]:
    """Derive the legacy (key, iv) pair: OpenSSL EVP_BytesToKey with MD5, no salt, one round."""
    password = passphrase.encode("utf-8")
    material = b""
    block = b""
    while len(material) < KEY_LENGTH + IV_LENGTH:
        block = hashlib.md5(block + password).digest()
        material += block
    return material[:KEY_LENGTH], material[KEY_LENGTH : KEY_LENGTH + IV_LENGTH]


# ── Cipher primitives ──


def _cbc_encrypt(plaintext: bytes, key: bytes, iv: bytes) -> bytes:
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    return encryptor.update(padded) + encryptor.finalize()


def _cbc_decrypt(ciphertext: bytes, key: bytes, iv: bytes) -> bytes:
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    return unpadder.update(padded) + unpadder.finalize()


# ── Format detection ──


def detect_format(stored: str) -> CredentialFormat:
    """Classify a stored value by shape alone. Says nothing about whether it decrypts."""
    return CredentialFormat.V1 if SEPARATOR in stored else CredentialFormat.LEGACY


# ── Public codec ──


def encrypt_credential(plaintext: str, passphrase: str, *, salt: str = DEFAULT_SALT) -> str:
    """Encrypt a credential into a v1 envelope.

    Returns ``plaintext`` unchanged when it is empty, when no passphrase is
    configured, or when encryption fails.
    """
    if not plaintext:
        return plaintext
    if not passphrase:
        _record(CodecEvent.SKIPPED_NO_KEY)
        logger.warning("Encryption disabled (no ENCRYPTION_KEY): credential will be stored in plaintext")
        return plaintext

    try:
        key = derive_key(passphrase, salt)
        iv = secrets.token_bytes(IV_LENGTH)
        ciphertext = _cbc_encrypt(plaintext.encode("utf-8"), key, iv)
    except Exception as e:
        _record(CodecEvent.ENCRYPT_FAILED)
        logger.error("Credential encryption failed, storing plaintext: %s", e)
        return plaintext

    _record(CodecEvent.ENCRYPTED)
    return iv.hex() + SEPARATOR + ciphertext.hex()


def decrypt_strict(stored: str, passphrase: str, *, salt: str = DEFAULT_SALT) -> str:
    """Decrypt a v1 or legacy envelope, raising ``CredentialDecryptError`` on any failure."""
    if not passphrase:
        raise CredentialDecryptError("No passphrase configured")

    fmt = detect_format(stored)
    try:
        if fmt is CredentialFormat.V1:
            iv_hex, _, body_hex = stored.partition(SEPARATOR)
            iv = bytes.fromhex(iv_hex)
            if len(iv) != IV_LENGTH:
                raise ValueError(f"IV must be {IV_LENGTH} bytes, got {len(iv)}")
            plaintext = _cbc_decrypt(bytes.fromhex(body_hex), derive_key(passphrase, salt), iv)
        else:
            key, iv = legacy_key_iv(passphrase)
            plaintext = _cbc_decrypt(bytes.fromhex(stored), key, iv)
        result = plaintext.decode("utf-8")
    except Exception as e:
        raise CredentialDecryptError(f"Cannot decrypt {fmt} envelope: {e}") from e

    _record(CodecEvent.DECRYPTED_V1 if fmt is CredentialFormat.V1 else CodecEvent.DECRYPTED_LEGACY)
    return result


def decrypt_credential(stored: str, passphrase: str, *, salt: str = DEFAULT_SALT) -> str:
    """Decrypt a stored credential.

    Returns ``stored`` unchanged when it is empty, when no passphrase is
    configured, or when it cannot be decrypted.
    """
    if not stored:
        return stored
    if not passphrase:
        _record(CodecEvent.SKIPPED_NO_KEY)
        logger.debug("Decryption skipped (no ENCRYPTION_KEY)")
        return stored

    try:
        return decrypt_strict(stored, passphrase, salt=salt)
    except CredentialDecryptError as e:
        _record(CodecEvent.DECRYPT_FAILED)
        logger.error("Credential decryption failed, returning stored value: %s", e)
        return stored


@dataclass(frozen=True)
class CredentialCodec:
    """Passphrase and salt bound together, for callers that encrypt many fields."""

    passphrase: str = ""
    salt: str = DEFAULT_SALT

    @property
    def enabled(self) -> bool:
        return bool(self.passphrase)

    def encrypt(self, plaintext: str) -> str:
        return encrypt_credential(plaintext, self.passphrase, salt=self.salt)

    def decrypt(self, stored: str) -> str:
        return decrypt_credential(stored, self.passphrase, salt=self.salt)

    def decrypt_strict(self, stored: str) -> str:
        return decrypt_strict(stored, self.passphrase, salt=self.salt)

    def __repr__(self) -> str:
        return f"CredentialCodec(enabled={self.enabled})"
