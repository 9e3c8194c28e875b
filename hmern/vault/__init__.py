"""
hmern vault — credential envelope codec.

Public API:
    encrypt_credential(text, passphrase)   → v1 envelope (or text, fail-open)
    decrypt_credential(stored, passphrase) → plaintext (or stored, fail-open)
    decrypt_strict(stored, passphrase)     → plaintext, raises CredentialDecryptError
    detect_format(stored)                  → CredentialFormat.V1 | LEGACY
    CredentialCodec(passphrase, salt)      → bound encrypt/decrypt
    codec_stats()                          → degraded-path counters
"""

from __future__ import annotations

from hmern.vault.crypto import (
    CodecEvent,
    CredentialCodec,
    CredentialDecryptError,
    CredentialFormat,
    codec_stats,
    decrypt_credential,
    decrypt_strict,
    detect_format,
    encrypt_credential,
    reset_codec_stats,
)

__all__ = [
    "CodecEvent",
    "CredentialCodec",
    "CredentialDecryptError",
    "CredentialFormat",
    "codec_stats",
    "decrypt_credential",
    "decrypt_strict",
    "detect_format",
    "encrypt_credential",
    "reset_codec_stats",
]
