"""
Operator tools for the settings document.

    reset_settings      delete the document and recreate it from environment
                        variables with fresh v1 encryption
    reencrypt_settings  rewrite legacy envelopes (and, optionally, plaintext
                        values or envelopes under a previous salt) as v1
    env_status          which credential environment variables are set

These are the only code paths that delete the document or rewrite stored
envelopes in bulk; the dashboard itself never does either.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any

from hmern.settings.models import SECRET_FIELDS
from hmern.settings.service import SettingsService
from hmern.vault.crypto import (
    CredentialCodec,
    CredentialDecryptError,
    CredentialFormat,
    detect_format,
)

logger = logging.getLogger(__name__)

CREDENTIAL_ENV_VARS = (
    "REDIS_PUBLIC_ENDPOINT",
    "REDIS_PASSWORD",
    "CLOUDFLARE_R2_BUCKET",
    "CLOUDFLARE_R2_TOKEN",
    "CLOUDFLARE_ACCESS_KEY_ID",
    "CLOUDFLARE_SECRET_ACCESS_KEY",
    "CLOUDFLARE_ENDPOINT_S3",
    "ENCRYPTION_KEY",
)


def env_status() -> dict[str, bool]:
    """Map each credential environment variable to whether it is set and non-empty."""
    return {name: bool(os.environ.get(name)) for name in CREDENTIAL_ENV_VARS}


async def reset_settings(service: SettingsService) -> dict[str, bool]:
    """Delete and recreate the settings document from environment defaults.

    Returns ``{"group.field": non_empty}`` read back through the codec, so a
    field that came back empty after the reset is easy to spot.
    """
    deleted = await service.store.delete(service.settings_id)
    logger.info("Deleted settings document %r: %s", service.settings_id, deleted)
    service.invalidate_cache()

    document = await service.get_settings()
    services = document["externalServices"]
    verification = {
        f"{group}.{name}": bool(value)
        for group, values in services.items()
        if isinstance(values, dict)
        for name, value in values.items()
    }
    logger.info(
        "Recreated settings document %r (%d/%d credential fields set)",
        service.settings_id,
        sum(verification.values()),
        len(verification),
    )
    return verification


@dataclass
class ReencryptReport:
    converted: list[str] = field(default_factory=list)  # legacy → v1
    resalted: list[str] = field(default_factory=list)  # v1 under previous salt → v1
    sealed: list[str] = field(default_factory=list)  # plaintext → v1
    undecryptable: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def rewritten(self) -> int:
        return len(self.converted) + len(self.resalted) + len(self.sealed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "converted": self.converted,
            "resalted": self.resalted,
            "sealed": self.sealed,
            "undecryptable": self.undecryptable,
            "unchanged": self.unchanged,
            "dry_run": self.dry_run,
        }


async def reencrypt_settings(
    service: SettingsService,
    *,
    previous_salt: str | None = None,
    seal_plaintext: bool = False,
    dry_run: bool = False,
) -> ReencryptReport:
    """Rewrite every stored credential that is not a current v1 envelope.

    - legacy envelopes are decrypted and re-encrypted as v1
    - with ``previous_salt``, v1 envelopes written under that salt are
      re-encrypted under the configured one
    - with ``seal_plaintext``, values that are not decryptable envelopes are
      treated as plaintext left by the no-key mode and encrypted; without it
      they are reported as undecryptable and left alone

    Idempotent: a second run reports everything as unchanged.
    """
    codec = service.codec
    if not codec.enabled:
        raise ValueError("ENCRYPTION_KEY is not set; nothing to re-encrypt with")
    previous = CredentialCodec(codec.passphrase, previous_salt) if previous_salt else None

    document = await service.store.find_one(service.settings_id)
    report = ReencryptReport(dry_run=dry_run)
    if document is None:
        return report

    writes: dict[tuple[str, ...], str] = {}
    services = document.get("externalServices") or {}
    for group, names in SECRET_FIELDS.items():
        values = services.get(group)
        if not isinstance(values, dict):
            continue
        for name in names:
            stored = values.get(name)
            if not isinstance(stored, str) or not stored:
                continue
            label = f"{group}.{name}"
            path = ("externalServices", group, name)
            fmt = detect_format(stored)

            try:
                plaintext = codec.decrypt_strict(stored)
            except CredentialDecryptError:
                plaintext = None

            if plaintext is not None:
                if fmt is CredentialFormat.V1:
                    report.unchanged.append(label)
                else:
                    writes[path] = codec.encrypt(plaintext)
                    report.converted.append(label)
                continue

            if previous is not None and fmt is CredentialFormat.V1:
                try:
                    writes[path] = codec.encrypt(previous.decrypt_strict(stored))
                    report.resalted.append(label)
                    continue
                except CredentialDecryptError:
                    pass

            if seal_plaintext:
                writes[path] = codec.encrypt(stored)
                report.sealed.append(label)
            else:
                report.undecryptable.append(label)

    if writes and not dry_run:
        await service.store.set_fields(service.settings_id, writes, updated_by="reencrypt")
        service.invalidate_cache()

    logger.info(
        "Re-encryption%s: %d converted, %d resalted, %d sealed, %d undecryptable, %d unchanged",
        " (dry run)" if dry_run else "",
        len(report.converted),
        len(report.resalted),
        len(report.sealed),
        len(report.undecryptable),
        len(report.unchanged),
    )
    return report
