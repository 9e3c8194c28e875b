"""
Settings views and update payloads.

Field names follow the JSON shape the admin API has always returned
(camelCase), so ``model_dump()`` is the wire format.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

# Secret fields per credential group. Everything listed here is encrypted at
# rest; other fields in a group (the bucket name) are stored as-is.
SECRET_FIELDS: dict[str, tuple[str, ...]] = {
    "cacheService": ("endpoint", "password"),
    "objectStorage": ("token", "accessKeyId", "secretAccessKey", "endpointUrl"),
}

CREDENTIAL_FIELDS: dict[str, tuple[str, ...]] = {
    "cacheService": ("endpoint", "password"),
    "objectStorage": ("bucket", "token", "accessKeyId", "secretAccessKey", "endpointUrl"),
}


# ─── Decrypted credential views ──────────────────────────────────────────


class CacheServiceCredentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    endpoint: str = ""
    password: str = ""


class ObjectStorageCredentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    bucket: str = ""
    token: str = ""
    accessKeyId: str = ""
    secretAccessKey: str = ""
    endpointUrl: str = ""


class CredentialsView(BaseModel):
    """Decrypted external-service credentials. Immutable: cached instances are shared."""

    model_config = ConfigDict(frozen=True)

    cacheService: CacheServiceCredentials = CacheServiceCredentials()
    objectStorage: ObjectStorageCredentials = ObjectStorageCredentials()


# ─── Partial updates ─────────────────────────────────────────────────────


class CacheServiceUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    endpoint: str | None = None
    password: str | None = None


class ObjectStorageUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    bucket: str | None = None
    token: str | None = None
    accessKeyId: str | None = None
    secretAccessKey: str | None = None
    endpointUrl: str | None = None


class CredentialsUpdate(BaseModel):
    """Partial credential update. Only fields explicitly provided are written."""

    model_config = ConfigDict(extra="forbid")

    cacheService: CacheServiceUpdate | None = None
    objectStorage: ObjectStorageUpdate | None = None

    def changed_fields(self) -> dict[tuple[str, str], str]:
        """Return ``{(group, field): value}`` for every field the caller set.

        An explicit ``None`` clears the field to ``""``.
        """
        changes: dict[tuple[str, str], str] = {}
        for group, fields in self.model_dump(exclude_unset=True).items():
            if not fields:
                continue
            for name, value in fields.items():
                changes[(group, name)] = "" if value is None else value
        return changes


# ─── Status projection ───────────────────────────────────────────────────


class CacheServiceStatus(BaseModel):
    configured: bool = False
    hasPassword: bool = False


class ObjectStorageStatus(BaseModel):
    configured: bool = False
    bucket: str = ""
    hasToken: bool = False
    hasAccessKeyId: bool = False
    hasSecretAccessKey: bool = False
    endpointUrl: str = ""


class ExternalServicesStatus(BaseModel):
    """Non-secret summary of which credentials are set."""

    cacheService: CacheServiceStatus = CacheServiceStatus()
    objectStorage: ObjectStorageStatus = ObjectStorageStatus()

    @classmethod
    def from_credentials(cls, creds: CredentialsView) -> ExternalServicesStatus:
        cache = creds.cacheService
        storage = creds.objectStorage
        return cls(
            cacheService=CacheServiceStatus(
                configured=bool(cache.endpoint),
                hasPassword=bool(cache.password),
            ),
            objectStorage=ObjectStorageStatus(
                configured=all(
                    (
                        storage.bucket,
                        storage.token,
                        storage.accessKeyId,
                        storage.secretAccessKey,
                        storage.endpointUrl,
                    )
                ),
                bucket=storage.bucket,
                hasToken=bool(storage.token),
                hasAccessKeyId=bool(storage.accessKeyId),
                hasSecretAccessKey=bool(storage.secretAccessKey),
                endpointUrl=storage.endpointUrl,
            ),
        )


# ─── Document defaults ───────────────────────────────────────────────────

ENVIRONMENTS = ("development", "staging", "production")


def default_global() -> dict:
    return {
        "maintenanceMode": False,
        "debugMode": False,
        "environment": "development",
    }


def default_security() -> dict:
    return {
        "encryptionEnabled": True,
        "maxLoginAttempts": 5,
        "sessionTimeout": 86400,  # 24h, seconds
    }
