"""
Centralized configuration for hmern.

All configuration is loaded from environment variables with sensible defaults.
The credential variables keep the names the dashboard has always used
(REDIS_PUBLIC_ENDPOINT, CLOUDFLARE_R2_*, ENCRYPTION_KEY, ...) so existing
deployments keep working unchanged.

Usage:
    from hmern.config import get_config
    cfg = get_config()
    print(cfg.settings.cache_ttl)      # 300.0
    print(cfg.encryption.enabled)      # True when ENCRYPTION_KEY is set
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field


@dataclass(frozen=True)
class DatabaseConfig:
    """PostgreSQL connection parameters for the settings document store."""

    host: str = ""  # empty = Unix socket (peer auth); set to 127.0.0.1 for TCP
    port: int = 5432
    name: str = "hmern"
    user: str = "hmern"
    password: str = ""
    pool_min: int = 1
    pool_max: int = 5
    connect_timeout: int = 5  # seconds
    statement_timeout_ms: int = 5000  # 0 disables
    application_name: str = "hmern-settings"

    @property
    def dsn(self) -> str:
        """Return a psycopg2-compatible DSN string."""
        parts = [f"dbname={self.name}"]
        if self.host:
            parts.append(f"host={self.host}")
        parts.append(f"port={self.port}")
        if self.user:
            parts.append(f"user={self.user}")
        if self.password:
            parts.append(f"password={self.password}")
        return " ".join(parts)

    @property
    def dict(self) -> dict[str, str | int]:
        """Return a psycopg2.connect() kwargs dict."""
        d: dict[str, str | int] = {
            "dbname": self.name,
            "port": self.port,
        }
        if self.host:
            d["host"] = self.host
        if self.user:
            d["user"] = self.user
        if self.password:
            d["password"] = self.password
        return d


@dataclass(frozen=True)
class EncryptionConfig:
    """Credential encryption parameters.

    The salt defaults to the literal ``"salt"`` every deployment shipped with;
    v1 envelopes written before a per-deployment salt was configured can only
    be read with that value.
    """

    passphrase: str = ""
    salt: str = "salt"

    @property
    def enabled(self) -> bool:
        return bool(self.passphrase)


@dataclass(frozen=True)
class CredentialDefaults:
    """Environment-derived credential values used to seed and backfill the settings document."""

    cache_endpoint: str = ""
    cache_password: str = ""
    storage_bucket: str = "hmern"
    storage_token: str = ""
    storage_access_key_id: str = ""
    storage_secret_access_key: str = ""
    storage_endpoint_url: str = ""

    def cache_service(self) -> dict[str, str]:
        return {
            "endpoint": self.cache_endpoint,
            "password": self.cache_password,
        }

    def object_storage(self) -> dict[str, str]:
        return {
            "bucket": self.storage_bucket,
            "token": self.storage_token,
            "accessKeyId": self.storage_access_key_id,
            "secretAccessKey": self.storage_secret_access_key,
            "endpointUrl": self.storage_endpoint_url,
        }

    def external_services(self) -> dict[str, dict[str, str]]:
        return {
            "cacheService": self.cache_service(),
            "objectStorage": self.object_storage(),
        }


@dataclass(frozen=True)
class SettingsConfig:
    """Settings service parameters."""

    settings_id: str = "default"
    cache_ttl: float = 300.0  # seconds


@dataclass(frozen=True)
class Config:
    """Top-level hmern configuration."""

    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    encryption: EncryptionConfig = field(default_factory=EncryptionConfig)
    credentials: CredentialDefaults = field(default_factory=CredentialDefaults)
    settings: SettingsConfig = field(default_factory=SettingsConfig)


# Singleton
_config: Config | None = None


def get_config() -> Config:
    """Get or create the singleton config from environment variables."""
    global _config
    if _config is not None:
        return _config
    _config = _load_from_env()
    return _config


def _load_from_env() -> Config:
    """Load configuration from environment variables."""
    db = DatabaseConfig(
        host=os.environ.get("HMERN_DB_HOST", ""),
        port=int(os.environ.get("HMERN_DB_PORT", "5432")),
        name=os.environ.get("HMERN_DB_NAME", "hmern"),
        user=os.environ.get("HMERN_DB_USER", os.environ.get("USER", "hmern")),
        password=os.environ.get("HMERN_DB_PASSWORD", ""),
        pool_min=int(os.environ.get("HMERN_DB_POOL_MIN", "1")),
        pool_max=int(os.environ.get("HMERN_DB_POOL_MAX", "5")),
        connect_timeout=int(os.environ.get("HMERN_DB_CONNECT_TIMEOUT", "5")),
        statement_timeout_ms=int(os.environ.get("HMERN_DB_STATEMENT_TIMEOUT_MS", "5000")),
    )

    encryption = EncryptionConfig(
        passphrase=os.environ.get("ENCRYPTION_KEY", ""),
        salt=os.environ.get("HMERN_ENCRYPTION_SALT", "") or "salt",
    )

    credentials = CredentialDefaults(
        cache_endpoint=os.environ.get("REDIS_PUBLIC_ENDPOINT", ""),
        cache_password=os.environ.get("REDIS_PASSWORD", ""),
        storage_bucket=os.environ.get("CLOUDFLARE_R2_BUCKET", "") or "hmern",
        storage_token=os.environ.get("CLOUDFLARE_R2_TOKEN", ""),
        storage_access_key_id=os.environ.get("CLOUDFLARE_ACCESS_KEY_ID", ""),
        storage_secret_access_key=os.environ.get("CLOUDFLARE_SECRET_ACCESS_KEY", ""),
        storage_endpoint_url=os.environ.get("CLOUDFLARE_ENDPOINT_S3", ""),
    )

    settings = SettingsConfig(
        settings_id=os.environ.get("HMERN_SETTINGS_ID", "default"),
        cache_ttl=float(os.environ.get("HMERN_SETTINGS_CACHE_TTL", "300")),
    )

    return Config(
        db=db,
        encryption=encryption,
        credentials=credentials,
        settings=settings,
    )


def reset_config() -> None:
    """Reset the singleton config (for testing)."""
    global _config
    _config = None
