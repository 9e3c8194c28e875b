"""Tests for hmern.config — centralized configuration."""

import pytest

from hmern.config import (
    Config,
    CredentialDefaults,
    DatabaseConfig,
    EncryptionConfig,
    get_config,
    reset_config,
)


@pytest.fixture(autouse=True)
def clean_config():
    """Reset config singleton between tests."""
    reset_config()
    yield
    reset_config()


class TestDatabaseConfig:
    def test_defaults(self):
        db = DatabaseConfig()
        assert db.host == ""
        assert db.port == 5432
        assert db.name == "hmern"

    def test_dsn(self):
        db = DatabaseConfig(host="db.example.com", port=5433, name="test", user="tester")
        assert "dbname=test" in db.dsn
        assert "host=db.example.com" in db.dsn
        assert "port=5433" in db.dsn
        assert "user=tester" in db.dsn

    def test_dsn_no_password(self):
        assert "password" not in DatabaseConfig(password="").dsn

    def test_dict(self):
        d = DatabaseConfig(host="localhost", name="test", user="u").dict
        assert d == {"dbname": "test", "port": 5432, "host": "localhost", "user": "u"}

    def test_frozen(self):
        db = DatabaseConfig()
        with pytest.raises(AttributeError):
            db.host = "other"  # type: ignore[misc]


class TestEncryptionConfig:
    def test_disabled_without_key(self):
        assert EncryptionConfig().enabled is False

    def test_default_salt(self):
        assert EncryptionConfig(passphrase="k").salt == "salt"


class TestCredentialDefaults:
    def test_external_services_shape(self):
        services = CredentialDefaults(cache_endpoint="h:1", storage_token="t").external_services()
        assert services == {
            "cacheService": {"endpoint": "h:1", "password": ""},
            "objectStorage": {
                "bucket": "hmern",
                "token": "t",
                "accessKeyId": "",
                "secretAccessKey": "",
                "endpointUrl": "",
            },
        }


class TestLoadFromEnv:
    def test_defaults(self, clean_env):
        cfg = get_config()
        assert isinstance(cfg, Config)
        assert cfg.encryption.enabled is False
        assert cfg.credentials.storage_bucket == "hmern"
        assert cfg.settings.settings_id == "default"
        assert cfg.settings.cache_ttl == 300.0

    def test_reads_credentials(self, clean_env, monkeypatch):
        monkeypatch.setenv("REDIS_PUBLIC_ENDPOINT", "redis.example.com:6379")
        monkeypatch.setenv("REDIS_PASSWORD", "pw")
        monkeypatch.setenv("CLOUDFLARE_R2_BUCKET", "media")
        monkeypatch.setenv("CLOUDFLARE_ENDPOINT_S3", "https://acct.r2.cloudflarestorage.com")
        creds = get_config().credentials
        assert creds.cache_endpoint == "redis.example.com:6379"
        assert creds.cache_password == "pw"
        assert creds.storage_bucket == "media"
        assert creds.storage_endpoint_url == "https://acct.r2.cloudflarestorage.com"

    def test_empty_bucket_uses_default(self, clean_env, monkeypatch):
        monkeypatch.setenv("CLOUDFLARE_R2_BUCKET", "")
        assert get_config().credentials.storage_bucket == "hmern"

    def test_encryption(self, clean_env, monkeypatch):
        monkeypatch.setenv("ENCRYPTION_KEY", "k")
        monkeypatch.setenv("HMERN_ENCRYPTION_SALT", "deploy-salt")
        enc = get_config().encryption
        assert enc.enabled is True
        assert enc.salt == "deploy-salt"

    def test_settings(self, clean_env, monkeypatch):
        monkeypatch.setenv("HMERN_SETTINGS_ID", "staging")
        monkeypatch.setenv("HMERN_SETTINGS_CACHE_TTL", "30")
        settings = get_config().settings
        assert settings.settings_id == "staging"
        assert settings.cache_ttl == 30.0

    def test_db(self, clean_env, monkeypatch):
        monkeypatch.setenv("HMERN_DB_HOST", "127.0.0.1")
        monkeypatch.setenv("HMERN_DB_PORT", "5433")
        db = get_config().db
        assert db.host == "127.0.0.1"
        assert db.port == 5433

    def test_db_pool_and_timeouts(self, clean_env, monkeypatch):
        db = get_config().db
        assert (db.pool_min, db.pool_max) == (1, 5)
        assert db.statement_timeout_ms == 5000
        reset_config()
        monkeypatch.setenv("HMERN_DB_POOL_MAX", "10")
        monkeypatch.setenv("HMERN_DB_STATEMENT_TIMEOUT_MS", "0")
        db = get_config().db
        assert db.pool_max == 10
        assert db.statement_timeout_ms == 0

    def test_singleton(self, clean_env):
        assert get_config() is get_config()

    def test_reset(self, clean_env, monkeypatch):
        first = get_config()
        reset_config()
        monkeypatch.setenv("HMERN_SETTINGS_ID", "other")
        second = get_config()
        assert first is not second
        assert second.settings.settings_id == "other"
