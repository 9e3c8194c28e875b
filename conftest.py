"""
Root-level shared test fixtures.

Inherited by the package test suites and the root tests/ directory.
"""

from __future__ import annotations

import pytest


@pytest.fixture
def clean_env(monkeypatch):
    """Remove env vars that would leak deployment config into tests."""
    for key in [
        "HMERN_DB_HOST",
        "HMERN_DB_PORT",
        "HMERN_DB_NAME",
        "HMERN_DB_USER",
        "HMERN_DB_PASSWORD",
        "HMERN_DB_POOL_MIN",
        "HMERN_DB_POOL_MAX",
        "HMERN_DB_CONNECT_TIMEOUT",
        "HMERN_DB_STATEMENT_TIMEOUT_MS",
        "HMERN_ENCRYPTION_SALT",
        "HMERN_SETTINGS_ID",
        "HMERN_SETTINGS_CACHE_TTL",
        "ENCRYPTION_KEY",
        "REDIS_PUBLIC_ENDPOINT",
        "REDIS_PASSWORD",
        "CLOUDFLARE_R2_BUCKET",
        "CLOUDFLARE_R2_TOKEN",
        "CLOUDFLARE_ACCESS_KEY_ID",
        "CLOUDFLARE_SECRET_ACCESS_KEY",
        "CLOUDFLARE_ENDPOINT_S3",
    ]:
        monkeypatch.delenv(key, raising=False)
