"""
hmern settings — the encrypted settings document and its read cache.

Public API:
    create_settings_service(config=None, store=None) → SettingsService
    SettingsService.get_credentials()                 → CredentialsView
    SettingsService.get_cached_credentials()          → CredentialsView (TTL cache)
    SettingsService.update_credentials(partial)       → CredentialsView
    SettingsService.get_external_services_status()    → ExternalServicesStatus
    SettingsService.get_settings()                    → dict (whole document, decrypted)
    SettingsService.update_settings(partial)          → dict
    SettingsService.get_plugin_settings(name)         → dict
    SettingsService.update_plugin_settings(name, partial) → dict
    SettingsService.invalidate_cache()
"""

from __future__ import annotations

from hmern.settings.models import (
    CredentialsUpdate,
    CredentialsView,
    ExternalServicesStatus,
)
from hmern.settings.service import SettingsService, create_settings_service
from hmern.settings.store import (
    DocumentStore,
    DocumentStoreError,
    MemoryDocumentStore,
    PostgresDocumentStore,
)

__all__ = [
    "CredentialsUpdate",
    "CredentialsView",
    "DocumentStore",
    "DocumentStoreError",
    "ExternalServicesStatus",
    "MemoryDocumentStore",
    "PostgresDocumentStore",
    "SettingsService",
    "create_settings_service",
]
