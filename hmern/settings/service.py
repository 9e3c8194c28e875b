"""
SettingsService — the only reader and writer of the settings document.

Responsibilities:
  - create the document on first access, seeded from environment defaults
  - self-heal missing groups and fields, persisting the backfill
  - encrypt credential fields on every write, decrypt on every read
  - serve credentials through a short TTL cache, cleared on every write

Construct one instance at process start and pass it to consumers:

    from hmern.settings import create_settings_service
    settings = create_settings_service()
    creds = await settings.get_cached_credentials()
    await settings.update_credentials({"cacheService": {"password": "new"}})

Error policy: credential reads never raise (a failed store read falls back to
environment defaults); writes log and re-raise ``DocumentStoreError``.
"""

from __future__ import annotations

import copy
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

from hmern.config import Config, CredentialDefaults, get_config
from hmern.settings.cache import TTLCache
from hmern.settings.merge import deep_merge
from hmern.settings.models import (
    CREDENTIAL_FIELDS,
    ENVIRONMENTS,
    SECRET_FIELDS,
    CredentialsUpdate,
    CredentialsView,
    ExternalServicesStatus,
    default_global,
    default_security,
)
from hmern.settings.store import DocumentStore, FieldPath, PostgresDocumentStore
from hmern.vault.crypto import CredentialCodec

logger = logging.getLogger(__name__)

CREDENTIALS_CACHE_KEY = "credentials"
READ_ONLY_KEYS = ("settingsId", "createdAt", "updatedAt", "updatedBy")


class SettingsService:
    def __init__(
        self,
        store: DocumentStore,
        codec: CredentialCodec,
        defaults: CredentialDefaults | None = None,
        *,
        settings_id: str = "default",
        cache_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.codec = codec
        self.defaults = defaults or CredentialDefaults()
        self.settings_id = settings_id
        self.cache = TTLCache(ttl=cache_ttl, clock=clock)

    # ── Codec application ──

    def _encode_group(self, group: str, values: Mapping[str, Any]) -> dict[str, Any]:
        secret_names = SECRET_FIELDS.get(group, ())
        return {
            name: self.codec.encrypt(value) if name in secret_names and isinstance(value, str) else value
            for name, value in values.items()
        }

    def _decode_group(self, group: str, values: Mapping[str, Any]) -> dict[str, Any]:
        secret_names = SECRET_FIELDS.get(group, ())
        return {
            name: self.codec.decrypt(value) if name in secret_names and isinstance(value, str) else value
            for name, value in values.items()
        }

    def _encode_services(self, services: Mapping[str, Any]) -> dict[str, Any]:
        return {
            group: self._encode_group(group, values) if isinstance(values, Mapping) else values
            for group, values in services.items()
        }

    def _decode_services(self, services: Mapping[str, Any]) -> dict[str, Any]:
        return {
            group: self._decode_group(group, values) if isinstance(values, Mapping) else values
            for group, values in services.items()
        }

    def _decode_document(self, document: Mapping[str, Any]) -> dict[str, Any]:
        decoded = copy.deepcopy(dict(document))
        services = decoded.get("externalServices")
        if isinstance(services, Mapping):
            decoded["externalServices"] = self._decode_services(services)
        return decoded

    def _credentials_view(self, document: Mapping[str, Any]) -> CredentialsView:
        services = self._decode_services(document.get("externalServices") or {})
        return CredentialsView.model_validate(
            {group: services.get(group) or {} for group in CREDENTIAL_FIELDS}
        )

    def _env_view(self) -> CredentialsView:
        return CredentialsView.model_validate(self.defaults.external_services())

    # ── Document lifecycle ──

    def _new_document(self) -> dict[str, Any]:
        return {
            "settingsId": self.settings_id,
            "externalServices": self._encode_services(self.defaults.external_services()),
            "global": default_global(),
            "security": default_security(),
            "plugins": {},
        }

    def _heal(self, document: dict[str, Any]) -> list[str]:
        """Backfill missing groups and fields in place. Returns the dotted paths filled."""
        filled: list[str] = []
        env = self.defaults.external_services()

        services = document.get("externalServices")
        if not isinstance(services, dict):
            services = {}
            document["externalServices"] = services
            filled.append("externalServices")

        for group, fields in CREDENTIAL_FIELDS.items():
            values = services.get(group)
            if not isinstance(values, dict):
                services[group] = self._encode_group(group, env[group])
                filled.append(f"externalServices.{group}")
                continue
            for name in fields:
                if not isinstance(values.get(name), str):
                    values[name] = self._encode_group(group, {name: env[group][name]})[name]
                    filled.append(f"externalServices.{group}.{name}")

        for key, factory in (("global", default_global), ("security", default_security)):
            section = document.get(key)
            if not isinstance(section, dict):
                document[key] = factory()
                filled.append(key)
                continue
            for name, value in factory().items():
                if name not in section:
                    section[name] = value
                    filled.append(f"{key}.{name}")

        if not isinstance(document.get("plugins"), dict):
            document["plugins"] = {}
            filled.append("plugins")

        if document.get("settingsId") != self.settings_id:
            document["settingsId"] = self.settings_id
            filled.append("settingsId")

        return filled

    async def _load(self) -> dict[str, Any]:
        """Load the document, creating or healing it as needed. Store errors propagate."""
        document = await self.store.find_one(self.settings_id)
        if document is None:
            document = await self.store.save(self.settings_id, self._new_document())
            logger.info("Created settings document %r from environment defaults", self.settings_id)
            return document

        filled = self._heal(document)
        if filled:
            logger.debug("Self-healed settings document %r: %s", self.settings_id, ", ".join(filled))
            document = await self.store.save(self.settings_id, document)
        return document

    # ── Credentials ──

    async def get_credentials(self) -> CredentialsView:
        """Decrypted credentials from the store, or environment defaults if the store fails."""
        try:
            document = await self._load()
        except Exception as e:
            logger.error("Settings store unavailable, using environment credentials: %s", e)
            return self._env_view()

        view = self._credentials_view(document)
        logger.debug(
            "Loaded credentials: cache endpoint %s, storage token %s",
            "SET" if view.cacheService.endpoint else "EMPTY",
            "SET" if view.objectStorage.token else "EMPTY",
        )
        return view

    async def get_cached_credentials(self) -> CredentialsView:
        cached = self.cache.get(CREDENTIALS_CACHE_KEY)
        if cached is not None:
            return cached
        generation = self.cache.generation
        credentials = await self.get_credentials()
        if not self.cache.put(CREDENTIALS_CACHE_KEY, credentials, generation=generation):
            logger.debug("Discarded credentials loaded before a concurrent write")
        return credentials

    async def update_credentials(
        self,
        updates: CredentialsUpdate | Mapping[str, Any],
        *,
        updated_by: str = "admin",
    ) -> CredentialsView:
        """Write the provided credential fields, leaving the rest untouched."""
        if not isinstance(updates, CredentialsUpdate):
            updates = CredentialsUpdate.model_validate(updates)

        fields: dict[FieldPath, Any] = {
            ("externalServices", group, name): self._encode_group(group, {name: value})[name]
            for (group, name), value in updates.changed_fields().items()
        }

        try:
            await self._load()
            document = await self.store.set_fields(self.settings_id, fields, updated_by=updated_by)
            if document is None:
                raise LookupError(f"Settings document {self.settings_id!r} vanished during update")
        except Exception as e:
            logger.error("Error updating credentials: %s", e)
            raise

        self.invalidate_cache()
        logger.info(
            "Updated credentials (%s) by %s",
            ", ".join(".".join(path[1:]) for path in fields) or "no fields",
            updated_by,
        )
        return self._credentials_view(document)

    async def get_external_services_status(self) -> ExternalServicesStatus:
        return ExternalServicesStatus.from_credentials(await self.get_cached_credentials())

    # ── Whole document ──

    async def get_settings(self) -> dict[str, Any]:
        """The complete settings document with credentials decrypted."""
        try:
            document = await self._load()
        except Exception as e:
            logger.error("Error getting settings: %s", e)
            raise
        return self._decode_document(document)

    async def update_settings(
        self, updates: Mapping[str, Any], *, updated_by: str = "admin"
    ) -> dict[str, Any]:
        """Deep-merge ``updates`` into the document.

        Credential values in the update are encrypted before the merge; stored
        envelopes the update does not touch are kept byte-for-byte, so a value
        that failed to decrypt is never re-encrypted on top of itself.
        """
        try:
            document = await self._load()
            changes = {k: v for k, v in updates.items() if k not in READ_ONLY_KEYS}
            services = changes.get("externalServices")
            if isinstance(services, Mapping):
                changes["externalServices"] = self._encode_services(_clear_nulls(services))
            deep_merge(document, changes)
            self._heal(document)
            _validate(document)
            saved = await self.store.save(self.settings_id, document, updated_by=updated_by)
        except Exception as e:
            logger.error("Error updating settings: %s", e)
            raise

        self.invalidate_cache()
        return self._decode_document(saved)

    # ── Plugins ──

    async def get_plugin_settings(self, plugin_name: str) -> dict[str, Any]:
        try:
            document = await self._load()
        except Exception as e:
            logger.error("Error getting %s plugin settings: %s", plugin_name, e)
            return {}
        return copy.deepcopy(document["plugins"].get(plugin_name) or {})

    async def update_plugin_settings(
        self,
        plugin_name: str,
        updates: Mapping[str, Any],
        *,
        updated_by: str = "admin",
    ) -> dict[str, Any]:
        """Deep-merge ``updates`` into one plugin's settings. Lists replace, never merge."""
        try:
            document = await self._load()
            current = document["plugins"].get(plugin_name)
            merged = deep_merge(copy.deepcopy(current) if isinstance(current, dict) else {}, updates)
            saved = await self.store.set_fields(
                self.settings_id, {("plugins", plugin_name): merged}, updated_by=updated_by
            )
            if saved is None:
                raise LookupError(f"Settings document {self.settings_id!r} vanished during update")
        except Exception as e:
            logger.error("Error updating %s plugin settings: %s", plugin_name, e)
            raise

        self.invalidate_cache()
        return copy.deepcopy(saved["plugins"][plugin_name])

    # ── Cache ──

    def invalidate_cache(self) -> None:
        self.cache.clear()
        logger.debug("Settings cache invalidated")


def _clear_nulls(services: Mapping[str, Any]) -> dict[str, Any]:
    """Map an explicit None on a credential field to "", as update_credentials does."""
    return {
        group: {
            name: "" if value is None and name in CREDENTIAL_FIELDS.get(group, ()) else value
            for name, value in values.items()
        }
        if isinstance(values, Mapping)
        else values
        for group, values in services.items()
    }


def _validate(document: Mapping[str, Any]) -> None:
    """Reject merged documents the dashboard cannot run with."""
    environment = document["global"].get("environment")
    if environment not in ENVIRONMENTS:
        raise ValueError(f"global.environment must be one of {ENVIRONMENTS}, got {environment!r}")
    for key in ("maxLoginAttempts", "sessionTimeout"):
        value = document["security"].get(key)
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValueError(f"security.{key} must be a positive integer, got {value!r}")


def create_settings_service(
    config: Config | None = None,
    store: DocumentStore | None = None,
) -> SettingsService:
    """Build a SettingsService from configuration. Defaults to the PostgreSQL store."""
    cfg = config or get_config()
    return SettingsService(
        store if store is not None else PostgresDocumentStore(),
        CredentialCodec(passphrase=cfg.encryption.passphrase, salt=cfg.encryption.salt),
        cfg.credentials,
        settings_id=cfg.settings.settings_id,
        cache_ttl=cfg.settings.cache_ttl,
    )
