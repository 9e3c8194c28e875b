"""
Settings document persistence.

A settings document is a JSON object keyed by a settings id ("default" in
practice). Stores only move documents; they never see plaintext credentials,
because the SettingsService encrypts before writing and decrypts after
reading.

PostgresDocumentStore keeps the document in a JSONB column. Its sync psycopg2
calls run in the default executor so the async service never blocks the
event loop. MemoryDocumentStore backs tests and offline tooling.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any, Protocol, TypeVar

import psycopg2
from psycopg2.extras import Json, RealDictCursor

from hmern.db.connection import get_connection

logger = logging.getLogger(__name__)

T = TypeVar("T")

FieldPath = tuple[str, ...]


class DocumentStoreError(Exception):
    """The document store could not be reached or rejected the operation."""


class DocumentStore(Protocol):
    async def find_one(self, settings_id: str) -> dict[str, Any] | None: ...

    async def save(
        self, settings_id: str, document: dict[str, Any], *, updated_by: str = "system"
    ) -> dict[str, Any]: ...

    async def set_fields(
        self,
        settings_id: str,
        fields: Mapping[FieldPath, Any],
        *,
        updated_by: str = "system",
    ) -> dict[str, Any] | None: ...

    async def delete(self, settings_id: str) -> bool: ...


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _set_path(document: dict[str, Any], path: FieldPath, value: Any) -> None:
    node = document
    for key in path[:-1]:
        child = node.get(key)
        if not isinstance(child, dict):
            child = {}
            node[key] = child
        node = child
    node[path[-1]] = value


class MemoryDocumentStore:
    """In-process store. Documents are deep-copied on the way in and out."""

    def __init__(self, documents: dict[str, dict[str, Any]] | None = None) -> None:
        self.documents: dict[str, dict[str, Any]] = copy.deepcopy(documents or {})
        self.reads = 0
        self.writes = 0

    async def find_one(self, settings_id: str) -> dict[str, Any] | None:
        self.reads += 1
        doc = self.documents.get(settings_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def save(
        self, settings_id: str, document: dict[str, Any], *, updated_by: str = "system"
    ) -> dict[str, Any]:
        self.writes += 1
        stored = copy.deepcopy(document)
        stored["updatedAt"] = _now_iso()
        stored["updatedBy"] = updated_by
        stored.setdefault("createdAt", stored["updatedAt"])
        self.documents[settings_id] = stored
        return copy.deepcopy(stored)

    async def set_fields(
        self,
        settings_id: str,
        fields: Mapping[FieldPath, Any],
        *,
        updated_by: str = "system",
    ) -> dict[str, Any] | None:
        doc = self.documents.get(settings_id)
        if doc is None:
            return None
        self.writes += 1
        for path, value in fields.items():
            _set_path(doc, path, copy.deepcopy(value))
        doc["updatedAt"] = _now_iso()
        doc["updatedBy"] = updated_by
        return copy.deepcopy(doc)

    async def delete(self, settings_id: str) -> bool:
        return self.documents.pop(settings_id, None) is not None


# ── PostgreSQL ──


def _find_one(settings_id: str) -> dict[str, Any] | None:
    with get_connection() as conn:
        cur = conn.cursor(cursor_factory=RealDictCursor)
        cur.execute(
            "SELECT document FROM core_settings_config WHERE settings_id = %s",
            (settings_id,),
        )
        row = cur.fetchone()
        return dict(row["document"]) if row else None


def _save(settings_id: str, document: dict[str, Any], updated_by: str) -> dict[str, Any]:
    stored = dict(document)
    now = _now_iso()
    stored["updatedAt"] = now
    stored["updatedBy"] = updated_by
    stored.setdefault("createdAt", now)
    with get_connection() as conn:
        cur = conn.cursor(cursor_factory=RealDictCursor)
        cur.execute(
            """
            INSERT INTO core_settings_config (settings_id, document, updated_by)
            VALUES (%s, %s, %s)
            ON CONFLICT (settings_id) DO UPDATE SET
                document = EXCLUDED.document,
                updated_at = NOW(),
                updated_by = EXCLUDED.updated_by
            RETURNING document
            """,
            (settings_id, Json(stored), updated_by),
        )
        row = cur.fetchone()
        conn.commit()
        return dict(row["document"])


def _set_fields(
    settings_id: str, fields: Mapping[FieldPath, Any], updated_by: str
) -> dict[str, Any] | None:
    """Apply every field write in one UPDATE, nesting jsonb_set per path.

    Writes touch only their own paths, so concurrent updates to different
    fields both land.
    """
    expr = "document"
    params: list[Any] = []
    for path, value in fields.items():
        expr = f"jsonb_set({expr}, %s::text[], %s::jsonb, true)"
        params.extend([list(path), json.dumps(value)])
    for key, value in (("updatedAt", _now_iso()), ("updatedBy", updated_by)):
        expr = f"jsonb_set({expr}, %s::text[], %s::jsonb, true)"
        params.extend([[key], json.dumps(value)])

    with get_connection() as conn:
        cur = conn.cursor(cursor_factory=RealDictCursor)
        cur.execute(
            f"""
            UPDATE core_settings_config
            SET document = {expr},
                updated_at = NOW(),
                updated_by = %s
            WHERE settings_id = %s
            RETURNING document
            """,
            (*params, updated_by, settings_id),
        )
        row = cur.fetchone()
        conn.commit()
        return dict(row["document"]) if row else None


def _delete(settings_id: str) -> bool:
    with get_connection() as conn:
        cur = conn.cursor()
        cur.execute(
            "DELETE FROM core_settings_config WHERE settings_id = %s",
            (settings_id,),
        )
        conn.commit()
        return bool(cur.rowcount > 0)


class PostgresDocumentStore:
    """JSONB-backed store over the pooled connection from ``hmern.db``."""

    async def _run(self, op: str, fn: Callable[[], T]) -> T:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, fn)
        except (psycopg2.Error, ConnectionError) as e:
            raise DocumentStoreError(f"Settings {op} failed: {e}") from e

    async def find_one(self, settings_id: str) -> dict[str, Any] | None:
        return await self._run("read", lambda: _find_one(settings_id))

    async def save(
        self, settings_id: str, document: dict[str, Any], *, updated_by: str = "system"
    ) -> dict[str, Any]:
        return await self._run("save", lambda: _save(settings_id, document, updated_by))

    async def set_fields(
        self,
        settings_id: str,
        fields: Mapping[FieldPath, Any],
        *,
        updated_by: str = "system",
    ) -> dict[str, Any] | None:
        if not fields:
            return await self.find_one(settings_id)
        return await self._run("update", lambda: _set_fields(settings_id, fields, updated_by))

    async def delete(self, settings_id: str) -> bool:
        return await self._run("delete", lambda: _delete(settings_id))
