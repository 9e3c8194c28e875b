"""
Migration runner for ``hmern/db/migrations/*.sql``.

Usage:
    hmern migrate status             # applied vs pending
    hmern migrate apply              # apply all pending
    hmern migrate apply 001          # apply one version
    hmern migrate apply --dry-run

Plain SQL files, SHA-256 checksums recorded in ``schema_migrations``, one
transaction per file.
"""

from __future__ import annotations

import hashlib
import logging
import re
from pathlib import Path

from psycopg2.extras import RealDictCursor

from hmern.db.connection import get_connection

logger = logging.getLogger(__name__)

# Shipped inside the package so installed wheels carry their schema
MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"

# 001_name.sql, 002b_name.sql, ...
_MIGRATION_RE = re.compile(r"^(\d+[a-z]?)_.+\.sql$")


def discover(migrations_dir: Path | None = None) -> list[tuple[str, Path]]:
    """Return sorted (version, path) pairs for every migration file."""
    d = migrations_dir or MIGRATIONS_DIR
    found: list[tuple[str, Path]] = []
    for f in sorted(d.glob("*.sql")):
        m = _MIGRATION_RE.match(f.name)
        if m:
            found.append((m.group(1), f))
    return found


def checksum(path: Path) -> str:
    return hashlib.sha256(path.read_bytes()).hexdigest()


def _ensure_table(conn) -> None:
    cur = conn.cursor()
    cur.execute("""
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version     TEXT PRIMARY KEY,
            filename    TEXT NOT NULL,
            applied_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            checksum    TEXT
        )
    """)
    conn.commit()


def _applied(conn) -> dict[str, dict]:
    cur = conn.cursor(cursor_factory=RealDictCursor)
    cur.execute("SELECT version, filename, applied_at, checksum FROM schema_migrations ORDER BY version")
    return {r["version"]: dict(r) for r in cur.fetchall()}


def status(migrations_dir: Path | None = None) -> list[dict]:
    """Return one row per migration file: version, filename, status, applied_at.

    Status is ``applied``, ``pending`` or ``DRIFT`` (file changed after it was applied).
    """
    files = discover(migrations_dir)
    with get_connection() as conn:
        _ensure_table(conn)
        applied = _applied(conn)

    rows: list[dict] = []
    for version, path in files:
        record = applied.get(version)
        if record is None:
            state = "pending"
        elif record.get("checksum") and record["checksum"] != checksum(path):
            state = "DRIFT"
        else:
            state = "applied"
        rows.append({
            "version": version,
            "filename": path.name,
            "status": state,
            "applied_at": record["applied_at"] if record else None,
        })
    return rows


def apply(
    version: str | None = None,
    dry_run: bool = False,
    migrations_dir: Path | None = None,
) -> list[str]:
    """Apply pending migrations. Returns the versions applied (or that would be, on dry run)."""
    files = discover(migrations_dir)

    with get_connection() as conn:
        _ensure_table(conn)
        applied = _applied(conn)

        pending = [
            (v, path)
            for v, path in files
            if v not in applied and (version is None or v == version)
        ]

        done: list[str] = []
        for v, path in pending:
            if dry_run:
                logger.info("[dry-run] Would apply %s (version %s)", path.name, v)
                done.append(v)
                continue

            cur = conn.cursor()
            try:
                cur.execute(path.read_text())
                cur.execute(
                    "INSERT INTO schema_migrations (version, filename, checksum) VALUES (%s, %s, %s) "
                    "ON CONFLICT (version) DO NOTHING",
                    (v, path.name, checksum(path)),
                )
                conn.commit()
            except Exception:
                conn.rollback()
                logger.error("Migration %s failed", path.name)
                raise
            logger.info("Applied %s (version %s)", path.name, v)
            done.append(v)

        return done
