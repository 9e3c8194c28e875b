"""Tests for hmern.db — connection pool and migration runner."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import psycopg2
import pytest

from hmern.config import DatabaseConfig, reset_config
from hmern.db import connection, migrate


@pytest.fixture
def migrations_dir(tmp_path):
    (tmp_path / "001_core_settings.sql").write_text("CREATE TABLE a (id INT);")
    (tmp_path / "002b_indexes.sql").write_text("CREATE INDEX ON a (id);")
    (tmp_path / "notes.sql").write_text("-- not a migration")
    return tmp_path


@pytest.fixture
def migrate_db():
    """Mock the database connection for migration tests."""
    with patch("hmern.db.migrate.get_connection") as mock_conn:
        conn = MagicMock()
        cur = MagicMock()
        conn.__enter__ = MagicMock(return_value=conn)
        conn.__exit__ = MagicMock(return_value=False)
        conn.cursor.return_value = cur
        cur.fetchall.return_value = []
        mock_conn.return_value = conn
        yield {"connection": mock_conn, "conn": conn, "cursor": cur}


class TestDiscover:
    def test_sorted_versions(self, migrations_dir):
        found = migrate.discover(migrations_dir)
        assert [v for v, _ in found] == ["001", "002b"]

    def test_bundled_migrations(self):
        versions = [v for v, _ in migrate.discover()]
        assert "001" in versions

    def test_migrations_ship_inside_package(self):
        package_dir = Path(migrate.__file__).resolve().parent
        assert migrate.MIGRATIONS_DIR.parent == package_dir
        path = dict(migrate.discover())["001"]
        assert path.is_relative_to(package_dir)
        assert "core_settings_config" in path.read_text()

    def test_checksum_changes_with_content(self, migrations_dir):
        path = migrations_dir / "001_core_settings.sql"
        before = migrate.checksum(path)
        path.write_text("CREATE TABLE b (id INT);")
        assert migrate.checksum(path) != before


class TestStatus:
    def test_pending_applied_and_drift(self, migrations_dir, migrate_db):
        migrate_db["cursor"].fetchall.return_value = [
            {
                "version": "001",
                "filename": "001_core_settings.sql",
                "applied_at": "2026-01-01",
                "checksum": "stale",
            }
        ]
        rows = {r["version"]: r for r in migrate.status(migrations_dir)}
        assert rows["001"]["status"] == "DRIFT"
        assert rows["002b"]["status"] == "pending"
        assert rows["002b"]["applied_at"] is None

    def test_applied(self, migrations_dir, migrate_db):
        path = migrations_dir / "001_core_settings.sql"
        migrate_db["cursor"].fetchall.return_value = [
            {"version": "001", "filename": path.name, "applied_at": "x", "checksum": migrate.checksum(path)}
        ]
        rows = {r["version"]: r for r in migrate.status(migrations_dir)}
        assert rows["001"]["status"] == "applied"


class TestApply:
    def test_applies_pending_in_order(self, migrations_dir, migrate_db):
        applied = migrate.apply(migrations_dir=migrations_dir)
        assert applied == ["001", "002b"]
        executed = [c[0][0] for c in migrate_db["cursor"].execute.call_args_list]
        assert "CREATE TABLE a (id INT);" in executed
        assert "CREATE INDEX ON a (id);" in executed

    def test_single_version(self, migrations_dir, migrate_db):
        assert migrate.apply(version="002b", migrations_dir=migrations_dir) == ["002b"]

    def test_dry_run_executes_nothing(self, migrations_dir, migrate_db):
        applied = migrate.apply(dry_run=True, migrations_dir=migrations_dir)
        assert applied == ["001", "002b"]
        executed = [c[0][0] for c in migrate_db["cursor"].execute.call_args_list]
        assert "CREATE TABLE a (id INT);" not in executed

    def test_skips_applied(self, migrations_dir, migrate_db):
        migrate_db["cursor"].fetchall.return_value = [
            {"version": "001", "filename": "001_core_settings.sql", "applied_at": "x", "checksum": None}
        ]
        assert migrate.apply(migrations_dir=migrations_dir) == ["002b"]

    def test_failure_rolls_back(self, migrations_dir, migrate_db):
        def execute(sql, *args):
            if sql.startswith("CREATE INDEX"):
                raise psycopg2.ProgrammingError("syntax error")

        migrate_db["cursor"].execute.side_effect = execute
        with pytest.raises(psycopg2.ProgrammingError):
            migrate.apply(migrations_dir=migrations_dir)
        migrate_db["conn"].rollback.assert_called_once()


class TestConnection:
    @pytest.fixture(autouse=True)
    def _reset_pool(self, clean_env):
        reset_config()
        connection.close_pool()
        yield
        connection.close_pool()
        reset_config()

    def test_connect_failure_is_connection_error(self):
        with patch(
            "hmern.db.connection.psycopg2.pool.ThreadedConnectionPool",
            side_effect=psycopg2.OperationalError("refused"),
        ):
            with pytest.raises(ConnectionError, match="HMERN_DB_"):
                connection.get_pool()

    def test_pool_reused(self):
        with patch("hmern.db.connection.psycopg2.pool.ThreadedConnectionPool") as pool_cls:
            pool_cls.return_value.closed = False
            assert connection.get_pool() is connection.get_pool()
            pool_cls.assert_called_once()

    @pytest.fixture
    def pool(self):
        with patch("hmern.db.connection.psycopg2.pool.ThreadedConnectionPool") as pool_cls:
            pool = pool_cls.return_value
            pool.closed = False
            pool.getconn.return_value.closed = 0
            yield pool

    def test_commits_and_returns_connection(self, pool):
        with connection.get_connection() as conn:
            assert conn is pool.getconn.return_value
        conn.commit.assert_called_once()
        pool.putconn.assert_called_once_with(conn, close=False)

    def test_rolls_back_on_error(self, pool):
        with pytest.raises(RuntimeError):
            with connection.get_connection():
                raise RuntimeError("boom")
        conn = pool.getconn.return_value
        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()
        pool.putconn.assert_called_once_with(conn, close=False)

    def test_dropped_connection_discarded(self, pool):
        with pytest.raises(psycopg2.OperationalError):
            with connection.get_connection():
                raise psycopg2.OperationalError("server closed the connection unexpectedly")
        conn = pool.getconn.return_value
        conn.rollback.assert_not_called()
        pool.putconn.assert_called_once_with(conn, close=True)

    def test_closed_connection_discarded(self, pool):
        conn = pool.getconn.return_value
        conn.closed = 2
        with connection.get_connection():
            pass
        pool.putconn.assert_called_once_with(conn, close=True)

    def test_pool_sized_and_tagged_from_config(self, monkeypatch):
        monkeypatch.setenv("HMERN_DB_POOL_MAX", "8")
        monkeypatch.setenv("HMERN_DB_STATEMENT_TIMEOUT_MS", "2500")
        with patch("hmern.db.connection.psycopg2.pool.ThreadedConnectionPool") as pool_cls:
            connection.get_pool()
        kwargs = pool_cls.call_args.kwargs
        assert kwargs["minconn"] == 1
        assert kwargs["maxconn"] == 8
        assert kwargs["connect_timeout"] == 5
        assert kwargs["application_name"] == "hmern-settings"
        assert kwargs["options"] == "-c statement_timeout=2500"


class TestConnectKwargs:
    def test_statement_timeout_disabled(self):
        kwargs = connection.connect_kwargs(DatabaseConfig(statement_timeout_ms=0))
        assert "options" not in kwargs

    def test_includes_connection_params(self):
        kwargs = connection.connect_kwargs(DatabaseConfig(host="db", name="settings", password="pw"))
        assert kwargs["host"] == "db"
        assert kwargs["dbname"] == "settings"
        assert kwargs["password"] == "pw"
