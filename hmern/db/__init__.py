"""PostgreSQL connection management for the settings document store."""

from hmern.db.connection import close_pool, get_connection, get_pool

__all__ = ["close_pool", "get_connection", "get_pool"]
