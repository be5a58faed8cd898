"""
experiment_sdk.tier2_reliability.cache_sql
────────────────────────────────────────────
Relational cache store: one row per assignment in a two-column
``(key, value)`` table, accessed with raw parameterized statements.

Every operation fails open: a database error is logged and treated as a
cache miss (reads) or a no-op (writes, deletes). Optional retries with
backoff run before the fallback kicks in.

Minimal stack: SQLAlchemy 2.x Core (sync engine)
Configure via: DATABASE_URL, EXPERIMENT_CACHE_TABLE
"""
from __future__ import annotations

import re
from typing import Any, Callable

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from experiment_sdk.tier0_core.config import get_config
from experiment_sdk.tier0_core.errors import ConfigurationError
from experiment_sdk.tier1_runtime.retry import retry_policy
from experiment_sdk.tier2_reliability.cache import BaseCacheStore
from experiment_sdk.tier2_reliability.fallback import with_fallback

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _like_prefix(prefix: str) -> str:
    escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped + "%"


class SqlCacheStore(BaseCacheStore):
    """
    Usage:
        store = SqlCacheStore(url="postgresql+psycopg://.../app")
        store.create_table()
    """

    def __init__(
        self,
        engine: Engine | None = None,
        *,
        url: str | None = None,
        table_name: str | None = None,
        namespace: str | None = None,
        retry_attempts: int = 1,
        create_table: bool = False,
        **options: Any,
    ) -> None:
        super().__init__(namespace=namespace, **options)
        config = get_config()
        self.table_name = table_name or config.cache_table_name
        if not _IDENTIFIER.match(self.table_name):
            raise ConfigurationError(
                f"Invalid cache table name {self.table_name!r}", table_name=self.table_name
            )
        self.engine = engine or create_engine(url or config.database_url)

        run: Callable[..., Any] = self._run_once
        if retry_attempts > 1:
            run = retry_policy(max_attempts=retry_attempts, on=[SQLAlchemyError])(run)
        self._run = run

        if create_table:
            self.create_table()

    # ── Schema ────────────────────────────────────────────────────────────────

    def create_table(self) -> None:
        with self.engine.begin() as conn:
            conn.execute(text(f"""
                CREATE TABLE IF NOT EXISTS {self.table_name} (
                  key   VARCHAR(255) NOT NULL PRIMARY KEY,
                  value VARCHAR(255) NOT NULL
                )
            """))

    # ── Statements ────────────────────────────────────────────────────────────

    def _run_once(self, sql: str, params: dict[str, Any] | None = None, *, fetch: str | None = None) -> Any:
        with self.engine.begin() as conn:
            result = conn.execute(text(sql.format(table=self.table_name)), params or {})
            if fetch == "scalar":
                return result.scalar()
            return result.rowcount

    # ── Store operations ──────────────────────────────────────────────────────

    @with_fallback(default=None)
    def read(self, key: str) -> str | None:
        return self._run(
            "SELECT value FROM {table} WHERE key = :key",
            {"key": self.namespaced(key)},
            fetch="scalar",
        )

    @with_fallback(default=None)
    def write(self, key: str, value: Any) -> None:
        if value is None:
            return
        params = {"key": self.namespaced(key), "value": str(value)}
        updated = self._run("UPDATE {table} SET value = :value WHERE key = :key", params)
        if not updated:
            self._run("INSERT INTO {table} (key, value) VALUES (:key, :value)", params)

    @with_fallback(default=None)
    def delete(self, key: str) -> None:
        self._run("DELETE FROM {table} WHERE key = :key", {"key": self.namespaced(key)})

    @with_fallback(default=None)
    def delete_matched(self, prefix: str) -> None:
        self._run(
            "DELETE FROM {table} WHERE key LIKE :pattern ESCAPE '\\'",
            {"pattern": _like_prefix(self.namespaced(prefix))},
        )

    @with_fallback(default=None)
    def clear(self) -> None:
        if self.namespace:
            self.delete_matched("")
        else:
            self._run("DELETE FROM {table}")

    @with_fallback(default=0)
    def length(self, prefix: str | None = None) -> int:
        if prefix is None and not self.namespace:
            return int(self._run("SELECT COUNT(*) FROM {table}", fetch="scalar") or 0)
        return int(self._run(
            "SELECT COUNT(*) FROM {table} WHERE key LIKE :pattern ESCAPE '\\'",
            {"pattern": _like_prefix(self.namespaced(prefix or ""))},
            fetch="scalar",
        ) or 0)

    def __repr__(self) -> str:
        return f"<SqlCacheStore table={self.table_name!r} url={self.engine.url!r}>"


__all__ = ["SqlCacheStore"]
