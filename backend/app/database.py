"""Shared DuckDB handle for the relational services.

Every DuckDB-backed service (users, messages, inventory) receives the same
:class:`Database` so that ``:memory:`` databases are shared between them.
The connection is opened lazily and all statements are serialized through a
single lock, since a DuckDB connection must not be used from several
threads at once. Never call back into another service while holding it.

Usage:
    db = Database("hotelops.duckdb")
    db.register_schema(_CREATE_TABLE)
    rows = db.fetchall("SELECT * FROM users WHERE role = ?", ["admin"])
"""
import logging
import threading
from typing import Any, List, Optional, Sequence

import duckdb

from app.errors import StorageError

logger = logging.getLogger(__name__)


class Database:
    """Lazily-opened, lock-guarded DuckDB connection."""

    def __init__(self, db_path: str = "hotelops.duckdb") -> None:
        self._db_path = db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._schema: List[str] = []
        self._lock = threading.Lock()

    @property
    def path(self) -> str:
        return self._db_path

    def register_schema(self, *statements: str) -> None:
        """Queue DDL to run when the connection opens (or now, if open).

        Statements must be idempotent (``CREATE ... IF NOT EXISTS``).
        """
        with self._lock:
            self._schema.extend(statements)
            if self._connection is not None:
                for statement in statements:
                    self._run(self._connection, statement, None)

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            try:
                self._connection = duckdb.connect(self._db_path)
            except duckdb.Error as exc:
                raise StorageError(f"Cannot open database {self._db_path}: {exc}") from exc
            for statement in self._schema:
                self._run(self._connection, statement, None)
            logger.info("[Database] Opened %s", self._db_path)
        return self._connection

    @staticmethod
    def _run(conn: duckdb.DuckDBPyConnection, sql: str, params: Optional[Sequence[Any]]):
        try:
            if params is None:
                return conn.execute(sql)
            return conn.execute(sql, list(params))
        except duckdb.Error as exc:
            logger.error("[Database] Statement failed: %s", exc)
            raise StorageError(str(exc)) from exc

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> None:
        with self._lock:
            self._run(self._get_connection(), sql, params)

    def fetchone(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[tuple]:
        with self._lock:
            return self._run(self._get_connection(), sql, params).fetchone()

    def fetchall(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[tuple]:
        with self._lock:
            return self._run(self._get_connection(), sql, params).fetchall()

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
