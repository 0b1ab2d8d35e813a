from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from typing import Iterator, Sequence

from domain.errors import PersistenceError


class SqliteRepository:
    """
    Shared plumbing for the SQLite repositories.

    Subclasses list their `CREATE TABLE IF NOT EXISTS` statements in
    `_SCHEMA`; tables are created on construction so every repository is
    self-initialising. Driver errors surface as `PersistenceError`.
    """

    _SCHEMA: Sequence[str] = ()

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._ensure_table()

    def _get_connection(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path)

    @contextmanager
    def _connection(self, operation: str) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._get_connection()
        except sqlite3.Error as exc:
            raise PersistenceError(f"{operation} failed: {exc}", operation) from exc
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            raise PersistenceError(f"{operation} failed: {exc}", operation) from exc
        finally:
            conn.close()

    def _ensure_table(self) -> None:
        with self._connection("create tables") as conn:
            cur = conn.cursor()
            for statement in self._SCHEMA:
                cur.execute(statement)
