from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Sequence

import psycopg2

from domain.errors import PersistenceError


class PostgresRepository:
    """
    Shared plumbing for the Postgres repositories.

    `db_params` is passed straight to `psycopg2.connect`, e.g.
    `{"dsn": "postgresql://..."}` or host/dbname/user/password keys.
    """

    _SCHEMA: Sequence[str] = ()

    def __init__(self, db_params: dict) -> None:
        self._db_params = db_params
        self._ensure_table()

    def _get_connection(self):
        return psycopg2.connect(**self._db_params)

    @contextmanager
    def _connection(self, operation: str) -> Iterator["psycopg2.extensions.connection"]:
        try:
            conn = self._get_connection()
        except psycopg2.Error as exc:
            raise PersistenceError(f"{operation} failed: {exc}", operation) from exc
        try:
            with conn:
                yield conn
        except psycopg2.Error as exc:
            raise PersistenceError(f"{operation} failed: {exc}", operation) from exc
        finally:
            conn.close()

    def _ensure_table(self) -> None:
        with self._connection("create tables") as conn:
            with conn.cursor() as cur:
                for statement in self._SCHEMA:
                    cur.execute(statement)
