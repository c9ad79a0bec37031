"""SQLite copy of the Steam app catalog.

Schema
------
::

    CREATE TABLE IF NOT EXISTS steamapp (
        appid               INTEGER NOT NULL,
        type                TEXT    NOT NULL,
        name                TEXT    NOT NULL,
        comparable_name     TEXT    NOT NULL,
        last_modified       INTEGER NOT NULL DEFAULT 0,
        price_change_number INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (type, appid)
    );

Rows are only ever written by ``replace_by_type``, which swaps the whole
partition of one app type inside a single transaction. With WAL journaling
readers keep seeing the previous partition until the swap commits.
"""

import sqlite3
import threading
from collections.abc import Iterable, Iterator
from contextlib import closing
from pathlib import Path
from typing import Protocol

import structlog

from ..models import AppType, SteamApp
from .errors import StorageError

log = structlog.stdlib.get_logger()


class CancelSignal(Protocol):
    """Anything with ``is_set()``: ``threading.Event`` or ``asyncio.Event``."""

    def is_set(self) -> bool: ...


def _casefold(value: str | None) -> str | None:
    return value.casefold() if value is not None else None


def _row_to_app(row: sqlite3.Row) -> SteamApp:
    return SteamApp(
        app_id=row["appid"],
        name=row["name"],
        comparable_name=row["comparable_name"],
        app_type=AppType(row["type"]),
        last_modified=row["last_modified"],
        price_change_number=row["price_change_number"],
    )


class CatalogStore:
    """Persistent catalog table partitioned by app type."""

    def __init__(self, database_path: Path, batch_size: int = 500) -> None:
        self.database_path = database_path
        self.batch_size = batch_size
        self._schema_lock = threading.Lock()
        self._schema_ready = False

    def exists(self) -> bool:
        """Whether the database file has been created yet."""
        return self.database_path.exists()

    def _connect(self) -> sqlite3.Connection:
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        # Autocommit mode; transactions are opened explicitly
        conn = sqlite3.connect(
            self.database_path,
            timeout=30.0,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.create_function("casefold", 1, _casefold, deterministic=True)
        self._ensure_schema(conn)
        return conn

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        with self._schema_lock:
            if self._schema_ready:
                return
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS steamapp (
                    appid               INTEGER NOT NULL,
                    type                TEXT    NOT NULL,
                    name                TEXT    NOT NULL,
                    comparable_name     TEXT    NOT NULL,
                    last_modified       INTEGER NOT NULL DEFAULT 0,
                    price_change_number INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (type, appid)
                );
                CREATE INDEX IF NOT EXISTS ix_steamapp_type_comparable_name
                    ON steamapp (type, comparable_name);
            """)
            self._schema_ready = True

    def replace_by_type(self, app_type: AppType, apps: Iterable[SteamApp]) -> int:
        """Atomically replace every row of ``app_type`` with ``apps``.

        Returns:
            Number of rows inserted

        Raises:
            StorageError: On any SQLite or I/O failure, including duplicate
                app ids in ``apps``. Nothing is changed in that case.
        """
        rows = [
            (
                app.app_id,
                app_type.value,
                app.name,
                app.comparable_name,
                app.last_modified,
                app.price_change_number,
            )
            for app in apps
        ]

        try:
            with closing(self._connect()) as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    conn.execute("DELETE FROM steamapp WHERE type = ?", (app_type.value,))
                    conn.executemany(
                        """
                        INSERT INTO steamapp
                            (appid, type, name, comparable_name, last_modified, price_change_number)
                        VALUES (?, ?, ?, ?, ?, ?)
                        """,
                        rows,
                    )
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
                conn.execute("COMMIT")
        except sqlite3.Error as e:
            log.error(
                "Catalog replace failed",
                app_type=app_type.value,
                rows=len(rows),
                database=str(self.database_path),
                error=str(e),
            )
            raise StorageError(
                f"Failed to replace {app_type.value} catalog",
                database_path=str(self.database_path),
                app_type=app_type.value,
                original_error=e,
            ) from e

        log.info("Catalog replaced", app_type=app_type.value, rows=len(rows))
        return len(rows)

    def find_by_id(self, app_type: AppType, app_id: int) -> SteamApp | None:
        row = self._fetch_one(
            "SELECT * FROM steamapp WHERE type = ? AND appid = ?",
            (app_type.value, app_id),
        )
        return _row_to_app(row) if row else None

    def find_by_comparable_name(self, app_type: AppType, comparable_name: str) -> SteamApp | None:
        """Exact match on the normalized name; the lowest app id wins on ties."""
        row = self._fetch_one(
            """
            SELECT * FROM steamapp
            WHERE type = ? AND comparable_name = ?
            ORDER BY appid
            LIMIT 1
            """,
            (app_type.value, comparable_name),
        )
        return _row_to_app(row) if row else None

    def count(self, app_type: AppType | None = None) -> int:
        if app_type is None:
            row = self._fetch_one("SELECT COUNT(*) AS n FROM steamapp", ())
        else:
            row = self._fetch_one(
                "SELECT COUNT(*) AS n FROM steamapp WHERE type = ?",
                (app_type.value,),
            )
        return int(row["n"]) if row else 0

    def search_by_name_terms(
        self,
        app_type: AppType,
        terms: list[str],
        cancel_event: CancelSignal | None = None,
    ) -> Iterator[SteamApp]:
        """Lazily yield every app whose name contains all ``terms``.

        Matching is case-insensitive (``str.casefold``) substring matching
        with AND semantics. Results come in app id order from a single read
        snapshot, fetched ``batch_size`` rows at a time. Setting
        ``cancel_event`` stops the iteration before the next row.

        Raises:
            StorageError: On any SQLite failure
        """
        folded = [term.casefold() for term in terms if term]
        where = " AND ".join(["type = ?"] + ["instr(casefold(name), ?) > 0"] * len(folded))
        query = f"SELECT * FROM steamapp WHERE {where} ORDER BY appid"
        params = [app_type.value, *folded]

        try:
            with closing(self._connect()) as conn:
                conn.execute("BEGIN")
                try:
                    cursor = conn.execute(query, params)
                    while True:
                        if cancel_event is not None and cancel_event.is_set():
                            log.debug("Catalog search cancelled", terms=folded)
                            return
                        batch = cursor.fetchmany(self.batch_size)
                        if not batch:
                            return
                        for row in batch:
                            if cancel_event is not None and cancel_event.is_set():
                                log.debug("Catalog search cancelled", terms=folded)
                                return
                            yield _row_to_app(row)
                finally:
                    conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            log.error("Catalog search failed", terms=folded, error=str(e))
            raise StorageError(
                "Failed to search the catalog",
                database_path=str(self.database_path),
                app_type=app_type.value,
                original_error=e,
            ) from e

    def _fetch_one(self, query: str, params: tuple) -> sqlite3.Row | None:
        try:
            with closing(self._connect()) as conn:
                return conn.execute(query, params).fetchone()
        except sqlite3.Error as e:
            log.error("Catalog query failed", database=str(self.database_path), error=str(e))
            raise StorageError(
                "Failed to query the catalog",
                database_path=str(self.database_path),
                original_error=e,
            ) from e
