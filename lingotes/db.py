from __future__ import annotations

import json
import logging
import re
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator

import streamlit as st

from lingotes.errors import NotFoundError, PersistenceError
from lingotes.schema import COLLECTIONS, SCHEMA_SQL
from lingotes.utils import iso_now, new_id

log = logging.getLogger(__name__)

_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def connect(db_path: Path | str) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


@st.cache_resource
def get_conn(db_path: Path) -> sqlite3.Connection:
    return connect(db_path)


def ensure_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(SCHEMA_SQL)
    conn.commit()


def q(conn: sqlite3.Connection, sql: str, params: Iterable[Any] = ()) -> list[sqlite3.Row]:
    cur = conn.execute(sql, tuple(params))
    rows = cur.fetchall()
    cur.close()
    return rows


def x(conn: sqlite3.Connection, sql: str, params: Iterable[Any] = ()) -> int:
    cur = conn.execute(sql, tuple(params))
    conn.commit()
    n = cur.rowcount
    cur.close()
    return int(n)


def _table(collection: str) -> str:
    if collection not in COLLECTIONS:
        raise ValueError(f"Unknown collection '{collection}'.")
    return collection


def _row_to_doc(row: sqlite3.Row) -> dict:
    doc = json.loads(row["data"])
    doc["id"] = row["id"]
    return doc


class DocumentStore:
    """
    Document persistence over sqlite3 with the primitives the engine relies on:
    create, update, delete, get and list per collection.

    Every write is committed on its own. Nothing spans two documents, so a
    multi-step operation that fails halfway leaves its earlier writes in place.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    @contextmanager
    def _guard(self, op: str, collection: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as e:
            log.error("store %s on %s failed: %s", op, collection, e)
            raise PersistenceError(f"Could not {op} {collection}: {e}") from e

    def create(self, collection: str, doc: dict) -> str:
        table = _table(collection)
        body = dict(doc)
        doc_id = body.pop("id", None) or new_id()
        with self._guard("create", collection):
            x(
                self.conn,
                f"INSERT INTO {table} (id, created_at, data) VALUES (?, ?, ?)",
                (doc_id, iso_now(), json.dumps(body)),
            )
        return str(doc_id)

    def get(self, collection: str, doc_id: str) -> dict:
        table = _table(collection)
        with self._guard("read", collection):
            rows = q(self.conn, f"SELECT id, data FROM {table} WHERE id=?", (doc_id,))
        if not rows:
            raise NotFoundError(collection, doc_id)
        return _row_to_doc(rows[0])

    def update(self, collection: str, doc_id: str, fields: dict) -> None:
        """Merge top-level fields into an existing document."""
        table = _table(collection)
        body = self.get(collection, doc_id)
        body.pop("id", None)
        body.update({k: v for k, v in fields.items() if k != "id"})
        with self._guard("update", collection):
            n = x(self.conn, f"UPDATE {table} SET data=? WHERE id=?", (json.dumps(body), doc_id))
        if n == 0:
            raise NotFoundError(collection, doc_id)

    def delete(self, collection: str, doc_id: str) -> None:
        table = _table(collection)
        with self._guard("delete", collection):
            n = x(self.conn, f"DELETE FROM {table} WHERE id=?", (doc_id,))
        if n == 0:
            raise NotFoundError(collection, doc_id)

    def list(self, collection: str, **filters: Any) -> list[dict]:
        """Documents in creation order, filtered by equality on top-level fields."""
        table = _table(collection)
        clauses: list[str] = []
        params: list[Any] = []
        for key, value in filters.items():
            if not _FIELD_RE.match(key):
                raise ValueError(f"Invalid filter field '{key}'.")
            if value is None:
                clauses.append(f"json_extract(data, '$.{key}') IS NULL")
            else:
                clauses.append(f"json_extract(data, '$.{key}') = ?")
                params.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._guard("list", collection):
            rows = q(self.conn, f"SELECT id, data FROM {table} {where} ORDER BY created_at, rowid", params)
        return [_row_to_doc(r) for r in rows]

    def count(self, collection: str) -> int:
        table = _table(collection)
        with self._guard("count", collection):
            return int(q(self.conn, f"SELECT COUNT(*) AS n FROM {table}")[0]["n"])


@st.cache_resource
def get_store(db_path: Path) -> DocumentStore:
    conn = get_conn(db_path)
    ensure_schema(conn)
    return DocumentStore(conn)
