# services/api/adapters/sqlite/__init__.py
from __future__ import annotations

import json
import os
import sqlite3
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from core.errors import NotFoundError, StorageError
from models.selection import SelectionRecord

# ---- Engine (SQLite) with WAL & pragmas -------------------------------------

def _ensure_dir(path: str):
    d = os.path.dirname(path)
    if d and not os.path.isdir(d):
        os.makedirs(d, exist_ok=True)

def make_engine(db_url: str) -> Engine:
    # Create data dir if sqlite file
    if db_url.startswith("sqlite:///"):
        file_path = db_url.replace("sqlite:///", "", 1)
        _ensure_dir(file_path)

    engine = create_engine(db_url, future=True, pool_pre_ping=True)

    # Apply pragmas per-connection
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):  # type: ignore
        if isinstance(dbapi_connection, sqlite3.Connection):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL;")
            cursor.execute("PRAGMA synchronous=NORMAL;")
            cursor.close()

    return engine

# ---- Schema via SQLAlchemy Core ---------------------------------------------

metadata = MetaData()

page_selections = Table(
    "page_selections",
    metadata,
    Column("id", String, primary_key=True),
    Column("email", String, nullable=False),
    Column("product_id", String),
    Column("source_url", Text),
    Column("source_name", String),
    Column("selected_pages", Text, nullable=False),  # JSON list, caller order
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("expires_at", DateTime(timezone=True), nullable=False),
    Column("access_count", Integer, nullable=False, default=0),
    CheckConstraint("access_count >= 0", name="ck_access_count"),
)

# ---- Adapter implementation --------------------------------------------------

@dataclass(frozen=True)
class SqliteAdapter:
    engine: Engine

    @classmethod
    def from_url(cls, db_url: str = "sqlite:///data/selections.db") -> "SqliteAdapter":
        eng = make_engine(db_url)
        metadata.create_all(eng)
        return cls(engine=eng)

    def create(self, record: SelectionRecord) -> str:
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    insert(page_selections).values(
                        id=record.id,
                        email=record.email,
                        product_id=record.product_id,
                        source_url=record.source_url,
                        source_name=record.source_name,
                        selected_pages=json.dumps(record.selected_pages),
                        created_at=record.created_at,
                        expires_at=record.expires_at,
                        access_count=record.access_count,
                    )
                )
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to store selection {record.id}: {e}") from e
        return record.id

    def get(self, selection_id: str) -> Optional[SelectionRecord]:
        try:
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(page_selections).where(page_selections.c.id == selection_id)
                ).mappings().first()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load selection {selection_id}: {e}") from e

        if row is None:
            return None
        try:
            return SelectionRecord.from_storage(
                {
                    "id": row["id"],
                    "email": row["email"],
                    "productId": row["product_id"],
                    "sourceUrl": row["source_url"],
                    "sourceName": row["source_name"],
                    "selectedPages": row["selected_pages"],
                    "createdAt": row["created_at"],
                    "expiresAt": row["expires_at"],
                    "accessCount": row["access_count"],
                }
            )
        except ValueError as e:
            raise StorageError(f"Malformed selection {selection_id}: {e}") from e

    def increment_access(self, selection_id: str) -> None:
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    update(page_selections)
                    .where(page_selections.c.id == selection_id)
                    .values(access_count=page_selections.c.access_count + 1)
                )
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to update access count for {selection_id}: {e}") from e
        if result.rowcount == 0:
            raise NotFoundError(f"Selection {selection_id} not found")
