"""Persistence collaborator for the dedupe engine.

``RecordStore`` is the interface the service and executor are written
against; ``SqliteRecordStore`` is the bundled implementation. All merge
atomicity comes from :meth:`RecordStore.transaction`.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Mapping, Optional, Protocol, Tuple

from .errors import PersistenceError, ValidationError
from .models import Entity, EntityType, MergeAudit, ensure_entity, entity_type_of

logger = logging.getLogger(__name__)

ENTITY_TABLES = {
    EntityType.CONTACT: "contacts",
    EntityType.COMPANY: "companies",
}

# (table, foreign key column) pairs pointing at each entity type
DEPENDENT_REFERENCES: Dict[EntityType, Tuple[Tuple[str, str], ...]] = {
    EntityType.CONTACT: (
        ("deals", "contact_id"),
        ("tasks", "contact_id"),
        ("activities", "contact_id"),
    ),
    EntityType.COMPANY: (
        ("contacts", "company_id"),
        ("activities", "company_id"),
    ),
}

TAG_TABLES = {
    EntityType.CONTACT: ("contact_tags", "contact_id"),
    EntityType.COMPANY: ("company_tags", "company_id"),
}

SCHEMA: Dict[str, Tuple[Tuple[str, str], ...]] = {
    "companies": (
        ("id", "TEXT PRIMARY KEY"),
        ("name", "TEXT NOT NULL"),
        ("website", "TEXT"),
        ("industry", "TEXT"),
        ("employee_count", "INTEGER"),
        ("notes", "TEXT"),
        ("created_at", "TEXT"),
        ("linkedin_url", "TEXT"),
        ("phone_number", "TEXT"),
        ("annual_revenue", "REAL"),
        ("company_size", "INTEGER"),
        ("lifecycle_stage", "TEXT"),
        ("lead_source", "TEXT"),
        ("last_contact_date", "TEXT"),
        ("owner", "TEXT"),
        ("country", "TEXT"),
        ("state", "TEXT"),
        ("user_id", "TEXT NOT NULL"),
        ("is_merged", "INTEGER NOT NULL DEFAULT 0"),
    ),
    "contacts": (
        ("id", "TEXT PRIMARY KEY"),
        ("first_name", "TEXT NOT NULL"),
        ("last_name", "TEXT"),
        ("email", "TEXT"),
        ("phone", "TEXT"),
        ("phone_number", "TEXT"),
        ("company", "TEXT"),
        ("company_id", "TEXT REFERENCES companies(id)"),
        ("job_title", "TEXT"),
        ("company_website", "TEXT"),
        ("company_headcount", "INTEGER"),
        ("country", "TEXT"),
        ("state", "TEXT"),
        ("notes", "TEXT"),
        ("created_at", "TEXT"),
        ("linkedin_url", "TEXT"),
        ("lifecycle_stage", "TEXT"),
        ("lead_source", "TEXT"),
        ("last_contact_date", "TEXT"),
        ("owner", "TEXT"),
        ("user_id", "TEXT NOT NULL"),
        ("is_merged", "INTEGER NOT NULL DEFAULT 0"),
    ),
    "deals": (
        ("id", "TEXT PRIMARY KEY"),
        ("contact_id", "TEXT REFERENCES contacts(id)"),
        ("title", "TEXT NOT NULL"),
        ("amount", "REAL"),
        ("stage", "TEXT NOT NULL DEFAULT 'lead'"),
        ("close_date", "TEXT"),
        ("notes", "TEXT"),
        ("created_at", "TEXT"),
    ),
    "tasks": (
        ("id", "TEXT PRIMARY KEY"),
        ("title", "TEXT NOT NULL"),
        ("description", "TEXT"),
        ("due_date", "TEXT"),
        ("completed", "INTEGER NOT NULL DEFAULT 0"),
        ("contact_id", "TEXT REFERENCES contacts(id)"),
        ("created_at", "TEXT"),
    ),
    "activities": (
        ("id", "TEXT PRIMARY KEY"),
        ("type", "TEXT NOT NULL"),
        ("title", "TEXT NOT NULL"),
        ("description", "TEXT"),
        ("activity_date", "TEXT NOT NULL"),
        ("duration_minutes", "INTEGER"),
        ("outcome", "TEXT"),
        ("contact_id", "TEXT REFERENCES contacts(id)"),
        ("company_id", "TEXT REFERENCES companies(id)"),
        ("deal_id", "TEXT REFERENCES deals(id)"),
        ("created_by", "TEXT NOT NULL"),
        ("created_at", "TEXT"),
        ("user_id", "TEXT"),
    ),
    "tags": (
        ("id", "TEXT PRIMARY KEY"),
        ("name", "TEXT NOT NULL"),
        ("color", "TEXT"),
        ("created_at", "TEXT"),
        ("user_id", "TEXT"),
    ),
    "contact_tags": (
        ("contact_id", "TEXT NOT NULL REFERENCES contacts(id)"),
        ("tag_id", "TEXT NOT NULL REFERENCES tags(id)"),
    ),
    "company_tags": (
        ("company_id", "TEXT NOT NULL REFERENCES companies(id)"),
        ("tag_id", "TEXT NOT NULL REFERENCES tags(id)"),
    ),
    "merged_records": (
        ("id", "TEXT PRIMARY KEY"),
        ("primary_record_id", "TEXT NOT NULL"),
        ("merged_record_id", "TEXT NOT NULL"),
        ("entity_type", "TEXT NOT NULL"),
        ("merged_at", "TEXT NOT NULL"),
        ("merged_by", "TEXT"),
        ("merge_metadata", "TEXT"),
    ),
}

_TABLE_COLUMNS = {table: {column for column, _ in columns} for table, columns in SCHEMA.items()}
_NO_ID_TABLES = {"contact_tags", "company_tags"}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_record_id() -> str:
    return str(uuid.uuid4())


class RecordStore(Protocol):
    """Typed CRUD, reference rewiring, tag and audit access plus a transaction."""

    def query(
        self,
        entity_type: EntityType,
        user_id: Optional[str] = None,
        include_merged: bool = False,
    ) -> List[Entity]: ...

    def get(self, entity_type: EntityType, record_id: str) -> Optional[Entity]: ...

    def update(self, entity_type: EntityType, record_id: str, fields: Mapping[str, Any]) -> None: ...

    def mark_merged(self, entity_type: EntityType, record_id: str) -> None: ...

    def reassign_references(self, table: str, column: str, old_id: str, new_id: str) -> int: ...

    def count_references(self, table: str, column: str, record_id: str) -> int: ...

    def tag_ids(self, entity_type: EntityType, record_id: str) -> List[str]: ...

    def add_tag(self, entity_type: EntityType, record_id: str, tag_id: str) -> None: ...

    def insert_merge_audit(self, audit: MergeAudit) -> None: ...

    def list_merge_audits(self, entity_type: EntityType, record_id: str) -> List[MergeAudit]: ...

    def insert_activity(self, activity: Mapping[str, Any]) -> str: ...

    def transaction(self) -> Any: ...

    def close(self) -> None: ...


class SqliteRecordStore:
    """``sqlite3`` store with explicit BEGIN/COMMIT/ROLLBACK transactions.

    Outside :meth:`transaction` every statement autocommits. Nested
    ``transaction()`` blocks join the outermost one.
    """

    def __init__(self, database: str = ":memory:", connection: Optional[sqlite3.Connection] = None):
        self.database = database
        try:
            self._conn = connection or sqlite3.connect(database, isolation_level=None)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Unable to open database {database}: {exc}") from exc
        self._conn.isolation_level = None
        self._conn.row_factory = sqlite3.Row
        self._depth = 0
        self.initialize()

    # -- plumbing ---------------------------------------------------------

    def initialize(self) -> None:
        for table, columns in SCHEMA.items():
            column_sql = ", ".join(f"{name} {ddl}" for name, ddl in columns)
            self._execute(f"CREATE TABLE IF NOT EXISTS {table} ({column_sql})")

    def close(self) -> None:
        self._conn.close()

    def _execute(self, sql: str, params: Tuple[Any, ...] = ()) -> sqlite3.Cursor:
        try:
            return self._conn.execute(sql, params)
        except sqlite3.Error as exc:
            raise PersistenceError(f"{exc} while running: {sql.split('(')[0].strip()}") from exc

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextmanager
    def transaction(self) -> Iterator["SqliteRecordStore"]:
        if self._depth:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        self._execute("BEGIN IMMEDIATE")
        self._depth = 1
        try:
            yield self
        except BaseException:
            self._depth = 0
            try:
                self._conn.execute("ROLLBACK")
            except sqlite3.Error:
                logger.exception("Rollback failed on %s", self.database)
            raise
        self._depth = 0
        try:
            self._conn.execute("COMMIT")
        except sqlite3.Error as exc:
            try:
                self._conn.execute("ROLLBACK")
            except sqlite3.Error:
                logger.exception("Rollback after failed commit failed on %s", self.database)
            raise PersistenceError(f"Commit failed: {exc}") from exc

    @staticmethod
    def _check_columns(table: str, columns: Any) -> None:
        known = _TABLE_COLUMNS.get(table)
        if known is None:
            raise ValidationError(f"Unknown table: {table}")
        unknown = sorted(set(columns) - known)
        if unknown:
            raise ValidationError(f"Unknown columns for {table}: {', '.join(unknown)}")

    # -- generic rows -----------------------------------------------------

    def insert_row(self, table: str, row: Mapping[str, Any]) -> str:
        values = dict(row)
        if table not in _NO_ID_TABLES:
            values.setdefault("id", new_record_id())
        if "created_at" in _TABLE_COLUMNS.get(table, ()):
            values.setdefault("created_at", utc_now().isoformat())
        self._check_columns(table, values)
        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        self._execute(
            f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", tuple(values.values())
        )
        return str(values.get("id", ""))

    def rows(self, table: str, **where: Any) -> List[Dict[str, Any]]:
        self._check_columns(table, where)
        clause = " AND ".join(f"{column} = ?" for column in where)
        sql = f"SELECT * FROM {table}" + (f" WHERE {clause}" if clause else "")
        return [dict(row) for row in self._execute(sql, tuple(where.values())).fetchall()]

    # -- entities ---------------------------------------------------------

    def insert_entity(self, entity: Entity) -> str:
        entity_type = entity_type_of(entity)
        row = entity.to_dict()
        if not row.get("id"):
            row.pop("id")
        if not row.get("created_at"):
            row.pop("created_at")
        row["is_merged"] = int(bool(row.get("is_merged")))
        return self.insert_row(ENTITY_TABLES[entity_type], row)

    def insert_contact(self, **fields: Any) -> str:
        return self.insert_entity(ensure_entity(EntityType.CONTACT, fields))

    def insert_company(self, **fields: Any) -> str:
        return self.insert_entity(ensure_entity(EntityType.COMPANY, fields))

    def query(
        self,
        entity_type: EntityType,
        user_id: Optional[str] = None,
        include_merged: bool = False,
    ) -> List[Entity]:
        table = ENTITY_TABLES[entity_type]
        clauses: List[str] = []
        params: List[Any] = []
        if not include_merged:
            clauses.append("is_merged = 0")
        if user_id:
            clauses.append("user_id = ?")
            params.append(user_id)
        sql = f"SELECT * FROM {table}"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at, id"
        rows = self._execute(sql, tuple(params)).fetchall()
        return [ensure_entity(entity_type, dict(row)) for row in rows]

    def get(self, entity_type: EntityType, record_id: str) -> Optional[Entity]:
        table = ENTITY_TABLES[entity_type]
        row = self._execute(f"SELECT * FROM {table} WHERE id = ?", (record_id,)).fetchone()
        return ensure_entity(entity_type, dict(row)) if row is not None else None

    def update(self, entity_type: EntityType, record_id: str, fields: Mapping[str, Any]) -> None:
        if not fields:
            return
        table = ENTITY_TABLES[entity_type]
        self._check_columns(table, fields)
        assignments = ", ".join(f"{column} = ?" for column in fields)
        cursor = self._execute(
            f"UPDATE {table} SET {assignments} WHERE id = ?",
            tuple(fields.values()) + (record_id,),
        )
        if cursor.rowcount == 0:
            raise PersistenceError(f"No {entity_type.value} row updated for id {record_id}")

    def mark_merged(self, entity_type: EntityType, record_id: str) -> None:
        table = ENTITY_TABLES[entity_type]
        cursor = self._execute(
            f"UPDATE {table} SET is_merged = 1 WHERE id = ? AND is_merged = 0", (record_id,)
        )
        if cursor.rowcount == 0:
            raise PersistenceError(f"Unable to flag {entity_type.value} {record_id} as merged")

    # -- dependents and tags ----------------------------------------------

    def reassign_references(self, table: str, column: str, old_id: str, new_id: str) -> int:
        self._check_columns(table, (column,))
        cursor = self._execute(
            f"UPDATE {table} SET {column} = ? WHERE {column} = ?", (new_id, old_id)
        )
        return cursor.rowcount

    def count_references(self, table: str, column: str, record_id: str) -> int:
        self._check_columns(table, (column,))
        row = self._execute(
            f"SELECT COUNT(*) FROM {table} WHERE {column} = ?", (record_id,)
        ).fetchone()
        return int(row[0])

    def tag_ids(self, entity_type: EntityType, record_id: str) -> List[str]:
        table, column = TAG_TABLES[entity_type]
        rows = self._execute(
            f"SELECT tag_id FROM {table} WHERE {column} = ? ORDER BY rowid", (record_id,)
        ).fetchall()
        return [str(row[0]) for row in rows]

    def add_tag(self, entity_type: EntityType, record_id: str, tag_id: str) -> None:
        table, column = TAG_TABLES[entity_type]
        self.insert_row(table, {column: record_id, "tag_id": tag_id})

    # -- audit and timeline -----------------------------------------------

    def insert_merge_audit(self, audit: MergeAudit) -> None:
        self.insert_row(
            "merged_records",
            {
                "id": audit.audit_id,
                "primary_record_id": audit.primary_id,
                "merged_record_id": audit.duplicate_id,
                "entity_type": audit.entity_type.value,
                "merged_at": audit.timestamp.isoformat(),
                "merged_by": audit.actor,
                "merge_metadata": json.dumps(
                    {"merged_data": audit.resolved_fields}, default=str, sort_keys=True
                ),
            },
        )

    def list_merge_audits(self, entity_type: EntityType, record_id: str) -> List[MergeAudit]:
        rows = self._execute(
            "SELECT * FROM merged_records WHERE entity_type = ? "
            "AND (primary_record_id = ? OR merged_record_id = ?) ORDER BY merged_at",
            (entity_type.value, record_id, record_id),
        ).fetchall()
        audits: List[MergeAudit] = []
        for row in rows:
            metadata = json.loads(row["merge_metadata"] or "{}")
            audits.append(
                MergeAudit(
                    audit_id=row["id"],
                    primary_id=row["primary_record_id"],
                    duplicate_id=row["merged_record_id"],
                    entity_type=EntityType.parse(row["entity_type"]),
                    timestamp=datetime.fromisoformat(row["merged_at"]),
                    actor=row["merged_by"] or "",
                    resolved_fields=metadata.get("merged_data", {}),
                )
            )
        return audits

    def insert_activity(self, activity: Mapping[str, Any]) -> str:
        return self.insert_row("activities", activity)
