"""Record store used by the quiz session controller.

The controller only speaks the small contract below, so it can run against the
SQLAlchemy database in production and against :class:`InMemoryRecordStore` in
tests. Every failure surfaces as :class:`StoreError`; a uniqueness violation on
attempts surfaces as :class:`DuplicateInProgressAttempt` so callers can resume.
"""
import copy
import enum
import itertools
import logging
import threading
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import DuplicateInProgressAttempt, StoreError
from .models import Answer, Attempt, AttemptStatus


logger = logging.getLogger(__name__)

Record = dict[str, Any]
Order = str | Sequence[str] | None


class RecordStore(Protocol):
    def find_one(self, table: str, filters: Mapping[str, Any]) -> Record | None: ...

    def insert(self, table: str, record: Mapping[str, Any]) -> Record: ...

    def update(self, table: str, record_id: Any, partial: Mapping[str, Any]) -> Record: ...

    def query(self, table: str, filters: Mapping[str, Any], order: Order = None) -> list[Record]: ...

    def upsert(self, table: str, record: Mapping[str, Any], conflict_keys: Sequence[str]) -> Record: ...


def _plain(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    return value


def _order_keys(order: Order) -> list[tuple[str, bool]]:
    if not order:
        return []
    if isinstance(order, str):
        order = [order]
    keys = []
    for item in order:
        descending = item.startswith("-")
        keys.append((item.lstrip("-"), descending))
    return keys


def _duplicate_or_store_error(table: str, exc: Exception) -> StoreError:
    if table == "attempts":
        return DuplicateInProgressAttempt(f"In-progress attempt already exists: {exc}")
    return StoreError(f"Constraint violation on {table}: {exc}")


# --- SQLAlchemy backed store ---

MODELS = {
    "attempts": Attempt,
    "answers": Answer,
}


class SqlAlchemyRecordStore:
    def __init__(self, session_factory: Callable[[], Session], models: Mapping[str, type] | None = None):
        self._session_factory = session_factory
        self._models = dict(models or MODELS)

    def _model(self, table: str):
        try:
            return self._models[table]
        except KeyError as exc:
            raise StoreError(f"Unknown table: {table}") from exc

    @staticmethod
    def _to_record(obj) -> Record:
        return {column.key: _plain(getattr(obj, column.key)) for column in obj.__table__.columns}

    def _where(self, model, filters: Mapping[str, Any]):
        return [getattr(model, key) == value for key, value in filters.items()]

    def find_one(self, table: str, filters: Mapping[str, Any]) -> Record | None:
        rows = self.query(table, filters, order="id")
        return rows[0] if rows else None

    def query(self, table: str, filters: Mapping[str, Any], order: Order = None) -> list[Record]:
        model = self._model(table)
        stmt = select(model).where(*self._where(model, filters))
        for key, descending in _order_keys(order):
            column = getattr(model, key)
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        try:
            with self._session_factory() as db:
                return [self._to_record(obj) for obj in db.scalars(stmt).all()]
        except SQLAlchemyError as exc:
            raise StoreError(f"Query on {table} failed: {exc}") from exc

    def insert(self, table: str, record: Mapping[str, Any]) -> Record:
        model = self._model(table)
        try:
            with self._session_factory() as db:
                obj = model(**record)
                db.add(obj)
                db.commit()
                db.refresh(obj)
                return self._to_record(obj)
        except IntegrityError as exc:
            raise _duplicate_or_store_error(table, exc) from exc
        except SQLAlchemyError as exc:
            raise StoreError(f"Insert into {table} failed: {exc}") from exc

    def update(self, table: str, record_id: Any, partial: Mapping[str, Any]) -> Record:
        model = self._model(table)
        try:
            with self._session_factory() as db:
                obj = db.get(model, record_id)
                if obj is None:
                    raise StoreError(f"{table} record {record_id} not found")
                for key, value in partial.items():
                    setattr(obj, key, value)
                db.commit()
                db.refresh(obj)
                return self._to_record(obj)
        except IntegrityError as exc:
            raise _duplicate_or_store_error(table, exc) from exc
        except SQLAlchemyError as exc:
            raise StoreError(f"Update of {table} failed: {exc}") from exc

    def upsert(self, table: str, record: Mapping[str, Any], conflict_keys: Sequence[str]) -> Record:
        model = self._model(table)
        changes = {key: value for key, value in record.items() if key not in conflict_keys}
        try:
            with self._session_factory() as db:
                dialect = db.get_bind().dialect.name
                if dialect in ("sqlite", "postgresql"):
                    insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
                    stmt = insert(model).values(**record)
                    stmt = stmt.on_conflict_do_update(index_elements=list(conflict_keys), set_=changes)
                    db.execute(stmt)
                else:
                    filters = {key: record[key] for key in conflict_keys}
                    obj = db.scalars(select(model).where(*self._where(model, filters))).first()
                    if obj is None:
                        db.add(model(**record))
                    else:
                        for key, value in changes.items():
                            setattr(obj, key, value)
                db.commit()
        except IntegrityError as exc:
            raise _duplicate_or_store_error(table, exc) from exc
        except SQLAlchemyError as exc:
            raise StoreError(f"Upsert into {table} failed: {exc}") from exc

        stored = self.find_one(table, {key: record[key] for key in conflict_keys})
        if stored is None:
            raise StoreError(f"Upsert into {table} did not persist")
        return stored


# --- In-memory store ---

# table -> list of (unique columns, predicate selecting the rows the rule applies to)
UNIQUE_RULES: dict[str, list[tuple[tuple[str, ...], Callable[[Record], bool] | None]]] = {
    "attempts": [(("student_id", "quiz_id"), lambda row: row.get("status") == AttemptStatus.IN_PROGRESS.value)],
    "answers": [(("attempt_id", "question_id"), None)],
}


class InMemoryRecordStore:
    """Dict-backed store with the same uniqueness rules as the database schema."""

    def __init__(self, unique_rules: Mapping[str, Iterable] | None = None):
        self._tables: dict[str, list[Record]] = {}
        self._ids: dict[str, itertools.count] = {}
        self._rules = dict(UNIQUE_RULES if unique_rules is None else unique_rules)
        self._lock = threading.Lock()
        self.fail_on: set[str] = set()
        self.calls: list[tuple[str, str]] = []

    def _enter(self, operation: str, table: str) -> None:
        self.calls.append((operation, table))
        if operation in self.fail_on or f"{operation}:{table}" in self.fail_on:
            raise StoreError(f"Simulated {operation} failure on {table}")

    @staticmethod
    def _matches(row: Record, filters: Mapping[str, Any]) -> bool:
        return all(row.get(key) == _plain(value) for key, value in filters.items())

    def _check_unique(self, table: str, candidate: Record, ignore_id: Any = None) -> None:
        for columns, applies in self._rules.get(table, []):
            if applies is not None and not applies(candidate):
                continue
            for row in self._tables.get(table, []):
                if row["id"] == ignore_id:
                    continue
                if applies is not None and not applies(row):
                    continue
                if all(row.get(col) == candidate.get(col) for col in columns):
                    raise _duplicate_or_store_error(table, ValueError(f"duplicate {columns}"))

    def rows(self, table: str) -> list[Record]:
        with self._lock:
            return copy.deepcopy(self._tables.get(table, []))

    def find_one(self, table: str, filters: Mapping[str, Any]) -> Record | None:
        rows = self.query(table, filters, order="id")
        return rows[0] if rows else None

    def query(self, table: str, filters: Mapping[str, Any], order: Order = None) -> list[Record]:
        with self._lock:
            self._enter("query", table)
            rows = [copy.deepcopy(row) for row in self._tables.get(table, []) if self._matches(row, filters)]
        for key, descending in reversed(_order_keys(order)):
            rows.sort(key=lambda row: (row.get(key) is None, row.get(key)), reverse=descending)
        return rows

    def insert(self, table: str, record: Mapping[str, Any]) -> Record:
        with self._lock:
            self._enter("insert", table)
            row = {key: _plain(value) for key, value in record.items()}
            counter = self._ids.setdefault(table, itertools.count(1))
            row["id"] = next(counter)
            self._check_unique(table, row)
            self._tables.setdefault(table, []).append(row)
            return copy.deepcopy(row)

    def update(self, table: str, record_id: Any, partial: Mapping[str, Any]) -> Record:
        with self._lock:
            self._enter("update", table)
            for row in self._tables.get(table, []):
                if row["id"] == record_id:
                    candidate = {**row, **{key: _plain(value) for key, value in partial.items()}}
                    self._check_unique(table, candidate, ignore_id=record_id)
                    row.update(candidate)
                    return copy.deepcopy(row)
            raise StoreError(f"{table} record {record_id} not found")

    def upsert(self, table: str, record: Mapping[str, Any], conflict_keys: Sequence[str]) -> Record:
        with self._lock:
            self._enter("upsert", table)
            plain = {key: _plain(value) for key, value in record.items()}
            for row in self._tables.get(table, []):
                if all(row.get(key) == plain.get(key) for key in conflict_keys):
                    row.update(plain)
                    return copy.deepcopy(row)
            counter = self._ids.setdefault(table, itertools.count(1))
            row = {**plain, "id": next(counter)}
            self._check_unique(table, row)
            self._tables.setdefault(table, []).append(row)
            return copy.deepcopy(row)
