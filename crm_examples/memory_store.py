import copy
import itertools
import logging
import threading
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Type

from .models import SObject
from .store import (
    RecordStore,
    StoreRejectedError,
    T,
    UpsertResult,
    check_required_fields,
    check_unique_keys,
    require_ids,
)

logger = logging.getLogger(__name__)

# A rule receives the platform-shaped record and returns an error message, or None when it passes
ValidationRule = Callable[[dict], Optional[str]]


class MemoryStore(RecordStore):
    """In-process record store with platform-like ids, validation and transactions."""

    def __init__(self, validation_rules: Optional[Dict[str, List[ValidationRule]]] = None):
        self._tables: Dict[str, Dict[str, dict]] = {}
        self._counter = itertools.count(1)
        self._lock = threading.RLock()
        self.validation_rules = validation_rules or {}

    def _table(self, model: Type[SObject]) -> Dict[str, dict]:
        return self._tables.setdefault(model.sobject_type, {})

    def _new_id(self, model: Type[SObject]) -> str:
        return f"{model.key_prefix}{next(self._counter):012d}AAA"

    def _validate(self, record: SObject, row: dict) -> None:
        for rule in self.validation_rules.get(record.sobject_type, []):
            message = rule(row)
            if message:
                raise StoreRejectedError(message, status_code="FIELD_CUSTOM_VALIDATION_EXCEPTION")

    @contextmanager
    def _atomic(self, records: Sequence[SObject] = ()):
        original_ids = [record.id for record in records]
        with self._lock:
            snapshot = copy.deepcopy(self._tables)
            try:
                yield
            except Exception:
                self._tables = snapshot
                for record, original_id in zip(records, original_ids):
                    record.id = original_id
                raise

    def _matches(self, model: Type[T], row: dict, filters: dict) -> bool:
        record = model.from_record(row)
        for key, value in filters.items():
            if key == "id__in":
                if record.id not in value:
                    return False
            elif getattr(record, key) != value:
                return False
        return True

    def query(self, model: Type[T], **filters) -> List[T]:
        for key in filters:
            if key != "id__in":
                model.api_name(key)
        with self._lock:
            rows = [row for row in self._table(model).values() if self._matches(model, row, filters)]
            logger.debug(f"Query {model.sobject_type} {filters} matched {len(rows)} records")
            return [model.from_record(copy.deepcopy(row)) for row in rows]

    def _insert_one(self, record: SObject) -> None:
        if record.id:
            raise StoreRejectedError(
                f"Cannot specify Id in an insert call: {record.id}",
                status_code="INVALID_FIELD_FOR_INSERT_UPDATE",
                fields=["Id"],
            )
        check_required_fields([record])
        row = record.to_record(include_id=False)
        self._validate(record, row)
        new_id = self._new_id(type(record))
        row["Id"] = new_id
        self._table(type(record))[new_id] = row
        record.id = new_id

    def _update_one(self, record: SObject) -> None:
        table = self._table(type(record))
        if record.id not in table:
            raise StoreRejectedError(
                f"{record.sobject_type} {record.id} does not exist or has been deleted",
                status_code="ENTITY_IS_DELETED",
                fields=["Id"],
            )
        row = dict(table[record.id])
        row.update(record.to_record(include_id=False, set_only=True))
        merged = type(record).from_record(row)
        check_required_fields([merged])
        self._validate(merged, row)
        table[record.id] = row

    def insert(self, records: Sequence[T]) -> List[T]:
        records = list(records)
        with self._atomic(records):
            for record in records:
                self._insert_one(record)
        logger.info(f"Inserted {len(records)} records")
        return records

    def update(self, records: Sequence[T]) -> List[T]:
        records = list(records)
        require_ids(records, "update")
        with self._atomic():
            for record in records:
                self._update_one(record)
        logger.info(f"Updated {len(records)} records")
        return records

    def upsert(self, records: Sequence[T], match_key: str) -> List[UpsertResult]:
        records = list(records)
        check_unique_keys(records, match_key)
        results: List[UpsertResult] = []
        # Lookup and write happen under one lock, so a key cannot be inserted twice
        with self._atomic(records):
            for record in records:
                model = type(record)
                value = getattr(record, match_key)
                if value is None:
                    raise StoreRejectedError(
                        f"Upsert key {model.api_name(match_key)} is not set",
                        status_code="MISSING_ARGUMENT",
                        fields=[model.api_name(match_key)],
                    )
                matches = [
                    row_id
                    for row_id, row in self._table(model).items()
                    if self._matches(model, row, {match_key: value})
                ]
                if len(matches) > 1:
                    raise StoreRejectedError(
                        f"{len(matches)} {model.sobject_type} records match {model.api_name(match_key)}={value!r}",
                        status_code="DUPLICATES_DETECTED",
                        fields=[model.api_name(match_key)],
                    )
                if matches:
                    record.id = matches[0]
                    self._update_one(record)
                else:
                    self._insert_one(record)
                results.append(UpsertResult(record, created=not matches))
        inserted = sum(result.created for result in results)
        logger.info(f"Upserted {len(records)} records on {match_key} ({inserted} inserted, {len(records) - inserted} updated)")
        return results

    def delete(self, records: Sequence[SObject]) -> None:
        records = list(records)
        require_ids(records, "delete")
        with self._atomic():
            for record in records:
                table = self._table(type(record))
                if table.pop(record.id, None) is None:
                    raise StoreRejectedError(
                        f"{record.sobject_type} {record.id} does not exist or has been deleted",
                        status_code="ENTITY_IS_DELETED",
                        fields=["Id"],
                    )
        logger.info(f"Deleted {len(records)} records")

    @contextmanager
    def transaction(self) -> Iterator["MemoryStore"]:
        with self._atomic():
            yield self

    def count(self, model: Type[SObject]) -> int:
        with self._lock:
            return len(self._table(model))
