from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Dict, Iterator, List, NamedTuple, Optional, Sequence, Type, TypeVar

from .models import SObject

T = TypeVar("T", bound=SObject)


class UpsertResult(NamedTuple):
    record: SObject
    created: bool


class StoreRejectedError(Exception):
    """
    Raised when the record store rejects an operation.

    Covers permission denial, validation failures, constraint violations and
    references to records that do not exist.
    """

    def __init__(self, message: str, status_code: Optional[str] = None, fields: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.fields = fields or []

    def __str__(self):
        if self.status_code:
            return f"{self.status_code}: {self.message}"
        return self.message


class RecordStore(ABC):
    """
    Generic CRUD/query interface into a remote object store.

    Every write is all-or-none for the records passed in a single call.
    Implementations raise StoreRejectedError and nothing else for rejected
    operations.
    """

    @abstractmethod
    def query(self, model: Type[T], **filters) -> List[T]:
        raise NotImplementedError

    @abstractmethod
    def insert(self, records: Sequence[T]) -> List[T]:
        raise NotImplementedError

    @abstractmethod
    def update(self, records: Sequence[T]) -> List[T]:
        raise NotImplementedError

    @abstractmethod
    def upsert(self, records: Sequence[T], match_key: str) -> List[UpsertResult]:
        """Insert-or-update on equality of ``match_key``; reports per record whether it was inserted."""
        raise NotImplementedError

    @abstractmethod
    def delete(self, records: Sequence[SObject]) -> None:
        raise NotImplementedError

    @contextmanager
    def transaction(self) -> Iterator["RecordStore"]:
        """Unit of work; stores without cross-call transactions commit every call immediately."""
        yield self


def group_by_type(records: Sequence[SObject]) -> Dict[Type[SObject], List[SObject]]:
    grouped: Dict[Type[SObject], List[SObject]] = {}
    for record in records:
        grouped.setdefault(type(record), []).append(record)
    return grouped


def require_ids(records: Sequence[SObject], operation: str) -> None:
    for record in records:
        if not record.id:
            raise StoreRejectedError(
                f"Cannot {operation} a {record.sobject_type} without an Id",
                status_code="MISSING_ARGUMENT",
                fields=["Id"],
            )


def check_required_fields(records: Sequence[SObject]) -> None:
    for record in records:
        missing = record.missing_required()
        if missing:
            raise StoreRejectedError(
                f"Required fields are missing: [{', '.join(missing)}]",
                status_code="REQUIRED_FIELD_MISSING",
                fields=missing,
            )


def check_unique_keys(records: Sequence[SObject], match_key: str) -> None:
    seen = set()
    for record in records:
        value = getattr(record, match_key)
        key = (record.sobject_type, value)
        if value is not None and key in seen:
            raise StoreRejectedError(
                f"Duplicate {record.api_name(match_key)} {value!r} in one upsert call",
                status_code="DUPLICATE_VALUE",
                fields=[record.api_name(match_key)],
            )
        seen.add(key)
