import logging
from typing import Dict, List, Optional, Sequence, Type

from simple_salesforce import Salesforce, format_soql
from simple_salesforce.exceptions import SalesforceError

from .models import SObject
from .store import (
    RecordStore,
    StoreRejectedError,
    T,
    UpsertResult,
    check_unique_keys,
    group_by_type,
    require_ids,
)

logger = logging.getLogger(__name__)

COLLECTIONS_PATH = "composite/sobjects"
# sObject Collections accept at most 200 records per request
COLLECTION_BATCH_SIZE = 200
ROLLED_BACK = "ALL_OR_NONE_OPERATION_ROLLED_BACK"


def _chunks(items: Sequence, size: int = COLLECTION_BATCH_SIZE):
    for i in range(0, len(items), size):
        yield items[i:i + size]


def _rejection_from_results(results: List[dict]) -> Optional[StoreRejectedError]:
    """Build the error for a collections response, preferring the record that caused the rollback."""
    errors = [error for result in results if not result.get("success") for error in result.get("errors", [])]
    if not errors:
        return None
    cause = next((error for error in errors if error.get("statusCode") != ROLLED_BACK), errors[0])
    return StoreRejectedError(
        cause.get("message", "Unknown error"),
        status_code=cause.get("statusCode"),
        fields=cause.get("fields", []),
    )


def _rejection_from_exception(exc: SalesforceError) -> StoreRejectedError:
    content = exc.content
    if isinstance(content, list) and content and isinstance(content[0], dict):
        first = content[0]
        return StoreRejectedError(
            first.get("message", str(exc)),
            status_code=first.get("errorCode"),
            fields=first.get("fields", []),
        )
    return StoreRejectedError(str(exc), status_code=f"HTTP_{exc.status}")


class SalesforceStore(RecordStore):
    """
    RecordStore backed by a simple_salesforce connection.

    Writes go through the sObject Collections resource with allOrNone set, so
    each request of up to 200 records succeeds or fails as a whole. Every call
    commits on its own; ``transaction()`` does not span calls.
    """

    def __init__(self, sf: Salesforce):
        self.sf = sf
        self._external_ids: Dict[str, List[str]] = {}

    def _restful(self, path: str, method: str, **kwargs):
        try:
            return self.sf.restful(path, method=method, **kwargs)
        except SalesforceError as e:
            logger.error(f"{method} {path} failed: {e}")
            raise _rejection_from_exception(e) from e

    def _check_results(self, results: List[dict]) -> None:
        rejection = _rejection_from_results(results)
        if rejection is not None:
            logger.error(f"Collection request rejected: {rejection}")
            raise rejection

    def external_id_fields(self, model: Type[SObject]) -> List[str]:
        """API names of the fields the platform flags as external ids for this object."""
        name = model.sobject_type
        if name not in self._external_ids:
            try:
                describe = getattr(self.sf, name).describe()
            except SalesforceError as e:
                raise _rejection_from_exception(e) from e
            self._external_ids[name] = [field["name"] for field in describe["fields"] if field.get("externalId")]
        return self._external_ids[name]

    def build_soql(self, model: Type[SObject], **filters) -> str:
        soql = f"SELECT {', '.join(model.api_fields())} FROM {model.sobject_type}"
        clauses = []
        for key, value in filters.items():
            if key == "id__in":
                clauses.append(format_soql("Id IN {}", list(value)))
            else:
                clauses.append(format_soql(f"{model.api_name(key)} = {{}}", value))
        if clauses:
            soql += " WHERE " + " AND ".join(clauses)
        return soql

    def query(self, model: Type[T], **filters) -> List[T]:
        if "id__in" in filters and not filters["id__in"]:
            return []
        soql = self.build_soql(model, **filters)
        logger.debug(f"SOQL: {soql}")
        try:
            result = self.sf.query_all(soql)
        except SalesforceError as e:
            raise _rejection_from_exception(e) from e
        records = [model.from_record(record) for record in result["records"]]
        # SOQL compares strings case-insensitively; callers get exact matches only
        exact = {key: value for key, value in filters.items() if isinstance(value, str)}
        return [record for record in records if all(getattr(record, key) == value for key, value in exact.items())]

    def insert(self, records: Sequence[T]) -> List[T]:
        records = list(records)
        for record in records:
            if record.id:
                raise StoreRejectedError(
                    f"Cannot specify Id in an insert call: {record.id}",
                    status_code="INVALID_FIELD_FOR_INSERT_UPDATE",
                    fields=["Id"],
                )
        for batch in _chunks(records):
            payload = [
                {"attributes": {"type": record.sobject_type}, **record.to_record(include_id=False)}
                for record in batch
            ]
            results = self._restful(COLLECTIONS_PATH, "POST", json={"allOrNone": True, "records": payload})
            self._check_results(results)
            for record, result in zip(batch, results):
                record.id = result["id"]
        logger.info(f"Inserted {len(records)} records")
        return records

    def update(self, records: Sequence[T]) -> List[T]:
        records = list(records)
        require_ids(records, "update")
        for batch in _chunks(records):
            payload = [
                {
                    "attributes": {"type": record.sobject_type},
                    "id": record.id,
                    **record.to_record(include_id=False, set_only=True),
                }
                for record in batch
            ]
            results = self._restful(COLLECTIONS_PATH, "PATCH", json={"allOrNone": True, "records": payload})
            self._check_results(results)
        logger.info(f"Updated {len(records)} records")
        return records

    def _native_upsert(self, model: Type[T], records: List[T], match_key: str) -> Dict[int, bool]:
        created: Dict[int, bool] = {}
        field = model.api_name(match_key)
        for batch in _chunks(records):
            payload = [
                {"attributes": {"type": model.sobject_type}, **record.to_record(include_id=False, set_only=True)}
                for record in batch
            ]
            results = self._restful(
                f"{COLLECTIONS_PATH}/{model.sobject_type}/{field}",
                "PATCH",
                json={"allOrNone": True, "records": payload},
            )
            self._check_results(results)
            for record, result in zip(batch, results):
                record.id = result["id"]
                created[id(record)] = bool(result.get("created"))
        return created

    def _lookup_upsert(self, model: Type[T], records: List[T], match_key: str) -> Dict[int, bool]:
        field = model.api_name(match_key)
        values = [getattr(record, match_key) for record in records]
        soql = format_soql(f"SELECT Id, {field} FROM {model.sobject_type} WHERE {field} IN {{}}", values)
        try:
            existing = self.sf.query_all(soql)["records"]
        except SalesforceError as e:
            raise _rejection_from_exception(e) from e

        ids_by_value: Dict[object, List[str]] = {}
        for row in existing:
            ids_by_value.setdefault(row[field], []).append(row["Id"])

        to_update, to_insert = [], []
        for record in records:
            ids = ids_by_value.get(getattr(record, match_key), [])
            if len(ids) > 1:
                raise StoreRejectedError(
                    f"{len(ids)} {model.sobject_type} records match {field}={getattr(record, match_key)!r}",
                    status_code="DUPLICATES_DETECTED",
                    fields=[field],
                )
            if ids:
                record.id = ids[0]
                to_update.append(record)
            else:
                to_insert.append(record)
        logger.debug(f"Upsert on {field}: {len(to_update)} existing, {len(to_insert)} new")
        if to_update:
            self.update(to_update)
        if to_insert:
            self.insert(to_insert)
        created = {id(record): False for record in to_update}
        created.update({id(record): True for record in to_insert})
        return created

    def upsert(self, records: Sequence[T], match_key: str) -> List[UpsertResult]:
        records = list(records)
        check_unique_keys(records, match_key)
        created: Dict[int, bool] = {}
        for model, group in group_by_type(records).items():
            for record in group:
                if getattr(record, match_key) is None:
                    raise StoreRejectedError(
                        f"Upsert key {model.api_name(match_key)} is not set",
                        status_code="MISSING_ARGUMENT",
                        fields=[model.api_name(match_key)],
                    )
            if model.api_name(match_key) in self.external_id_fields(model):
                created.update(self._native_upsert(model, group, match_key))
            else:
                created.update(self._lookup_upsert(model, group, match_key))
        logger.info(f"Upserted {len(records)} records on {match_key}")
        return [UpsertResult(record, created=created[id(record)]) for record in records]

    def delete(self, records: Sequence[SObject]) -> None:
        records = list(records)
        require_ids(records, "delete")
        for batch in _chunks(records):
            results = self._restful(
                COLLECTIONS_PATH,
                "DELETE",
                params={"ids": ",".join(record.id for record in batch), "allOrNone": "true"},
            )
            self._check_results(results)
        logger.info(f"Deleted {len(records)} records")
