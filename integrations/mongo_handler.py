from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Set
import logging

from bson import ObjectId
from pymongo import ASCENDING, MongoClient
from pymongo.errors import PyMongoError

from core.errors import DatabaseError
from core.models import FileRecord, StatementRecord, TransactionRecord

logger = logging.getLogger(__name__)


@contextmanager
def get_mongo_connection(mongo_uri: str):
    client = None
    try:
        client = MongoClient(mongo_uri)
        yield client
    finally:
        if client:
            client.close()


def _oid(value):
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return value


def _oids(values: Iterable) -> List:
    return [_oid(v) for v in values]


def _str_id(value) -> Optional[str]:
    return str(value) if value is not None else None


def file_from_document(doc: Dict) -> FileRecord:
    return FileRecord(
        id=str(doc["_id"]),
        original_name=doc.get("originalName"),
        stored_name=doc.get("fileName"),
        storage_path=doc.get("path"),
        storage_provider=doc.get("storageProvider"),
        mime_type=doc.get("mimeType"),
        size=doc.get("size"),
        uploaded_by=_str_id(doc.get("uploadedBy")),
    )


def statement_from_document(doc: Dict) -> StatementRecord:
    joined = doc.get("_file") or []
    return StatementRecord(
        id=str(doc["_id"]),
        account_name=doc.get("accountName"),
        bank_name=doc.get("bankName"),
        month=doc.get("month"),
        year=doc.get("year"),
        file_id=_str_id(doc.get("sourceFile")),
        file=file_from_document(joined[0]) if joined else None,
        status=doc.get("status"),
    )


def transaction_from_document(doc: Dict) -> TransactionRecord:
    return TransactionRecord(
        id=str(doc["_id"]),
        statement_id=_str_id(doc.get("statement")),
        txn_date=doc.get("txnDate"),
        description=doc.get("description"),
        amount=doc.get("amount"),
        direction=doc.get("direction"),
        balance=doc.get("balance"),
    )


class StatementRepository:
    def __init__(self, db, collection="statements", files_collection="files"):
        self.collection = db[collection]
        self.files_collection = files_collection

    def find_page(self, skip: int, limit: int, with_file_join: bool = True) -> List[StatementRecord]:
        # Sorted on _id so skip/limit pages do not overlap between calls
        try:
            if not with_file_join:
                cursor = self.collection.find({}).sort("_id", ASCENDING).skip(skip).limit(limit)
                return [statement_from_document(doc) for doc in cursor]

            pipeline = [
                {"$sort": {"_id": 1}},
                {"$skip": skip},
                {"$limit": limit},
                {"$lookup": {
                    "from": self.files_collection,
                    "localField": "sourceFile",
                    "foreignField": "_id",
                    "as": "_file",
                }},
            ]
            return [statement_from_document(doc) for doc in self.collection.aggregate(pipeline)]
        except PyMongoError as e:
            raise DatabaseError(f"Failed to fetch statements (skip={skip}, limit={limit}): {e}") from e

    def find_sample(self, size: int) -> List[StatementRecord]:
        return self.find_page(0, size)

    def count(self) -> int:
        try:
            return self.collection.count_documents({})
        except PyMongoError as e:
            raise DatabaseError(f"Failed to count statements: {e}") from e

    def referenced_file_ids(self, exclude_ids: Iterable[str] = ()) -> Set[str]:
        query = {"sourceFile": {"$ne": None}}
        excluded = _oids(exclude_ids)
        if excluded:
            query["_id"] = {"$nin": excluded}
        try:
            return {str(file_id) for file_id in self.collection.distinct("sourceFile", query)}
        except PyMongoError as e:
            raise DatabaseError(f"Failed to read statement file references: {e}") from e

    def delete_many(self, ids: Iterable[str]) -> int:
        ids = _oids(ids)
        if not ids:
            return 0
        try:
            return self.collection.delete_many({"_id": {"$in": ids}}).deleted_count
        except PyMongoError as e:
            raise DatabaseError(f"Failed to delete statements: {e}") from e


class FileRepository:
    def __init__(self, db, collection="files"):
        self.collection = db[collection]

    @staticmethod
    def provider_filter(provider: Optional[str]) -> Dict:
        return {"storageProvider": provider} if provider else {}

    def find_all(self, query: Optional[Dict] = None) -> List[FileRecord]:
        try:
            return [file_from_document(doc) for doc in self.collection.find(query or {})]
        except PyMongoError as e:
            raise DatabaseError(f"Failed to fetch file records: {e}") from e

    def find_page(self, query: Optional[Dict], skip: int, limit: int) -> List[FileRecord]:
        try:
            cursor = self.collection.find(query or {}).sort("_id", ASCENDING).skip(skip).limit(limit)
            return [file_from_document(doc) for doc in cursor]
        except PyMongoError as e:
            raise DatabaseError(f"Failed to fetch file records (skip={skip}, limit={limit}): {e}") from e

    def count(self, query: Optional[Dict] = None) -> int:
        try:
            return self.collection.count_documents(query or {})
        except PyMongoError as e:
            raise DatabaseError(f"Failed to count file records: {e}") from e

    def paths(self, query: Optional[Dict] = None) -> Set[str]:
        try:
            cursor = self.collection.find(query or {}, {"path": 1, "fileName": 1})
            return {doc.get("path") or doc.get("fileName") for doc in cursor if doc.get("path") or doc.get("fileName")}
        except PyMongoError as e:
            raise DatabaseError(f"Failed to read file paths: {e}") from e

    def delete_many(self, ids: Iterable[str]) -> int:
        ids = _oids(ids)
        if not ids:
            return 0
        try:
            return self.collection.delete_many({"_id": {"$in": ids}}).deleted_count
        except PyMongoError as e:
            raise DatabaseError(f"Failed to delete file records: {e}") from e


class TransactionRepository:
    def __init__(self, db, collection="transactions"):
        self.collection = db[collection]

    def _by_statements(self, statement_ids):
        return {"statement": {"$in": _oids(statement_ids)}}

    def count_for_statements(self, statement_ids: Iterable[str]) -> int:
        statement_ids = list(statement_ids)
        if not statement_ids:
            return 0
        try:
            return self.collection.count_documents(self._by_statements(statement_ids))
        except PyMongoError as e:
            raise DatabaseError(f"Failed to count transactions: {e}") from e

    def find_for_statements(self, statement_ids: Iterable[str]) -> List[TransactionRecord]:
        statement_ids = list(statement_ids)
        if not statement_ids:
            return []
        try:
            return [transaction_from_document(doc) for doc in self.collection.find(self._by_statements(statement_ids))]
        except PyMongoError as e:
            raise DatabaseError(f"Failed to fetch transactions: {e}") from e

    def delete_many(self, statement_ids: Iterable[str]) -> int:
        statement_ids = list(statement_ids)
        if not statement_ids:
            return 0
        try:
            return self.collection.delete_many(self._by_statements(statement_ids)).deleted_count
        except PyMongoError as e:
            raise DatabaseError(f"Failed to delete transactions: {e}") from e


class ReconciliationRunRepository:
    """Stores a summary row plus one row per orphan for each run."""

    def __init__(self, db, collection="reconciliation_runs"):
        self.collection = db[collection]
        self.collection_name = collection

    def store(self, report) -> Dict:
        """Accepts a ReconciliationReport or the dict produced by its ``to_dict``."""
        now = datetime.now(timezone.utc)
        summary = dict(report.to_dict() if hasattr(report, "to_dict") else report)
        run_id = summary["run_id"]
        orphans = summary.pop("orphans")

        records = [{**summary, "record_type": "summary"}]
        for orphan in orphans:
            records.append({**orphan, "record_type": "orphan"})

        for rec in records:
            rec.update({
                "reconciliation_run_id": run_id,
                "reconciliation_date": now,
                "created_at": now,
            })

        try:
            self.collection.insert_many(records)
        except PyMongoError as e:
            raise DatabaseError(f"Failed to store reconciliation run {run_id}: {e}") from e

        logger.info(f"Stored {len(records)} records for run {run_id} in {self.collection_name}")
        return {"run_id": run_id, "total_records": len(records)}
