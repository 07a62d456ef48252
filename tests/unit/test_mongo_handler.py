from unittest.mock import MagicMock, Mock, patch

import pytest
from bson import ObjectId
from pymongo.errors import PyMongoError

from core.errors import DatabaseError
from core.report import ReconciliationReport
from integrations.mongo_handler import (
    FileRepository,
    ReconciliationRunRepository,
    StatementRepository,
    TransactionRepository,
    file_from_document,
    get_mongo_connection,
    statement_from_document,
)

STATEMENT_ID = ObjectId()
FILE_ID = ObjectId()


def _db(collection):
    db = MagicMock()
    db.__getitem__.return_value = collection
    return db


def _file_doc(**overrides):
    doc = {
        "_id": FILE_ID,
        "originalName": "March.pdf",
        "fileName": "a1b2c3.pdf",
        "path": "statements/2024/3/a1b2c3.pdf",
        "storageProvider": "sftp",
        "mimeType": "application/pdf",
        "size": 2048,
        "uploadedBy": ObjectId(),
    }
    doc.update(overrides)
    return doc


class TestDocumentMapping:
    def test_statement_with_joined_file(self):
        doc = {
            "_id": STATEMENT_ID,
            "accountName": "Operating",
            "bankName": "Chase",
            "month": 3,
            "year": 2024,
            "sourceFile": FILE_ID,
            "_file": [_file_doc()],
        }

        statement = statement_from_document(doc)

        assert statement.id == str(STATEMENT_ID)
        assert statement.file_id == str(FILE_ID)
        assert statement.file.path == "statements/2024/3/a1b2c3.pdf"
        assert statement.file.display_name == "March.pdf"

    def test_statement_with_dangling_reference(self):
        statement = statement_from_document({"_id": STATEMENT_ID, "sourceFile": FILE_ID, "_file": []})

        assert statement.file_id == str(FILE_ID)
        assert statement.file is None

    def test_file_falls_back_to_stored_name(self):
        file = file_from_document(_file_doc(path=None))

        assert file.path == "a1b2c3.pdf"


class TestStatementRepository:
    def test_find_page_joins_files_in_id_order(self):
        collection = Mock()
        collection.aggregate.return_value = [{"_id": STATEMENT_ID, "sourceFile": FILE_ID, "_file": [_file_doc()]}]
        repo = StatementRepository(_db(collection), "statements", "files")

        page = repo.find_page(skip=100, limit=50)

        pipeline = collection.aggregate.call_args[0][0]
        assert pipeline[:3] == [{"$sort": {"_id": 1}}, {"$skip": 100}, {"$limit": 50}]
        assert pipeline[3]["$lookup"]["from"] == "files"
        assert page[0].file.id == str(FILE_ID)

    def test_find_page_without_join(self):
        collection = Mock()
        collection.find.return_value.sort.return_value.skip.return_value.limit.return_value = [{"_id": STATEMENT_ID}]
        repo = StatementRepository(_db(collection))

        page = repo.find_page(0, 10, with_file_join=False)

        assert [s.id for s in page] == [str(STATEMENT_ID)]
        collection.aggregate.assert_not_called()

    def test_driver_errors_become_database_errors(self):
        collection = Mock()
        collection.aggregate.side_effect = PyMongoError("connection reset")
        repo = StatementRepository(_db(collection))

        with pytest.raises(DatabaseError, match="connection reset"):
            repo.find_page(0, 10)

    def test_referenced_file_ids_excludes_statements(self):
        collection = Mock()
        collection.distinct.return_value = [FILE_ID]
        repo = StatementRepository(_db(collection))

        result = repo.referenced_file_ids(exclude_ids=[str(STATEMENT_ID)])

        assert result == {str(FILE_ID)}
        field, query = collection.distinct.call_args[0]
        assert field == "sourceFile"
        assert query["_id"] == {"$nin": [STATEMENT_ID]}

    def test_delete_many_converts_ids(self):
        collection = Mock()
        collection.delete_many.return_value.deleted_count = 1
        repo = StatementRepository(_db(collection))

        assert repo.delete_many([str(STATEMENT_ID)]) == 1
        collection.delete_many.assert_called_once_with({"_id": {"$in": [STATEMENT_ID]}})

    def test_delete_nothing_skips_the_database(self):
        collection = Mock()

        assert StatementRepository(_db(collection)).delete_many([]) == 0
        collection.delete_many.assert_not_called()


class TestFileRepository:
    def test_provider_filter(self):
        assert FileRepository.provider_filter("s3") == {"storageProvider": "s3"}
        assert FileRepository.provider_filter(None) == {}

    def test_paths_include_legacy_stored_names(self):
        collection = Mock()
        collection.find.return_value = [
            {"path": "statements/2024/1/a.pdf"},
            {"path": None, "fileName": "legacy.pdf"},
            {},
        ]

        paths = FileRepository(_db(collection)).paths()

        assert paths == {"statements/2024/1/a.pdf", "legacy.pdf"}

    def test_count_applies_query(self):
        collection = Mock()
        collection.count_documents.return_value = 7

        assert FileRepository(_db(collection)).count({"storageProvider": "sftp"}) == 7
        collection.count_documents.assert_called_once_with({"storageProvider": "sftp"})


class TestTransactionRepository:
    def test_delete_by_statement(self):
        collection = Mock()
        collection.delete_many.return_value.deleted_count = 4
        repo = TransactionRepository(_db(collection))

        assert repo.delete_many([str(STATEMENT_ID)]) == 4
        collection.delete_many.assert_called_once_with({"statement": {"$in": [STATEMENT_ID]}})

    def test_count_for_no_statements(self):
        collection = Mock()

        assert TransactionRepository(_db(collection)).count_for_statements([]) == 0
        collection.count_documents.assert_not_called()

    def test_delete_failure(self):
        collection = Mock()
        collection.delete_many.side_effect = PyMongoError("not primary")

        with pytest.raises(DatabaseError):
            TransactionRepository(_db(collection)).delete_many(["s1"])


class TestReconciliationRunRepository:
    def test_store_writes_summary_and_orphans(self):
        collection = Mock()
        report = ReconciliationReport()
        report.add_orphan("statement", "s1", "no file reference")
        report.add_orphan("file", "f1", "not referenced by any statement")

        result = ReconciliationRunRepository(_db(collection)).store(report.finalize())

        records = collection.insert_many.call_args[0][0]
        assert result == {"run_id": report.run_id, "total_records": 3}
        assert [r["record_type"] for r in records] == ["summary", "orphan", "orphan"]
        assert all(r["reconciliation_run_id"] == report.run_id for r in records)
        assert "orphans" not in records[0]

    def test_store_accepts_report_dict(self):
        collection = Mock()
        data = ReconciliationReport().finalize().to_dict()

        result = ReconciliationRunRepository(_db(collection)).store(data)

        assert result["total_records"] == 1
        assert "orphans" in data

    def test_store_failure(self):
        collection = Mock()
        collection.insert_many.side_effect = PyMongoError("disk full")

        with pytest.raises(DatabaseError, match="disk full"):
            ReconciliationRunRepository(_db(collection)).store(ReconciliationReport().to_dict())


@patch("integrations.mongo_handler.MongoClient")
def test_connection_is_closed(mock_client_class):
    with get_mongo_connection("mongodb://localhost:27017") as client:
        assert client is mock_client_class.return_value

    mock_client_class.return_value.close.assert_called_once()
