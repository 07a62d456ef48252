import pytest

from core.errors import BlobNotFound, DatabaseError, ListingError, StorageError
from core.models import FileRecord, StatementRecord, StorageBlob, TransactionRecord
from core.reconciliation import Orchestrator
from integrations.storage import StorageProvider


class FakeStorage(StorageProvider):
    """In-memory blob store laid out like the SFTP backend."""

    name = "sftp"

    def __init__(self, paths=()):
        self.blobs = {p: b"%PDF" for p in paths}
        self.hidden = set()          # present but not returned by listings
        self.failing_prefixes = set()
        self.probe_errors = set()
        self.delete_failures = set()
        self.list_calls = []
        self.probed = []
        self.deleted = []

    def _children(self, prefix):
        folder = prefix.strip("/") + "/"
        return sorted(
            p[len(folder):] for p in self.blobs
            if p.startswith(folder) and "/" not in p[len(folder):] and p not in self.hidden
        )

    def list(self, prefix, limit, offset=0):
        self.list_calls.append((prefix, limit, offset))
        if prefix in self.failing_prefixes:
            raise ListingError(prefix, "permission denied")
        names = self._children(prefix)
        if not names and not any(p.startswith(prefix + "/") for p in self.blobs):
            raise ListingError(prefix, "no such folder")
        return [{"name": n, "size": 4, "last_modified": None} for n in names[offset:offset + limit]]

    def list_tree(self, prefix):
        for path in sorted(self.blobs):
            if path.startswith(prefix.strip("/") + "/"):
                yield StorageBlob(path=path, size=len(self.blobs[path]))

    def download(self, path):
        if path in self.probe_errors:
            raise StorageError(f"timeout fetching {path}")
        if path not in self.blobs:
            raise BlobNotFound(path)
        return self.blobs[path]

    def exists(self, path):
        self.probed.append(path)
        return super().exists(path)

    def delete(self, path):
        if path in self.delete_failures:
            raise StorageError(f"delete rejected for {path}")
        self.blobs.pop(path, None)
        self.deleted.append(path)


class FakeStatementRepository:
    def __init__(self, world):
        self.world = world
        self.fail_on_page = False
        self.fail_delete = False
        self.page_calls = []

    def _ordered(self):
        return [self.world.statements[k] for k in sorted(self.world.statements)]

    def _joined(self, statement):
        file = self.world.files.get(statement.file_id) if statement.file_id else None
        return StatementRecord(**{**statement.__dict__, "file": file})

    def find_page(self, skip, limit, with_file_join=True):
        self.page_calls.append((skip, limit))
        if self.fail_on_page:
            raise DatabaseError("connection reset")
        page = self._ordered()[skip:skip + limit]
        return [self._joined(s) if with_file_join else s for s in page]

    def find_sample(self, size):
        return self.find_page(0, size)

    def count(self):
        return len(self.world.statements)

    def referenced_file_ids(self, exclude_ids=()):
        excluded = set(exclude_ids)
        return {s.file_id for s in self.world.statements.values() if s.file_id and s.id not in excluded}

    def delete_many(self, ids):
        if self.fail_delete:
            raise DatabaseError("statements write failed")
        return sum(1 for i in ids if self.world.statements.pop(i, None) is not None)


class FakeFileRepository:
    def __init__(self, world):
        self.world = world
        self.fail_delete = False

    @staticmethod
    def provider_filter(provider):
        return {"storageProvider": provider} if provider else {}

    def _matching(self, query):
        provider = (query or {}).get("storageProvider")
        return [
            self.world.files[k] for k in sorted(self.world.files)
            if provider is None or self.world.files[k].storage_provider == provider
        ]

    def find_all(self, query=None):
        return self._matching(query)

    def find_page(self, query, skip, limit):
        return self._matching(query)[skip:skip + limit]

    def count(self, query=None):
        return len(self._matching(query))

    def paths(self, query=None):
        return {f.path for f in self._matching(query) if f.path}

    def delete_many(self, ids):
        if self.fail_delete:
            raise DatabaseError("files write failed")
        return sum(1 for i in ids if self.world.files.pop(i, None) is not None)


class FakeTransactionRepository:
    def __init__(self, world):
        self.world = world
        self.fail_delete = False

    def find_for_statements(self, statement_ids):
        ids = set(statement_ids)
        return [t for t in self.world.transactions.values() if t.statement_id in ids]

    def count_for_statements(self, statement_ids):
        return len(self.find_for_statements(statement_ids))

    def delete_many(self, statement_ids):
        if self.fail_delete:
            raise DatabaseError("transactions write failed")
        doomed = [t.id for t in self.find_for_statements(statement_ids)]
        for txn_id in doomed:
            del self.world.transactions[txn_id]
        return len(doomed)


class World:
    """Statements, files and transactions plus the storage holding the blobs."""

    def __init__(self):
        self.statements = {}
        self.files = {}
        self.transactions = {}
        self.storage = FakeStorage()
        self.statement_repo = FakeStatementRepository(self)
        self.file_repo = FakeFileRepository(self)
        self.transaction_repo = FakeTransactionRepository(self)

    def add_file(self, file_id, path, stored=True, provider="sftp", size=4):
        self.files[file_id] = FileRecord(
            id=file_id,
            original_name=path.rsplit("/", 1)[-1] if path else None,
            storage_path=path,
            storage_provider=provider,
            mime_type="application/pdf",
            size=size,
        )
        if stored and path:
            self.storage.blobs[path] = b"%PDF"
        return self.files[file_id]

    def add_statement(self, statement_id, file_id=None, path=None, stored=True, transactions=0,
                      provider="sftp", month=3, year=2024):
        if file_id and file_id not in self.files:
            self.add_file(file_id, path, stored=stored, provider=provider)
        self.statements[statement_id] = StatementRecord(
            id=statement_id,
            account_name="Operating",
            bank_name="Chase",
            month=month,
            year=year,
            file_id=file_id,
            status="parsed",
        )
        for n in range(transactions):
            txn_id = f"{statement_id}-t{n}"
            self.transactions[txn_id] = TransactionRecord(
                id=txn_id, statement_id=statement_id, amount=10.0 * (n + 1), direction="debit"
            )
        return self.statements[statement_id]

    def orchestrator(self, **kwargs):
        kwargs.setdefault("roots", ["2024"])
        return Orchestrator(self.statement_repo, self.file_repo, self.transaction_repo, self.storage, **kwargs)


@pytest.fixture
def world():
    return World()


@pytest.fixture
def drifted_world(world):
    """Two valid statements, two with missing blobs, one unreferenced file."""
    world.add_statement("s1", "f1", "statements/2024/3/doc.pdf", transactions=2)
    world.add_statement("s2", "f2", "statements/2024/3/missing.pdf", stored=False, transactions=3)
    world.add_statement("s3", "f3", "statements/2024/4/april.pdf", transactions=1)
    world.add_statement("s4", "f4", "statements/2024/5/gone.pdf", stored=False, transactions=4)
    world.add_file("f5", "statements/2024/6/orphan-upload.pdf")
    return world
