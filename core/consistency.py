import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, Optional, Set

from .cancellation import CancelToken
from .errors import StorageError
from .models import (
    Classification,
    ClassificationStatus,
    FileRecord,
    StatementRecord,
    StorageBlob,
)

logger = logging.getLogger(__name__)

NO_FILE_REFERENCE = "no file reference"
FILE_RECORD_MISSING = "file record missing"
NO_FILE_PATH = "no file path"
FILE_NOT_IN_STORAGE = "file not found in storage"
FILE_UNREFERENCED = "not referenced by any statement"
BLOB_UNREFERENCED = "no matching file record"


class ConsistencyChecker:
    """Classifies metadata records against storage.

    Statements are checked against the index first; an index miss is
    confirmed with ``storage.exists`` because listings can lag uploads.
    """

    def __init__(self, storage, cancel: Optional[CancelToken] = None):
        self.storage = storage
        self.cancel = cancel or CancelToken()
        self.provider = getattr(storage, "name", None)

    def needs_probe(self, record: StatementRecord, index) -> bool:
        file = record.file
        return bool(
            file is not None
            and file.path
            and self._same_provider(file)
            and file.path not in index
        )

    def _same_provider(self, file: FileRecord) -> bool:
        return not file.storage_provider or not self.provider or file.storage_provider == self.provider

    def prefetch_probes(self, records: Iterable[StatementRecord], index, workers: int = 1) -> Dict[str, Classification]:
        """Probe every index miss in a page on a bounded pool."""
        paths = sorted({r.file.path for r in records if self.needs_probe(r, index)})
        if workers <= 1 or len(paths) < 2:
            return {}
        with ThreadPoolExecutor(max_workers=min(workers, len(paths))) as pool:
            return dict(zip(paths, pool.map(self.probe, paths)))

    def classify_statement(self, record: StatementRecord, index, probes: Optional[Dict[str, Classification]] = None) -> Classification:
        if record.file is None:
            if record.file_id:
                return Classification.orphaned(FILE_RECORD_MISSING)
            return Classification.orphaned(NO_FILE_REFERENCE)

        file = record.file
        path = file.path
        if not path:
            return Classification.orphaned(NO_FILE_PATH)

        if not self._same_provider(file):
            return Classification(ClassificationStatus.SKIPPED, f"stored on {file.storage_provider}")

        if path in index:
            return Classification.valid()

        if probes and path in probes:
            return probes[path]
        return self.probe(path)

    def probe(self, path: str) -> Classification:
        self.cancel.check(f"probing {path}")
        try:
            if self.storage.exists(path):
                logger.debug(f"{path} missing from index but present in storage")
                return Classification.valid("confirmed by probe")
        except StorageError as e:
            logger.warning(f"Existence probe for {path} failed: {e}")
            return Classification(ClassificationStatus.UNVERIFIED, f"probe failed: {e}")
        return Classification.orphaned(FILE_NOT_IN_STORAGE)

    @staticmethod
    def classify_file(record: FileRecord, referenced_ids: Set[str]) -> Classification:
        if record.id in referenced_ids:
            return Classification.valid()
        return Classification.orphaned(FILE_UNREFERENCED)

    @staticmethod
    def classify_blob(blob: StorageBlob, known_paths: Set[str]) -> Classification:
        if blob.path in known_paths:
            return Classification.valid()
        return Classification.orphaned(BLOB_UNREFERENCED)
