import logging
from typing import Iterable, List, Optional

from .cancellation import CancelToken
from .errors import DatabaseError, PartialDeleteError, RunCancelled, StorageError
from .models import DeleteCounts

logger = logging.getLogger(__name__)


class CascadingDeleter:
    """Removes orphaned records in dependency order.

    Transactions go before their statements, and statements before the
    file records only they referenced. A failed step leaves everything that
    depends on it in place so the run can simply be repeated. Failures are
    collected in ``errors`` instead of aborting.
    """

    def __init__(self, statements, files, transactions, storage=None, cancel: Optional[CancelToken] = None):
        self.statements = statements
        self.files = files
        self.transactions = transactions
        self.storage = storage
        self.cancel = cancel or CancelToken()
        self.errors: List[PartialDeleteError] = []

    def _fail(self, kind, item, cause):
        error = PartialDeleteError(kind, item, cause)
        logger.error(str(error))
        self.errors.append(error)

    def delete(
        self,
        orphaned_statement_ids: Iterable[str],
        orphaned_file_ids: Iterable[str],
        dry_run: bool = True,
        statement_file_ids: Iterable[str] = (),
    ) -> DeleteCounts:
        """Delete orphaned statements with their transactions, then file records.

        ``statement_file_ids`` are file records referenced only by the
        orphaned statements; they are removed only once those statements are
        gone. ``orphaned_file_ids`` are unreferenced file records.
        """
        statement_ids = list(dict.fromkeys(orphaned_statement_ids))
        dependent_files = set(statement_file_ids)
        file_ids = set(orphaned_file_ids)
        counts = DeleteCounts()

        if dry_run:
            counts.statements = len(statement_ids)
            counts.files = len(file_ids | dependent_files)
            try:
                counts.transactions = self.transactions.count_for_statements(statement_ids)
            except DatabaseError as e:
                self._fail("transactions", f"count for {len(statement_ids)} statements", e)
            return counts

        if statement_ids:
            try:
                counts.transactions = self.transactions.delete_many(statement_ids)
                logger.info(f"Deleted {counts.transactions} transactions of {len(statement_ids)} orphaned statements")
            except DatabaseError as e:
                # Statements stay so their transactions are never left dangling
                self._fail("transactions", f"of {len(statement_ids)} statements", e)
                dependent_files = set()
            else:
                try:
                    counts.statements = self.statements.delete_many(statement_ids)
                    logger.info(f"Deleted {counts.statements} orphaned statements")
                except DatabaseError as e:
                    self._fail("statements", f"{len(statement_ids)} records", e)
                    dependent_files = set()

        file_ids |= dependent_files
        if file_ids:
            try:
                counts.files = self.files.delete_many(sorted(file_ids))
                logger.info(f"Deleted {counts.files} orphaned file records")
            except DatabaseError as e:
                self._fail("files", f"{len(file_ids)} records", e)

        return counts

    def delete_orphaned_blobs(self, paths: Iterable[str], dry_run: bool = True) -> int:
        paths = list(dict.fromkeys(p for p in paths if p))
        if dry_run or not paths:
            return len(paths)

        deleted = 0
        for position, path in enumerate(paths):
            try:
                self.cancel.check("blob deletion")
            except RunCancelled as e:
                self._fail("blobs", f"{len(paths) - position} remaining", e)
                break
            try:
                self.storage.delete(path)
                deleted += 1
            except StorageError as e:
                self._fail("blob", path, e)

        logger.info(f"Deleted {deleted}/{len(paths)} orphaned blobs")
        return deleted
