"""Reconciliation of statement metadata in MongoDB against blob storage."""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from .batch_scanner import scan
from .cancellation import CancelToken
from .cascade import CascadingDeleter
from .consistency import FILE_RECORD_MISSING, ConsistencyChecker
from .errors import DatabaseError, ListingError, RunCancelled, StorageError
from .models import ClassificationStatus, CleanupScope, RunState
from .report import ReconciliationReport
from .storage_index import MONTHS, build_storage_index

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    success: bool
    state: RunState
    report: Optional[ReconciliationReport] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"success": self.success, "state": self.state.value}
        if self.report is not None:
            data.update(self.report.to_dict())
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class _DeletionPlan:
    statement_ids: List[str] = field(default_factory=list)
    statement_file_ids: Set[str] = field(default_factory=set)
    file_ids: Set[str] = field(default_factory=set)
    file_paths: List[str] = field(default_factory=list)
    blob_paths: List[str] = field(default_factory=list)


class Orchestrator:
    """Runs one reconciliation pass: index, scan, then optionally delete.

    Concurrent runs against the same database are not coordinated here;
    callers that may overlap must hold their own lock per cleanup scope.
    """

    def __init__(
        self,
        statements,
        files,
        transactions,
        storage,
        roots: Iterable[str] = ("2023", "2024", "2025"),
        prefix: str = "statements",
        partitions: Iterable[str] = MONTHS,
        page_size: int = 100,
        workers: int = 1,
        progress_callback: Optional[Callable[[Dict], None]] = None,
    ):
        self.statements = statements
        self.files = files
        self.transactions = transactions
        self.storage = storage
        self.roots = list(roots)
        self.prefix = prefix
        self.partitions = list(partitions)
        self.page_size = page_size
        self.workers = max(1, workers)
        self.progress_callback = progress_callback
        self.state = RunState.IDLE

    @property
    def provider(self) -> Optional[str]:
        return getattr(self.storage, "name", None)

    def _set_state(self, state: RunState, **details) -> None:
        self.state = state
        logger.info(f"Reconciliation state: {state.value}")
        self._notify(state.value, **details)

    def _notify(self, status: str, **details) -> None:
        if self.progress_callback:
            self.progress_callback({"status": status, **details})

    def run(
        self,
        batch_size: int = 50,
        dry_run: bool = True,
        cleanup_scope="all",
        max_records: Optional[int] = 1000,
        include_blobs: bool = False,
        timeout: Optional[float] = None,
        cancel: Optional[CancelToken] = None,
    ) -> RunResult:
        scope = CleanupScope.parse(cleanup_scope)
        cancel = cancel or CancelToken(timeout)
        report = ReconciliationReport(dry_run=dry_run, cleanup_scope=scope.value, storage_provider=self.provider)
        checker = ConsistencyChecker(self.storage, cancel)
        plan = _DeletionPlan()

        logger.info(
            f"Starting reconciliation run {report.run_id} "
            f"(dry_run={dry_run}, scope={scope.value}, batch_size={batch_size}, max_records={max_records})"
        )

        try:
            self._set_state(RunState.INDEXING)
            index = build_storage_index(
                self.storage,
                self.roots,
                prefix=self.prefix,
                partitions=self.partitions,
                page_size=self.page_size,
                cancel=cancel,
                workers=self.workers,
            )
            report.blobs_indexed = len(index)
            report.skipped_partitions = list(index.skipped_partitions)

            self._set_state(RunState.SCANNING, blobs_indexed=len(index))
            if scope.includes_statements:
                self._scan_statements(checker, index, batch_size, max_records, report, plan, cancel)
            if scope.includes_files:
                self._scan_files(batch_size, max_records, report, plan, cancel)
                if include_blobs:
                    self._scan_blobs(index, report, plan, cancel)

            if plan.statement_file_ids:
                # A file shared with a surviving statement must stay
                still_referenced = self.statements.referenced_file_ids(exclude_ids=plan.statement_ids)
                plan.statement_file_ids -= still_referenced
        except (DatabaseError, StorageError, RunCancelled) as e:
            self.state = RunState.ERROR
            logger.error(f"Reconciliation run {report.run_id} failed: {e}")
            self._notify(RunState.ERROR.value, error=str(e))
            return RunResult(success=False, state=RunState.ERROR, error=str(e))

        deleter = CascadingDeleter(self.statements, self.files, self.transactions, self.storage, cancel)
        blob_paths = plan.file_paths + plan.blob_paths
        report.would_delete = deleter.delete(
            plan.statement_ids, plan.file_ids, dry_run=True, statement_file_ids=plan.statement_file_ids
        )
        report.would_delete.blobs = deleter.delete_orphaned_blobs(blob_paths, dry_run=True)

        if dry_run:
            report.errors.extend(str(e) for e in deleter.errors)
            self._set_state(RunState.DRY_RUN_COMPLETE, orphans=len(report.orphans))
            return RunResult(success=True, state=self.state, report=report.finalize())

        self._set_state(RunState.DELETING, orphans=len(report.orphans))
        report.deleted = deleter.delete(
            plan.statement_ids, plan.file_ids, dry_run=False, statement_file_ids=plan.statement_file_ids
        )
        if any(e.kind == "files" for e in deleter.errors):
            # Records still point at these blobs; leave them for the next run
            blob_paths = plan.blob_paths
        report.deleted.blobs = deleter.delete_orphaned_blobs(blob_paths, dry_run=False)
        report.errors.extend(str(e) for e in deleter.errors)

        self._set_state(RunState.COMPLETE, deleted=report.deleted.to_dict())
        return RunResult(success=True, state=self.state, report=report.finalize())

    def _scan_statements(self, checker, index, batch_size, max_records, report, plan, cancel):
        report.total = self.statements.count()
        probes = {}

        def prefetch(page):
            probes.clear()
            probes.update(checker.prefetch_probes(page, index, workers=self.workers))

        def visit(statement):
            result = checker.classify_statement(statement, index, probes)
            if result.status is ClassificationStatus.VALID:
                report.valid += 1
                return
            if result.status is ClassificationStatus.SKIPPED:
                report.skipped += 1
                return
            if result.status is ClassificationStatus.UNVERIFIED:
                report.unverified += 1
                report.errors.append(f"Statement {statement.id}: {result.reason}")
                return

            file = statement.file
            plan.statement_ids.append(statement.id)
            if statement.file_id and result.reason != FILE_RECORD_MISSING:
                plan.statement_file_ids.add(statement.file_id)
            report.add_orphan(
                "statement",
                statement.id,
                result.reason,
                account_name=statement.account_name,
                bank_name=statement.bank_name,
                month=statement.month,
                year=statement.year,
                file_name=file.display_name if file else None,
                file_path=file.path if file else None,
            )

        def progress(processed):
            self._notify(RunState.SCANNING.value, phase="statements", processed=processed, total=report.total)

        report.processed = scan(
            lambda skip, limit: self.statements.find_page(skip, limit, with_file_join=True),
            batch_size,
            max_records,
            visit,
            cancel=cancel,
            on_page=prefetch,
            on_batch=progress,
        )
        logger.info(
            f"Checked {report.processed}/{report.total} statements: "
            f"{report.valid} valid, {report.count('statement')} orphaned, {report.unverified} unverified"
        )

    def _scan_files(self, batch_size, max_records, report, plan, cancel):
        referenced = self.statements.referenced_file_ids()
        query = self.files.provider_filter(self.provider)

        def visit(file):
            result = ConsistencyChecker.classify_file(file, referenced)
            if not result.is_orphaned:
                return
            plan.file_ids.add(file.id)
            if file.path:
                plan.file_paths.append(file.path)
            report.add_orphan("file", file.id, result.reason, file_name=file.display_name, path=file.path, size=file.size)

        def progress(processed):
            self._notify(RunState.SCANNING.value, phase="files", processed=processed)

        report.files_scanned = scan(
            lambda skip, limit: self.files.find_page(query, skip, limit),
            batch_size,
            max_records,
            visit,
            cancel=cancel,
            on_batch=progress,
        )
        logger.info(f"Checked {report.files_scanned} file records: {report.count('file')} without a statement")

    def _scan_blobs(self, index, report, plan, cancel):
        known = self.files.paths()
        try:
            blobs = list(self.storage.list_tree(self.prefix))
        except ListingError as e:
            report.errors.append(f"Full storage listing failed, using the partition index instead: {e}")
            blobs = list(index.blobs.values())

        for position, blob in enumerate(blobs):
            if position % 100 == 0:
                cancel.check("blob scan")
            result = ConsistencyChecker.classify_blob(blob, known)
            if not result.is_orphaned:
                continue
            plan.blob_paths.append(blob.path)
            report.orphaned_blob_bytes += blob.size or 0
            report.add_orphan(
                "blob",
                blob.path,
                result.reason,
                size=blob.size,
                last_modified=blob.last_modified.isoformat() if blob.last_modified else None,
            )
        logger.info(f"Checked {len(blobs)} stored objects: {report.count('blob')} without a file record")

    def status(self, sample_size: int = 10) -> Dict[str, Any]:
        """Totals plus an orphan estimate from a small probe-only sample.

        Without a configured storage backend nothing is probed and
        ``can_perform_cleanup`` is False.
        """
        total_statements = self.statements.count()
        total_files = self.files.count(self.files.provider_filter(self.provider))
        can_cleanup = self.storage is not None and self.storage.is_configured()
        sample = self.statements.find_sample(sample_size) if can_cleanup else []

        checker = ConsistencyChecker(self.storage)
        no_index = frozenset()
        orphaned = sum(1 for s in sample if checker.classify_statement(s, no_index).is_orphaned)
        estimated = round(orphaned / len(sample) * total_statements) if sample else 0

        if not can_cleanup:
            message = f"Storage provider {self.provider} is not configured. Cleanup cannot run."
        elif estimated:
            message = f"Estimated {estimated} orphaned records. Run cleanup to remove them."
        else:
            message = "No orphaned records detected in sample. System appears to be in sync."

        return {
            "success": True,
            "can_perform_cleanup": can_cleanup,
            "storage_provider": self.provider,
            "stats": {
                "total_statements": total_statements,
                "total_files": total_files,
                "sample_size": len(sample),
                "orphaned_in_sample": orphaned,
                "estimated_orphaned_records": estimated,
            },
            "message": message,
        }
