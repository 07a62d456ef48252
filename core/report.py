import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .models import DeleteCounts, OrphanRecord

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationReport:
    dry_run: bool = True
    cleanup_scope: str = "all"
    storage_provider: Optional[str] = None
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    processed: int = 0
    total: int = 0
    valid: int = 0
    files_scanned: int = 0
    blobs_indexed: int = 0
    skipped: int = 0
    unverified: int = 0
    orphaned_blob_bytes: int = 0

    orphans: List[OrphanRecord] = field(default_factory=list)
    deleted: DeleteCounts = field(default_factory=DeleteCounts)
    would_delete: DeleteCounts = field(default_factory=DeleteCounts)
    errors: List[str] = field(default_factory=list)
    skipped_partitions: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    message: str = ""

    def add_orphan(self, type_: str, id_: str, reason: str, **details) -> None:
        self.orphans.append(OrphanRecord(type=type_, id=id_, reason=reason, details=details))

    def count(self, type_: str) -> int:
        return sum(1 for o in self.orphans if o.type == type_)

    def finalize(self) -> "ReconciliationReport":
        self.finished_at = datetime.now(timezone.utc)
        self.recommendations = generate_recommendations(self)
        if self.dry_run:
            self.message = f"Dry run completed. Would delete {len(self.orphans)} orphaned records."
        else:
            self.message = (
                f"Cleanup completed. Deleted {self.deleted.statements} statements, "
                f"{self.deleted.files} files, and {self.deleted.transactions} transactions."
            )
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "dry_run": self.dry_run,
            "cleanup_scope": self.cleanup_scope,
            "storage_provider": self.storage_provider,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "processed": self.processed,
            "total": self.total,
            "valid": self.valid,
            "files_scanned": self.files_scanned,
            "blobs_indexed": self.blobs_indexed,
            "skipped": self.skipped,
            "unverified": self.unverified,
            "orphaned_blob_bytes": self.orphaned_blob_bytes,
            "orphans": [o.to_dict() for o in self.orphans],
            "deleted": self.deleted.to_dict(),
            "would_delete": self.would_delete.to_dict(),
            "errors": list(self.errors),
            "skipped_partitions": list(self.skipped_partitions),
            "recommendations": list(self.recommendations),
            "message": self.message,
        }


def generate_recommendations(report: ReconciliationReport) -> List[str]:
    recommendations = []

    if report.orphans:
        recommendations.append(f"Found {len(report.orphans)} orphaned records that need cleanup.")

        statement_count = report.count("statement")
        file_count = report.count("file")
        blob_count = report.count("blob")

        if statement_count:
            recommendations.append(f"{statement_count} statements have missing or invalid file references.")
        if file_count:
            recommendations.append(f"{file_count} file records have no associated statements.")
        if blob_count:
            recommendations.append(
                f"{blob_count} stored objects ({report.orphaned_blob_bytes / 1024 / 1024:.2f} MB) "
                f"have no matching file record."
            )
        if report.dry_run:
            recommendations.append("Re-run with execute to remove them.")
    else:
        recommendations.append("All records are properly synchronized. No cleanup needed.")

    if report.total > report.processed:
        recommendations.append(
            f"Only {report.processed} of {report.total} statements were checked; "
            f"raise max_records or run again to cover the rest."
        )

    if report.unverified:
        recommendations.append(
            f"{report.unverified} statements could not be verified against storage and were left untouched."
        )

    if report.errors:
        recommendations.append(f"Encountered {len(report.errors)} errors during cleanup. Review the error log.")

    return recommendations


def log_summary(report: ReconciliationReport, max_orphans: int = 10) -> None:
    counts = report.deleted if not report.dry_run else report.would_delete
    label = "Deleted" if not report.dry_run else "Would delete"

    logger.info("=" * 70)
    logger.info("RECONCILIATION SUMMARY" + (" (DRY RUN)" if report.dry_run else ""))
    logger.info("=" * 70)
    logger.info(f"Run ID:                      {report.run_id}")
    logger.info(f"Storage provider:            {report.storage_provider}")
    logger.info(f"Blobs indexed:               {report.blobs_indexed}")
    logger.info(f"Statements processed:        {report.processed}/{report.total}")
    logger.info(f"  - Valid:                   {report.valid}")
    logger.info(f"  - Orphaned:                {report.count('statement')}")
    logger.info(f"  - Unverified:              {report.unverified}")
    logger.info(f"  - Skipped:                 {report.skipped}")
    logger.info(f"File records scanned:        {report.files_scanned}")
    logger.info(f"  - Orphaned:                {report.count('file')}")
    logger.info(f"Orphaned blobs:              {report.count('blob')}")
    logger.info(f"{label + ':':<29}{counts.statements} statements, {counts.files} files, "
                f"{counts.transactions} transactions, {counts.blobs} blobs")
    logger.info(f"Errors:                      {len(report.errors)}")
    logger.info("=" * 70)

    for orphan in report.orphans[:max_orphans]:
        logger.info(f"  - {orphan.type} {orphan.id}: {orphan.reason}")
    if len(report.orphans) > max_orphans:
        logger.info(f"  ... and {len(report.orphans) - max_orphans} more")
    for error in report.errors:
        logger.warning(f"  ! {error}")
    for line in report.recommendations:
        logger.info(f"  * {line}")
