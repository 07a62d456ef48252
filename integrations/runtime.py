"""Wires settings, MongoDB and storage into an Orchestrator."""

from contextlib import contextmanager

from core.reconciliation import Orchestrator
from integrations.mongo_handler import (
    FileRepository,
    ReconciliationRunRepository,
    StatementRepository,
    TransactionRepository,
    get_mongo_connection,
)
from integrations.storage import get_storage_provider


def build_orchestrator(db, storage, settings, progress_callback=None) -> Orchestrator:
    return Orchestrator(
        statements=StatementRepository(db, settings.STATEMENTS_COLLECTION, settings.FILES_COLLECTION),
        files=FileRepository(db, settings.FILES_COLLECTION),
        transactions=TransactionRepository(db, settings.TRANSACTIONS_COLLECTION),
        storage=storage,
        roots=settings.STORAGE_YEARS,
        prefix=settings.STORAGE_PREFIX,
        page_size=settings.STORAGE_PAGE_SIZE,
        workers=settings.WORKERS,
        progress_callback=progress_callback,
    )


@contextmanager
def open_orchestrator(settings=None, progress_callback=None):
    """Yield ``(orchestrator, run_repository)`` with connections closed afterwards."""
    if settings is None:
        from config.settings import settings

    with get_mongo_connection(settings.MONGO_URI) as client:
        db = client[settings.DB_NAME]
        with get_storage_provider(settings=settings) as storage:
            yield (
                build_orchestrator(db, storage, settings, progress_callback),
                ReconciliationRunRepository(db, settings.RECONCILIATION_COLLECTION),
            )
