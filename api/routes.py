from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from config.settings import settings
from core.errors import DatabaseError, StorageError
from core.models import CleanupScope
from core.reconciliation import Orchestrator
from integrations.runtime import open_orchestrator


router = APIRouter(prefix="/reconciliation", tags=["reconciliation"])


class RunRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    batch_size: int = Field(50, alias="batchSize", gt=0, le=1000)
    dry_run: bool = Field(True, alias="dryRun")
    cleanup_scope: str = Field("all", alias="cleanupScope")
    max_records: int = Field(1000, alias="maxRecords", gt=0)
    include_blobs: bool = Field(False, alias="includeBlobs")
    timeout_seconds: Optional[float] = Field(None, alias="timeoutSeconds", gt=0)


def get_orchestrator():
    with open_orchestrator(settings) as (orchestrator, _runs):
        yield orchestrator


# Handlers are sync on purpose: the engine does blocking I/O and FastAPI
# runs sync handlers in its threadpool.
@router.get("/status")
def reconciliation_status(orchestrator: Orchestrator = Depends(get_orchestrator)):
    try:
        return orchestrator.status(settings.STATUS_SAMPLE_SIZE)
    except (DatabaseError, StorageError) as e:
        raise HTTPException(status_code=500, detail=f"Failed to get cleanup status: {e}")


@router.post("/run")
def run_reconciliation(request: RunRequest, orchestrator: Orchestrator = Depends(get_orchestrator)):
    try:
        scope = CleanupScope.parse(request.cleanup_scope)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown cleanupScope: {request.cleanup_scope}")

    result = orchestrator.run(
        batch_size=request.batch_size,
        dry_run=request.dry_run,
        cleanup_scope=scope,
        max_records=request.max_records,
        include_blobs=request.include_blobs,
        timeout=request.timeout_seconds or settings.TIMEOUT_SECONDS,
    )
    if not result.success:
        return JSONResponse(status_code=500, content=result.to_dict())
    return result.to_dict()
