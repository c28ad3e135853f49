"""Library scan endpoints."""

import logging

from fastapi import APIRouter, Depends, Query

from tvcurator.api.dependencies import get_database, get_scan_orchestrator
from tvcurator.api.schemas import (
    ScanHistoryEntry,
    ScanHistoryResponse,
    ScanRequest,
    ScanResponse,
)
from tvcurator.application.services.scanner import ScanOptions, ScanOrchestrator
from tvcurator.infrastructure.persistence import Database, ScanHistoryRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scan", tags=["Scan"])


@router.post("", response_model=ScanResponse)
async def start_scan(
    body: ScanRequest | None = None,
    orchestrator: ScanOrchestrator = Depends(get_scan_orchestrator),
) -> ScanResponse:
    """Start a scan task. Returns right away, follow the task for progress."""
    body = body or ScanRequest()
    result = await orchestrator.start_scan(
        ScanOptions(
            scan_type=body.scan_type,
            target_show_id=body.show_id,
            target_folder_name=body.folder_name,
        )
    )
    logger.info(f"Scan {result.scan_id} requested as task {result.task_id} ({result.status})")
    return ScanResponse.from_result(result)


@router.get("/history", response_model=ScanHistoryResponse)
async def scan_history(
    limit: int = Query(20, ge=1, le=100),
    db: Database = Depends(get_database),
) -> ScanHistoryResponse:
    """Latest persisted scans."""
    async with db.session_scope() as session:
        records = await ScanHistoryRepository(session).list_recent(limit)
        scans = [ScanHistoryEntry.model_validate(r) for r in records]
    return ScanHistoryResponse(scans=scans)
