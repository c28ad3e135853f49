"""FFprobe analysis endpoints."""

from fastapi import APIRouter, Depends

from tvcurator.api.dependencies import get_media_analysis_service
from tvcurator.api.schemas import BulkAnalyzeRequest, StartedTaskResponse
from tvcurator.application.services.media_analysis_service import MediaAnalysisService

router = APIRouter(tags=["Media Analysis"])


@router.post("/files/{file_id}/analyze", response_model=StartedTaskResponse)
async def analyze_file(
    file_id: int,
    service: MediaAnalysisService = Depends(get_media_analysis_service),
) -> StartedTaskResponse:
    """Analyze one episode file as a task."""
    return StartedTaskResponse.from_result(await service.start_file_analysis(file_id))


@router.post("/ffprobe/bulk-analyze", response_model=StartedTaskResponse)
async def bulk_analyze(
    body: BulkAnalyzeRequest,
    service: MediaAnalysisService = Depends(get_media_analysis_service),
) -> StartedTaskResponse:
    """Analyze the files of a library, show or season."""
    result = await service.start_bulk_analysis(
        body.scope,
        show_id=body.show_id,
        season_id=body.season_id,
        reanalyze=body.reanalyze,
    )
    return StartedTaskResponse.from_result(result)
