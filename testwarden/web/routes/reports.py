"""Report ingestion API route."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends

from testwarden.models.api import IngestResponse, ReportPayload
from testwarden.storage.repositories.ingest import ResultIngestor
from testwarden.web.dependencies import get_ingestor

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/reports", tags=["reports"])


@router.post("", response_model=IngestResponse)
async def ingest_report(
    body: ReportPayload,
    ingestor: ResultIngestor = Depends(get_ingestor),
) -> IngestResponse:
    # ValidationError -> 400 and PersistenceError -> 500 via app exception handlers
    outcome = await ingestor.ingest(body)
    return IngestResponse(
        run_id=outcome.run_id,
        external_run_id=outcome.external_run_id,
        stored=outcome.stored,
        duplicates=outcome.duplicates,
    )
