"""
api/analysis.py (ANALYZE and analysis HISTORY endpoints)

Handles the endpoints that run a direct code analysis and that read or append a session's
analysis history. They live together because they share the same result shape.

Endpoints:
  - POST /analyze: Runs the analysis workflow for the given code and aspects and returns the
                   report. Missing code or invalid aspects -> 400.
  - GET /analysis: Returns the most recent analyses of a session (oldest first).
  - POST /analysis: Appends an externally produced AnalysisResult to a session. Invalid
                    input -> 400, persistence failure -> 500.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from monitoring.metrics import track_errors
from shared.errors import InvalidInput, StorageFailure
from shared.models import ALL_ASPECTS
from shared.utils import create_error_response

logger = logging.getLogger(__name__)

router = APIRouter()


class AnalyzeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: Optional[str] = None
    language: Optional[str] = None
    # None means every aspect; an explicit empty list is rejected
    aspects: Optional[List[str]] = None
    session_id: Optional[str] = Field(None, alias="sessionId")
    user_id: Optional[str] = Field(None, alias="userId")


@router.post("/analyze")
@track_errors('http', 'analyze_endpoint')
async def analyze_code(payload: AnalyzeRequest, request: Request):
    """
    Run the analysis workflow and return its report.

    Returns:
        JSONResponse: The AnalysisReport in wire form ('analysisId', 'result', 'totalIssues',
            'criticalIssues', 'recommendations', ...). HTTP 400 with {'error'} on invalid input.
    """
    aspects = ALL_ASPECTS if payload.aspects is None else payload.aspects
    logger.info(
        f"[analyze_code] Analysis requested for session {payload.session_id or 'none'} "
        f"(language={payload.language or 'unspecified'})"
    )

    orchestrator = request.app.state.orchestrator
    try:
        report = await orchestrator.run_analysis(
            code=payload.code,
            aspects=aspects,
            session_id=payload.session_id,
            user_id=payload.user_id,
            language=payload.language,
        )
    except InvalidInput as e:
        logger.warning(f"[analyze_code] Rejected analysis request: {e}")
        return JSONResponse(create_error_response(str(e), "invalid_input"), status_code=400)

    return JSONResponse(report.to_wire())


@router.get("/analysis")
async def get_analysis_history(request: Request, session_id: Optional[str] = None, limit: int = 10):
    """
    Return up to `limit` (clamped to 1..100) most recent analyses of a session.

    Unknown sessions yield an empty list rather than an error.
    """
    store = request.app.state.store
    history = await store.get_history(session_id or "", limit=limit)
    return JSONResponse([analysis.to_wire() for analysis in history])


@router.post("/analysis")
async def save_analysis(
    request: Request,
    session_id: Optional[str] = None,
    result: Optional[Dict[str, Any]] = Body(None),
):
    """
    Append an AnalysisResult to a session's history.

    The overall score is normalized by the store (missing or out of range -> 50).

    Returns:
        JSONResponse: {'success': True}; HTTP 400 on invalid input, HTTP 500 when the session
            snapshot cannot be persisted.
    """
    store = request.app.state.store
    try:
        await store.save_analysis(session_id or "", result)
    except InvalidInput as e:
        logger.warning(f"[save_analysis] Rejected analysis for session {session_id}: {e}")
        return JSONResponse(create_error_response(str(e), "invalid_input"), status_code=400)
    except StorageFailure as e:
        logger.error(f"[save_analysis] Failed to persist analysis for session {session_id}: {e}")
        return JSONResponse(create_error_response(str(e), "storage_failure"), status_code=500)

    return JSONResponse({"success": True})
