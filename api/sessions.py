"""
api/sessions.py

Session lifecycle, statistics and retention endpoints.

Endpoints:
  - GET /session: Returns the session record, creating it on first access.
  - GET /stats: Returns aggregate statistics (zeros for an unknown session).
  - POST /cleanup: Deletes sessions idle for longer than `max_age` milliseconds
                   (default 7 days) and reports how many were removed.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from shared.errors import InvalidInput, StorageFailure
from shared.utils import create_error_response

logger = logging.getLogger(__name__)

router = APIRouter()

DEFAULT_MAX_AGE_MS = 7 * 24 * 60 * 60 * 1000


@router.get("/session")
async def get_session(request: Request, session_id: Optional[str] = None, user_id: Optional[str] = None):
    """
    Return the session for `session_id`, creating it lazily and refreshing its activity time.

    Returns:
        JSONResponse: The Session in wire form; HTTP 400 without a session id, HTTP 500 when the
            session snapshot cannot be persisted.
    """
    store = request.app.state.store
    try:
        session = await store.get_or_create_session(session_id or "", user_id=user_id)
    except InvalidInput as e:
        return JSONResponse(create_error_response(str(e), "invalid_input"), status_code=400)
    except StorageFailure as e:
        logger.error(f"[get_session] Failed to persist session {session_id}: {e}")
        return JSONResponse(create_error_response(str(e), "storage_failure"), status_code=500)

    return JSONResponse(session.to_wire())


@router.get("/stats")
async def get_stats(request: Request, session_id: Optional[str] = None):
    store = request.app.state.store
    stats = await store.get_stats(session_id or "")
    return JSONResponse(stats.to_wire())


@router.post("/cleanup")
async def cleanup_sessions(request: Request, max_age: int = DEFAULT_MAX_AGE_MS):
    """
    Remove sessions whose last activity is older than `max_age` milliseconds.

    Returns:
        JSONResponse: {'removedSessions': n}; HTTP 400 for a negative age, HTTP 500 when the
            snapshot cannot be persisted after removal.
    """
    store = request.app.state.store
    try:
        removed = await store.cleanup(max_age)
    except InvalidInput as e:
        return JSONResponse(create_error_response(str(e), "invalid_input"), status_code=400)
    except StorageFailure as e:
        logger.error(f"[cleanup_sessions] Cleanup could not be persisted: {e}")
        return JSONResponse(create_error_response(str(e), "storage_failure"), status_code=500)

    logger.info(f"[cleanup_sessions] Removed {removed} sessions older than {max_age} ms")
    return JSONResponse({"removedSessions": removed})
