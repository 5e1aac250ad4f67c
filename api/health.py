"""
Health endpoint for the Code Quality Assistant.

Exposes a liveness check at "/health" that never touches the model or the session store,
so it stays reliable when either is degraded. Besides the status and a UTC timestamp it
reports the service version and which optional features are active (secondary chat gateway,
primary model binding, snapshot persistence mode).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Request

from version import __version__

router = APIRouter()

SERVICE_NAME = "code-quality-assistant"


@router.get("/health")
def health(request: Request) -> Dict[str, Any]:
    """
    Return a simple health status payload.

    Returns:
        Dict[str, Any]: 'status', 'service', 'version', an ISO-8601 UTC 'timestamp' and a
        'features' map.
    """
    state = request.app.state
    primary = getattr(state, "primary_gateway", None)
    store = getattr(state, "store", None)
    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "features": {
            "analysis": True,
            "chat": True,
            "modelConfigured": bool(primary is not None and primary.available),
            "aiGateway": getattr(state, "secondary_gateway", None) is not None,
            "persistence": type(store.backend).__name__ if store is not None else None,
        },
    }
