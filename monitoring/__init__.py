"""
Monitoring package initializer.

This package exposes Prometheus metrics and helper decorators for tracking analysis,
model gateway and session store behaviour.
"""

from .metrics import (
    REQUEST_COUNT,
    REQUEST_LATENCY,
    ERROR_COUNT,
    ANALYSIS_DURATION,
    ASPECT_FAILURES,
    CRITICAL_FINDINGS,
    LLM_REQUEST_TIME,
    STORAGE_FAILURES,
    SESSIONS_REMOVED,
    SNAPSHOT_WRITE_TIME,
    track_latency,
    track_errors,
)

__all__ = [
    'REQUEST_COUNT',
    'REQUEST_LATENCY',
    'ERROR_COUNT',
    'ANALYSIS_DURATION',
    'ASPECT_FAILURES',
    'CRITICAL_FINDINGS',
    'LLM_REQUEST_TIME',
    'STORAGE_FAILURES',
    'SESSIONS_REMOVED',
    'SNAPSHOT_WRITE_TIME',
    'track_latency',
    'track_errors',
]
