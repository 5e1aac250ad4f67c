"""
Core metrics and monitoring decorators for the Code Quality Assistant.

This module defines Prometheus metrics and decorators for tracking:
- Request latency and counts
- Error rates
- Analysis duration and per-aspect failures
- Model gateway latency
- Session store persistence failures and retention cleanup
"""

import time
import asyncio
import functools
import logging
from typing import Optional, Callable
from prometheus_client import Counter, Histogram

# Configure logger
logger = logging.getLogger(__name__)

# Request metrics
REQUEST_COUNT = Counter(
    'http_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status']
)

REQUEST_LATENCY = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, float("inf")]  # Define buckets in seconds
)

# Error metrics
ERROR_COUNT = Counter(
    'error_total',
    'Total number of errors',
    ['type', 'location']  # type: e.g., 'http', 'analysis', 'storage'; location: specific component
)

# Analysis metrics
ANALYSIS_DURATION = Histogram(
    'analysis_duration_seconds',
    'Time spent running a multi-aspect analysis',
    ['aspect_count'],
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, float("inf")]
)

ASPECT_FAILURES = Counter(
    'aspect_failures_total',
    'Aspect model calls replaced by a sentinel finding',
    ['aspect']
)

CRITICAL_FINDINGS = Counter(
    'critical_findings_total',
    'Findings reported with high or critical severity'
)

# External API metrics
LLM_REQUEST_TIME = Histogram(
    'llm_request_duration_seconds',
    'Time spent waiting for LLM API',
    ['model'],
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, float("inf")]
)

# Session store metrics
STORAGE_FAILURES = Counter(
    'storage_failures_total',
    'Session snapshot persistence failures',
    ['operation']
)

SESSIONS_REMOVED = Counter(
    'sessions_removed_total',
    'Sessions deleted by retention cleanup'
)

SNAPSHOT_WRITE_TIME = Histogram(
    'session_snapshot_write_seconds',
    'Time spent writing the session snapshot',
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, float("inf")]
)

def _observe(metric: Histogram, labels: Optional[Callable], args, duration: float, func_name: str) -> None:
    if labels and args:
        # For instance methods, first arg is 'self'
        label_dict = labels(args[0])
        metric.labels(**label_dict).observe(duration)
    else:
        metric.observe(duration)

    logger.debug(
        f"Function {func_name} execution time: {duration:.2f} seconds",
        extra={'extra_fields': {'duration': duration, 'function': func_name}}
    )

def track_latency(metric: Histogram, labels: Optional[Callable] = None) -> Callable:
    """
    A decorator factory that tracks the execution time of a function using a Prometheus Histogram.

    Works for both plain functions and coroutine functions; for coroutines the time covers the
    awaited execution, not just coroutine creation.

    Args:
        metric (Histogram): The Prometheus Histogram to record the timing in
        labels (Callable, optional): Function that returns metric labels dictionary

    Returns:
        Callable: The decorated function
    """
    def decorator(func: Callable) -> Callable:
        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                start_time = time.time()
                try:
                    return await func(*args, **kwargs)
                finally:
                    _observe(metric, labels, args, time.time() - start_time, func.__name__)
            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                return func(*args, **kwargs)
            finally:
                _observe(metric, labels, args, time.time() - start_time, func.__name__)
        return wrapper
    return decorator

def _record_error(error_type: str, location: str, e: Exception) -> None:
    ERROR_COUNT.labels(
        type=error_type,
        location=location
    ).inc()

    logger.error(
        f"Error in {location} ({error_type}): {str(e)}",
        extra={'extra_fields': {
            'error_type': error_type,
            'location': location,
            'error': str(e)
        }},
        exc_info=True
    )

def track_errors(error_type: str, location: str) -> Callable:
    """
    A decorator factory that tracks errors occurring in a function.

    Args:
        error_type (str): Type of error (e.g., 'http', 'analysis', 'storage')
        location (str): Where the error occurred

    Returns:
        Callable: The decorated function

    Example:
        @track_errors('storage', 'session_store')
        async def save_analysis(self, session_id, result):
            ...
    """
    def decorator(func: Callable) -> Callable:
        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    _record_error(error_type, location, e)
                    raise  # Re-raise the exception after tracking
            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                _record_error(error_type, location, e)
                raise  # Re-raise the exception after tracking
        return wrapper
    return decorator
