"""
shared/utils.py

Shared utility functions used across multiple modules.

This module contains small helpers that the dispatcher, session store and API layer all need:
identifier generation, epoch-millisecond clocks, half-up rounding (the behaviour callers expect
from averaged scores, unlike Python's banker's rounding), lenient JSON parsing of model output,
and the standardized error payloads returned by the HTTP layer.
"""

import json
import math
import re
import time
import uuid
from typing import Any, Dict

# Matches a ```json ... ``` (or bare ```) fence wrapped around a model's JSON answer
_JSON_FENCE = re.compile(r"^```[\w-]*\s*\n?(.*?)\n?```\s*$", re.DOTALL)


def generate_analysis_id() -> str:
    """
    Generate a unique analysis ID using UUID4.

    Returns:
        str: A UUID4 string (e.g., "a1b2c3d4-e5f6-7890-abcd-ef1234567890")
    """
    return str(uuid.uuid4())


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def round_half_up(value: float) -> int:
    """
    Round a non-negative number to the nearest integer, with .5 rounding up.

    Args:
        value (float): The value to round.

    Returns:
        int: The rounded value (e.g. 2.5 -> 3, 82.5 -> 83).
    """
    return int(math.floor(value + 0.5))


def parse_model_json(text: str) -> Dict[str, Any]:
    """
    Parse a JSON object from model output, tolerating a surrounding markdown fence.

    Models asked for strict JSON still wrap their answer in ```json fences now and then, or add
    a sentence before the object. We strip the fence, and failing a direct parse, fall back to the
    outermost {...} span.

    Args:
        text (str): Raw completion text.

    Returns:
        Dict[str, Any]: The parsed JSON object.

    Raises:
        ValueError: If no JSON object can be recovered from the text.
    """
    candidate = text.strip()
    fenced = _JSON_FENCE.match(candidate)
    if fenced:
        candidate = fenced.group(1).strip()

    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        start, end = candidate.find("{"), candidate.rfind("}")
        if start == -1 or end <= start:
            raise ValueError("Model response did not contain a JSON object")
        try:
            parsed = json.loads(candidate[start:end + 1])
        except json.JSONDecodeError as e:
            raise ValueError(f"Model response was not valid JSON: {e}") from e

    if not isinstance(parsed, dict):
        raise ValueError("Model response JSON was not an object")
    return parsed


def create_error_response(message: str, error_type: str = "error") -> Dict[str, Any]:
    """
    Create the standardized error payload returned by the HTTP layer.

    Args:
        message (str): Error message to include in response
        error_type (str): Type of error (default: "error")

    Returns:
        Dict[str, Any]: Error payload with 'error' and 'type' keys
    """
    return {
        "error": message,
        "type": error_type,
    }


def truncate_message_for_logging(message: str, max_length: int = 100) -> str:
    """
    Truncate long messages for logging purposes.

    Args:
        message (str): Message to truncate
        max_length (int): Maximum length before truncation (default: 100)

    Returns:
        str: Truncated message with ellipsis if needed
    """
    if len(message) <= max_length:
        return message
    return message[:max_length] + "..."
