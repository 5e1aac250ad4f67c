"""
conftest.py – central pytest configuration and test bootstrap ("config test").

Pytest imports this module before it collects any test files, which lets us prepare the environment
so that subsequent imports succeed consistently:
  1) Extend `sys.path` with the project root directory so absolute-style imports like `from core ...`
     and `from shared ...` resolve without performing an editable install.
  2) Define safe default environment variables read at import time by the configuration layer:
     a dummy `NEBIUS_API_KEY` for the provider, an empty `LOG_FILE_PATH` so tests never write log
     files, and in-memory session persistence.
  3) Provide shared fakes: `ScriptedGateway` stands in for `ModelGateway` and answers each aspect's
     call from a script, so no test ever reaches a real model endpoint.
"""

import json
import os
import sys
from pathlib import Path

import pytest

# Ensure project root is on sys.path for direct imports like `core`, `shared`, etc.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Provide required environment defaults for tests
os.environ.setdefault("NEBIUS_API_KEY", "test-key")
os.environ.setdefault("LOG_FILE_PATH", "")
os.environ.setdefault("SESSION_PERSISTENCE", "memory")

from core.dispatcher import ASPECT_FOCUS  # noqa: E402
from services.persistence import InMemorySnapshotBackend  # noqa: E402
from services.session_store import SessionStore  # noqa: E402
from shared.models import Aspect  # noqa: E402


def model_payload(score=80, summary="Looks fine.", findings=None) -> str:
    """Serialize an aspect answer the way the model is asked to produce it."""
    return json.dumps({"score": score, "summary": summary, "findings": findings or []})


class ScriptedGateway:
    """
    Fake model gateway.

    `responses` maps an aspect name ("security", ...) or "chat" to either a completion string or an
    exception instance to raise. Aspect calls are recognised by the aspect focus text embedded in
    the system prompt; anything else is treated as a chat call.
    """

    def __init__(self, responses=None, name="primary", available=True):
        self.responses = responses or {}
        self.name = name
        self.available = available
        self.calls = []

    def _key_for(self, system_prompt: str) -> str:
        for aspect in Aspect:
            if ASPECT_FOCUS[aspect] in system_prompt:
                return aspect.value
        return "chat"

    async def complete(self, system_prompt, user_prompt, max_tokens=1024, temperature=0.7, model=None,
                       history=None):
        key = self._key_for(system_prompt)
        self.calls.append({
            "key": key,
            "system_prompt": system_prompt,
            "user_prompt": user_prompt,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "model": model,
            "history": list(history or []),
        })
        response = self.responses.get(key, model_payload())
        if isinstance(response, BaseException):
            raise response
        return response


class FailingBackend(InMemorySnapshotBackend):
    """Snapshot backend whose writes (and optionally reads) fail."""

    def __init__(self, fail_load=False):
        super().__init__()
        self.fail_load = fail_load

    def load(self):
        if self.fail_load:
            raise OSError("snapshot unreadable")
        return super().load()

    def save(self, data):
        raise OSError("disk full")


class ManualClock:
    """Injectable epoch-millisecond clock that only moves when told to."""

    def __init__(self, start=1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def memory_store(clock):
    return SessionStore(InMemorySnapshotBackend(), clock=clock)


@pytest.fixture
def failing_store(clock):
    return SessionStore(FailingBackend(), clock=clock)
