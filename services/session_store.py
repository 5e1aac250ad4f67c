"""
Session store: per-identity analysis history, derived statistics and retention.

The store exclusively owns the in-memory id -> Session map and is the only writer of the durable
snapshot. Callers never mutate sessions directly: they submit an AnalysisResult and read back
copies of sessions, history slices and stats.

Concurrency model:
- Every public operation is a coroutine serialized by one asyncio.Lock per store instance, so at
  most one mutation runs at a time and reads never observe a half-applied save.
- The snapshot backend is synchronous; it runs in a worker thread via asyncio.to_thread while the
  lock is held, so a concurrent save cannot interleave with a persist.

History and statistics:
- History keeps the most recent `history_limit` analyses (default 50), oldest evicted first.
- `total_analyses` and `score_total` are lifetime counters that survive eviction; the average
  score is `round_half_up(score_total / total_analyses)`.
- Issue counts in `get_stats` cover only the retained history.

Durability:
- The whole map is persisted after every mutation. A failed persist raises StorageFailure; the
  in-memory mutation is kept and is written out by the next successful persist.
- A snapshot that cannot be loaded at startup is logged and the store starts empty.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from monitoring.metrics import SESSIONS_REMOVED, SNAPSHOT_WRITE_TIME, STORAGE_FAILURES, track_latency
from services.persistence import SnapshotBackend
from shared.errors import InvalidInput, StorageFailure
from shared.models import AnalysisResult, Session, SessionStats, normalize_score
from shared.utils import now_ms, round_half_up

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50
DEFAULT_MAX_AGE_MS = 7 * 24 * 60 * 60 * 1000
MIN_HISTORY_QUERY = 1
MAX_HISTORY_QUERY = 100


class SessionStore:
    """
    Owned, injectable session state with bounded history.

    Args:
        backend (SnapshotBackend): Durable get/put of the whole session map.
        history_limit (int): Maximum analyses retained per session.
        default_max_age_ms (int): Retention window used by `cleanup()` when no age is given.
        clock (Callable[[], int]): Returns the current time in epoch milliseconds.
    """

    def __init__(
        self,
        backend: SnapshotBackend,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        default_max_age_ms: int = DEFAULT_MAX_AGE_MS,
        clock: Callable[[], int] = now_ms,
    ):
        self.backend = backend
        self.history_limit = history_limit
        self.default_max_age_ms = default_max_age_ms
        self.clock = clock
        self._sessions: Dict[str, Session] = {}
        self._lock = asyncio.Lock()
        self._initialized = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """
        Load the durable snapshot into memory.

        A backend error or an unreadable snapshot is logged and the store starts empty, so the
        service keeps answering requests. Individual malformed session records are skipped.
        """
        async with self._lock:
            await self._ensure_initialized()
            logger.info("Session store initialized with %d sessions", len(self._sessions))

    async def shutdown(self) -> None:
        """Persist a final snapshot. Failures are logged, never raised."""
        async with self._lock:
            if not self._initialized:
                return
            try:
                await self._persist("shutdown")
            except StorageFailure as e:
                logger.error("Final session snapshot failed: %s", e)
            self._initialized = False

    async def _ensure_initialized(self) -> None:
        # Called with the lock held, so stores used without an explicit init() still load once
        if self._initialized:
            return
        self._sessions = {}
        try:
            data = await asyncio.to_thread(self.backend.load)
        except Exception as e:
            logger.error("Failed to load session snapshot, starting empty: %s", e, exc_info=True)
            data = None

        for session_id, record in (data or {}).items():
            try:
                self._sessions[session_id] = Session.model_validate(record)
            except ValidationError as e:
                logger.warning("Skipping malformed session %s in snapshot: %s", session_id, e)
        self._initialized = True

    @track_latency(SNAPSHOT_WRITE_TIME)
    async def _persist(self, operation: str) -> None:
        snapshot = {
            session_id: session.model_dump(mode="json", by_alias=True)
            for session_id, session in self._sessions.items()
        }
        try:
            await asyncio.to_thread(self.backend.save, snapshot)
        except Exception as e:
            STORAGE_FAILURES.labels(operation=operation).inc()
            logger.error("Failed to persist session snapshot during %s: %s", operation, e)
            raise StorageFailure(f"Could not persist sessions during {operation}: {e}") from e

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def _touch(self, session_id: str, user_id: Optional[str]) -> Session:
        now = self.clock()
        session = self._sessions.get(session_id)
        if session is None:
            session = Session(
                id=session_id,
                user_id=user_id,
                created_at=now,
                last_activity=now,
            )
            self._sessions[session_id] = session
            logger.info("Created session %s", session_id)
        else:
            session.last_activity = now
            if user_id and not session.user_id:
                session.user_id = user_id
        return session

    async def get_or_create_session(self, session_id: str, user_id: Optional[str] = None) -> Session:
        """
        Return the session for `session_id`, creating it on first access.

        An existing session has its `last_activity` refreshed. The map is persisted either way.

        Args:
            session_id (str): Session identifier; must be non-empty.
            user_id (Optional[str]): Owner recorded on creation (or if not yet known).

        Returns:
            Session: A copy of the stored session.

        Raises:
            InvalidInput: If `session_id` is empty.
            StorageFailure: If the snapshot cannot be written.
        """
        if not session_id or not str(session_id).strip():
            raise InvalidInput("Session id is required")

        async with self._lock:
            await self._ensure_initialized()
            session = self._touch(session_id, user_id)
            await self._persist("get_or_create_session")
            return session.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Analyses
    # ------------------------------------------------------------------

    @staticmethod
    def _coerce_result(result: Union[AnalysisResult, Mapping[str, Any], None]) -> AnalysisResult:
        if result is None:
            raise InvalidInput("Analysis result is required")
        if isinstance(result, AnalysisResult):
            # Re-normalize in case the caller built it with model_construct
            return result.model_copy(update={"overall_score": normalize_score(result.overall_score)})
        if isinstance(result, Mapping):
            try:
                return AnalysisResult.model_validate(dict(result))
            except ValidationError as e:
                raise InvalidInput(f"Malformed analysis result: {e}") from e
        raise InvalidInput(f"Unsupported analysis result type: {type(result).__name__}")

    async def save_analysis(
        self,
        session_id: str,
        result: Union[AnalysisResult, Mapping[str, Any]],
    ) -> Session:
        """
        Append an analysis to a session's history and update its statistics.

        The overall score is normalized first: a missing or out-of-range score becomes 50,
        never a rejection. The session is created if it does not exist yet.

        Args:
            session_id (str): Session identifier; must be non-empty.
            result (AnalysisResult | Mapping): The analysis, or its wire-form dictionary.

        Returns:
            Session: A copy of the updated session.

        Raises:
            InvalidInput: If the id or result is missing or the result is malformed.
            StorageFailure: If the snapshot cannot be written.
        """
        if not session_id or not str(session_id).strip():
            raise InvalidInput("Session id is required")
        analysis = self._coerce_result(result)

        async with self._lock:
            await self._ensure_initialized()
            session = self._touch(session_id, None)

            session.analyses.append(analysis)
            session.total_analyses += 1
            session.score_total += analysis.overall_score
            session.average_score = round_half_up(session.score_total / session.total_analyses)

            if len(session.analyses) > self.history_limit:
                session.analyses = session.analyses[-self.history_limit:]

            await self._persist("save_analysis")
            logger.info(
                "Saved analysis to session %s (total=%d, average=%d)",
                session_id, session.total_analyses, session.average_score,
            )
            return session.model_copy(deep=True)

    async def try_save_analysis(
        self,
        session_id: str,
        result: Union[AnalysisResult, Mapping[str, Any]],
    ) -> Tuple[bool, str]:
        """
        Save an analysis, reporting failure as a value instead of raising.

        Used for write-through persistence after a successful analysis, where a storage problem
        must not fail the analysis itself.

        Returns:
            Tuple[bool, str]: (True, "") on success, (False, reason) on InvalidInput or
                StorageFailure.
        """
        try:
            await self.save_analysis(session_id, result)
        except (InvalidInput, StorageFailure) as e:
            return False, str(e)
        return True, ""

    async def get_history(self, session_id: str, limit: int = 10) -> List[AnalysisResult]:
        """
        Return up to `limit` most recent analyses, oldest first.

        `limit` is clamped into [1, 100]. Unknown or empty ids yield an empty list.
        """
        if not session_id:
            return []
        limit = max(MIN_HISTORY_QUERY, min(MAX_HISTORY_QUERY, int(limit)))

        async with self._lock:
            await self._ensure_initialized()
            session = self._sessions.get(session_id)
            if session is None:
                return []
            return [analysis.model_copy(deep=True) for analysis in session.analyses[-limit:]]

    async def get_stats(self, session_id: str) -> SessionStats:
        """
        Return aggregate statistics for a session; all zeros for an unknown id.

        Issue counts are summed over the retained history only.
        """
        async with self._lock:
            await self._ensure_initialized()
            session = self._sessions.get(session_id) if session_id else None
            if session is None:
                return SessionStats()

            return SessionStats(
                total_analyses=session.total_analyses,
                average_score=session.average_score,
                last_activity=session.last_activity,
                created_at=session.created_at,
                security_issues_found=sum(len(a.security_issues) for a in session.analyses),
                performance_issues_found=sum(len(a.performance_issues) for a in session.analyses),
                quality_issues_found=sum(len(a.quality_issues) for a in session.analyses),
            )

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    async def cleanup(self, max_age_ms: Optional[int] = None) -> int:
        """
        Delete every session idle for longer than `max_age_ms`.

        Args:
            max_age_ms (Optional[int]): Retention window; defaults to `default_max_age_ms`.

        Returns:
            int: Number of sessions removed.

        Raises:
            InvalidInput: If `max_age_ms` is negative.
            StorageFailure: If sessions were removed but the snapshot cannot be written.
        """
        if max_age_ms is None:
            max_age_ms = self.default_max_age_ms
        if max_age_ms < 0:
            raise InvalidInput("max_age_ms must be non-negative")

        async with self._lock:
            await self._ensure_initialized()
            now = self.clock()
            expired = [
                session_id
                for session_id, session in self._sessions.items()
                if now - session.last_activity > max_age_ms
            ]
            for session_id in expired:
                del self._sessions[session_id]

            if expired:
                SESSIONS_REMOVED.inc(len(expired))
                logger.info("Cleanup removed %d sessions older than %d ms", len(expired), max_age_ms)
                await self._persist("cleanup")
            return len(expired)
