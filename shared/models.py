"""
shared/models.py

Common data models and type definitions used across the assistant.

This module contains the pydantic schemas that standardize communication between the model
gateway, the analysis dispatcher, the session store and the HTTP layer:

1. Findings are immutable and typed per aspect. Security findings admit a "critical" severity,
   performance and quality findings stop at "high". Any other severity fails validation.
2. Each aspect produces its own result model (`SecurityResult`, `PerformanceResult`,
   `QualityResult`), discriminated by the `aspect` field, and `merge_aspect_results` joins them
   into a single `AnalysisResult`.
3. `AnalysisResult` always carries the three finding lists (possibly empty), an overall score
   that is normalized into [0, 100], and the aspects whose model call failed.
4. `Session` is the durable per-identity record owned by the session store. Wire names use
   camelCase aliases so persisted snapshots and API payloads share one shape.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shared.utils import round_half_up

# Neutral score substituted for missing or out-of-range values
DEFAULT_SCORE = 50

SecuritySeverity = Literal["low", "medium", "high", "critical"]
IssueSeverity = Literal["low", "medium", "high"]

# Severities counted as critical in summaries and notifications
CRITICAL_SEVERITIES = frozenset({"high", "critical"})


class Aspect(str, Enum):
    """
    Analysis dimensions supported by the dispatcher.

    - SECURITY: vulnerabilities, injection, authentication and data exposure risks
    - PERFORMANCE: bottlenecks, inefficient algorithms, resource usage
    - QUALITY: structure, maintainability and best practices
    """
    SECURITY = "security"
    PERFORMANCE = "performance"
    QUALITY = "quality"


ALL_ASPECTS = (Aspect.SECURITY, Aspect.PERFORMANCE, Aspect.QUALITY)


def normalize_score(value: Any) -> int:
    """
    Normalize an overall score into the integer range [0, 100].

    Missing, non-numeric, NaN or out-of-range values are replaced by the neutral DEFAULT_SCORE
    rather than rejected; in-range values are rounded half-up.

    Args:
        value (Any): The raw score, typically an int or float from a model or a client payload.

    Returns:
        int: A score in [0, 100].
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_SCORE
    if math.isnan(value) or value < 0 or value > 100:
        return DEFAULT_SCORE
    return round_half_up(value)


class Finding(BaseModel):
    """
    A single reported issue: severity, description, optional source line and a suggestion.

    Findings are frozen once produced. Severity strings are stripped and lowercased before
    validation so "HIGH " from a model is accepted as "high".
    """
    model_config = ConfigDict(frozen=True)

    severity: str
    issue: str
    line: Optional[int] = Field(None, ge=0)
    suggestion: str = ""

    @field_validator("severity", mode="before")
    @classmethod
    def _normalize_severity(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("line", mode="before")
    @classmethod
    def _coerce_line(cls, value: Any) -> Any:
        # Models sometimes answer "12-15" or "n/a"; keep the first number or drop the line
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return int(value) if value >= 0 else None
        if isinstance(value, str):
            digits = value.strip().split("-")[0].strip()
            return int(digits) if digits.isdigit() else None
        return None


class SecurityFinding(Finding):
    severity: SecuritySeverity


class PerformanceFinding(Finding):
    severity: IssueSeverity


class QualityFinding(Finding):
    severity: IssueSeverity


class AspectResult(BaseModel):
    """
    Outcome of one aspect's model call.

    `score` is clamped into [0, 100]. A failed aspect carries `failed=True`, the failure reason in
    `error` and a single sentinel finding; its score is ignored when aggregating.
    """
    aspect: Aspect
    findings: List[Finding] = Field(default_factory=list)
    score: int = 0
    summary: str = ""
    failed: bool = False
    error: Optional[str] = None

    @field_validator("score", mode="before")
    @classmethod
    def _clamp_score(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return round_half_up(min(100, max(0, value)))
        return value

    @field_validator("findings", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class SecurityResult(AspectResult):
    aspect: Literal[Aspect.SECURITY] = Aspect.SECURITY
    findings: List[SecurityFinding] = Field(default_factory=list)


class PerformanceResult(AspectResult):
    aspect: Literal[Aspect.PERFORMANCE] = Aspect.PERFORMANCE
    findings: List[PerformanceFinding] = Field(default_factory=list)


class QualityResult(AspectResult):
    aspect: Literal[Aspect.QUALITY] = Aspect.QUALITY
    findings: List[QualityFinding] = Field(default_factory=list)


ASPECT_RESULT_TYPES = {
    Aspect.SECURITY: SecurityResult,
    Aspect.PERFORMANCE: PerformanceResult,
    Aspect.QUALITY: QualityResult,
}


class AnalysisResult(BaseModel):
    """
    One completed multi-aspect analysis.

    The three finding lists are always present (possibly empty). `overall_score` is normalized
    on construction: missing or out-of-range values become DEFAULT_SCORE. `failed_aspects` names the
    aspects whose model call failed; their list holds only the sentinel finding.
    """
    model_config = ConfigDict(populate_by_name=True)

    security_issues: List[SecurityFinding] = Field(default_factory=list, alias="securityIssues")
    performance_issues: List[PerformanceFinding] = Field(default_factory=list, alias="performanceIssues")
    quality_issues: List[QualityFinding] = Field(default_factory=list, alias="qualityIssues")
    overall_score: int = Field(DEFAULT_SCORE, alias="overallScore")
    summary: str = ""
    failed_aspects: List[Aspect] = Field(default_factory=list, alias="failedAspects")

    @field_validator("overall_score", mode="before")
    @classmethod
    def _normalize_overall_score(cls, value: Any) -> int:
        return normalize_score(value)

    @field_validator("security_issues", "performance_issues", "quality_issues", "failed_aspects", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    def all_findings(self) -> List[Finding]:
        return [*self.security_issues, *self.performance_issues, *self.quality_issues]

    @property
    def total_issues(self) -> int:
        return len(self.security_issues) + len(self.performance_issues) + len(self.quality_issues)

    @property
    def critical_issues(self) -> int:
        return sum(1 for finding in self.all_findings() if finding.severity in CRITICAL_SEVERITIES)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def merge_aspect_results(outcomes: Iterable[AspectResult], summary: str = "") -> AnalysisResult:
    """
    Join per-aspect outcomes into a single AnalysisResult.

    Each aspect's findings (real or sentinel) land in the matching list; aspects that were not
    run leave their list empty. The overall score is the half-up rounded mean of the scores of
    aspects that succeeded, or 0 when none did.

    Args:
        outcomes (Iterable[AspectResult]): Results for the aspects that were requested.
        summary (str): Aggregate summary text to attach.

    Returns:
        AnalysisResult: The merged result.
    """
    lists: Dict[Aspect, List[Finding]] = {aspect: [] for aspect in ALL_ASPECTS}
    scores: List[int] = []
    failed: List[Aspect] = []
    for outcome in outcomes:
        lists[outcome.aspect].extend(outcome.findings)
        if outcome.failed:
            failed.append(outcome.aspect)
        else:
            scores.append(outcome.score)

    overall = round_half_up(sum(scores) / len(scores)) if scores else 0
    return AnalysisResult(
        security_issues=lists[Aspect.SECURITY],
        performance_issues=lists[Aspect.PERFORMANCE],
        quality_issues=lists[Aspect.QUALITY],
        overall_score=overall,
        summary=summary,
        failed_aspects=failed,
    )


class Session(BaseModel):
    """
    Durable per-identity record of analysis history and derived statistics.

    `analyses` holds the most recent results (most recent last) and is capped by the store.
    `total_analyses` and `score_total` are lifetime counters and never shrink when old entries
    are evicted, so `average_score` stays the mean over every analysis ever recorded.
    Timestamps are epoch milliseconds.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str
    user_id: Optional[str] = Field(None, alias="userId")
    created_at: int = Field(..., alias="createdAt")
    last_activity: int = Field(..., alias="lastActivity")
    analyses: List[AnalysisResult] = Field(default_factory=list)
    total_analyses: int = Field(0, alias="totalAnalyses")
    score_total: int = Field(0, alias="scoreTotal")
    average_score: int = Field(0, alias="averageScore")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class SessionStats(BaseModel):
    """
    Aggregate view of a session.

    Issue counts cover only the retained history window, while `total_analyses` is the lifetime
    counter, so the two can disagree once history has been truncated.
    """
    model_config = ConfigDict(populate_by_name=True)

    total_analyses: int = Field(0, alias="totalAnalyses")
    average_score: int = Field(0, alias="averageScore")
    last_activity: int = Field(0, alias="lastActivity")
    created_at: int = Field(0, alias="createdAt")
    security_issues_found: int = Field(0, alias="securityIssuesFound")
    performance_issues_found: int = Field(0, alias="performanceIssuesFound")
    quality_issues_found: int = Field(0, alias="qualityIssuesFound")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class AnalysisReport(BaseModel):
    """Output of one run of the analysis workflow."""
    model_config = ConfigDict(populate_by_name=True)

    analysis_id: str = Field(..., alias="analysisId")
    session_id: Optional[str] = Field(None, alias="sessionId")
    result: AnalysisResult
    total_issues: int = Field(0, alias="totalIssues")
    critical_issues: int = Field(0, alias="criticalIssues")
    recommendations: List[str] = Field(default_factory=list)
    completed_at: int = Field(..., alias="completedAt")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


@dataclass
class ChatReply:
    """
    Result of handling one chat message.

    Standardizes the orchestrator's answer whether it came from the general chat model, the
    analysis path, or a fallback substituted after a model failure.
    """
    message: str
    session_id: str
    is_analysis: bool
    response_type: str = "text"
    report: Optional[AnalysisReport] = None

    def to_api_response(self) -> Dict[str, Any]:
        """
        Render the reply in the dictionary form returned by the chat endpoint.

        Returns:
            Dict[str, Any]: A mapping with 'message', 'type', 'sessionId' and 'isAnalysis', plus
            'report' when the analysis path produced one.
        """
        payload: Dict[str, Any] = {
            "message": self.message,
            "type": self.response_type,
            "sessionId": self.session_id,
            "isAnalysis": self.is_analysis,
        }
        if self.report is not None:
            payload["report"] = self.report.to_wire()
        return payload
