"""
core/dispatcher.py

Parallel multi-aspect code analysis with partial-failure aggregation.

For every requested aspect (security, performance, quality) the dispatcher issues one model call
through the gateway. All calls run concurrently and every one of them is allowed to settle: a
failed aspect never cancels or hides the others. The outcomes are then merged into a single
AnalysisResult:

- A successful aspect contributes its findings and its score.
- A failed aspect (gateway unavailable, remote error, timeout, unparseable or invalid payload)
  contributes exactly one sentinel finding explaining the failure and pointing at static review
  guidelines for that aspect. It does not contribute a score.
- The overall score is the half-up rounded mean of the successful aspects' scores, or 0 when
  every aspect failed.

After a successful analysis the result is written through to the session store when a session id
is given. That write is best-effort: its failure is logged and never reaches the caller.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from pydantic import ValidationError

from config import CONFIG
from monitoring.metrics import ANALYSIS_DURATION, ASPECT_FAILURES
from shared.errors import InvalidInput, ModelError, ModelFailure
from shared.models import (
    ALL_ASPECTS,
    ASPECT_RESULT_TYPES,
    DEFAULT_SCORE,
    AnalysisResult,
    Aspect,
    AspectResult,
    merge_aspect_results,
)
from shared.utils import parse_model_json, truncate_message_for_logging

logger = logging.getLogger(__name__)

# What each aspect's model call is asked to look for
ASPECT_FOCUS = {
    Aspect.SECURITY: "security vulnerabilities and potential exploits",
    Aspect.PERFORMANCE: "performance issues and optimization opportunities",
    Aspect.QUALITY: "code quality, maintainability, and best practices",
}

SEVERITY_LEVELS = {
    Aspect.SECURITY: "low, medium, high, critical",
    Aspect.PERFORMANCE: "low, medium, high",
    Aspect.QUALITY: "low, medium, high",
}

# Static review guidelines surfaced in sentinel findings when an aspect's model call fails
ASPECT_GUIDELINES = {
    Aspect.SECURITY: (
        "Input Validation: always validate and sanitize user inputs",
        "SQL Injection: use parameterized queries, never concatenate SQL",
        "XSS Prevention: escape output, use a Content Security Policy",
        "Authentication: implement proper session management",
        "Authorization: check permissions for all sensitive operations",
        "Data Encryption: encrypt sensitive data at rest and in transit",
    ),
    Aspect.PERFORMANCE: (
        "Algorithm Efficiency: choose appropriate data structures and algorithms",
        "Database Queries: avoid N+1 queries, use indexing properly",
        "Memory Management: prevent leaks, use efficient data structures",
        "Caching: implement appropriate caching strategies",
        "Async Operations: use asynchronous programming for I/O",
        "Resource Optimization: minimize CPU and memory usage",
    ),
    Aspect.QUALITY: (
        "Code Readability: use clear names and consistent formatting",
        "Function Design: keep functions small with a single responsibility",
        "Error Handling: implement comprehensive error handling",
        "Testing: write unit and integration tests",
        "Documentation: document complex logic and APIs",
        "Code Duplication: eliminate duplicate code through refactoring",
    ),
}

SENTINEL_SEVERITY = "medium"
SENTINEL_MARKER = "analysis failed:"

RECOMMENDATIONS = {
    "critical": "Review and fix critical security issues first",
    Aspect.SECURITY: "Address the reported security findings before release",
    Aspect.PERFORMANCE: "Optimize performance bottlenecks",
    Aspect.QUALITY: "Improve code maintainability",
    "clean": "No issues found; keep following the current practices",
}


@dataclass
class AnalysisSummary:
    """Deterministic digest of an AnalysisResult used by reports and notifications."""
    total_issues: int
    critical_issues: int
    recommendations: List[str] = field(default_factory=list)
    failed_aspects: List[Aspect] = field(default_factory=list)
    text: str = ""


def parse_aspects(aspects: Optional[Iterable[Any]]) -> List[Aspect]:
    """
    Validate and de-duplicate a list of requested aspects, preserving order.

    Accepts Aspect members or their string values in any case.

    Raises:
        InvalidInput: If the list is missing, empty, or names an unknown aspect.
    """
    if aspects is None or isinstance(aspects, (str, bytes)):
        raise InvalidInput("At least one analysis aspect is required")

    selected: List[Aspect] = []
    for raw in aspects:
        if isinstance(raw, Aspect):
            aspect = raw
        elif isinstance(raw, str):
            try:
                aspect = Aspect(raw.strip().lower())
            except ValueError:
                raise InvalidInput(f"Unknown analysis aspect: {raw!r}") from None
        else:
            raise InvalidInput(f"Unknown analysis aspect: {raw!r}")
        if aspect not in selected:
            selected.append(aspect)

    if not selected:
        raise InvalidInput("At least one analysis aspect is required")
    return selected


def build_sentinel(aspect: Aspect, error: BaseException) -> AspectResult:
    """
    Build the failed-aspect outcome carrying one sentinel finding.

    Args:
        aspect (Aspect): The aspect whose model call failed.
        error (BaseException): The failure; its message becomes the finding's reason.

    Returns:
        AspectResult: A result with `failed=True` and a single medium-severity finding.
    """
    reason = str(error) or type(error).__name__
    guidelines = "; ".join(ASPECT_GUIDELINES[aspect])
    result_type = ASPECT_RESULT_TYPES[aspect]
    return result_type(
        findings=[{
            "severity": SENTINEL_SEVERITY,
            "issue": f"{aspect.value.capitalize()} {SENTINEL_MARKER} {reason}",
            "line": None,
            "suggestion": f"Review the code manually against these guidelines: {guidelines}",
        }],
        score=0,
        summary=f"{aspect.value.capitalize()} analysis could not be completed.",
        failed=True,
        error=reason,
    )


def summarize(result: AnalysisResult, aspects: Sequence[Aspect] = ALL_ASPECTS) -> AnalysisSummary:
    """
    Compute issue totals, critical count, recommendations and summary text for a result.

    Sentinel findings are counted as issues, like any other finding. Failed aspects are taken
    from `result.failed_aspects`, never inferred from finding text.

    Args:
        result (AnalysisResult): The merged analysis.
        aspects (Sequence[Aspect]): Aspects that were requested, used for the summary text.

    Returns:
        AnalysisSummary: The deterministic digest.
    """
    by_aspect = {
        Aspect.SECURITY: result.security_issues,
        Aspect.PERFORMANCE: result.performance_issues,
        Aspect.QUALITY: result.quality_issues,
    }
    failed = [aspect for aspect in aspects if aspect in result.failed_aspects]

    recommendations: List[str] = []
    if Aspect.SECURITY not in failed and any(f.severity == "critical" for f in result.security_issues):
        recommendations.append(RECOMMENDATIONS["critical"])
    for aspect in aspects:
        if aspect in failed:
            recommendations.append(f"Re-run the {aspect.value} analysis once the model service is reachable")
        elif by_aspect[aspect]:
            recommendations.append(RECOMMENDATIONS[aspect])
    if not recommendations:
        recommendations.append(RECOMMENDATIONS["clean"])

    total = result.total_issues
    critical = result.critical_issues
    names = ", ".join(aspect.value for aspect in aspects)
    text = (
        f"Analyzed {len(aspects)} aspect(s) ({names}): {total} issue(s) found, "
        f"{critical} high or critical. Overall score {result.overall_score}/100."
    )
    if failed:
        text += " Failed aspects: " + ", ".join(aspect.value for aspect in failed) + "."

    return AnalysisSummary(
        total_issues=total,
        critical_issues=critical,
        recommendations=recommendations,
        failed_aspects=failed,
        text=text,
    )


class AnalysisDispatcher:
    """
    Fan out one model call per aspect and merge the outcomes.

    Args:
        gateway: A ModelGateway (or anything with the same async `complete`).
        store: Optional SessionStore used for write-through persistence.
        config (Dict[str, Any], optional): Configuration; defaults to the global CONFIG.
    """

    def __init__(self, gateway, store=None, config: Optional[Dict[str, Any]] = None):
        self.gateway = gateway
        self.store = store
        self.config = config or CONFIG

        model_config = self.config["llm"]["models"]["analysis"]
        self.model_name = model_config["name"]
        self.max_tokens = model_config.get("settings", {}).get("max_tokens", 2048)
        self.temperature = model_config.get("settings", {}).get("temperature", 0.1)
        self.prompt_template = self.config["analysis_system_prompt"]

    def build_system_prompt(self, aspect: Aspect) -> str:
        return self.prompt_template.format(
            aspect_focus=ASPECT_FOCUS[aspect],
            severity_levels=SEVERITY_LEVELS[aspect],
        )

    async def _run_aspect(self, aspect: Aspect, code: str, language: Optional[str]) -> AspectResult:
        if language:
            user_prompt = f"Please analyze this {language} code:\n\n{code}"
        else:
            user_prompt = f"Please analyze this code:\n\n{code}"

        text = await self.gateway.complete(
            self.build_system_prompt(aspect),
            user_prompt,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            model=self.model_name,
        )

        try:
            payload = parse_model_json(text)
        except ValueError as e:
            raise ModelError(f"Unparseable {aspect.value} response: {e}") from e

        score = payload.get("score")
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            score = DEFAULT_SCORE

        try:
            return ASPECT_RESULT_TYPES[aspect].model_validate({
                "aspect": aspect,
                "findings": payload.get("findings"),
                "score": score,
                "summary": str(payload.get("summary") or ""),
            })
        except ValidationError as e:
            raise ModelError(f"Invalid {aspect.value} response: {e.error_count()} validation error(s)") from e

    async def analyze(
        self,
        code: str,
        aspects: Iterable[Any],
        session_id: Optional[str] = None,
        language: Optional[str] = None,
    ) -> AnalysisResult:
        """
        Analyze `code` for each requested aspect concurrently.

        Args:
            code (str): Source code to analyze; must be non-blank.
            aspects (Iterable): Aspects to run (Aspect members or their names).
            session_id (Optional[str]): When given, the result is written through to the store.
            language (Optional[str]): Language hint passed to the model.

        Returns:
            AnalysisResult: Always populated; failed aspects appear as sentinel findings.

        Raises:
            InvalidInput: If the code is blank or the aspect list is empty or invalid.
        """
        if code is None or not str(code).strip():
            raise InvalidInput("Code input is required for analysis")
        selected = parse_aspects(aspects)

        logger.info(
            f"[analyze] Running {len(selected)} aspect(s) for session {session_id or 'none'}: "
            f"{truncate_message_for_logging(code, 60)!r}"
        )
        start_time = time.time()

        # Cancelling the caller cancels every in-flight aspect call; nothing is merged or saved.
        settled = await asyncio.gather(
            *(self._run_aspect(aspect, code, language) for aspect in selected),
            return_exceptions=True,
        )

        outcomes: List[AspectResult] = []
        for aspect, outcome in zip(selected, settled):
            if isinstance(outcome, AspectResult):
                outcomes.append(outcome)
                continue
            if not isinstance(outcome, Exception):
                raise outcome
            ASPECT_FAILURES.labels(aspect=aspect.value).inc()
            logger.warning(
                f"[analyze] {aspect.value} aspect failed ({type(outcome).__name__}): {outcome}",
                exc_info=None if isinstance(outcome, ModelFailure) else outcome,
            )
            outcomes.append(build_sentinel(aspect, outcome))

        result = merge_aspect_results(outcomes)
        result.summary = summarize(result, selected).text

        ANALYSIS_DURATION.labels(aspect_count=str(len(selected))).observe(time.time() - start_time)
        logger.info(
            f"[analyze] Completed: overall score {result.overall_score}, "
            f"{result.total_issues} issue(s), {result.critical_issues} high or critical"
        )

        if session_id and self.store is not None:
            saved, reason = await self.store.try_save_analysis(session_id, result)
            if not saved:
                logger.warning(f"[analyze] Write-through to session {session_id} failed: {reason}")

        return result
