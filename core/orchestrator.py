"""
core/orchestrator.py

Central coordinator for chat messages and the analysis workflow.

This module contains the main coordination logic that:
1. Classifies incoming chat messages (code-analysis request or general chat)
2. Routes analysis requests through the workflow: initialize session -> parallel analysis
   (with write-through persistence) -> summarize -> notify
3. Routes everything else to the chat model together with the session's recent chat turns,
   substituting a fallback message when the model is unavailable or fails
4. Renders analysis reports as markdown for the chat client

A later workflow step never unwinds an earlier one: a session that cannot be initialized does
not block the analysis, and a failed write-through does not fail the report.
"""

from collections import OrderedDict, deque
from typing import Any, Deque, Dict, Iterable, List, Optional

from config import CONFIG
from config.logging_config import get_logger
from monitoring.metrics import CRITICAL_FINDINGS
from shared.errors import InvalidInput, ModelFailure, StorageFailure
from shared.models import ALL_ASPECTS, AnalysisReport, AnalysisResult, Aspect, ChatReply
from shared.utils import generate_analysis_id, now_ms, truncate_message_for_logging

from .classifier import extract_code, is_analysis_request
from .dispatcher import AnalysisDispatcher, AnalysisSummary, parse_aspects, summarize

SECTION_TITLES = (
    (Aspect.SECURITY, "security_issues", "Security"),
    (Aspect.PERFORMANCE, "performance_issues", "Performance"),
    (Aspect.QUALITY, "quality_issues", "Code Quality"),
)

CHAT_ROLES = ("user", "assistant")
DEFAULT_CHAT_HISTORY_MESSAGES = 20
MAX_TRANSCRIPTS = 1000


def render_report(report: AnalysisReport) -> str:
    """
    Render an analysis report as markdown for the chat client.

    Args:
        report (AnalysisReport): The workflow output.

    Returns:
        str: Markdown with the score, one section per aspect and the recommendations.
    """
    result = report.result
    lines = [
        "## Code Analysis Report",
        "",
        f"**Overall score:** {result.overall_score}/100",
        f"**Issues found:** {report.total_issues} ({report.critical_issues} high or critical)",
        "",
    ]

    for aspect, attribute, title in SECTION_TITLES:
        findings = getattr(result, attribute)
        failed = aspect in result.failed_aspects
        lines.append(f"### {title}")
        if not findings:
            lines.append("No issues found.")
        for finding in findings:
            location = f" (line {finding.line})" if finding.line is not None else ""
            lines.append(f"- **{finding.severity.upper()}**{location}: {finding.issue}")
            if finding.suggestion and not failed:
                lines.append(f"  - Suggestion: {finding.suggestion}")
        lines.append("")

    lines.append("### Recommendations")
    lines.extend(f"- {recommendation}" for recommendation in report.recommendations)
    if result.summary:
        lines.extend(["", result.summary])

    return "\n".join(lines)


class ChatOrchestrator:
    """
    Central orchestrator that routes chat messages to general chat or the analysis workflow.

    Responsibilities:
    - Message classification using the core classifier
    - Running the ordered analysis workflow and building the report
    - General chat through the secondary gateway when configured, else the primary one
    - Fallback responses when the chat model fails
    """

    def __init__(
        self,
        dispatcher: AnalysisDispatcher,
        store,
        chat_gateway,
        config: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize orchestrator with its collaborators.

        Args:
            dispatcher (AnalysisDispatcher): Runs the parallel analysis and write-through.
            store: The SessionStore used to initialize sessions.
            chat_gateway: ModelGateway used for general chat.
            config (Dict[str, Any], optional): Global configuration dictionary.
        """
        self.config = config or CONFIG
        self.dispatcher = dispatcher
        self.store = store
        self.chat_gateway = chat_gateway

        chat_model = self.config["llm"]["models"]["chat"]
        self.chat_model_name = chat_model["name"]
        self.chat_max_tokens = chat_model.get("settings", {}).get("max_tokens", 1024)
        self.chat_temperature = chat_model.get("settings", {}).get("temperature", 0.7)
        self.chat_system_prompt = self.config["chat_system_prompt"]
        self.fallback_message = self.config.get("chat", {}).get(
            "fallback_message",
            "I'm having trouble processing your request. Please try again.",
        )
        self.history_messages = int(
            self.config.get("chat", {}).get("history_messages", DEFAULT_CHAT_HISTORY_MESSAGES)
        )
        # session_id -> recent {'role', 'content'} turns, least recently used session first
        self._transcripts: "OrderedDict[str, Deque[Dict[str, str]]]" = OrderedDict()

    def get_transcript(self, session_id: str) -> List[Dict[str, str]]:
        """Return a copy of the recent chat turns kept for `session_id` (oldest first)."""
        return [dict(turn) for turn in self._transcripts.get(session_id, ())]

    def _remember(self, session_id: str, user_message: str, assistant_message: str) -> None:
        transcript = self._transcripts.get(session_id)
        if transcript is None:
            transcript = deque(maxlen=self.history_messages)
            self._transcripts[session_id] = transcript
            while len(self._transcripts) > MAX_TRANSCRIPTS:
                self._transcripts.popitem(last=False)
        else:
            self._transcripts.move_to_end(session_id)
        transcript.append({"role": "user", "content": user_message})
        transcript.append({"role": "assistant", "content": assistant_message})

    @staticmethod
    def _clean_history(history: Iterable[Any]) -> List[Dict[str, str]]:
        turns = []
        for turn in history:
            role = turn.get("role") if isinstance(turn, dict) else getattr(turn, "role", None)
            content = turn.get("content") if isinstance(turn, dict) else getattr(turn, "content", None)
            if role in CHAT_ROLES and isinstance(content, str) and content.strip():
                turns.append({"role": role, "content": content})
        return turns

    async def handle_message(
        self,
        message: str,
        session_id: str,
        user_id: Optional[str] = None,
        history: Optional[Iterable[Any]] = None,
    ) -> ChatReply:
        """
        Main entry point for chat messages.

        General chat sends earlier turns to the model so follow-up questions keep their context.
        Those turns come from `history` when the client supplies the conversation, otherwise from
        the transcript kept for the session (the last `chat.history_messages` messages).

        Args:
            message (str): User input message
            session_id (str): Session the message belongs to
            user_id (Optional[str]): Owner recorded on the session
            history (Optional[Iterable]): Earlier {'role', 'content'} turns, oldest first

        Returns:
            ChatReply: The markdown report for analysis requests, or the chat answer (or the
                fallback message) otherwise.

        Raises:
            InvalidInput: If the message is empty.
        """
        if not message or not message.strip():
            raise InvalidInput("Message is required")

        logger = get_logger(__name__, session_id=session_id, component="orchestrator")

        if is_analysis_request(message):
            logger.info("Routing message to analysis workflow: %s", truncate_message_for_logging(message, 50))
            report = await self.run_analysis(
                code=extract_code(message),
                aspects=ALL_ASPECTS,
                session_id=session_id,
                user_id=user_id,
            )
            self._remember(session_id, message, report.result.summary or "Analysis completed.")
            return ChatReply(
                message=render_report(report),
                session_id=session_id,
                is_analysis=True,
                response_type="analysis",
                report=report,
            )

        logger.info("Routing message to general chat: %s", truncate_message_for_logging(message, 50))
        # A secondary gateway serves its own configured model; the primary one uses the chat model
        model = None if getattr(self.chat_gateway, "name", "primary") == "secondary" else self.chat_model_name
        turns = self._clean_history(history) if history is not None else self.get_transcript(session_id)
        try:
            answer = await self.chat_gateway.complete(
                self.chat_system_prompt,
                message,
                max_tokens=self.chat_max_tokens,
                temperature=self.chat_temperature,
                model=model,
                history=turns,
            )
        except ModelFailure as e:
            logger.warning("Chat model failed, returning fallback message: %s", e)
            return ChatReply(
                message=self.fallback_message,
                session_id=session_id,
                is_analysis=False,
                response_type="error",
            )

        self._remember(session_id, message, answer)
        return ChatReply(message=answer, session_id=session_id, is_analysis=False)

    async def run_analysis(
        self,
        code: str,
        aspects: Iterable[Any],
        session_id: Optional[str],
        user_id: Optional[str] = None,
        language: Optional[str] = None,
    ) -> AnalysisReport:
        """
        Run the analysis workflow: initialize session, analyze, summarize, notify.

        Persistence happens as the dispatcher's write-through, directly after the analysis.

        Args:
            code (str): Source code to analyze
            aspects (Iterable): Aspects to run
            session_id (Optional[str]): Session that receives the result; None skips persistence
            user_id (Optional[str]): Owner recorded when the session is created
            language (Optional[str]): Language hint for the model

        Returns:
            AnalysisReport: The merged result plus totals, recommendations and timestamps.

        Raises:
            InvalidInput: If the code is blank or the aspects are invalid.
        """
        if code is None or not str(code).strip():
            raise InvalidInput("Code input is required for analysis")
        selected = parse_aspects(aspects)
        analysis_id = generate_analysis_id()
        logger = get_logger(__name__, session_id=session_id, component="workflow")

        # Step 1: initialize session; failure is logged and the analysis still runs
        if session_id:
            try:
                await self.store.get_or_create_session(session_id, user_id=user_id)
            except (InvalidInput, StorageFailure) as e:
                logger.warning("Could not initialize session for analysis %s: %s", analysis_id, e)

        # Step 2: parallel analysis with write-through persistence
        result: AnalysisResult = await self.dispatcher.analyze(
            code,
            selected,
            session_id=session_id,
            language=language,
        )

        # Step 3: summarize
        summary = summarize(result, selected)

        report = AnalysisReport(
            analysis_id=analysis_id,
            session_id=session_id,
            result=result,
            total_issues=summary.total_issues,
            critical_issues=summary.critical_issues,
            recommendations=summary.recommendations,
            completed_at=now_ms(),
        )

        # Step 4: notify
        self._notify(report, summary, logger)
        return report

    @staticmethod
    def _notify(report: AnalysisReport, summary: AnalysisSummary, logger) -> None:
        if summary.critical_issues:
            CRITICAL_FINDINGS.inc(summary.critical_issues)
            logger.warning(
                "Analysis %s found %d high or critical issue(s)",
                report.analysis_id, summary.critical_issues,
            )
        else:
            logger.info("Analysis %s completed with no high or critical issues", report.analysis_id)
        if summary.failed_aspects:
            logger.warning(
                "Analysis %s had failed aspects: %s",
                report.analysis_id, ", ".join(aspect.value for aspect in summary.failed_aspects),
            )
