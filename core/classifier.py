"""
core/classifier.py

Message classification for request routing.

This module decides whether an inbound chat message is a request to analyze code, and if so
which part of the message is the code. It is the single source of truth for that decision:
the chat orchestrator uses it to choose between general chat and the analysis workflow.

Classification is heuristic and deterministic, with no model call. A message is treated as
a code-analysis request when any of these hold:

1. It contains a fenced multi-line code block (```...```).
2. It contains an inline code span (`...`).
3. It contains, case-insensitively and as a substring, one of the analysis keywords
   (so "issues" and "reviewing" both match).
4. It contains one of the structural tokens (function, class, def, ...) as a whole,
   case-sensitive word.

Rule 4 over-triggers on ordinary prose ("what class should I take?"). That is accepted:
a false positive costs one analysis run, a false negative loses the user's request.
"""

import re
from typing import Optional

ANALYSIS_KEYWORDS = (
    "analyze",
    "review",
    "check",
    "audit",
    "security",
    "performance",
    "quality",
    "vulnerability",
    "optimize",
    "improve",
    "bug",
    "issue",
)

STRUCTURAL_TOKENS = (
    "function",
    "class",
    "def",
    "const",
    "let",
    "var",
    "import",
    "export",
)

_FENCED_BLOCK = re.compile(r"```[\s\S]*?```")
_INLINE_CODE = re.compile(r"`[^`\n]+`")
_STRUCTURAL = re.compile(r"\b(?:" + "|".join(STRUCTURAL_TOKENS) + r")\b")
# Opening fence with an optional language tag, the body, then the closing fence
_FENCE_BODY = re.compile(r"```[^\n`]*\n?([\s\S]*?)```")


def is_analysis_request(text: Optional[str]) -> bool:
    """
    Decide whether a message asks for code analysis.

    Args:
        text (Optional[str]): The raw user message. None and "" are accepted.

    Returns:
        bool: True if the message should be routed to the analysis workflow.
    """
    if not text:
        return False

    if _FENCED_BLOCK.search(text) or _INLINE_CODE.search(text):
        return True

    lowered = text.lower()
    if any(keyword in lowered for keyword in ANALYSIS_KEYWORDS):
        return True

    return bool(_STRUCTURAL.search(text))


def extract_code(text: str) -> str:
    """
    Pull the code to analyze out of a chat message.

    Returns the body of the first fenced block, without the opening fence and its language
    tag. When the message has no fenced block the whole message is returned, since the user
    may have pasted raw code.

    Args:
        text (str): The raw user message.

    Returns:
        str: The code to analyze.
    """
    match = _FENCE_BODY.search(text or "")
    if match:
        return match.group(1).strip("\n")
    return text or ""
