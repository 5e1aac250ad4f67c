"""
Unit tests for `core/classifier.py` – heuristic code-analysis detection and code extraction.

The classifier is a pure function with no collaborators, so no mocking is needed. The tests pin down
each of the four triggers (fenced block, inline span, keyword substring, whole-word structural token),
the negative cases, and how `extract_code` strips the fence and language tag.
"""

import unittest

import pytest

from core.classifier import extract_code, is_analysis_request


class TestIsAnalysisRequest(unittest.TestCase):
    """
    Unit tests for `is_analysis_request`.

    Keywords match as case-insensitive substrings, structural tokens only as whole, case-sensitive
    words. Empty and None inputs are valid and classify as plain chat.
    """

    def test_fenced_block_is_analysis(self):
        text = "hello\n```\nx = 1\n```\nthanks"
        self.assertTrue(is_analysis_request(text))

    def test_fenced_block_with_language_tag(self):
        self.assertTrue(is_analysis_request("```python\nprint('hi')\n```"))

    def test_inline_code_span_is_analysis(self):
        self.assertTrue(is_analysis_request("what does `x += 1` do?"))

    def test_keyword_substring_case_insensitive(self):
        self.assertTrue(is_analysis_request("Any ISSUES here?"))
        self.assertTrue(is_analysis_request("I'm reviewing my PR"))

    def test_structural_token_whole_word(self):
        self.assertTrue(is_analysis_request("def main(): pass"))
        self.assertTrue(is_analysis_request("what class should I take?"))

    def test_structural_token_is_case_sensitive(self):
        self.assertFalse(is_analysis_request("Class dismissed, see you tomorrow"))

    def test_structural_token_inside_word_does_not_match(self):
        # "default" contains "def", "classic" contains "class"
        self.assertFalse(is_analysis_request("the default classic setup"))

    def test_plain_chat_is_not_analysis(self):
        self.assertFalse(is_analysis_request("hello, how are you today?"))

    def test_empty_and_none(self):
        self.assertFalse(is_analysis_request(""))
        self.assertFalse(is_analysis_request(None))


@pytest.mark.parametrize("text", [
    "```js\nconst a = 1;\n```",
    "Please ```\nfoo()\n``` now",
    "```\n\n```",
])
def test_any_fenced_block_classifies_as_analysis(text):
    assert is_analysis_request(text) is True


@pytest.mark.parametrize("text", [
    "good morning",
    "tell me a joke about cats",
    "what time is it in Paris?",
])
def test_text_without_markers_or_keywords_is_chat(text):
    assert is_analysis_request(text) is False


def test_extract_code_strips_fence_and_language_tag():
    message = "Please look at this:\n```python\ndef f():\n    return 1\n```\nthanks"
    assert extract_code(message) == "def f():\n    return 1"


def test_extract_code_takes_first_block():
    message = "```\nfirst()\n```\nand\n```\nsecond()\n```"
    assert extract_code(message) == "first()"


def test_extract_code_without_fence_returns_whole_text():
    message = "function login(u, p) { return true; }"
    assert extract_code(message) == message
