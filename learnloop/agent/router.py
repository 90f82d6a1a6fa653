"""
Query Router
============

Decides how a query should be answered and what kind of request it is.

Strategy rules, first match wins:

    1. Explicit tool phrasing ("use the calculator", "search the web")  → tool_use
    2. Arithmetic expression or calculate/compute/solve               → tool_use
    3. Reasoning words ("step by step", "why", "prove", "derive")     → cot
    4. Tools are registered and the query has an action verb          → tool_use
    5. Anything else                                                  → simple

Calculation is checked before reasoning so that "solve 12 * 7 step by
step" goes to a calculation tool rather than free-form reasoning.

The Agent depends only on the QueryClassifier protocol; HeuristicRouter
is the keyword implementation and can be replaced by any object with the
same two methods.
"""

import re
from enum import Enum
from typing import Protocol, runtime_checkable


class Strategy(str, Enum):
    """Reasoning strategies the agent can run."""
    SIMPLE = "simple"
    COT = "cot"
    TOOL_USE = "tool_use"


INTENT_CALCULATION = "calculation"
INTENT_INFORMATION = "information_retrieval"
INTENT_FILE = "file_operation"
INTENT_CODING = "coding"
INTENT_CONVERSATION = "conversation"


@runtime_checkable
class QueryClassifier(Protocol):
    """Maps a query to a strategy and an intent."""

    def route(self, query: str, tools_available: bool = True) -> Strategy: ...

    def detect_intent(self, query: str) -> str: ...


_ARITHMETIC = re.compile(r"\d+\s*[-+*/^%×÷]\s*\d+")

_EXPLICIT_TOOL_PHRASES = (
    "use tool", "using tool", "call tool",
    "use calculator", "use the calculator",
    "search the web", "search web", "web search",
    "fetch from", "scrape from",
)
_CALCULATION_VERBS = ("calculate", "compute", "solve")
_REASONING_PHRASES = ("step by step", "explain how", "prove", "show that", "derive")
_REASONING_WORDS = ("why",)
_ACTION_VERBS = ("search", "find", "fetch", "retrieve", "get", "check", "look up")

_INFORMATION_WORDS = ("search", "find", "look up", "what is")
_FILE_PHRASES = ("read file", "write file", "save to", "open file")
_CODING_WORDS = ("code", "program", "function", "debug")


def _has_word(text: str, words: tuple[str, ...]) -> bool:
    return any(re.search(rf"\b{re.escape(w)}\b", text) for w in words)


class HeuristicRouter:
    """
    Keyword and pattern based query classification.

    Example:
        router = HeuristicRouter()
        router.route("What is 15 * 23?")          # Strategy.TOOL_USE
        router.route("Why is the sky blue?")      # Strategy.COT
        router.detect_intent("debug this code")   # "coding"
    """

    def has_calculation(self, query: str) -> bool:
        lower = query.lower()
        return bool(_ARITHMETIC.search(lower)) or _has_word(lower, _CALCULATION_VERBS)

    def route(self, query: str, tools_available: bool = True) -> Strategy:
        lower = query.lower()

        if any(phrase in lower for phrase in _EXPLICIT_TOOL_PHRASES):
            return Strategy.TOOL_USE

        if self.has_calculation(lower):
            return Strategy.TOOL_USE

        if any(p in lower for p in _REASONING_PHRASES) or _has_word(lower, _REASONING_WORDS):
            return Strategy.COT

        if tools_available and _has_word(lower, _ACTION_VERBS):
            return Strategy.TOOL_USE

        return Strategy.SIMPLE

    def detect_intent(self, query: str) -> str:
        lower = query.lower()

        if self.has_calculation(lower):
            return INTENT_CALCULATION
        if _has_word(lower, _INFORMATION_WORDS):
            return INTENT_INFORMATION
        if any(phrase in lower for phrase in _FILE_PHRASES):
            return INTENT_FILE
        if _has_word(lower, _CODING_WORDS):
            return INTENT_CODING
        return INTENT_CONVERSATION
