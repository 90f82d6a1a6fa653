"""
Self-Reflection
===============

A verification pass over a provisional answer.

    1. Ask the model to list concerns about the answer
       (none → confidence 0.95, done)
    2. Verify each concern
         factual claims  → web_search tool, else ask the model
         calculations    → math_calculate tool, else ask the model
         anything else   → consistency check against recent history
    3. confidence = passed / verified − min(0.05 × concerns, 0.2), in [0, 1]
    4. Below the threshold, ask the model for a corrected answer

The Agent decides whether the correction is used; the reflector only
reports it.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any

from learnloop.errors import ReflectionError
from learnloop.memory.base import Memory
from learnloop.memory.short_term import Message
from learnloop.providers.base import ChatOptions, LLMProvider
from learnloop.tools import ToolRegistry
from learnloop.utils.logger import Logger

logger = Logger("Agent").child("Reflection")

_ANALYTIC = ChatOptions(temperature=0.3, max_tokens=500)

_FACT_KEYWORDS = ("fact", "accurate", "correct", "true", "false", "verify", "capital", "date", "year")
_CALC_KEYWORDS = ("math", "calculation", "number", "compute", "result", "formula", "equation")

_BULLET = re.compile(r"^[\d.\-*)]+\s*")
_EXPRESSION = re.compile(r"[\d+\-*/().\s]+")
_NUMBER = re.compile(r"[-+]?\d*\.?\d+")


@dataclass
class Verification:
    method: str
    passed: bool
    result: Any = None


@dataclass
class ReflectionResult:
    """
    Outcome of reflecting on an answer.

    Attributes:
        confidence: Confidence in the initial answer, in [0, 1]
        initial_answer: The answer that was checked
        final_answer: Corrected answer if one was produced, else the initial one
        was_corrected: Whether final_answer differs from initial_answer
        concerns: Concerns the model raised
        verifications: One verification per concern
    """
    confidence: float
    initial_answer: str
    final_answer: str
    was_corrected: bool = False
    concerns: list[str] = field(default_factory=list)
    verifications: list[Verification] = field(default_factory=list)


def _says(text: str, positive: str, negative: str) -> bool:
    upper = text.upper()
    return positive in upper and negative not in upper


def _first_number(text: str) -> str:
    match = _NUMBER.search(text)
    return match.group(0) if match else ""


class Reflector:
    """
    Scores and, when needed, corrects an answer.

    Example:
        reflector = Reflector(provider, registry, memory, threshold=0.7)
        result = await reflector.reflect("What is 15 * 23?", "15 * 23 = 335")
        if result.was_corrected:
            print(result.final_answer)
    """

    def __init__(
        self,
        provider: LLMProvider,
        registry: ToolRegistry | None = None,
        memory: Memory | None = None,
        threshold: float = 0.7
    ):
        self.provider = provider
        self.registry = registry
        self.memory = memory
        self.threshold = threshold

    async def _ask(self, prompt: str) -> str:
        response = await self.provider.chat([Message(role="user", content=prompt)], _ANALYTIC)
        return response.content.strip()

    async def reflect(self, question: str, answer: str) -> ReflectionResult:
        """
        Raises:
            ReflectionError: If the concerns could not be obtained
        """
        result = ReflectionResult(confidence=0.5, initial_answer=answer, final_answer=answer)

        try:
            result.concerns = await self.identify_concerns(question, answer)
        except Exception as e:
            raise ReflectionError(f"failed to identify concerns: {e}") from e

        if not result.concerns:
            result.confidence = 0.95
            logger.debug("No concerns identified")
            return result

        logger.debug(f"{len(result.concerns)} concern(s) identified")
        for concern in result.concerns:
            lower = concern.lower()
            if any(k in lower for k in _FACT_KEYWORDS):
                check = await self.verify_facts(question, answer)
            elif any(k in lower for k in _CALC_KEYWORDS):
                check = await self.verify_calculation(question, answer)
            else:
                check = await self.check_consistency(question, answer)
            result.verifications.append(check)
            logger.debug(f"{check.method}: {'passed' if check.passed else 'failed'}")

        result.confidence = self.confidence(result)

        if result.confidence < self.threshold:
            try:
                corrected = await self._correct(question, answer, result)
            except Exception as e:
                logger.warning(f"Correction request failed: {e}")
                corrected = ""
            if corrected and corrected != answer:
                result.final_answer = corrected
                result.was_corrected = True

        logger.info(f"Confidence {result.confidence:.2f} (corrected={result.was_corrected})")
        return result

    @staticmethod
    def confidence(result: ReflectionResult) -> float:
        if not result.verifications:
            return 0.95 if not result.concerns else 0.5

        passed = sum(1 for v in result.verifications if v.passed)
        base = passed / len(result.verifications)
        penalty = min(0.05 * len(result.concerns), 0.2)
        return min(max(base - penalty, 0.0), 1.0)

    async def identify_concerns(self, question: str, answer: str) -> list[str]:
        content = await self._ask(
            "You are a critical reviewer. Identify specific concerns about the "
            "accuracy or completeness of this answer: factual accuracy, "
            "calculation errors, logical consistency, completeness.\n\n"
            f"Question: {question}\nAnswer: {answer}\n\n"
            'If the answer seems correct, respond with "No concerns identified".\n'
            "List concerns (one per line):"
        )
        if not content or "no concerns" in content.lower():
            return []

        concerns = []
        for line in content.splitlines():
            line = _BULLET.sub("", line.strip())
            if line and "no concerns" not in line.lower():
                concerns.append(line)
        return concerns

    # ==========================================================================
    # Verifications
    # ==========================================================================

    async def verify_facts(self, question: str, answer: str) -> Verification:
        if self.registry and (self.registry.has("web_search") or self.registry.has("web_fetch")):
            name = "web_search" if self.registry.has("web_search") else "web_fetch"
            fact = answer.split(".")[0].strip()
            if fact:
                outcome = await self.registry.execute(name, {"query": fact})
                if outcome.success:
                    return Verification("fact_check", self._supports(outcome.to_message(), answer), outcome.data)

        return await self._llm_check(
            "fact_check",
            "Verify if this answer to the question is factually correct.\n"
            'Respond with "VERIFIED" only if you are highly confident it is correct, '
            '"UNVERIFIED" otherwise.\n\n'
            f"Question: {question}\nAnswer: {answer}",
            "VERIFIED", "UNVERIFIED",
        )

    async def verify_calculation(self, question: str, answer: str) -> Verification:
        if self.registry and self.registry.has("math_calculate"):
            expression = self._expression(question)
            if expression:
                outcome = await self.registry.execute("math_calculate", {"expression": expression})
                if outcome.success:
                    return Verification("calculation_verify", self._matches(outcome.data, answer), outcome.data)

        return await self._llm_check(
            "calculation_verify",
            "Verify if the calculation in this answer is correct. Show your work, then "
            'end with "CORRECT" if it is right or "INCORRECT" if it is wrong.\n\n'
            f"Question: {question}\nAnswer: {answer}",
            "CORRECT", "INCORRECT",
        )

    async def check_consistency(self, question: str, answer: str) -> Verification:
        history = ""
        if self.memory is not None:
            recent = await self.memory.get_history(5)
            history = "\n".join(f"{m.role}: {m.content}" for m in recent if m.content)

        return await self._llm_check(
            "consistency_check",
            f"Previous conversation:\n{history or '(none)'}\n\n"
            "Check this answer for logical consistency with the question and the "
            'conversation. Respond with "CONSISTENT" if there are no issues, '
            '"INCONSISTENT" and why otherwise.\n\n'
            f"Question: {question}\nAnswer: {answer}",
            "CONSISTENT", "INCONSISTENT",
        )

    async def _llm_check(self, method: str, prompt: str, positive: str, negative: str) -> Verification:
        try:
            content = await self._ask(prompt)
        except Exception as e:
            logger.warning(f"{method} failed: {e}")
            return Verification(method, False, str(e))
        return Verification(method, _says(content, positive, negative), content)

    async def _correct(self, question: str, answer: str, result: ReflectionResult) -> str:
        issues = "\n".join(
            f"{i}. {v.method} failed: {v.result}"
            for i, v in enumerate(result.verifications, 1)
            if not v.passed
        )
        return await self._ask(
            "The initial answer to this question had issues. Provide a corrected answer.\n\n"
            f"Question: {question}\nInitial Answer: {answer}\n\n"
            f"Issues found with the answer:\n{issues}\n\n"
            "Provide a corrected, accurate answer:"
        )

    # ==========================================================================
    # Heuristics
    # ==========================================================================

    @staticmethod
    def _supports(result_text: str, answer: str) -> bool:
        """At least 30% of the answer's words appear in the search result."""
        result_lower = result_text.lower()
        words = answer.lower().split()
        matches = sum(1 for w in words if len(w) > 3 and w in result_lower)
        return matches > 0 and matches / len(words) > 0.3

    @staticmethod
    def _expression(question: str) -> str:
        for match in _EXPRESSION.findall(question):
            match = match.strip()
            if len(match) > 3 and any(op in match for op in "+-*/"):
                return match
        return ""

    @staticmethod
    def _matches(data: Any, answer: str) -> bool:
        value = data
        if isinstance(data, dict) and "result" in data:
            value = data["result"]
        elif isinstance(data, str):
            try:
                parsed = json.loads(data)
                if isinstance(parsed, dict) and "result" in parsed:
                    value = parsed["result"]
            except json.JSONDecodeError:
                pass

        expected = _first_number(str(value))
        if not expected:
            return False
        return expected == _first_number(answer) or expected in answer
