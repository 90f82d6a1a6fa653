"""
Error Pattern Analyzer
======================

Groups recurring failures into named patterns with a suggested fix.

Detection:
    1. Load the most recent failures (default 500)
    2. For each failure not yet clustered, search the store for other
       failures with a similar query (similarity ≥ threshold) and group
       them with it
    3. Drop clusters smaller than min_cluster_size
    4. For each remaining cluster, summarize: dominant error type, top
       failed tools and intents, example messages, and a correction
       taken from *successful* experiences with a similar query

    cluster similarity = (share with dominant error type
                          + share with dominant tool) / 2
    pattern confidence = 0.6 × min(size / 10, 1) + 0.4 × similarity

Patterns are cached for a TTL (5 minutes by default). suggest_correction
matches a new failure against the cached patterns and falls back to an
ad-hoc, low-confidence suggestion when none fits.
"""

import asyncio
import time
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from learnloop.learning.experience import Experience, ExperienceFilters, ExperienceStore
from learnloop.utils.logger import Logger

logger = Logger("ErrorPatterns")

NO_CORRECTION = "No correction available - no similar successful queries found"

_PREVENTION_BY_TYPE = {
    "tool_not_found": "Verify tool availability before use",
    "invalid_arguments": "Validate arguments before calling tool",
    "timeout": "Use tools with better performance characteristics",
    "api_error": "Add retry logic and error handling",
    "max_iterations": "Break the task into smaller steps or allow more iterations",
}


@dataclass
class ErrorCluster:
    """A group of similar failures, before it is summarized."""
    experiences: list[Experience]
    similarity: float

    @property
    def size(self) -> int:
        return len(self.experiences)


@dataclass
class ErrorPattern:
    """A recurring failure and what to do about it."""
    id: str
    description: str
    error_type: str
    frequency: int
    first_seen: datetime | None = None
    last_seen: datetime | None = None
    failed_tools: list[str] = field(default_factory=list)
    common_intents: list[str] = field(default_factory=list)
    error_messages: list[str] = field(default_factory=list)
    common_query: str = ""
    correction: str = ""
    prevention: str = ""
    best_tool: str = ""
    confidence: float = 0.0
    avg_confidence: float = 0.0
    experience_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["first_seen"] = self.first_seen.isoformat() if self.first_seen else None
        data["last_seen"] = self.last_seen.isoformat() if self.last_seen else None
        return data


def _top(counter: Counter, n: int) -> list[str]:
    return [item for item, _ in counter.most_common(n) if item]


def cluster_similarity(experiences: list[Experience]) -> float:
    """Average of the dominant error type share and the dominant tool share."""
    if len(experiences) <= 1:
        return 1.0
    total = len(experiences)
    type_share = Counter(e.error_type for e in experiences).most_common(1)[0][1] / total
    tool_share = Counter(e.tool_called for e in experiences).most_common(1)[0][1] / total
    return (type_share + tool_share) / 2


def pattern_confidence(size: int, similarity: float) -> float:
    return 0.6 * min(size / 10, 1.0) + 0.4 * similarity


def describe(error_type: str, tools: list[str], intents: list[str], frequency: int) -> str:
    parts = [f"'{error_type}' errors" if error_type else "Errors"]
    if tools:
        parts.append(f"when using {', '.join(tools)}")
    if intents:
        parts.append(f"for {', '.join(intents)} tasks")
    parts.append(f"(occurred {frequency} times)")
    return " ".join(parts)


def prevention_advice(error_type: str, failed_tools: list[str]) -> str:
    advice = []
    if error_type:
        advice.append(_PREVENTION_BY_TYPE.get(error_type, "Add error handling for this error type"))
    if failed_tools:
        advice.append(f"Avoid using {', '.join(failed_tools)} for this type of query")
    if not advice:
        return "Review error logs and adjust tool selection strategy"
    return "; ".join(advice)


class ErrorPatternAnalyzer:
    """
    Detects error patterns and suggests corrections.

    Example:
        analyzer = ErrorPatternAnalyzer(store)

        patterns = await analyzer.detect_patterns()
        for p in patterns:
            print(p.description, "->", p.correction)

        suggestion = await analyzer.suggest_correction(
            "convert 5 miles to km", "Tool 'unit_convert' not found"
        )
    """

    def __init__(
        self,
        experiences: ExperienceStore,
        min_cluster_size: int = 3,
        similarity_threshold: float = 0.75,
        min_confidence: float = 0.6,
        max_patterns: int = 100,
        max_failures: int = 500,
        cluster_search_limit: int = 50,
        ttl_seconds: float = 300
    ):
        self.experiences = experiences
        self.min_cluster_size = min_cluster_size
        self.similarity_threshold = similarity_threshold
        self.min_confidence = min_confidence
        self.max_patterns = max_patterns
        self.max_failures = max_failures
        self.cluster_search_limit = cluster_search_limit
        self.ttl_seconds = ttl_seconds

        self._patterns: list[ErrorPattern] = []
        self._scanned_at: float | None = None
        self.last_scan: datetime | None = None
        self._lock = asyncio.Lock()

    # ==========================================================================
    # Detection
    # ==========================================================================

    async def detect_patterns(self) -> list[ErrorPattern]:
        """
        Re-scan the failures and replace the cached patterns.

        Raises:
            LearningError: If the experience store could not be read
        """
        async with self._lock:
            return await self._scan()

    async def get_patterns(self) -> list[ErrorPattern]:
        """Cached patterns, re-scanned once the TTL has passed."""
        async with self._lock:
            if self._is_fresh():
                return list(self._patterns)
            return await self._scan()

    def invalidate(self) -> None:
        """Force the next get_patterns() to re-scan."""
        self._scanned_at = None

    def _is_fresh(self) -> bool:
        return (
            self._scanned_at is not None
            and time.monotonic() - self._scanned_at < self.ttl_seconds
        )

    async def _scan(self) -> list[ErrorPattern]:
        logger.info("Starting error pattern detection")
        failures = await self.experiences.get_all_failures(self.max_failures)
        logger.debug(f"Found {len(failures)} failed experiences to analyze")

        patterns: list[ErrorPattern] = []
        if len(failures) >= self.min_cluster_size:
            clusters = await self._cluster(failures)
            for index, cluster in enumerate(clusters):
                if cluster.size < self.min_cluster_size:
                    continue
                patterns.append(await self._extract(cluster, index))

        patterns.sort(key=lambda p: p.frequency, reverse=True)
        patterns = patterns[:self.max_patterns]

        self._patterns = patterns
        self._scanned_at = time.monotonic()
        self.last_scan = datetime.now()
        logger.info(f"Detected {len(patterns)} error patterns")
        return list(patterns)

    async def _cluster(self, failures: list[Experience]) -> list[ErrorCluster]:
        by_id = {f.id: f for f in failures}
        clustered: set[str] = set()
        clusters: list[ErrorCluster] = []

        for seed in failures:
            if seed.id in clustered:
                continue

            members = [seed]
            clustered.add(seed.id)

            similar = await self.experiences.query(ExperienceFilters(
                query=seed.query,
                success=False,
                min_similarity=self.similarity_threshold,
                limit=self.cluster_search_limit,
            ))
            for exp in similar:
                if exp.id in by_id and exp.id not in clustered:
                    members.append(by_id[exp.id])
                    clustered.add(exp.id)

            clusters.append(ErrorCluster(members, cluster_similarity(members)))

        logger.debug(f"Formed {len(clusters)} error clusters")
        return clusters

    async def _extract(self, cluster: ErrorCluster, index: int) -> ErrorPattern:
        members = cluster.experiences
        error_types = Counter(e.error_type for e in members)
        tools = Counter(e.tool_called for e in members)
        intents = Counter(e.intent for e in members)

        error_type = _top(error_types, 1)[0] if _top(error_types, 1) else ""
        failed_tools = _top(tools, 3)
        common_intents = _top(intents, 3)

        messages: list[str] = []
        for exp in members:
            if exp.error and exp.error not in messages:
                messages.append(exp.error)
            if len(messages) == 5:
                break

        timestamps = [e.timestamp for e in members]
        correction, best_tool = await self._find_correction(members[0].query)

        return ErrorPattern(
            id=f"pattern_{index}_{int(time.time())}",
            description=describe(error_type, failed_tools, common_intents, cluster.size),
            error_type=error_type,
            frequency=cluster.size,
            first_seen=min(timestamps),
            last_seen=max(timestamps),
            failed_tools=failed_tools,
            common_intents=common_intents,
            error_messages=messages,
            common_query=members[0].query,
            correction=correction,
            prevention=prevention_advice(error_type, failed_tools),
            best_tool=best_tool,
            confidence=pattern_confidence(cluster.size, cluster.similarity),
            avg_confidence=sum(e.confidence for e in members) / cluster.size,
            experience_ids=[e.id for e in members],
        )

    async def _find_correction(self, query: str) -> tuple[str, str]:
        """Most frequently successful tool among similar successful queries."""
        similar = await self.experiences.query(ExperienceFilters(
            query=query,
            success=True,
            min_similarity=self.similarity_threshold,
            limit=20,
        ))
        tools = Counter(e.tool_called for e in similar if e.tool_called)
        if not similar or not tools:
            return NO_CORRECTION, ""

        best_tool, wins = tools.most_common(1)[0]
        return (
            f"Try using '{best_tool}' tool instead "
            f"(succeeded {wins}/{len(similar)} times for similar queries)",
            best_tool,
        )

    # ==========================================================================
    # Suggestions
    # ==========================================================================

    def match_score(self, pattern: ErrorPattern, query: str, error_message: str) -> float:
        """
        How well a new failure fits a pattern.

        0.5 × share of query words found in the pattern's query
        + 0.3 if the error message contains (or is contained in) an example
        + 0.2 × pattern confidence
        """
        score = 0.0

        query_words = query.lower().split()
        pattern_words = set(pattern.common_query.lower().split())
        if query_words:
            common = sum(1 for w in query_words if w in pattern_words)
            score += common / len(query_words) * 0.5

        if error_message:
            error_lower = error_message.lower()
            for example in pattern.error_messages:
                example_lower = example.lower()
                if example_lower in error_lower or error_lower in example_lower:
                    score += 0.3
                    break

        score += pattern.confidence * 0.2
        return min(score, 1.0)

    async def suggest_correction(self, query: str, error_message: str) -> ErrorPattern:
        """
        A correction for a new failure.

        Returns the best matching cached pattern when it scores at least
        0.5 and its confidence reaches min_confidence; otherwise an ad-hoc
        pattern (confidence 0.3) built from similar successful queries.
        """
        patterns = await self.get_patterns()

        best: ErrorPattern | None = None
        best_score = 0.0
        for pattern in patterns:
            score = self.match_score(pattern, query, error_message)
            if score > best_score:
                best, best_score = pattern, score

        if best is not None and best_score >= 0.5 and best.confidence >= self.min_confidence:
            logger.info(f"Matched error pattern: {best.description} (score {best_score:.2f})")
            return best

        correction, best_tool = await self._find_correction(query)
        logger.debug("No matching pattern, suggesting ad-hoc correction")
        return ErrorPattern(
            id=f"adhoc_{int(time.time())}",
            description="No known pattern, using ad-hoc correction",
            error_type="",
            frequency=1,
            error_messages=[error_message] if error_message else [],
            common_query=query,
            correction=correction,
            best_tool=best_tool,
            confidence=0.3,
        )

    def get_pattern_stats(self) -> dict[str, Any]:
        patterns = self._patterns
        total = sum(p.frequency for p in patterns)
        return {
            "total_patterns": len(patterns),
            "last_scan": self.last_scan.isoformat() if self.last_scan else None,
            "total_occurrences": total,
            "high_confidence": sum(1 for p in patterns if p.confidence >= 0.7),
            "avg_frequency": total / len(patterns) if patterns else 0.0,
        }
