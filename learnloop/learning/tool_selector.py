"""
Tool Selector
=============

Recommends a tool for a (query, intent) pair with an ε-greedy bandit
over the outcomes recorded in the ExperienceStore.

Decision order:

    1. No candidate tools, or no readable history  → default
    2. Any used tool with < min_sample_size calls   → exploration
       (uniformly among the under-sampled ones)
    3. No tool used yet for the intent              → exploration
       (uniformly among the untried ones)
    4. With probability ε                           → exploration
       (uniformly among all candidates)
    5. Otherwise                                    → learned
       argmax of  success_weight × success_rate
                + latency_weight × (1 − avg_latency / slowest_avg_latency)
       ties go to the lower average latency

Statistics are recomputed from the store on every call; nothing is
cached. Candidates are the tools already used for the intent (limited
to the registry when one is given) plus at most max_untried registered
tools that have never been used for it. Untried tools never block the
learned choice; they are reached through exploration.
"""

import random
from dataclasses import dataclass, field

from learnloop.errors import LearningError
from learnloop.learning.experience import Experience, ExperienceFilters, ExperienceStore
from learnloop.tools import ToolRegistry
from learnloop.utils.logger import Logger

logger = Logger("ToolSelector")

STRATEGY_LEARNED = "learned"
STRATEGY_EXPLORATION = "exploration"
STRATEGY_DEFAULT = "default"

# Conventional tool names tried when nothing has been learned yet
DEFAULT_TOOLS_BY_INTENT = {
    "calculation": "math_calculate",
    "information_retrieval": "web_search",
    "file_operation": "file_read",
}


@dataclass
class ToolStats:
    """Outcome statistics of one tool under one intent."""
    tool: str
    intent: str
    total_calls: int
    successes: int
    failures: int
    success_rate: float
    avg_latency_ms: float

    @classmethod
    def from_experiences(
        cls,
        tool: str,
        intent: str,
        experiences: list[Experience]
    ) -> "ToolStats | None":
        """Aggregate experiences; None when there are none."""
        if not experiences:
            return None
        successes = sum(1 for e in experiences if e.success)
        return cls(
            tool=tool,
            intent=intent,
            total_calls=len(experiences),
            successes=successes,
            failures=len(experiences) - successes,
            success_rate=successes / len(experiences),
            avg_latency_ms=sum(e.latency_ms for e in experiences) / len(experiences),
        )


@dataclass
class ToolRecommendation:
    """A recommended tool and why it was chosen."""
    tool_name: str
    confidence: float
    reasoning: str
    decision_strategy: str
    is_exploration: bool = False
    sample_size: int = 0
    success_rate: float = 0.0
    avg_latency_ms: float = 0.0
    alternatives: list[str] = field(default_factory=list)


class ToolSelector:
    """
    ε-greedy tool recommendation.

    Example:
        selector = ToolSelector(store, registry, exploration_rate=0.1)

        rec = await selector.recommend("what is 17 * 23", "calculation")
        print(rec.tool_name, rec.decision_strategy, rec.reasoning)
    """

    def __init__(
        self,
        experiences: ExperienceStore,
        registry: ToolRegistry | None = None,
        exploration_rate: float = 0.1,
        min_sample_size: int = 3,
        success_weight: float = 0.7,
        latency_weight: float = 0.3,
        history_limit: int = 1000,
        max_untried: int = 3,
        rng: random.Random | None = None
    ):
        self.experiences = experiences
        self.registry = registry
        self.exploration_rate = exploration_rate
        self.min_sample_size = min_sample_size
        self.success_weight = success_weight
        self.latency_weight = latency_weight
        self.history_limit = history_limit
        self.max_untried = max_untried
        self.rng = rng or random.Random()

    def set_exploration_rate(self, rate: float) -> None:
        """Clamp to [0, 1] and apply."""
        self.exploration_rate = min(max(rate, 0.0), 1.0)

    # ==========================================================================
    # Statistics
    # ==========================================================================

    async def _history(self, intent: str, tool: str = "") -> list[Experience]:
        return await self.experiences.query(ExperienceFilters(
            intent=intent,
            tool_used=tool,
            limit=self.history_limit,
        ))

    async def get_stats(self, tool: str, intent: str) -> ToolStats | None:
        """
        Statistics of one tool under one intent, None without any calls.

        Raises:
            LearningError: If the experience store could not be read
        """
        return ToolStats.from_experiences(tool, intent, await self._history(intent, tool))

    async def get_all_stats(self, intent: str = "") -> dict[str, ToolStats]:
        """Statistics keyed "tool:intent" for every tool seen (optionally one intent)."""
        grouped: dict[tuple[str, str], list[Experience]] = {}
        for exp in await self._history(intent):
            if exp.tool_called:
                grouped.setdefault((exp.tool_called, exp.intent), []).append(exp)

        result = {}
        for (tool, tool_intent), exps in grouped.items():
            stats = ToolStats.from_experiences(tool, tool_intent, exps)
            if stats:
                result[f"{tool}:{tool_intent}"] = stats
        return result

    def score(self, stats: ToolStats, slowest_latency_ms: float) -> float:
        """Composite score; latency is normalized against the slowest candidate."""
        normalized_latency = stats.avg_latency_ms / slowest_latency_ms if slowest_latency_ms > 0 else 0.0
        return self.success_weight * stats.success_rate + self.latency_weight * (1 - normalized_latency)

    # ==========================================================================
    # Recommendation
    # ==========================================================================

    async def recommend(self, query: str, intent: str) -> ToolRecommendation:
        """Recommend a tool for a query of the given intent."""
        try:
            history = await self._history(intent)
        except LearningError as e:
            logger.warning(f"Experience history unavailable: {e}")
            return self._default(intent, "history unavailable")

        by_tool: dict[str, list[Experience]] = {}
        for exp in history:
            if exp.tool_called:
                by_tool.setdefault(exp.tool_called, []).append(exp)

        seen = [tool for tool in sorted(by_tool) if not self.registry or self.registry.has(tool)]
        untried = [tool for tool in self.registry.names() if tool not in by_tool] if self.registry else []
        if len(untried) > self.max_untried:
            untried = self.rng.sample(untried, self.max_untried)

        candidates = seen + untried
        if not candidates:
            return self._default(intent, "no candidate tools")

        stats = {
            tool: ToolStats.from_experiences(tool, intent, by_tool.get(tool, []))
            for tool in candidates
        }

        under_sampled = [tool for tool in seen if stats[tool].total_calls < self.min_sample_size]
        if under_sampled:
            tool = self.rng.choice(under_sampled)
            return self._exploration(
                tool, stats[tool],
                f"Not enough data yet: {len(under_sampled)} tool(s) have fewer than "
                f"{self.min_sample_size} calls for '{intent}'"
            )
        if not seen:
            tool = self.rng.choice(untried)
            return self._exploration(tool, None, f"No recorded calls yet for '{intent}'")

        if self.rng.random() < self.exploration_rate:
            tool = self.rng.choice(candidates)
            return self._exploration(
                tool, stats[tool],
                "Exploratory selection to discover new tool usage patterns"
            )

        sampled = [stats[tool] for tool in seen]
        slowest = max(s.avg_latency_ms for s in sampled)
        ranked = sorted(
            sampled,
            key=lambda s: (-self.score(s, slowest), s.avg_latency_ms)
        )
        best = ranked[0]
        logger.debug(f"Exploiting {best.tool} for '{intent}' (query: {query[:50]})")

        return ToolRecommendation(
            tool_name=best.tool,
            confidence=round(self.score(best, slowest), 4),
            reasoning=(
                f"Used successfully {best.successes}/{best.total_calls} times "
                f"({best.success_rate * 100:.0f}%) with avg latency {best.avg_latency_ms:.0f}ms"
            ),
            decision_strategy=STRATEGY_LEARNED,
            is_exploration=False,
            sample_size=best.total_calls,
            success_rate=best.success_rate,
            avg_latency_ms=best.avg_latency_ms,
            alternatives=[s.tool for s in ranked[1:4]],
        )

    def _exploration(self, tool: str, stats: ToolStats | None, reasoning: str) -> ToolRecommendation:
        return ToolRecommendation(
            tool_name=tool,
            confidence=0.5,
            reasoning=reasoning,
            decision_strategy=STRATEGY_EXPLORATION,
            is_exploration=True,
            sample_size=stats.total_calls if stats else 0,
            success_rate=stats.success_rate if stats else 0.0,
            avg_latency_ms=stats.avg_latency_ms if stats else 0.0,
        )

    def _default(self, intent: str, reason: str) -> ToolRecommendation:
        names = self.registry.names() if self.registry else []
        wanted = DEFAULT_TOOLS_BY_INTENT.get(intent)

        tool_name = ""
        if wanted:
            tool_name = next((n for n in names if wanted in n.lower()), "")
        if not tool_name and names:
            tool_name = names[0]

        return ToolRecommendation(
            tool_name=tool_name,
            confidence=0.3 if tool_name else 0.0,
            reasoning=f"Default selection (reason: {reason}, intent: {intent})",
            decision_strategy=STRATEGY_DEFAULT,
        )
