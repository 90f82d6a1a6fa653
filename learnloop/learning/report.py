"""
Learning Report
===============

A summary of what the agent has learned so far, built from the recorded
experiences (and, when available, the detected error patterns).

Stages by number of experiences:
    < 5   exploring
    < 20  learning
    else  expert

The agent is considered ready for production once it has at least 10
experiences and an overall success rate of at least 85%.
"""

from collections import Counter
from dataclasses import dataclass, field

from learnloop.learning.error_patterns import ErrorPattern
from learnloop.learning.experience import Experience
from learnloop.learning.tool_selector import ToolStats

READY_SUCCESS_RATE = 0.85
READY_MIN_EXPERIENCES = 10


@dataclass
class LearningReport:
    total_experiences: int
    learning_stage: str
    overall_success_rate: float
    ready_for_production: bool
    top_performing_tools: list[str] = field(default_factory=list)
    problematic_tools: list[str] = field(default_factory=list)
    knowledge_areas: dict[str, int] = field(default_factory=dict)
    tool_performance: dict[str, ToolStats] = field(default_factory=dict)
    error_patterns: int = 0
    insights: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def learning_stage(total: int) -> str:
    if total < 5:
        return "exploring"
    if total < 20:
        return "learning"
    return "expert"


def build_learning_report(
    experiences: list[Experience],
    patterns: list[ErrorPattern] | None = None,
    min_sample_size: int = 3
) -> LearningReport:
    """Aggregate experiences into a LearningReport."""
    total = len(experiences)
    successes = sum(1 for e in experiences if e.success)
    success_rate = successes / total if total else 0.0

    grouped: dict[tuple[str, str], list[Experience]] = {}
    for exp in experiences:
        if exp.tool_called:
            grouped.setdefault((exp.tool_called, exp.intent), []).append(exp)

    performance: dict[str, ToolStats] = {}
    for (tool, intent), exps in grouped.items():
        stats = ToolStats.from_experiences(tool, intent, exps)
        if stats:
            performance[f"{tool}:{intent}"] = stats

    sampled = [s for s in performance.values() if s.total_calls >= min_sample_size]
    ranked = sorted(sampled, key=lambda s: (s.success_rate, s.total_calls), reverse=True)
    top = [f"{s.tool} ({s.intent})" for s in ranked if s.success_rate >= 0.8][:3]
    problematic = [f"{s.tool} ({s.intent})" for s in reversed(ranked) if s.success_rate < 0.5][:3]

    areas = dict(Counter(e.intent or "unknown" for e in experiences).most_common())

    report = LearningReport(
        total_experiences=total,
        learning_stage=learning_stage(total),
        overall_success_rate=success_rate,
        ready_for_production=success_rate >= READY_SUCCESS_RATE and total >= READY_MIN_EXPERIENCES,
        top_performing_tools=top,
        problematic_tools=problematic,
        knowledge_areas=areas,
        tool_performance=performance,
        error_patterns=len(patterns or []),
    )

    if total == 0:
        report.insights.append("No experiences recorded yet")
        return report

    report.insights.append(
        f"Success rate {success_rate * 100:.0f}% over {total} interactions"
    )
    if areas:
        area, count = next(iter(areas.items()))
        report.insights.append(f"Most common request type: {area} ({count})")
    if top:
        report.insights.append(f"Most reliable: {', '.join(top)}")

    corrected = sum(1 for e in experiences if e.was_corrected)
    if corrected:
        report.insights.append(f"Reflection corrected {corrected} answer(s)")

    if success_rate < 0.5:
        report.warnings.append("Overall success rate is below 50%")
    if problematic:
        report.warnings.append(f"Frequently failing: {', '.join(problematic)}")
    for pattern in (patterns or [])[:3]:
        report.warnings.append(f"Recurring error: {pattern.description}")
    if not report.ready_for_production and total >= READY_MIN_EXPERIENCES:
        report.warnings.append(
            f"Not production ready: success rate below {READY_SUCCESS_RATE * 100:.0f}%"
        )

    return report
