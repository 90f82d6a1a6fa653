"""
Learning System
===============

How the agent improves from its own history:

1. EXPERIENCES: every finished chat call is recorded (ExperienceStore)
2. TOOL SELECTION: an ε-greedy bandit recommends tools per intent
   from those records (ToolSelector)
3. ERROR PATTERNS: recurring failures are clustered into patterns with
   suggested corrections (ErrorPatternAnalyzer)
4. REPORTING: an aggregate view of progress (build_learning_report)

Usage:
    from learnloop.learning import ExperienceStore, ToolSelector

    store = ExperienceStore(vector_memory)
    selector = ToolSelector(store, registry)
    recommendation = await selector.recommend("what is 2^10", "calculation")
"""

from learnloop.learning.experience import (
    Experience,
    ExperienceFilters,
    ExperienceStore,
    new_experience_id,
)
from learnloop.learning.tool_selector import ToolRecommendation, ToolSelector, ToolStats
from learnloop.learning.error_patterns import ErrorCluster, ErrorPattern, ErrorPatternAnalyzer
from learnloop.learning.report import LearningReport, build_learning_report

__all__ = [
    "ErrorCluster",
    "ErrorPattern",
    "ErrorPatternAnalyzer",
    "Experience",
    "ExperienceFilters",
    "ExperienceStore",
    "LearningReport",
    "ToolRecommendation",
    "ToolSelector",
    "ToolStats",
    "build_learning_report",
    "new_experience_id",
]
