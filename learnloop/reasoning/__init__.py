"""
Reasoning Strategies
====================

How the agent turns a conversation into an answer:

- ToolLoop / ReActStrategy: bounded think → act → observe loop with tools
- ChainOfThought: numbered reasoning steps in one LLM call, no tools
- Reflector: post-hoc confidence scoring and correction of an answer
- Planner: goal decomposition into dependency-ordered steps
"""

from learnloop.reasoning.cot import ChainOfThought, ChainOfThoughtResult, ReasoningStep
from learnloop.reasoning.planner import Plan, PlanProgress, PlanStatus, PlanStep, Planner
from learnloop.reasoning.react import LoopResult, ReActStrategy, ToolLoop, call_provider
from learnloop.reasoning.reflection import ReflectionResult, Reflector, Verification

__all__ = [
    "ChainOfThought",
    "ChainOfThoughtResult",
    "LoopResult",
    "Plan",
    "PlanProgress",
    "PlanStatus",
    "PlanStep",
    "Planner",
    "ReActStrategy",
    "ReasoningStep",
    "ReflectionResult",
    "Reflector",
    "ToolLoop",
    "Verification",
    "call_provider",
]
