"""
Agent System
============

The agent is the orchestration core. It:
1. Receives user messages
2. Routes each query to a reasoning strategy
3. Assembles context (history, related earlier turns, tools)
4. Runs tools as the model requests them
5. Reflects on the answer before returning it
6. Records the outcome so tool choices improve over time

This module provides:
- Agent: Main agent class for processing requests
- HeuristicRouter / QueryClassifier: Strategy and intent detection
- ContextAssembler: Builds context for the LLM
- ToolExecutor: Runs requested tool calls in order
- ExperienceRecorder: Bounded background experience writer
"""

from learnloop.agent.core import Agent
from learnloop.agent.context import AssembledContext, ContextAssembler
from learnloop.agent.recorder import ExperienceRecorder
from learnloop.agent.router import HeuristicRouter, QueryClassifier, Strategy
from learnloop.agent.tools_executor import ToolCallResult, ToolExecutor

__all__ = [
    "Agent",
    "AssembledContext",
    "ContextAssembler",
    "ExperienceRecorder",
    "HeuristicRouter",
    "QueryClassifier",
    "Strategy",
    "ToolCallResult",
    "ToolExecutor",
]
