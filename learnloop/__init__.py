"""
LearnLoop - A Self-Improving LLM Agent Core
===========================================

An agent orchestration loop that learns from its own history.

This package provides:
- Agent system that routes queries to simple, chain-of-thought or
  tool-using strategies, with self-reflection on answers
- Two-tier memory (recency buffer plus semantic vector index)
- Experience store recording the outcome of every interaction
- ε-greedy tool selection learned from those outcomes
- Error pattern detection with suggested corrections

Quick start:
    from learnloop.main import create_agent

    agent = create_agent()
    answer = await agent.chat("What is 15 * 23?")
"""

__version__ = "0.1.0"
