"""
Task Planner
============

Breaks a goal into ordered steps and runs them one at a time.

The model is asked for a JSON plan:

    {"steps": [
        {"id": "step-1", "description": "Collect the figures", "dependencies": []},
        {"id": "step-2", "description": "Summarize them", "dependencies": ["step-1"]}
    ]}

Execution repeatedly picks the first pending step whose dependencies have
all completed and hands its description to a step runner (the Agent uses
its own chat()). A failing step fails the plan and stops execution. Steps
whose dependencies can never complete stay pending and the plan stays in
progress.

Usage:
    planner = Planner(provider, memory)

    plan = await planner.decompose("Prepare the weekly sales report")
    await planner.execute(plan, agent.chat)
    print(planner.progress(plan).fraction)
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable

from learnloop.errors import ReasoningError
from learnloop.memory.base import Memory
from learnloop.memory.short_term import Message
from learnloop.providers.base import ChatOptions, LLMProvider
from learnloop.reasoning.react import call_provider
from learnloop.utils.logger import Logger

logger = Logger("Agent").child("Planner")

PLAN_PROMPT = """You are a task planning expert. Break down this complex goal into clear, sequential steps.

Goal: {goal}

Requirements:
1. Create 3-7 concrete, actionable steps
2. Each step should be specific and measurable
3. Steps should be in logical execution order
4. Identify dependencies between steps (which steps must complete before others)
5. Make steps atomic (each should accomplish one clear thing)

Respond in JSON format:
{{
  "steps": [
    {{"id": "step-1", "description": "Clear description of what to do", "dependencies": []}},
    {{"id": "step-2", "description": "Another step", "dependencies": ["step-1"]}}
  ]
}}

Only return valid JSON, no additional text."""

StepRunner = Callable[[str], Awaitable[Any]]


class PlanStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class PlanStep:
    """One step of a plan and its execution state."""
    id: str
    description: str
    dependencies: list[str] = field(default_factory=list)
    status: PlanStatus = PlanStatus.PENDING
    result: Any = None
    error: str = ""
    started_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass
class Plan:
    goal: str
    steps: list[PlanStep]
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: PlanStatus = PlanStatus.PENDING
    created_at: datetime = field(default_factory=datetime.now)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def format(self) -> str:
        """Human-readable plan, one numbered line per step."""
        lines = [f"Plan: {self.goal}", "Steps:"]
        for i, step in enumerate(self.steps, 1):
            line = f"{i}. [{step.status.value}] {step.description}"
            if step.dependencies:
                line += f" (depends on: {', '.join(step.dependencies)})"
            lines.append(line)
        return "\n".join(lines)


@dataclass
class PlanProgress:
    total_steps: int
    completed_steps: int = 0
    failed_steps: int = 0
    current_step: PlanStep | None = None

    @property
    def fraction(self) -> float:
        return self.completed_steps / self.total_steps if self.total_steps else 0.0


class Planner:
    """
    Goal decomposition and dependency-ordered execution.

    Example:
        planner = Planner(provider, memory)
        plan = await planner.decompose("Migrate the blog to a new host")
        for step in plan.steps:
            print(step.id, step.description, step.dependencies)
    """

    def __init__(
        self,
        provider: LLMProvider,
        memory: Memory | None = None,
        temperature: float = 0.3,
        max_tokens: int = 1500
    ):
        self.provider = provider
        self.memory = memory
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def decompose(self, goal: str) -> Plan:
        """
        Ask the model for a plan for the goal.

        Raises:
            ProviderError: If the LLM call failed
            ReasoningError: If the reply is not a plan with at least one step
        """
        logger.info("Decomposing goal into tasks...")
        options = ChatOptions(temperature=self.temperature, max_tokens=self.max_tokens)
        response = await call_provider(
            self.provider,
            [Message(role="user", content=PLAN_PROMPT.format(goal=goal))],
            options,
        )

        plan = Plan(goal=goal, steps=self.parse(response.content))
        logger.info(f"Created plan with {len(plan.steps)} steps")
        for i, step in enumerate(plan.steps, 1):
            logger.debug(f"  {i}. {step.description} (dependencies: {', '.join(step.dependencies) or 'none'})")

        await self._remember(f"Created plan for goal: {goal}\n\n{plan.format()}", plan)
        return plan

    def parse(self, content: str) -> list[PlanStep]:
        data = _load_json(content)

        raw_steps = data.get("steps") if isinstance(data, dict) else None
        if not isinstance(raw_steps, list) or not raw_steps:
            raise ReasoningError("plan has no steps")

        steps = []
        for i, raw in enumerate(raw_steps, 1):
            if not isinstance(raw, dict) or not str(raw.get("description", "")).strip():
                raise ReasoningError(f"plan step {i} has no description")
            steps.append(PlanStep(
                id=str(raw.get("id") or f"step-{i}"),
                description=str(raw["description"]).strip(),
                dependencies=[str(d) for d in raw.get("dependencies") or []],
            ))
        return steps

    async def execute(self, plan: Plan, run_step: StepRunner) -> Plan:
        """
        Run the plan's steps in dependency order.

        Args:
            plan: The plan; its steps and status are updated in place
            run_step: Called with each step's description, returns its result

        Raises:
            Exception: Whatever the failing step raised, after the step
                and the plan were marked failed
        """
        logger.info(f"Starting plan execution: {plan.goal}")
        plan.status = PlanStatus.IN_PROGRESS
        plan.started_at = datetime.now()
        completed: set[str] = set()

        while (step := self._next_step(plan, completed)) is not None:
            logger.info(f"Executing step: {step.description}")
            step.status = PlanStatus.IN_PROGRESS
            step.started_at = datetime.now()

            try:
                step.result = await run_step(step.description)
            except Exception as e:
                step.completed_at = datetime.now()
                step.status = PlanStatus.FAILED
                step.error = str(e) or type(e).__name__
                plan.status = PlanStatus.FAILED
                logger.error(f"Step {step.id} failed", e)
                raise

            step.completed_at = datetime.now()
            step.status = PlanStatus.COMPLETED
            completed.add(step.id)
            logger.info(f"Step completed: {step.description}")

        done = (PlanStatus.COMPLETED, PlanStatus.SKIPPED)
        if all(step.status in done for step in plan.steps):
            plan.status = PlanStatus.COMPLETED
            plan.completed_at = datetime.now()
            duration = (plan.completed_at - plan.started_at).total_seconds()
            logger.info("Plan completed successfully!")
            await self._remember(f"Completed plan: {plan.goal}\n\nDuration: {duration:.1f}s", plan)
        else:
            blocked = sum(1 for step in plan.steps if step.status == PlanStatus.PENDING)
            logger.warning(f"{blocked} step(s) blocked by unmet dependencies")

        return plan

    def _next_step(self, plan: Plan, completed: set[str]) -> PlanStep | None:
        for step in plan.steps:
            if step.status == PlanStatus.PENDING and all(d in completed for d in step.dependencies):
                return step
        return None

    def progress(self, plan: Plan) -> PlanProgress:
        progress = PlanProgress(total_steps=len(plan.steps))
        for step in plan.steps:
            if step.status == PlanStatus.COMPLETED:
                progress.completed_steps += 1
            elif step.status == PlanStatus.FAILED:
                progress.failed_steps += 1
            elif step.status == PlanStatus.IN_PROGRESS:
                progress.current_step = step
        return progress

    async def _remember(self, content: str, plan: Plan) -> None:
        if self.memory is None:
            return
        try:
            await self.memory.add(Message(role="assistant", content=content, metadata={"plan_id": plan.id}))
        except Exception as e:
            logger.warning(f"Failed to store plan in memory: {e}")


def _load_json(content: str) -> Any:
    """Parse a JSON reply, tolerating code fences and surrounding prose."""
    text = content.strip()
    text = text.removeprefix("```json").removeprefix("```").removesuffix("```").strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    start, end = text.find("{"), text.rfind("}")
    if start < 0 or end <= start:
        raise ReasoningError(f"no JSON plan found in response: {content[:200]}")
    try:
        return json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        raise ReasoningError(f"could not parse plan JSON: {e}") from e
