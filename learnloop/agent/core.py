"""
Agent Core
==========

The main agent class that orchestrates all operations.

The agent is the "brain" of the system. It:
1. Stores the user message in memory
2. Routes the query to a reasoning strategy
3. Runs the strategy (tool loop, chain-of-thought or a single call)
4. Checks the answer with self-reflection
5. Stores the answer and returns it
6. Queues an experience record so the learning components improve

Agent Loop:
    User Message
         │
         ▼
    Route (strategy + intent)
         │
         ├── simple ───► one LLM call ──► tool calls? ──► tool loop
         ├── cot ──────► step-by-step reasoning  (falls back to simple)
         └── tool_use ─► ReAct tool loop          (falls back to simple)
         │
         ▼
    Reflection: confidence below threshold and a correction
    available → the corrected answer replaces the provisional one
         │
         ▼
    Answer → memory, Experience → background recorder

Errors:
    ProviderError and MaxIterationsError abort the call and are raised
    to the caller, after a failure experience has been queued. A
    cancelled call (asyncio.CancelledError) records nothing. Reflection
    and learning problems are logged and never reach the caller.

Every collaborator is passed in or built once in the constructor;
nothing is created lazily.
"""

import time
import uuid
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from learnloop.agent.context import AssembledContext, ContextAssembler
from learnloop.agent.recorder import ExperienceRecorder
from learnloop.agent.router import HeuristicRouter, QueryClassifier, Strategy
from learnloop.agent.tools_executor import ToolExecutor
from learnloop.errors import LearningError, MaxIterationsError, ProviderError, ReasoningError, classify_error
from learnloop.learning.error_patterns import ErrorPattern, ErrorPatternAnalyzer
from learnloop.learning.experience import Experience, ExperienceFilters, ExperienceStore
from learnloop.learning.report import LearningReport, build_learning_report
from learnloop.learning.tool_selector import ToolRecommendation, ToolSelector, ToolStats
from learnloop.memory.base import DocumentStore, Memory, SemanticMemory
from learnloop.memory.long_term import VectorMemory
from learnloop.memory.short_term import BufferMemory, Message
from learnloop.providers.base import ChatOptions, LLMProvider, LLMResponse
from learnloop.reasoning.cot import ChainOfThought
from learnloop.reasoning.planner import Plan, PlanProgress, Planner
from learnloop.reasoning.react import LoopResult, ReActStrategy, ToolLoop, call_provider
from learnloop.reasoning.reflection import ReflectionResult, Reflector
from learnloop.tools import Tool, ToolCall, ToolRegistry
from learnloop.utils.config import AgentConfig, LearningConfig
from learnloop.utils.logger import Logger, log_iteration, log_response, log_user_message

logger = Logger("Agent")

CORRECTION_MARKER = "[CORRECTED via reflection]"
STREAM_MODE = "stream"


@dataclass
class _CallTrace:
    """What happened during one chat call, for the experience record."""
    strategy: str
    intent: str
    tool_call: ToolCall | None = None
    tokens_used: int = 0
    was_reflected: bool = False
    was_corrected: bool = False
    confidence: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def absorb(self, result: LoopResult) -> None:
        self.tokens_used += result.tokens_used
        self.metadata["iterations"] = result.iterations
        self.tool_call = result.last_tool_call() or self.tool_call


def _tokens(response: LLMResponse) -> int:
    return int(response.metadata.get("tokens_used", 0) or 0)


class Agent:
    """
    The main agent that processes user requests.

    The agent coordinates:
    - Query routing and intent detection
    - Reasoning strategies and tool execution
    - Self-reflection on answers
    - Goal planning and step-by-step plan execution
    - Memory and experience recording

    Example:
        agent = Agent(
            provider=OpenAIProvider(api_key="sk-..."),
            registry=ToolRegistry([calculator]),
            memory=VectorMemory(EmbeddingGenerator(api_key="sk-...")),
        )

        answer = await agent.chat("What is 15 * 23?")

        async for chunk in agent.chat_stream("And times 2?"):
            print(chunk, end="")

        report = await agent.get_learning_report()
        await agent.aclose()
    """

    def __init__(
        self,
        provider: LLMProvider,
        registry: ToolRegistry | None = None,
        memory: Memory | None = None,
        config: AgentConfig | None = None,
        learning_config: LearningConfig | None = None,
        router: QueryClassifier | None = None,
        reflector: Reflector | None = None,
        cot: ChainOfThought | None = None,
        planner: Planner | None = None,
        experience_store: ExperienceStore | None = None,
        tool_selector: ToolSelector | None = None,
        error_analyzer: ErrorPatternAnalyzer | None = None,
        recorder: ExperienceRecorder | None = None
    ):
        """
        Initialize the agent.

        Args:
            provider: The language model
            registry: Tools the model may call (empty if omitted)
            memory: Conversation memory (a BufferMemory if omitted)
            config: Agent behaviour settings
            learning_config: Tool selection, pattern and recorder settings
            router: Strategy and intent classifier
            reflector: Replaces the reflector built from the config
            cot: Replaces the chain-of-thought engine built from the config
            planner: Replaces the task planner
            experience_store: Where experiences go; defaults to the memory
                when it can store documents
            tool_selector: Replaces the selector built from learning_config
            error_analyzer: Replaces the analyzer built from learning_config
            recorder: Replaces the background recorder
        """
        self.config = config or AgentConfig()
        self.learning_config = learning_config or LearningConfig()
        lc = self.learning_config

        self.provider = provider
        self.registry = registry if registry is not None else ToolRegistry()
        self.memory = memory if memory is not None else BufferMemory()
        self.router = router or HeuristicRouter()
        self.conversation_id = uuid.uuid4().hex

        # Reasoning
        self.executor = ToolExecutor(self.registry)
        self.loop = ToolLoop(self.provider, self.executor, self.memory, self.config.max_iterations)
        self.react = ReActStrategy(self.loop)
        self.cot = cot or ChainOfThought(self.provider, self.config.cot_max_steps)
        if reflector is None and self.config.enable_reflection:
            reflector = Reflector(self.provider, self.registry, self.memory, self.config.min_confidence)
        self.reflector = reflector
        self.planner = planner or Planner(self.provider, self.memory)

        self.context = ContextAssembler(
            self.memory,
            self.registry,
            system_prompt=self.config.system_prompt,
            semantic_limit=self.config.semantic_context_limit,
        )

        # Learning
        if experience_store is None:
            backing = self.memory if isinstance(self.memory, DocumentStore) else None
            experience_store = ExperienceStore(backing)
        self.experience_store = experience_store
        self.tool_selector = tool_selector or ToolSelector(
            self.experience_store,
            self.registry,
            exploration_rate=lc.exploration_rate,
            min_sample_size=lc.min_sample_size,
            success_weight=lc.success_weight,
            latency_weight=lc.latency_weight,
            max_untried=lc.max_untried_tools,
        )
        self.error_analyzer = error_analyzer or ErrorPatternAnalyzer(
            self.experience_store,
            min_cluster_size=lc.min_cluster_size,
            similarity_threshold=lc.similarity_threshold,
            min_confidence=lc.pattern_min_confidence,
            max_patterns=lc.max_patterns,
            max_failures=lc.max_failures,
            ttl_seconds=lc.pattern_ttl_seconds,
        )
        self.recorder = recorder or ExperienceRecorder(
            self.experience_store,
            queue_size=lc.recorder_queue_size,
            workers=lc.recorder_workers,
            policy=lc.recorder_policy,
        )
        self.last_experience_id: str | None = None

        logger.info(
            f"Agent initialized ({len(self.registry)} tools, "
            f"memory: {self._memory_type()}, "
            f"learning: {'on' if self.learning_enabled else 'off'})"
        )

    @property
    def learning_enabled(self) -> bool:
        return self.config.enable_learning and self.experience_store.available

    # ==========================================================================
    # Chat
    # ==========================================================================

    async def chat(self, message: str) -> str:
        """
        Answer a user message.

        Returns:
            The final answer

        Raises:
            ProviderError: If an LLM call failed
            MaxIterationsError: If the tool loop ran out of iterations
            asyncio.CancelledError: If the call was cancelled
        """
        log_user_message(logger, message)
        start = time.perf_counter()

        await self.memory.add(Message(role="user", content=message))

        strategy = self.router.route(message, tools_available=len(self.registry) > 0)
        trace = _CallTrace(strategy=strategy.value, intent=self.router.detect_intent(message))
        logger.debug(f"Strategy: {trace.strategy}, intent: {trace.intent}")

        try:
            context = await self.context.assemble(message)
            answer = await self._run_strategy(strategy, context, trace)

            if self.reflector is not None:
                answer = await self._reflect(message, answer, trace)

            await self.memory.add(Message(role="assistant", content=answer))
        except Exception as e:
            logger.error(f"Chat failed ({trace.strategy})", e)
            await self._record(message, trace, start, error=e)
            raise

        log_response(logger, answer)
        await self._record(message, trace, start, answer=answer)
        return answer

    async def _run_strategy(self, strategy: Strategy, context: AssembledContext, trace: _CallTrace) -> str:
        options = context.to_options(self.config.temperature, self.config.max_tokens)

        if strategy == Strategy.COT:
            try:
                result = await self.cot.reason(context.messages, options)
                trace.tokens_used += result.tokens_used
                trace.metadata["reasoning_steps"] = len(result.steps)
                return result.answer
            except ReasoningError as e:
                logger.warning(f"Chain-of-thought failed, falling back to simple: {e}")

        elif strategy == Strategy.TOOL_USE:
            try:
                result = await self.react.run(context.messages, options)
                trace.absorb(result)
                return result.answer
            except ReasoningError as e:
                logger.warning(f"ReAct failed, falling back to simple: {e}")

        if strategy != Strategy.SIMPLE:
            trace.metadata["fallback_from"] = trace.strategy
            trace.strategy = Strategy.SIMPLE.value
        return await self._run_simple(context.messages, options, trace)

    async def _run_simple(self, messages: list[Message], options: ChatOptions, trace: _CallTrace) -> str:
        """One call; if the model asks for tools, continue in the tool loop."""
        response = await call_provider(self.provider, messages, options)
        trace.tokens_used += _tokens(response)

        if not response.tool_calls:
            return response.content

        result = await self.loop.run(messages, options, first_response=response)
        trace.absorb(result)
        return result.answer

    async def _reflect(self, question: str, answer: str, trace: _CallTrace) -> str:
        try:
            result = await self.reflector.reflect(question, answer)
        except Exception as e:
            logger.warning(f"Reflection failed, using unreflected answer: {e}")
            return answer

        trace.was_reflected = True
        trace.confidence = result.confidence

        if result.confidence >= self.reflector.threshold:
            logger.debug(f"High confidence ({result.confidence:.2f})")
            return answer

        logger.warning(f"Low confidence ({result.confidence:.2f} < {self.reflector.threshold:.2f})")
        if not result.was_corrected:
            return answer

        logger.info("Using corrected answer")
        trace.was_corrected = True
        await self.memory.add(Message(
            role="assistant",
            content=f"{CORRECTION_MARKER} {result.final_answer}",
            metadata={"reflection": True, "confidence": result.confidence},
        ))
        return result.final_answer

    async def chat_with_reflection(self, message: str, min_confidence: float | None = None) -> ReflectionResult:
        """
        Answer a message, then reflect on the answer and return the full
        reflection for inspection.

        Raises:
            ProviderError: If an LLM call failed
            MaxIterationsError: If the tool loop ran out of iterations
        """
        answer = await self.chat(message)
        reflector = self.reflector or Reflector(
            self.provider, self.registry, self.memory, self.config.min_confidence
        )
        threshold = min_confidence if min_confidence is not None else reflector.threshold

        try:
            result = await reflector.reflect(message, answer)
        except Exception as e:
            logger.warning(f"Reflection failed, returning initial answer: {e}")
            return ReflectionResult(confidence=0.5, initial_answer=answer, final_answer=answer)

        if result.confidence < threshold and not result.was_corrected:
            logger.warning(f"Confidence {result.confidence:.2f} below {threshold:.2f}, answer uncertain")
        return result

    # ==========================================================================
    # Planning
    # ==========================================================================

    async def plan(self, goal: str) -> Plan:
        """
        Break a goal into dependency-ordered steps.

        Raises:
            ProviderError: If the LLM call failed
            ReasoningError: If the model did not return a usable plan
        """
        logger.info(f"Creating plan for goal: {goal}")
        return await self.planner.decompose(goal)

    async def execute_plan(self, plan: Plan) -> Plan:
        """
        Run each step of the plan through chat(), in dependency order.

        Each step is a normal chat call, so it is routed, reflected on and
        recorded like any other message.

        Raises:
            Whatever chat() raised for the failing step
        """
        return await self.planner.execute(plan, self.chat)

    def plan_progress(self, plan: Plan) -> PlanProgress:
        return self.planner.progress(plan)

    # ==========================================================================
    # Streaming
    # ==========================================================================

    async def chat_stream(self, message: str) -> AsyncIterator[str]:
        """
        Answer a user message as a stream of text chunks.

        Tool calls that arrive with a streamed reply are executed and
        written to memory exactly as in chat(), and streaming resumes
        with the next reply. Reflection is not applied: the text has
        already been delivered.

        Raises:
            ProviderError: If a stream failed
            MaxIterationsError: If the tool loop ran out of iterations
        """
        log_user_message(logger, message)
        start = time.perf_counter()

        await self.memory.add(Message(role="user", content=message))
        trace = _CallTrace(strategy=STREAM_MODE, intent=self.router.detect_intent(message))

        try:
            context = await self.context.assemble(message)
            options = context.to_options(self.config.temperature, self.config.max_tokens)
            messages = context.messages
            result = LoopResult(answer="")

            for iteration in range(1, self.config.max_iterations + 1):
                log_iteration(logger, iteration, self.config.max_iterations)
                result.iterations = iteration

                parts: list[str] = []
                tool_calls: list[ToolCall] = []
                async with aclosing(self.provider.stream(messages, options)) as stream:
                    while True:
                        try:
                            chunk = await stream.__anext__()
                        except StopAsyncIteration:
                            break
                        except ProviderError:
                            raise
                        except Exception as e:
                            raise ProviderError(f"LLM stream failed: {e}", e) from e

                        if chunk.content:
                            parts.append(chunk.content)
                            yield chunk.content
                        if chunk.tool_calls:
                            tool_calls = list(chunk.tool_calls)
                        result.tokens_used += int(chunk.metadata.get("tokens_used", 0) or 0)

                if not tool_calls:
                    result.answer = "".join(parts)
                    break

                assistant = Message(role="assistant", content="".join(parts), tool_calls=tool_calls)
                await self.memory.add(assistant)
                messages.append(assistant)
                result.turns.append(assistant)

                for outcome in await self.executor.execute_all(tool_calls):
                    turn = outcome.to_message()
                    await self.memory.add(turn)
                    messages.append(turn)
                    result.turns.append(turn)
            else:
                logger.warning(f"No final answer after {self.config.max_iterations} iterations")
                raise MaxIterationsError(self.config.max_iterations)

            trace.absorb(result)
            await self.memory.add(Message(role="assistant", content=result.answer))
        except Exception as e:
            logger.error("Streaming chat failed", e)
            await self._record(message, trace, start, error=e)
            raise

        log_response(logger, result.answer)
        await self._record(message, trace, start, answer=result.answer)

    # ==========================================================================
    # Experience recording
    # ==========================================================================

    def _experience(
        self,
        query: str,
        trace: _CallTrace,
        start: float,
        answer: str = "",
        error: BaseException | None = None
    ) -> Experience:
        success = error is None
        if trace.confidence is not None:
            confidence = trace.confidence
        else:
            confidence = 1.0 if success else 0.0

        return Experience(
            query=query,
            success=success,
            response=answer,
            error="" if success else (str(error) or type(error).__name__),
            error_type="" if success else classify_error(error),
            intent=trace.intent,
            reasoning_mode=trace.strategy,
            tool_called=trace.tool_call.name if trace.tool_call else "",
            arguments=dict(trace.tool_call.arguments) if trace.tool_call else {},
            latency_ms=int((time.perf_counter() - start) * 1000),
            confidence=confidence,
            was_reflected=trace.was_reflected,
            was_corrected=trace.was_corrected,
            conversation_id=self.conversation_id,
            tokens_used=trace.tokens_used,
            metadata=dict(trace.metadata),
        )

    async def _record(
        self,
        query: str,
        trace: _CallTrace,
        start: float,
        answer: str = "",
        error: BaseException | None = None
    ) -> None:
        if not self.learning_enabled:
            return

        try:
            experience = self._experience(query, trace, start, answer, error)
            if await self.recorder.submit(experience):
                self.last_experience_id = experience.id
        except Exception as e:
            logger.warning(f"Could not queue experience: {e}")

    async def flush_learning(self) -> None:
        """Wait until every queued experience has been written."""
        await self.recorder.drain()

    async def give_feedback(self, experience_id: str, rating: int, correction: str | None = None) -> bool:
        """
        Rate a past answer (-1, 0 or 1), optionally with the right answer.

        Returns:
            False if the feedback could not be stored
        """
        await self.recorder.drain()
        try:
            await self.experience_store.add_feedback(experience_id, rating, correction or "")
        except LearningError as e:
            logger.warning(f"Feedback not stored: {e}")
            return False

        logger.info(f"Feedback {rating:+d} stored for {experience_id}")
        return True

    # ==========================================================================
    # Learning queries
    # ==========================================================================

    async def get_tool_recommendation(self, query: str, intent: str | None = None) -> ToolRecommendation:
        """Recommend a tool; the intent is detected from the query when omitted."""
        return await self.tool_selector.recommend(query, intent or self.router.detect_intent(query))

    async def get_tool_stats(self, tool: str, intent: str) -> ToolStats | None:
        """
        Raises:
            LearningError: If the experience store could not be read
        """
        return await self.tool_selector.get_stats(tool, intent)

    async def get_error_patterns(self) -> list[ErrorPattern]:
        try:
            return await self.error_analyzer.get_patterns()
        except LearningError as e:
            logger.warning(f"Error patterns unavailable: {e}")
            return []

    async def suggest_correction(self, query: str, error_message: str) -> ErrorPattern | None:
        try:
            return await self.error_analyzer.suggest_correction(query, error_message)
        except LearningError as e:
            logger.warning(f"No correction available: {e}")
            return None

    async def get_learning_report(self) -> LearningReport:
        """Summary of everything recorded so far."""
        try:
            experiences = await self.experience_store.query(ExperienceFilters())
        except LearningError as e:
            logger.warning(f"Experiences unavailable for report: {e}")
            experiences = []

        patterns = await self.get_error_patterns() if experiences else []
        return build_learning_report(experiences, patterns, self.learning_config.min_sample_size)

    # ==========================================================================
    # Conversation and tools
    # ==========================================================================

    async def get_history(self, limit: int = 0) -> list[Message]:
        return await self.memory.get_history(limit)

    async def reset(self) -> None:
        """Clear the conversation and start a new one."""
        await self.memory.clear()
        self.conversation_id = uuid.uuid4().hex
        logger.info(f"Conversation reset ({self.conversation_id})")

    def add_tool(self, tool: Tool) -> None:
        """
        Raises:
            ValueError: If a tool with this name already exists
        """
        self.registry.register(tool)

    def remove_tool(self, name: str) -> bool:
        return self.registry.unregister(name)

    def tool_count(self) -> int:
        return len(self.registry)

    # ==========================================================================
    # Status and lifecycle
    # ==========================================================================

    def _memory_type(self) -> str:
        if isinstance(self.memory, VectorMemory):
            return "vector"
        if isinstance(self.memory, BufferMemory):
            return "buffer"
        if isinstance(self.memory, SemanticMemory):
            return "semantic"
        return "custom"

    def status(self) -> dict[str, Any]:
        """A snapshot of configuration, capabilities and learning state."""
        memory_stats = self.memory.stats() if hasattr(self.memory, "stats") else {}
        return {
            "configuration": {
                "system_prompt": self.config.system_prompt,
                "temperature": self.config.temperature,
                "max_tokens": self.config.max_tokens,
                "max_iterations": self.config.max_iterations,
                "min_confidence": self.config.min_confidence,
                "enable_reflection": self.config.enable_reflection,
                "enable_learning": self.config.enable_learning,
            },
            "reasoning": {
                "router": type(self.router).__name__,
                "cot_available": self.cot is not None,
                "react_available": True,
                "reflection_available": self.reflector is not None,
                "planner_available": self.planner is not None,
            },
            "tools": {
                "total_count": len(self.registry),
                "names": self.registry.names(),
            },
            "memory": {
                "type": self._memory_type(),
                "message_count": self.memory.size(),
                "supports_search": isinstance(self.memory, SemanticMemory),
                "stats": memory_stats,
            },
            "learning": {
                "enabled": self.learning_enabled,
                "experience_store_ready": self.experience_store.available,
                "exploration_rate": self.tool_selector.exploration_rate,
                "recorder": self.recorder.stats(),
                "patterns": self.error_analyzer.get_pattern_stats(),
            },
            "provider": type(self.provider).__name__,
            "conversation_id": self.conversation_id,
        }

    async def aclose(self) -> None:
        """Write pending experiences and stop the background recorder."""
        await self.recorder.close()
        logger.info("Agent closed")
