"""
Execution Harness

Wraps any Agent with a fixed sequence:
- Timing (always stamped, even on failure)
- Skip check (should_execute)
- Failure containment (no exception reaches the caller)
"""

import asyncio
import contextvars
import inspect
import logging
import time
from concurrent.futures import Executor
from typing import Optional

from .agent import Agent, should_execute
from .models import AgentContext, AgentResult

logger = logging.getLogger(__name__)


def _elapsed_ms(started: float) -> float:
    return max((time.perf_counter() - started) * 1000.0, 0.0)


class ExecutionHarness:
    """
    Runs agents and guarantees that every invocation yields an AgentResult
    whose agent_id matches the agent and whose execution_time_ms is >= 0.

    The harness imposes no timeout. asyncio.CancelledError is not contained so
    the orchestrator's watchdog can cut a hanging execution off.
    """

    def __init__(self, executor: Optional[Executor] = None):
        self._executor = executor

    async def run(self, agent: Agent, context: AgentContext) -> AgentResult:
        started = time.perf_counter()
        agent_id = agent.agent_id

        try:
            if not should_execute(agent, context):
                logger.debug("Agent %s skipped for tick %d", agent_id, context.tick_number)
                return self._stamp(AgentResult.skipped_for(agent_id), agent_id, started)

            result = await self._decide(agent, context)
            if not isinstance(result, AgentResult):
                raise TypeError(
                    f"decide() returned {type(result).__name__}, expected AgentResult"
                )
        except Exception as e:
            description = str(e) or type(e).__name__
            logger.error("Agent %s failed: %s", agent_id, description, exc_info=True)
            result = AgentResult.failure(agent_id, description)

        result = self._stamp(result, agent_id, started)
        logger.debug(
            "Agent %s completed in %.1fms (success=%s)",
            agent_id, result.execution_time_ms, result.success,
        )
        return result

    async def _decide(self, agent: Agent, context: AgentContext) -> AgentResult:
        if inspect.iscoroutinefunction(agent.decide):
            return await agent.decide(context)

        # Blocking decision logic runs on the worker pool; the copied context
        # keeps log correlation ids visible inside the worker thread.
        loop = asyncio.get_running_loop()
        call_context = contextvars.copy_context()
        result = await loop.run_in_executor(
            self._executor, call_context.run, agent.decide, context
        )
        if inspect.isawaitable(result):
            result = await result
        return result

    @staticmethod
    def _stamp(result: AgentResult, agent_id: str, started: float) -> AgentResult:
        actions = tuple(
            action.model_copy(update={"source_agent_id": agent_id})
            for action in result.actions
        )
        return result.model_copy(
            update={
                "agent_id": agent_id,
                "execution_time_ms": _elapsed_ms(started),
                "actions": actions,
            }
        )
