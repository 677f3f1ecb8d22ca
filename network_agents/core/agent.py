"""
Agent contract

An agent is any object exposing the identity/scheduling attributes below and a
`decide(context)` method. Concrete agents are independent classes; they do not
inherit from a shared base. The execution harness wraps any of them.
"""

from typing import Awaitable, Protocol, Union, runtime_checkable

from .models import AgentContext, AgentResult


@runtime_checkable
class Agent(Protocol):
    """Protocol that every decision unit must implement."""
    agent_id: str
    name: str
    description: str
    priority: int
    enabled: bool
    execution_interval: float

    def decide(self, context: AgentContext) -> Union[AgentResult, Awaitable[AgentResult]]:
        """Agent-specific decision logic. Invoked only through the harness."""
        ...


def default_should_execute(agent: Agent, context: AgentContext) -> bool:
    """Default gating policy: an agent runs whenever it is enabled."""
    return bool(agent.enabled)


def should_execute(agent: Agent, context: AgentContext) -> bool:
    """Apply the agent's own gating when it defines one, the default policy otherwise."""
    gate = getattr(agent, "should_execute", None)
    if gate is None:
        return default_should_execute(agent, context)
    return bool(gate(context))


async def execute(agent: Agent, context: AgentContext) -> AgentResult:
    """Run `agent` against `context` inside the execution harness. Never raises."""
    from .harness import ExecutionHarness

    return await ExecutionHarness().run(agent, context)
