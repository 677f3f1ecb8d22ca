"""
network_agents - orchestration core for autonomous network agents.

Independently scheduled agents share one evolving context, run in parallel
under a watchdog, and propose actions that an external dispatcher executes.
"""

from .config import Config, get_config, reload_config
from .core import (
    ActionStatus,
    ActionType,
    Agent,
    AgentAction,
    AgentContext,
    AgentResult,
    ExecutionHarness,
    NetworkData,
    TelemetrySnapshot,
)
from .orchestration import ActionLedger, ExecutionHistory, Orchestrator, ResultAggregator, TickReport

__version__ = "0.1.0"
