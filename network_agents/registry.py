"""
Agent Registry and Factory

Maps agent ids to factories so deployments can pick the agents they run by
id, and plugins can add their own without touching the orchestrator.
"""

import importlib
import logging
from typing import Callable, Dict, List, Optional

from .agents.decision_engine import DecisionEngine
from .config import get_config
from .core.agent import Agent

logger = logging.getLogger(__name__)

AgentFactory = Callable[..., Agent]


class AgentRegistry:
    """
    Registry of agent factories.

    A factory is any callable (usually the agent class) that accepts the agent
    id as first argument plus keyword arguments.
    """

    def __init__(self):
        self._factories: Dict[str, AgentFactory] = {}

    def register(self, agent_id: str, factory: AgentFactory) -> None:
        """Register a factory under the given ID."""
        if agent_id in self._factories:
            logger.warning(f"Overwriting existing agent registration: {agent_id}")
        self._factories[agent_id] = factory
        logger.info(f"Registered agent: {agent_id} -> {getattr(factory, '__name__', repr(factory))}")

    def unregister(self, agent_id: str) -> None:
        if agent_id in self._factories:
            del self._factories[agent_id]
            logger.info(f"Unregistered agent: {agent_id}")

    def get(self, agent_id: str) -> Optional[AgentFactory]:
        return self._factories.get(agent_id)

    def create(self, agent_id: str, **kwargs) -> Agent:
        """
        Create an agent instance by ID.

        Args:
            agent_id: The agent identifier
            **kwargs: Additional arguments passed to the factory

        Returns:
            An instantiated agent

        Raises:
            ValueError: If agent_id is not registered
        """
        factory = self.get(agent_id)
        if factory is None:
            raise ValueError(f"Agent not registered: {agent_id}")
        return factory(agent_id, **kwargs)

    def list_agents(self) -> List[str]:
        """List all registered agent IDs."""
        return list(self._factories.keys())

    def load_from_module(self, module_path: str, factories: Dict[str, str]) -> None:
        """
        Dynamically load agent factories from a module.

        Args:
            module_path: Python module path (e.g., 'my_plugins.agents')
            factories: agent id -> attribute name of the factory in the module
        """
        try:
            module = importlib.import_module(module_path)
        except ImportError as e:
            logger.error(f"Failed to load module {module_path}: {e}")
            raise

        for agent_id, attribute in factories.items():
            factory = getattr(module, attribute, None)
            if factory is None:
                logger.warning(f"Factory not found in {module_path}: {attribute}")
                continue
            self.register(agent_id, factory)


# Global registry instance
_registry: Optional[AgentRegistry] = None


def get_registry() -> AgentRegistry:
    """Get the global agent registry instance."""
    global _registry
    if _registry is None:
        _registry = AgentRegistry()
    return _registry


def register_agent(agent_id: str, factory: AgentFactory) -> None:
    """Convenience function to register an agent in the global registry."""
    get_registry().register(agent_id, factory)


def create_agent(agent_id: str, **kwargs) -> Agent:
    """Convenience function to create an agent from the global registry."""
    return get_registry().create(agent_id, **kwargs)


def load_builtin_agents(registry: Optional[AgentRegistry] = None) -> AgentRegistry:
    """Register the built-in network agents."""
    from .agents import (
        DeviceManagementAgent,
        EmergencyConnectivityAgent,
        LocationVerificationAgent,
        NetworkMonitoringAgent,
        QosOptimizationAgent,
    )
    from .agents import (
        device_management,
        emergency_connectivity,
        location_verification,
        network_monitoring,
        qos_optimization,
    )

    registry = registry or get_registry()
    registry.register(emergency_connectivity.AGENT_ID, EmergencyConnectivityAgent)
    registry.register(network_monitoring.AGENT_ID, NetworkMonitoringAgent)
    registry.register(qos_optimization.AGENT_ID, QosOptimizationAgent)
    registry.register(location_verification.AGENT_ID, LocationVerificationAgent)
    registry.register(device_management.AGENT_ID, DeviceManagementAgent)
    logger.info("Loaded built-in network agents")
    return registry


def create_default_agents(decision_engine: Optional[DecisionEngine] = None) -> List[Agent]:
    """
    Build one instance of every built-in agent sharing one DecisionEngine.

    The engine defaults to the configured confidence threshold.
    """
    from .agents import (
        DeviceManagementAgent,
        EmergencyConnectivityAgent,
        LocationVerificationAgent,
        NetworkMonitoringAgent,
        QosOptimizationAgent,
    )

    if decision_engine is None:
        decision_engine = DecisionEngine(get_config().decision_engine.confidence_threshold)

    return [
        EmergencyConnectivityAgent(),
        NetworkMonitoringAgent(),
        QosOptimizationAgent(decision_engine=decision_engine),
        LocationVerificationAgent(decision_engine=decision_engine),
        DeviceManagementAgent(decision_engine=decision_engine),
    ]
