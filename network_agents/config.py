"""
Centralized Configuration Management for the orchestration core

Uses Pydantic Settings for type-safe environment variable loading.
Per-agent overrides can be supplied as nested variables, e.g.
AGENTS__QOS-OPTIMIZATION-AGENT__ENABLED=false.
"""

from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class OrchestratorConfig(BaseSettings):
    """Scheduling and worker pool configuration."""

    enabled: bool = Field(
        default=True,
        description="Global switch; when false no tick collects telemetry or runs agents"
    )
    tick_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Tick granularity of the orchestration loop"
    )
    agent_timeout_seconds: float = Field(
        default=20.0,
        gt=0,
        description="Watchdog bound of a single agent execution"
    )
    max_workers: int = Field(
        default=10,
        ge=1,
        description="Threads available to synchronous agents"
    )
    max_concurrent_agents: int = Field(
        default=10,
        ge=1,
        description="Maximum agents dispatched in one tick; the rest wait for the next tick"
    )
    shutdown_grace_seconds: float = Field(
        default=30.0,
        ge=0,
        description="Time stop() waits for an in-flight tick before cancelling it"
    )
    telemetry_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Bound of one telemetry pull; a slower pull skips the tick"
    )
    history_size: int = Field(
        default=100,
        ge=1,
        description="Results kept per subject in the execution history"
    )
    history_subjects: int = Field(
        default=1000,
        ge=1,
        description="Subjects kept in the execution history, least recently updated evicted first"
    )

    model_config = SettingsConfigDict(
        env_prefix="ORCHESTRATOR_",
        case_sensitive=False
    )


class DecisionEngineConfig(BaseSettings):
    """Tunables of the built-in rule engine."""

    confidence_threshold: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Minimum confidence before an agent proposes an action"
    )

    model_config = SettingsConfigDict(
        env_prefix="DECISION_ENGINE_",
        case_sensitive=False
    )


class ObservabilityConfig(BaseSettings):
    """Logging, metrics and tracing configuration."""

    service_name: str = Field(default="network-agents")
    log_level: str = Field(default="INFO", description="Logging level")
    json_logs: bool = Field(default=True, description="Emit structured JSON log lines")
    metrics_enabled: bool = Field(default=False, description="Expose Prometheus metrics over HTTP")
    metrics_port: int = Field(default=9464, description="Prometheus exporter port")
    tracing_enabled: bool = Field(default=False, description="Export OpenTelemetry spans")
    otlp_endpoint: str = Field(default="http://localhost:4317", description="OTLP gRPC endpoint")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v_upper

    model_config = SettingsConfigDict(
        env_prefix="OBSERVABILITY_",
        case_sensitive=False
    )


class AgentOverride(BaseModel):
    """Runtime configuration surface of one agent. Unset fields keep the agent's own value."""
    enabled: Optional[bool] = None
    priority: Optional[int] = None
    execution_interval: Optional[float] = Field(default=None, gt=0)


class Config(BaseSettings):
    """Main application configuration."""

    environment: str = Field(
        default="development",
        description="Application environment: development, staging, production"
    )

    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    decision_engine: DecisionEngineConfig = Field(default_factory=DecisionEngineConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)
    agents: Dict[str, AgentOverride] = Field(default_factory=dict)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        valid_envs = ["development", "staging", "production"]
        if v.lower() not in valid_envs:
            raise ValueError(f"environment must be one of {valid_envs}")
        return v.lower()

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore"
    )

    def override_for(self, agent_id: str) -> Optional[AgentOverride]:
        return self.agents.get(agent_id) or self.agents.get(agent_id.lower())


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def reload_config() -> Config:
    """Reload configuration from environment (useful for testing)."""
    global _config
    _config = Config()
    return _config
