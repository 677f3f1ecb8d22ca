"""
Result Aggregator

Merges the results of one tick into the carry-forward state:
- previous_results (agent id -> latest result), published with one atomic swap
- concatenated recommendations and per-agent metrics
- resolution of conflicting actions on the same resource

Aggregation never raises. Malformed results are kept as-is and reported as
anomalies.
"""

import logging
import threading
from collections import Counter
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..core.enums import ActionStatus
from ..core.models import AgentAction, AgentResult, MetricValue

logger = logging.getLogger(__name__)

SUPERSEDED_REASON = "superseded by higher-priority agent"


class AnomalyKind(str, Enum):
    """Kinds of malformed or ambiguous results detected during aggregation."""
    DUPLICATE_RESULT = "duplicate_result"
    UNKNOWN_AGENT = "unknown_agent"
    ACTIONS_ON_FAILED_RESULT = "actions_on_failed_result"
    UNTARGETED_ACTION = "untargeted_action"


class AggregationAnomaly(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: AnomalyKind
    agent_id: str
    detail: str = ""


class AggregationResult(BaseModel):
    """Everything the aggregator derived from one tick."""
    model_config = ConfigDict(frozen=True)

    tick_number: int
    results: Tuple[AgentResult, ...] = ()
    previous_results: Dict[str, AgentResult] = Field(default_factory=dict)
    recommendations: Tuple[str, ...] = ()
    metrics: Dict[str, Dict[str, MetricValue]] = Field(default_factory=dict)
    actions: Tuple[AgentAction, ...] = ()
    cancelled_action_ids: Tuple[str, ...] = ()
    anomalies: Tuple[AggregationAnomaly, ...] = ()
    stats: Dict[str, int] = Field(default_factory=dict)


class ResultAggregator:
    """
    Owns the published previous_results mapping.

    aggregate() is pure with respect to the published state; publish() swaps
    the whole mapping at once, so readers see either the old or the new tick,
    never a mix.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._published: Mapping[str, AgentResult] = MappingProxyType({})
        self._published_tick: Optional[int] = None
        self.anomaly_counts: Counter = Counter()

    @property
    def previous_results(self) -> Mapping[str, AgentResult]:
        """Read-only view of the last published mapping."""
        return self._published

    @property
    def published_tick(self) -> Optional[int]:
        return self._published_tick

    def snapshot(self) -> Dict[str, AgentResult]:
        return dict(self._published)

    def aggregate(
        self,
        tick_number: int,
        results: Sequence[AgentResult],
        priorities: Mapping[str, int],
    ) -> AggregationResult:
        """
        Merge the results of tick `tick_number` (given in dispatch order).

        Args:
            tick_number: Tick the results belong to
            results: One result per executed agent
            priorities: Effective priority of each agent for conflict resolution

        Returns:
            AggregationResult, not yet published
        """
        anomalies = self._detect_anomalies(results, priorities)
        resolved, cancelled = self._resolve_conflicts(results, priorities)

        merged = self.snapshot()
        metrics: Dict[str, Dict[str, MetricValue]] = {}
        for result in resolved:
            merged[result.agent_id] = result
            metrics.setdefault(result.agent_id, {}).update(result.metrics)

        actions = tuple(action for result in resolved for action in result.actions)
        stats = {
            "results": len(resolved),
            "succeeded": sum(1 for r in resolved if r.success),
            "failed": sum(1 for r in resolved if not r.success and not r.skipped),
            "skipped": sum(1 for r in resolved if r.skipped),
            "actions": len(actions),
            "cancelled": len(cancelled),
            "anomalies": len(anomalies),
        }

        with self._lock:
            self.anomaly_counts.update(anomaly.kind.value for anomaly in anomalies)

        for anomaly in anomalies:
            logger.warning(
                "Aggregation anomaly in tick %d: %s (%s) %s",
                tick_number, anomaly.kind.value, anomaly.agent_id, anomaly.detail,
            )

        return AggregationResult(
            tick_number=tick_number,
            results=tuple(resolved),
            previous_results=merged,
            recommendations=tuple(rec for r in resolved for rec in r.recommendations),
            metrics=metrics,
            actions=actions,
            cancelled_action_ids=tuple(cancelled),
            anomalies=tuple(anomalies),
            stats=stats,
        )

    def publish(self, aggregation: AggregationResult) -> None:
        """Atomically replace the published previous_results."""
        published = MappingProxyType(dict(aggregation.previous_results))
        with self._lock:
            self._published = published
            self._published_tick = aggregation.tick_number
        logger.debug(
            "Published previous_results for tick %d (%d agents)",
            aggregation.tick_number, len(published),
        )

    @staticmethod
    def _detect_anomalies(
        results: Iterable[AgentResult], priorities: Mapping[str, int]
    ) -> List[AggregationAnomaly]:
        anomalies: List[AggregationAnomaly] = []
        seen: Set[str] = set()

        for result in results:
            if result.agent_id in seen:
                anomalies.append(AggregationAnomaly(
                    kind=AnomalyKind.DUPLICATE_RESULT,
                    agent_id=result.agent_id,
                    detail="more than one result in the same tick",
                ))
            seen.add(result.agent_id)

            if result.agent_id not in priorities:
                anomalies.append(AggregationAnomaly(
                    kind=AnomalyKind.UNKNOWN_AGENT,
                    agent_id=result.agent_id,
                    detail="no priority known, ranked lowest",
                ))

            if result.actions and not result.success:
                anomalies.append(AggregationAnomaly(
                    kind=AnomalyKind.ACTIONS_ON_FAILED_RESULT,
                    agent_id=result.agent_id,
                    detail=f"{len(result.actions)} action(s) on an unsuccessful result",
                ))

            for action in result.actions:
                if not action.target.strip():
                    anomalies.append(AggregationAnomaly(
                        kind=AnomalyKind.UNTARGETED_ACTION,
                        agent_id=result.agent_id,
                        detail=f"action {action.action_id} has no target",
                    ))

        return anomalies

    @staticmethod
    def _resolve_conflicts(
        results: Sequence[AgentResult], priorities: Mapping[str, int]
    ) -> Tuple[List[AgentResult], List[str]]:
        def rank(agent_id: str) -> Tuple[float, str]:
            return (-priorities.get(agent_id, float("-inf")), agent_id)

        claims: Dict[str, Set[str]] = {}
        for result in results:
            for action in result.actions:
                if action.is_terminal or not action.target.strip():
                    continue
                claims.setdefault(action.target, set()).add(result.agent_id)

        winners = {
            target: min(agent_ids, key=rank)
            for target, agent_ids in claims.items()
            if len(agent_ids) > 1
        }

        resolved: List[AgentResult] = []
        cancelled: List[str] = []
        for result in results:
            changed = False
            actions: List[AgentAction] = []
            for action in result.actions:
                winner = winners.get(action.target)
                if winner is not None and winner != result.agent_id and not action.is_terminal:
                    action = action.transition(ActionStatus.CANCELLED, reason=SUPERSEDED_REASON)
                    cancelled.append(action.action_id)
                    changed = True
                    logger.info(
                        "Action %s of %s on %s superseded by %s",
                        action.action_id, result.agent_id, action.target, winner,
                    )
                actions.append(action)
            resolved.append(
                result.model_copy(update={"actions": tuple(actions)}) if changed else result
            )

        return resolved, cancelled
