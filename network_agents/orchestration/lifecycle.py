"""
Action lifecycle management

The ActionLedger stores the current version of every action proposed by the
agents. The external action dispatcher claims PENDING actions from it and
reports progress back through update_status(); nothing else touches a stored
action. Actions are never deleted, only superseded.
"""

import logging
import threading
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from ..core.enums import ActionStatus
from ..core.exceptions import ActionNotDispatchable, UnknownActionError
from ..core.models import AgentAction

logger = logging.getLogger(__name__)

SUPERSEDED_BY_NEWER_REASON = "superseded by newer action"

ActionKey = Tuple[Optional[str], str]


class ActionLedger:
    """
    Thread-safe store of actions keyed by action_id, in recording order.

    Unclaimed PENDING actions are also indexed by (source agent, target).
    Recording supersedes the older action of a key, so each key holds at most
    one of them and the index keeps recording and claiming independent of the
    ledger's size.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._actions: Dict[str, AgentAction] = {}
        self._claimed: Set[str] = set()
        # key -> action_id, insertion ordered like the recordings
        self._unclaimed: Dict[ActionKey, str] = {}

    def __len__(self) -> int:
        return len(self._actions)

    def __contains__(self, action_id: object) -> bool:
        return action_id in self._actions

    def get(self, action_id: str) -> AgentAction:
        try:
            return self._actions[action_id]
        except KeyError:
            raise UnknownActionError(action_id) from None

    def by_status(self, status: ActionStatus) -> List[AgentAction]:
        with self._lock:
            return [action for action in self._actions.values() if action.status == status]

    def record(self, actions: Iterable[AgentAction]) -> List[AgentAction]:
        """
        Store newly proposed actions.

        A new non-terminal action supersedes any older, still unclaimed PENDING
        action of the same agent on the same target.

        Returns:
            The actions that were stored (already known ids are ignored)
        """
        stored: List[AgentAction] = []
        with self._lock:
            for action in actions:
                if action.action_id in self._actions:
                    logger.warning("Action %s already recorded, ignoring", action.action_id)
                    continue
                if not action.is_terminal:
                    self._supersede_stale(action)
                self._actions[action.action_id] = action
                if action.status == ActionStatus.PENDING:
                    self._unclaimed[_key(action)] = action.action_id
                stored.append(action)
        return stored

    def claim_pending(self) -> List[AgentAction]:
        """Hand out every PENDING action that was not handed out before."""
        with self._lock:
            claimable = [self._actions[action_id] for action_id in self._unclaimed.values()]
            self._unclaimed.clear()
            self._claimed.update(action.action_id for action in claimable)
            return claimable

    def claim(self, action_id: str) -> AgentAction:
        """
        Hand out a single action for execution.

        Raises:
            UnknownActionError: if the action was never recorded
            ActionNotDispatchable: if it is terminal or was already handed out
        """
        with self._lock:
            action = self.get(action_id)
            if action.is_terminal:
                raise ActionNotDispatchable(
                    f"Action {action_id} is {action.status.value} and cannot be executed again"
                )
            if action_id in self._claimed:
                raise ActionNotDispatchable(f"Action {action_id} was already handed out")
            self._claimed.add(action_id)
            self._unindex(action)
            return action

    def update_status(
        self,
        action_id: str,
        status: ActionStatus,
        *,
        result: Optional[Any] = None,
        error: Optional[str] = None,
    ) -> AgentAction:
        """
        Status callback used by the dispatcher.

        Raises:
            UnknownActionError: if the action was never recorded
            InvalidActionTransition: if the change is not allowed
        """
        with self._lock:
            updated = self.get(action_id).transition(status, result=result, error=error)
            self._store(updated)
        logger.info("Action %s -> %s", action_id, status.value)
        return updated

    def cancel(self, action_id: str, reason: str) -> AgentAction:
        with self._lock:
            updated = self.get(action_id).transition(ActionStatus.CANCELLED, reason=reason)
            self._store(updated)
        logger.info("Action %s cancelled: %s", action_id, reason)
        return updated

    def _store(self, updated: AgentAction) -> None:
        self._actions[updated.action_id] = updated
        if updated.status != ActionStatus.PENDING:
            self._unindex(updated)

    def _unindex(self, action: AgentAction) -> None:
        key = _key(action)
        if self._unclaimed.get(key) == action.action_id:
            del self._unclaimed[key]

    def _supersede_stale(self, incoming: AgentAction) -> None:
        action_id = self._unclaimed.pop(_key(incoming), None)
        if action_id is None:
            return
        self._actions[action_id] = self._actions[action_id].transition(
            ActionStatus.CANCELLED, reason=SUPERSEDED_BY_NEWER_REASON
        )
        logger.debug("Action %s superseded by %s", action_id, incoming.action_id)


def _key(action: AgentAction) -> ActionKey:
    return (action.source_agent_id, action.target)
