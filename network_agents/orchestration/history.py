"""
Execution History

Keeps the most recent agent results per monitored subject (phone number,
device or user), fed after every tick and every on-demand run.
"""

import logging
import threading
from collections import OrderedDict, deque
from typing import Deque, Iterable, List, Optional, Tuple

from ..core.models import AgentResult

logger = logging.getLogger(__name__)


class ExecutionHistory:
    """
    Bounded per-subject result history.

    Each subject keeps its last `max_per_subject` results. At most
    `max_subjects` subjects are tracked; the least recently updated one is
    evicted first. Results of contexts without a known subject are filed
    under None.
    """

    def __init__(self, max_per_subject: int = 100, max_subjects: int = 1000):
        if max_per_subject < 1 or max_subjects < 1:
            raise ValueError("history bounds must be positive")
        self.max_per_subject = max_per_subject
        self.max_subjects = max_subjects
        self._lock = threading.Lock()
        self._entries: "OrderedDict[Optional[str], Deque[AgentResult]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def record(self, subject: Optional[str], results: Iterable[AgentResult]) -> None:
        results = list(results)
        if not results:
            return

        with self._lock:
            entries = self._entries.get(subject)
            if entries is None:
                entries = self._entries[subject] = deque(maxlen=self.max_per_subject)
            else:
                self._entries.move_to_end(subject)
            entries.extend(results)

            while len(self._entries) > self.max_subjects:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Execution history of %s evicted", evicted)

    def get(self, subject: Optional[str], agent_id: Optional[str] = None) -> Tuple[AgentResult, ...]:
        """Results for `subject`, oldest first, optionally only those of one agent."""
        with self._lock:
            entries = tuple(self._entries.get(subject, ()))
        if agent_id is not None:
            entries = tuple(result for result in entries if result.agent_id == agent_id)
        return entries

    def subjects(self) -> List[Optional[str]]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
