"""Append-only workflow step log.

The ledger is a record, not a validator: ``append`` only fails when the
store is unavailable. Idempotent side effects consult ``has_completed`` before
running, so a redelivered callback never repeats an outbound notification.
"""
import itertools
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from briefloop.shared.logging_utils import info as log_info
from briefloop.shared.record_store import WORKFLOW_STEPS, RecordStore
from briefloop.shared.state_common import utc_now
from briefloop.specs.common.enums import StepStatus
from briefloop.specs.common.ids import new_id
from briefloop.specs.models.domain import WorkflowStep


class WorkflowStepLedger:
    def __init__(self, store: RecordStore, clock: Callable[[], datetime] = utc_now) -> None:
        self._store = store
        self._clock = clock
        # Tie-breaker for entries sharing a timestamp.
        self._seq = itertools.count(time.time_ns())

    def append(
        self,
        session_id: str,
        step: str,
        status: StepStatus,
        payload: Optional[Dict[str, Any]] = None,
    ) -> WorkflowStep:
        entry = WorkflowStep(
            id=new_id("step"),
            sessionId=session_id,
            step=step,
            status=status,
            payload=dict(payload or {}),
            seq=next(self._seq),
            createdAt=self._clock(),
        )
        self._store.put(WORKFLOW_STEPS, entry.to_document())
        log_info(session_id, f"ledger:{step}", status=status.value)
        return entry

    def query(self, session_id: str) -> List[WorkflowStep]:
        """Steps for one session, oldest first."""
        steps = [WorkflowStep.model_validate(doc) for doc in self._store.query(WORKFLOW_STEPS, sessionId=session_id)]
        steps.sort(key=lambda s: (s.createdAt, s.seq))
        return steps

    def has_completed(self, session_id: str, step: str) -> bool:
        matches = self._store.query(
            WORKFLOW_STEPS, sessionId=session_id, step=step, status=StepStatus.COMPLETED.value
        )
        return bool(matches)

    def sessions_with_completed(self, step: str) -> Set[str]:
        """Ids of every session or workflow that has ``step`` completed."""
        matches = self._store.query(WORKFLOW_STEPS, step=step, status=StepStatus.COMPLETED.value)
        return {doc["sessionId"] for doc in matches}
