"""Status Projector: maps a reconcile outcome onto the intent's status."""

from typing import Optional

from edge_operator.models.intent import IntentPhase, IntentStatus
from edge_operator.models.reconciler import ReconcileOutcome


class StatusProjector:
    """
    Only phase and reason are owned here. Every other status field in the
    previous status is carried over untouched.
    """

    def project(
        self, previous: Optional[IntentStatus], outcome: ReconcileOutcome
    ) -> IntentStatus:
        base = previous if previous is not None else IntentStatus()
        if outcome.is_applied:
            return base.model_copy(update={"phase": IntentPhase.RUNNING, "reason": None})
        return base.model_copy(
            update={"phase": IntentPhase.ERROR, "reason": str(outcome.error_detail)}
        )
