"""Reconcile Record: one journal entry per reconcile attempt."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from edge_operator.models.reconciler import FailureKind, OutcomeKind


class ReconcileRecord(BaseModel):
    """What one reconcile attempt did and what it scheduled next."""

    id: str
    key: str                                # namespace/name
    generation: Optional[int] = None        # Intent generation that was reconciled
    outcome: OutcomeKind
    failure_kind: Optional[FailureKind] = None
    error_detail: Optional[str] = None
    phase: Optional[str] = None             # Phase projected onto the status
    status_written: bool
    requeue_after_seconds: Optional[float] = None
    started_at: datetime
    duration_seconds: float
