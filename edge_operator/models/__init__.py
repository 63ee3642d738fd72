"""Edge operator data models."""

from edge_operator.models.intent import (
    EdgeDeployment,
    IntentPhase,
    IntentSpec,
    IntentStatus,
)
from edge_operator.models.manifest import DesiredManifest
from edge_operator.models.reconciler import (
    BackoffState,
    FailureKind,
    OutcomeKind,
    ReconcileOutcome,
    ReconcileResult,
    ReconcilerConfig,
    RequeueAction,
)

__all__ = [
    "BackoffState",
    "DesiredManifest",
    "EdgeDeployment",
    "FailureKind",
    "IntentPhase",
    "IntentSpec",
    "IntentStatus",
    "OutcomeKind",
    "ReconcileOutcome",
    "ReconcileResult",
    "ReconcilerConfig",
    "RequeueAction",
]
