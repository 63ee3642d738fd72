"""Reconciler configuration, outcomes and per-key backoff state."""

import os
from datetime import datetime
from enum import Enum
from typing import Mapping, Optional

from pydantic import BaseModel, Field

from edge_operator.models.intent import API_GROUP, API_VERSION, PLURAL, IntentStatus

# Environment variable -> ReconcilerConfig field
ENV_OVERRIDES = {
    "EDGE_OPERATOR_DEFAULT_NAMESPACE": "default_namespace",
    "EDGE_OPERATOR_STEADY_STATE_INTERVAL": "steady_state_interval_seconds",
    "EDGE_OPERATOR_RETRY_INTERVAL": "retry_interval_seconds",
    "EDGE_OPERATOR_BACKOFF_ENABLED": "backoff_enabled",
    "EDGE_OPERATOR_BACKOFF_MAX": "backoff_max_seconds",
    "EDGE_OPERATOR_BACKOFF_JITTER": "backoff_jitter_ratio",
    "EDGE_OPERATOR_FIELD_MANAGER": "field_manager",
    "EDGE_OPERATOR_REQUEST_TIMEOUT": "request_timeout_seconds",
    "EDGE_OPERATOR_WORKERS": "workers",
    "EDGE_OPERATOR_HISTORY_DB": "history_db_path",
}


class ReconcilerConfig(BaseModel):
    """Configuration for the reconciler and its driver."""

    # Used when an intent carries no namespace. Part of the deployment contract.
    default_namespace: str = "default"
    steady_state_interval_seconds: float = Field(default=30, gt=0)
    retry_interval_seconds: float = Field(default=10, gt=0)
    backoff_enabled: bool = False
    backoff_max_seconds: float = Field(default=300, gt=0)
    backoff_jitter_ratio: float = Field(default=0.1, ge=0, lt=1)
    field_manager: str = "edge-operator"
    group: str = API_GROUP
    version: str = API_VERSION
    plural: str = PLURAL
    request_timeout_seconds: float = Field(default=30, gt=0)
    workers: int = Field(default=4, ge=1)
    history_db_path: str = ":memory:"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ReconcilerConfig":
        """Build a config from defaults overlaid with EDGE_OPERATOR_* variables."""
        environ = os.environ if environ is None else environ
        overrides = {
            field: environ[var]
            for var, field in ENV_OVERRIDES.items()
            if environ.get(var, "") != ""
        }
        return cls(**overrides)


class OutcomeKind(str, Enum):
    APPLIED = "applied"
    FAILED = "failed"


class FailureKind(str, Enum):
    VALIDATION = "validation"     # Intent rejected before any cluster call
    CONVERGENCE = "convergence"   # Gateway apply failed


class ReconcileOutcome(BaseModel):
    """Result of one apply attempt. Exactly one per reconcile."""

    kind: OutcomeKind
    error_detail: Optional[str] = None
    failure_kind: Optional[FailureKind] = None

    @classmethod
    def applied(cls) -> "ReconcileOutcome":
        return cls(kind=OutcomeKind.APPLIED)

    @classmethod
    def failed(
        cls, detail: str, failure_kind: FailureKind = FailureKind.CONVERGENCE
    ) -> "ReconcileOutcome":
        return cls(
            kind=OutcomeKind.FAILED,
            error_detail=detail or failure_kind.value,
            failure_kind=failure_kind,
        )

    @property
    def is_applied(self) -> bool:
        return self.kind == OutcomeKind.APPLIED


class RequeueAction(BaseModel):
    """Returned to the driver. None means no further action is needed."""

    requeue_after_seconds: Optional[float] = None

    @classmethod
    def after(cls, seconds: float) -> "RequeueAction":
        return cls(requeue_after_seconds=seconds)

    @classmethod
    def await_change(cls) -> "RequeueAction":
        return cls()


class ReconcileResult(BaseModel):
    """Everything one reconcile call produced."""

    key: str
    outcome: ReconcileOutcome
    status: IntentStatus
    status_written: bool
    requeue: RequeueAction
    started_at: datetime
    duration_seconds: float


class BackoffState(BaseModel):
    """Consecutive convergence failures for one intent object."""

    key: str
    consecutive_failures: int = 0
    last_failure_at: Optional[datetime] = None
