"""
Reconcile Engine: one attempt to converge a Deployment toward its intent.

    resolve namespace → build manifest → apply → project status →
    write status (best-effort) → decide requeue

Behavioral Contract:
- Every failure is converted into an outcome; the driver always gets a delay.
- A validation failure never reaches the gateway.
- The apply error detail becomes the status reason.
- A failed status write is logged and recorded but never changes the outcome.
- At most one reconcile per key runs at a time, whichever caller starts it
  (controller loop worker or admin API).
- No state shared across keys besides the injected gateway, requeue policy
  and history store, all of which are safe for concurrent use.
"""

import logging
import sqlite3
import threading
import time
from datetime import datetime, timezone
from typing import Dict, Optional
from uuid import uuid4

from edge_operator.builder.desired_state import DesiredStateBuilder, IntentValidationError
from edge_operator.gateway.base import ClusterGateway, ResourceNotFound
from edge_operator.history.store import ReconcileHistoryStore
from edge_operator.models.history import ReconcileRecord
from edge_operator.models.intent import EdgeDeployment, resolve_key, split_key
from edge_operator.models.reconciler import (
    FailureKind,
    ReconcileOutcome,
    ReconcileResult,
    ReconcilerConfig,
)
from edge_operator.reconciler.requeue import RequeuePolicy, build_requeue_policy
from edge_operator.reconciler.status import StatusProjector

logger = logging.getLogger(__name__)


class ReconcileEngine:
    """Orchestrates build → apply → status → requeue for one intent object."""

    def __init__(
        self,
        gateway: ClusterGateway,
        config: Optional[ReconcilerConfig] = None,
        builder: Optional[DesiredStateBuilder] = None,
        projector: Optional[StatusProjector] = None,
        requeue_policy: Optional[RequeuePolicy] = None,
        history: Optional[ReconcileHistoryStore] = None,
    ):
        self.gateway = gateway
        self.config = config or ReconcilerConfig()
        self.builder = builder or DesiredStateBuilder()
        self.projector = projector or StatusProjector()
        self.requeue_policy = requeue_policy or build_requeue_policy(self.config)
        self.history = history
        self._key_locks: Dict[str, threading.Lock] = {}
        self._key_locks_guard = threading.Lock()

    def resolve_namespace(self, intent: EdgeDeployment) -> str:
        """The intent's namespace, or the configured default when it has none."""
        return intent.namespace or self.config.default_namespace

    def _lock_for(self, key: str) -> threading.Lock:
        with self._key_locks_guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[key] = lock
            return lock

    def reconcile(self, intent: EdgeDeployment) -> ReconcileResult:
        """
        Run one reconcile attempt. Never raises for gateway or validation errors.
        Concurrent calls for the same key run one after the other.
        """
        namespace = self.resolve_namespace(intent)
        key = intent.resolved_key(self.config.default_namespace)
        with self._lock_for(key):
            return self._reconcile_locked(key, namespace, intent)

    def _reconcile_locked(
        self, key: str, namespace: str, intent: EdgeDeployment
    ) -> ReconcileResult:
        started_at = datetime.now(timezone.utc)
        start = time.monotonic()
        logger.debug("Reconciling %s (generation %s)", key, intent.generation)

        outcome = self._converge(key, namespace, intent)

        status = self.projector.project(intent.status, outcome)
        status_written = self._write_status(key, namespace, intent.name, status)

        requeue = self.requeue_policy.decide(outcome, key)
        elapsed = time.monotonic() - start

        result = ReconcileResult(
            key=key,
            outcome=outcome,
            status=status,
            status_written=status_written,
            requeue=requeue,
            started_at=started_at,
            duration_seconds=round(elapsed, 3),
        )
        self._record(intent, result)

        logger.info(
            "Reconciled %s: %s%s, requeue after %ss",
            key,
            outcome.kind.value,
            f" ({outcome.error_detail})" if outcome.error_detail else "",
            requeue.requeue_after_seconds,
        )
        return result

    def reconcile_key(self, key: str) -> Optional[ReconcileResult]:
        """
        Read the intent behind a work-queue key and reconcile it.
        Returns None when the intent no longer exists.
        """
        namespace, name = split_key(key)
        try:
            intent = self.gateway.get_intent(namespace, name)
        except ResourceNotFound:
            resolved = resolve_key(key, self.config.default_namespace)
            logger.info("Intent %s is gone, forgetting it", resolved)
            self.requeue_policy.forget(resolved)
            return None
        return self.reconcile(intent)

    def _converge(
        self, key: str, namespace: str, intent: EdgeDeployment
    ) -> ReconcileOutcome:
        try:
            manifest = self.builder.build(intent.name, namespace, intent.spec)
        except IntentValidationError as e:
            logger.warning("Intent %s failed validation: %s", key, e)
            return ReconcileOutcome.failed(str(e), FailureKind.VALIDATION)

        try:
            self.gateway.apply_deployment(manifest)
        except Exception as e:
            logger.warning("Applying Deployment for %s failed: %s", key, e)
            return ReconcileOutcome.failed(str(e) or type(e).__name__)

        return ReconcileOutcome.applied()

    def _write_status(self, key: str, namespace: str, name: str, status) -> bool:
        try:
            self.gateway.patch_intent_status(namespace, name, status)
        except Exception as e:
            logger.warning(
                "Status write for %s dropped (phase=%s): %s",
                key,
                status.phase.value if status.phase else None,
                e,
            )
            return False
        return True

    def _record(self, intent: EdgeDeployment, result: ReconcileResult) -> None:
        if self.history is None:
            return
        record = ReconcileRecord(
            id=f"rec_{uuid4().hex[:12]}",
            key=result.key,
            generation=intent.generation,
            outcome=result.outcome.kind,
            failure_kind=result.outcome.failure_kind,
            error_detail=result.outcome.error_detail,
            phase=result.status.phase.value if result.status.phase else None,
            status_written=result.status_written,
            requeue_after_seconds=result.requeue.requeue_after_seconds,
            started_at=result.started_at,
            duration_seconds=result.duration_seconds,
        )
        try:
            self.history.append(record)
        except sqlite3.Error:
            logger.exception("Failed to record reconcile history for %s", result.key)
