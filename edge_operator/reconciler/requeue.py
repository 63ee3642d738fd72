"""
Requeue Policy: how long the driver waits before the next reconcile.

RequeuePolicy uses two flat intervals: steady-state after a successful
apply (drift re-check) and retry after a failure.

BackoffRequeuePolicy keeps the same contract but grows the retry interval
per intent object on consecutive convergence failures, capped and jittered
so many failing objects do not retry in lockstep.
"""

import random
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from edge_operator.models.reconciler import (
    BackoffState,
    FailureKind,
    ReconcileOutcome,
    ReconcilerConfig,
    RequeueAction,
)


class RequeuePolicy:
    """Flat steady-state / retry intervals."""

    def __init__(self, config: Optional[ReconcilerConfig] = None):
        self.config = config or ReconcilerConfig()

    def decide(self, outcome: ReconcileOutcome, key: Optional[str] = None) -> RequeueAction:
        if outcome.is_applied:
            return RequeueAction.after(self.config.steady_state_interval_seconds)
        return RequeueAction.after(self.config.retry_interval_seconds)

    def forget(self, key: str) -> None:
        """Drop any per-key state. Nothing to drop for flat intervals."""
        pass


class BackoffRequeuePolicy(RequeuePolicy):
    """Capped exponential backoff with jitter, keyed per intent object."""

    def __init__(
        self,
        config: Optional[ReconcilerConfig] = None,
        rng: Optional[Callable[[], float]] = None,
    ):
        super().__init__(config)
        self._rng = rng or random.random
        self._lock = threading.Lock()
        self._states: Dict[str, BackoffState] = {}

    def decide(self, outcome: ReconcileOutcome, key: Optional[str] = None) -> RequeueAction:
        if key is None or outcome.failure_kind == FailureKind.VALIDATION:
            # Validation failures only heal with a spec edit; keep the flat cadence
            return super().decide(outcome, key)

        if outcome.is_applied:
            self.forget(key)
            return RequeueAction.after(self.config.steady_state_interval_seconds)

        with self._lock:
            state = self._states.get(key)
            if state is None:
                state = BackoffState(key=key)
                self._states[key] = state
            state.consecutive_failures += 1
            state.last_failure_at = datetime.now(timezone.utc)
            failures = state.consecutive_failures

        return RequeueAction.after(self._delay_for(failures))

    def _delay_for(self, failures: int) -> float:
        base = self.config.retry_interval_seconds
        cap = max(self.config.backoff_max_seconds, base)
        # Bound the exponent before multiplying to keep the float finite
        exponent = min(failures - 1, 32)
        delay = min(base * (2 ** exponent), cap)

        ratio = self.config.backoff_jitter_ratio
        jitter = (self._rng() * 2 - 1) * ratio
        delay = delay * (1 + jitter)
        return round(min(max(delay, base), cap), 3)

    def state_for(self, key: str) -> Optional[BackoffState]:
        with self._lock:
            state = self._states.get(key)
            return state.model_copy() if state else None

    def forget(self, key: str) -> None:
        with self._lock:
            self._states.pop(key, None)


def build_requeue_policy(config: ReconcilerConfig) -> RequeuePolicy:
    """Pick the policy the config asks for."""
    if config.backoff_enabled:
        return BackoffRequeuePolicy(config)
    return RequeuePolicy(config)
