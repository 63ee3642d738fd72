"""
Cluster Gateway: the only I/O boundary of the reconciler.

Reads intents, converges the managed Deployment and merge-patches intent
status. Implementations must be safe to share between worker threads.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from edge_operator.models.intent import EdgeDeployment, IntentStatus
from edge_operator.models.manifest import DesiredManifest


class GatewayError(Exception):
    """Base class for every gateway failure."""
    pass


class ConvergenceError(GatewayError):
    """Raised when applying the desired manifest fails."""
    pass


class GatewayTimeout(ConvergenceError):
    """Raised when a gateway call exceeds its deadline or is cancelled."""
    pass


class StatusWriteError(GatewayError):
    """Raised when the status merge patch fails."""
    pass


class ResourceNotFound(GatewayError):
    """Raised when a read targets an object that does not exist."""

    def __init__(self, kind: str, namespace: Optional[str], name: str):
        self.kind = kind
        self.namespace = namespace
        self.name = name
        super().__init__(f"{kind} {namespace or ''}/{name} not found")


class ClusterGateway(ABC):
    """Operations the reconciler needs from the backing store."""

    @abstractmethod
    def get_intent(self, namespace: Optional[str], name: str) -> EdgeDeployment:
        """Read one intent. Raises ResourceNotFound when it is gone."""

    @abstractmethod
    def list_intents(self) -> List[EdgeDeployment]:
        """List intents across all namespaces."""

    @abstractmethod
    def apply_deployment(self, manifest: DesiredManifest) -> dict:
        """
        Converge the managed Deployment to the manifest and return the
        resulting object. Repeating an identical call must not change the
        observable state. Raises ConvergenceError.
        """

    @abstractmethod
    def patch_intent_status(
        self, namespace: str, name: str, status: IntentStatus
    ) -> None:
        """
        Merge-patch phase and reason only. A None reason removes the field.
        Raises StatusWriteError.
        """


def status_merge_patch(status: IntentStatus) -> dict:
    """JSON merge patch body touching only phase and reason."""
    return {
        "status": {
            "phase": status.phase.value if status.phase else None,
            "reason": status.reason,
        }
    }
