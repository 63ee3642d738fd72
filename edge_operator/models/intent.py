"""EdgeDeployment: the user-authored intent resource."""

from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

API_GROUP = "edge.example.com"
API_VERSION = "v1"
KIND = "EdgeDeployment"
PLURAL = "edgedeployments"


class IntentPhase(str, Enum):
    RUNNING = "Running"
    ERROR = "Error"


class IntentSpec(BaseModel):
    """What the user wants running. Read-only to the controller."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    image: str
    replicas: int = 1                       # Negative values are rejected by the builder
    max_latency_ms: Optional[int] = Field(default=None, alias="maxLatencyMs")
    min_bandwidth_mbps: Optional[int] = Field(default=None, alias="minBandwidthMbps")
    node_selector: Optional[Dict[str, str]] = Field(default=None, alias="nodeSelector")


class IntentStatus(BaseModel):
    """
    Status sub-resource, owned by the controller.

    Fields written by other actors are kept (extra="allow") so a status read
    can be used as a merge base without losing them.
    """

    model_config = ConfigDict(extra="allow")

    phase: Optional[IntentPhase] = None     # None is the "unset" phase
    reason: Optional[str] = None            # Only set while phase == Error


class EdgeDeployment(BaseModel):
    """An intent resource: identity plus spec and status."""

    name: str
    namespace: Optional[str] = None
    uid: Optional[str] = None
    generation: Optional[int] = None
    resource_version: Optional[str] = None
    spec: IntentSpec
    status: IntentStatus = IntentStatus()

    @property
    def key(self) -> str:
        """Work-queue key. Namespace-less objects key under an empty namespace."""
        return f"{self.namespace or ''}/{self.name}"

    def resolved_key(self, default_namespace: str) -> str:
        """Key under the namespace the object is reconciled in."""
        return resolve_key(self.key, default_namespace)

    @classmethod
    def from_resource(cls, resource: dict) -> "EdgeDeployment":
        """Parse a raw custom-object document as returned by the API server."""
        metadata = resource.get("metadata") or {}
        return cls(
            name=metadata["name"],
            namespace=metadata.get("namespace"),
            uid=metadata.get("uid"),
            generation=metadata.get("generation"),
            resource_version=metadata.get("resourceVersion"),
            spec=IntentSpec.model_validate(resource.get("spec") or {}),
            status=IntentStatus.model_validate(resource.get("status") or {}),
        )

    def to_resource(self) -> dict:
        """Render back to a custom-object document (camelCase wire names)."""
        metadata = {"name": self.name}
        if self.namespace:
            metadata["namespace"] = self.namespace
        if self.uid:
            metadata["uid"] = self.uid
        if self.generation is not None:
            metadata["generation"] = self.generation
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        return {
            "apiVersion": f"{API_GROUP}/{API_VERSION}",
            "kind": KIND,
            "metadata": metadata,
            "spec": self.spec.model_dump(mode="json", by_alias=True, exclude_none=True),
            "status": self.status.model_dump(mode="json", exclude_none=True),
        }


def split_key(key: str) -> tuple:
    """Split a ``namespace/name`` work-queue key."""
    namespace, _, name = key.rpartition("/")
    return namespace or None, name


def resolve_key(key: str, default_namespace: str) -> str:
    """Fill in the default namespace of a namespace-less key."""
    namespace, name = split_key(key)
    return f"{namespace or default_namespace}/{name}"
