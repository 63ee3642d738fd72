"""
In-memory Cluster Gateway.

Backs the admin API sandbox and the test suite. Emulates the parts of the
API server the reconciler relies on. Server-side apply records the fields
each apply sent; the next apply removes owned fields it no longer sends and
leaves fields written by other actors alone. Status updates are JSON merge
patches, and every write bumps a resourceVersion. Faults can be injected per
operation.
"""

import copy
import threading
from typing import Dict, List, Optional, Set, Tuple

from edge_operator.gateway.base import (
    ClusterGateway,
    ConvergenceError,
    ResourceNotFound,
    StatusWriteError,
    status_merge_patch,
)
from edge_operator.models.intent import KIND, EdgeDeployment, IntentStatus
from edge_operator.models.manifest import DesiredManifest


def json_merge_patch(target: dict, patch: dict) -> dict:
    """Apply an RFC 7386 merge patch. Returns a new document."""
    result = copy.deepcopy(target)
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        elif isinstance(value, dict):
            current = result.get(key)
            result[key] = json_merge_patch(current if isinstance(current, dict) else {}, value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def leaf_paths(document: dict, prefix: Tuple[str, ...] = ()) -> Set[Tuple[str, ...]]:
    """Paths of every non-mapping value in a document. Lists count as leaves."""
    paths = set()
    for key, value in document.items():
        path = prefix + (key,)
        if isinstance(value, dict) and value:
            paths |= leaf_paths(value, path)
        else:
            paths.add(path)
    return paths


def remove_path(document: dict, path: Tuple[str, ...]) -> None:
    """Delete the value at `path`, then drop mappings the removal left empty."""
    parents = []
    node = document
    for key in path[:-1]:
        child = node.get(key)
        if not isinstance(child, dict):
            return
        parents.append((node, key))
        node = child
    node.pop(path[-1], None)
    for parent, key in reversed(parents):
        if parent[key]:
            break
        del parent[key]


class InMemoryClusterGateway(ClusterGateway):
    """Thread-safe in-memory backing store for intents and Deployments."""

    def __init__(self, default_namespace: str = "default"):
        self.default_namespace = default_namespace
        self._lock = threading.Lock()
        self._intents: Dict[Tuple[str, str], dict] = {}
        self._deployments: Dict[Tuple[str, str], dict] = {}
        self._owned_fields: Dict[Tuple[str, str], Set[Tuple[str, ...]]] = {}
        self._resource_version = 0
        self._apply_failures: List[Exception] = []
        self._status_failures: List[Exception] = []
        self.apply_calls: List[DesiredManifest] = []
        self.status_patches: List[dict] = []

    def _next_version(self) -> str:
        self._resource_version += 1
        return str(self._resource_version)

    # --- Intent resources (user side) ---

    def upsert_intent(self, intent: EdgeDeployment) -> EdgeDeployment:
        """Create or replace an intent's spec, keeping its status."""
        namespace = intent.namespace or self.default_namespace
        key = (namespace, intent.name)
        with self._lock:
            existing = self._intents.get(key)
            document = intent.model_copy(update={"namespace": namespace}).to_resource()
            metadata = document["metadata"]
            if existing:
                document["status"] = existing.get("status", {})
                metadata["uid"] = existing["metadata"]["uid"]
                generation = existing["metadata"].get("generation", 1)
                if existing.get("spec") != document["spec"]:
                    generation += 1
                metadata["generation"] = generation
            else:
                metadata["uid"] = f"uid-{namespace}-{intent.name}"
                metadata["generation"] = 1
            metadata["resourceVersion"] = self._next_version()
            self._intents[key] = document
            return EdgeDeployment.from_resource(copy.deepcopy(document))

    def delete_intent(self, namespace: str, name: str) -> bool:
        """Remove an intent. The managed Deployment is garbage collected with it."""
        with self._lock:
            removed = self._intents.pop((namespace, name), None)
            self._deployments.pop((namespace, name), None)
            self._owned_fields.pop((namespace, name), None)
            return removed is not None

    # --- Fault injection ---

    def fail_next_apply(self, error: Exception, times: int = 1) -> None:
        """Make the next `times` apply calls raise `error`."""
        with self._lock:
            self._apply_failures.extend([error] * times)

    def fail_next_status_write(self, error: Exception, times: int = 1) -> None:
        """Make the next `times` status patches raise `error`."""
        with self._lock:
            self._status_failures.extend([error] * times)

    # --- ClusterGateway ---

    def get_intent(self, namespace: Optional[str], name: str) -> EdgeDeployment:
        key = (namespace or self.default_namespace, name)
        with self._lock:
            document = self._intents.get(key)
            if document is None:
                raise ResourceNotFound(KIND, namespace, name)
            return EdgeDeployment.from_resource(copy.deepcopy(document))

    def list_intents(self) -> List[EdgeDeployment]:
        with self._lock:
            documents = [copy.deepcopy(d) for _, d in sorted(self._intents.items())]
        return [EdgeDeployment.from_resource(d) for d in documents]

    def apply_deployment(self, manifest: DesiredManifest) -> dict:
        with self._lock:
            self.apply_calls.append(manifest)
            if self._apply_failures:
                error = self._apply_failures.pop(0)
                if isinstance(error, ConvergenceError):
                    raise error
                raise ConvergenceError(str(error)) from error

            key = (manifest.namespace, manifest.name)
            existing = self._deployments.get(key)
            desired = manifest.to_deployment()
            owned = leaf_paths(desired)
            if existing is None:
                merged = desired
                merged["metadata"]["generation"] = 1
                merged["metadata"]["resourceVersion"] = self._next_version()
            else:
                pruned = copy.deepcopy(existing)
                for path in self._owned_fields.get(key, set()) - owned:
                    remove_path(pruned, path)
                merged = json_merge_patch(pruned, desired)
                if merged != existing:
                    merged["metadata"]["generation"] = existing["metadata"]["generation"] + 1
                    merged["metadata"]["resourceVersion"] = self._next_version()
            self._deployments[key] = merged
            self._owned_fields[key] = owned
            return copy.deepcopy(merged)

    def patch_intent_status(
        self, namespace: str, name: str, status: IntentStatus
    ) -> None:
        patch = status_merge_patch(status)
        with self._lock:
            if self._status_failures:
                error = self._status_failures.pop(0)
                if isinstance(error, StatusWriteError):
                    raise error
                raise StatusWriteError(str(error)) from error

            document = self._intents.get((namespace, name))
            if document is None:
                raise StatusWriteError(f"{KIND} {namespace}/{name} not found")
            self._intents[(namespace, name)] = json_merge_patch(document, patch)
            self._intents[(namespace, name)]["metadata"]["resourceVersion"] = self._next_version()
            self.status_patches.append(patch)

    # --- Inspection ---

    def get_deployment(self, namespace: str, name: str) -> Optional[dict]:
        with self._lock:
            deployment = self._deployments.get((namespace, name))
            return copy.deepcopy(deployment) if deployment else None

    def merge_into_deployment(self, namespace: str, name: str, patch: dict) -> None:
        """Write fields as another actor would (e.g. an admission hook or another controller)."""
        with self._lock:
            key = (namespace, name)
            if key not in self._deployments:
                raise ResourceNotFound("Deployment", namespace, name)
            self._deployments[key] = json_merge_patch(self._deployments[key], patch)

    def merge_into_intent_status(self, namespace: str, name: str, fields: dict) -> None:
        """Set status fields as another controller would."""
        with self._lock:
            key = (namespace, name)
            if key not in self._intents:
                raise ResourceNotFound(KIND, namespace, name)
            self._intents[key] = json_merge_patch(self._intents[key], {"status": fields})
