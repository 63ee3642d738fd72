"""
Desired State Builder: maps an intent to the Deployment it asks for.

Behavioral Contract:
- Pure: no I/O, no clock, no randomness. Equal inputs give byte-identical manifests.
- The only error path is intent validation, raised before any cluster call.
- Labels are exactly {"app": name}; they also bind the pods to the Deployment.
- Advisory placement hints (max latency, min bandwidth) are carried on the
  intent but not consulted here.
"""

from typing import List

from edge_operator.models.intent import IntentSpec
from edge_operator.models.manifest import DesiredManifest

APP_LABEL = "app"


class IntentValidationError(ValueError):
    """Raised when an intent fails structural constraints."""

    def __init__(self, violations: List[str]):
        self.violations = list(violations)
        super().__init__("; ".join(self.violations))


class DesiredStateBuilder:
    """Builds the desired manifest for an intent and its resolved identity."""

    def validate(self, spec: IntentSpec) -> List[str]:
        """Return the list of violated constraints (empty when valid)."""
        violations = []
        if not spec.image or not spec.image.strip():
            violations.append("spec.image must be a non-empty string")
        if spec.replicas < 0:
            violations.append(f"spec.replicas must be >= 0, got {spec.replicas}")
        return violations

    def build(self, name: str, namespace: str, spec: IntentSpec) -> DesiredManifest:
        """Build the manifest. Raises IntentValidationError on a bad intent."""
        violations = self.validate(spec)
        if violations:
            raise IntentValidationError(violations)

        return DesiredManifest(
            name=name,
            namespace=namespace,
            labels={APP_LABEL: name},
            replicas=spec.replicas,
            container_image=spec.image,
            node_selector=dict(spec.node_selector) if spec.node_selector is not None else None,
        )
