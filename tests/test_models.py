"""Tests for core data models."""

import pytest
from pydantic import ValidationError

from edge_operator.models import (
    DesiredManifest,
    EdgeDeployment,
    FailureKind,
    IntentPhase,
    IntentSpec,
    IntentStatus,
    OutcomeKind,
    ReconcileOutcome,
    ReconcilerConfig,
    RequeueAction,
)
from edge_operator.models.intent import resolve_key, split_key


def _make_resource() -> dict:
    return {
        "apiVersion": "edge.example.com/v1",
        "kind": "EdgeDeployment",
        "metadata": {
            "name": "web",
            "namespace": "edge",
            "uid": "abc-123",
            "generation": 4,
            "resourceVersion": "991",
        },
        "spec": {
            "image": "app:v1",
            "replicas": 3,
            "maxLatencyMs": 20,
            "minBandwidthMbps": 100,
            "nodeSelector": {"topology.kubernetes.io/zone": "edge-1"},
        },
        "status": {"phase": "Error", "reason": "Conflict"},
    }


class TestIntentSpec:
    def test_defaults(self):
        spec = IntentSpec(image="app:v1")
        assert spec.replicas == 1
        assert spec.max_latency_ms is None
        assert spec.min_bandwidth_mbps is None
        assert spec.node_selector is None

    def test_accepts_wire_and_python_names(self):
        wire = IntentSpec.model_validate(
            {"image": "app:v1", "maxLatencyMs": 5, "nodeSelector": {"a": "b"}}
        )
        native = IntentSpec(image="app:v1", max_latency_ms=5, node_selector={"a": "b"})
        assert wire == native

    def test_image_is_required(self):
        with pytest.raises(ValidationError):
            IntentSpec.model_validate({"replicas": 2})

    def test_negative_replicas_are_readable(self):
        """Rejecting them is the builder's job, so the status can still be written."""
        spec = IntentSpec(image="app:v1", replicas=-1)
        assert spec.replicas == -1


class TestEdgeDeployment:
    def test_from_resource(self):
        intent = EdgeDeployment.from_resource(_make_resource())
        assert intent.name == "web"
        assert intent.namespace == "edge"
        assert intent.generation == 4
        assert intent.resource_version == "991"
        assert intent.spec.replicas == 3
        assert intent.spec.min_bandwidth_mbps == 100
        assert intent.status.phase == IntentPhase.ERROR
        assert intent.status.reason == "Conflict"
        assert intent.key == "edge/web"

    def test_to_resource_uses_wire_names(self):
        resource = EdgeDeployment.from_resource(_make_resource()).to_resource()
        assert resource["spec"]["nodeSelector"] == {"topology.kubernetes.io/zone": "edge-1"}
        assert resource["spec"]["maxLatencyMs"] == 20
        assert resource["metadata"]["resourceVersion"] == "991"
        assert resource["status"] == {"phase": "Error", "reason": "Conflict"}

    def test_missing_status_is_unset(self):
        resource = _make_resource()
        del resource["status"]
        intent = EdgeDeployment.from_resource(resource)
        assert intent.status.phase is None
        assert intent.status.reason is None

    def test_key_without_namespace(self):
        intent = EdgeDeployment(name="web", spec=IntentSpec(image="app:v1"))
        assert intent.key == "/web"
        assert split_key(intent.key) == (None, "web")
        assert split_key("edge/web") == ("edge", "web")

    def test_resolved_key(self):
        bare = EdgeDeployment(name="web", spec=IntentSpec(image="app:v1"))
        placed = bare.model_copy(update={"namespace": "edge"})
        assert bare.resolved_key("default") == "default/web"
        assert placed.resolved_key("default") == "edge/web"
        assert resolve_key("/web", "default") == "default/web"


class TestIntentStatus:
    def test_foreign_fields_survive(self):
        status = IntentStatus.model_validate(
            {"phase": "Running", "observedGeneration": 3}
        )
        dumped = status.model_dump(mode="json")
        assert dumped["phase"] == "Running"
        assert dumped["observedGeneration"] == 3


class TestDesiredManifest:
    def test_deployment_shape(self):
        manifest = DesiredManifest(
            name="web",
            namespace="edge",
            labels={"app": "web"},
            replicas=2,
            container_image="app:v1",
        )
        deployment = manifest.to_deployment()
        assert deployment["apiVersion"] == "apps/v1"
        assert deployment["kind"] == "Deployment"
        assert deployment["spec"]["selector"] == {"matchLabels": {"app": "web"}}
        assert deployment["spec"]["template"]["metadata"]["labels"] == {"app": "web"}
        containers = deployment["spec"]["template"]["spec"]["containers"]
        assert containers == [{"name": "web", "image": "app:v1"}]
        assert "nodeSelector" not in deployment["spec"]["template"]["spec"]


class TestReconcileOutcome:
    def test_applied(self):
        outcome = ReconcileOutcome.applied()
        assert outcome.kind == OutcomeKind.APPLIED
        assert outcome.is_applied
        assert outcome.error_detail is None

    def test_failed_keeps_detail(self):
        outcome = ReconcileOutcome.failed("conflict")
        assert outcome.kind == OutcomeKind.FAILED
        assert outcome.error_detail == "conflict"
        assert outcome.failure_kind == FailureKind.CONVERGENCE

    def test_failed_never_has_empty_detail(self):
        outcome = ReconcileOutcome.failed("", FailureKind.VALIDATION)
        assert outcome.error_detail == "validation"

    def test_requeue_action(self):
        assert RequeueAction.after(10).requeue_after_seconds == 10
        assert RequeueAction.await_change().requeue_after_seconds is None


class TestReconcilerConfig:
    def test_defaults(self):
        config = ReconcilerConfig()
        assert config.default_namespace == "default"
        assert config.steady_state_interval_seconds == 30
        assert config.retry_interval_seconds == 10
        assert config.backoff_enabled is False
        assert config.field_manager == "edge-operator"
        assert config.plural == "edgedeployments"

    def test_from_env(self):
        config = ReconcilerConfig.from_env({
            "EDGE_OPERATOR_DEFAULT_NAMESPACE": "edge-system",
            "EDGE_OPERATOR_RETRY_INTERVAL": "5",
            "EDGE_OPERATOR_BACKOFF_ENABLED": "true",
            "EDGE_OPERATOR_WORKERS": "",
            "UNRELATED": "x",
        })
        assert config.default_namespace == "edge-system"
        assert config.retry_interval_seconds == 5
        assert config.backoff_enabled is True
        assert config.workers == 4

    def test_from_env_rejects_bad_values(self):
        with pytest.raises(ValidationError):
            ReconcilerConfig.from_env({"EDGE_OPERATOR_WORKERS": "0"})
        with pytest.raises(ValidationError):
            ReconcilerConfig.from_env({"EDGE_OPERATOR_RETRY_INTERVAL": "soon"})
