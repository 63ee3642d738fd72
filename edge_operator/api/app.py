"""
Edge Operator API: FastAPI endpoints.

Exposes the operator for inspection and local experimentation:
- Health and configuration
- Intent management (in-memory gateway only)
- One-shot reconcile
- Manifest preview
- Reconcile history
"""

from typing import Dict, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, ConfigDict

from edge_operator.builder.desired_state import IntentValidationError
from edge_operator.gateway.base import ClusterGateway, GatewayError, ResourceNotFound
from edge_operator.gateway.memory import InMemoryClusterGateway
from edge_operator.history.store import ReconcileHistoryStore
from edge_operator.models.intent import EdgeDeployment, IntentSpec
from edge_operator.models.reconciler import ReconcilerConfig
from edge_operator.reconciler.engine import ReconcileEngine
from edge_operator.reconciler.loop import ControllerLoop


# --- Request/Response Models ---

class IntentUpsertRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    namespace: Optional[str] = None
    spec: IntentSpec


class ManifestPreviewRequest(BaseModel):
    name: str
    namespace: Optional[str] = None
    spec: IntentSpec


class HealthResponse(BaseModel):
    status: str
    gateway: str
    loop: str
    history_records: int


def _intent_view(intent: EdgeDeployment) -> Dict:
    return intent.to_resource()


# --- Application Factory ---

def create_app(
    gateway: Optional[ClusterGateway] = None,
    config: Optional[ReconcilerConfig] = None,
    history: Optional[ReconcileHistoryStore] = None,
    loop: Optional[ControllerLoop] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="Edge Operator API",
        description="EdgeDeployment reconciliation controller",
        version="0.1.0",
    )

    cfg = config or ReconcilerConfig()
    gw = gateway or InMemoryClusterGateway(default_namespace=cfg.default_namespace)
    hs = history or ReconcileHistoryStore(cfg.history_db_path)
    engine = loop.engine if loop is not None else ReconcileEngine(gw, config=cfg, history=hs)

    app.state.gateway = gw
    app.state.config = cfg
    app.state.history = hs
    app.state.engine = engine
    app.state.loop = loop

    def _require_sandbox() -> InMemoryClusterGateway:
        if not isinstance(gw, InMemoryClusterGateway):
            raise HTTPException(400, "Intents are managed through the cluster API in this mode")
        return gw

    def _get_intent(namespace: str, name: str) -> EdgeDeployment:
        try:
            return gw.get_intent(namespace, name)
        except ResourceNotFound:
            raise HTTPException(404, "Intent not found")
        except GatewayError as e:
            raise HTTPException(502, str(e))

    # === HEALTH / CONFIG ===

    @app.get("/healthz", response_model=HealthResponse)
    def healthz():
        """Liveness and a short summary."""
        return HealthResponse(
            status="ok",
            gateway=type(gw).__name__,
            loop=loop.status if loop is not None else "detached",
            history_records=hs.count(),
        )

    @app.get("/config")
    def get_config():
        """Current reconciler configuration."""
        return cfg.model_dump()

    # === INTENT MANAGEMENT ===

    @app.post("/intents")
    def create_intent(req: IntentUpsertRequest):
        """Create or replace an intent (sandbox mode)."""
        sandbox = _require_sandbox()
        if not req.name:
            raise HTTPException(422, "name is required")
        intent = sandbox.upsert_intent(
            EdgeDeployment(name=req.name, namespace=req.namespace, spec=req.spec)
        )
        if loop is not None:
            loop.enqueue(intent.key)
        return _intent_view(intent)

    @app.put("/intents/{namespace}/{name}")
    def replace_intent(namespace: str, name: str, req: IntentUpsertRequest):
        """Replace an intent's spec (sandbox mode)."""
        sandbox = _require_sandbox()
        intent = sandbox.upsert_intent(
            EdgeDeployment(name=name, namespace=namespace, spec=req.spec)
        )
        if loop is not None:
            loop.enqueue(intent.key)
        return _intent_view(intent)

    @app.delete("/intents/{namespace}/{name}")
    def delete_intent(namespace: str, name: str):
        """Delete an intent and its Deployment (sandbox mode)."""
        sandbox = _require_sandbox()
        if not sandbox.delete_intent(namespace, name):
            raise HTTPException(404, "Intent not found")
        engine.requeue_policy.forget(f"{namespace}/{name}")
        return {"status": "deleted", "key": f"{namespace}/{name}"}

    @app.get("/intents")
    def list_intents():
        """List all intents with their status."""
        try:
            return [_intent_view(i) for i in gw.list_intents()]
        except GatewayError as e:
            raise HTTPException(502, str(e))

    @app.get("/intents/{namespace}/{name}")
    def get_intent(namespace: str, name: str):
        """Get one intent with its status."""
        return _intent_view(_get_intent(namespace, name))

    # === RECONCILE ===

    @app.post("/intents/{namespace}/{name}/reconcile")
    def reconcile_intent(namespace: str, name: str):
        """Run one reconcile for an intent now."""
        intent = _get_intent(namespace, name)
        result = engine.reconcile(intent)
        return result.model_dump(mode="json")

    @app.post("/manifests/preview")
    def preview_manifest(req: ManifestPreviewRequest):
        """Build the Deployment an intent would produce, without applying it."""
        namespace = req.namespace or cfg.default_namespace
        try:
            manifest = engine.builder.build(req.name, namespace, req.spec)
        except IntentValidationError as e:
            raise HTTPException(422, {"violations": e.violations})
        return manifest.to_deployment()

    @app.get("/deployments/{namespace}/{name}")
    def get_deployment(namespace: str, name: str):
        """Managed Deployment as stored (sandbox mode)."""
        sandbox = _require_sandbox()
        deployment = sandbox.get_deployment(namespace, name)
        if deployment is None:
            raise HTTPException(404, "Deployment not found")
        return deployment

    # === HISTORY ===

    @app.get("/history")
    def get_history(limit: int = 50):
        """Recent reconcile attempts."""
        return [r.model_dump(mode="json") for r in hs.query_recent(limit=limit)]

    @app.get("/history/{namespace}/{name}")
    def get_history_for_intent(namespace: str, name: str, limit: int = 50):
        """Reconcile attempts for one intent."""
        key = f"{namespace}/{name}"
        return {
            "key": key,
            "failure_streak": hs.failure_streak(key),
            "records": [r.model_dump(mode="json") for r in hs.query_by_key(key, limit=limit)],
        }

    return app


# Default application instance (in-memory sandbox)
app = create_app()
