"""Desired Manifest: the Deployment the controller converges toward."""

import json
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict


class DesiredManifest(BaseModel):
    """
    Derived from an intent on every reconcile and never stored on its own.

    `labels` is also the pod selector, so it must stay exactly {"app": name}.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    namespace: str
    labels: Dict[str, str]
    replicas: int
    container_image: str
    node_selector: Optional[Dict[str, str]] = None

    def to_deployment(self) -> dict:
        """Render as an apps/v1 Deployment document."""
        pod_spec = {
            "containers": [
                {"name": self.name, "image": self.container_image},
            ],
        }
        if self.node_selector is not None:
            pod_spec["nodeSelector"] = dict(self.node_selector)

        return {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": {
                "name": self.name,
                "namespace": self.namespace,
                "labels": dict(self.labels),
            },
            "spec": {
                "replicas": self.replicas,
                "selector": {"matchLabels": dict(self.labels)},
                "template": {
                    "metadata": {"labels": dict(self.labels)},
                    "spec": pod_spec,
                },
            },
        }

    def canonical_json(self) -> str:
        """Sorted-key compact JSON of the Deployment document."""
        return json.dumps(self.to_deployment(), sort_keys=True, separators=(",", ":"))
