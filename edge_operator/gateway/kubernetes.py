"""
Kubernetes Cluster Gateway and intent watcher.

The gateway converges Deployments with server-side apply under a fixed
field manager. Fields the manifest does not set, such as annotations or extra
labels written by other actors, survive. Fields it does set, replicas
included, are taken over with force=True on conflict. Status is written
through the status sub-resource as a JSON merge patch.

The watcher lists EdgeDeployments once, then streams watch events from the
last seen resourceVersion, re-listing when the server answers 410 Gone.
"""

import logging
import random
import threading
from typing import Callable, List, Optional

import urllib3
from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException

from edge_operator.gateway.base import (
    ClusterGateway,
    ConvergenceError,
    GatewayError,
    GatewayTimeout,
    ResourceNotFound,
    StatusWriteError,
    status_merge_patch,
)
from edge_operator.models.intent import KIND, EdgeDeployment, IntentStatus
from edge_operator.models.manifest import DesiredManifest
from edge_operator.models.reconciler import ReconcilerConfig

logger = logging.getLogger(__name__)

APPLY_PATCH_CONTENT_TYPE = "application/apply-patch+yaml"
MERGE_PATCH_CONTENT_TYPE = "application/merge-patch+json"


def load_kube_config() -> None:
    """Load in-cluster config, falling back to the local kubeconfig."""
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
    except config.ConfigException:
        config.load_kube_config()
        logger.info("Loaded local Kubernetes config")


def _api_error_detail(e: ApiException) -> str:
    """Short, user-facing detail for an API error (e.g. 'Conflict')."""
    return e.reason or f"HTTP {e.status}"


class KubernetesClusterGateway(ClusterGateway):
    """ClusterGateway backed by the Kubernetes API server."""

    def __init__(
        self,
        reconciler_config: ReconcilerConfig,
        api_client: Optional[client.ApiClient] = None,
    ):
        self.config = reconciler_config
        self.apps_api = client.AppsV1Api(api_client)
        self.custom_api = client.CustomObjectsApi(api_client)

    @property
    def _timeout(self) -> float:
        return self.config.request_timeout_seconds

    def get_intent(self, namespace: Optional[str], name: str) -> EdgeDeployment:
        namespace = namespace or self.config.default_namespace
        try:
            resource = self.custom_api.get_namespaced_custom_object(
                self.config.group,
                self.config.version,
                namespace,
                self.config.plural,
                name,
                _request_timeout=self._timeout,
            )
        except ApiException as e:
            if e.status == 404:
                raise ResourceNotFound(KIND, namespace, name) from e
            raise GatewayError(_api_error_detail(e)) from e
        except urllib3.exceptions.TimeoutError as e:
            raise GatewayTimeout(str(e)) from e
        except urllib3.exceptions.HTTPError as e:
            raise GatewayError(str(e)) from e
        return EdgeDeployment.from_resource(resource)

    def list_intents(self) -> List[EdgeDeployment]:
        try:
            response = self.custom_api.list_cluster_custom_object(
                self.config.group,
                self.config.version,
                self.config.plural,
                _request_timeout=self._timeout,
            )
        except ApiException as e:
            raise GatewayError(_api_error_detail(e)) from e
        except urllib3.exceptions.TimeoutError as e:
            raise GatewayTimeout(str(e)) from e
        except urllib3.exceptions.HTTPError as e:
            raise GatewayError(str(e)) from e
        return [EdgeDeployment.from_resource(item) for item in response.get("items", [])]

    def apply_deployment(self, manifest: DesiredManifest) -> dict:
        try:
            result = self.apps_api.patch_namespaced_deployment(
                name=manifest.name,
                namespace=manifest.namespace,
                body=manifest.to_deployment(),
                field_manager=self.config.field_manager,
                force=True,
                _content_type=APPLY_PATCH_CONTENT_TYPE,
                _request_timeout=self._timeout,
            )
        except ApiException as e:
            raise ConvergenceError(_api_error_detail(e)) from e
        except urllib3.exceptions.TimeoutError as e:
            raise GatewayTimeout(str(e)) from e
        except urllib3.exceptions.HTTPError as e:
            raise ConvergenceError(str(e)) from e
        return self.apps_api.api_client.sanitize_for_serialization(result)

    def patch_intent_status(
        self, namespace: str, name: str, status: IntentStatus
    ) -> None:
        try:
            self.custom_api.patch_namespaced_custom_object_status(
                self.config.group,
                self.config.version,
                namespace,
                self.config.plural,
                name,
                status_merge_patch(status),
                _content_type=MERGE_PATCH_CONTENT_TYPE,
                _request_timeout=self._timeout,
            )
        except ApiException as e:
            raise StatusWriteError(_api_error_detail(e)) from e
        except urllib3.exceptions.HTTPError as e:
            raise StatusWriteError(str(e)) from e


class IntentWatcher:
    """
    Streams EdgeDeployment change events into a callback.

    Runs in a background thread. `on_event(event_type, key)` is called for
    every object seen by the initial list ("SYNC") and every watch event.
    """

    def __init__(
        self,
        reconciler_config: ReconcilerConfig,
        on_event: Callable[[str, str], None],
        api_client: Optional[client.ApiClient] = None,
        watch_timeout_seconds: int = 300,
    ):
        self.config = reconciler_config
        self.on_event = on_event
        self.custom_api = client.CustomObjectsApi(api_client)
        self.watch_timeout_seconds = watch_timeout_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._watcher: Optional[watch.Watch] = None

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self.run_forever, name="intent-watcher", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._watcher is not None:
            self._watcher.stop()
        if self._thread is not None:
            self._thread.join(timeout=5)

    def _list(self) -> Optional[str]:
        """List every intent, emit SYNC events, and return the list resourceVersion."""
        response = self.custom_api.list_cluster_custom_object(
            self.config.group, self.config.version, self.config.plural
        )
        for item in response.get("items", []):
            self._emit("SYNC", item)
        return (response.get("metadata") or {}).get("resourceVersion")

    def _emit(self, event_type: str, resource: dict) -> None:
        metadata = resource.get("metadata") or {}
        name = metadata.get("name")
        if not name:
            return
        key = f"{metadata.get('namespace') or ''}/{name}"
        self.on_event(event_type, key)

    def run_forever(self) -> None:
        resource_version: Optional[str] = None
        backoff_seconds = 1.0

        while not self._stop.is_set():
            try:
                if resource_version is None:
                    resource_version = self._list()
                    logger.info("Watching %s from resourceVersion %s", self.config.plural, resource_version)

                self._watcher = watch.Watch()
                stream = self._watcher.stream(
                    self.custom_api.list_cluster_custom_object,
                    self.config.group,
                    self.config.version,
                    self.config.plural,
                    resource_version=resource_version,
                    timeout_seconds=self.watch_timeout_seconds,
                )
                for event in stream:
                    if self._stop.is_set():
                        break
                    obj = event.get("object") or {}
                    event_type = str(event.get("type", ""))
                    if event_type == "ERROR":
                        if obj.get("code") == 410:
                            logger.warning("Watch resource version expired, re-listing")
                            resource_version = None
                            break
                        logger.error("Watch returned error object: %s", obj)
                        continue
                    latest = (obj.get("metadata") or {}).get("resourceVersion")
                    if latest:
                        resource_version = latest
                    self._emit(event_type, obj)
                backoff_seconds = 1.0
            except ApiException as e:
                if e.status == 410:
                    logger.warning("Watch resource version expired, re-listing")
                    resource_version = None
                    continue
                logger.error("Watch failed (status=%s): %s", e.status, e.reason)
                self._sleep_with_jitter(backoff_seconds)
                backoff_seconds = min(backoff_seconds * 2, 30.0)
            except urllib3.exceptions.HTTPError:
                logger.exception("Watch connection failed")
                self._sleep_with_jitter(backoff_seconds)
                backoff_seconds = min(backoff_seconds * 2, 30.0)

    def _sleep_with_jitter(self, seconds: float) -> None:
        self._stop.wait(timeout=seconds * (0.5 + random.random()))
