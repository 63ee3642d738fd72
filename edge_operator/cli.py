"""
Process bootstrap for the Edge Operator.

    edge-operator run [--default-namespace NS] [--workers N] [--backoff]
                      [--api-port PORT] [--log-level LEVEL]

Wires config → Kubernetes gateway → engine → controller loop → watcher and
runs until SIGINT/SIGTERM. With --api-port the admin API is served from a
daemon thread.
"""

import argparse
import asyncio
import logging
import signal
import sys
import threading
from typing import List, Optional

from edge_operator.api.app import create_app
from edge_operator.gateway.kubernetes import (
    IntentWatcher,
    KubernetesClusterGateway,
    load_kube_config,
)
from edge_operator.history.store import ReconcileHistoryStore
from edge_operator.models.reconciler import ReconcilerConfig
from edge_operator.reconciler.engine import ReconcileEngine
from edge_operator.reconciler.loop import ControllerLoop

logger = logging.getLogger("edge_operator")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="edge-operator",
        description="Reconcile EdgeDeployment resources into Deployments.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run the controller against the current cluster")
    run.add_argument("--default-namespace", help="Namespace for intents that carry none")
    run.add_argument("--workers", type=int, help="Keys reconciled concurrently")
    run.add_argument("--backoff", action="store_true", help="Exponential backoff on repeated failures")
    run.add_argument("--api-port", type=int, help="Serve the admin API on this port")
    run.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    return parser


def config_from_args(args: argparse.Namespace) -> ReconcilerConfig:
    """Environment config with command-line flags taking precedence."""
    cfg = ReconcilerConfig.from_env()
    updates = {}
    if args.default_namespace:
        updates["default_namespace"] = args.default_namespace
    if args.workers:
        updates["workers"] = args.workers
    if args.backoff:
        updates["backoff_enabled"] = True
    if updates:
        cfg = ReconcilerConfig(**{**cfg.model_dump(), **updates})
    return cfg


def _serve_api(app, port: int) -> None:
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")


async def _run(cfg: ReconcilerConfig, api_port: Optional[int]) -> None:
    load_kube_config()
    gateway = KubernetesClusterGateway(cfg)
    history = ReconcileHistoryStore(cfg.history_db_path)
    engine = ReconcileEngine(gateway, config=cfg, history=history)
    loop = ControllerLoop(engine, cfg)
    watcher = IntentWatcher(cfg, on_event=loop.on_event)

    if api_port:
        app = create_app(gateway=gateway, config=cfg, history=history, loop=loop)
        threading.Thread(target=_serve_api, args=(app, api_port), daemon=True).start()
        logger.info("Admin API listening on port %d", api_port)

    stop_event = asyncio.Event()
    event_loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        event_loop.add_signal_handler(sig, stop_event.set)

    logger.info(
        "Starting edge-operator (default namespace %s, %d workers, backoff %s)",
        cfg.default_namespace,
        cfg.workers,
        "on" if cfg.backoff_enabled else "off",
    )
    watcher.start()
    try:
        await loop.run(stop_event)
    finally:
        watcher.stop()
        history.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "run":
        cfg = config_from_args(args)
        asyncio.run(_run(cfg, args.api_port))
        return 0
    return 1


if __name__ == "__main__":
    sys.exit(main())
