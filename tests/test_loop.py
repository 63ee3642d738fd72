"""Tests for the Controller Loop."""

import asyncio
import threading
import time

from edge_operator.gateway.memory import InMemoryClusterGateway
from edge_operator.models.intent import EdgeDeployment, IntentSpec
from edge_operator.models.reconciler import OutcomeKind, ReconcilerConfig
from edge_operator.reconciler.engine import ReconcileEngine
from edge_operator.reconciler.loop import ControllerLoop


class _SlowGateway(InMemoryClusterGateway):
    """Holds each apply for a while and tracks how many run at once."""

    def __init__(self, delay: float = 0.05, **kwargs):
        super().__init__(**kwargs)
        self.delay = delay
        self._active_lock = threading.Lock()
        self.active = {}
        self.max_active_per_key = 0
        self.max_active_total = 0

    def apply_deployment(self, manifest):
        key = f"{manifest.namespace}/{manifest.name}"
        with self._active_lock:
            self.active[key] = self.active.get(key, 0) + 1
            self.max_active_per_key = max(self.max_active_per_key, self.active[key])
            self.max_active_total = max(self.max_active_total, sum(self.active.values()))
        try:
            time.sleep(self.delay)
            return super().apply_deployment(manifest)
        finally:
            with self._active_lock:
                self.active[key] -= 1


async def _wait_for(condition, timeout: float = 3.0) -> None:
    deadline = time.monotonic() + timeout
    while not condition():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def _intent(name: str) -> EdgeDeployment:
    return EdgeDeployment(name=name, namespace="edge", spec=IntentSpec(image="app:v1"))


async def _start(controller: ControllerLoop):
    stop_event = asyncio.Event()
    task = asyncio.create_task(controller.run(stop_event))
    await _wait_for(lambda: controller.status == "running")
    return stop_event, task


class TestControllerLoop:
    def setup_method(self):
        self.config = ReconcilerConfig(workers=2)
        self.gateway = InMemoryClusterGateway()
        self.engine = ReconcileEngine(self.gateway, config=self.config)

    def test_reconciles_and_schedules_requeue(self):
        self.gateway.upsert_intent(_intent("web"))
        controller = ControllerLoop(self.engine)

        async def scenario():
            controller.enqueue("edge/web")
            stop_event, task = await _start(controller)
            await _wait_for(lambda: "edge/web" in controller.last_results)
            assert controller.scheduled_keys == ["edge/web"]
            stop_event.set()
            await task

        asyncio.run(scenario())

        assert controller.last_results["edge/web"].outcome.kind == OutcomeKind.APPLIED
        assert controller.status == "stopped"
        assert controller.scheduled_keys == []

    def test_duplicate_enqueues_collapse(self):
        self.gateway.upsert_intent(_intent("web"))
        controller = ControllerLoop(self.engine)

        async def scenario():
            for _ in range(3):
                controller.enqueue("edge/web")
            stop_event, task = await _start(controller)
            await controller.drain()
            stop_event.set()
            await task

        asyncio.run(scenario())
        assert len(self.gateway.apply_calls) == 1

    def test_requeue_timer_fires(self):
        config = ReconcilerConfig(steady_state_interval_seconds=0.05)
        engine = ReconcileEngine(self.gateway, config=config)
        self.gateway.upsert_intent(_intent("web"))
        controller = ControllerLoop(engine)

        async def scenario():
            controller.enqueue("edge/web")
            stop_event, task = await _start(controller)
            await _wait_for(lambda: len(self.gateway.apply_calls) >= 3)
            stop_event.set()
            await task

        asyncio.run(scenario())

    def test_same_key_never_runs_concurrently(self):
        gateway = _SlowGateway(delay=0.1)
        gateway.upsert_intent(_intent("web"))
        controller = ControllerLoop(ReconcileEngine(gateway, config=self.config))

        async def scenario():
            stop_event, task = await _start(controller)
            controller.enqueue("edge/web")
            await _wait_for(lambda: gateway.active.get("edge/web", 0) == 1)
            # Events while in flight mark the key dirty; it runs exactly once more
            controller.enqueue("edge/web")
            controller.enqueue("edge/web")
            await _wait_for(lambda: len(gateway.apply_calls) == 2)
            await controller.drain()
            stop_event.set()
            await task

        asyncio.run(scenario())
        assert gateway.max_active_per_key == 1
        assert len(gateway.apply_calls) == 2

    def test_distinct_keys_run_concurrently(self):
        gateway = _SlowGateway(delay=0.2)
        gateway.upsert_intent(_intent("a"))
        gateway.upsert_intent(_intent("b"))
        controller = ControllerLoop(ReconcileEngine(gateway, config=self.config))

        async def scenario():
            controller.enqueue("edge/a")
            controller.enqueue("edge/b")
            stop_event, task = await _start(controller)
            await controller.drain()
            stop_event.set()
            await task

        asyncio.run(scenario())
        assert gateway.max_active_total == 2

    def test_deleted_intent_is_forgotten(self):
        controller = ControllerLoop(self.engine)

        async def scenario():
            controller.enqueue("edge/gone")
            stop_event, task = await _start(controller)
            await controller.drain()
            assert controller.scheduled_keys == []
            stop_event.set()
            await task

        asyncio.run(scenario())
        assert "edge/gone" not in controller.last_results

    def test_read_failure_schedules_retry(self):
        class _BrokenReads(InMemoryClusterGateway):
            def get_intent(self, namespace, name):
                raise RuntimeError("apiserver unreachable")

        controller = ControllerLoop(ReconcileEngine(_BrokenReads(), config=self.config))

        async def scenario():
            controller.enqueue("edge/web")
            stop_event, task = await _start(controller)
            await controller.drain()
            assert controller.scheduled_keys == ["edge/web"]
            stop_event.set()
            await task

        asyncio.run(scenario())

    def test_stop_from_another_thread(self):
        controller = ControllerLoop(self.engine)

        async def scenario():
            task = asyncio.create_task(controller.run())
            await _wait_for(lambda: controller.status == "running")
            threading.Thread(target=controller.stop).start()
            await asyncio.wait_for(task, timeout=3)

        asyncio.run(scenario())
        assert controller.status == "stopped"
