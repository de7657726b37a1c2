"""Tests for the generic controller runtime."""

import asyncio
from collections.abc import AsyncGenerator, Callable
import copy

import pytest

from osbuild_operator.controller import (
    Controller,
    ControllerConfig,
    Reconciler,
    Result,
)
from osbuild_operator.exceptions import OSBuildException
from osbuild_operator.manifest import (
    BuildDetails,
    ConfigMap,
    NamedResource,
    ObjectMeta,
    OSBuild,
    OSBuildSpec,
    TargetImage,
    TargetImageType,
)
from osbuild_operator.predicates import GenerationChangedPredicate
from osbuild_operator.store import InMemoryStore


class RecordingReconciler(Reconciler):
    """Reconciler recording requests and returning scripted results."""

    def __init__(self) -> None:
        self.requests: list[NamedResource] = []
        self.results: list[Result | Exception] = []
        self.changed = asyncio.Event()

    async def reconcile(self, request: NamedResource) -> Result:
        self.requests.append(request)
        self.changed.set()
        if self.results:
            result = self.results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return Result()

    async def wait_for(self, count: int) -> None:
        async with asyncio.timeout(2):
            while len(self.requests) < count:
                self.changed.clear()
                await self.changed.wait()


@pytest.fixture(name="reconciler")
def reconciler_fixture() -> RecordingReconciler:
    """Create a reconciler that records its requests."""
    return RecordingReconciler()


@pytest.fixture(name="make_controller")
async def make_controller_fixture(
    store: InMemoryStore, reconciler: RecordingReconciler
) -> AsyncGenerator[Callable[..., Controller], None]:
    """Create controllers that are closed at the end of the test."""
    controllers: list[Controller] = []

    def _make(**kwargs) -> Controller:  # type: ignore[no-untyped-def]
        kwargs.setdefault("config", ControllerConfig(error_requeue_after=0.01))
        controller = Controller("test", store, reconciler, "ConfigMap", **kwargs)
        controllers.append(controller)
        return controller

    yield _make
    for controller in controllers:
        await controller.close()


def _config_map(name: str, namespace: str = "default") -> ConfigMap:
    return ConfigMap(metadata=ObjectMeta(name=name, namespace=namespace))


async def test_reconcile_existing_and_new_objects(
    store: InMemoryStore,
    reconciler: RecordingReconciler,
    make_controller: Callable[..., Controller],
) -> None:
    """Test that existing and newly created objects are reconciled."""
    await store.create(_config_map("existing"))
    controller = make_controller()
    await controller.start()
    await reconciler.wait_for(1)

    await store.create(_config_map("new"))
    await reconciler.wait_for(2)
    assert reconciler.requests == [
        NamedResource("ConfigMap", "default", "existing"),
        NamedResource("ConfigMap", "default", "new"),
    ]


async def test_predicate_filters_updates(
    store: InMemoryStore,
    reconciler: RecordingReconciler,
    make_controller: Callable[..., Controller],
) -> None:
    """Test that updates rejected by the predicate are not reconciled."""
    controller = make_controller(predicate=GenerationChangedPredicate())
    await controller.start()
    obj = await store.create(_config_map("ks"))
    await reconciler.wait_for(1)

    labeled = copy.deepcopy(obj)
    labeled.metadata.labels = {"a": "b"}
    await store.patch(obj, labeled)
    await asyncio.sleep(0.05)
    assert len(reconciler.requests) == 1

    changed = copy.deepcopy(labeled)
    changed.data = {"kickstart": "text"}
    await store.patch(labeled, changed)
    await reconciler.wait_for(2)


async def test_requeue(
    store: InMemoryStore,
    reconciler: RecordingReconciler,
    make_controller: Callable[..., Controller],
) -> None:
    """Test that results and errors requeue the request."""
    reconciler.results = [
        Result(requeue_after=0.01),
        Result(requeue=True),
        OSBuildException("temporary failure"),
        RuntimeError("unexpected failure"),
    ]
    controller = make_controller()
    await controller.start()
    await store.create(_config_map("ks"))
    await reconciler.wait_for(5)
    assert set(reconciler.requests) == {NamedResource("ConfigMap", "default", "ks")}

    await asyncio.sleep(0.05)
    assert len(reconciler.requests) == 5
    assert not controller.busy


async def test_namespace_filter(
    store: InMemoryStore,
    reconciler: RecordingReconciler,
    make_controller: Callable[..., Controller],
) -> None:
    """Test that a controller only watches its configured namespace."""
    controller = make_controller(config=ControllerConfig(namespace="builds"))
    await controller.start()
    await store.create(_config_map("ignored", "default"))
    await store.create(_config_map("watched", "builds"))
    await reconciler.wait_for(1)
    await asyncio.sleep(0.05)
    assert reconciler.requests == [NamedResource("ConfigMap", "builds", "watched")]


async def test_owned_objects(
    store: InMemoryStore,
    reconciler: RecordingReconciler,
    make_controller: Callable[..., Controller],
) -> None:
    """Test that changes to owned objects reconcile the controlling owner."""
    owner = await store.create(_config_map("owner"))
    controller = make_controller()
    controller.owns("OSBuild")
    await controller.start()
    await reconciler.wait_for(1)

    build = OSBuild(
        metadata=ObjectMeta(
            name="edge-1",
            namespace="default",
            owner_references=[owner.owner_reference()],
        ),
        spec=OSBuildSpec(
            details=BuildDetails(
                distribution="rhel-86",
                target_image=TargetImage(
                    architecture="x86_64",
                    target_image_type=TargetImageType.EDGE_CONTAINER,
                ),
            )
        ),
    )
    await store.create(build)
    await reconciler.wait_for(2)
    assert reconciler.requests[-1] == owner.resource_id

    # Objects without a controlling owner are ignored
    unowned = copy.deepcopy(build)
    unowned.metadata.name = "edge-2"
    unowned.metadata.owner_references = [owner.owner_reference(controller=None)]
    await store.create(unowned)
    await asyncio.sleep(0.05)
    assert len(reconciler.requests) == 2


async def test_close(
    store: InMemoryStore,
    reconciler: RecordingReconciler,
    make_controller: Callable[..., Controller],
) -> None:
    """Test that a closed controller stops reconciling."""
    controller = make_controller()
    await controller.start()
    await controller.close()
    await store.create(_config_map("ks"))
    await asyncio.sleep(0.05)
    assert reconciler.requests == []
