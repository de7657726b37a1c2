"""Tests for the OSBuild controller."""

import copy
from pathlib import Path

import pytest

from osbuild_operator.composer import ComposeStatusValue
from osbuild_operator.controller import Result
from osbuild_operator.exceptions import ComposerException, ConflictError
from osbuild_operator.manifest import (
    BuildDetails,
    EdgeInstallerBuildDetails,
    NamedResource,
    ObjectMeta,
    OSBuild,
    OSBuildConditionType,
    OSBuildSpec,
    OSTreeConfig,
    TargetImage,
    TargetImageType,
    TriggeredBy,
)
from osbuild_operator.osbuild_controller import (
    OSBuildControllerConfig,
    OSBuildReconciler,
)
from osbuild_operator.osbuild_controller.controller import CONTAINER_PHASE
from osbuild_operator.store import InMemoryStore

from ..conftest import FakeComposer

BUILD_ID = NamedResource("OSBuild", "default", "edge-1")
REQUEUE_SHORT = 1.0
REQUEUE_LONG = 2.0


@pytest.fixture(name="reconciler")
def reconciler_fixture(
    store: InMemoryStore, composer: FakeComposer, tmp_path: Path
) -> OSBuildReconciler:
    """Create the reconciler under test."""
    return OSBuildReconciler(
        store,
        composer,
        OSBuildControllerConfig(
            requeue_short=REQUEUE_SHORT,
            requeue_long=REQUEUE_LONG,
            repositories_dir=tmp_path,
        ),
    )


def _build(target: TargetImageType = TargetImageType.EDGE_CONTAINER) -> OSBuild:
    return OSBuild(
        metadata=ObjectMeta(name="edge-1", namespace="default"),
        spec=OSBuildSpec(
            details=BuildDetails(
                distribution="rhel-86",
                target_image=TargetImage(
                    architecture="x86_64",
                    target_image_type=target,
                    os_tree=OSTreeConfig(ref="rhel/8/x86_64/edge"),
                ),
            )
        ),
    )


async def _conditions(store: InMemoryStore) -> list[OSBuildConditionType]:
    build = await store.get(BUILD_ID, OSBuild)
    return [condition.type for condition in build.status.conditions or ()]


async def test_missing_build(reconciler: OSBuildReconciler) -> None:
    """Test reconciling a build that does not exist."""
    assert await reconciler.reconcile(BUILD_ID) == Result()


async def test_edge_container(
    store: InMemoryStore, composer: FakeComposer, reconciler: OSBuildReconciler
) -> None:
    """Test building an edge container from submit to completion."""
    await store.create(_build())
    composer.default_status = ComposeStatusValue.PENDING

    assert await reconciler.reconcile(BUILD_ID) == Result(requeue_after=REQUEUE_LONG)
    build = await store.get(BUILD_ID, OSBuild)
    assert build.status.container_compose_id == "compose-1"
    assert build.status.last_condition
    assert build.status.last_condition.message == "Edge-container job is still running"
    assert build.status.last_condition.last_transition_time
    assert len(composer.requests) == 1
    assert composer.requests[0].image_request.image_type == "edge-container"

    # A pending compose does not record a new condition
    assert await reconciler.reconcile(BUILD_ID) == Result(requeue_after=REQUEUE_LONG)
    assert await _conditions(store) == [OSBuildConditionType.CONTAINER_STARTED]

    composer.default_status = ComposeStatusValue.SUCCESS
    assert await reconciler.reconcile(BUILD_ID) == Result(requeue=True)
    build = await store.get(BUILD_ID, OSBuild)
    assert build.status.container_url == "https://images.example.com/compose-1"
    assert build.status.last_condition
    assert build.status.last_condition.message == (
        "Edge-container job was finished successfully"
    )
    assert build.ready_image_type == TargetImageType.EDGE_CONTAINER

    assert await reconciler.reconcile(BUILD_ID) == Result()
    assert len(composer.requests) == 1


async def test_edge_installer(
    store: InMemoryStore, composer: FakeComposer, reconciler: OSBuildReconciler
) -> None:
    """Test that an installer build continues with the installer compose."""
    await store.create(_build(TargetImageType.EDGE_INSTALLER))

    await reconciler.reconcile(BUILD_ID)
    assert await reconciler.reconcile(BUILD_ID) == Result(requeue=True)
    assert await reconciler.reconcile(BUILD_ID) == Result(requeue_after=REQUEUE_LONG)

    build = await store.get(BUILD_ID, OSBuild)
    assert build.status.iso_compose_id == "compose-2"
    request = composer.requests[1]
    assert request.image_request.image_type == "edge-installer"
    assert request.image_request.ostree
    assert request.image_request.ostree.url == "https://images.example.com/compose-1"
    assert request.image_request.ostree.ref == "rhel/8/x86_64/edge"

    assert await reconciler.reconcile(BUILD_ID) == Result(requeue=True)
    build = await store.get(BUILD_ID, OSBuild)
    assert build.status.iso_url == "https://images.example.com/compose-2"
    assert await _conditions(store) == [
        OSBuildConditionType.CONTAINER_STARTED,
        OSBuildConditionType.CONTAINER_DONE,
        OSBuildConditionType.ISO_STARTED,
        OSBuildConditionType.ISO_DONE,
    ]
    assert await reconciler.reconcile(BUILD_ID) == Result()
    assert len(composer.requests) == 2


async def test_installer_phase_build(
    store: InMemoryStore, composer: FakeComposer, reconciler: OSBuildReconciler
) -> None:
    """Test that a build with installer details skips the container compose."""
    build = _build(TargetImageType.EDGE_INSTALLER)
    build.spec.triggered_by = TriggeredBy.INSTALLER_PHASE
    build.spec.edge_installer_details = EdgeInstallerBuildDetails(
        distribution="rhel-90",
        os_tree=OSTreeConfig(ref="rhel/9/x86_64/edge", url="https://c.example.com"),
    )
    await store.create(build)

    await reconciler.reconcile(BUILD_ID)
    assert await _conditions(store) == [OSBuildConditionType.ISO_STARTED]
    request = composer.requests[0]
    assert request.distribution == "rhel-90"
    assert request.image_request.image_type == "edge-installer"
    assert request.image_request.ostree
    assert request.image_request.ostree.url == "https://c.example.com"


async def test_compose_failure(
    store: InMemoryStore, composer: FakeComposer, reconciler: OSBuildReconciler
) -> None:
    """Test that a failed compose fails the build."""
    await store.create(_build(TargetImageType.EDGE_INSTALLER))
    composer.default_status = ComposeStatusValue.FAILURE

    await reconciler.reconcile(BUILD_ID)
    assert await reconciler.reconcile(BUILD_ID) == Result(requeue=True)
    build = await store.get(BUILD_ID, OSBuild)
    assert build.failed
    assert build.status.last_condition
    assert build.status.last_condition.message == "Edge-container job was failed"

    assert await reconciler.reconcile(BUILD_ID) == Result()
    assert len(composer.requests) == 1


async def test_post_failure(
    store: InMemoryStore, composer: FakeComposer, reconciler: OSBuildReconciler
) -> None:
    """Test that a rejected compose is recorded and retried."""
    await store.create(_build())
    composer.post_error = ComposerException("status code 500")

    assert await reconciler.reconcile(BUILD_ID) == Result(requeue_after=REQUEUE_LONG)
    build = await store.get(BUILD_ID, OSBuild)
    assert build.failed
    assert build.status.container_compose_id is None
    assert build.status.last_condition
    assert build.status.last_condition.message == (
        "Failed to post a new composer build request: status code 500"
    )

    # The same failure is not recorded twice
    await reconciler.reconcile(BUILD_ID)
    assert await _conditions(store) == [OSBuildConditionType.CONTAINER_FAILED]

    composer.post_error = None
    await reconciler.reconcile(BUILD_ID)
    assert await _conditions(store) == [
        OSBuildConditionType.CONTAINER_FAILED,
        OSBuildConditionType.CONTAINER_STARTED,
    ]


async def test_status_failure(
    store: InMemoryStore, composer: FakeComposer, reconciler: OSBuildReconciler
) -> None:
    """Test that a failed status lookup is retried soon."""
    await store.create(_build())
    await reconciler.reconcile(BUILD_ID)
    composer.status_error = ComposerException("connection refused")

    assert await reconciler.reconcile(BUILD_ID) == Result(requeue_after=REQUEUE_SHORT)
    assert await _conditions(store) == [OSBuildConditionType.CONTAINER_STARTED]


async def test_deleted_build(
    store: InMemoryStore, composer: FakeComposer, reconciler: OSBuildReconciler
) -> None:
    """Test that a build marked for deletion is not submitted."""
    build = _build()
    build.metadata.finalizers = ["osbuilder.project-flotta.io/cleanup"]
    build = await store.create(build)
    await store.delete(build.resource_id)

    assert await reconciler.reconcile(BUILD_ID) == Result()
    assert composer.requests == []

    marked = await store.get(BUILD_ID, OSBuild)
    cleared = copy.deepcopy(marked)
    cleared.metadata.finalizers = None
    await store.patch(marked, cleared)
    assert await store.list_objects("OSBuild") == []


async def test_success_without_upload_url(
    store: InMemoryStore,
    composer: FakeComposer,
    reconciler: OSBuildReconciler,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Test that a finished compose without an image URL still completes."""
    await store.create(_build())
    composer.upload = False

    await reconciler.reconcile(BUILD_ID)
    assert await reconciler.reconcile(BUILD_ID) == Result(requeue=True)
    build = await store.get(BUILD_ID, OSBuild)
    assert build.ready_image_type == TargetImageType.EDGE_CONTAINER
    assert build.status.container_url is None
    assert "compose-1 has no upload URL" in caplog.text


async def test_stale_status_update_conflict(
    store: InMemoryStore, composer: FakeComposer, reconciler: OSBuildReconciler
) -> None:
    """Test that conditions appended by another writer are never dropped."""
    await store.create(_build())
    stale = await store.get(BUILD_ID, OSBuild)
    composer.default_status = ComposeStatusValue.PENDING
    await reconciler.reconcile(BUILD_ID)

    with pytest.raises(ConflictError, match="Conflict writing OSBuild/default/edge-1"):
        await reconciler._update_status(
            stale,
            CONTAINER_PHASE,
            CONTAINER_PHASE.failed,
            "Edge-container job was failed",
        )
    assert await _conditions(store) == [OSBuildConditionType.CONTAINER_STARTED]
