"""OSBuild Controller implementation.

This controller drives one OSBuild through the compose service. Progress is
recorded as an append-only list of conditions on the build status, and the
last condition decides the next step:

    (none) -> startedContainerBuild -> containerBuildDone | failedContainerBuild
    containerBuildDone (edge-installer) -> startedIsoBuild
    startedIsoBuild -> isoBuildDone | failedIsoBuild

An edge-container build is done after the container phase. An edge-installer
build continues with an installer compose that uses the edge container as its
ostree source. A build created with edge installer details already has a
container and starts with the installer phase.
"""

import copy
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from pathlib import Path

from osbuild_operator.composer import Composer, ComposeStatusValue
from osbuild_operator.config import DEFAULT_REPOSITORIES_DIR
from osbuild_operator.controller import Reconciler, Result
from osbuild_operator.exceptions import ComposerException, ObjectNotFoundError
from osbuild_operator.manifest import (
    Condition,
    ConditionStatus,
    NamedResource,
    OSBuild,
    OSBuildConditionType,
    TargetImageType,
)
from osbuild_operator.store import Store

from .request import compose_request

_LOGGER = logging.getLogger(__name__)

FAILED_TO_POST_MSG = "Failed to post a new composer build request"
JOB_FINISHED_MSG = "{} job was finished successfully"
JOB_FAILED_MSG = "{} job was failed"
JOB_RUNNING_MSG = "{} job is still running"


@dataclass(frozen=True)
class _Phase:
    """The conditions and status fields of one compose of a build."""

    image_type: TargetImageType
    started: OSBuildConditionType
    done: OSBuildConditionType
    failed: OSBuildConditionType
    label: str

    def compose_id(self, build: OSBuild) -> str | None:
        if self.image_type == TargetImageType.EDGE_CONTAINER:
            return build.status.container_compose_id
        return build.status.iso_compose_id


CONTAINER_PHASE = _Phase(
    image_type=TargetImageType.EDGE_CONTAINER,
    started=OSBuildConditionType.CONTAINER_STARTED,
    done=OSBuildConditionType.CONTAINER_DONE,
    failed=OSBuildConditionType.CONTAINER_FAILED,
    label="Edge-container",
)
ISO_PHASE = _Phase(
    image_type=TargetImageType.EDGE_INSTALLER,
    started=OSBuildConditionType.ISO_STARTED,
    done=OSBuildConditionType.ISO_DONE,
    failed=OSBuildConditionType.ISO_FAILED,
    label="Edge-installer",
)


@dataclass
class OSBuildControllerConfig:
    """Configuration for the OSBuildReconciler."""

    requeue_short: float = 10.0
    """Seconds before retrying after a failed compose status lookup."""

    requeue_long: float = 120.0
    """Seconds between compose status polls."""

    repositories_dir: Path = DEFAULT_REPOSITORIES_DIR
    """Directory with the default repositories of each distribution."""


class OSBuildReconciler(Reconciler):
    """Reconciler submitting and polling composes for OSBuild objects."""

    def __init__(
        self,
        store: Store,
        composer: Composer,
        config: OSBuildControllerConfig | None = None,
    ) -> None:
        """Initialize the reconciler.

        Args:
            store: The central store for managing state
            composer: Client of the compose service
            config: The configuration for the reconciler
        """
        self.store = store
        self.composer = composer
        self._config = config or OSBuildControllerConfig()

    async def reconcile(self, request: NamedResource) -> Result:
        """Reconcile an OSBuild."""
        _LOGGER.info("Reconciling OSBuild %s", request)
        try:
            build = await self.store.get(request, OSBuild)
        except ObjectNotFoundError:
            _LOGGER.info("OSBuild %s wasn't found", request)
            return Result()

        if build.metadata.deletion_timestamp is not None:
            return Result()

        last = build.status.last_condition_type
        if build.spec.edge_installer_details is None:
            if not build.status.container_compose_id:
                _LOGGER.info("OSBuild %s: create an edge-container", request)
                return await self._submit(build, CONTAINER_PHASE)
            if last == CONTAINER_PHASE.started:
                return await self._poll(build, CONTAINER_PHASE)
            if last == CONTAINER_PHASE.failed:
                _LOGGER.error("OSBuild %s: failed to build edge container", request)
                return Result()
            if (
                last == CONTAINER_PHASE.done
                and build.target_image_type == TargetImageType.EDGE_CONTAINER
            ):
                _LOGGER.info(
                    "OSBuild %s: compose %s finished",
                    request,
                    build.status.container_compose_id,
                )
                return Result()

        if not build.status.iso_compose_id:
            _LOGGER.info("OSBuild %s: create an edge-installer", request)
            return await self._submit(build, ISO_PHASE)
        if last == ISO_PHASE.started:
            return await self._poll(build, ISO_PHASE)
        if last == ISO_PHASE.failed:
            _LOGGER.error("OSBuild %s: failed building the edge installer", request)
        return Result()

    async def _submit(self, build: OSBuild, phase: _Phase) -> Result:
        """Post a new compose for the phase and record its id."""
        request = await compose_request(
            build, phase.image_type, self._config.repositories_dir
        )
        try:
            compose = await self.composer.post_compose(request)
        except ComposerException as err:
            _LOGGER.error(
                "OSBuild %s: failed to post a new compose request: %s",
                build.resource_id,
                err,
            )
            await self._update_status(
                build, phase, phase.failed, f"{FAILED_TO_POST_MSG}: {err}"
            )
            return Result(requeue_after=self._config.requeue_long)

        _LOGGER.info(
            "OSBuild %s: compose %s was created, requeue to sample its status",
            build.resource_id,
            compose.id,
        )
        await self._update_status(
            build,
            phase,
            phase.started,
            JOB_RUNNING_MSG.format(phase.label),
            compose_id=compose.id,
        )
        return Result(requeue_after=self._config.requeue_long)

    async def _poll(self, build: OSBuild, phase: _Phase) -> Result:
        """Check on a running compose and record its outcome."""
        compose_id = phase.compose_id(build)
        try:
            status = await self.composer.get_compose_status(str(compose_id))
        except ComposerException as err:
            _LOGGER.error(
                "OSBuild %s: failed to get compose %s status: %s",
                build.resource_id,
                compose_id,
                err,
            )
            return Result(requeue_after=self._config.requeue_short)

        if status.status == ComposeStatusValue.PENDING:
            _LOGGER.info(
                "OSBuild %s: compose %s is still in progress",
                build.resource_id,
                compose_id,
            )
            await self._update_status(
                build, phase, phase.started, JOB_RUNNING_MSG.format(phase.label)
            )
            return Result(requeue_after=self._config.requeue_long)
        if status.status == ComposeStatusValue.SUCCESS:
            _LOGGER.info(
                "OSBuild %s: compose %s finished", build.resource_id, compose_id
            )
            if not status.upload_url:
                _LOGGER.warning(
                    "OSBuild %s: compose %s has no upload URL",
                    build.resource_id,
                    compose_id,
                )
            await self._update_status(
                build,
                phase,
                phase.done,
                JOB_FINISHED_MSG.format(phase.label),
                url=status.upload_url,
            )
        else:
            _LOGGER.info("OSBuild %s: compose %s failed", build.resource_id, compose_id)
            await self._update_status(
                build,
                phase,
                phase.failed,
                JOB_FAILED_MSG.format(phase.label),
                url=status.upload_url,
            )
        return Result(requeue=True)

    async def _update_status(
        self,
        build: OSBuild,
        phase: _Phase,
        condition_type: OSBuildConditionType,
        message: str,
        compose_id: str = "",
        url: str = "",
    ) -> OSBuild:
        """Append a condition, along with any new compose id or image URL.

        Nothing is written when the condition type is unchanged.
        """
        if build.status.last_condition_type == condition_type:
            _LOGGER.debug(
                "OSBuild %s: condition %s did not change",
                build.resource_id,
                condition_type,
            )
            return build

        before = copy.deepcopy(build)
        container = phase.image_type == TargetImageType.EDGE_CONTAINER
        if compose_id:
            if container:
                build.status.container_compose_id = compose_id
            else:
                build.status.iso_compose_id = compose_id
        if url:
            if container:
                build.status.container_url = url
            else:
                build.status.iso_url = url
        build.status.conditions = [
            *(build.status.conditions or ()),
            Condition(
                type=condition_type,
                status=ConditionStatus.TRUE,
                message=message,
                last_transition_time=datetime.now(timezone.utc),
            ),
        ]
        return await self.store.patch_status(before, build, optimistic_lock=True)
