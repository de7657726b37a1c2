"""OSBuildConfig Controller implementation.

This controller turns an OSBuildConfig into a sequence of versioned OSBuild
objects named `<config>-<version>`. A new build is created when:

- The config has not been built yet.
- The resolved user configuration (merged customizations and template
  parameter values) differs from the one recorded for the last build, and the
  config change trigger is enabled.
- The referenced template changed since the last build, and the template
  change trigger is enabled.
- The last build produced an edge container but the config now asks for an
  installer, in which case the new build reuses the container as its input.

Otherwise the controller waits for the last build to finish, and creates it
again if it is missing.
"""

import copy
from dataclasses import dataclass
import logging

from osbuild_operator.assembler import (
    AssembledBuild,
    BuildAssembler,
    user_configuration,
)
from osbuild_operator.controller import Reconciler, Result
from osbuild_operator.exceptions import ObjectNotFoundError
from osbuild_operator.manifest import (
    OSBUILD_KIND,
    ConfigMap,
    EdgeInstallerBuildDetails,
    NamedResource,
    NameRef,
    ObjectMeta,
    OSBuild,
    OSBuildConditionType,
    OSBuildConfig,
    OSBuildConfigTemplate,
    OSBuildSpec,
    OSTreeConfig,
    TargetImageType,
    TriggeredBy,
    UserConfiguration,
)
from osbuild_operator.customizations import user_configuration_equal
from osbuild_operator.store import Store

_LOGGER = logging.getLogger(__name__)

IN_PROGRESS_CONDITIONS = {
    OSBuildConditionType.CONTAINER_STARTED,
    OSBuildConditionType.CONTAINER_DONE,
    OSBuildConditionType.ISO_STARTED,
}


@dataclass
class OSBuildConfigControllerConfig:
    """Configuration for the OSBuildConfigReconciler."""

    requeue_short: float = 10.0
    """Seconds before checking again on a build in an unknown state."""

    requeue_long: float = 120.0
    """Seconds before checking again on a build that is in progress."""


class OSBuildConfigReconciler(Reconciler):
    """Reconciler creating OSBuild objects for OSBuildConfig objects."""

    def __init__(
        self, store: Store, config: OSBuildConfigControllerConfig | None = None
    ) -> None:
        """Initialize the reconciler.

        Args:
            store: The central store for managing state
            config: The configuration for the reconciler
        """
        self.store = store
        self._config = config or OSBuildConfigControllerConfig()
        self._assembler = BuildAssembler(store)

    async def reconcile(self, request: NamedResource) -> Result:
        """Reconcile an OSBuildConfig."""
        _LOGGER.info("Reconciling OSBuildConfig %s", request)
        try:
            config = await self.store.get(request, OSBuildConfig)
        except ObjectNotFoundError:
            _LOGGER.debug("OSBuildConfig %s no longer exists", request)
            return Result()

        if config.metadata.deletion_timestamp is not None:
            # Builds are deleted along with the config they are owned by
            return Result()

        template: OSBuildConfigTemplate | None = None
        if (template_id := config.template_id) is not None:
            try:
                template = await self.store.get(template_id, OSBuildConfigTemplate)
            except ObjectNotFoundError:
                if not config.status.last_version:
                    raise
                # Drift can't be resolved without the template
                _LOGGER.warning(
                    "OSBuildConfig %s template %s not found",
                    config.resource_id,
                    template_id,
                )
                return await self._check_last_build(config)
        desired = user_configuration(config, template)

        if not config.status.last_version:
            return await self._create_build(config, desired, TriggeredBy.UPDATE_CR)
        if (triggered_by := self._detect_drift(config, template, desired)) is not None:
            return await self._create_build(config, desired, triggered_by)
        return await self._check_last_build(config)

    def _detect_drift(
        self,
        config: OSBuildConfig,
        template: OSBuildConfigTemplate | None,
        desired: UserConfiguration,
    ) -> TriggeredBy | None:
        """Return the reason for a new build, or None if the last build is current."""
        status = config.status
        triggers = config.spec.triggers
        last_template_version = status.last_template_resource_version

        if triggers.template_change_enabled and template is not None:
            current = template.metadata.resource_version
            if last_template_version is not None and (
                current != last_template_version
                or status.current_template_resource_version
                not in (None, last_template_version)
            ):
                _LOGGER.info(
                    "OSBuildConfig %s template changed from %s to %s",
                    config.resource_id,
                    last_template_version,
                    current,
                )
                return TriggeredBy.UPDATE_TEMPLATE

        if not triggers.config_change_enabled:
            return None
        if status.last_known_user_configuration is None:
            _LOGGER.info(
                "OSBuildConfig %s has no recorded user configuration",
                config.resource_id,
            )
            return TriggeredBy.UPDATE_CR
        if not user_configuration_equal(status.last_known_user_configuration, desired):
            _LOGGER.info(
                "OSBuildConfig %s user configuration changed", config.resource_id
            )
            return TriggeredBy.UPDATE_CR
        if (template is None) != (last_template_version is None):
            _LOGGER.info(
                "OSBuildConfig %s template reference changed", config.resource_id
            )
            return TriggeredBy.UPDATE_CR
        return None

    async def _create_build(
        self,
        config: OSBuildConfig,
        desired: UserConfiguration,
        triggered_by: TriggeredBy,
    ) -> Result:
        """Create the next version of the build from the current config."""
        version = (config.status.last_version or 0) + 1
        build_name = config.build_name(version)
        assembled = await self._assembler.assemble(config, build_name)

        template_version = (
            assembled.template.metadata.resource_version if assembled.template else None
        )
        before = copy.deepcopy(config)
        config.status.last_version = version
        config.status.last_known_user_configuration = desired
        config.status.last_build_type = (
            config.spec.details.target_image.target_image_type
        )
        config.status.last_template_resource_version = template_version
        config.status.current_template_resource_version = template_version
        config = await self.store.patch_status(before, config, optimistic_lock=True)

        spec = _build_spec(assembled, triggered_by)
        await self._create_owned_build(config, build_name, spec, assembled.kickstart)
        return Result(requeue_after=self._config.requeue_long)

    async def _create_installer_build(
        self, config: OSBuildConfig, container_build: OSBuild
    ) -> Result:
        """Create an installer build from the output of a finished container build."""
        version = (config.status.last_version or 0) + 1
        build_name = config.build_name(version)
        assembled = await self._assembler.assemble(config, build_name)

        before = copy.deepcopy(config)
        config.status.last_version = version
        config.status.last_build_type = TargetImageType.EDGE_INSTALLER
        config = await self.store.patch_status(before, config, optimistic_lock=True)

        spec = _installer_spec(assembled, container_build)
        await self._create_owned_build(config, build_name, spec, assembled.kickstart)
        return Result(requeue_after=self._config.requeue_long)

    async def _recreate_build(
        self, config: OSBuildConfig, build_id: NamedResource
    ) -> Result:
        """Create the last recorded build again when creating it failed.

        The status already describes the build, so it keeps its version and
        name. The kickstart ConfigMap left by the failed attempt is reused.
        """
        _LOGGER.warning("OSBuild %s is missing, creating it again", build_id)
        assembled = await self._assembler.assemble(config, build_id.name)
        if (container_build := await self._installer_source(config)) is not None:
            spec = _installer_spec(assembled, container_build)
        else:
            spec = _build_spec(assembled, TriggeredBy.UPDATE_CR)
        await self._create_owned_build(
            config, build_id.name, spec, assembled.kickstart
        )
        return Result(requeue_after=self._config.requeue_long)

    async def _installer_source(self, config: OSBuildConfig) -> OSBuild | None:
        """Return the container build that the last installer build continues."""
        version = config.status.last_version or 0
        if (
            version < 2
            or config.status.last_build_type != TargetImageType.EDGE_INSTALLER
        ):
            return None
        previous_id = NamedResource(
            OSBUILD_KIND, config.namespace, config.build_name(version - 1)
        )
        try:
            previous = await self.store.get(previous_id, OSBuild)
        except ObjectNotFoundError:
            return None
        if previous.ready_image_type != TargetImageType.EDGE_CONTAINER:
            return None
        return previous

    async def _create_owned_build(
        self,
        config: OSBuildConfig,
        build_name: str,
        spec: OSBuildSpec,
        kickstart: ConfigMap | None,
    ) -> OSBuild:
        build = await self.store.create(
            OSBuild(
                metadata=ObjectMeta(
                    name=build_name,
                    namespace=config.namespace,
                    owner_references=[config.owner_reference()],
                ),
                spec=spec,
            )
        )
        if kickstart is not None:
            await self._set_kickstart_owner(kickstart, build)
        _LOGGER.info(
            "A new OSBuild %s was created (%s)", build.resource_id, spec.triggered_by
        )
        return build

    async def _set_kickstart_owner(self, kickstart: ConfigMap, build: OSBuild) -> None:
        """Make the kickstart ConfigMap owned by the build that consumes it."""
        if any(
            ref.uid == build.metadata.uid
            for ref in kickstart.metadata.owner_references or ()
        ):
            return
        before = copy.deepcopy(kickstart)
        kickstart.metadata.owner_references = [
            *(kickstart.metadata.owner_references or ()),
            build.owner_reference(controller=None),
        ]
        await self.store.patch(before, kickstart, optimistic_lock=True)

    async def _check_last_build(self, config: OSBuildConfig) -> Result:
        """Decide what to do based on the progress of the last build."""
        build_id = NamedResource(
            OSBUILD_KIND,
            config.namespace,
            config.build_name(config.status.last_version or 0),
        )
        try:
            build = await self.store.get(build_id, OSBuild)
        except ObjectNotFoundError:
            return await self._recreate_build(config, build_id)

        if build.failed:
            _LOGGER.info("OSBuild %s failed", build_id)
            return Result()

        desired_type = config.spec.details.target_image.target_image_type
        if (ready := build.ready_image_type) is not None:
            if ready == desired_type or ready == TargetImageType.EDGE_INSTALLER:
                _LOGGER.info("OSBuild %s is done (%s)", build_id, ready)
                return Result()
            _LOGGER.info(
                "OSBuild %s produced an edge container, building the installer",
                build_id,
            )
            return await self._create_installer_build(config, build)

        if build.status.last_condition_type in IN_PROGRESS_CONDITIONS:
            return Result(requeue_after=self._config.requeue_long)
        return Result(requeue_after=self._config.requeue_short)


def _kickstart_ref(assembled: AssembledBuild) -> NameRef | None:
    if assembled.kickstart is None:
        return None
    return NameRef(name=assembled.kickstart.name)


def _build_spec(assembled: AssembledBuild, triggered_by: TriggeredBy) -> OSBuildSpec:
    return OSBuildSpec(
        details=assembled.details,
        triggered_by=triggered_by,
        kickstart=_kickstart_ref(assembled),
    )


def _installer_spec(assembled: AssembledBuild, container_build: OSBuild) -> OSBuildSpec:
    """Return the spec of a build continuing from a finished edge container."""
    os_tree = (
        copy.deepcopy(assembled.details.target_image.os_tree) or OSTreeConfig()
    )
    os_tree.url = container_build.status.container_url
    kickstart = _kickstart_ref(assembled)
    return OSBuildSpec(
        details=assembled.details,
        triggered_by=TriggeredBy.INSTALLER_PHASE,
        kickstart=kickstart,
        edge_installer_details=EdgeInstallerBuildDetails(
            distribution=assembled.details.distribution,
            os_tree=os_tree,
            kickstart=copy.deepcopy(kickstart),
        ),
    )
