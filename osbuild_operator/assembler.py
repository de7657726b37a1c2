"""Assembly of the resolved build input of a config.

A build copies the config build details, merges in the customizations of the
referenced template and, when the template declares a kickstart, renders it
into a ConfigMap named after the build.
"""

import copy
from dataclasses import dataclass
import logging

from .customizations import merge_customizations
from .exceptions import ObjectNotFoundError
from .manifest import (
    CONFIG_MAP_KIND,
    KICKSTART_KEY,
    BuildDetails,
    ConfigMap,
    NamedResource,
    ObjectMeta,
    OSBuildConfig,
    OSBuildConfigTemplate,
    UserConfiguration,
)
from .store import Store
from .templates import render_template

__all__ = [
    "AssembledBuild",
    "BuildAssembler",
    "user_configuration",
]

_LOGGER = logging.getLogger(__name__)


@dataclass
class AssembledBuild:
    """The resolved input of a new build."""

    details: BuildDetails
    """Build details with the template customizations merged in."""

    kickstart: ConfigMap | None = None
    """The ConfigMap holding the rendered kickstart, if the template has one."""

    template: OSBuildConfigTemplate | None = None
    """The template the build inherits from, as read from the store."""


def user_configuration(
    config: OSBuildConfig, template: OSBuildConfigTemplate | None
) -> UserConfiguration:
    """Return the user input that determines the content of a build."""
    template_customizations = template.spec.customizations if template else None
    parameters = config.spec.template.parameters if config.spec.template else None
    return UserConfiguration(
        customizations=merge_customizations(
            template_customizations, config.spec.details.customizations
        ),
        template_parameters=copy.deepcopy(parameters) or None,
    )


class BuildAssembler:
    """Resolves configs into build details and kickstart ConfigMaps."""

    def __init__(self, store: Store) -> None:
        """Initialize the BuildAssembler."""
        self.store = store

    async def assemble(self, config: OSBuildConfig, build_name: str) -> AssembledBuild:
        """Resolve the input of the build with the specified name.

        Raises:
            ObjectNotFoundError: If the template or the kickstart ConfigMap is missing.
            ValidationError: If the kickstart can't be rendered.
        """
        details = copy.deepcopy(config.spec.details)
        if (template_id := config.template_id) is None:
            return AssembledBuild(details=details)

        template = await self.store.get(template_id, OSBuildConfigTemplate)
        details.customizations = merge_customizations(
            template.spec.customizations, details.customizations
        )
        kickstart = await self._kickstart_config_map(config, template, build_name)
        return AssembledBuild(details=details, kickstart=kickstart, template=template)

    async def render_kickstart(
        self, config: OSBuildConfig, template: OSBuildConfigTemplate
    ) -> str | None:
        """Render the template kickstart with the config parameter values."""
        if (kickstart := template.spec.kickstart) is None:
            return None
        if kickstart.raw is not None:
            text = kickstart.raw
        else:
            source = await self.store.get(
                NamedResource(
                    CONFIG_MAP_KIND, config.namespace, str(kickstart.config_map_name)
                ),
                ConfigMap,
            )
            if (text := (source.data or {}).get(KICKSTART_KEY)) is None:
                raise ObjectNotFoundError(
                    f"{source.resource_id}/{KICKSTART_KEY}",
                    f"ConfigMap {source.namespaced_name} has no {KICKSTART_KEY} key",
                )
        parameters = config.spec.template.parameters if config.spec.template else None
        return render_template(text, template.spec.parameters, parameters)

    async def _kickstart_config_map(
        self, config: OSBuildConfig, template: OSBuildConfigTemplate, build_name: str
    ) -> ConfigMap | None:
        if (text := await self.render_kickstart(config, template)) is None:
            return None
        resource_id = NamedResource(CONFIG_MAP_KIND, config.namespace, build_name)
        try:
            existing = await self.store.get(resource_id, ConfigMap)
        except ObjectNotFoundError:
            pass
        else:
            _LOGGER.debug("Reusing kickstart ConfigMap %s", resource_id)
            return existing
        _LOGGER.info("Creating kickstart ConfigMap %s", resource_id)
        return await self.store.create(
            ConfigMap(
                metadata=ObjectMeta(name=build_name, namespace=config.namespace),
                data={KICKSTART_KEY: text},
            )
        )
