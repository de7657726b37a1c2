"""OSBuildConfigTemplate Controller implementation.

When a template changes, every config referencing it records the new template
resource version as its current template version. The OSBuildConfig
controller compares it with the version used by the last build to decide
whether the config needs a new build.
"""

import copy
import logging

from osbuild_operator.controller import Reconciler, Result
from osbuild_operator.exceptions import ObjectNotFoundError
from osbuild_operator.indexer import CONFIG_BY_TEMPLATE
from osbuild_operator.manifest import (
    OSBUILD_CONFIG_KIND,
    NamedResource,
    OSBuildConfig,
    OSBuildConfigTemplate,
)
from osbuild_operator.store import Store

_LOGGER = logging.getLogger(__name__)


class OSBuildConfigTemplateReconciler(Reconciler):
    """Reconciler propagating template versions to the configs using them."""

    def __init__(self, store: Store) -> None:
        """Initialize the reconciler."""
        self.store = store

    async def reconcile(self, request: NamedResource) -> Result:
        """Reconcile an OSBuildConfigTemplate."""
        _LOGGER.info("Reconciling OSBuildConfigTemplate %s", request)
        try:
            template = await self.store.get(request, OSBuildConfigTemplate)
        except ObjectNotFoundError:
            _LOGGER.debug("OSBuildConfigTemplate %s no longer exists", request)
            return Result()

        version = template.metadata.resource_version
        configs = await self.store.list_by_index(
            OSBUILD_CONFIG_KIND,
            CONFIG_BY_TEMPLATE,
            template.name,
            namespace=template.namespace,
        )
        _LOGGER.info(
            "Found OSBuildConfigs %s for OSBuildConfigTemplate %s",
            [config.name for config in configs],
            request,
        )
        for config in configs:
            if not isinstance(config, OSBuildConfig):
                continue
            if config.status.current_template_resource_version == version:
                continue
            before = copy.deepcopy(config)
            config.status.current_template_resource_version = version
            await self.store.patch_status(
                before, config, optimistic_lock=True
            )
        return Result()
