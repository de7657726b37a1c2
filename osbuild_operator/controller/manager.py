"""Manager for the osbuild-operator controllers.

The manager creates the controllers of the operator against one store and one
compose service and coordinates their start and stop.
"""

import logging

from osbuild_operator.composer import Composer
from osbuild_operator.config import OperatorConfig
from osbuild_operator.indexer import CONFIG_BY_TEMPLATE, config_by_template
from osbuild_operator.manifest import (
    OSBUILD_CONFIG_KIND,
    OSBUILD_CONFIG_TEMPLATE_KIND,
    OSBUILD_KIND,
)
from osbuild_operator.osbuild_controller import (
    OSBuildControllerConfig,
    OSBuildReconciler,
)
from osbuild_operator.osbuildconfig_controller import (
    OSBuildConfigControllerConfig,
    OSBuildConfigReconciler,
)
from osbuild_operator.predicates import (
    BuildTerminatedPredicate,
    GenerationChangedPredicate,
    OSBuildConfigChangedPredicate,
)
from osbuild_operator.store import Store
from osbuild_operator.template_controller import OSBuildConfigTemplateReconciler

from .controller import Controller, ControllerConfig

_LOGGER = logging.getLogger(__name__)


class Manager:
    """Manager owning the lifecycle of the operator controllers.

    Controllers are started in dependency order: templates first so that
    configs see current template versions, then configs, then builds.
    """

    def __init__(
        self,
        store: Store,
        composer: Composer,
        config: OperatorConfig | None = None,
    ) -> None:
        """Initialize the manager."""
        self.store = store
        self.composer = composer
        self.config = config or OperatorConfig()
        self.controllers: dict[str, Controller] = {}
        self._indexed = False

    def _create_controllers(self) -> None:
        """Create all controllers, which start watching the store."""
        if not self._indexed:
            self.store.add_index(
                OSBUILD_CONFIG_KIND, CONFIG_BY_TEMPLATE, config_by_template
            )
            self._indexed = True

        controller_config = ControllerConfig(
            workers=self.config.max_concurrent_reconciles,
            error_requeue_after=self.config.requeue_short,
            namespace=self.config.working_namespace,
        )
        template = Controller(
            "osbuildconfigtemplate",
            self.store,
            OSBuildConfigTemplateReconciler(self.store),
            OSBUILD_CONFIG_TEMPLATE_KIND,
            controller_config,
        )
        config = Controller(
            "osbuildconfig",
            self.store,
            OSBuildConfigReconciler(
                self.store,
                OSBuildConfigControllerConfig(
                    requeue_short=self.config.requeue_short,
                    requeue_long=self.config.requeue_long,
                ),
            ),
            OSBUILD_CONFIG_KIND,
            controller_config,
            predicate=OSBuildConfigChangedPredicate(),
        )
        config.owns(OSBUILD_KIND, BuildTerminatedPredicate())
        build = Controller(
            "osbuild",
            self.store,
            OSBuildReconciler(
                self.store,
                self.composer,
                OSBuildControllerConfig(
                    requeue_short=self.config.requeue_short,
                    requeue_long=self.config.requeue_long,
                    repositories_dir=self.config.repositories_dir,
                ),
            ),
            OSBUILD_KIND,
            controller_config,
            predicate=GenerationChangedPredicate(),
        )
        self.controllers = {
            "template": template,
            "config": config,
            "build": build,
        }
        _LOGGER.debug("Initialized controllers: %s", ", ".join(self.controllers.keys()))

    async def start(self) -> None:
        """Start the manager and all controllers."""
        if self.controllers:
            return

        _LOGGER.info("Starting manager")
        self._create_controllers()
        for controller in self.controllers.values():
            await controller.start()

    async def stop(self) -> None:
        """Stop the manager and all controllers."""
        if not self.controllers:
            return

        _LOGGER.info("Stopping manager")

        # Stop controllers in reverse order
        for name, controller in reversed(self.controllers.items()):
            _LOGGER.debug("Stopping controller: %s", name)
            await controller.close()

        self.controllers.clear()
        _LOGGER.info("Manager stopped")

    @property
    def busy(self) -> bool:
        """Return True if any controller has requests queued or in progress."""
        return any(controller.busy for controller in self.controllers.values())
