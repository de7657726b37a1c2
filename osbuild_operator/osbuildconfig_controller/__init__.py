"""Controller creating versioned OSBuild objects for OSBuildConfig objects."""

from .controller import OSBuildConfigReconciler, OSBuildConfigControllerConfig

__all__ = [
    "OSBuildConfigReconciler",
    "OSBuildConfigControllerConfig",
]
