"""Controller submitting OSBuild objects to the compose service."""

from .controller import OSBuildReconciler, OSBuildControllerConfig

__all__ = [
    "OSBuildReconciler",
    "OSBuildControllerConfig",
]
