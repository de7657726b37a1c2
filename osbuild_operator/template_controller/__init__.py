"""Controller propagating OSBuildConfigTemplate changes to OSBuildConfig objects."""

from .controller import OSBuildConfigTemplateReconciler

__all__ = [
    "OSBuildConfigTemplateReconciler",
]
