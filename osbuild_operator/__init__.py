"""osbuild-operator reconciles image build objects against osbuild composer.

An `OSBuildConfig` describes an edge image to build, optionally refining an
`OSBuildConfigTemplate`. Each version of a config produces an `OSBuild` which
submits compose requests to the composer service and tracks their progress.
"""

__all__ = [
    "manifest",
    "exceptions",
    "config",
    "customizations",
    "templates",
    "assembler",
    "composer",
    "store",
    "controller",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
