"""Client of the osbuild composer service that performs image builds."""

from .client import Composer, ComposerClient, create_ssl_context
from .models import (
    ComposeId,
    ComposeRequest,
    ComposeStatus,
    ComposeStatusValue,
    ComposerCustomizations,
    ComposerOSTree,
    ComposerRepository,
    ComposerServices,
    ComposerUser,
    ImageRequest,
    ImageStatus,
    UploadOptions,
    UploadStatus,
)
from .repositories import load_repositories

__all__ = [
    "Composer",
    "ComposerClient",
    "create_ssl_context",
    "ComposeId",
    "ComposeRequest",
    "ComposeStatus",
    "ComposeStatusValue",
    "ComposerCustomizations",
    "ComposerOSTree",
    "ComposerRepository",
    "ComposerServices",
    "ComposerUser",
    "ImageRequest",
    "ImageStatus",
    "UploadOptions",
    "UploadStatus",
    "load_repositories",
]
