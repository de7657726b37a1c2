"""Request and response bodies of the osbuild composer compose API."""

from dataclasses import dataclass, field
from enum import StrEnum
import logging
from typing import Any

from mashumaro import DataClassDictMixin
from mashumaro.config import BaseConfig
from mashumaro.exceptions import InvalidFieldValue, MissingField

__all__ = [
    "ComposeRequest",
    "ComposeId",
    "ComposeStatus",
    "ComposeStatusValue",
]

_LOGGER = logging.getLogger(__name__)


@dataclass
class ComposerModel(DataClassDictMixin):
    """Base class for compose API bodies."""

    class Config(BaseConfig):
        omit_none = True


@dataclass
class ComposerRepository(ComposerModel):
    """A package repository available to the compose."""

    baseurl: str | None = None
    check_gpg: bool | None = None
    gpgkey: str | None = None
    ignore_ssl: bool | None = None
    metalink: str | None = None
    mirrorlist: str | None = None
    package_sets: list[str] | None = None
    rhsm: bool | None = None


@dataclass
class ComposerOSTree(ComposerModel):
    """OSTree settings of the image request."""

    parent: str | None = None
    ref: str | None = None
    url: str | None = None


@dataclass
class UploadOptions(ComposerModel):
    """AWS S3 upload target. The region is chosen by the compose service."""

    region: str = ""


@dataclass
class ImageRequest(ComposerModel):
    """The image the compose should produce."""

    architecture: str
    image_type: str
    repositories: list[ComposerRepository] = field(default_factory=list)
    ostree: ComposerOSTree | None = None
    upload_options: UploadOptions | None = None


@dataclass
class ComposerUser(ComposerModel):
    """A user account created in the image."""

    name: str
    groups: list[str] | None = None
    key: str | None = None


@dataclass
class ComposerServices(ComposerModel):
    """Services enabled or disabled in the image."""

    enabled: list[str] | None = None
    disabled: list[str] | None = None


@dataclass
class ComposerCustomizations(ComposerModel):
    """Customizations applied on top of the base image."""

    packages: list[str] | None = None
    users: list[ComposerUser] | None = None
    services: ComposerServices | None = None


@dataclass
class ComposeRequest(ComposerModel):
    """Body of a new compose request."""

    distribution: str
    image_request: ImageRequest
    customizations: ComposerCustomizations | None = None


@dataclass
class ComposeId(ComposerModel):
    """Response to a new compose request."""

    id: str
    href: str | None = None
    kind: str | None = None


class ComposeStatusValue(StrEnum):
    """Overall status of a compose."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass
class UploadStatus(ComposerModel):
    """Status of the upload of the image to its target."""

    status: str | None = None
    type: str | None = None
    options: dict[str, Any] | None = None


@dataclass
class ImageStatus(ComposerModel):
    """Status of the image produced by the compose."""

    status: str | None = None
    upload_status: UploadStatus | None = None


@dataclass
class ComposeStatus(ComposerModel):
    """Response to a compose status request."""

    status: ComposeStatusValue
    image_status: ImageStatus | None = None

    @classmethod
    def __pre_deserialize__(cls, d: dict[Any, Any]) -> dict[Any, Any]:
        """Drop an image status that can't be parsed, leaving the URL unknown."""
        if (image_status := d.get("image_status")) is None:
            return d
        try:
            if not isinstance(image_status, dict):
                raise ValueError("not an object")
            ImageStatus.from_dict(image_status)
        except (ValueError, MissingField, InvalidFieldValue) as err:
            _LOGGER.warning(
                "Ignoring unparsable compose image status %r: %s", image_status, err
            )
            return {key: value for key, value in d.items() if key != "image_status"}
        return d

    @property
    def upload_url(self) -> str:
        """Return the URL of the uploaded image, or an empty string if unknown."""
        if self.image_status is None or self.image_status.upload_status is None:
            return ""
        options = self.image_status.upload_status.options or {}
        url = options.get("url")
        if not isinstance(url, str):
            return ""
        return url
