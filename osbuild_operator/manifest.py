"""Representation of the resources managed by the operator.

Every object stored by the operator is a `Resource`: a kubernetes style object
with `metadata`, a `spec` and usually a `status`. The resource kinds are:

- `OSBuildConfig`: user authored desired state for one image.
- `OSBuildConfigTemplate`: reusable customizations, kickstart and parameters
  shared by many configs.
- `OSBuild`: one concrete, versioned build attempt derived from a config.
- `ConfigMap`: holds kickstart templates and rendered kickstart files.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
import logging
from pathlib import Path
from typing import Any, ClassVar, TypeVar, cast

import aiofiles
import yaml
from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig
from mashumaro.exceptions import InvalidFieldValue, MissingField

from .exceptions import InputException

__all__ = [
    "read_manifests",
    "parse_raw_obj",
    "NamedResource",
    "OSBuildConfig",
    "OSBuildConfigTemplate",
    "OSBuild",
    "ConfigMap",
]

_LOGGER = logging.getLogger(__name__)


# Match a prefix of apiVersion to ensure we have the right type of object.
# We don't check specific versions for forward compatibility on upgrade.
OSBUILDER_DOMAIN = "osbuilder.project-flotta.io"
OSBUILDER_API_VERSION = f"{OSBUILDER_DOMAIN}/v1alpha1"
CORE_API_VERSION = "v1"
OSBUILD_CONFIG_KIND = "OSBuildConfig"
OSBUILD_CONFIG_TEMPLATE_KIND = "OSBuildConfigTemplate"
OSBUILD_KIND = "OSBuild"
CONFIG_MAP_KIND = "ConfigMap"
KICKSTART_KEY = "kickstart"


def _check_version(doc: dict[str, Any], version: str) -> None:
    """Assert that the resource has the specified version."""
    if not (api_version := doc.get("apiVersion")):
        raise InputException(f"Invalid object missing apiVersion: {doc}")
    if not api_version.startswith(version):
        raise InputException(f"Invalid object expected '{version}': {doc}")


@dataclass
class BaseManifest(DataClassDictMixin):
    """Base class for all manifest objects."""

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass(frozen=True, order=True)
class NamedResource:
    """Identifier for a resource in the store."""

    kind: str
    namespace: str | None
    name: str

    @property
    def namespaced_name(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    def __str__(self) -> str:
        """Return the kind and namespaced name concatenated as an id."""
        return f"{self.kind}/{self.namespaced_name}"


@dataclass
class OwnerReference(BaseManifest):
    """A reference from a dependent object to the object that owns it."""

    api_version: str = field(metadata=field_options(alias="apiVersion"))
    kind: str
    name: str
    uid: str
    controller: bool | None = None


@dataclass
class ObjectMeta(BaseManifest):
    """Metadata common to all stored objects."""

    name: str
    namespace: str | None = None
    uid: str | None = None

    resource_version: str | None = field(
        metadata=field_options(alias="resourceVersion"), default=None
    )
    """Opaque token that changes on every write, used for optimistic concurrency."""

    generation: int | None = None
    """Incremented by the store on every change to the desired state (spec)."""

    creation_timestamp: datetime | None = field(
        metadata=field_options(alias="creationTimestamp"), default=None
    )
    deletion_timestamp: datetime | None = field(
        metadata=field_options(alias="deletionTimestamp"), default=None
    )
    labels: dict[str, str] | None = None
    annotations: dict[str, str] | None = None
    owner_references: list[OwnerReference] | None = field(
        metadata=field_options(alias="ownerReferences"), default=None
    )
    finalizers: list[str] | None = None


_R = TypeVar("_R", bound="Resource")


@dataclass
class Resource(BaseManifest):
    """Base class for objects held in the store."""

    kind: ClassVar[str]
    """The kind of the object."""

    api_version: ClassVar[str]
    """The apiVersion of the object."""

    metadata: ObjectMeta

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str | None:
        return self.metadata.namespace

    @property
    def namespaced_name(self) -> str:
        """Return the namespace and name concatenated as an id."""
        return self.resource_id.namespaced_name

    @property
    def resource_id(self) -> NamedResource:
        """Return the store identifier for this object."""
        return NamedResource(self.kind, self.metadata.namespace, self.metadata.name)

    def owner_reference(self, controller: bool | None = True) -> OwnerReference:
        """Return an owner reference pointing at this object."""
        if not self.metadata.uid:
            raise InputException(
                f"Object {self.resource_id} has no uid and cannot be an owner"
            )
        return OwnerReference(
            api_version=self.api_version,
            kind=self.kind,
            name=self.metadata.name,
            uid=self.metadata.uid,
            controller=controller,
        )

    def controller_owner(self) -> OwnerReference | None:
        """Return the owner reference marked as the managing controller."""
        for ref in self.metadata.owner_references or ():
            if ref.controller:
                return ref
        return None

    def to_doc(self) -> dict[str, Any]:
        """Return the kubernetes style document for this object."""
        return {"apiVersion": self.api_version, "kind": self.kind, **self.to_dict()}

    def yaml(self) -> str:
        """Return a YAML document for this object."""
        return cast(str, yaml.dump(self.to_doc(), sort_keys=False))

    @classmethod
    def parse_doc(cls: type[_R], doc: dict[str, Any]) -> _R:
        """Parse an object from a kubernetes style document."""
        _check_version(doc, cls.api_version)
        if doc.get("kind") != cls.kind:
            raise InputException(f"Invalid {cls.kind} has kind {doc.get('kind')}")
        if not (metadata := doc.get("metadata")):
            raise InputException(f"Invalid {cls.kind} missing metadata: {doc}")
        if not (name := metadata.get("name")):
            raise InputException(f"Invalid {cls.kind} missing metadata.name: {doc}")
        try:
            return cls.from_dict(
                {k: v for k, v in doc.items() if k not in ("apiVersion", "kind")}
            )
        except (MissingField, InvalidFieldValue) as err:
            raise InputException(f"Invalid {cls.kind} {name}: {err}") from err


class TargetImageType(StrEnum):
    """The kind of image produced by a build."""

    EDGE_CONTAINER = "edge-container"
    """An ostree commit served from a container image."""

    EDGE_INSTALLER = "edge-installer"
    """An installer ISO built from the edge container."""


@dataclass
class User(BaseManifest):
    """A user account created in the image."""

    name: str
    groups: list[str] | None = None
    key: str | None = None
    """SSH public key installed for the user."""


@dataclass
class Services(BaseManifest):
    """Systemd services enabled or disabled in the image."""

    enabled: list[str] | None = None
    disabled: list[str] | None = None


@dataclass
class Customizations(BaseManifest):
    """Packages, users and services layered on top of the base image."""

    packages: list[str] | None = None
    users: list[User] | None = None
    services: Services | None = None


@dataclass
class OSTreeConfig(BaseManifest):
    """OSTree settings for edge images."""

    parent: str | None = None
    ref: str | None = None
    url: str | None = None


@dataclass
class Repository(BaseManifest):
    """A package repository used by the compose service."""

    baseurl: str | None = None
    check_gpg: bool | None = None
    gpgkey: str | None = None
    ignore_ssl: bool | None = None
    metalink: str | None = None
    mirrorlist: str | None = None
    package_sets: list[str] | None = None
    rhsm: bool | None = None


@dataclass
class TargetImage(BaseManifest):
    """The image to produce."""

    architecture: str
    target_image_type: TargetImageType = field(
        metadata=field_options(alias="targetImageType")
    )
    os_tree: OSTreeConfig | None = field(
        metadata=field_options(alias="osTree"), default=None
    )
    repositories: list[Repository] | None = None


@dataclass
class BuildDetails(BaseManifest):
    """Everything the compose service needs to build an image."""

    distribution: str
    target_image: TargetImage = field(metadata=field_options(alias="targetImage"))
    customizations: Customizations | None = None


@dataclass
class ParameterValue(BaseManifest):
    """A value supplied for a template parameter."""

    name: str
    value: str


@dataclass
class TemplateRef(BaseManifest):
    """Reference from a config to the template it inherits from."""

    os_build_config_template_ref: str = field(
        metadata=field_options(alias="osBuildConfigTemplateRef")
    )
    parameters: list[ParameterValue] | None = None


@dataclass
class SecretReference(BaseManifest):
    """Reference to a secret in the same namespace."""

    name: str


@dataclass
class WebHookTrigger(BaseManifest):
    """Allow builds to be triggered by an authenticated webhook call."""

    secret_reference: SecretReference | None = field(
        metadata=field_options(alias="secretReference"), default=None
    )


@dataclass
class BuildTriggers(BaseManifest):
    """Policies that decide which changes start a new build."""

    config_change: bool | None = field(
        metadata=field_options(alias="configChange"), default=None
    )
    web_hook: WebHookTrigger | None = field(
        metadata=field_options(alias="webHook"), default=None
    )
    template_config_change: bool | None = field(
        metadata=field_options(alias="templateConfigChange"), default=None
    )

    @property
    def config_change_enabled(self) -> bool:
        """Spec changes start a new build unless explicitly disabled."""
        return self.config_change is None or self.config_change

    @property
    def template_change_enabled(self) -> bool:
        """Template changes start a new build unless explicitly disabled."""
        return self.template_config_change is None or self.template_config_change


@dataclass
class OSBuildConfigSpec(BaseManifest):
    """Desired state of an OSBuildConfig."""

    details: BuildDetails
    triggers: BuildTriggers = field(default_factory=BuildTriggers)
    template: TemplateRef | None = None


@dataclass
class UserConfiguration(BaseManifest):
    """The resolved user input that produced a build, used for drift detection."""

    customizations: Customizations | None = None
    template_parameters: list[ParameterValue] | None = field(
        metadata=field_options(alias="templateParameters"), default=None
    )


@dataclass
class OSBuildConfigStatus(BaseManifest):
    """Observed state of an OSBuildConfig."""

    last_version: int | None = field(
        metadata=field_options(alias="lastVersion"), default=None
    )
    last_known_user_configuration: UserConfiguration | None = field(
        metadata=field_options(alias="lastKnownUserConfiguration"), default=None
    )
    last_build_type: TargetImageType | None = field(
        metadata=field_options(alias="lastBuildType"), default=None
    )
    last_template_resource_version: str | None = field(
        metadata=field_options(alias="lastTemplateResourceVersion"), default=None
    )
    current_template_resource_version: str | None = field(
        metadata=field_options(alias="currentTemplateResourceVersion"), default=None
    )


@dataclass
class OSBuildConfig(Resource):
    """User authored description of one image to build."""

    kind: ClassVar[str] = OSBUILD_CONFIG_KIND
    api_version: ClassVar[str] = OSBUILDER_API_VERSION

    spec: OSBuildConfigSpec
    status: OSBuildConfigStatus = field(default_factory=OSBuildConfigStatus)

    @property
    def template_id(self) -> NamedResource | None:
        """Return the identifier of the referenced template, if any."""
        if (template := self.spec.template) is None:
            return None
        if not template.os_build_config_template_ref:
            return None
        return NamedResource(
            OSBUILD_CONFIG_TEMPLATE_KIND,
            self.namespace,
            template.os_build_config_template_ref,
        )

    def build_name(self, version: int) -> str:
        """Return the name of the build produced at the specified version."""
        return f"{self.name}-{version}"


class ParameterType(StrEnum):
    """Types a template parameter value is validated against."""

    STRING = "string"
    INT = "int"
    BOOL = "bool"


@dataclass
class Parameter(BaseManifest):
    """A parameter declared by a template."""

    name: str
    type: ParameterType = ParameterType.STRING
    default_value: str = field(metadata=field_options(alias="defaultValue"), default="")


@dataclass
class KickstartFile(BaseManifest):
    """Kickstart template text, inline or read from a ConfigMap."""

    raw: str | None = None
    config_map_name: str | None = field(
        metadata=field_options(alias="configMapName"), default=None
    )


@dataclass
class IsoConfiguration(BaseManifest):
    """Installer ISO customization."""

    kickstart: KickstartFile | None = None


@dataclass
class OSBuildConfigTemplateSpec(BaseManifest):
    """Desired state of an OSBuildConfigTemplate."""

    customizations: Customizations | None = None
    iso: IsoConfiguration | None = None
    parameters: list[Parameter] | None = None

    @property
    def kickstart(self) -> KickstartFile | None:
        """Return the kickstart declaration when it has any content."""
        if not self.iso or not (kickstart := self.iso.kickstart):
            return None
        if kickstart.raw is None and kickstart.config_map_name is None:
            return None
        return kickstart


@dataclass
class OSBuildConfigTemplate(Resource):
    """Reusable customization and parameter layer."""

    kind: ClassVar[str] = OSBUILD_CONFIG_TEMPLATE_KIND
    api_version: ClassVar[str] = OSBUILDER_API_VERSION

    spec: OSBuildConfigTemplateSpec = field(default_factory=OSBuildConfigTemplateSpec)


class TriggeredBy(StrEnum):
    """Reason a build was created."""

    UPDATE_CR = "UpdateCR"
    UPDATE_TEMPLATE = "UpdateTemplate"
    INSTALLER_PHASE = "InstallerPhase"


class OSBuildConditionType(StrEnum):
    """Phase transitions recorded on a build."""

    CONTAINER_STARTED = "startedContainerBuild"
    CONTAINER_DONE = "containerBuildDone"
    CONTAINER_FAILED = "failedContainerBuild"
    ISO_STARTED = "startedIsoBuild"
    ISO_DONE = "isoBuildDone"
    ISO_FAILED = "failedIsoBuild"


FAILED_CONDITIONS = {
    OSBuildConditionType.CONTAINER_FAILED,
    OSBuildConditionType.ISO_FAILED,
}


class ConditionStatus(StrEnum):
    """Status of a condition."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


@dataclass
class Condition(BaseManifest):
    """A timestamped record of one phase transition of a build."""

    type: OSBuildConditionType
    status: ConditionStatus = ConditionStatus.TRUE
    message: str | None = None
    last_transition_time: datetime | None = field(
        metadata=field_options(alias="lastTransitionTime"), default=None
    )


@dataclass
class NameRef(BaseManifest):
    """Reference to an object by name in the same namespace."""

    name: str


@dataclass
class EdgeInstallerBuildDetails(BaseManifest):
    """Input for an installer build that reuses an existing edge container."""

    distribution: str
    os_tree: OSTreeConfig = field(metadata=field_options(alias="osTree"))
    kickstart: NameRef | None = None


@dataclass
class OSBuildSpec(BaseManifest):
    """Desired state of an OSBuild."""

    details: BuildDetails
    triggered_by: TriggeredBy = field(
        metadata=field_options(alias="triggeredBy"), default=TriggeredBy.UPDATE_CR
    )
    kickstart: NameRef | None = None
    edge_installer_details: EdgeInstallerBuildDetails | None = field(
        metadata=field_options(alias="edgeInstallerDetails"), default=None
    )


@dataclass
class OSBuildStatus(BaseManifest):
    """Observed state of an OSBuild."""

    conditions: list[Condition] | None = None
    container_compose_id: str | None = field(
        metadata=field_options(alias="containerComposeId"), default=None
    )
    iso_compose_id: str | None = field(
        metadata=field_options(alias="isoComposeId"), default=None
    )
    container_url: str | None = field(
        metadata=field_options(alias="containerUrl"), default=None
    )
    iso_url: str | None = field(metadata=field_options(alias="isoUrl"), default=None)

    @property
    def last_condition(self) -> Condition | None:
        """The last condition is authoritative for the current phase."""
        if not self.conditions:
            return None
        return self.conditions[-1]

    @property
    def last_condition_type(self) -> OSBuildConditionType | None:
        if (condition := self.last_condition) is None:
            return None
        return condition.type


@dataclass
class OSBuild(Resource):
    """One versioned build attempt."""

    kind: ClassVar[str] = OSBUILD_KIND
    api_version: ClassVar[str] = OSBUILDER_API_VERSION

    spec: OSBuildSpec
    status: OSBuildStatus = field(default_factory=OSBuildStatus)

    @property
    def target_image_type(self) -> TargetImageType:
        return self.spec.details.target_image.target_image_type

    @property
    def failed(self) -> bool:
        """Return True if the build reached a failed terminal condition."""
        return self.status.last_condition_type in FAILED_CONDITIONS

    @property
    def ready_image_type(self) -> TargetImageType | None:
        """Return the image type this build finished producing, if it is done."""
        last = self.status.last_condition_type
        if last == OSBuildConditionType.ISO_DONE:
            return TargetImageType.EDGE_INSTALLER
        if (
            last == OSBuildConditionType.CONTAINER_DONE
            and self.target_image_type == TargetImageType.EDGE_CONTAINER
        ):
            return TargetImageType.EDGE_CONTAINER
        return None

    @property
    def terminal(self) -> bool:
        """Return True if the build will not make any further progress."""
        return self.failed or self.ready_image_type is not None


@dataclass
class ConfigMap(Resource):
    """Key value data, used for kickstart files."""

    kind: ClassVar[str] = CONFIG_MAP_KIND
    api_version: ClassVar[str] = CORE_API_VERSION

    data: dict[str, str] | None = None


RESOURCE_KINDS: dict[str, type[Resource]] = {
    cls.kind: cls for cls in (OSBuildConfig, OSBuildConfigTemplate, OSBuild, ConfigMap)
}


def parse_raw_obj(obj: dict[str, Any]) -> Resource:
    """Parse a raw kubernetes object into the resource type for its kind."""
    if not (kind := obj.get("kind")):
        raise InputException(f"Invalid object missing kind: {obj}")
    if not (cls := RESOURCE_KINDS.get(kind)):
        raise InputException(f"Unsupported object kind {kind}")
    return cls.parse_doc(obj)


def _manifest_files(path: Path) -> list[Path]:
    if path.is_dir():
        return sorted(
            p for p in path.rglob("*") if p.suffix in (".yaml", ".yml") and p.is_file()
        )
    return [path]


async def read_manifests(path: Path) -> list[Resource]:
    """Read all supported resources from a YAML file or directory of files.

    Documents of kinds that the operator does not manage are skipped.
    """
    resources: list[Resource] = []
    for manifest_file in _manifest_files(path):
        async with aiofiles.open(str(manifest_file)) as f:
            content = await f.read()
        try:
            docs = list(yaml.safe_load_all(content))
        except yaml.YAMLError as err:
            raise InputException(f"Unable to parse {manifest_file}: {err}") from err
        for doc in docs:
            if not doc:
                continue
            if not isinstance(doc, dict):
                raise InputException(f"Invalid document in {manifest_file}: {doc}")
            if doc.get("kind") not in RESOURCE_KINDS:
                _LOGGER.debug(
                    "Skipping unsupported kind %s in %s", doc.get("kind"), manifest_file
                )
                continue
            resources.append(parse_raw_obj(doc))
    return resources
