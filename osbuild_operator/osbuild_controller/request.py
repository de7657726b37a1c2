"""Translation of OSBuild objects into compose requests."""

import copy
from pathlib import Path

from osbuild_operator.composer import (
    ComposeRequest,
    ComposerCustomizations,
    ComposerOSTree,
    ComposerRepository,
    ComposerServices,
    ComposerUser,
    ImageRequest,
    UploadOptions,
    load_repositories,
)
from osbuild_operator.manifest import (
    Customizations,
    OSBuild,
    OSTreeConfig,
    TargetImageType,
)


def compose_customizations(
    customizations: Customizations | None,
) -> ComposerCustomizations | None:
    """Return the compose customizations, or None when there are none."""
    if customizations is None:
        return None
    result = ComposerCustomizations()
    empty = True
    if customizations.users:
        empty = False
        result.users = [
            ComposerUser(
                name=user.name, groups=copy.deepcopy(user.groups), key=user.key
            )
            for user in customizations.users
        ]
    if (services := customizations.services) is not None:
        if services.enabled or services.disabled:
            empty = False
            result.services = ComposerServices(
                enabled=list(services.enabled) if services.enabled else None,
                disabled=list(services.disabled) if services.disabled else None,
            )
    if customizations.packages is not None:
        empty = False
        result.packages = list(customizations.packages)
    if empty:
        return None
    return result


def _compose_os_tree(os_tree: OSTreeConfig | None) -> ComposerOSTree | None:
    if os_tree is None:
        return None
    return ComposerOSTree(parent=os_tree.parent, ref=os_tree.ref, url=os_tree.url)


async def compose_request(
    build: OSBuild, image_type: TargetImageType, repositories_dir: Path
) -> ComposeRequest:
    """Build the compose request for one phase of a build.

    The installer phase uses the edge container produced by the container
    phase as its ostree source.
    """
    details = build.spec.details
    target_image = details.target_image
    distribution = details.distribution
    os_tree = target_image.os_tree
    if image_type == TargetImageType.EDGE_INSTALLER:
        if (installer := build.spec.edge_installer_details) is not None:
            distribution = installer.distribution
            os_tree = installer.os_tree
        else:
            os_tree = copy.deepcopy(os_tree) or OSTreeConfig()
            os_tree.url = build.status.container_url

    if target_image.repositories:
        repositories = [
            ComposerRepository.from_dict(repo.to_dict())
            for repo in target_image.repositories
        ]
    else:
        repositories = await load_repositories(
            repositories_dir, distribution, target_image.architecture
        )

    return ComposeRequest(
        distribution=distribution,
        image_request=ImageRequest(
            architecture=target_image.architecture,
            image_type=str(image_type),
            repositories=repositories,
            ostree=_compose_os_tree(os_tree),
            upload_options=UploadOptions(),
        ),
        customizations=compose_customizations(details.customizations),
    )
