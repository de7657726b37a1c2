"""Default package repositories for compose requests.

The operator image ships a JSON file per distribution, for example
`rhel-86.json`, mapping each architecture to the repositories used when a
build does not declare its own.
"""

import json
import logging
from pathlib import Path

import aiofiles
import aiofiles.os
from mashumaro.exceptions import InvalidFieldValue, MissingField

from osbuild_operator.exceptions import InputException

from .models import ComposerRepository

_LOGGER = logging.getLogger(__name__)


async def load_repositories(
    repositories_dir: Path, distribution: str, architecture: str
) -> list[ComposerRepository]:
    """Read the default repositories of a distribution and architecture.

    A missing file or architecture means there are no default repositories.
    """
    path = repositories_dir / f"{distribution}.json"
    if not await aiofiles.os.path.exists(path):
        _LOGGER.debug("No repositories file %s", path)
        return []
    async with aiofiles.open(path) as f:
        content = await f.read()
    try:
        archs = json.loads(content)
    except json.JSONDecodeError as err:
        raise InputException(
            f"Unable to parse repositories file {path}: {err}"
        ) from err
    if not isinstance(archs, dict):
        raise InputException(
            f"Repositories file {path} must map architectures to repository lists"
        )
    if (repos := archs.get(architecture)) is None:
        _LOGGER.debug("No repositories for %s in %s", architecture, path)
        return []
    try:
        return [ComposerRepository.from_dict(repo) for repo in repos]
    except (MissingField, InvalidFieldValue, TypeError, AttributeError) as err:
        raise InputException(f"Invalid repository in {path}: {err}") from err
