"""osbuild-operator run action."""

from argparse import (
    ArgumentParser,
    _SubParsersAction as SubParsersAction,
)
import asyncio
import logging
import pathlib
from typing import Any, cast

from osbuild_operator.composer import Composer, ComposerClient, create_ssl_context
from osbuild_operator.config import OperatorConfig
from osbuild_operator.controller.manager import Manager
from osbuild_operator.exceptions import ObjectNotFoundError
from osbuild_operator.manifest import (
    OSBUILD_CONFIG_KIND,
    OSBUILD_KIND,
    NamedResource,
    OSBuild,
    OSBuildConfig,
    TargetImageType,
    read_manifests,
)
from osbuild_operator.store import InMemoryStore, Store, StoreEvent

_LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 3600.0


async def _config_done(store: Store, config: OSBuildConfig) -> bool:
    """Return True if the config will not create any more builds."""
    if not (version := config.status.last_version):
        return False
    try:
        build = await store.get(
            NamedResource(OSBUILD_KIND, config.namespace, config.build_name(version)),
            OSBuild,
        )
    except ObjectNotFoundError:
        return False
    if build.failed:
        return True
    ready = build.ready_image_type
    desired = config.spec.details.target_image.target_image_type
    return ready is not None and (
        ready == desired or ready == TargetImageType.EDGE_INSTALLER
    )


async def builds_done(store: Store) -> bool:
    """Return True if the latest build of every config is finished."""
    for config in await store.list_objects(OSBUILD_CONFIG_KIND):
        if not await _config_done(store, cast(OSBuildConfig, config)):
            return False
    return True


async def run_operator(
    store: Store, composer: Composer, config: OperatorConfig, timeout: float
) -> list[OSBuild]:
    """Run the controllers until all builds are finished or the timeout expires.

    Returns the builds in the store.
    """
    changed = asyncio.Event()

    def on_change(*args: Any) -> None:
        changed.set()

    removers = [
        store.add_listener(event, on_change)
        for event in (
            StoreEvent.OBJECT_ADDED,
            StoreEvent.OBJECT_UPDATED,
            StoreEvent.OBJECT_DELETED,
        )
    ]
    manager = Manager(store, composer, config)
    await manager.start()
    try:
        async with asyncio.timeout(timeout):
            while not await builds_done(store):
                await changed.wait()
                changed.clear()
    except TimeoutError:
        _LOGGER.warning("Timed out after %ss waiting for builds to finish", timeout)
    finally:
        await manager.stop()
        for remove in removers:
            remove()
    return [
        cast(OSBuild, build) for build in await store.list_objects(OSBUILD_KIND)
    ]


class RunAction:
    """osbuild-operator run action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "run",
                help="Build the images described by local OSBuildConfig manifests",
                description="""Load OSBuildConfig, OSBuildConfigTemplate and
                    ConfigMap manifests and run the controllers against an
                    osbuild composer service until every build is finished.""",
            ),
        )
        args.add_argument(
            "path",
            type=pathlib.Path,
            nargs="+",
            help="Path to a manifest file or a directory of manifests",
        )
        args.add_argument(
            "--composer-url",
            type=str,
            help="Base URL of the osbuild composer service, overrides COMPOSER_URL",
        )
        args.add_argument(
            "--timeout",
            type=float,
            default=DEFAULT_TIMEOUT,
            help="Seconds to wait for builds to finish",
        )
        args.add_argument(
            "--output-file",
            type=str,
            default="/dev/stdout",
            help="Output file for the results of the command",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        path: list[pathlib.Path],
        composer_url: str | None,
        timeout: float,
        output_file: str,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        config = OperatorConfig.from_env()
        if composer_url:
            config.composer_url = composer_url

        store = InMemoryStore()
        for manifest_path in path:
            for obj in await read_manifests(manifest_path):
                await store.create(obj)

        ssl_context = None
        if config.composer_ca_file or config.composer_cert_file:
            ssl_context = create_ssl_context(
                config.composer_ca_file,
                config.composer_cert_file,
                config.composer_key_file,
            )
        composer = ComposerClient(
            config.composer_url, config.composer_timeout, ssl_context
        )
        try:
            builds = await run_operator(store, composer, config, timeout)
        finally:
            await composer.close()

        with open(output_file, "w") as file:
            for build in builds:
                file.write("---\n")
                file.write(build.yaml())
