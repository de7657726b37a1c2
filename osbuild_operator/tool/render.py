"""osbuild-operator render action."""

from argparse import (
    ArgumentParser,
    _SubParsersAction as SubParsersAction,
)
import logging
import pathlib
from typing import cast

from osbuild_operator.exceptions import InputException
from osbuild_operator.manifest import (
    OSBuildConfigTemplate,
    ParameterValue,
    read_manifests,
)
from osbuild_operator.templates import render_template

_LOGGER = logging.getLogger(__name__)


def parse_params(params: list[str] | None) -> list[ParameterValue]:
    """Parse NAME=VALUE command line arguments into parameter values."""
    values = []
    for param in params or ():
        name, sep, value = param.partition("=")
        if not sep or not name:
            raise InputException(f"Parameter must be of the form NAME=VALUE: {param}")
        values.append(ParameterValue(name=name, value=value))
    return values


class RenderAction:
    """osbuild-operator render action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "render",
                help="Render the kickstart of an OSBuildConfigTemplate",
                description="""Render the kickstart file of an OSBuildConfigTemplate
                    with parameter values, as done for each build of a config
                    that references the template.""",
            ),
        )
        args.add_argument(
            "template_manifest",
            type=pathlib.Path,
            help="Path to a file containing the OSBuildConfigTemplate",
        )
        args.add_argument(
            "--param",
            dest="params",
            action="append",
            metavar="NAME=VALUE",
            help="Value of a template parameter, may be repeated",
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
        template_manifest: pathlib.Path,
        params: list[str] | None,
        output_file: str,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        templates = [
            obj
            for obj in await read_manifests(template_manifest)
            if isinstance(obj, OSBuildConfigTemplate)
        ]
        if not templates:
            raise InputException(
                f"No OSBuildConfigTemplate found in {template_manifest}"
            )
        if len(templates) > 1:
            _LOGGER.warning(
                "Found %d templates in %s, rendering %s",
                len(templates),
                template_manifest,
                templates[0].namespaced_name,
            )
        template = templates[0]
        if (kickstart := template.spec.kickstart) is None or kickstart.raw is None:
            raise InputException(
                f"OSBuildConfigTemplate {template.namespaced_name} has no raw kickstart"
            )
        content = render_template(
            kickstart.raw, template.spec.parameters, parse_params(params)
        )
        with open(output_file, "w") as file:
            file.write(content)
