"""Command line tool for running the osbuild-operator controllers locally."""

import argparse
import asyncio
import logging
import os
import sys
import traceback
from typing import Any

import yaml

from osbuild_operator.config import LOG_LEVELS
from osbuild_operator.exceptions import OSBuildException

from . import render, run

_LOGGER = logging.getLogger(__name__)


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Command line utility for building images with osbuild composer.",
    )
    parser.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        default=os.environ.get("LOG_LEVEL", "").upper() or None,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command", required=True)

    run.RunAction.register(subparsers)
    render.RenderAction.register(subparsers)
    return parser


def main() -> None:
    """osbuild-operator command line tool main entry point."""

    def str_presenter(dumper: yaml.Dumper, data: Any) -> Any:
        """Represent multi-line yaml strings as you'd expect.

        See https://github.com/yaml/pyyaml/issues/240
        """
        return dumper.represent_scalar(
            "tag:yaml.org,2002:str", data, style="|" if data.count("\n") > 0 else None
        )

    yaml.add_representer(str, str_presenter)

    parser = _make_parser()
    args = parser.parse_args()

    if args.log_level:
        logging.basicConfig(level=args.log_level)

    action = args.cls()
    try:
        asyncio.run(action.run(**vars(args)))
    except OSBuildException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print("osbuild-operator error: ", err, file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
