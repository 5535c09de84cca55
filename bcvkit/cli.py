"""Command-line entry point for managing bootc volumes in libvirt."""

from __future__ import annotations

import argparse
import logging
import os
import sys

from bcvkit.volumes import ListVolumesOptions, VirshError
from bcvkit.volumes import run as list_volumes

LOG_ENV_VAR = "BCVKIT_LOG"
DEFAULT_LOG_LEVEL = "info"

logger = logging.getLogger(__name__)


def _install_logging() -> None:
    """Log to stderr at the level named in the environment, defaulting to info."""
    name = os.environ.get(LOG_ENV_VAR, DEFAULT_LOG_LEVEL).strip().upper()
    level = logging.getLevelName(name)
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, stream=sys.stderr, format="%(levelname)s %(message)s")


def _add_list_volumes(subparsers) -> None:
    parser = subparsers.add_parser(
        "list-volumes",
        help="List available bootc volumes with metadata",
        description="List available bootc volumes with metadata.",
    )
    parser.add_argument(
        "--pool", default="default", help="Libvirt storage pool name to search"
    )
    parser.add_argument(
        "--json", action="store_true", help="Output format (human-readable or JSON)"
    )
    parser.add_argument(
        "--detailed", action="store_true", help="Show detailed volume information"
    )
    parser.add_argument(
        "--source-image", default=None, help="Filter by source container image"
    )
    parser.add_argument(
        "--all",
        action="store_true",
        help="Show all volumes (not just bootc volumes)",
    )
    parser.add_argument(
        "-c",
        "--connect",
        default=None,
        help="Hypervisor connection URI (e.g., qemu:///system)",
    )
    parser.set_defaults(handler=_run_list_volumes)


def _list_volumes_options(args: argparse.Namespace) -> ListVolumesOptions:
    return ListVolumesOptions(
        pool=args.pool,
        json=args.json,
        detailed=args.detailed,
        source_image=args.source_image,
        all=args.all,
        connect=args.connect,
    )


def _run_list_volumes(args: argparse.Namespace) -> None:
    list_volumes(_list_volumes_options(args))


def build_parser() -> argparse.ArgumentParser:
    """The argument parser for all commands."""
    parser = argparse.ArgumentParser(
        prog="bcvkit",
        description=(
            "A toolkit for bootc containers and local virtualization: "
            "manage bootc volumes in libvirt storage pools."
        ),
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    commands.required = True

    libvirt = commands.add_parser(
        "libvirt",
        help="Manage libvirt integration for bootc containers",
        description="Manage libvirt integration for bootc containers.",
    )
    libvirt_commands = libvirt.add_subparsers(dest="libvirt_command", metavar="COMMAND")
    libvirt_commands.required = True
    _add_list_volumes(libvirt_commands)
    return parser


def main(argv=None) -> int:
    """Parse arguments, run the chosen command and return the exit status."""
    _install_logging()
    args = build_parser().parse_args(argv)
    try:
        args.handler(args)
    except VirshError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    logger.debug("exiting")
    return 0


if __name__ == "__main__":
    sys.exit(main())