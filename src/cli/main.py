"""Harvest CLI entry points.

This module exposes source listing, harvest, and HTTP read commands.
It maps argparse commands onto SDK calls.
"""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import replace
from pathlib import Path
from typing import Any, Sequence

from cli.harvest_command import add_harvest_command, run_harvest_command
from cli.read_command import add_read_command, run_read_command
from core.config import HarvestConfig
from core.constants import DEFAULT_FTP_PORT, DEFAULT_FTP_USER
from core.errors import HarvestError
from core.types import ArchiveSourceOptions, ListingSourceOptions
from harvester import HarvestClient


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser.

    Returns:
        Configured argument parser.
    """
    parser = argparse.ArgumentParser(prog="harvest", description="Stream harvest CLI")
    parser.add_argument("--tmp-root", help="Override HARVEST_TMP_ROOT for this command")
    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_list_command(subparsers)
    add_harvest_command(subparsers)
    add_read_command(subparsers)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the harvest CLI.

    Args:
        argv: Optional argument vector.

    Returns:
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    client = _build_client(args.tmp_root)
    if args.command == "list":
        return _run_list_command(client, args)
    if args.command == "harvest":
        return run_harvest_command(client, args)
    if args.command == "read":
        return run_read_command(client, args)
    parser.error(f"Unsupported command: {args.command}")
    return 2


def _build_client(tmp_root: str | None) -> HarvestClient:
    """Build SDK client with optional tmp-root override.

    Args:
        tmp_root: Optional override path.

    Returns:
        Configured SDK client.
    """
    config = HarvestConfig.from_env()
    if tmp_root:
        config = replace(config, tmp_root=Path(tmp_root).expanduser().resolve())
    return HarvestClient(config)


def _run_list_command(client: HarvestClient, args: argparse.Namespace) -> int:
    """Handle list command.

    Args:
        client: SDK client.
        args: Parsed CLI args.

    Returns:
        Exit code.
    """
    tmp_root = client.config.tmp_root
    options: ListingSourceOptions | ArchiveSourceOptions
    if args.url:
        options = ArchiveSourceOptions(
            url=args.url,
            archive_name=args.archive_name or Path(args.url.split("?", 1)[0]).name,
            tmp_root=tmp_root,
            max_entries=args.max_entries,
        )
    else:
        if not args.host or not args.path:
            print("list_error=Provide --host and --path for FTP, or --url for a zip archive.")
            return 2
        options = ListingSourceOptions(
            host=args.host,
            path=args.path,
            tmp_root=tmp_root,
            user=args.user,
            password=args.password,
            port=args.port,
            max_entries=args.max_entries,
        )
    try:
        names = asyncio.run(client.list_entries(options))
    except HarvestError as error:
        print(f"list_error={error}")
        return 1
    for name in names:
        print(name)
    return 0


def _add_list_command(subparsers: Any) -> None:
    """Register list subcommand."""
    parser = subparsers.add_parser("list", help="List the data entries of an FTP directory or zip")
    parser.add_argument("--host", help="FTP server host")
    parser.add_argument("--path", help="FTP directory holding the data files")
    parser.add_argument("--user", default=DEFAULT_FTP_USER, help="FTP user name")
    parser.add_argument("--password", default="", help="FTP password")
    parser.add_argument("--port", type=int, default=DEFAULT_FTP_PORT, help="FTP control port")
    parser.add_argument("--url", help="URL of a zip archive to list instead of FTP")
    parser.add_argument("--archive-name", help="Local file name for the downloaded archive")
    parser.add_argument("--max-entries", type=int, help="Only list the first N data entries")
