"""Harvest CLI command wiring.

This module registers the harvest subcommand and delegates execution to
the SDK client shared by CLI and library entry points.
"""

from __future__ import annotations

import argparse
import asyncio
from typing import Any

from core.errors import HarvestError
from core.types import PipelineSummary
from harvester import HarvestClient


def add_harvest_command(subparsers: Any) -> None:
    """Register harvest subcommand."""
    parser = subparsers.add_parser(
        "harvest",
        help="Run a declarative YAML harvest spec end to end",
    )
    parser.add_argument("spec_file", help="Path to YAML harvest spec file")


def run_harvest_command(client: HarvestClient, args: argparse.Namespace) -> int:
    """Handle harvest command invocation."""
    try:
        summary = asyncio.run(client.harvest_file(args.spec_file))
    except HarvestError as error:
        print(f"harvest_error={error}")
        return 1
    for line in render_summary(summary):
        print(line)
    return 0 if summary.first_error is None and summary.write_failures == 0 else 1


def render_summary(summary: PipelineSummary) -> list[str]:
    """Format a pipeline summary as ``key=value`` lines."""
    lines = [
        f"run_id={summary.run_id}",
        f"reads_completed={summary.reads_completed}",
        f"total_saved={summary.total_saved}",
        f"total_written={summary.total_written}",
        f"flush_count={summary.flush_count}",
        f"write_failures={summary.write_failures}",
        f"elapsed_seconds={summary.elapsed_seconds:.3f}",
        f"records_per_second={summary.records_per_second}",
    ]
    for reason, count in sorted(summary.failures_by_reason.items()):
        lines.append(f"failed[{reason}]={count}")
    for reason, count in sorted(summary.skipped_by_reason.items()):
        lines.append(f"skipped[{reason}]={count}")
    for reason, count in sorted(summary.write_reasons.items()):
        lines.append(f"written[{reason}]={count}")
    if summary.first_error is not None:
        lines.append(f"first_error={summary.first_error.label}: {summary.first_error.reason}")
    return lines
