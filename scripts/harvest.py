#!/usr/bin/env python3
"""Harvest one or more configured sites into the remote catalog."""

from __future__ import annotations

import argparse
import asyncio
import sys
import time
from pathlib import Path
from typing import List, Optional, Sequence

from rich import box
from rich.console import Console
from rich.table import Table
from rich.text import Text

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.di.container import build_container  # noqa: E402
from core.settings import get_settings  # noqa: E402
from core.site_profiles import load_site_profiles  # noqa: E402
from core.types import JobStatus, ScrapeJob  # noqa: E402
from utils.error_handling import ConfigurationError  # noqa: E402
from utils.logger import get_logger  # noqa: E402

logger = get_logger(__name__)
console = Console()


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("sites", nargs="*", help="Site ids to harvest (default: all configured)")
    parser.add_argument(
        "--sites-config",
        type=Path,
        default=None,
        help="Path to sites configuration JSON",
    )
    parser.add_argument(
        "--max-products",
        type=int,
        help="Override max_products for every selected site",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="Print configured sites and exit",
    )
    return parser.parse_args(argv)


async def harvest_site(profile) -> ScrapeJob:
    container = build_container(get_settings(), profile)
    fetch_engine = container.resolve("fetch_engine")
    catalog_client = container.resolve("catalog_client")
    async with fetch_engine, catalog_client:
        orchestrator = container.resolve("orchestrator")
        return await orchestrator.run(profile)


def render_summary(jobs: List[ScrapeJob], duration: float) -> None:
    table = Table(title="Harvest Summary", box=box.ROUNDED, highlight=True)
    table.add_column("Site", no_wrap=True)
    table.add_column("Status")
    table.add_column("Found", justify="right")
    table.add_column("Created", justify="right")
    table.add_column("Updated", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Error")
    for job in jobs:
        status_style = "green" if job.status == JobStatus.SUCCESS else "red"
        table.add_row(
            job.site_id,
            Text(job.status.value, style=status_style),
            str(job.total_found),
            str(job.total_created),
            str(job.total_updated),
            Text(str(job.total_failed), style="red" if job.total_failed else "green"),
            job.error_message or "",
        )
    console.print(table)
    console.print(f"Run duration: {duration:.1f}s")


async def main_async(args: argparse.Namespace) -> int:
    config_path = str(args.sites_config or get_settings().sites_config)
    profiles = load_site_profiles(config_path)

    if args.list:
        for site_id, profile in profiles.items():
            console.print(f"{site_id}: {profile.name} ({profile.base_url})")
        return 0

    selected = args.sites or list(profiles)
    unknown = [site for site in selected if site not in profiles]
    if unknown:
        raise ConfigurationError(f"Unknown site(s): {', '.join(unknown)}", {"available": sorted(profiles)})

    jobs: List[ScrapeJob] = []
    started = time.perf_counter()
    for site_id in selected:
        profile = profiles[site_id]
        if args.max_products:
            profile = profile.model_copy(update={"max_products": args.max_products})
        console.print(f"[bold]Harvesting {profile.name}[/bold] ({profile.base_url})")
        jobs.append(await harvest_site(profile))

    render_summary(jobs, time.perf_counter() - started)
    return 0 if all(job.status == JobStatus.SUCCESS for job in jobs) else 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    try:
        return asyncio.run(main_async(args))
    except ConfigurationError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        return 2
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")
        return 130


if __name__ == "__main__":
    sys.exit(main())
