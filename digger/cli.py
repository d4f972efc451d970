from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer

from .cache import CacheStore
from .errors import FetchFailed, InvalidUrl
from .models import Report
from .orchestrator import Inspector
from .progress import ProgressState
from .settings import DEFAULT_DIGGER_CONFIG, DiggerConfig, load_digger_config

app = typer.Typer(no_args_is_help=True, add_completion=False)
cache_app = typer.Typer(no_args_is_help=True)
app.add_typer(cache_app, name="cache", help="Manage the local report cache.")


def _config(path: Optional[Path]) -> DiggerConfig:
    return load_digger_config(path) if path else DEFAULT_DIGGER_CONFIG


def format_summary(report: Report) -> str:
    lines = [f"URL:          {report.url}"]
    if report.networking:
        lines.append(f"Status:       {report.networking.status_code} ({report.networking.final_url})")
        if report.networking.server:
            lines.append(f"Server:       {report.networking.server}")
        if report.networking.ip_address:
            lines.append(f"IP address:   {report.networking.ip_address}")
    if report.overview and report.overview.title:
        lines.append(f"Title:        {report.overview.title}")
    if report.bot_protection and report.bot_protection.detected:
        challenge = " (challenge page)" if report.bot_protection.is_challenge_page else ""
        lines.append(f"Protection:   {report.bot_protection.provider_name or 'unknown'}{challenge}")
    if report.discoverability:
        d = report.discoverability
        lines.append(
            "Discovery:    "
            f"robots.txt={'yes' if d.robots_txt else 'no'} "
            f"sitemap={'yes' if d.sitemap else 'no'} "
            f"llms.txt={'yes' if d.llms_txt else 'no'}"
        )
    if report.certificate:
        if report.certificate.available:
            lines.append(f"Certificate:  {report.certificate.issuer} until {report.certificate.valid_to}")
        else:
            lines.append("Certificate:  unavailable")
    if report.history:
        h = report.history
        if not h.available:
            lines.append("History:      unavailable")
        else:
            count = "unknown" if h.wayback_machine_snapshots is None else h.wayback_machine_snapshots
            suffix = " (rate limited)" if h.rate_limited else ""
            lines.append(f"History:      {count} snapshots{suffix}")
    if report.data_feeds:
        total = sum(len(v or []) for v in (report.data_feeds.rss, report.data_feeds.atom, report.data_feeds.json_feeds))
        lines.append(f"Feeds:        {total}")
    for error in report.errors:
        lines.append(f"! {error.description}: {error.message}")
    return "\n".join(lines)


def _progress_printer(enabled: bool):
    last = {"value": -1}

    def on_progress(state: ProgressState) -> None:
        pct = int(state.overall * 100)
        if enabled and pct != last["value"]:
            last["value"] = pct
            typer.echo(f"[{pct:3d}%]", err=True)

    return on_progress


async def _inspect(url: str, config: DiggerConfig, refresh: bool, show_progress: bool) -> Report:
    async with Inspector(config) as inspector:
        return await inspector.inspect(url, refresh=refresh, on_progress=_progress_printer(show_progress))


@app.command()
def inspect(
    url: str = typer.Argument(..., help="URL or bare host name to inspect."),
    refresh: bool = typer.Option(False, "--refresh", help="Ignore cached results."),
    as_json: bool = typer.Option(False, "--json", help="Print the full report as JSON."),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to a digger_config.yaml."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Do not print progress."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log probe events."),
) -> None:
    """Inspect a URL and print its report."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    try:
        report = asyncio.run(_inspect(url, _config(config), refresh, not quiet))
    except InvalidUrl as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=2)
    except FetchFailed as exc:
        typer.echo(f"{exc.failure.description}: {exc.failure.message}", err=True)
        raise typer.Exit(code=1)

    if as_json:
        typer.echo(report.model_dump_json(indent=2, exclude_none=True))
    else:
        typer.echo(format_summary(report))


@cache_app.command("clear")
def cache_clear(config: Optional[Path] = typer.Option(None, "--config")) -> None:
    """Remove every cached report."""
    store = CacheStore.from_config(_config(config))
    count = len(store)
    store.clear()
    typer.echo(f"Removed {count} cached report(s)")


def main() -> None:  # pragma: no cover
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
