"""CLI entry point: watchman.

Subcommands:
    watchman init-db                                   # Create tables
    watchman add https://github.com/o/r --used-by URL  # Start watching a repository
    watchman list                                      # Show watched repositories
    watchman issues https://github.com/o/r --comments  # Dump what the collector sees
    watchman once                                      # Run one full scan cycle
    watchman run                                       # Scan every WATCHMAN_SCAN_INTERVAL
"""

from __future__ import annotations

import asyncio
import dataclasses
import signal

import click

from watchman.core.config import Settings
from watchman.core.database import create_all, create_engine, create_session_factory
from watchman.core.logging import setup_logging
from watchman.exceptions import WatchmanError
from watchman.scheduler import create_scheduler
from watchman.services.watermark_service import WatermarkService
from watchman.wiring import build_collector, build_pipeline


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """Watchman: alert on security keywords in GitHub issues and comments."""
    settings = Settings.from_env()
    if verbose:
        settings = dataclasses.replace(settings, log_level="DEBUG")
    setup_logging(settings.log_level, settings.log_format)
    ctx.obj = settings


@main.command("init-db")
@click.pass_obj
def init_db(settings: Settings) -> None:
    """Create the database tables."""

    async def _run() -> None:
        engine = create_engine(settings.database_url)
        try:
            await create_all(engine)
        finally:
            await engine.dispose()

    asyncio.run(_run())
    click.echo("Tables created.")


@main.command("add")
@click.argument("repo_url")
@click.option("--used-by", "used_by", default=None, help="URL of a project that uses the repo")
@click.pass_obj
def add(settings: Settings, repo_url: str, used_by: str | None) -> None:
    """Start watching REPO_URL."""

    async def _run():
        engine = create_engine(settings.database_url)
        try:
            store = WatermarkService(create_session_factory(engine))
            return await store.register(repo_url, used_by)
        finally:
            await engine.dispose()

    try:
        repo = asyncio.run(_run())
    except WatchmanError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Watching {repo.url} (used by {len(repo.used_by_urls)} project(s))")


@main.command("list")
@click.pass_obj
def list_repos(settings: Settings) -> None:
    """Show watched repositories and their watermarks."""

    async def _run():
        engine = create_engine(settings.database_url)
        try:
            return await WatermarkService(create_session_factory(engine)).list_watched()
        finally:
            await engine.dispose()

    repos = asyncio.run(_run())
    if not repos:
        click.echo("No repositories watched.")
        return
    for repo in repos:
        mark = repo.last_scanned_at.isoformat() if repo.last_scanned_at else "never"
        click.echo(f"{repo.url}  last scanned: {mark}")
        for used_by in repo.used_by_urls:
            click.echo(f"    used by {used_by}")


@main.command("issues")
@click.argument("repo_url")
@click.option("--comments", is_flag=True, help="Also fetch comments for every issue")
@click.pass_obj
def issues(settings: Settings, repo_url: str, comments: bool) -> None:
    """Print the issues (and optionally comments) the collector sees for REPO_URL."""

    async def _run() -> None:
        client, collector = build_collector(settings)
        async with client:
            found = await collector.list_issues(repo_url)
            for issue in found:
                click.echo(f"Issue: {issue.url}  updated {issue.updated_at.isoformat()}")
                if not comments:
                    continue
                for comment in await collector.list_comments(issue.owner, issue.repo, issue.number):
                    click.echo(f"  Comment: {comment.url}")

    try:
        asyncio.run(_run())
    except WatchmanError as exc:
        raise click.ClickException(str(exc)) from exc


@main.command("once")
@click.pass_obj
def once(settings: Settings) -> None:
    """Run one scan cycle and process every resulting message."""

    async def _run() -> tuple[int, int, int]:
        engine = create_engine(settings.database_url)
        client, collector = build_collector(settings)
        try:
            pipeline = build_pipeline(settings, create_session_factory(engine), collector)
            queued = await pipeline.start.run()
            try:
                delivered = await pipeline.bus.drain()
            finally:
                await pipeline.close()
            return queued, delivered, len(pipeline.bus.dead_letters)
        finally:
            await client.close()
            await engine.dispose()

    queued, delivered, failed = asyncio.run(_run())
    click.echo(f"Scanned {queued} repositories, {delivered} deliveries, {failed} failed.")
    if failed:
        raise SystemExit(1)


@main.command("run")
@click.pass_obj
def run(settings: Settings) -> None:
    """Scan every WATCHMAN_SCAN_INTERVAL seconds until interrupted."""

    async def _run() -> None:
        engine = create_engine(settings.database_url)
        client, collector = build_collector(settings)
        pipeline = build_pipeline(settings, create_session_factory(engine), collector)
        scheduler = create_scheduler(settings, pipeline.start, pipeline.bus)

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        await scheduler.start()
        try:
            await stop.wait()
        finally:
            await scheduler.stop()
            await pipeline.close()
            await client.close()
            await engine.dispose()

    asyncio.run(_run())


if __name__ == "__main__":
    main()
