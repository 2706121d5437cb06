"""Command line interface for the music indexer."""

import asyncio
import logging
import sys
from typing import Awaitable, Callable, TypeVar

import click

from music_indexer.config import Settings
from music_indexer.context import IndexerContext, build_context
from music_indexer.services.coordinator import ScanCoordinator, StartStatus
from music_indexer.services.notifier import ProgressNotifier

T = TypeVar("T")

user_option = click.option(
    "--user", "user_id", default="local", show_default=True, envvar="MUSIC_INDEXER_USER",
    help="User namespace for scan state and cache",
)


def _run(config: Settings, action: Callable[[IndexerContext, ScanCoordinator], Awaitable[T]]) -> T:
    async def main():
        ctx = await build_context(config)
        coordinator = ScanCoordinator(ctx)
        try:
            return await action(ctx, coordinator)
        finally:
            await coordinator.shutdown()
            await ctx.close()

    return asyncio.run(main())


@click.group()
@click.option("--log-level", default=None, help="Override the configured log level")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None) -> None:
    config = Settings()
    logging.basicConfig(
        level=(log_level or config.log_level).upper(),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@cli.command()
@user_option
@click.option("--force-restart", is_flag=True, help="Discard previous progress and start a new epoch")
@click.pass_context
def scan(ctx: click.Context, user_id: str, force_restart: bool) -> None:
    """Start (or resume) a scan and wait for it to finish."""

    async def action(_, coordinator: ScanCoordinator):
        result = await coordinator.start_background(user_id, force_restart=force_restart)
        click.echo(f"{result.status.value}: {result.message}")
        if result.started:
            await coordinator.wait(user_id)
            return await coordinator.status(user_id)
        return None

    try:
        status = _run(ctx.obj["config"], action)
    except KeyboardInterrupt:
        sys.exit(130)
    if status is not None:
        _echo_status(status)


@cli.command()
@user_option
@click.pass_context
def resume(ctx: click.Context, user_id: str) -> None:
    """Resume a scan still marked as running (e.g. after a crash)."""

    async def action(_, coordinator: ScanCoordinator):
        result = await coordinator.resume(user_id)
        click.echo(f"{result.status.value}: {result.message}")
        if result.status == StartStatus.RESUMED:
            await coordinator.wait(user_id)
        return result

    try:
        _run(ctx.obj["config"], action)
    except KeyboardInterrupt:
        sys.exit(130)


@cli.command()
@user_option
@click.pass_context
def stop(ctx: click.Context, user_id: str) -> None:
    """Ask a running scan to stop."""
    checkpoint = _run(ctx.obj["config"], lambda _, c: c.stop(user_id))
    click.echo("Stop requested" if checkpoint else "No scan state")


@cli.command()
@user_option
@click.pass_context
def status(ctx: click.Context, user_id: str) -> None:
    """Show scan progress."""
    _echo_status(_run(ctx.obj["config"], lambda _, c: c.status(user_id)))


@cli.command()
@user_option
@click.pass_context
def clear(ctx: click.Context, user_id: str) -> None:
    """Delete scan progress and the scan lock."""
    _run(ctx.obj["config"], lambda _, c: c.clear(user_id))
    click.echo("Scan state cleared")


@cli.command("set-root")
@user_option
@click.argument("root_path")
@click.pass_context
def set_root(ctx: click.Context, user_id: str, root_path: str) -> None:
    """Set the music root folder ('' for the drive root)."""
    try:
        user_settings, cleared = _run(ctx.obj["config"], lambda _, c: c.set_root_path(user_id, root_path))
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"Music root: {user_settings.music_root_path or '/'}")
    if cleared:
        click.echo("Root changed; cache and scan state cleared")


@cli.command()
@user_option
@click.pass_context
def tracks(ctx: click.Context, user_id: str) -> None:
    """List every cached track."""
    all_tracks = _run(ctx.obj["config"], lambda c, _: c.library.all_tracks(user_id))
    for track in all_tracks:
        click.echo(f"{track.artist} - {track.title} [{track.extension}] {track.folder}")
    click.echo(f"{len(all_tracks):,} tracks")


@cli.command()
@user_option
@click.pass_context
def stats(ctx: click.Context, user_id: str) -> None:
    """Show cache statistics."""
    cache_stats = _run(ctx.obj["config"], lambda c, _: c.library.cache_stats(user_id))
    click.echo(f"Cached paths: {cache_stats.total_paths:,}")
    click.echo(f"Files: {cache_stats.total_files:,}")
    click.echo(f"Folders: {cache_stats.total_folders:,}")
    click.echo(f"Last updated: {cache_stats.last_updated.isoformat() if cache_stats.last_updated else 'never'}")


@cli.command("ls")
@user_option
@click.argument("path", default="")
@click.option("--scan", "start_scan", is_flag=True, help="Kick a background scan when the folder is not cached, and wait for it")
@click.pass_context
def list_folder(ctx: click.Context, user_id: str, path: str, start_scan: bool) -> None:
    """List one folder, from the cache when it has been crawled."""

    async def action(_, coordinator: ScanCoordinator):
        result = await coordinator.browse(user_id, path, start_scan=start_scan)
        if result.scan is not None and result.scan.started:
            await coordinator.wait(user_id)
        return result

    try:
        result = _run(ctx.obj["config"], action)
    except KeyboardInterrupt:
        sys.exit(130)
    for sub_folder in result.record.folders:
        click.echo(f"{sub_folder.name}/")
    for entry in result.record.files:
        click.echo(f"{entry.title} [{entry.extension}]")
    source = "cached" if result.cached else "listed live"
    click.echo(f"{len(result.record.folders)} folders, {len(result.record.files)} files ({source})")
    if result.scan is not None:
        click.echo(f"{result.scan.status.value}: {result.scan.message}")


@cli.command()
@user_option
@click.option("--follow", is_flag=True, help="Keep streaming after the scan stops")
@click.pass_context
def watch(ctx: click.Context, user_id: str, follow: bool) -> None:
    """Stream progress frames to stdout."""
    config: Settings = ctx.obj["config"]

    async def action(indexer: IndexerContext, _):
        notifier = ProgressNotifier(
            indexer.library,
            poll_interval=config.progress_poll_seconds,
            keepalive_interval=config.progress_keepalive_seconds,
        )
        async for frame in notifier.stream(user_id, until_idle=not follow):
            click.echo(frame, nl=False)

    try:
        _run(config, action)
    except KeyboardInterrupt:
        sys.exit(130)


def _echo_status(scan_status) -> None:
    checkpoint = scan_status.checkpoint
    click.echo(f"Status: {scan_status.phase.value}")
    if checkpoint is None:
        return
    click.echo(
        f"Top-level folders: {checkpoint.scanned_top_level_folders}/{checkpoint.total_top_level_folders}"
    )
    click.echo(
        f"Scanned: {checkpoint.cumulative_file_count:,} music files in "
        f"{checkpoint.cumulative_folder_count:,} folders"
    )
    if checkpoint.current_top_level_folder:
        click.echo(f"Current: {checkpoint.current_path}")
    if checkpoint.error:
        click.echo(f"Last error: {checkpoint.error}")
    if scan_status.can_resume:
        click.echo("Scan can be resumed")
