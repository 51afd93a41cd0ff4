"""Command line entry point for vidl."""

from __future__ import annotations

import logging
import threading
from typing import NoReturn

import click
from rich.console import Console
from rich.table import Table

from vidl import dependencies
from vidl.logging_config import configure_application_logging
from vidl.models.channels import ChannelID, Service
from vidl.models.video_status import InvalidTransitionError, parse_statuses
from vidl.models.work_items import UpdateWorkItem
from vidl.repositories.channel_repository import ChannelExistsError, ChannelNotFoundError
from vidl.repositories.video_repository import VideoNotFoundError
from vidl.services.sources.base import FetchError, UnsupportedServiceError

LOGGER = logging.getLogger("vidl.cli")

console = Console()

_VERBOSITY_LEVELS = {1: "INFO", 2: "DEBUG"}


def _fail(message: str) -> NoReturn:
    console.print(f"[red]Error:[/red] {message}")
    raise click.exceptions.Exit(1)


@click.group()
@click.version_option(version="0.1.0")
@click.option("-v", "--verbose", count=True, help="Increase console log output (-v, -vv).")
def main(verbose: int) -> None:
    """vidl - keep track of video channels and download new uploads."""
    settings = dependencies.get_settings()
    console_level = _VERBOSITY_LEVELS.get(min(verbose, 2)) if verbose else None
    configure_application_logging(settings, console_level=console_level)


@main.command()
def init() -> None:
    """Create the database."""
    database = dependencies.get_database()
    console.print(f"[green]Initialised database:[/green] {database.path}")


@main.command()
@click.argument("name")
@click.option(
    "--service",
    "-s",
    type=click.Choice([service.value for service in Service]),
    default=Service.YOUTUBE.value,
    show_default=True,
    help="Service the channel lives on.",
)
def add(name: str, service: str) -> None:
    """Add a channel by id or name."""
    resolved_service = Service.from_str(service)
    try:
        source = dependencies.get_source_registry().for_service(resolved_service)
        channel_id = source.resolve_channel_id(name)
        metadata = source.get_metadata(channel_id)
        channel = dependencies.get_channel_repository().create_channel(
            ChannelID(id=channel_id, service=resolved_service),
            metadata,
        )
    except UnsupportedServiceError:
        _fail(f"Adding {resolved_service.value} channels is not supported yet")
    except FetchError as exc:
        _fail(f"Could not look up channel {name}: {exc}")
    except ChannelExistsError as exc:
        _fail(str(exc))

    LOGGER.info("added channel id=%s chanid=%s", channel.id, channel.chanid)
    console.print(f"[green]Added channel:[/green] {channel.id} - {channel.title}")


@main.command()
@click.argument("channel_id", type=int)
def remove(channel_id: int) -> None:
    """Remove a channel and all of its videos."""
    channels = dependencies.get_channel_repository()
    try:
        channel = channels.get_channel(channel_id)
        channels.delete_channel(channel_id)
    except ChannelNotFoundError as exc:
        _fail(str(exc))
    console.print(f"[green]Removed channel:[/green] {channel.id} - {channel.title}")


@main.command(name="list")
@click.argument("channel_id", type=int, required=False)
@click.option("--limit", "-n", default=50, show_default=True, help="Videos to show.")
@click.option("--status", "statuses", default="", help="Only these statuses, e.g. GE,NE.")
def list_command(channel_id: int | None, limit: int, statuses: str) -> None:
    """List channels, or the videos of one channel."""
    if channel_id is None:
        _print_channels()
        return

    try:
        status_filter = parse_statuses(statuses)
    except ValueError as exc:
        _fail(str(exc))

    try:
        channel = dependencies.get_channel_repository().get_channel(channel_id)
    except ChannelNotFoundError as exc:
        _fail(str(exc))

    videos = dependencies.get_video_repository().list_videos(
        channel_id=channel.id,
        limit=limit,
        statuses=status_filter or None,
    )
    table = Table(title=channel.title)
    table.add_column("ID", justify="right")
    table.add_column("Status")
    table.add_column("Published")
    table.add_column("Title")
    table.add_column("URL")
    for video in videos:
        table.add_row(
            str(video.id),
            video.status.value,
            video.record.published_at.date().isoformat(),
            video.title,
            video.url,
        )
    console.print(table)


def _print_channels() -> None:
    channels = dependencies.get_channel_repository().list_channels()
    if not channels:
        console.print("[yellow]No channels added yet[/yellow]")
        return

    table = Table()
    table.add_column("ID", justify="right")
    table.add_column("Title")
    table.add_column("Channel")
    table.add_column("Service")
    table.add_column("Last update")
    for channel in channels:
        table.add_row(
            str(channel.id),
            channel.title,
            channel.chanid,
            channel.service.value,
            channel.last_update.isoformat(timespec="seconds") if channel.last_update else "never",
        )
    console.print(table)


@main.command()
@click.option("--force", is_flag=True, help="Check channels even if checked recently.")
@click.option("--full", "full_update", is_flag=True, help="Walk every page, no early stop.")
def update(force: bool, full_update: bool) -> None:
    """Check every channel for new videos."""
    channels = dependencies.get_channel_repository().list_channels()
    if not channels:
        LOGGER.warning("no channels yet added")
        console.print("[yellow]No channels added yet[/yellow]")
        return

    pool = dependencies.build_worker_pool()
    pool.start()
    try:
        for channel in channels:
            LOGGER.info("updating channel id=%s title=%s", channel.id, channel.title)
            pool.enqueue(UpdateWorkItem(channel=channel, force=force, full_update=full_update))
    finally:
        pool.stop()
    console.print(f"[green]Checked {len(channels)} channel(s)[/green]")


@main.command()
@click.argument("video_id", type=int)
def queue(video_id: int) -> None:
    """Mark a video for download by the next `vidl worker` run."""
    try:
        dependencies.get_download_service().queue_video(video_id)
    except (VideoNotFoundError, InvalidTransitionError) as exc:
        _fail(str(exc))
    console.print(f"[green]Queued video:[/green] {video_id}")


@main.command()
@click.argument("video_id", type=int)
def ignore(video_id: int) -> None:
    """Mark a video as ignored."""
    try:
        dependencies.get_download_service().ignore_video(video_id)
    except (VideoNotFoundError, InvalidTransitionError) as exc:
        _fail(str(exc))
    console.print(f"[green]Ignored video:[/green] {video_id}")


@main.command()
def worker() -> None:
    """Download every queued video, then exit."""
    download_service = dependencies.get_download_service()
    recovered = download_service.recover_interrupted()
    if recovered:
        console.print(f"[yellow]Marked {recovered} interrupted download(s) as failed[/yellow]")

    items = download_service.queued_work_items()
    pool = dependencies.build_worker_pool()
    pool.start()
    try:
        for item in items:
            pool.enqueue(item)
    finally:
        pool.stop()
    console.print(f"[green]Processed {len(items)} queued video(s)[/green]")


@main.command()
def serve() -> None:
    """Run workers and the periodic channel refresh until interrupted."""
    settings = dependencies.get_settings()
    download_service = dependencies.get_download_service()
    download_service.recover_interrupted()

    pool = dependencies.build_worker_pool()
    pool.start()
    for item in download_service.queued_work_items():
        pool.enqueue(item)

    scheduler = dependencies.build_scheduler(pool) if settings.scheduler_enabled else None
    if scheduler is not None and not scheduler.start():
        console.print("[yellow]Another vidl process runs the refresh loop[/yellow]")

    console.print(f"[green]Serving with {pool.num_workers} worker(s); Ctrl-C to stop[/green]")
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        console.print("Stopping, finishing queued work")
    finally:
        if scheduler is not None:
            scheduler.stop()
        pool.stop()


if __name__ == "__main__":
    main()
