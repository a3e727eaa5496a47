"""
TurboUpload - command line entry point.
"""

import asyncio
import contextlib
import logging
import signal
import sys
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.progress import BarColumn, Progress, TaskID, TextColumn
from rich.table import Table

from .client import UploadSessionClient
from .config import MiB, Settings
from .exceptions import ValidationError
from .logging_config import setup_logging
from .models import FileDescriptor, FileStatus, QueueState, QueueStatus
from .orchestrator import UploadQueueOrchestrator
from .utils import format_bytes, format_eta

console = Console()

STATUS_STYLES = {
    FileStatus.COMPLETED: "green",
    FileStatus.FAILED: "red",
    FileStatus.CANCELLED: "yellow",
    FileStatus.CHUNKED: "cyan",
}


class ProgressView:
    """Renders queue snapshots as a rich progress bar."""

    def __init__(self, progress: Progress):
        self.progress = progress
        self.task: TaskID = progress.add_task("Waiting", total=100, speed="--", eta="--")

    def __call__(self, state: QueueState):
        active = state.active_file
        if active is None:
            label = f"{state.completed_files}/{state.total_files} files"
        elif active.status == FileStatus.FINALIZING:
            label = f"Finalizing {active.name}"
        else:
            label = f"Uploading {active.name} [{active.current_chunk}/{active.total_chunks} chunks]"
        self.progress.update(
            self.task,
            completed=state.overall_progress,
            description=label,
            speed=f"{format_bytes(state.speed)}/s",
            eta=format_eta(state.estimated_time_remaining),
        )


def print_summary(state: QueueState):
    table = Table(title="Upload summary")
    table.add_column("File")
    table.add_column("Size", justify="right")
    table.add_column("Status")
    table.add_column("Detail")
    for f in state.files:
        style = STATUS_STYLES.get(f.status, "white")
        table.add_row(f.name, format_bytes(f.size), f"[{style}]{f.status.value}[/{style}]",
                      str(f.failure) if f.failure else "")
    console.print(table)
    console.print(f"{state.completed_files}/{state.total_files} files uploaded, status: {state.status.value}")


async def run_upload(settings: Settings, paths: Tuple[str, ...], target_dir: str) -> QueueState:
    files = [FileDescriptor.from_path(p) for p in paths]

    async with UploadSessionClient.from_settings(settings) as client:
        queue = UploadQueueOrchestrator(client, settings)
        queue.add_files(files)
        queue.status_callback = lambda message, level: console.log(
            f"[red]{message}[/red]" if level >= logging.ERROR else message)

        loop = asyncio.get_running_loop()
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(signal.SIGINT, queue.stop)

        columns = (
            TextColumn("{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>3.0f}%"),
            TextColumn("{task.fields[speed]}"),
            TextColumn("ETA {task.fields[eta]}"),
        )
        with Progress(*columns, console=console) as progress:
            view = ProgressView(progress)
            queue.subscribe(view)
            try:
                return await queue.upload(target_dir)
            finally:
                with contextlib.suppress(NotImplementedError):
                    loop.remove_signal_handler(signal.SIGINT)


@click.command()
@click.argument('files', nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option('--dir', 'target_dir', required=True, help='Destination directory on the server')
@click.option('--host', default=None, help='Server host or IP (port 8080 unless an aaxion tunnel)')
@click.option('--base-url', default=None, help='Full server URL, overrides --host')
@click.option('--token', default=None, envvar='TURBO_UPLOAD_AUTH_TOKEN', help='Bearer token')
@click.option('--chunk-size-mb', type=click.IntRange(min=1), default=None, help='Chunk size in MiB')
@click.option('--threshold-mb', type=click.IntRange(min=1), default=None,
              help='Files at or above this size (MiB) are uploaded in chunks')
@click.option('--retries', type=click.IntRange(min=1), default=None, help='Attempts per request')
@click.option('--log-level', default=None, type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False))
def cli(files, target_dir, host, base_url, token, chunk_size_mb, threshold_mb, retries, log_level):
    """Upload FILES to the storage server into --dir."""
    overrides = {}
    if host:
        overrides['API_HOST'] = host
    if base_url:
        overrides['API_BASE_URL'] = base_url
    if token:
        overrides['AUTH_TOKEN'] = token
    if chunk_size_mb:
        overrides['CHUNK_SIZE'] = chunk_size_mb * MiB
    if threshold_mb:
        overrides['CHUNK_THRESHOLD'] = threshold_mb * MiB
    if retries:
        overrides['MAX_ATTEMPTS'] = retries
    if log_level:
        overrides['LOG_LEVEL'] = log_level

    settings = Settings(**overrides)
    setup_logging(settings.LOG_LEVEL)

    try:
        state = asyncio.run(run_upload(settings, files, target_dir))
    except ValidationError as e:
        raise click.UsageError(str(e))

    print_summary(state)
    if state.status != QueueStatus.COMPLETED:
        sys.exit(1)


def main(argv: Optional[list] = None):
    cli.main(args=argv, prog_name='turbo-upload')


if __name__ == "__main__":
    main()
