"""Sync and queue inspection commands."""

from datetime import datetime
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from cropcare.cli.utils import OUTPUT_FORMAT_OPTION, OUTPUT_PATH_OPTION, OutputFormat, handle_json_output, run_with_app
from cropcare.config import load_config
from cropcare.runtime import CropCareApp
from cropcare.storage.queue import PendingQueue
from cropcare.sync.reconciler import DrainReport

console = Console()


def sync_now() -> None:
    """Send queued changes to the backend and refresh the offline caches."""

    async def _sync(app: CropCareApp) -> DrainReport:
        if not await app.monitor.probe():
            console.print("[yellow]⚠ Backend unreachable; changes stay queued[/yellow]")
            return DrainReport(skipped=True)
        report = await app.reconciler.drain()
        await app.reconciler.refresh_caches()
        return report

    report = run_with_app(_sync, status="Syncing...")
    if report.skipped:
        return
    console.print(
        f"[green]✓ Synced[/green] | {report.succeeded} sent | {report.failed} failed | {report.dropped} dropped"
    )


def show_queue(
    clear: Annotated[bool, typer.Option("--clear", help="Discard every queued change")] = False,
    output_format: OUTPUT_FORMAT_OPTION = OutputFormat.TABLE,
    output_path: OUTPUT_PATH_OPTION = None,
) -> None:
    """List changes waiting to be sent to the backend."""
    config = load_config()
    queue = PendingQueue(config.data_dir, size_limit=config.storage_size_limit)
    try:
        if clear:
            if typer.confirm(f"Discard {queue.count()} queued changes?", default=False):
                queue.clear()
                console.print("[green]✓ Queue cleared[/green]")
            return

        operations = queue.list()
        if output_format == OutputFormat.JSON:
            handle_json_output(operations, output_path)
            return
        if not operations:
            console.print("[green]Nothing waiting to sync[/green]")
            return

        table = Table(title="Pending changes", show_lines=True)
        table.add_column("ID", style="dim")
        table.add_column("Type", style="cyan")
        table.add_column("Action")
        table.add_column("Retries", justify="right")
        table.add_column("Queued at")
        for op in operations:
            table.add_row(
                op.id,
                op.entity_type.value,
                op.action.value,
                str(op.retry_count),
                datetime.fromtimestamp(op.enqueued_at_ms / 1000).strftime("%Y-%m-%d %H:%M:%S"),
            )
        console.print(table)
    finally:
        queue.close()
