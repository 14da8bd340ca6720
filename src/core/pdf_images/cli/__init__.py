from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from ..config import AppConfig, dump_config, load_config
from ..core import ConversionError, ConversionService
from ..lifecycle import CleanupScheduler, sweep_orphans
from ..log_utils import configure_logging
from ..models import ConversionRequest
from ..utils import generate_run_id

console = Console()

app = typer.Typer(help="Render PDF page ranges to images")


def _load_config(path: Path | None) -> AppConfig:
    cfg = load_config(path)
    configure_logging(level=cfg.runtime.log_level, force=True)
    return cfg


@app.command()
def convert(
    source: str = typer.Argument(..., help="URL or local path of the PDF"),
    first: int | None = typer.Option(None, "--first", help="First page to render"),
    last: int | None = typer.Option(None, "--last", help="Last page to render"),
    total_pages: int | None = typer.Option(None, "--total-pages", help="Skip page counting"),
    scale: int | None = typer.Option(None, "--scale", min=16, help="Long-edge size in pixels"),
    keep: bool = typer.Option(True, "--keep/--no-keep", help="Keep rendered pages on disk"),
    config: Path | None = typer.Option(None, "--config", help="Path to config.toml"),
) -> None:
    cfg = _load_config(config)
    cfg.runtime.allow_local_sources = True
    scheduler = CleanupScheduler(cfg.runtime.cleanup)
    service = ConversionService(cfg, scheduler=scheduler)
    request = ConversionRequest(
        source=source,
        first_page=first,
        last_page=last,
        total_pages=total_pages,
        scale_hint=scale,
    )
    succeeded = False
    try:
        result = service.convert(request)
        succeeded = True
    except ConversionError as exc:
        console.print(f"[red]Conversion failed[/red]: {exc.code} - {exc}")
        raise typer.Exit(1) from exc
    finally:
        if not succeeded:
            scheduler.flush()
        service.close()

    output_dir = cfg.runtime.output_dir / result.session_id
    table = Table(title=f"Session {result.session_id}")
    table.add_column("Page", justify="right")
    table.add_column("File")
    for artifact in result.artifacts:
        table.add_row(str(artifact.page_ordinal), str(output_dir / artifact.filename))
    console.print(table)

    if keep:
        session = scheduler.discard(result.session_id)
        if session is not None and session.temp_input is not None:
            session.temp_input.unlink(missing_ok=True)
        console.print(f"[green]Success[/green]: {len(result.artifacts)} page(s) in {output_dir}")
    else:
        scheduler.flush()
        console.print(f"[green]Success[/green]: {len(result.artifacts)} page(s) rendered and removed")


@app.command()
def serve(
    host: str | None = typer.Option(None, "--host"),
    port: int | None = typer.Option(None, "--port"),
    config: Path | None = typer.Option(None, "--config", help="Path to config.toml"),
) -> None:
    import uvicorn

    from api.app import create_app

    cfg = _load_config(config)
    cfg.runtime.enable_api = True
    uvicorn.run(
        create_app(cfg),
        host=host or cfg.api.host,
        port=port or cfg.api.port,
    )


@app.command()
def clean(
    older_than: int = typer.Option(
        0,
        "--older-than",
        min=0,
        help="Only delete sessions older than the given number of seconds",
    ),
    config: Path | None = typer.Option(None, "--config", help="Path to config.toml"),
) -> None:
    cfg = _load_config(config)
    reports = sweep_orphans(cfg.runtime.output_dir, cfg.runtime.temp_dir, older_than_s=older_than)
    removed = sum(report.removed_files for report in reports)
    failed = [report for report in reports if not report.ok]
    console.print(f"Removed {len(reports)} session(s), {removed} file(s).")
    if failed:
        console.print(f"[yellow]{len(failed)} session(s) could not be fully removed[/yellow]")
        raise typer.Exit(1)


@app.command()
def show_config(
    config: Path | None = typer.Option(None, "--config", help="Path to config.toml"),
) -> None:
    console.print_json(dump_config(load_config(config)))


@app.command()
def new_session_id() -> None:
    console.print(generate_run_id("session"))


if __name__ == "__main__":
    app()
