"""
CLI entrypoint for medhistory operator commands
"""
import asyncio
import logging
import uuid
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from .config import ServiceConfig, load_config
from .db.client import get_conn, init_schema
from .db.config import DBConfig
from .errors import MedicalHistoryError
from .utils import Timer, setup_logging

# Initialize CLI app and console
app = typer.Typer(help="medhistory - AI-generated medical history service")
console = Console()


def _resolve_config(config_file: Optional[Path]) -> ServiceConfig:
    if config_file is not None:
        return load_config(config_file)
    return ServiceConfig.from_env()


@app.command("init-db")
def init_db() -> None:
    """Create the generated_medical_histories table if missing."""
    db_config = DBConfig.from_env()
    console.print(f"[blue]Initializing schema on {db_config.host}:{db_config.port}/{db_config.name}[/blue]")
    with get_conn(db_config) as conn:
        init_schema(conn)
    console.print("[green]✓ Schema ready[/green]")


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind address"),
    port: int = typer.Option(8080, help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes (development)"),
) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "medhistory.web.app:get_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


@app.command("render-pdf")
def render_pdf(
    history_id: str = typer.Argument(..., help="Generated history id"),
    out: Path = typer.Option(..., "--out", "-o", help="Output PDF path (file or directory)"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Custom config YAML file"),
    log_level: str = typer.Option("INFO", help="Logging level (DEBUG|INFO|WARNING|ERROR)"),
) -> None:
    """Render a stored history to PDF through the cache."""
    from .web.app import build_components

    try:
        history_id = str(uuid.UUID(history_id))
    except ValueError:
        console.print(f"[red]Error: Invalid history id: {history_id}[/red]")
        raise typer.Exit(1)

    config = _resolve_config(config_file)
    logger = setup_logging(log_level, config.log_text_snippets)

    _, pdf_cache, _ = build_components(config)
    try:
        with Timer(f"Render {history_id}", logger):
            artifact = asyncio.run(pdf_cache.get_or_generate(history_id))
    except MedicalHistoryError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    target = out / artifact.filename if out.is_dir() else out
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(artifact.content)
    console.print(f"[green]✓ Wrote {artifact.size:,} bytes to {target}[/green]")


@app.command("show-config")
def show_config(
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Custom config YAML file"),
) -> None:
    """Print the effective configuration (credentials masked)."""
    config = _resolve_config(config_file)
    generation = config.generation

    table = Table(title="medhistory configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("GCP project", generation.project_id or "[red]not set[/red]")
    table.add_row("Location", generation.location)
    table.add_row("Credentials", "***" if generation.credentials_path else "default chain")
    table.add_row("Model", generation.model_name)
    table.add_row("Max attempts", str(generation.max_attempts))
    table.add_row("Backoff base", f"{generation.backoff_base_seconds}s")
    table.add_row("Request timeout", f"{generation.request_timeout_seconds}s")
    table.add_row("PDF cache", "enabled" if config.pdf_cache.enabled else "disabled")
    table.add_row("PDF cache backend", config.pdf_cache.backend)
    if config.pdf_cache.backend == "gcs":
        table.add_row("PDF cache bucket", f"{config.pdf_cache.bucket}/{config.pdf_cache.prefix}")
    else:
        table.add_row("PDF cache directory", config.pdf_cache.directory)
    table.add_row("Clinic name", config.clinic_name)
    table.add_row("Log level", config.log_level)

    console.print(table)


def main() -> None:
    logging.getLogger("google").setLevel(logging.WARNING)
    app()


if __name__ == "__main__":
    main()
