from __future__ import annotations

from typing import Any, Dict, Optional

import typer
import uvicorn
from rich.console import Console
from rich.table import Table

from viewlog_server.logging_config import LEVELS, configure_logging
from viewlog_server.main import create_app
from viewlog_server.settings import ConfigError, Settings, load_settings

app = typer.Typer(add_completion=False, no_args_is_help=True)
console = Console()


def _load_or_exit(overrides: Dict[str, Any]) -> Settings:
    try:
        return load_settings(**overrides)
    except ConfigError as e:
        console.print("[red]❌ Invalid environment variables:[/red]")
        for field, messages in e.field_errors.items():
            console.print(f"  {field}: {'; '.join(messages)}", markup=False)
        raise typer.Exit(code=1)


def _overrides(host: Optional[str], port: Optional[int]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if host:
        out["host"] = host
    if port is not None:
        out["port"] = port
    return out


@app.command("serve")
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Listen address (overrides VIEWLOG_HOST)."),
    port: Optional[int] = typer.Option(None, "--port", help="Listen port (overrides VIEWLOG_PORT)."),
):
    settings = _load_or_exit(_overrides(host, port))
    configure_logging(settings.log_level)

    application = create_app(settings)
    uvicorn.run(
        application,
        host=settings.host,
        port=settings.port,
        log_level=LEVELS.get(settings.log_level),
        # Client address handling is ours (VIEWLOG_TRUST_PROXY).
        proxy_headers=False,
        access_log=False,
    )


@app.command("check-config")
def check_config(
    host: Optional[str] = typer.Option(None, "--host", help="Listen address (overrides VIEWLOG_HOST)."),
    port: Optional[int] = typer.Option(None, "--port", help="Listen port (overrides VIEWLOG_PORT)."),
):
    settings = _load_or_exit(_overrides(host, port))

    table = Table(show_header=False, box=None, pad_edge=False)
    for name, value in settings.model_dump().items():
        table.add_row(f"[bold]{name}[/bold]", str(value))
    console.print(table)
    if settings.skip_env_validation:
        console.print("[yellow]Warning:[/yellow] environment validation was skipped.")
    console.print("[green]configuration ok[/green]")
