"""aidgpt command line: run prompts locally or start the command service."""

import asyncio
import json
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from .config import AidConfig
from .errors import AidError
from .logger import setup_logging
from .oplog import RedisOperationLog, build_operation_log
from .orchestrator import AttachedFile, CommandOrchestrator


console = Console()


def _results_table(results) -> Table:
    table = Table(title="Actions")
    table.add_column("#", justify="right", no_wrap=True)
    table.add_column("Action", no_wrap=True)
    table.add_column("Path")
    table.add_column("Result")
    for i, entry in enumerate(results, 1):
        action = entry["action"]
        result = entry["result"]
        if result.get("ok"):
            status = "[yellow]skipped[/yellow]" if result.get("skipped") else "[green]ok[/green]"
        else:
            status = f"[red]{result.get('code')}[/red] {result.get('error') or ''}"
        target = result.get("path") or action.get("path") or ""
        if result.get("dest") or action.get("dest"):
            target = f"{target} -> {result.get('dest') or action.get('dest')}"
        table.add_row(str(i), str(action.get("action")), target, status)
    return table


@click.group()
@click.version_option(version="0.1.0")
@click.option("--log-level", default=None, help="Override LOG_LEVEL")
@click.pass_context
def cli(ctx, log_level):
    """aidgpt - natural-language file assistant backed by a local model."""
    config = AidConfig()
    if log_level:
        config.log_level = log_level
    setup_logging("aidgpt_cli", config.log_level, config.log_json)
    ctx.obj = config


@cli.command()
@click.argument("prompt", nargs=-1, required=True)
@click.option(
    "--file", "file_paths", multiple=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Attach a text file (repeatable)",
)
@click.option("--json", "as_json", is_flag=True, help="Print the final outcome as JSON")
@click.pass_obj
def run(config, prompt, file_paths, as_json):
    """Run a prompt and execute the resulting file actions."""
    text = " ".join(prompt)
    files = [
        AttachedFile(name=Path(p).name, content=Path(p).read_text(encoding="utf-8", errors="replace"))
        for p in file_paths
    ]
    orchestrator = CommandOrchestrator(config, oplog=build_operation_log(config))

    def on_delta(delta: str) -> None:
        if not as_json:
            console.print(delta, end="", markup=False, highlight=False)

    try:
        outcome = asyncio.run(orchestrator.run(text, files, on_delta=on_delta))
    except AidError as e:
        console.print(f"\n[red]Error:[/red] {e}")
        sys.exit(1)

    if as_json:
        console.print_json(json.dumps(outcome.to_dict(), ensure_ascii=False))
    else:
        console.print()
        if outcome.results:
            console.print(_results_table(outcome.results))
        elif outcome.reply:
            console.print(outcome.reply, markup=False)
    if any(not r["result"].get("ok") for r in outcome.results):
        sys.exit(2)


@cli.command()
@click.option("--host", default=None, help="Bind address (default from HOST)")
@click.option("--port", default=None, type=int, help="Port (default from SERVICE_PORT)")
@click.pass_obj
def serve(config, host, port):
    """Start the HTTP command service."""
    import uvicorn

    from .service.service import CommandService

    service = CommandService(config=config)
    host = host or service.service_config.host
    port = port or service.service_config.service_port
    console.print(f"[cyan]Serving on http://{host}:{port} (base: {config.base_dir})[/cyan]")
    uvicorn.run(service.app, host=host, port=port, log_level=config.log_level.lower())


@cli.command(name="config")
@click.pass_obj
def show_config(config):
    """Show the effective configuration."""
    table = Table(title="aidgpt configuration", show_header=False)
    table.add_column("Setting")
    table.add_column("Value")
    table.add_row("base", str(config.base_dir))
    table.add_row("full access", str(config.full_access))
    table.add_row("model", f"{config.ollama_model} @ {config.ollama_host}")
    table.add_row("max actions", str(config.max_actions))
    table.add_row("read limit (bytes)", str(config.read_max_bytes))
    table.add_row("shell enabled", str(config.allow_shell))
    table.add_row("operation log", config.oplog_key if config.oplog_enabled else "off")
    console.print(table)


@cli.command()
@click.option("--limit", default=20, help="Number of records to show")
@click.pass_obj
def history(config, limit):
    """Show recently executed actions from the operation log."""
    if not config.oplog_enabled:
        console.print("[yellow]Operation log is disabled (set OPLOG_ENABLED=true)[/yellow]")
        return
    records = RedisOperationLog(config).recent(limit)
    if not records:
        console.print("[yellow]No recorded actions[/yellow]")
        return
    table = Table(title="Recent actions")
    table.add_column("Prompt")
    table.add_column("Action", no_wrap=True)
    table.add_column("Path")
    table.add_column("OK", no_wrap=True)
    for rec in records:
        action = rec.get("action") or {}
        result = rec.get("result") or {}
        table.add_row(
            (rec.get("prompt") or "")[:60],
            str(action.get("action")),
            str(result.get("path") or action.get("path") or ""),
            "yes" if result.get("ok") else str(result.get("code")),
        )
    console.print(table)


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
