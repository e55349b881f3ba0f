"""CLI main entry point."""

import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import click

from . import __version__
from .bridge.supervisor import Supervisor
from .config import (
    CONFIG_KEYS,
    ConfigError,
    get_config_path,
    load_config,
    save_config,
    unset_config,
)
from .errors import BridgeError
from .shared.logging import configure_logging
from .shared.paths import ensure_dirs, get_log_file
from .utils import parse_arguments

T = TypeVar("T")


def print_stderr(msg: str) -> None:
    """Print message to stderr with [bridge] prefix."""
    click.echo(f"[bridge] {msg}", err=True)


def _log_level(ctx: click.Context, default: str) -> str:
    verbose = ctx.obj["verbose"]
    if verbose >= 2:
        return "debug"
    if verbose == 1:
        return "info"
    return default


def _run_with_supervisor(ctx: click.Context, fn: Callable[[Supervisor], Awaitable[T]]) -> T:
    """Connect a short-lived supervisor, run ``fn`` against it, then shut it down."""

    async def _run() -> T:
        supervisor = Supervisor(ctx.obj["config"])
        try:
            return await fn(supervisor)
        finally:
            await supervisor.shutdown()

    try:
        return asyncio.run(_run())
    except BridgeError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)


@click.group()
@click.option("-c", "--config", "config_path", type=click.Path(), help="Config file path")
@click.option("-v", "--verbose", count=True, help="Increase verbosity")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: int, json_output: bool) -> None:
    """Content request bridge CLI."""
    ctx.ensure_object(dict)
    path = Path(config_path) if config_path else None
    ctx.obj["config_path"] = path
    ctx.obj["config"] = load_config(path)
    ctx.obj["verbose"] = verbose
    ctx.obj["json_output"] = json_output


@cli.command()
@click.option("--host", type=str, help="Host to bind to (default: config host)")
@click.option("--port", type=int, help="Port to bind to (default: config port)")
@click.option("--log-file", is_flag=True, help="Write JSON logs to ~/.content-bridge/logs")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None, log_file: bool) -> None:
    """Start the HTTP API and the worker it supervises."""
    import uvicorn

    from .api import create_app

    config = ctx.obj["config"]
    host = host or config.host
    port = port or config.port
    level = _log_level(ctx, config.log_level)
    if log_file:
        ensure_dirs()
        configure_logging(level, log_file=get_log_file(), json_output=True)
    else:
        configure_logging(level)

    async def _serve() -> None:
        app = create_app(Supervisor(config))
        print_stderr(f"API starting on http://{host}:{port}")
        print_stderr(f"Worker command: {config.worker_command}")
        server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level=level))
        await server.serve()

    asyncio.run(_serve())


@cli.command()
def worker() -> None:
    """Run the tool worker on stdin/stdout."""
    from .worker.__main__ import main as worker_main

    worker_main()


@cli.command()
@click.argument("tool")
@click.option("-i", "--input", "inputs", multiple=True, help="Argument KEY=VALUE")
@click.option("--input-file", type=click.Path(exists=True), help="Arguments file (JSON/YAML)")
@click.option("-t", "--timeout", type=float, help="Timeout in seconds")
@click.pass_context
def call(
    ctx: click.Context,
    tool: str,
    inputs: tuple[str, ...],
    input_file: str | None,
    timeout: float | None,
) -> None:
    """Call one tool and print its result."""
    configure_logging(_log_level(ctx, "warning"))
    try:
        arguments = parse_arguments(inputs, input_file)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    async def _call(supervisor: Supervisor) -> Any:
        return await supervisor.call_tool(tool, arguments, timeout=timeout)

    result = _run_with_supervisor(ctx, _call)
    payload = result.payload()

    if ctx.obj["json_output"]:
        click.echo(json.dumps(result.to_dict(), indent=2))
    elif payload:
        click.echo(json.dumps(payload, indent=2))
    else:
        click.echo(result.text)

    if result.is_error:
        sys.exit(1)


@cli.command()
def version() -> None:
    """Show version information."""
    click.echo(f"content-bridge version {__version__}")


# -----------------------------------------------------------------------------
# tools
# -----------------------------------------------------------------------------


@cli.group()
def tools() -> None:
    """Inspect the worker's tools."""


@tools.command("list")
@click.pass_context
def tools_list(ctx: click.Context) -> None:
    """List the tools the worker advertises."""
    from .formatters import print_tools_table

    configure_logging(_log_level(ctx, "warning"))

    async def _list(supervisor: Supervisor) -> list[Any]:
        return await supervisor.list_tools()

    tools_result = _run_with_supervisor(ctx, _list)

    if ctx.obj["json_output"]:
        click.echo(json.dumps([t.to_dict() for t in tools_result], indent=2))
    else:
        print_tools_table(tools_result)


@tools.command("show")
@click.argument("name")
@click.pass_context
def tools_show(ctx: click.Context, name: str) -> None:
    """Show one tool's input schema."""
    from .formatters import print_tool_detail

    configure_logging(_log_level(ctx, "warning"))

    async def _list(supervisor: Supervisor) -> list[Any]:
        return await supervisor.list_tools()

    tools_result = _run_with_supervisor(ctx, _list)
    tool = next((t for t in tools_result if t.name == name), None)

    if tool is None:
        click.echo(f"Error: Tool '{name}' not found", err=True)
        similar = [t.name for t in tools_result if name.lower() in t.name.lower()]
        if similar:
            click.echo("\nDid you mean:")
            for candidate in similar:
                click.echo(f"  - {candidate}")
        sys.exit(1)

    if ctx.obj["json_output"]:
        click.echo(json.dumps(tool.to_dict(), indent=2))
    else:
        print_tool_detail(tool)


# -----------------------------------------------------------------------------
# config
# -----------------------------------------------------------------------------


@cli.group()
def config() -> None:
    """Manage configuration."""


@config.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show the effective configuration and where each value came from."""
    from .formatters import print_config_yaml

    loaded = ctx.obj["config"]
    data = loaded.to_dict()

    if ctx.obj["json_output"]:
        click.echo(
            json.dumps(
                {"config": data, "sources": {key: loaded.get_source(key) for key in data}},
                indent=2,
            )
        )
        return

    click.echo(f"# {ctx.obj['config_path'] or get_config_path()}")
    print_config_yaml(data, {key: loaded.get_source(key) for key in data})


@config.command("set")
@click.argument("key", type=click.Choice(CONFIG_KEYS))
@click.argument("value")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str) -> None:
    """Set a value in the config file."""
    try:
        save_config(key, value, ctx.obj["config_path"])
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"Set {key} = {value}")


@config.command("unset")
@click.argument("key", type=click.Choice(CONFIG_KEYS))
@click.pass_context
def config_unset(ctx: click.Context, key: str) -> None:
    """Remove a value from the config file."""
    if unset_config(key, ctx.obj["config_path"]):
        click.echo(f"Unset {key}")
    else:
        click.echo(f"{key} is not set in the config file")


def main() -> None:
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
