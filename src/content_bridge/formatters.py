"""CLI output formatting helpers."""

from typing import Any

import click
import yaml
from rich.console import Console
from rich.table import Table

from .types import ToolDescriptor

console = Console()


def print_config_yaml(data: dict[str, Any], sources: dict[str, str] | None = None) -> None:
    """Print config as YAML, with the source of each value when given."""
    if not sources:
        click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False))
        return
    for key, value in data.items():
        click.echo(f"{key}: {value}  # {sources.get(key, 'default')}")


def print_tools_table(tools: list[ToolDescriptor]) -> None:
    table = Table(title=f"Tools ({len(tools)})")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Required")
    table.add_column("Description")
    for tool in tools:
        table.add_row(tool.name, ", ".join(tool.required) or "-", tool.description)
    console.print(table)


def print_tool_detail(tool: ToolDescriptor) -> None:
    """Print one tool's description and parameters."""
    click.echo(f"Tool: {tool.name}")
    if tool.description:
        click.echo(f"Description: {tool.description}")
    click.echo()

    properties = tool.input_schema.get("properties", {})
    if not properties:
        click.echo("Parameters: none")
        return

    click.echo("Parameters:")
    required = set(tool.required)
    for name, schema in properties.items():
        marker = "required" if name in required else "optional"
        kind = schema.get("type", "any")
        line = f"  - {name} ({kind}, {marker})"
        if schema.get("enum"):
            line += f" one of: {', '.join(str(v) for v in schema['enum'])}"
        if schema.get("description"):
            line += f": {schema['description']}"
        click.echo(line)
