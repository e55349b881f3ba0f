"""CLI utility functions."""

import base64
import json
from pathlib import Path
from typing import Any

import yaml

# Tool arguments the worker only accepts as integers
INTEGER_ARGUMENTS = ("workItemId", "depth")

# Tool arguments given as comma-separated lists on the command line
LIST_ARGUMENTS = ("reviewers", "existingContentLinks", "includeStates")


def _read_arguments_file(input_file: str) -> dict[str, Any]:
    file_path = Path(input_file)
    with file_path.open() as f:
        if file_path.suffix in [".yaml", ".yml"]:
            arguments = yaml.safe_load(f) or {}
        elif file_path.suffix == ".json":
            arguments = json.load(f)
        else:
            raise ValueError(f"Unsupported input file format: {file_path.suffix}")
    if not isinstance(arguments, dict):
        raise ValueError(f"{input_file} must contain a mapping of arguments")
    return arguments


def _parse_flag_value(key: str, value: str) -> Any:
    if key == "fileContent" and value.startswith("@"):
        # fileContent=@path uploads a local file
        path = Path(value[1:])
        try:
            return base64.b64encode(path.read_bytes()).decode("ascii")
        except OSError as e:
            raise ValueError(f"Cannot read attachment {path}: {e}") from e
    if key in LIST_ARGUMENTS and not value.startswith("["):
        return [part.strip() for part in value.split(",") if part.strip()]

    # JSON values allow numbers, booleans and lists
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def _coerce_integers(arguments: dict[str, Any]) -> None:
    for key in INTEGER_ARGUMENTS:
        value = arguments.get(key)
        if not isinstance(value, str):
            continue
        try:
            arguments[key] = int(value.strip().lstrip("#"))
        except ValueError:
            raise ValueError(f"{key} must be an integer, got {value!r}") from None


def parse_arguments(
    input_flags: tuple[str, ...],
    input_file: str | None,
) -> dict[str, Any]:
    """Parse tool arguments from flags and file.

    Flags override file values. ``workItemId`` and ``depth`` are coerced to
    integers (``#123`` is accepted), list arguments such as ``reviewers`` may
    be comma-separated, and ``fileContent=@path`` base64-encodes a local file,
    defaulting ``fileName`` to its name.

    Args:
        input_flags: Tuple of KEY=VALUE strings
        input_file: Path to JSON/YAML file with arguments

    Returns:
        Dictionary of arguments

    Raises:
        ValueError: If a flag or the file cannot be parsed
    """
    arguments: dict[str, Any] = {}

    if input_file:
        arguments = _read_arguments_file(input_file)

    for input_str in input_flags:
        if "=" not in input_str:
            raise ValueError(f"Invalid input format: {input_str}. Expected KEY=VALUE")

        key, value = input_str.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError(f"Invalid input format: {input_str}. Empty KEY")

        arguments[key] = _parse_flag_value(key, value)
        if key == "fileContent" and value.startswith("@"):
            arguments.setdefault("fileName", Path(value[1:]).name)

    _coerce_integers(arguments)
    return arguments
