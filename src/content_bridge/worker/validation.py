"""Argument validation for worker tools.

Two layers run before a handler: ``check_schema`` enforces the advertised
input schema (required fields, primitive types, enums), then the tool's own
predicate from ``VALIDATORS`` checks what the schema cannot express. Both
return a list of problems; an empty list means the arguments are acceptable.
"""

import base64
import binascii
import re
from collections.abc import Callable
from typing import Any

from ..config import MAX_ATTACHMENT_BYTES
from ..types import ToolDescriptor
from ..workitems import URGENCY_LEVELS

Validator = Callable[[dict[str, Any]], list[str]]

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list,),
    "object": (dict,),
}


def _is_type(value: Any, json_type: str) -> bool:
    expected = _JSON_TYPES.get(json_type)
    if expected is None:
        return True
    # bool is an int subclass but never a JSON integer
    if json_type in ("integer", "number") and isinstance(value, bool):
        return False
    return isinstance(value, expected)


def check_schema(descriptor: ToolDescriptor, arguments: dict[str, Any]) -> list[str]:
    """Check arguments against the descriptor's input schema."""
    problems: list[str] = []
    properties = descriptor.input_schema.get("properties", {})

    for name in descriptor.required:
        if arguments.get(name) is None:
            problems.append(f"{name} is required")

    for name, value in arguments.items():
        schema = properties.get(name)
        if schema is None or value is None:
            continue
        json_type = schema.get("type")
        if json_type and not _is_type(value, json_type):
            problems.append(f"{name} must be of type {json_type}")
            continue
        if "enum" in schema and value not in schema["enum"]:
            problems.append(f"{name} must be one of {', '.join(map(str, schema['enum']))}")
        item_type = schema.get("items", {}).get("type")
        if json_type == "array" and item_type:
            if not all(_is_type(item, item_type) for item in value):
                problems.append(f"{name} must be a list of {item_type} values")

    return problems


# -----------------------------------------------------------------------------
# Field predicates
# -----------------------------------------------------------------------------


def _non_empty_string(arguments: dict[str, Any], name: str) -> list[str]:
    value = arguments.get(name)
    if value is None:
        return []
    if not isinstance(value, str) or not value.strip():
        return [f"{name} must be a non-empty string"]
    return []


def _work_item_id(arguments: dict[str, Any]) -> list[str]:
    value = arguments.get("workItemId")
    if isinstance(value, bool) or not isinstance(value, int):
        return ["workItemId must be an integer"]
    if value <= 0:
        return ["workItemId must be a positive integer"]
    return []


def _email(arguments: dict[str, Any], name: str) -> list[str]:
    value = arguments.get(name)
    if not isinstance(value, str) or not EMAIL_PATTERN.match(value.strip()):
        return [f"{name} must be an email address"]
    return []


def _string_list(arguments: dict[str, Any], name: str) -> list[str]:
    value = arguments.get(name)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        return [f"{name} must be a list of strings"]
    return []


def is_base64(value: str) -> bool:
    try:
        base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return False
    return True


def decoded_size(value: str) -> int:
    """Byte length of a valid base64 string once decoded."""
    return len(value) // 4 * 3 - value[-2:].count("=")


# -----------------------------------------------------------------------------
# Per-tool predicates
# -----------------------------------------------------------------------------


def validate_create_content_request(arguments: dict[str, Any]) -> list[str]:
    problems: list[str] = []
    for name in (
        "productArea",
        "documentType",
        "title",
        "description",
        "businessJustification",
    ):
        problems.extend(_non_empty_string(arguments, name))
    if arguments.get("urgency") not in URGENCY_LEVELS:
        problems.append(f"urgency must be one of {', '.join(URGENCY_LEVELS)}")
    problems.extend(_email(arguments, "requestorEmail"))
    reviewers = arguments.get("reviewers")
    if not isinstance(reviewers, list) or not all(isinstance(r, str) for r in reviewers):
        problems.append("reviewers must be a list of strings")
    problems.extend(_string_list(arguments, "existingContentLinks"))
    return problems


def validate_update_request_status(arguments: dict[str, Any]) -> list[str]:
    return _work_item_id(arguments) + _non_empty_string(arguments, "status")


def validate_assign_content_developer(arguments: dict[str, Any]) -> list[str]:
    return _work_item_id(arguments) + _non_empty_string(arguments, "assignee")


def validate_get_request_details(arguments: dict[str, Any]) -> list[str]:
    return _work_item_id(arguments)


def validate_get_user_work_items(arguments: dict[str, Any]) -> list[str]:
    return _non_empty_string(arguments, "userEmail") + _string_list(arguments, "includeStates")


def validate_get_area_paths(arguments: dict[str, Any]) -> list[str]:
    depth = arguments.get("depth")
    if depth is None:
        return []
    if isinstance(depth, bool) or not isinstance(depth, int) or depth < 1:
        return ["depth must be a positive integer"]
    return []


def validate_get_iterations(arguments: dict[str, Any]) -> list[str]:
    problems = _non_empty_string(arguments, "teamName")
    flag = arguments.get("includeCurrentAndFuture")
    if flag is not None and not isinstance(flag, bool):
        problems.append("includeCurrentAndFuture must be a boolean")
    return problems


def validate_upload_attachment(arguments: dict[str, Any]) -> list[str]:
    problems = _work_item_id(arguments) + _non_empty_string(arguments, "fileName")
    content = arguments.get("fileContent")
    if not isinstance(content, str) or not content:
        problems.append("fileContent must be a non-empty base64 string")
    elif not is_base64(content):
        problems.append("fileContent must be valid base64")
    elif decoded_size(content) > MAX_ATTACHMENT_BYTES:
        problems.append(f"fileContent must not exceed {MAX_ATTACHMENT_BYTES} bytes")
    return problems


def validate_validate_user(arguments: dict[str, Any]) -> list[str]:
    return _non_empty_string(arguments, "userEmail")


def validate_get_team_dashboard(arguments: dict[str, Any]) -> list[str]:
    problems: list[str] = []
    for name in ("assignee", "status", "productArea"):
        problems.extend(_non_empty_string(arguments, name))
    return problems


VALIDATORS: dict[str, Validator] = {
    "create_content_request": validate_create_content_request,
    "update_request_status": validate_update_request_status,
    "assign_content_developer": validate_assign_content_developer,
    "get_request_details": validate_get_request_details,
    "get_team_dashboard": validate_get_team_dashboard,
    "get_user_work_items": validate_get_user_work_items,
    "get_area_paths": validate_get_area_paths,
    "get_iterations": validate_get_iterations,
    "upload_attachment": validate_upload_attachment,
    "validate_user": validate_validate_user,
}
