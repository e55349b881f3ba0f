"""Tool catalog advertised by the worker via tools/list."""

from ..types import ToolDescriptor
from ..workitems import URGENCY_LEVELS

CREATE_CONTENT_REQUEST = ToolDescriptor(
    name="create_content_request",
    description="Create a new content development request in Azure DevOps",
    input_schema={
        "type": "object",
        "properties": {
            "productArea": {
                "type": "string",
                "description": "Product area for the content request",
            },
            "documentType": {
                "type": "string",
                "description": "Type of documentation (user guide, API doc, release note, etc.)",
            },
            "title": {"type": "string", "description": "Title of the content request"},
            "description": {
                "type": "string",
                "description": "Detailed description of the content needed",
            },
            "businessJustification": {
                "type": "string",
                "description": "Business justification for the content request",
            },
            "deadline": {
                "type": "string",
                "description": "Deadline for completion (ISO date format)",
            },
            "urgency": {
                "type": "string",
                "enum": list(URGENCY_LEVELS),
                "description": "Urgency level of the request",
            },
            "requestorEmail": {
                "type": "string",
                "description": "Email of the person making the request",
            },
            "contentDeveloper": {
                "type": "string",
                "description": "Preferred content developer (optional)",
            },
            "reviewers": {
                "type": "array",
                "items": {"type": "string"},
                "description": "List of reviewer email addresses",
            },
            "existingContentLinks": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Links to existing related content (optional)",
            },
        },
        "required": [
            "productArea",
            "documentType",
            "title",
            "description",
            "businessJustification",
            "urgency",
            "requestorEmail",
            "reviewers",
        ],
    },
)

UPDATE_REQUEST_STATUS = ToolDescriptor(
    name="update_request_status",
    description="Update the status of a content request",
    input_schema={
        "type": "object",
        "properties": {
            "workItemId": {"type": "integer", "description": "Azure DevOps work item ID"},
            "status": {
                "type": "string",
                "description": "New status (New, Active, Resolved, Closed, etc.)",
            },
            "comment": {
                "type": "string",
                "description": "Optional comment about the status change",
            },
        },
        "required": ["workItemId", "status"],
    },
)

ASSIGN_CONTENT_DEVELOPER = ToolDescriptor(
    name="assign_content_developer",
    description="Assign a content developer to a work item",
    input_schema={
        "type": "object",
        "properties": {
            "workItemId": {"type": "integer", "description": "Azure DevOps work item ID"},
            "assignee": {"type": "string", "description": "Email address of the assignee"},
        },
        "required": ["workItemId", "assignee"],
    },
)

GET_REQUEST_DETAILS = ToolDescriptor(
    name="get_request_details",
    description="Get details of a content request",
    input_schema={
        "type": "object",
        "properties": {
            "workItemId": {"type": "integer", "description": "Azure DevOps work item ID"},
        },
        "required": ["workItemId"],
    },
)

GET_TEAM_DASHBOARD = ToolDescriptor(
    name="get_team_dashboard",
    description="Get connection diagnostics and a dashboard view of content requests",
    input_schema={
        "type": "object",
        "properties": {
            "assignee": {"type": "string", "description": "Filter by assignee email (optional)"},
            "status": {"type": "string", "description": "Filter by status (optional)"},
            "productArea": {"type": "string", "description": "Filter by product area (optional)"},
        },
        "required": [],
    },
)

GET_USER_WORK_ITEMS = ToolDescriptor(
    name="get_user_work_items",
    description="Get work items assigned to a specific user (for personalized dashboard)",
    input_schema={
        "type": "object",
        "properties": {
            "userEmail": {
                "type": "string",
                "description": "Email address (or display name) of the user",
            },
            "includeStates": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Work item states to include (default: New, Active, Resolved)",
            },
        },
        "required": ["userEmail"],
    },
)

GET_AREA_PATHS = ToolDescriptor(
    name="get_area_paths",
    description="Get area paths from Azure DevOps for the configured product area",
    input_schema={
        "type": "object",
        "properties": {
            "depth": {
                "type": "integer",
                "description": "Depth of classification nodes to retrieve (default: 5)",
            },
        },
        "required": [],
    },
)

GET_ITERATIONS = ToolDescriptor(
    name="get_iterations",
    description="Get available iterations from Azure DevOps for dropdown selection",
    input_schema={
        "type": "object",
        "properties": {
            "teamName": {
                "type": "string",
                "description": "Team name (optional, uses the configured team if not specified)",
            },
            "includeCurrentAndFuture": {
                "type": "boolean",
                "description": "Include only current and future iterations (default: true)",
            },
        },
        "required": [],
    },
)

UPLOAD_ATTACHMENT = ToolDescriptor(
    name="upload_attachment",
    description="Upload a file attachment to an Azure DevOps work item",
    input_schema={
        "type": "object",
        "properties": {
            "workItemId": {
                "type": "integer",
                "description": "Azure DevOps work item ID to attach file to",
            },
            "fileName": {"type": "string", "description": "Name of the file being uploaded"},
            "fileContent": {"type": "string", "description": "Base64 encoded file content"},
            "comment": {
                "type": "string",
                "description": "Optional comment about the attachment",
            },
        },
        "required": ["workItemId", "fileName", "fileContent"],
    },
)

VALIDATE_USER = ToolDescriptor(
    name="validate_user",
    description="Validate if a user exists in Azure DevOps for assignment",
    input_schema={
        "type": "object",
        "properties": {
            "userEmail": {
                "type": "string",
                "description": "Email address of the user to validate",
            },
        },
        "required": ["userEmail"],
    },
)

TOOL_CATALOG: tuple[ToolDescriptor, ...] = (
    CREATE_CONTENT_REQUEST,
    UPDATE_REQUEST_STATUS,
    ASSIGN_CONTENT_DEVELOPER,
    GET_REQUEST_DETAILS,
    GET_TEAM_DASHBOARD,
    GET_USER_WORK_ITEMS,
    GET_AREA_PATHS,
    GET_ITERATIONS,
    UPLOAD_ATTACHMENT,
    VALIDATE_USER,
)
