"""ContentRequestAdapter - tool handlers backed by Azure DevOps.

Each handler returns a JSON payload carrying ``"fallback": bool``. When Azure
DevOps is unreachable or answers with an error, mutating tools report a
simulated success and read tools return a fixed set of representative
records, both flagged with ``fallback: true`` and a ``note`` that starts with
"Fallback mode" and quotes the original error.
"""

import base64
import logging
import random
import secrets
from collections.abc import Callable
from datetime import date
from typing import Any

from ..config import WorkerSettings
from ..errors import RemoteUnavailableError
from ..types import FALLBACK_KEY
from ..workitems import (
    DEFAULT_INCLUDE_STATES,
    WORK_ITEM_BATCH_LIMIT,
    chunk_ids,
    priority_summary,
    state_summary,
    urgency_to_priority,
)
from . import catalog, validation
from .ado_client import AdoClient, path_segment
from .registry import ToolRegistry

logger = logging.getLogger(__name__)

WORK_ITEM_TYPE = "User Story"
DESCRIPTION_PREVIEW_LENGTH = 200
DEFAULT_AREA_DEPTH = 5
GRAPH_API_VERSION = "7.0-preview.1"
MAX_SIMILAR_USERS = 5

COMMON_EMAIL_DOMAINS = ("microsoft.com", "outlook.com", "hotmail.com")

FALLBACK_AREA_PATHS = [
    "Content\\Production\\MSec Docs\\Security\\Authentication",
    "Content\\Production\\MSec Docs\\Security\\Authorization",
    "Content\\Production\\MSec Docs\\Security\\Data Protection",
    "Content\\Production\\MSec Docs\\Security\\Network Security",
    "Content\\Production\\MSec Docs\\Security\\Compliance",
]

FALLBACK_ITERATIONS = [
    {
        "id": "iter1",
        "name": "Sprint 1",
        "path": "Content\\Sprint 1",
        "startDate": "2025-01-01",
        "finishDate": "2025-01-15",
        "state": "future",
    },
    {
        "id": "iter2",
        "name": "Sprint 2",
        "path": "Content\\Sprint 2",
        "startDate": "2025-01-16",
        "finishDate": "2025-01-30",
        "state": "future",
    },
    {
        "id": "iter3",
        "name": "Sprint 3",
        "path": "Content\\Sprint 3",
        "startDate": "2025-01-31",
        "finishDate": "2025-02-14",
        "state": "future",
    },
]

FALLBACK_WORK_ITEMS = [
    {
        "id": 1001,
        "title": "[Security] Sample content request",
        "state": "New",
        "workItemType": WORK_ITEM_TYPE,
        "priority": 2,
        "iterationPath": "Content\\Sprint 1",
        "areaPath": FALLBACK_AREA_PATHS[0],
    },
    {
        "id": 1002,
        "title": "[Security] Sample documentation update",
        "state": "Active",
        "workItemType": WORK_ITEM_TYPE,
        "priority": 3,
        "iterationPath": "Content\\Sprint 1",
        "areaPath": FALLBACK_AREA_PATHS[1],
    },
]


def escape_wiql(value: str) -> str:
    """Escape a value for use inside a single-quoted WIQL literal."""
    return value.replace("'", "''")


def fallback_note(what: str, error: Exception) -> str:
    return f"Fallback mode - {what}. Original error: {error}"


def simulated_work_item_id() -> int:
    return random.randint(1000, 10999)


def identity_name(value: Any) -> str | None:
    """Display name of an identity field (dict in REST responses, str in some)."""
    if isinstance(value, dict):
        return value.get("displayName") or value.get("uniqueName")
    return value or None


def _iso_date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def classify_iteration(start: date | None, finish: date | None, today: date) -> str:
    """``past``, ``current`` or ``future`` relative to ``today``."""
    if finish is not None and finish < today:
        return "past"
    if start is not None and finish is not None and start <= today <= finish:
        return "current"
    return "future"


def walk_classification_tree(node: dict[str, Any], parent: str = "") -> list[tuple[str, dict]]:
    """Flatten a classification node tree into ``(path, node)`` pairs, depth first."""
    name = node.get("name", "")
    path = f"{parent}\\{name}" if parent else name
    pairs = [(path, node)]
    for child in node.get("children") or []:
        pairs.extend(walk_classification_tree(child, path))
    return pairs


def is_common_domain_email(email: str, domains: tuple[str, ...] = COMMON_EMAIL_DOMAINS) -> bool:
    """Heuristic used when the user directory cannot be queried."""
    if not validation.EMAIL_PATTERN.match(email):
        return False
    domain = email.rsplit("@", 1)[1].lower()
    return any(domain == d or domain.endswith(f".{d}") for d in domains)


class ContentRequestAdapter:
    """Tool handlers for content requests stored as Azure DevOps work items."""

    def __init__(
        self,
        client: AdoClient,
        settings: WorkerSettings,
        today: Callable[[], date] = date.today,
        common_domains: tuple[str, ...] = COMMON_EMAIL_DOMAINS,
    ):
        self.client = client
        self.settings = settings
        self.today = today
        self.common_domains = common_domains

    @property
    def project(self) -> str:
        return self.settings.project

    def _project_path(self, suffix: str) -> str:
        return f"/{path_segment(self.project)}{suffix}"

    def work_item_url(self, work_item_id: int, project: str | None = None) -> str:
        """Browser URL of a work item."""
        project = path_segment(project or self.project)
        return f"{self.settings.organization_url}/{project}/_workitems/edit/{work_item_id}"

    # -------------------------------------------------------------------------
    # Mutating tools
    # -------------------------------------------------------------------------

    async def create_content_request(self, arguments: dict[str, Any]) -> dict[str, Any]:
        title = f"[{arguments['productArea']}] {arguments['title']}"
        operations = [
            {"op": "add", "path": "/fields/System.Title", "value": title},
            {
                "op": "add",
                "path": "/fields/System.Description",
                "value": self._request_description(arguments),
            },
            {
                "op": "add",
                "path": "/fields/Microsoft.VSTS.Common.Priority",
                "value": urgency_to_priority(arguments.get("urgency")),
            },
        ]
        if arguments.get("contentDeveloper"):
            operations.append(
                {
                    "op": "add",
                    "path": "/fields/System.AssignedTo",
                    "value": arguments["contentDeveloper"],
                }
            )
        if arguments.get("deadline"):
            operations.append(
                {
                    "op": "add",
                    "path": "/fields/Microsoft.VSTS.Scheduling.DueDate",
                    "value": arguments["deadline"],
                }
            )

        try:
            work_item = await self.client.post_patch(
                self._project_path(f"/_apis/wit/workitems/${path_segment(WORK_ITEM_TYPE)}"),
                operations,
            )
        except RemoteUnavailableError as e:
            logger.warning(f"Work item creation failed, simulating: {e}")
            work_item_id = simulated_work_item_id()
            return {
                "success": True,
                "workItemId": work_item_id,
                "title": title,
                "state": "New",
                "url": self.work_item_url(work_item_id),
                "message": "Content request created successfully",
                "simulated": True,
                FALLBACK_KEY: True,
                "note": fallback_note("work item was not created in Azure DevOps", e),
            }

        fields = work_item.get("fields") or {}
        work_item_id = work_item.get("id")
        logger.info(f"Created work item {work_item_id}: {fields.get('System.Title', title)}")
        return {
            "success": True,
            "workItemId": work_item_id,
            "title": fields.get("System.Title", title),
            "state": fields.get("System.State", "New"),
            "url": self.work_item_url(work_item_id),
            "apiUrl": work_item.get("url"),
            "message": "Content request created successfully",
            FALLBACK_KEY: False,
        }

    @staticmethod
    def _request_description(arguments: dict[str, Any]) -> str:
        lines = [
            arguments["description"],
            "",
            f"**Product Area:** {arguments['productArea']}",
            f"**Document Type:** {arguments['documentType']}",
            f"**Business Justification:** {arguments['businessJustification']}",
            f"**Urgency:** {arguments['urgency']}",
            f"**Requestor:** {arguments['requestorEmail']}",
            f"**Reviewers:** {', '.join(arguments.get('reviewers') or [])}",
        ]
        if arguments.get("deadline"):
            lines.append(f"**Deadline:** {arguments['deadline']}")
        if arguments.get("existingContentLinks"):
            lines.append(
                f"**Existing Content Links:** {', '.join(arguments['existingContentLinks'])}"
            )
        return "\n".join(lines)

    async def update_request_status(self, arguments: dict[str, Any]) -> dict[str, Any]:
        work_item_id = arguments["workItemId"]
        status = arguments["status"]
        comment = arguments.get("comment")
        operations = [{"op": "add", "path": "/fields/System.State", "value": status}]
        if comment:
            operations.append({"op": "add", "path": "/fields/System.History", "value": comment})

        payload = {
            "success": True,
            "workItemId": work_item_id,
            "status": status,
            "comment": comment,
            "message": f"Work item {work_item_id} status updated to: {status}",
        }
        try:
            await self.client.patch(
                self._project_path(f"/_apis/wit/workitems/{work_item_id}"), operations
            )
        except RemoteUnavailableError as e:
            logger.warning(f"Status update for {work_item_id} failed, simulating: {e}")
            return {
                **payload,
                "simulated": True,
                FALLBACK_KEY: True,
                "note": fallback_note("status was not updated in Azure DevOps", e),
            }
        return {**payload, FALLBACK_KEY: False}

    async def assign_content_developer(self, arguments: dict[str, Any]) -> dict[str, Any]:
        work_item_id = arguments["workItemId"]
        assignee = arguments["assignee"]
        operations = [
            {"op": "add", "path": "/fields/System.AssignedTo", "value": assignee},
            {"op": "add", "path": "/fields/System.State", "value": "Active"},
        ]

        payload = {
            "success": True,
            "workItemId": work_item_id,
            "assignee": assignee,
            "status": "Active",
            "message": f"Work item {work_item_id} assigned to {assignee} and status set to Active",
        }
        try:
            await self.client.patch(
                self._project_path(f"/_apis/wit/workitems/{work_item_id}"), operations
            )
        except RemoteUnavailableError as e:
            logger.warning(f"Assignment of {work_item_id} failed, simulating: {e}")
            return {
                **payload,
                "simulated": True,
                FALLBACK_KEY: True,
                "note": fallback_note("assignment was not saved in Azure DevOps", e),
            }
        return {**payload, FALLBACK_KEY: False}

    async def upload_attachment(self, arguments: dict[str, Any]) -> dict[str, Any]:
        work_item_id = arguments["workItemId"]
        file_name = arguments["fileName"]
        comment = arguments.get("comment")
        data = base64.b64decode(arguments["fileContent"])

        payload = {
            "success": True,
            "workItemId": work_item_id,
            "fileName": file_name,
            "size": len(data),
            "comment": comment,
        }
        try:
            attachment = await self.client.post_bytes(
                "/_apis/wit/attachments", data, params={"fileName": file_name}
            )
            attachment_url = attachment.get("url")
            operations: list[dict[str, Any]] = [
                {
                    "op": "add",
                    "path": "/relations/-",
                    "value": {
                        "rel": "AttachedFile",
                        "url": attachment_url,
                        "attributes": {"comment": comment or f"Uploaded file: {file_name}"},
                    },
                }
            ]
            if comment:
                operations.append(
                    {
                        "op": "add",
                        "path": "/fields/System.History",
                        "value": f"File attached: {file_name}. {comment}",
                    }
                )
            await self.client.patch(
                self._project_path(f"/_apis/wit/workitems/{work_item_id}"), operations
            )
        except RemoteUnavailableError as e:
            logger.warning(f"Attachment upload to {work_item_id} failed, simulating: {e}")
            token = secrets.token_hex(6)
            return {
                **payload,
                "attachmentUrl": (
                    f"{self.settings.organization_url}/{path_segment(self.project)}"
                    f"/_apis/wit/attachments/{token}"
                ),
                "message": f'File "{file_name}" upload simulated for work item {work_item_id}',
                "simulated": True,
                FALLBACK_KEY: True,
                "note": fallback_note("file was not uploaded to Azure DevOps", e),
            }

        return {
            **payload,
            "attachmentUrl": attachment_url,
            "message": f'File "{file_name}" uploaded successfully to work item {work_item_id}',
            FALLBACK_KEY: False,
        }

    # -------------------------------------------------------------------------
    # Read tools
    # -------------------------------------------------------------------------

    async def get_request_details(self, arguments: dict[str, Any]) -> dict[str, Any]:
        work_item_id = arguments["workItemId"]
        try:
            work_item = await self.client.get_json(
                self._project_path(f"/_apis/wit/workitems/{work_item_id}"),
                params={"$expand": "all"},
            )
        except RemoteUnavailableError as e:
            logger.warning(f"Could not read work item {work_item_id}: {e}")
            return {
                "id": work_item_id,
                "title": "Sample content request",
                "description": "Details are unavailable while Azure DevOps cannot be reached.",
                "status": "New",
                "assignedTo": "Unassigned",
                "priority": 3,
                "url": self.work_item_url(work_item_id),
                FALLBACK_KEY: True,
                "note": fallback_note("showing a placeholder work item", e),
            }

        fields = work_item.get("fields") or {}
        return {
            "id": work_item.get("id", work_item_id),
            "title": fields.get("System.Title"),
            "description": fields.get("System.Description"),
            "status": fields.get("System.State"),
            "assignedTo": identity_name(fields.get("System.AssignedTo")) or "Unassigned",
            "createdBy": identity_name(fields.get("System.CreatedBy")),
            "createdDate": fields.get("System.CreatedDate"),
            "tags": fields.get("System.Tags"),
            "priority": fields.get("Microsoft.VSTS.Common.Priority"),
            "dueDate": fields.get("Microsoft.VSTS.Scheduling.DueDate"),
            "areaPath": fields.get("System.AreaPath"),
            "iterationPath": fields.get("System.IterationPath"),
            "url": self.work_item_url(work_item.get("id", work_item_id)),
            FALLBACK_KEY: False,
        }

    async def get_team_dashboard(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Connection diagnostics: project access, work item types, required fields.

        A reachable organization without the configured project is an error,
        not a fallback: the credential works but the configuration does not.
        """
        filters = {
            key: arguments[key]
            for key in ("assignee", "status", "productArea")
            if arguments.get(key)
        }
        try:
            projects = await self.client.get_json("/_apis/projects")
        except RemoteUnavailableError as e:
            logger.warning(f"Azure DevOps connection test failed: {e}")
            return {
                "connectionStatus": "Unavailable",
                "organization": self.settings.organization_url,
                "project": {"name": self.project},
                "filters": filters,
                "diagnostics": {
                    "patTokenWorking": False,
                    "organizationAccess": False,
                    "projectAccess": False,
                },
                FALLBACK_KEY: True,
                "note": fallback_note("Azure DevOps connection test failed", e),
            }

        available = projects.get("value") or []
        project = next((p for p in available if p.get("name") == self.project), None)
        if project is None:
            names = ", ".join(p.get("name", "?") for p in available) or "none"
            raise LookupError(f"Project '{self.project}' not found. Available projects: {names}")

        try:
            types = await self.client.get_json(self._project_path("/_apis/wit/workitemtypes"))
            work_item_types = [t.get("name") for t in types.get("value") or []]
        except RemoteUnavailableError as e:
            work_item_types = []
            logger.warning(f"Could not list work item types: {e}")

        try:
            story = await self.client.get_json(
                self._project_path(f"/_apis/wit/workitemtypes/{path_segment(WORK_ITEM_TYPE)}")
            )
            required_fields = [
                f.get("referenceName")
                for f in story.get("fields") or []
                if f.get("alwaysRequired") or f.get("required")
            ]
        except RemoteUnavailableError as e:
            required_fields = []
            logger.warning(f"Could not read {WORK_ITEM_TYPE} fields: {e}")

        return {
            "connectionStatus": "Connected",
            "organization": self.settings.organization_url,
            "project": {
                "name": project.get("name"),
                "id": project.get("id"),
                "url": project.get("url"),
                "description": project.get("description"),
            },
            "workItemTypes": work_item_types,
            "userStoryRequiredFields": required_fields,
            "filters": filters,
            "diagnostics": {
                "patTokenWorking": True,
                "organizationAccess": True,
                "projectAccess": True,
            },
            FALLBACK_KEY: False,
        }

    def _wiql_for_user(self, user: str, states: list[str]) -> str:
        states_filter = ", ".join(f"'{escape_wiql(state)}'" for state in states)
        return (
            "SELECT [System.Id], [System.Title], [System.State], [System.AssignedTo], "
            "[System.CreatedDate], [System.ChangedDate], [Microsoft.VSTS.Common.Priority], "
            "[Microsoft.VSTS.Scheduling.DueDate], [System.WorkItemType], "
            "[System.IterationPath], [System.AreaPath], [System.TeamProject] "
            "FROM WorkItems "
            f"WHERE [System.AssignedTo] = '{escape_wiql(user)}' "
            f"AND [System.State] IN ({states_filter}) "
            "ORDER BY [System.ChangedDate] DESC"
        )

    def _summarize_work_item(self, work_item: dict[str, Any]) -> dict[str, Any]:
        fields = work_item.get("fields") or {}
        description = fields.get("System.Description") or ""
        if len(description) > DESCRIPTION_PREVIEW_LENGTH:
            description = description[:DESCRIPTION_PREVIEW_LENGTH] + "..."
        project = fields.get("System.TeamProject") or self.project
        return {
            "id": work_item.get("id"),
            "title": fields.get("System.Title"),
            "state": fields.get("System.State"),
            "workItemType": fields.get("System.WorkItemType"),
            "teamProject": project,
            "assignedTo": identity_name(fields.get("System.AssignedTo")) or "Unassigned",
            "createdDate": fields.get("System.CreatedDate"),
            "changedDate": fields.get("System.ChangedDate"),
            "priority": fields.get("Microsoft.VSTS.Common.Priority"),
            "dueDate": fields.get("Microsoft.VSTS.Scheduling.DueDate"),
            "iterationPath": fields.get("System.IterationPath"),
            "areaPath": fields.get("System.AreaPath"),
            "url": self.work_item_url(work_item.get("id"), project),
            "description": description,
        }

    async def fetch_work_items(self, ids: list[int]) -> list[dict[str, Any]]:
        """Fetch work items in batches; a failing batch is logged and skipped."""
        work_items: list[dict[str, Any]] = []
        for batch in chunk_ids(ids, WORK_ITEM_BATCH_LIMIT):
            try:
                response = await self.client.get_json(
                    "/_apis/wit/workitems",
                    params={"ids": ",".join(str(i) for i in batch), "$expand": "all"},
                )
            except RemoteUnavailableError as e:
                logger.error(f"Error fetching batch of {len(batch)} work items: {e}")
                continue
            work_items.extend(response.get("value") or [])
        return work_items

    async def get_user_work_items(self, arguments: dict[str, Any]) -> dict[str, Any]:
        user = arguments["userEmail"]
        states = arguments.get("includeStates") or list(DEFAULT_INCLUDE_STATES)

        try:
            result = await self.client.post_json(
                "/_apis/wit/wiql", {"query": self._wiql_for_user(user, states)}
            )
        except RemoteUnavailableError as e:
            logger.warning(f"Work item query for {user} failed: {e}")
            items = [dict(item, assignedTo=user) for item in FALLBACK_WORK_ITEMS]
            return {
                "userEmail": user,
                "totalCount": len(items),
                "queriedStates": states,
                "workItems": items,
                "summary": {
                    "byState": state_summary(items, states),
                    "byPriority": priority_summary(items),
                },
                FALLBACK_KEY: True,
                "note": fallback_note("showing sample work items", e),
            }

        ids = [ref["id"] for ref in result.get("workItems") or [] if "id" in ref]
        if not ids:
            return {
                "userEmail": user,
                "totalCount": 0,
                "queriedStates": states,
                "workItems": [],
                "message": "No work items found assigned to this user with the specified states",
                FALLBACK_KEY: False,
            }

        items = [self._summarize_work_item(wi) for wi in await self.fetch_work_items(ids)]
        logger.info(f"Fetched {len(items)} of {len(ids)} work items for {user}")
        return {
            "userEmail": user,
            "totalCount": len(items),
            "queriedStates": states,
            "workItems": items,
            "summary": {
                "byState": state_summary(items, states),
                "byPriority": priority_summary(items),
            },
            FALLBACK_KEY: False,
        }

    async def get_area_paths(self, arguments: dict[str, Any]) -> dict[str, Any]:
        depth = arguments.get("depth") or DEFAULT_AREA_DEPTH
        try:
            root = await self.client.get_json(
                self._project_path("/_apis/wit/classificationnodes/areas"),
                params={"$depth": depth},
            )
        except RemoteUnavailableError as e:
            logger.warning(f"Could not read area paths: {e}")
            return {
                "areaPaths": list(FALLBACK_AREA_PATHS),
                "total": len(FALLBACK_AREA_PATHS),
                FALLBACK_KEY: True,
                "note": fallback_note("using sample area paths", e),
            }

        all_paths = [path for path, _ in walk_classification_tree(root)] if root else []
        area_filter = self.settings.area_path_filter
        matching = [path for path in all_paths if area_filter and area_filter in path]
        area_paths = matching or all_paths
        return {
            "areaPaths": area_paths,
            "total": len(area_paths),
            "filter": area_filter if matching else None,
            "note": (
                "Area paths retrieved successfully"
                if area_paths
                else "No area paths found. Check the Azure DevOps configuration."
            ),
            FALLBACK_KEY: False,
        }

    async def _find_team_id(self, team_name: str) -> str | None:
        try:
            response = await self.client.get_json(self._project_path("/_apis/teams"))
        except RemoteUnavailableError as e:
            logger.warning(f"Could not list teams, using project iterations: {e}")
            return None

        teams = response.get("value") or []
        for matches in (
            lambda t: t.get("name") == team_name,
            lambda t: "Content" in t.get("name", "") or "Default" in t.get("name", ""),
        ):
            team = next((t for t in teams if matches(t)), None)
            if team is not None:
                return team.get("id")
        return teams[0].get("id") if teams else None

    async def get_iterations(self, arguments: dict[str, Any]) -> dict[str, Any]:
        team_name = arguments.get("teamName") or self.settings.team_name
        current_and_future = arguments.get("includeCurrentAndFuture")
        if current_and_future is None:
            current_and_future = True

        try:
            team_id = await self._find_team_id(team_name)
            if team_id:
                response = await self.client.get_json(
                    f"/{path_segment(self.project)}/{path_segment(team_id)}"
                    "/_apis/work/teamsettings/iterations"
                )
                iterations = self._team_iterations(response, current_and_future)
            else:
                root = await self.client.get_json(
                    self._project_path("/_apis/wit/classificationnodes/iterations"),
                    params={"$depth": 2},
                )
                iterations = self._tree_iterations(root)
        except RemoteUnavailableError as e:
            logger.warning(f"Could not read iterations: {e}")
            return {
                "iterations": [dict(i) for i in FALLBACK_ITERATIONS],
                "total": len(FALLBACK_ITERATIONS),
                "teamName": team_name,
                "includeCurrentAndFuture": current_and_future,
                FALLBACK_KEY: True,
                "note": fallback_note("using sample iterations", e),
            }

        return {
            "iterations": iterations,
            "total": len(iterations),
            "teamName": team_name,
            "includeCurrentAndFuture": current_and_future,
            "note": (
                "Iterations retrieved successfully"
                if iterations
                else "No iterations found. Check team configuration."
            ),
            FALLBACK_KEY: False,
        }

    def _team_iterations(
        self, response: dict[str, Any], current_and_future: bool
    ) -> list[dict[str, Any]]:
        today = self.today()
        iterations = []
        for iteration in response.get("value") or []:
            attributes = iteration.get("attributes") or {}
            start = _iso_date(attributes.get("startDate"))
            finish = _iso_date(attributes.get("finishDate"))
            state = classify_iteration(start, finish, today)
            if current_and_future and state == "past":
                continue
            iterations.append(
                {
                    "id": iteration.get("id"),
                    "name": iteration.get("name"),
                    "path": iteration.get("path"),
                    "startDate": start.isoformat() if start else None,
                    "finishDate": finish.isoformat() if finish else None,
                    "state": state,
                }
            )
        return iterations

    @staticmethod
    def _tree_iterations(root: dict[str, Any]) -> list[dict[str, Any]]:
        iterations = []
        for child in root.get("children") or []:
            for path, node in walk_classification_tree(child):
                attributes = node.get("attributes") or {}
                iterations.append(
                    {
                        "id": node.get("id"),
                        "name": node.get("name"),
                        "path": path,
                        "startDate": attributes.get("startDate"),
                        "finishDate": attributes.get("finishDate"),
                        "state": "unknown",
                    }
                )
        return iterations

    async def validate_user(self, arguments: dict[str, Any]) -> dict[str, Any]:
        email = arguments["userEmail"].strip()
        quoted = escape_wiql(email)
        try:
            response = await self.client.get_json(
                "/_apis/graph/users",
                params={
                    "$filter": (
                        f"startswith(mailAddress,'{quoted}') or "
                        f"startswith(principalName,'{quoted}')"
                    )
                },
                api_version=GRAPH_API_VERSION,
            )
        except RemoteUnavailableError as e:
            logger.warning(f"User lookup for {email} failed, using heuristic: {e}")
            valid = is_common_domain_email(email, self.common_domains)
            return {
                "valid": valid,
                "user": (
                    {
                        "email": email,
                        "displayName": email.split("@", 1)[0],
                        "principalName": email,
                        "id": "unknown",
                    }
                    if valid
                    else None
                ),
                "similarUsers": [],
                "message": (
                    "Email address looks valid"
                    if valid
                    else "Email address is not in a recognised domain"
                ),
                FALLBACK_KEY: True,
                "note": fallback_note("user directory unavailable, validated heuristically", e),
            }

        users = response.get("value") or []
        lowered = email.lower()
        exact = next(
            (
                u
                for u in users
                if (u.get("mailAddress") or "").lower() == lowered
                or (u.get("principalName") or "").lower() == lowered
            ),
            None,
        )
        if exact is not None:
            return {
                "valid": True,
                "user": {
                    "email": exact.get("mailAddress"),
                    "displayName": exact.get("displayName"),
                    "principalName": exact.get("principalName"),
                    "id": exact.get("originId"),
                },
                "similarUsers": [],
                "message": "User found and valid for assignment",
                FALLBACK_KEY: False,
            }

        similar = [
            {
                "email": u.get("mailAddress"),
                "displayName": u.get("displayName"),
                "principalName": u.get("principalName"),
            }
            for u in users
            if lowered in (u.get("mailAddress") or "").lower()
            or lowered in (u.get("displayName") or "").lower()
        ][:MAX_SIMILAR_USERS]
        return {
            "valid": False,
            "user": None,
            "similarUsers": similar,
            "message": (
                "User not found exactly, but similar users exist"
                if similar
                else "User not found in the organization"
            ),
            FALLBACK_KEY: False,
        }


def build_registry(adapter: ContentRequestAdapter) -> ToolRegistry:
    """Register every catalog tool with its handler and validator."""
    handlers = {
        catalog.CREATE_CONTENT_REQUEST.name: adapter.create_content_request,
        catalog.UPDATE_REQUEST_STATUS.name: adapter.update_request_status,
        catalog.ASSIGN_CONTENT_DEVELOPER.name: adapter.assign_content_developer,
        catalog.GET_REQUEST_DETAILS.name: adapter.get_request_details,
        catalog.GET_TEAM_DASHBOARD.name: adapter.get_team_dashboard,
        catalog.GET_USER_WORK_ITEMS.name: adapter.get_user_work_items,
        catalog.GET_AREA_PATHS.name: adapter.get_area_paths,
        catalog.GET_ITERATIONS.name: adapter.get_iterations,
        catalog.UPLOAD_ATTACHMENT.name: adapter.upload_attachment,
        catalog.VALIDATE_USER.name: adapter.validate_user,
    }
    registry = ToolRegistry()
    for descriptor in catalog.TOOL_CATALOG:
        registry.register(
            descriptor, handlers[descriptor.name], validation.VALIDATORS[descriptor.name]
        )
    return registry
