"""Unit tests for ContentRequestAdapter against a mock Azure DevOps."""

import base64
import json
from datetime import date

import pytest

from content_bridge.worker.adapter import (
    FALLBACK_AREA_PATHS,
    FALLBACK_ITERATIONS,
    classify_iteration,
    escape_wiql,
    is_common_domain_email,
)
from tests.helpers import TODAY, create_request_arguments, make_work_item

pytestmark = [pytest.mark.worker]


def assert_fallback(payload):
    assert payload["fallback"] is True
    assert payload["note"].startswith("Fallback mode")


class TestCreateContentRequest:
    async def test_creates_user_story(self, adapter, mock_ado_state):
        arguments = create_request_arguments(
            contentDeveloper="dev@microsoft.com",
            deadline="2025-03-01",
            existingContentLinks=["https://learn.microsoft.com/a"],
        )

        payload = await adapter.create_content_request(arguments)

        assert payload["success"] is True
        assert payload["fallback"] is False
        assert payload["workItemId"] == 5000
        assert payload["title"] == "[Security] Document conditional access"
        assert payload["url"] == "https://ado.test/Content/_workitems/edit/5000"

        fields = mock_ado_state.work_items[5000]["fields"]
        assert fields["Microsoft.VSTS.Common.Priority"] == 2
        assert fields["System.AssignedTo"] == "dev@microsoft.com"
        assert fields["Microsoft.VSTS.Scheduling.DueDate"] == "2025-03-01"
        assert "**Requestor:** requestor@microsoft.com" in fields["System.Description"]
        assert "**Existing Content Links:** https://learn.microsoft.com/a" in (
            fields["System.Description"]
        )

        request = mock_ado_state.requests[-1]
        assert request.headers["Content-Type"] == "application/json-patch+json"

    async def test_create_then_details_round_trip(self, adapter):
        created = await adapter.create_content_request(create_request_arguments())

        details = await adapter.get_request_details({"workItemId": created["workItemId"]})

        assert details["id"] == created["workItemId"]
        assert details["title"] == created["title"]
        assert details["status"] == "New"
        assert details["assignedTo"] == "Unassigned"
        assert details["fallback"] is False

    async def test_unreachable_simulates_success(self, adapter, mock_ado_state):
        mock_ado_state.unreachable = True

        payload = await adapter.create_content_request(create_request_arguments())

        assert payload["success"] is True
        assert payload["simulated"] is True
        assert 1000 <= payload["workItemId"] <= 10999
        assert "Cannot reach Azure DevOps" in payload["note"]
        assert_fallback(payload)


class TestUpdatesAndAssignment:
    async def test_update_status_with_comment(self, adapter, mock_ado_state):
        mock_ado_state.work_items[7] = make_work_item(7)

        payload = await adapter.update_request_status(
            {"workItemId": 7, "status": "Resolved", "comment": "Ready for review"}
        )

        assert payload["fallback"] is False
        assert payload["message"] == "Work item 7 status updated to: Resolved"
        fields = mock_ado_state.work_items[7]["fields"]
        assert fields["System.State"] == "Resolved"
        assert fields["System.History"] == "Ready for review"

    async def test_update_missing_item_falls_back(self, adapter):
        payload = await adapter.update_request_status({"workItemId": 404, "status": "Active"})

        assert payload["success"] is True
        assert payload["simulated"] is True
        assert "Resource not found" in payload["note"]
        assert_fallback(payload)

    async def test_assign_sets_active(self, adapter, mock_ado_state):
        mock_ado_state.work_items[8] = make_work_item(8)

        payload = await adapter.assign_content_developer(
            {"workItemId": 8, "assignee": "writer@microsoft.com"}
        )

        assert payload["status"] == "Active"
        assert payload["fallback"] is False
        fields = mock_ado_state.work_items[8]["fields"]
        assert fields["System.AssignedTo"] == "writer@microsoft.com"
        assert fields["System.State"] == "Active"

    async def test_assign_fallback(self, adapter, mock_ado_state):
        mock_ado_state.fail_status = 503

        payload = await adapter.assign_content_developer(
            {"workItemId": 8, "assignee": "writer@microsoft.com"}
        )

        assert_fallback(payload)


class TestUploadAttachment:
    async def test_upload_links_attachment(self, adapter, mock_ado_state):
        mock_ado_state.work_items[9] = make_work_item(9)
        content = base64.b64encode(b"release notes").decode()

        payload = await adapter.upload_attachment(
            {"workItemId": 9, "fileName": "notes.txt", "fileContent": content, "comment": "v2"}
        )

        assert payload["fallback"] is False
        assert payload["size"] == len(b"release notes")
        upload = next(r for r in mock_ado_state.requests if r.url.path == "/_apis/wit/attachments")
        assert upload.content == b"release notes"
        relation = mock_ado_state.work_items[9]["relations"][0]
        assert relation["rel"] == "AttachedFile"
        assert relation["url"] == payload["attachmentUrl"]
        assert relation["attributes"]["comment"] == "v2"

    async def test_upload_fallback(self, adapter, mock_ado_state):
        mock_ado_state.unreachable = True
        content = base64.b64encode(b"x").decode()

        payload = await adapter.upload_attachment(
            {"workItemId": 9, "fileName": "notes.txt", "fileContent": content}
        )

        assert payload["simulated"] is True
        expected_prefix = "https://ado.test/Content/_apis/wit/attachments/"
        assert payload["attachmentUrl"].startswith(expected_prefix)
        assert_fallback(payload)


class TestRequestDetails:
    async def test_maps_fields(self, adapter, mock_ado_state):
        mock_ado_state.work_items[11] = make_work_item(11, title="Docs", state="Active")

        details = await adapter.get_request_details({"workItemId": 11})

        assert details["title"] == "Docs"
        assert details["status"] == "Active"
        assert details["assignedTo"] == "Jane Doe"
        assert details["priority"] == 2
        request = mock_ado_state.requests[-1]
        assert request.url.params["$expand"] == "all"

    async def test_placeholder_when_unreachable(self, adapter, mock_ado_state):
        mock_ado_state.unreachable = True

        details = await adapter.get_request_details({"workItemId": 11})

        assert details["id"] == 11
        assert_fallback(details)


class TestTeamDashboard:
    async def test_connected(self, adapter):
        payload = await adapter.get_team_dashboard({"status": "Active"})

        assert payload["connectionStatus"] == "Connected"
        assert payload["project"]["id"] == "proj-1"
        assert payload["workItemTypes"] == ["User Story", "Bug"]
        assert payload["userStoryRequiredFields"] == ["System.Title"]
        assert payload["filters"] == {"status": "Active"}
        assert payload["fallback"] is False

    async def test_missing_project_is_an_error(self, adapter, mock_ado_state):
        mock_ado_state.projects = [{"name": "Other"}]

        with pytest.raises(LookupError, match="Project 'Content' not found"):
            await adapter.get_team_dashboard({})

    async def test_type_lookup_failures_are_tolerated(self, adapter, mock_ado_state):
        mock_ado_state.fail_paths = ["workitemtypes"]

        payload = await adapter.get_team_dashboard({})

        assert payload["connectionStatus"] == "Connected"
        assert payload["workItemTypes"] == []
        assert payload["userStoryRequiredFields"] == []

    async def test_unreachable(self, adapter, mock_ado_state):
        mock_ado_state.unreachable = True

        payload = await adapter.get_team_dashboard({})

        assert payload["connectionStatus"] == "Unavailable"
        assert payload["diagnostics"]["patTokenWorking"] is False
        assert_fallback(payload)


class TestUserWorkItems:
    """Tests for get_user_work_items: WIQL query then batched fetch."""

    async def test_batches_of_at_most_200(self, adapter, mock_ado_state):
        for work_item_id in range(1, 451):
            mock_ado_state.work_items[work_item_id] = make_work_item(work_item_id)

        payload = await adapter.get_user_work_items({"userEmail": "jane@contoso.com"})

        assert mock_ado_state.batch_sizes == [200, 200, 50]
        assert payload["totalCount"] == 450
        assert len(payload["workItems"]) == 450
        assert payload["fallback"] is False

    async def test_failing_batch_is_skipped(self, adapter, mock_ado_state):
        for work_item_id in range(1, 251):
            mock_ado_state.work_items[work_item_id] = make_work_item(work_item_id)
        mock_ado_state.fail_batches = {1}

        payload = await adapter.get_user_work_items({"userEmail": "jane@contoso.com"})

        assert payload["totalCount"] == 50
        assert payload["workItems"][0]["id"] == 201

    async def test_empty_query_result(self, adapter, mock_ado_state):
        mock_ado_state.wiql_ids = []

        payload = await adapter.get_user_work_items({"userEmail": "jane@contoso.com"})

        assert payload["totalCount"] == 0
        assert payload["workItems"] == []
        assert payload["fallback"] is False
        assert mock_ado_state.batch_sizes == []

    async def test_query_escapes_quotes_and_filters_states(self, adapter, mock_ado_state):
        mock_ado_state.wiql_ids = []

        await adapter.get_user_work_items(
            {"userEmail": "o'brien@contoso.com", "includeStates": ["New", "Done"]}
        )

        query = mock_ado_state.wiql_queries[0]
        assert "[System.AssignedTo] = 'o''brien@contoso.com'" in query
        assert "[System.State] IN ('New', 'Done')" in query

    async def test_summary_and_description_preview(self, adapter, mock_ado_state):
        item = make_work_item(1, state="New", priority=1)
        item["fields"]["System.Description"] = "x" * 300
        mock_ado_state.work_items[1] = item

        payload = await adapter.get_user_work_items({"userEmail": "jane@contoso.com"})

        summary = payload["workItems"][0]
        assert summary["description"] == "x" * 200 + "..."
        assert summary["url"] == "https://ado.test/Content/_workitems/edit/1"
        assert payload["summary"]["byState"] == {"New": 1, "Active": 0, "Resolved": 0}
        assert payload["summary"]["byPriority"]["Priority 1"] == 1

    async def test_fallback_samples(self, adapter, mock_ado_state):
        mock_ado_state.unreachable = True

        payload = await adapter.get_user_work_items({"userEmail": "jane@contoso.com"})

        assert payload["totalCount"] == 2
        assert all(item["assignedTo"] == "jane@contoso.com" for item in payload["workItems"])
        assert_fallback(payload)


class TestAreaPaths:
    async def test_filtered_by_configured_area(self, adapter):
        payload = await adapter.get_area_paths({})

        assert payload["areaPaths"] == [
            "Content\\Production\\MSec Docs\\Security",
            "Content\\Production\\MSec Docs\\Security\\Identity",
            "Content\\Production\\MSec Docs\\Security\\Compliance",
        ]
        assert payload["total"] == 3
        assert payload["filter"] == "MSec Docs\\Security"

    async def test_all_paths_when_filter_matches_nothing(self, adapter, mock_ado_state):
        mock_ado_state.area_tree = {"name": "Content", "children": [{"name": "Other"}]}

        payload = await adapter.get_area_paths({"depth": 2})

        assert payload["areaPaths"] == ["Content", "Content\\Other"]
        assert payload["filter"] is None
        assert mock_ado_state.requests[-1].url.params["$depth"] == "2"

    async def test_idempotent(self, adapter):
        first = await adapter.get_area_paths({})
        second = await adapter.get_area_paths({})

        assert first == second

    async def test_fallback(self, adapter, mock_ado_state):
        mock_ado_state.fail_status = 500

        payload = await adapter.get_area_paths({})

        assert payload["areaPaths"] == FALLBACK_AREA_PATHS
        assert_fallback(payload)


class TestIterations:
    ITERATIONS = [
        {
            "id": "i1",
            "name": "Sprint 1",
            "path": "Content\\Sprint 1",
            "attributes": {
                "startDate": "2025-01-01T00:00:00Z",
                "finishDate": "2025-01-14T00:00:00Z",
            },
        },
        {
            "id": "i2",
            "name": "Sprint 2",
            "path": "Content\\Sprint 2",
            "attributes": {
                "startDate": "2025-01-15T00:00:00Z",
                "finishDate": "2025-01-28T00:00:00Z",
            },
        },
        {"id": "i3", "name": "Backlog", "path": "Content\\Backlog", "attributes": {}},
    ]

    async def test_current_and_future_only(self, adapter, mock_ado_state):
        mock_ado_state.team_iterations = self.ITERATIONS

        payload = await adapter.get_iterations({})

        assert [(i["name"], i["state"]) for i in payload["iterations"]] == [
            ("Sprint 2", "current"),
            ("Backlog", "future"),
        ]
        assert payload["teamName"] == "Content Team"
        assert payload["fallback"] is False

    async def test_include_past(self, adapter, mock_ado_state):
        mock_ado_state.team_iterations = self.ITERATIONS

        payload = await adapter.get_iterations({"includeCurrentAndFuture": False})

        assert payload["total"] == 3
        assert payload["iterations"][0]["state"] == "past"
        assert payload["iterations"][0]["startDate"] == "2025-01-01"

    async def test_team_name_falls_back_to_content_team(self, adapter, mock_ado_state):
        mock_ado_state.teams = [
            {"name": "Platform", "id": "team-9"},
            {"name": "Content Writers", "id": "team-2"},
        ]
        mock_ado_state.team_iterations = self.ITERATIONS

        await adapter.get_iterations({"teamName": "Nobody"})

        paths = [r.url.path for r in mock_ado_state.requests]
        assert "/Content/team-2/_apis/work/teamsettings/iterations" in paths

    async def test_project_tree_without_teams(self, adapter, mock_ado_state):
        mock_ado_state.teams = []
        mock_ado_state.iteration_tree = {
            "name": "Content",
            "children": [
                {
                    "id": 10,
                    "name": "2025",
                    "children": [{"id": 11, "name": "Sprint 1", "attributes": {}}],
                }
            ],
        }

        payload = await adapter.get_iterations({})

        assert [i["path"] for i in payload["iterations"]] == ["2025", "2025\\Sprint 1"]
        assert all(i["state"] == "unknown" for i in payload["iterations"])

    async def test_fallback(self, adapter, mock_ado_state):
        mock_ado_state.unreachable = True

        payload = await adapter.get_iterations({})

        assert payload["iterations"] == FALLBACK_ITERATIONS
        assert_fallback(payload)


class TestValidateUser:
    USERS = [
        {
            "mailAddress": "jane.doe@microsoft.com",
            "displayName": "Jane Doe",
            "principalName": "jane.doe@microsoft.com",
            "originId": "abc",
        },
        {
            "mailAddress": "jane.doe2@microsoft.com",
            "displayName": "Jane Doe (Contractor)",
            "principalName": "jane.doe2@microsoft.com",
            "originId": "def",
        },
    ]

    async def test_exact_match(self, adapter, mock_ado_state):
        mock_ado_state.graph_users = self.USERS

        payload = await adapter.validate_user({"userEmail": "Jane.Doe@microsoft.com"})

        assert payload["valid"] is True
        assert payload["user"]["id"] == "abc"
        assert payload["fallback"] is False
        assert mock_ado_state.requests[-1].url.params["api-version"] == "7.0-preview.1"

    async def test_similar_users(self, adapter, mock_ado_state):
        mock_ado_state.graph_users = self.USERS

        payload = await adapter.validate_user({"userEmail": "jane.doe"})

        assert payload["valid"] is False
        assert len(payload["similarUsers"]) == 2

    async def test_not_found(self, adapter):
        payload = await adapter.validate_user({"userEmail": "nobody@microsoft.com"})

        assert payload["valid"] is False
        assert payload["similarUsers"] == []
        assert payload["message"] == "User not found in the organization"

    async def test_heuristic_fallback(self, adapter, mock_ado_state):
        mock_ado_state.unreachable = True

        known = await adapter.validate_user({"userEmail": "someone@microsoft.com"})
        unknown = await adapter.validate_user({"userEmail": "someone@example.org"})

        assert known["valid"] is True
        assert known["user"]["displayName"] == "someone"
        assert_fallback(known)
        assert unknown["valid"] is False
        assert unknown["user"] is None
        assert_fallback(unknown)


class TestRegistry:
    """The adapter's handlers behind the registry."""

    async def test_catalog_is_registered(self, registry):
        names = [tool.name for tool in registry.list_tools()]

        assert names[0] == "create_content_request"
        assert len(names) == 10

    async def test_every_read_tool_answers_when_unreachable(self, registry, mock_ado_state):
        mock_ado_state.unreachable = True
        calls = {
            "get_request_details": {"workItemId": 1},
            "get_team_dashboard": {},
            "get_user_work_items": {"userEmail": "jane@contoso.com"},
            "get_area_paths": {},
            "get_iterations": {},
            "validate_user": {"userEmail": "jane@microsoft.com"},
        }

        for name, arguments in calls.items():
            result = await registry.call_tool(name, arguments)
            assert result.is_error is False, name
            assert result.is_fallback is True, name

    async def test_missing_project_is_error_result(self, registry, mock_ado_state):
        mock_ado_state.projects = []

        result = await registry.call_tool("get_team_dashboard", {})

        assert result.is_error is True
        assert "Project 'Content' not found" in result.text

    async def test_payload_is_json_text(self, registry):
        result = await registry.call_tool("get_area_paths", {})

        assert result.content[0]["type"] == "text"
        assert json.loads(result.content[0]["text"])["total"] == 3


@pytest.mark.parametrize(
    "start,finish,state",
    [
        ("2025-01-01", "2025-01-10", "past"),
        ("2025-01-15", "2025-01-20", "current"),
        ("2025-01-21", "2025-02-01", "future"),
        (None, None, "future"),
    ],
)
def test_classify_iteration(start, finish, state):
    start = date.fromisoformat(start) if start else None
    finish = date.fromisoformat(finish) if finish else None

    assert classify_iteration(start, finish, TODAY) == state


def test_escape_wiql():
    assert escape_wiql("o'brien") == "o''brien"


@pytest.mark.parametrize(
    "email,expected",
    [
        ("a@microsoft.com", True),
        ("a@corp.microsoft.com", True),
        ("a@notmicrosoft.com", False),
        ("a@example.org", False),
        ("not an email", False),
    ],
)
def test_is_common_domain_email(email, expected):
    assert is_common_domain_email(email) is expected
