"""Test helpers shared by unit and integration tests.

This module provides:
- MockAdo: Simulates the Azure DevOps REST API behind an httpx MockTransport
- FakeWorkerFactory: In-memory worker processes and transports for Supervisor tests
- FAKE_WORKER_SCRIPT: Path of the scripted stdio worker used by integration tests
"""

import asyncio
import json
import re
import shlex
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any

import httpx

from content_bridge.bridge.supervisor import Supervisor
from content_bridge.config import BridgeConfig
from content_bridge.types import ConnectionState, ToolCallResult, ToolDescriptor

ADO_URL = "https://ado.test"
PROJECT = "Content"
TODAY = date(2025, 1, 20)

FAKE_WORKER_SCRIPT = Path(__file__).parent / "fixtures" / "fake_worker" / "server.py"


# =============================================================================
# Mock Azure DevOps
# =============================================================================


def make_work_item(
    work_item_id: int,
    title: str = "Sample",
    state: str = "New",
    assigned_to: str | None = "Jane Doe",
    priority: int = 2,
) -> dict[str, Any]:
    """Build a work item as the REST API returns it."""
    fields: dict[str, Any] = {
        "System.Title": title,
        "System.State": state,
        "System.WorkItemType": "User Story",
        "System.TeamProject": PROJECT,
        "System.Description": f"Description of {title}",
        "Microsoft.VSTS.Common.Priority": priority,
        "System.AreaPath": "Content\\Production\\MSec Docs\\Security",
        "System.IterationPath": "Content\\Sprint 1",
        "System.CreatedDate": "2025-01-10T09:00:00Z",
        "System.ChangedDate": "2025-01-12T09:00:00Z",
    }
    if assigned_to:
        fields["System.AssignedTo"] = {"displayName": assigned_to, "uniqueName": "jane@x.com"}
    return {
        "id": work_item_id,
        "fields": fields,
        "url": f"{ADO_URL}/_apis/wit/workItems/{work_item_id}",
    }


def _default_area_tree() -> dict[str, Any]:
    return {
        "name": "Content",
        "children": [
            {
                "name": "Production",
                "children": [
                    {
                        "name": "MSec Docs",
                        "children": [
                            {
                                "name": "Security",
                                "children": [{"name": "Identity"}, {"name": "Compliance"}],
                            }
                        ],
                    },
                    {"name": "Azure Docs"},
                ],
            }
        ],
    }


@dataclass
class MockAdoState:
    """State for MockAdo to track requests and configure responses."""

    # Request tracking
    requests: list[httpx.Request] = field(default_factory=list)
    wiql_queries: list[str] = field(default_factory=list)
    batch_sizes: list[int] = field(default_factory=list)

    # Data
    projects: list[dict[str, Any]] = field(
        default_factory=lambda: [
            {"name": PROJECT, "id": "proj-1", "url": f"{ADO_URL}/_apis/projects/proj-1"},
            {"name": "Other", "id": "proj-2"},
        ]
    )
    work_items: dict[int, dict[str, Any]] = field(default_factory=dict)
    wiql_ids: list[int] | None = None  # None: every stored work item
    area_tree: dict[str, Any] = field(default_factory=_default_area_tree)
    teams: list[dict[str, Any]] = field(
        default_factory=lambda: [{"name": "Content Team", "id": "team-1"}]
    )
    team_iterations: list[dict[str, Any]] = field(default_factory=list)
    iteration_tree: dict[str, Any] = field(default_factory=lambda: {"name": PROJECT})
    graph_users: list[dict[str, Any]] = field(default_factory=list)
    next_id: int = 5000

    # Behavior flags
    unreachable: bool = False  # raise a connection error for every request
    fail_status: int | None = None  # answer every request with this status
    fail_paths: list[str] = field(default_factory=list)  # substrings answered with 500
    fail_batches: set[int] = field(default_factory=set)  # 1-based batch numbers answered with 500


class MockAdo:
    """Routes Azure DevOps REST requests to in-memory state."""

    def __init__(self, state: MockAdoState | None = None):
        self.state = state or MockAdoState()

    def handle(self, request: httpx.Request) -> httpx.Response:
        state = self.state
        state.requests.append(request)
        path = request.url.path

        if state.unreachable:
            raise httpx.ConnectError("Connection refused", request=request)
        if state.fail_status is not None:
            return httpx.Response(state.fail_status, text="Service unavailable")
        if any(fragment in path for fragment in state.fail_paths):
            return httpx.Response(500, text="Internal error")

        try:
            return self._route(request, path)
        except KeyError:
            return httpx.Response(404, json={"message": f"Not found: {path}"})

    def _route(self, request: httpx.Request, path: str) -> httpx.Response:
        state = self.state
        method = request.method
        project = f"/{PROJECT}"

        if method == "GET" and path == "/_apis/projects":
            return httpx.Response(200, json={"value": state.projects})

        if method == "GET" and path == f"{project}/_apis/wit/workitemtypes":
            return httpx.Response(200, json={"value": [{"name": "User Story"}, {"name": "Bug"}]})

        if method == "GET" and path == f"{project}/_apis/wit/workitemtypes/User Story":
            return httpx.Response(
                200,
                json={
                    "fields": [
                        {"referenceName": "System.Title", "alwaysRequired": True},
                        {"referenceName": "System.Description", "alwaysRequired": False},
                    ]
                },
            )

        if method == "POST" and path == f"{project}/_apis/wit/workitems/$User Story":
            return self._create(request)

        match = re.fullmatch(rf"{project}/_apis/wit/workitems/(\d+)", path)
        if match:
            work_item = state.work_items[int(match.group(1))]
            if method == "PATCH":
                self._apply(work_item, json.loads(request.content))
            return httpx.Response(200, json=work_item)

        if method == "POST" and path == "/_apis/wit/wiql":
            state.wiql_queries.append(json.loads(request.content)["query"])
            ids = state.wiql_ids if state.wiql_ids is not None else list(state.work_items)
            return httpx.Response(200, json={"workItems": [{"id": i} for i in ids]})

        if method == "GET" and path == "/_apis/wit/workitems":
            ids = [int(i) for i in request.url.params["ids"].split(",")]
            state.batch_sizes.append(len(ids))
            if len(state.batch_sizes) in state.fail_batches:
                return httpx.Response(500, text="Batch failed")
            return httpx.Response(
                200, json={"value": [state.work_items[i] for i in ids if i in state.work_items]}
            )

        if method == "GET" and path == f"{project}/_apis/wit/classificationnodes/areas":
            return httpx.Response(200, json=state.area_tree)

        if method == "GET" and path == f"{project}/_apis/teams":
            return httpx.Response(200, json={"value": state.teams})

        if method == "GET" and path.endswith("/_apis/work/teamsettings/iterations"):
            return httpx.Response(200, json={"value": state.team_iterations})

        if method == "GET" and path == f"{project}/_apis/wit/classificationnodes/iterations":
            return httpx.Response(200, json=state.iteration_tree)

        if method == "GET" and path == "/_apis/graph/users":
            return httpx.Response(200, json={"value": state.graph_users})

        if method == "POST" and path == "/_apis/wit/attachments":
            file_name = request.url.params["fileName"]
            return httpx.Response(
                201,
                json={"id": "att-1", "url": f"{ADO_URL}/_apis/wit/attachments/att-1?n={file_name}"},
            )

        raise KeyError(path)

    def _create(self, request: httpx.Request) -> httpx.Response:
        state = self.state
        work_item_id = state.next_id
        state.next_id += 1
        work_item: dict[str, Any] = {
            "id": work_item_id,
            "fields": {"System.State": "New", "System.TeamProject": PROJECT},
            "relations": [],
            "url": f"{ADO_URL}/_apis/wit/workItems/{work_item_id}",
        }
        self._apply(work_item, json.loads(request.content))
        state.work_items[work_item_id] = work_item
        return httpx.Response(200, json=work_item)

    @staticmethod
    def _apply(work_item: dict[str, Any], operations: list[dict[str, Any]]) -> None:
        for operation in operations:
            target = operation["path"]
            if target.startswith("/fields/"):
                work_item["fields"][target[len("/fields/") :]] = operation["value"]
            elif target == "/relations/-":
                work_item.setdefault("relations", []).append(operation["value"])


def create_request_arguments(**overrides: Any) -> dict[str, Any]:
    """Valid create_content_request arguments."""
    arguments: dict[str, Any] = {
        "productArea": "Security",
        "documentType": "How-to guide",
        "title": "Document conditional access",
        "description": "Explain conditional access policies.",
        "businessJustification": "Top support driver",
        "urgency": "High",
        "requestorEmail": "requestor@microsoft.com",
        "reviewers": ["reviewer@microsoft.com"],
    }
    arguments.update(overrides)
    return arguments


# =============================================================================
# Fake worker for Supervisor unit tests
# =============================================================================


SMOKE_OK = ToolCallResult.from_payload({"connectionStatus": "Connected", "fallback": False})
SMOKE_FALLBACK = ToolCallResult.from_payload(
    {"connectionStatus": "Unavailable", "fallback": True, "note": "Fallback mode - test"}
)


@dataclass
class FakeWorkerBehaviour:
    """How fake workers answer; may be changed mid-test."""

    tools: list[ToolDescriptor] = field(
        default_factory=lambda: [
            ToolDescriptor("get_team_dashboard", "Dashboard", {"type": "object"}),
            ToolDescriptor("echo", "Echo", {"type": "object"}),
        ]
    )
    # Tool name -> result, exception, or callable(arguments) returning a result
    results: dict[str, Any] = field(default_factory=lambda: {"get_team_dashboard": SMOKE_OK})
    spawn_failures: int = 0
    spawn_delay: float = 0.0
    fail_initialize: Exception | None = None
    call_delay: float = 0.0


class FakeProcess:
    """Stands in for WorkerProcess."""

    _next_pid = 40000

    def __init__(self) -> None:
        FakeProcess._next_pid += 1
        self.pid = FakeProcess._next_pid
        self.returncode: int | None = None
        self.terminated = False
        self._exited = asyncio.Event()

    async def wait(self) -> int:
        await self._exited.wait()
        assert self.returncode is not None
        return self.returncode

    def exit(self, code: int = 1) -> None:
        """Simulate the worker exiting on its own."""
        if self.returncode is None:
            self.returncode = code
            self._exited.set()

    async def terminate(self, grace: float = 5.0) -> int | None:
        self.terminated = True
        self.exit(-15)
        return self.returncode


class FakeTransport:
    """Stands in for StdioTransport."""

    def __init__(
        self,
        process: FakeProcess,
        on_close: Callable[[str], None],
        behaviour: FakeWorkerBehaviour,
    ):
        self.process = process
        self.on_close = on_close
        self.behaviour = behaviour
        self.started = False
        self.closed = False
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.timeouts: list[float | None] = []

    def start(self) -> None:
        self.started = True

    async def initialize(self, timeout: float | None = None) -> dict[str, Any]:
        if self.behaviour.fail_initialize is not None:
            raise self.behaviour.fail_initialize
        return {"serverInfo": {"name": "fake-worker", "version": "0.0.1"}}

    async def list_tools(self, timeout: float | None = None) -> list[ToolDescriptor]:
        return list(self.behaviour.tools)

    async def call_tool(
        self, name: str, arguments: dict[str, Any] | None = None, timeout: float | None = None
    ) -> ToolCallResult:
        self.calls.append((name, arguments or {}))
        self.timeouts.append(timeout)
        if self.behaviour.call_delay:
            await asyncio.sleep(self.behaviour.call_delay)
        result = self.behaviour.results.get(name)
        if isinstance(result, Exception):
            raise result
        if callable(result):
            return result(arguments or {})
        if result is None:
            return ToolCallResult.from_payload({"tool": name, "arguments": arguments or {}})
        return result

    async def close(self, reason: str = "transport closed") -> None:
        self.closed = True


class FakeWorkerFactory:
    """Spawn function and transport factory handed to Supervisor."""

    def __init__(self, behaviour: FakeWorkerBehaviour | None = None):
        self.behaviour = behaviour or FakeWorkerBehaviour()
        self.spawn_attempts = 0
        self.processes: list[FakeProcess] = []
        self.transports: list[FakeTransport] = []

    async def spawn(self) -> FakeProcess:
        self.spawn_attempts += 1
        if self.behaviour.spawn_delay:
            await asyncio.sleep(self.behaviour.spawn_delay)
        if self.behaviour.spawn_failures > 0:
            self.behaviour.spawn_failures -= 1
            raise OSError("No such file or directory: 'worker'")
        process = FakeProcess()
        self.processes.append(process)
        return process

    def transport_factory(
        self, process: FakeProcess, on_close: Callable[[str], None]
    ) -> FakeTransport:
        transport = FakeTransport(process, on_close, self.behaviour)
        self.transports.append(transport)
        return transport


def fast_config(**overrides: Any) -> BridgeConfig:
    """BridgeConfig with timings suitable for tests."""
    values: dict[str, Any] = {
        "call_timeout": 2.0,
        "handshake_timeout": 2.0,
        "retry_base_delay": 0.01,
        "max_retry_delay": 0.05,
        "max_retry_attempts": 5,
        "health_check_interval": 3600.0,
    }
    values.update(overrides)
    return BridgeConfig(**values)


async def wait_for_state(
    supervisor: Supervisor, state: ConnectionState, timeout: float = 2.0
) -> None:
    """Poll until the supervisor reaches ``state``."""
    deadline = asyncio.get_running_loop().time() + timeout
    while supervisor.state != state:
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError(
                f"Supervisor stayed {supervisor.state.value}, wanted {state.value}"
            )
        await asyncio.sleep(0.005)


# =============================================================================
# Scripted subprocess worker
# =============================================================================


def fake_worker_command(mode: str = "ok") -> str:
    """worker_command running the scripted fake worker in ``mode``."""
    return (
        f"{shlex.quote(sys.executable)} {shlex.quote(str(FAKE_WORKER_SCRIPT))} --mode {mode}"
    )
