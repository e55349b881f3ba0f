"""HTTP facade for the browser frontend.

A thin translation layer: each endpoint turns a request into one or more
tool calls through the Supervisor, decodes the JSON payloads and maps bridge
errors to HTTP status codes. The supervisor is the only state it holds.
"""

from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import Body, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import __version__
from ..bridge.supervisor import Supervisor
from ..config import SERVER_NAME, describe_environment
from ..errors import (
    BridgeError,
    BridgeUnavailableError,
    ConnectionLostError,
    InvalidArgumentsError,
    RequestTimeoutError,
    UnknownToolError,
)
from ..shared.logging import get_logger
from ..types import FALLBACK_KEY, ConnectionState
from ..workitems import (
    ALL_STATES,
    DataQualityPolicy,
    assess_data_quality,
    bucket_counts,
    candidate_identities,
    filter_by_status,
    live_result_sets,
    merge_work_items,
    paginate,
)

logger = get_logger(__name__)

NOT_CONNECTED_MESSAGE = "MCP bridge is not connected. Please retry shortly."
SOURCE = "Azure DevOps via MCP"


class ToolFailedError(Exception):
    """A tool call completed but reported isError."""

    def __init__(self, tool_name: str, text: str):
        self.tool_name = tool_name
        self.text = text
        super().__init__(f"Tool {tool_name} failed: {text}")


class McpCallBody(BaseModel):
    server_name: str | None = None
    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class StatusBody(BaseModel):
    status: str
    comment: str | None = None


class AssignBody(BaseModel):
    assignee: str


class AttachmentBody(BaseModel):
    fileName: str
    fileContent: str
    comment: str | None = None


class ValidateUserBody(BaseModel):
    userEmail: str | None = None


def error_response(status_code: int, error: str, details: Any = None) -> JSONResponse:
    content: dict[str, Any] = {"success": False, "error": error}
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


def _drop_none(arguments: Mapping[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in arguments.items() if value is not None}


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(BridgeUnavailableError)
    @app.exception_handler(ConnectionLostError)
    async def not_connected(request: Request, exc: BridgeError) -> JSONResponse:
        logger.warning(f"{request.url.path}: bridge not connected: {exc.message}")
        return error_response(503, NOT_CONNECTED_MESSAGE, exc.message)

    @app.exception_handler(UnknownToolError)
    @app.exception_handler(InvalidArgumentsError)
    async def bad_tool_call(request: Request, exc: BridgeError) -> JSONResponse:
        return error_response(400, exc.message, exc.data or None)

    @app.exception_handler(RequestTimeoutError)
    async def timed_out(request: Request, exc: RequestTimeoutError) -> JSONResponse:
        logger.warning(f"{request.url.path}: {exc.message}")
        return error_response(500, "Request to the MCP bridge timed out", exc.message)

    @app.exception_handler(BridgeError)
    async def bridge_error(request: Request, exc: BridgeError) -> JSONResponse:
        logger.error(f"{request.url.path}: bridge error {exc.code}: {exc.message}")
        return error_response(500, "MCP bridge error", exc.message)

    @app.exception_handler(ToolFailedError)
    async def tool_failed(request: Request, exc: ToolFailedError) -> JSONResponse:
        logger.warning(f"{request.url.path}: tool {exc.tool_name} reported an error")
        return error_response(500, f"Tool {exc.tool_name} failed", exc.text)

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        problems = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        ]
        return error_response(400, "Invalid request", problems)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return error_response(exc.status_code, str(exc.detail))


def create_app(
    supervisor: Supervisor,
    manage_lifecycle: bool = True,
    environment: Mapping[str, str] | None = None,
    data_quality: DataQualityPolicy | None = None,
) -> FastAPI:
    """Build the FastAPI application around a supervisor.

    Args:
        supervisor: Supervisor used for every tool call
        manage_lifecycle: Start the supervisor on startup and shut it down on exit
        environment: Environment describing the Azure DevOps target (default: os.environ)
        data_quality: Thresholds for the dashboard's dataQuality judgement
    """
    policy = data_quality or DataQualityPolicy()
    target = describe_environment(environment)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if manage_lifecycle:
            if not await supervisor.start():
                logger.warning("Starting without a worker connection; retries are scheduled")
        try:
            yield
        finally:
            if manage_lifecycle:
                await supervisor.shutdown()

    app = FastAPI(title="Content Request Bridge", version=__version__, lifespan=lifespan)
    app.state.supervisor = supervisor
    _install_error_handlers(app)

    async def invoke(tool_name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        logger.info(f"Calling tool {tool_name}")
        result = await supervisor.call_tool(tool_name, arguments)
        if result.is_error:
            raise ToolFailedError(tool_name, result.text)
        return result.payload()

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    async def health() -> dict[str, Any]:
        state = supervisor.state
        if state == ConnectionState.CONNECTED:
            status = "healthy"
        elif state == ConnectionState.DEGRADED:
            status = "degraded"
        else:
            status = "unhealthy"
        return {
            "success": True,
            "status": status,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server": "running",
            "version": __version__,
            "bridge": supervisor.status(),
            "environment": target,
        }

    app.add_api_route("/health", health, methods=["GET"])
    app.add_api_route("/api/health", health, methods=["GET"])

    # -------------------------------------------------------------------------
    # Work items
    # -------------------------------------------------------------------------

    @app.get("/api/workitems")
    async def list_work_items(
        userEmail: str | None = None,
        page: int = 1,
        page_size: int = Query(10, alias="pageSize"),
        status: str = "all",
    ) -> dict[str, Any]:
        if not userEmail or not userEmail.strip():
            return error_response(400, "User email is required")

        identities = candidate_identities(userEmail.strip())
        results: list[tuple[list[dict[str, Any]], bool]] = []
        for index, identity in enumerate(identities):
            arguments = {"userEmail": identity, "includeStates": list(ALL_STATES)}
            try:
                payload = await invoke("get_user_work_items", arguments)
            except (BridgeError, ToolFailedError) as e:
                if index == 0:
                    raise
                logger.warning(f"Work item query for {identity!r} failed, skipping: {e}")
                continue
            results.append((payload.get("workItems") or [], bool(payload.get(FALLBACK_KEY))))

        result_sets, fallback = live_result_sets(results)
        if len(result_sets) < len(results):
            logger.info(f"Dropped fallback work items for {userEmail}: live data available")
        items = merge_work_items(result_sets)
        filtered = filter_by_status(items, status)
        current = paginate(filtered, page, page_size)
        logger.info(
            f"Work items for {userEmail}: {len(items)} merged, {len(filtered)} after "
            f"status={status}, page {current.current_page}/{current.total_pages}"
        )
        return {
            "success": True,
            "totalCount": len(filtered),
            "workItems": current.items,
            "userEmail": userEmail,
            "identities": identities,
            "source": SOURCE,
            "stats": bucket_counts(filtered),
            "pagination": current.to_dict(),
            FALLBACK_KEY: fallback,
            "dataQuality": assess_data_quality(items, policy),
        }

    @app.post("/api/workitems")
    async def create_work_item(body: dict[str, Any] = Body(...)) -> dict[str, Any]:
        payload = await invoke("create_content_request", body)
        return {"success": True, **payload, "source": SOURCE}

    @app.get("/api/workitems/{work_item_id}")
    async def get_work_item(work_item_id: int) -> dict[str, Any]:
        payload = await invoke("get_request_details", {"workItemId": work_item_id})
        return {"success": True, **payload, "source": SOURCE}

    @app.patch("/api/workitems/{work_item_id}/status")
    async def update_status(work_item_id: int, body: StatusBody) -> dict[str, Any]:
        arguments = _drop_none(
            {"workItemId": work_item_id, "status": body.status, "comment": body.comment}
        )
        payload = await invoke("update_request_status", arguments)
        return {"success": True, **payload, "source": SOURCE}

    @app.post("/api/workitems/{work_item_id}/assign")
    async def assign(work_item_id: int, body: AssignBody) -> dict[str, Any]:
        payload = await invoke(
            "assign_content_developer", {"workItemId": work_item_id, "assignee": body.assignee}
        )
        return {"success": True, **payload, "source": SOURCE}

    @app.post("/api/workitems/{work_item_id}/attachments")
    async def upload_attachment(work_item_id: int, body: AttachmentBody) -> dict[str, Any]:
        arguments = _drop_none(
            {
                "workItemId": work_item_id,
                "fileName": body.fileName,
                "fileContent": body.fileContent,
                "comment": body.comment,
            }
        )
        payload = await invoke("upload_attachment", arguments)
        return {"success": True, **payload, "source": SOURCE}

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    @app.get("/api/area-paths")
    async def area_paths(depth: int = 5) -> dict[str, Any]:
        payload = await invoke("get_area_paths", {"depth": depth})
        return {
            "success": True,
            "areaPaths": payload.get("areaPaths", []),
            "total": payload.get("total", 0),
            FALLBACK_KEY: bool(payload.get(FALLBACK_KEY)),
            "source": SOURCE,
        }

    @app.get("/api/iterations")
    async def iterations(
        teamName: str | None = None, includeCurrentAndFuture: bool = True
    ) -> dict[str, Any]:
        arguments = _drop_none(
            {"teamName": teamName, "includeCurrentAndFuture": includeCurrentAndFuture}
        )
        payload = await invoke("get_iterations", arguments)
        return {
            "success": True,
            "iterations": payload.get("iterations", []),
            "total": payload.get("total", 0),
            "teamName": payload.get("teamName"),
            FALLBACK_KEY: bool(payload.get(FALLBACK_KEY)),
            "source": SOURCE,
        }

    @app.post("/api/validate-user")
    async def validate_user(body: ValidateUserBody) -> dict[str, Any]:
        if not body.userEmail:
            return error_response(400, "User email is required")
        payload = await invoke("validate_user", {"userEmail": body.userEmail})
        return {"success": True, **payload, "source": SOURCE}

    # -------------------------------------------------------------------------
    # Generic dispatch
    # -------------------------------------------------------------------------

    @app.post("/api/mcp")
    async def mcp_call(body: McpCallBody) -> dict[str, Any]:
        if body.server_name is not None and body.server_name != SERVER_NAME:
            return error_response(400, f"Unknown server: {body.server_name}")
        payload = await invoke(body.tool_name, body.arguments)
        return {"success": True, "data": payload}

    return app
