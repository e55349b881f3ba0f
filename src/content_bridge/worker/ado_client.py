"""AdoClient - thin async HTTP client for the Azure DevOps REST API.

Every failure (network error, timeout, error status, malformed body) surfaces
as RemoteUnavailableError so the adapter has a single thing to recover from.
"""

import base64
import json
import logging
from typing import Any
from urllib.parse import quote

import httpx

from ..errors import RemoteUnavailableError, map_connection_error, map_http_error

logger = logging.getLogger(__name__)

API_VERSION = "7.0"

JSON_PATCH = "application/json-patch+json"
OCTET_STREAM = "application/octet-stream"


def path_segment(value: str) -> str:
    """Percent-encode one path segment (project, team or work item type)."""
    return quote(value, safe="$")


def basic_auth_header(personal_access_token: str) -> str:
    """Basic credential for a PAT: empty user name, token as password."""
    token = base64.b64encode(f":{personal_access_token}".encode()).decode("ascii")
    return f"Basic {token}"


class AdoClient:
    """Async client for one Azure DevOps organization."""

    def __init__(
        self,
        organization_url: str,
        personal_access_token: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize AdoClient.

        Args:
            organization_url: e.g. https://dev.azure.com/my-org
            personal_access_token: PAT used for Basic authentication
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests inject MockTransport)
        """
        self.organization_url = organization_url.rstrip("/")
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=self.organization_url,
            timeout=httpx.Timeout(timeout),
            headers={
                "Authorization": basic_auth_header(personal_access_token),
                "Accept": "application/json",
            },
            transport=transport,
        )

    async def __aenter__(self) -> "AdoClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        content: bytes | None = None,
        content_type: str | None = None,
        api_version: str = API_VERSION,
    ) -> dict[str, Any]:
        """Make an HTTP request and decode the JSON response.

        Raises:
            RemoteUnavailableError: On connection, HTTP or decoding errors
        """
        query = {"api-version": api_version}
        if params:
            query.update(params)

        headers = {}
        body: bytes | None = content
        if json_body is not None:
            body = json.dumps(json_body).encode()
            headers["Content-Type"] = content_type or "application/json"
        elif content_type:
            headers["Content-Type"] = content_type

        url = f"{self.organization_url}{path}"
        logger.debug(f"{method} {path}")
        try:
            response = await self._client.request(
                method, path, params=query, content=body, headers=headers
            )
        except httpx.TimeoutException as e:
            raise map_connection_error(str(e), url, is_timeout=True) from e
        except httpx.HTTPError as e:
            raise map_connection_error(str(e), url) from e

        if response.status_code >= 400:
            raise map_http_error(response.status_code, response.text[:500])

        try:
            data = response.json()
        except ValueError as e:
            raise RemoteUnavailableError(
                message=f"Malformed JSON from {path}",
                retryable=False,
                data={"url": url, "http_status": response.status_code},
            ) from e
        if not isinstance(data, dict):
            raise RemoteUnavailableError(
                message=f"Unexpected response shape from {path}",
                retryable=False,
                data={"url": url, "http_status": response.status_code},
            )
        return data

    async def get_json(
        self, path: str, params: dict[str, Any] | None = None, api_version: str = API_VERSION
    ) -> dict[str, Any]:
        return await self._request("GET", path, params=params, api_version=api_version)

    async def post_json(
        self, path: str, body: Any, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        return await self._request("POST", path, params=params, json_body=body)

    async def post_patch(self, path: str, operations: list[dict[str, Any]]) -> dict[str, Any]:
        """POST a JSON Patch document (work item creation)."""
        return await self._request("POST", path, json_body=operations, content_type=JSON_PATCH)

    async def patch(self, path: str, operations: list[dict[str, Any]]) -> dict[str, Any]:
        """PATCH a JSON Patch document (work item update)."""
        return await self._request("PATCH", path, json_body=operations, content_type=JSON_PATCH)

    async def post_bytes(
        self, path: str, data: bytes, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        return await self._request(
            "POST", path, params=params, content=data, content_type=OCTET_STREAM
        )
