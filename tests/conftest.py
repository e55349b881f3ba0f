"""Shared test fixtures for content-request-bridge tests."""

from collections.abc import AsyncGenerator
from typing import Any

import httpx
import pytest

from content_bridge.bridge.supervisor import Supervisor
from content_bridge.config import WorkerSettings
from content_bridge.worker.adapter import ContentRequestAdapter, build_registry
from content_bridge.worker.ado_client import AdoClient
from content_bridge.worker.registry import ToolRegistry

from tests.helpers import (
    ADO_URL,
    PROJECT,
    TODAY,
    FakeWorkerFactory,
    MockAdo,
    MockAdoState,
    fast_config,
)

# =============================================================================
# Azure DevOps
# =============================================================================


@pytest.fixture
def mock_ado_state() -> MockAdoState:
    """Fixture providing MockAdo state for configuration."""
    return MockAdoState()


@pytest.fixture
def mock_ado(mock_ado_state: MockAdoState) -> MockAdo:
    """Fixture providing a MockAdo instance."""
    return MockAdo(mock_ado_state)


@pytest.fixture
def worker_settings() -> WorkerSettings:
    return WorkerSettings(
        personal_access_token="test-pat",
        organization_url=ADO_URL,
        project=PROJECT,
        team_name="Content Team",
        area_path_filter="MSec Docs\\Security",
        request_timeout=5.0,
    )


@pytest.fixture
async def ado_client(mock_ado: MockAdo) -> AsyncGenerator[AdoClient, None]:
    """AdoClient whose requests are answered by MockAdo (no real network)."""
    client = AdoClient(ADO_URL, "test-pat", transport=httpx.MockTransport(mock_ado.handle))
    yield client
    await client.aclose()


@pytest.fixture
def adapter(ado_client: AdoClient, worker_settings: WorkerSettings) -> ContentRequestAdapter:
    return ContentRequestAdapter(ado_client, worker_settings, today=lambda: TODAY)


@pytest.fixture
def registry(adapter: ContentRequestAdapter) -> ToolRegistry:
    return build_registry(adapter)


# =============================================================================
# Supervisor with in-memory workers
# =============================================================================


@pytest.fixture
def fake_workers() -> FakeWorkerFactory:
    return FakeWorkerFactory()


@pytest.fixture
async def make_supervisor(fake_workers: FakeWorkerFactory):
    """Factory for Supervisors wired to fake workers; all are shut down afterwards."""
    created: list[Supervisor] = []

    def _make(**config_overrides: Any) -> Supervisor:
        supervisor = Supervisor(
            fast_config(**config_overrides),
            spawn=fake_workers.spawn,
            transport_factory=fake_workers.transport_factory,
            env={},
        )
        created.append(supervisor)
        return supervisor

    yield _make

    for supervisor in created:
        await supervisor.shutdown()
