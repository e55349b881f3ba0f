"""Entry point for ``python -m content_bridge.worker``.

stdout is reserved for JSON-RPC; all diagnostics go to stderr.
"""

import asyncio
import logging
import os
import sys

from ..config import ConfigError, WorkerSettings
from ..shared.logging import configure_logging
from .adapter import ContentRequestAdapter, build_registry
from .ado_client import AdoClient
from .server import WorkerServer, run_stdio

logger = logging.getLogger(__name__)

LOG_LEVEL_ENV = "CONTENT_BRIDGE_WORKER_LOG_LEVEL"


async def run_worker(settings: WorkerSettings) -> None:
    async with AdoClient(
        settings.organization_url,
        settings.personal_access_token,
        timeout=settings.request_timeout,
    ) as client:
        adapter = ContentRequestAdapter(client, settings)
        server = WorkerServer(build_registry(adapter))
        logger.info(
            f"Content request worker running on stdio "
            f"(organization={settings.organization_url} project={settings.project})"
        )
        await run_stdio(server)


def main() -> None:
    configure_logging(os.environ.get(LOG_LEVEL_ENV, "info"))

    try:
        settings = WorkerSettings.from_env()
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        asyncio.run(run_worker(settings))
    except KeyboardInterrupt:
        logger.info("Worker interrupted")


if __name__ == "__main__":
    main()
