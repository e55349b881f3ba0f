"""Tool worker: the child process that talks to Azure DevOps."""

from .adapter import ContentRequestAdapter, build_registry
from .ado_client import AdoClient
from .registry import ToolRegistry
from .server import WorkerServer

__all__ = [
    "AdoClient",
    "ContentRequestAdapter",
    "ToolRegistry",
    "WorkerServer",
    "build_registry",
]
