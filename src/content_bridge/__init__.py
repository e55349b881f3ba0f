"""Content request bridge: HTTP facade, worker supervisor and Azure DevOps tool worker."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("content-request-bridge")
except PackageNotFoundError:
    __version__ = "0.0.0"
