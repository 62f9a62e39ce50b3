"""Public CLI API re-exports for tests and external importers."""

from .http_client import ResearchStreamClient, StreamState, validate_server_url
from .stream import CLIStreamHandler, HandlerSink

__all__ = [
    "CLIStreamHandler",
    "HandlerSink",
    "ResearchStreamClient",
    "StreamState",
    "validate_server_url",
]
