"""Context object shared across worker threads."""

from dataclasses import dataclass

from speedtest_backend.bootstrap.config import ServerConfig
from speedtest_backend.lifecycle.state import ServerLifecycle
from speedtest_backend.pipeline.middleware import Handler

PRIMARY_LISTENER = "primary"
PROXY_LISTENER = "proxyprotocol"


@dataclass
class WorkerContext:
    """Dependencies shared by every connection accepted on one listener."""

    handler: Handler
    lifecycle: ServerLifecycle
    config: ServerConfig
    listener: str = PRIMARY_LISTENER
    proxy_protocol: bool = False
