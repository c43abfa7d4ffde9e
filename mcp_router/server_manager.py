"""Lifecycle orchestration for the router and its HTTP gateway.

This module provides the ServerManager class which owns the Router and the
McpServer and starts and stops them in the right order.

Shutdown Order (Critical):
    1. Gateway stop - uvicorn stops accepting connections
    2. Router stop - refuse new submissions, terminate every worker
       process, wait for the transient queue to drain

Stopping the gateway first means no new request can reach the router while
its workers are being torn down.
"""

import logging
from typing import Optional

from .config import Config
from .mcp_server import McpServer
from .router import Router
from .service_registry import ServiceRegistry

logger = logging.getLogger(__name__)


class ServerManager:
    """Manages router and gateway lifecycle.

    Usage:
        >>> config = Config(http_port=3000, services_file="services.json")
        >>> manager = ServerManager(config)
        >>> await manager.serve()   # start, serve until SIGINT/SIGTERM, stop

    Attributes:
        _config: Current configuration
        _registry: Service definitions
        _router: Router (None until start())
        _server: HTTP gateway (None until start())
    """

    def __init__(self, config: Config, registry: Optional[ServiceRegistry] = None) -> None:
        """Initialize without starting anything.

        Args:
            config: Router and gateway settings.
            registry: Service definitions. Loaded from ``config.services_file``
                when omitted (an empty registry if no file is configured).
        """
        self._config = config
        if registry is None:
            if config.services_file:
                registry = ServiceRegistry.from_file(config.services_file)
            else:
                logger.warning("No services file configured; starting with no services")
                registry = ServiceRegistry()
        self._registry = registry
        self._router: Optional[Router] = None
        self._server: Optional[McpServer] = None

    @property
    def router(self) -> Optional[Router]:
        return self._router

    @property
    def is_running(self) -> bool:
        """True between start() and stop()."""
        return self._router is not None and self._server is not None

    def start(self) -> None:
        """Create the router and gateway and start background maintenance.

        Must be called with a running event loop. No-op if already running.
        """
        if self.is_running:
            return
        self._router = Router(self._registry, self._config)
        self._router.start()
        self._server = McpServer(self._router, self._config)

    async def serve(self) -> None:
        """Start, serve HTTP until uvicorn exits, then stop.

        uvicorn handles SIGINT/SIGTERM by leaving its serve loop, after which
        the graceful router shutdown runs.
        """
        self.start()
        assert self._server is not None
        try:
            await self._server.serve()
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop gateway then router. Safe to call multiple times."""
        if not self.is_running:
            return

        # 1. Stop accepting HTTP traffic
        if self._server:
            self._server.stop()
            self._server = None

        # 2. Graceful router shutdown (terminate workers, drain queue)
        if self._router:
            await self._router.stop()
            self._router = None
