"""HTTP gateway in front of the router.

This module builds the gateway application: a FastMCP server whose own MCP
endpoint offers the gateway tools, plus plain HTTP routes that reach the
worker services directly. Everything is served by uvicorn on the router's
event loop.

Routes:
    GET  /health                           liveness, version, uptime
    GET  /services                         registered service definitions
    GET  /api/services/{service_id}        definition + tools/list probe
    GET  /api/router/stats                 supervisor and queue statistics
    POST /mcp/{service}                    enveloped contract (persistent)
    POST /execute/{service}/{method}       throwing contract (transient)
    POST /api/services/{service_id}/tools/{tool_name}
                                           tools/call via the persistent worker
    POST /                                 the gateway's own MCP endpoint
"""

import json
import logging
from typing import Any, Optional

import uvicorn
from mcp.server.fastmcp import FastMCP
from mcp.server.transport_security import TransportSecuritySettings
from starlette.requests import Request
from starlette.responses import JSONResponse

from . import __version__
from .config import Config
from .errors import PARSE_ERROR, RouterError, jsonrpc_error, normalize_error
from .gateway_tools import register_gateway_tools
from .router import Router

logger = logging.getLogger(__name__)


def build_mcp(router: Router) -> FastMCP:
    """Create the FastMCP instance with gateway tools and HTTP routes.

    Args:
        router: Router every route and tool delegates to

    Returns:
        Configured FastMCP server. ``streamable_http_app()`` gives the ASGI app.
    """
    # Workers are reached through tunnels/proxies too; do not pin the Host header
    security_settings = TransportSecuritySettings(
        enable_dns_rebinding_protection=False
    )
    mcp = FastMCP("mcp-router", streamable_http_path="/", transport_security=security_settings)

    register_gateway_tools(mcp, router)
    _register_routes(mcp, router)
    return mcp


async def _read_json(request: Request) -> Any:
    body = await request.body()
    if not body.strip():
        return {}
    return json.loads(body)


def _register_routes(mcp: FastMCP, router: Router) -> None:

    @mcp.custom_route("/health", methods=["GET"])
    async def health(request: Request) -> JSONResponse:
        return JSONResponse({
            "status": "healthy",
            "version": __version__,
            "uptime": round(router.uptime, 3),
        })

    @mcp.custom_route("/services", methods=["GET"])
    async def services(request: Request) -> JSONResponse:
        return JSONResponse([d.model_dump(mode="json") for d in router.registry])

    @mcp.custom_route("/api/router/stats", methods=["GET"])
    async def router_stats(request: Request) -> JSONResponse:
        return JSONResponse(router.stats())

    @mcp.custom_route("/api/services/{service_id}", methods=["GET"])
    async def service_detail(request: Request) -> JSONResponse:
        service_id = request.path_params["service_id"]
        definition = router.registry.get(service_id)
        if definition is None:
            return JSONResponse({"error": "Service not found"}, status_code=404)

        response = await router.execute_mcp(
            service_id, {"jsonrpc": "2.0", "method": "tools/list", "params": {}}
        )
        result = response.get("result")
        tools = result.get("tools") if isinstance(result, dict) else None
        payload: dict[str, Any] = definition.model_dump(mode="json")
        if isinstance(tools, list):
            payload["tools"] = tools
            payload["status"] = "healthy" if tools else "degraded"
        else:
            logger.warning("Tools probe failed for %s: %s", service_id, response.get("error"))
            payload["tools"] = []
            payload["status"] = "degraded"
            if "error" in response:
                payload["error"] = response["error"]
        payload["toolCount"] = len(payload["tools"])
        return JSONResponse(payload)

    @mcp.custom_route("/mcp/{service}", methods=["POST"])
    async def mcp_proxy(request: Request) -> JSONResponse:
        try:
            body = await _read_json(request)
        except ValueError:
            return JSONResponse(jsonrpc_error(None, PARSE_ERROR, "Parse error"))
        envelope = await router.execute_mcp(request.path_params["service"], body)
        return JSONResponse(envelope)

    @mcp.custom_route("/execute/{service}/{method:path}", methods=["POST"])
    async def execute(request: Request) -> JSONResponse:
        service = request.path_params["service"]
        method = request.path_params["method"]
        try:
            body = await _read_json(request)
        except ValueError:
            return JSONResponse({"success": False, "error": "Parse error"}, status_code=400)
        params = body.get("params") if isinstance(body, dict) else None
        try:
            result = await router.execute(service, method, params)
        except RouterError as exc:
            logger.error("Execution error for %s.%s: %s", service, method, exc.message)
            return JSONResponse(
                {"success": False, "error": exc.message, "code": exc.code},
                status_code=500,
            )
        return JSONResponse({"success": True, "result": result})

    @mcp.custom_route("/api/services/{service_id}/tools/{tool_name}", methods=["POST"])
    async def call_tool(request: Request) -> JSONResponse:
        service_id = request.path_params["service_id"]
        tool_name = request.path_params["tool_name"]
        try:
            body = await _read_json(request)
        except ValueError:
            return JSONResponse({"success": False, "error": "Parse error"}, status_code=400)
        arguments = body.get("params") if isinstance(body, dict) else None

        envelope = await router.execute_mcp(service_id, {
            "jsonrpc": "2.0",
            "method": "tools/call",
            "params": {"name": tool_name, "arguments": arguments or {}},
        })
        if "error" in envelope:
            error = normalize_error(envelope["error"])
            logger.error("Tool execution error for %s/%s: %s", service_id, tool_name, error)
            return JSONResponse(
                {"success": False, "error": error.get("message"), "code": error.get("code")},
                status_code=500,
            )
        return JSONResponse({"success": True, "result": envelope.get("result")})


class McpServer:
    """Serves the gateway app with uvicorn.

    Usage:
        >>> server = McpServer(router, config)
        >>> await server.serve()   # returns after stop() or SIGINT/SIGTERM

    Attributes:
        _router: Router the gateway delegates to
        _config: HTTP host/port settings
        _server: uvicorn server while serving, None otherwise
    """

    def __init__(self, router: Router, config: Config) -> None:
        self._router = router
        self._config = config
        self._server: Optional[uvicorn.Server] = None

    @property
    def is_serving(self) -> bool:
        return self._server is not None and self._server.started

    async def serve(self) -> None:
        """Serve until uvicorn exits (signal or stop())."""
        mcp = build_mcp(self._router)
        app = mcp.streamable_http_app()

        config = uvicorn.Config(
            app,
            host=self._config.http_host,
            port=self._config.http_port,
            log_level="warning",
        )
        self._server = uvicorn.Server(config)
        logger.info(
            "Gateway listening on http://%s:%s", self._config.http_host, self._config.http_port
        )
        try:
            await self._server.serve()
        finally:
            self._server = None

    def stop(self) -> None:
        """Ask uvicorn to exit its serve loop."""
        if self._server is not None:
            self._server.should_exit = True
