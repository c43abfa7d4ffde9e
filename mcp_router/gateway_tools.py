"""Gateway tools - expose the routed worker services as MCP tools.

The gateway's own MCP endpoint offers three tools that let one MCP client
reach every worker service behind the router:

    - list_services: what is registered
    - list_service_tools: tools/list on one service
    - call_service_tool: tools/call on one service

The handlers are plain coroutine functions taking the Router as their first
argument, so they can be called directly in tests. register_gateway_tools()
binds them to a Router and registers them on a FastMCP instance.
"""
from typing import Any, Optional
import logging

from .errors import normalize_error
from .handler_wrappers import HandlerError, _error_handler
from .router import Router

logger = logging.getLogger(__name__)


# ============================================================================
# HANDLERS
# ============================================================================

@_error_handler
async def list_services(router: Router) -> dict[str, Any]:
    """Describe every registered service."""
    services = [
        {
            "id": definition.id,
            "description": definition.description,
            "capabilities": list(definition.capabilities),
        }
        for definition in router.registry
    ]
    return {"success": True, "services": services, "total": len(services)}


@_error_handler
async def list_service_tools(router: Router, service_id: str) -> dict[str, Any]:
    """Return the tools advertised by one service.

    Uses the service's persistent worker, starting it if needed.

    Raises:
        HandlerError: Unknown service, or the worker answered with an error.
    """
    _require_service(router, service_id)
    response = await router.execute_mcp(
        service_id, {"jsonrpc": "2.0", "method": "tools/list", "params": {}}
    )
    if "error" in response:
        error = normalize_error(response["error"])
        raise HandlerError(
            f"tools/list failed: {error.get('message')}",
            hint="The service may still be starting; retry shortly",
            service_id=service_id,
            code=error.get("code"),
        )
    tools = (response.get("result") or {}).get("tools") or []
    return {"success": True, "service_id": service_id, "tools": tools, "total": len(tools)}


@_error_handler
async def call_service_tool(
    router: Router,
    service_id: str,
    tool_name: str,
    arguments: Optional[dict[str, Any]] = None,
    strategy: Optional[str] = None,
) -> dict[str, Any]:
    """Invoke one tool on a service and return the worker's result.

    Args:
        router: Router to send the call through
        service_id: Target service
        tool_name: Tool name as listed by list_service_tools
        arguments: Tool arguments (default: none)
        strategy: "persistent" or "transient" (default: router config)

    Raises:
        HandlerError: Unknown service or strategy.
        RouterError: Spawn failure, timeout, worker crash or worker error.
    """
    _require_service(router, service_id)
    if strategy not in (None, "persistent", "transient"):
        raise HandlerError(
            f"Unknown strategy: {strategy}",
            hint="Use 'persistent' or 'transient'",
        )
    result = await router.call(
        service_id,
        "tools/call",
        {"name": tool_name, "arguments": arguments or {}},
        strategy=strategy,
    )
    return {"success": True, "service_id": service_id, "tool": tool_name, "result": result}


def _require_service(router: Router, service_id: str) -> None:
    if service_id not in router.registry:
        raise HandlerError(
            f"Unknown service: {service_id}",
            hint="Use list_services to see available services",
            service_id=service_id,
        )


# ============================================================================
# MCP REGISTRATION
# ============================================================================

def register_gateway_tools(mcp, router: Router) -> None:
    """Register the gateway tools on a FastMCP instance, bound to ``router``."""

    @mcp.tool(
        name="list_services",
        description="List the worker services reachable through this router."
    )
    async def list_services_tool() -> dict[str, Any]:
        return await list_services(router)

    @mcp.tool(
        name="list_service_tools",
        description="List the MCP tools offered by one worker service. "
        "Call list_services first to get valid service ids."
    )
    async def list_service_tools_tool(service_id: str) -> dict[str, Any]:
        return await list_service_tools(router, service_id)

    @mcp.tool(
        name="call_service_tool",
        description="Call a tool on a worker service. Pass the tool's arguments as an object. "
        "strategy may be 'persistent' (reuse a long-lived worker) or 'transient' "
        "(fresh process for this call)."
    )
    async def call_service_tool_tool(
        service_id: str,
        tool_name: str,
        arguments: Optional[dict[str, Any]] = None,
        strategy: Optional[str] = None,
    ) -> dict[str, Any]:
        return await call_service_tool(router, service_id, tool_name, arguments, strategy)

    logger.debug("Registered gateway tools for %d service(s)", len(router.registry))
