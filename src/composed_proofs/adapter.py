"""HTTP and local adapters for invoking proof tools.

This module defines the boundary between the execution engine and whatever
actually runs a proof tool. The engine only sees the ComponentExecutorAdapter
protocol: ``execute(tool_name, parameters) -> ToolExecutionOutcome``.

Adapters never raise for transport problems. Connection errors, HTTP errors
and malformed responses come back as an ERROR outcome with
``error_kind="TRANSPORT_ERROR"`` so the retry controller can retry them.

Usage:
------
    adapter = HTTPExecutorAdapter(base_url="http://localhost:3001")
    outcome = await adapter.execute(
        "get-GLEIF-verification-with-sign",
        {"companyName": "ACME CORP"},
    )
    await adapter.close()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Union, runtime_checkable

import httpx

from .models import ToolExecutionOutcome, ToolStatus

logger = logging.getLogger(__name__)

TRANSPORT_ERROR = "TRANSPORT_ERROR"
TOOL_NOT_FOUND = "TOOL_NOT_FOUND"
INVALID_RESPONSE = "INVALID_RESPONSE"

ToolCallable = Callable[[Dict[str, Any]], Union[Awaitable[Any], Any]]


@runtime_checkable
class ComponentExecutorAdapter(Protocol):
    """Invokes one proof tool and reports PASS / FAIL / ERROR."""

    async def execute(self, tool_name: str, parameters: Dict[str, Any]) -> ToolExecutionOutcome:
        ...


def outcome_from_payload(payload: Any) -> ToolExecutionOutcome:
    """
    Normalise a backend/tool response into a ToolExecutionOutcome.

    Accepted shapes:
    - a ToolExecutionOutcome (returned as-is)
    - a bool (PASS / FAIL)
    - ``{"status": "PASS"|"FAIL"|"ERROR", ...}``
    - the proving backend's ``{"success": bool, "result": {...}}`` envelope
    """
    if isinstance(payload, ToolExecutionOutcome):
        return payload
    if isinstance(payload, bool):
        return ToolExecutionOutcome(
            status=ToolStatus.PASS if payload else ToolStatus.FAIL, zk_proof_generated=payload
        )
    if not isinstance(payload, dict):
        return ToolExecutionOutcome(
            status=ToolStatus.ERROR,
            error=f"Unexpected tool response type: {type(payload).__name__}",
            error_kind=INVALID_RESPONSE,
        )

    if "status" in payload and str(payload["status"]).upper() in ToolStatus.__members__:
        return ToolExecutionOutcome(
            status=ToolStatus(str(payload["status"]).upper()),
            zk_proof_generated=bool(payload.get("zk_proof_generated", payload.get("zkProofGenerated", False))),
            output=payload.get("output"),
            error=payload.get("error"),
            error_kind=payload.get("error_kind"),
        )

    if "success" in payload:
        success = bool(payload["success"])
        result = payload.get("result") or {}
        if not isinstance(result, dict):
            result = {"output": result}
        return ToolExecutionOutcome(
            status=ToolStatus.PASS if success else ToolStatus.FAIL,
            zk_proof_generated=bool(result.get("zkProofGenerated", success)),
            output=result.get("output", payload.get("output")),
            error=result.get("error"),
        )

    return ToolExecutionOutcome(
        status=ToolStatus.ERROR,
        error="Tool response has neither 'status' nor 'success'",
        error_kind=INVALID_RESPONSE,
    )


# =============================================================================
# HTTP ADAPTER
# =============================================================================


class HTTPExecutorAdapter:
    """Calls the proving backend's ``/api/tools/execute`` endpoint with httpx.

    Attributes:
        base_url: Backend base URL
        timeout: Request timeout in seconds
        _client: Lazily created httpx async client
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 120.0,
        execute_path: str = "/api/tools/execute",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.execute_path = execute_path
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                headers={"Content-Type": "application/json"},
            )
        return self._client

    async def execute(self, tool_name: str, parameters: Dict[str, Any]) -> ToolExecutionOutcome:
        client = await self._get_client()
        try:
            response = await client.post(
                self.execute_path, json={"toolName": tool_name, "parameters": parameters}
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            logger.warning(
                f"Backend returned {e.response.status_code} for tool {tool_name}"
            )
            return ToolExecutionOutcome(
                status=ToolStatus.ERROR,
                error=f"HTTP {e.response.status_code}: {e.response.text[:200]}",
                error_kind=TRANSPORT_ERROR,
            )
        except httpx.HTTPError as e:
            logger.warning(f"Transport failure calling tool {tool_name}: {e}")
            return ToolExecutionOutcome(
                status=ToolStatus.ERROR, error=str(e) or type(e).__name__, error_kind=TRANSPORT_ERROR
            )
        except ValueError as e:
            return ToolExecutionOutcome(
                status=ToolStatus.ERROR,
                error=f"Invalid JSON from backend: {e}",
                error_kind=INVALID_RESPONSE,
            )

        return outcome_from_payload(payload)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


# =============================================================================
# LOCAL CALLABLE ADAPTER
# =============================================================================


class CallableExecutorAdapter:
    """Runs tools registered as local callables.

    Each callable receives the merged parameter dict and may be sync or
    async. Sync callables run in the default executor. Exceptions raised by a
    tool are reported as ERROR with ``error_kind`` set to the exception class
    name.
    """

    def __init__(self, tools: Optional[Dict[str, ToolCallable]] = None):
        self._tools: Dict[str, ToolCallable] = dict(tools or {})

    def register(self, tool_name: str, func: ToolCallable) -> None:
        if tool_name in self._tools:
            logger.warning(f"Tool '{tool_name}' already registered, overwriting")
        self._tools[tool_name] = func

    def has_tool(self, tool_name: str) -> bool:
        return tool_name in self._tools

    async def execute(self, tool_name: str, parameters: Dict[str, Any]) -> ToolExecutionOutcome:
        func = self._tools.get(tool_name)
        if func is None:
            return ToolExecutionOutcome(
                status=ToolStatus.ERROR,
                error=f"Tool '{tool_name}' not found in registry",
                error_kind=TOOL_NOT_FOUND,
            )

        try:
            if asyncio.iscoroutinefunction(func):
                payload = await func(parameters)
            else:
                loop = asyncio.get_running_loop()
                payload = await loop.run_in_executor(None, lambda: func(parameters))
                if asyncio.iscoroutine(payload):
                    payload = await payload
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Tool '{tool_name}' raised {type(e).__name__}: {e}")
            return ToolExecutionOutcome(
                status=ToolStatus.ERROR, error=str(e), error_kind=type(e).__name__
            )

        return outcome_from_payload(payload)


# =============================================================================
# ROUTING ADAPTER
# =============================================================================


class RoutingExecutorAdapter:
    """Dispatches by tool name, falling back to a default adapter."""

    def __init__(
        self,
        default: ComponentExecutorAdapter,
        routes: Optional[Dict[str, ComponentExecutorAdapter]] = None,
    ):
        self.default = default
        self._routes: Dict[str, ComponentExecutorAdapter] = dict(routes or {})

    def add_route(self, tool_name: str, adapter: ComponentExecutorAdapter) -> None:
        self._routes[tool_name] = adapter

    def adapter_for(self, tool_name: str) -> ComponentExecutorAdapter:
        return self._routes.get(tool_name, self.default)

    async def execute(self, tool_name: str, parameters: Dict[str, Any]) -> ToolExecutionOutcome:
        return await self.adapter_for(tool_name).execute(tool_name, parameters)
