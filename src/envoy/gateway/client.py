"""HTTP client for the action/search gateway.

The gateway is the process that holds credentials and talks to the outside
world (mail, calendar, web, messaging). Envoy never does that itself; it
sends typed action requests and knowledge-graph queries here:

    POST /actions  {"id", "action", "payload"}  -> {"status", "data", "error"}
    POST /search   {"query", "limit", "source"} -> {"results": [{"document", "chunk", "score"}]}

A reachable gateway that reports a failed action returns a normal
ActionResponse with status "failure". Transport errors and non-2xx replies
raise GatewayError.

Usage:
    async with GatewayClient.from_config(config.gateway) as gateway:
        response = await gateway.send_action("email.send", payload)
        hits = await gateway.search("quarterly report", limit=5)
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

import httpx

from envoy.agent.collaborators import SearchResult
from envoy.agent.types import ActionResponse
from envoy.core.errors import GatewayError
from envoy.core.logging import get_logger

if TYPE_CHECKING:
    from types import TracebackType

    from envoy.config_schema import GatewayConfig

logger = get_logger(__name__)


class GatewayClient:
    """ActionExecutor and KnowledgeSearch over the gateway's HTTP API."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    @classmethod
    def from_config(cls, config: GatewayConfig) -> GatewayClient:
        return cls(httpx.AsyncClient(base_url=config.base_url, timeout=config.timeout_seconds))

    async def __aenter__(self) -> GatewayClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, endpoint: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(endpoint, json=body)
        except httpx.TimeoutException as e:
            logger.error("gateway_timeout", endpoint=endpoint, error=str(e))
            raise GatewayError(f"Gateway request to {endpoint} timed out") from e
        except httpx.HTTPError as e:
            logger.error("gateway_connection_error", endpoint=endpoint, error=str(e))
            raise GatewayError(
                f"Could not reach the gateway at {self._client.base_url}: {e}. "
                "Check that it is running and gateway.base_url is correct."
            ) from e

        if response.is_error:
            detail = response.text[:200] or f"HTTP {response.status_code}"
            logger.error(
                "gateway_error_response",
                endpoint=endpoint,
                status_code=response.status_code,
                detail=detail,
            )
            raise GatewayError(
                f"Gateway error ({response.status_code}) on {endpoint}: {detail}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise GatewayError(f"Gateway returned invalid JSON on {endpoint}") from e
        if not isinstance(data, dict):
            raise GatewayError(f"Gateway returned an unexpected body on {endpoint}")
        return data

    async def send_action(self, action_type: str, payload: dict[str, Any]) -> ActionResponse:
        request_id = uuid.uuid4().hex
        data = await self._post(
            "/actions",
            {"id": request_id, "action": action_type, "payload": payload},
        )
        response = ActionResponse.from_dict(data)
        logger.debug(
            "gateway_action_complete",
            request_id=request_id,
            action_type=action_type,
            status=response.status,
        )
        return response

    async def search(
        self,
        query: str,
        limit: int = 10,
        source: str | None = None,
    ) -> list[SearchResult]:
        body: dict[str, Any] = {"query": query, "limit": limit}
        if source:
            body["source"] = source
        data = await self._post("/search", body)
        return [
            SearchResult(
                document=item.get("document") or {},
                chunk=item.get("chunk") or {},
                score=float(item.get("score") or 0.0),
            )
            for item in data.get("results", [])
        ]
