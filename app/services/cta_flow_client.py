# app/services/cta_flow_client.py
"""
CTA Flow persistence API client.
Async httpx wrapper around the console's /cta-flow endpoints.
"""
from typing import Any, Dict, List, Optional

import httpx

from app.core import config
from app.core.logging_config import get_flow_api_logger, log_api_request, log_api_response
from app.flow_builder.codec import decode_flow_list
from app.flow_builder.errors import FlowApiError, UsageConflictError
from app.schemas.cta_flow import (
    CreateFlowResponse,
    FlowPayload,
    FlowSummary,
    FlowUsage,
    UpdateFlowResponse,
)

log = get_flow_api_logger()

_UNSET = object()


def _require_id(flow_id: Optional[str]) -> str:
    if not flow_id:
        raise ValueError("flowId is required")
    return str(flow_id)


class ApiClient:
    """Shared request/response handling for the console's backend APIs"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Any = _UNSET,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or config.CTA_FLOW_API_BASE_URL).rstrip("/")
        self.token = token if token is not None else config.CTA_FLOW_API_TOKEN
        self.timeout = config.CTA_FLOW_API_TIMEOUT if timeout is _UNSET else timeout
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        kwargs: Dict[str, Any] = {"base_url": self.base_url, "headers": self._headers()}
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout
        if self.transport is not None:
            kwargs["transport"] = self.transport
        return httpx.AsyncClient(**kwargs)

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    async def _request(self, method: str, path: str, json: Any = None) -> Any:
        log_api_request(log, method, f"{self.base_url}{path}", json)
        try:
            async with self._client() as client:
                response = await client.request(method, path, json=json)
        except httpx.HTTPError as e:
            log_api_response(log, 0, error=e)
            raise FlowApiError(f"Could not reach {self.base_url}: {e}") from e

        body = self._json(response)
        if response.status_code == 409:
            data = body if isinstance(body, dict) else {}
            campaigns = data.get("campaigns")
            message = data.get("message") or "Flow is attached to active campaigns"
            log.warning(f"⚠️ {method} {path} rejected with usage conflict")
            raise UsageConflictError(message, campaigns if isinstance(campaigns, list) else [])

        if response.status_code >= 400:
            message = body.get("message") if isinstance(body, dict) and body.get("message") else response.text
            error = FlowApiError(
                f"{method} {path} failed with {response.status_code}: {message}",
                status_code=response.status_code,
                payload=body,
            )
            log_api_response(log, response.status_code, error=error)
            raise error

        log_api_response(log, response.status_code, body)
        return body


class CtaFlowApiClient(ApiClient):
    """Create/update/publish/fork/usage/delete/list for visual CTA flows"""

    async def load_flow(self, flow_id: str) -> Dict[str, Any]:
        data = await self._request("GET", f"/cta-flow/by-id/{_require_id(flow_id)}")
        if not isinstance(data, dict):
            raise FlowApiError(f"Unexpected load response for flow {flow_id}", payload=data)
        return data

    async def create_flow(self, payload: FlowPayload) -> CreateFlowResponse:
        data = await self._request("POST", "/cta-flow/save-visual", payload.model_dump(by_alias=True))
        return CreateFlowResponse.model_validate(data if isinstance(data, dict) else {})

    async def update_flow(self, flow_id: str, payload: FlowPayload) -> UpdateFlowResponse:
        data = await self._request("PUT", f"/cta-flow/{_require_id(flow_id)}", payload.model_dump(by_alias=True))
        return UpdateFlowResponse.model_validate(data if isinstance(data, dict) else {})

    async def publish_flow(self, flow_id: str) -> Dict[str, Any]:
        data = await self._request("POST", f"/cta-flow/{_require_id(flow_id)}/publish")
        return data if isinstance(data, dict) else {}

    async def fork_flow(self, flow_id: str) -> CreateFlowResponse:
        data = await self._request("POST", f"/cta-flow/{_require_id(flow_id)}/fork")
        result = CreateFlowResponse.model_validate(data if isinstance(data, dict) else {})
        if not result.flow_id:
            raise FlowApiError(f"Fork of flow {flow_id} returned no flowId", payload=data)
        return result

    async def get_usage(self, flow_id: str) -> FlowUsage:
        data = await self._request("GET", f"/cta-flow/{_require_id(flow_id)}/usage")
        return FlowUsage.model_validate(data if isinstance(data, dict) else {})

    async def delete_flow(self, flow_id: str) -> None:
        await self._request("DELETE", f"/cta-flow/{_require_id(flow_id)}")

    async def list_flows(self, published: bool = True) -> List[FlowSummary]:
        path = "/cta-flow/all-published" if published else "/cta-flow/all-draft"
        return decode_flow_list(await self._request("GET", path))
