"""Async HTTP client for the report lifecycle API (used by ReportLifecycleWatcher)."""

import httpx
import structlog

logger = structlog.get_logger(__name__)


class ApiRequestError(Exception):
    """A lifecycle API call failed (transport error or non-2xx response)."""

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class BenchmarkApiClient:
    """Thin wrapper over httpx.AsyncClient for the endpoints the watcher drives."""

    def __init__(
        self,
        base_url: str,
        access_token: str,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "BenchmarkApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def verify_payment(self, session_id: str) -> dict:
        return await self._request("POST", "/api/verify-payment", json={"sessionId": session_id})

    async def trigger_generation(self, report_id: str) -> dict:
        return await self._request("POST", "/api/generate-report", json={"reportId": report_id})

    async def poll_report(self, report_id: str) -> dict:
        return await self._request("GET", f"/api/reports/{report_id}/status")

    async def abandon_report(self, report_id: str) -> dict:
        return await self._request("POST", f"/api/reports/{report_id}/abandon")

    async def _request(self, method: str, path: str, json: dict | None = None) -> dict:
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.HTTPError as exc:
            logger.warning("lifecycle_api_unreachable", path=path, error=str(exc), error_type=type(exc).__name__)
            raise ApiRequestError(f"Request failed: {type(exc).__name__}") from exc

        if response.status_code >= 400:
            try:
                message = response.json().get("error") or response.text
            except ValueError:
                message = response.text
            raise ApiRequestError(message, status_code=response.status_code)

        return response.json()
