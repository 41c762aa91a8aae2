"""
Shared request executor for upstream API clients.

Each upstream client admits a call against its own budget, then hands the
request to ``UpstreamClient._execute`` which sends it and classifies the
outcome. Nothing here retries: a transport failure, a non-2xx status or an
undecodable body each surface once as a typed error.
"""

import json
import time
from typing import Any, Callable, Optional, Type, TypeVar, TYPE_CHECKING

import httpx
from pydantic import BaseModel, ValidationError as PydanticValidationError

from shared.errors import DecodeError, TransportError, UpstreamHTTPError, truncate_body
from shared.logging import get_logger, set_upstream_context

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


DEFAULT_TIMEOUT = 10.0

ModelT = TypeVar("ModelT", bound=BaseModel)


class UpstreamClient:
    """Base class holding the HTTP client and error classification."""

    service_name = "upstream"

    def __init__(
        self,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        metrics: Optional["MetricsCollector"] = None,
        default_timeout: float = DEFAULT_TIMEOUT,
    ):
        self.logger = get_logger(f"armory.adapters.{self.service_name}")
        self.metrics = metrics
        self.default_timeout = default_timeout
        self._client = http_client or httpx.AsyncClient()

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def _timeout(self, timeout: Optional[float]) -> float:
        return self.default_timeout if timeout is None else timeout

    async def _execute(
        self,
        request: httpx.Request,
        *,
        timeout: float,
        on_throttled: Optional[Callable[[], None]] = None,
        auth: Optional[httpx.Auth] = None,
        success_statuses: Optional[range] = None,
    ) -> httpx.Response:
        """Send ``request`` and return the response if its status is a success.

        ``on_throttled`` runs when the upstream answers 429, before the error
        is raised, so the caller's budget is drained for the next request.
        """
        set_upstream_context(self.service_name)
        request.headers["Accept"] = "application/json"
        request.extensions["timeout"] = httpx.Timeout(timeout).as_dict()
        success = success_statuses or range(200, 300)
        endpoint = request.url.path
        start = time.perf_counter()

        try:
            response = await self._client.send(request, auth=auth)
        except httpx.TimeoutException as exc:
            self._record("timeout", start)
            self.logger.error("Upstream request timed out", endpoint=endpoint, timeout=timeout, error=str(exc))
            raise TransportError(self.service_name, f"request to '{endpoint}' timed out") from exc
        except httpx.TransportError as exc:
            self._record("transport_error", start)
            self.logger.error("Failed to do request", endpoint=endpoint, error=str(exc))
            raise TransportError(self.service_name, f"request to '{endpoint}' failed: {exc}") from exc

        if response.status_code == 429 and on_throttled is not None:
            on_throttled()
            if self.metrics:
                self.metrics.increment_counter("rate_limit_drains_total", upstream=self.service_name)
            self.logger.warning("Upstream rate limit reached, drained local budget", endpoint=endpoint)

        if response.status_code not in success:
            body = await self._read_body(response)
            self._record(f"http_{response.status_code}", start)
            if response.status_code == 404:
                self.logger.warning("Request returned 404 status code", endpoint=endpoint, body=truncate_body(body))
            else:
                self.logger.error(
                    "Request returned non-success status code",
                    endpoint=endpoint,
                    status_code=response.status_code,
                    body=truncate_body(body),
                )
            raise UpstreamHTTPError(self.service_name, response.status_code, body, details={"endpoint": endpoint})

        self._record("success", start)
        return response

    async def _read_body(self, response: httpx.Response) -> str:
        try:
            await response.aread()
            return response.text
        except httpx.HTTPError as exc:
            self.logger.error("Failed to read body for error logging", error=str(exc))
            return ""

    def _decode_json(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            self.logger.error(
                "Failed to decode response body",
                endpoint=response.request.url.path,
                body=truncate_body(response.text),
            )
            raise DecodeError(self.service_name, f"malformed JSON from '{response.request.url.path}'") from exc

    def _decode_model(self, payload: Any, model: Type[ModelT], endpoint: str) -> ModelT:
        try:
            return model.model_validate(payload)
        except PydanticValidationError as exc:
            self.logger.error("Response did not match schema", endpoint=endpoint, model=model.__name__, error=str(exc))
            raise DecodeError(self.service_name, f"unexpected payload from '{endpoint}'") from exc

    def _record_denial(self) -> None:
        if self.metrics:
            self.metrics.increment_counter("rate_limit_denials_total", upstream=self.service_name)

    def _record(self, outcome: str, start: float) -> None:
        if self.metrics:
            self.metrics.record_upstream_request(self.service_name, outcome, time.perf_counter() - start)
