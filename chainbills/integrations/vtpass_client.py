"""
VTpass API client with retry logic and circuit breaking.

Implements:
- Header selection per operation (secret key for purchases, public key for reads)
- Exponential backoff for read-only operations
- Circuit breaker pattern
- Normalized ``{"success": ..., "data": ...}`` results

``purchase`` is never retried.
"""
import time
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from chainbills.config import Settings, get_settings
from chainbills.core.exceptions import FulfillmentTransportError, MalformedFulfillmentResponse
from chainbills.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

SUCCESS_CODE = "000"
IP_NOT_WHITELISTED = "IP NOT WHITELISTED"


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, FulfillmentTransportError) and error.details.get("retryable", True)


read_retry = retry(
    retry=retry_if_exception(_is_retryable),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    reraise=True,
)


def _provider_message(body: Any, default: str) -> str:
    if isinstance(body, Mapping):
        for key in ("response_description", "message", "error", "errors"):
            if body.get(key):
                return str(body[key])
    return default


class CircuitBreaker:
    """
    Circuit breaker for VTpass API calls.

    Only transport failures count against the circuit; a declined purchase
    is a healthy provider answering.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: int = 60,
        success_threshold: int = 2,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Number of failures before opening circuit
            timeout: Seconds before attempting to close circuit
            success_threshold: Successful calls needed to close circuit
        """
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"  # closed, open, half_open

    async def call(self, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """
        Await ``func`` with circuit breaker protection.

        Raises:
            FulfillmentTransportError: If circuit is open
        """
        if self.state == "open":
            if (
                self.last_failure_time is not None
                and time.monotonic() - self.last_failure_time > self.timeout
            ):
                self._set_state("half_open")
                self.success_count = 0
                logger.info("circuit_breaker_half_open")
            else:
                raise FulfillmentTransportError(
                    "VTpass circuit breaker is open", retryable=False
                )

        try:
            result = await func(*args, **kwargs)
        except FulfillmentTransportError:
            self.on_failure()
            raise
        self.on_success()
        return result

    def on_success(self) -> None:
        """Record successful call."""
        self.failure_count = 0
        if self.state == "half_open":
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._set_state("closed")
                logger.info("circuit_breaker_closed")

    def on_failure(self) -> None:
        """Record failed call."""
        self.failure_count += 1
        self.last_failure_time = time.monotonic()
        if self.state == "half_open" or self.failure_count >= self.failure_threshold:
            self._set_state("open")
            logger.warning("circuit_breaker_opened", failure_count=self.failure_count)

    def _set_state(self, state: str) -> None:
        self.state = state
        metrics.set_circuit_breaker_state(state)


class VTPassClient:
    """
    Async wrapper around the VTpass REST API.

    The underlying ``httpx.AsyncClient`` is created lazily unless one is
    injected (tests pass one built on ``httpx.MockTransport``).
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._http_client = http_client
        self._owns_client = http_client is None
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=self.settings.vtpass_circuit_failure_threshold,
            timeout=self.settings.vtpass_circuit_reset_seconds,
        )

        logger.info(
            "vtpass_client_initialized",
            base_url=self.settings.vtpass_url,
            production=self.settings.is_production,
        )

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.settings.vtpass_timeout_seconds)
            )
        return self._http_client

    def _headers(self, use_secret_key: bool) -> Dict[str, str]:
        """
        Build auth headers.

        VTpass expects ``secret-key`` on purchases and ``public-key`` on
        lookups; ``api-key`` goes on both.

        Raises:
            FulfillmentTransportError: If the needed credentials are missing
        """
        second_name, second_value = (
            ("secret-key", self.settings.vtpass_secret_key)
            if use_secret_key
            else ("public-key", self.settings.vtpass_public_key)
        )
        if not self.settings.vtpass_api_key or not second_value:
            raise FulfillmentTransportError(
                f"VTpass credentials (api-key, {second_name}) are not configured",
                retryable=False,
            )
        return {
            "Content-Type": "application/json",
            "api-key": self.settings.vtpass_api_key,
            second_name: second_value,
        }

    async def _send(
        self,
        operation: str,
        method: str,
        path: str,
        use_secret_key: bool = False,
        request_id: Optional[str] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        headers = self._headers(use_secret_key)
        url = f"{self.settings.vtpass_url}{path}"

        async def _do() -> httpx.Response:
            start = time.perf_counter()
            try:
                response = await self._client().request(method, url, headers=headers, **kwargs)
            except httpx.TimeoutException as e:
                metrics.record_vtpass_api_error(operation, "timeout")
                metrics.record_vtpass_api_call(operation, "error", time.perf_counter() - start)
                logger.error("vtpass_timeout", operation=operation, request_id=request_id)
                raise FulfillmentTransportError(
                    f"VTpass {operation} timed out", request_id=request_id, original_error=e
                )
            except httpx.HTTPError as e:
                metrics.record_vtpass_api_error(operation, type(e).__name__)
                metrics.record_vtpass_api_call(operation, "error", time.perf_counter() - start)
                logger.error(
                    "vtpass_transport_error",
                    operation=operation,
                    request_id=request_id,
                    error=str(e),
                )
                raise FulfillmentTransportError(
                    f"VTpass {operation} failed: {e}", request_id=request_id, original_error=e
                )

            metrics.record_vtpass_api_call(
                operation,
                "success" if response.is_success else "http_error",
                time.perf_counter() - start,
            )
            return response

        return await self.circuit_breaker.call(_do)

    @staticmethod
    def _decode(operation: str, response: httpx.Response, request_id: Optional[str] = None) -> Any:
        try:
            return response.json()
        except ValueError as e:
            metrics.record_vtpass_api_error(operation, "non_json")
            logger.error(
                "vtpass_non_json_response",
                operation=operation,
                request_id=request_id,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise FulfillmentTransportError(
                f"VTpass {operation} returned a non-JSON body (HTTP {response.status_code})",
                request_id=request_id,
                original_error=e,
                status_code=response.status_code,
            )

    async def purchase(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Pay for a product (POST /pay). Called at most once per order.

        Args:
            params: request_id, serviceID, billersCode, variation_code, amount, phone

        Returns:
            Dict[str, Any]: ``{"success": True, "data": body}`` for code "000",
            otherwise ``{"success": False, "error": reason, "data": body}``

        Raises:
            FulfillmentTransportError: Network failure, timeout, non-JSON body,
                missing credentials or open circuit
            MalformedFulfillmentResponse: JSON body without a ``code``
        """
        request_id = params.get("request_id")
        logger.info(
            "vtpass_purchase_started",
            request_id=request_id,
            service_id=params.get("serviceID"),
            amount=params.get("amount"),
        )

        response = await self._send(
            "purchase", "POST", "/pay", use_secret_key=True, request_id=request_id, json=dict(params)
        )
        body = self._decode("purchase", response, request_id)

        if not isinstance(body, Mapping) or "code" not in body:
            logger.error("vtpass_purchase_malformed", request_id=request_id, body=body)
            raise MalformedFulfillmentResponse(
                "VTpass purchase response has no code", request_id=request_id, raw_response=body
            )

        code = str(body["code"])
        if code == SUCCESS_CODE:
            logger.info("vtpass_purchase_succeeded", request_id=request_id)
            return {"success": True, "data": dict(body)}

        reason = _provider_message(body, "VTpass purchase failed")
        logger.warning("vtpass_purchase_declined", request_id=request_id, code=code, reason=reason)
        return {"success": False, "error": reason, "data": dict(body)}

    @read_retry
    async def verify_customer(
        self, service_id: str, billers_code: str, type: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Verify a meter or smartcard number (POST /merchant-verify).

        A body with ``IP NOT WHITELISTED`` is reported with
        ``needs_whitelisting`` set so the surface can answer 403.
        """
        payload: Dict[str, Any] = {"serviceID": service_id, "billersCode": billers_code}
        if type:
            payload["type"] = type

        response = await self._send("verify", "POST", "/merchant-verify", json=payload)
        body = self._decode("verify", response)

        errors = body.get("errors") if isinstance(body, Mapping) else None
        if isinstance(errors, str) and IP_NOT_WHITELISTED in errors.upper():
            logger.error("vtpass_ip_not_whitelisted", errors=errors)
            return {
                "success": False,
                "error": (
                    "IP address not whitelisted. Please contact VTpass support to "
                    "whitelist your server IP."
                ),
                "needs_whitelisting": True,
                "data": body,
            }

        if isinstance(body, Mapping) and str(body.get("code")) == SUCCESS_CODE:
            content = body.get("content") or {}
            if isinstance(content, Mapping) and content.get("error"):
                return {"success": False, "error": str(content["error"]), "data": body}
            return {"success": True, "data": content}

        return {
            "success": False,
            "error": _provider_message(body, f"VTpass returned status {response.status_code}"),
            "data": body,
        }

    @read_retry
    async def list_services(self, identifier: Optional[str] = None) -> Dict[str, Any]:
        """List services for a category (GET /services); any 2xx is success."""
        params = {"identifier": identifier} if identifier else None
        response = await self._send("services", "GET", "/services", params=params)
        body = self._decode("services", response)

        if response.is_success:
            content = body.get("content", body) if isinstance(body, Mapping) else body
            return {"success": True, "data": content}
        return {
            "success": False,
            "error": _provider_message(body, f"VTpass returned status {response.status_code}"),
            "data": body,
        }

    @read_retry
    async def list_variations(self, service_id: str) -> Dict[str, Any]:
        """List plans for a service (GET /service-variations)."""
        response = await self._send(
            "variations", "GET", "/service-variations", params={"serviceID": service_id}
        )
        body = self._decode("variations", response)

        if isinstance(body, Mapping) and str(body.get("code")) == SUCCESS_CODE:
            return {"success": True, "data": body.get("content")}
        return {
            "success": False,
            "error": _provider_message(body, "Failed to fetch service variations"),
            "data": body,
        }

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None
