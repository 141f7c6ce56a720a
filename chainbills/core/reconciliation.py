"""
Order reconciliation engine.

Orchestrates one purchase:
1. Validate input
2. Look up the requestId (replay a finished order, refuse anything else)
3. Claim the order with an insert; the unique constraint settles races
4. Call the fulfillment provider at most once, under a timeout
5. Reconcile the provider's answer into the order's final status

A pending order is durable before the provider is called, so every charge
has a record to reconcile against.
"""
import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, NoReturn, Optional

import structlog
from pydantic_core import to_jsonable_python

from chainbills.config import Settings, get_settings
from chainbills.core.exceptions import (
    DuplicateKeyError,
    FulfillmentBusinessError,
    FulfillmentTransportError,
    GatewayError,
    MalformedFulfillmentResponse,
    OrderConflict,
    ReconciliationWriteError,
    ValidationError,
)
from chainbills.core.order_store import SqlOrderStore
from chainbills.core.states import OnChainStatus, ServiceType, VtpassStatus
from chainbills.core.validators import PurchaseRequest, validate_purchase
from chainbills.database.models import Order
from chainbills.integrations.vtpass_client import VTPassClient
from chainbills.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

REPLAY_MESSAGE = "Order already processed successfully"

SUCCESS_MESSAGES = {
    ServiceType.AIRTIME: "Airtime purchased successfully!",
    ServiceType.ELECTRICITY: "Electricity bill paid successfully!",
    ServiceType.INTERNET: "Internet data purchased successfully!",
    ServiceType.TV: "TV subscription paid successfully!",
}

DECLINE_MESSAGES = {
    ServiceType.AIRTIME: "Failed to purchase airtime via VTpass.",
    ServiceType.ELECTRICITY: "Failed to pay electricity bill via VTpass.",
    ServiceType.INTERNET: "Failed to purchase internet data via VTpass.",
    ServiceType.TV: "Failed to pay TV subscription via VTpass.",
}

# Provider keys tried in order for each electricity column
_ELECTRICITY_KEYS = {
    "prepaid_token": ("token", "Token", "mainToken"),
    "units": ("units", "Units", "mainTokenUnits"),
    "kct1": ("kct1", "KCT1"),
    "kct2": ("kct2", "KCT2"),
    "tariff": ("tariff", "Tariff", "tariffIndex"),
    "meter_type": ("meterType", "meter_type"),
    "customer_name": ("customerName", "customer_name", "Customer_Name"),
    "customer_address": ("customerAddress", "customer_address", "Address"),
    "account_number": ("accountNumber", "account_number"),
    "meter_number": ("meterNumber", "meter_number", "MeterNumber"),
    "purchased_code": ("purchased_code",),
}


@dataclass
class PurchaseResult:
    """Outcome of a successful or replayed purchase."""

    request_id: str
    order: Order
    message: str
    replayed: bool = False
    vtpass_data: Optional[Dict[str, Any]] = None
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "status": "success",
            "message": self.message,
            "requestId": self.request_id,
            "orderId": str(self.order.id),
            "order": self.order.to_dict(),
        }
        if self.vtpass_data is not None:
            body["vtpassData"] = self.vtpass_data
        if self.details is not None:
            body["details"] = self.details
        return body


def _jsonable(value: Any) -> Any:
    return to_jsonable_python(value, fallback=repr)


def _first(data: Mapping[str, Any], keys: tuple[str, ...]) -> Optional[Any]:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


def _parse_transaction_date(value: Any) -> datetime:
    # VTpass sends either an ISO string or {"date": "...", "timezone": ...}
    if isinstance(value, Mapping):
        value = value.get("date")
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            parsed = None
        if parsed is not None:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc)


def electricity_fields(request: PurchaseRequest, data: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Columns extracted from a successful electricity payload.

    Provider values win; the request's meter number and variation code fill
    in when the provider omits them.
    """
    fields: Dict[str, Any] = {}
    for column, keys in _ELECTRICITY_KEYS.items():
        value = _first(data, keys)
        if value is not None:
            fields[column] = str(value)
    fields.setdefault("meter_type", request.variation_code)
    fields.setdefault("meter_number", request.customer_identifier)
    fields["transaction_date"] = _parse_transaction_date(data.get("transaction_date"))
    return {k: v for k, v in fields.items() if v is not None}


class OrderReconciliationEngine:
    """
    Runs purchases against the order store and the fulfillment provider.

    Holds no per-request state; one instance serves concurrent requests.
    """

    def __init__(
        self,
        store: SqlOrderStore,
        fulfillment_client: VTPassClient,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.fulfillment_client = fulfillment_client
        self.settings = settings or get_settings()

    async def submit_purchase(self, service_type: Any, payload: Any) -> PurchaseResult:
        """
        Validate, claim, fulfill and reconcile one purchase.

        Args:
            service_type: ServiceType or its wire name ("data" means internet)
            payload: Decoded JSON request body

        Returns:
            PurchaseResult: New success, or replay of a finished order

        Raises:
            ValidationError: Bad payload; nothing persisted
            OrderConflict: requestId or transactionHash already used
            StoreError: Order could not be created; provider not called
            FulfillmentTransportError: Provider unreachable or timed out
            FulfillmentBusinessError: Provider declined
            MalformedFulfillmentResponse: Provider answer unreadable
            ReconciliationWriteError: Provider succeeded but the order was not updated
        """
        start = time.perf_counter()
        try:
            label = ServiceType(service_type).value
        except ValueError:
            label = "unknown"

        try:
            result = await self._submit(service_type, payload)
        except ValidationError:
            metrics.record_purchase(label, "invalid", time.perf_counter() - start)
            raise
        except OrderConflict:
            metrics.record_purchase(label, "conflict", time.perf_counter() - start)
            raise
        except GatewayError:
            metrics.record_purchase(label, "failed", time.perf_counter() - start)
            raise

        metrics.record_purchase(
            label,
            "replayed" if result.replayed else "success",
            time.perf_counter() - start,
            0 if result.replayed else result.order.amount_naira,
        )
        return result

    async def _submit(self, service_type: Any, payload: Any) -> PurchaseResult:
        request = validate_purchase(service_type, payload, self.settings)
        request_id = request.request_id
        log = logger.bind(request_id=request_id, service_type=request.service_type.value)
        log.info("purchase_started", amount_naira=request.amount_naira, chain_id=request.chain_id)

        existing = await self.store.find_by_request_id(request_id)
        if existing is not None:
            return self._resolve_existing(existing)
        metrics.record_idempotency_lookup("miss")

        try:
            order = await self.store.create(request.to_order_fields())
        except DuplicateKeyError as e:
            metrics.record_duplicate_key_race(e.key)
            log.info("purchase_lost_insert_race", key=e.key)
            existing = await self.store.find_by_request_id(request_id)
            if existing is None:
                raise OrderConflict(
                    "This transaction hash has already been used for another order.",
                    request_id=request_id,
                    key=e.key,
                )
            return self._resolve_existing(existing)

        log.info("order_claimed", order_id=str(order.id))

        try:
            response = await asyncio.wait_for(
                self.fulfillment_client.purchase(request.to_vtpass_params()),
                timeout=self.settings.fulfillment_call_timeout_seconds,
            )
        except MalformedFulfillmentResponse as e:
            return await self._reject_malformed(request, e.raw_response)
        except Exception as e:
            return await self._reject_unreachable(request, e)

        return await self._reconcile(request, order, response)

    def _resolve_existing(self, order: Order) -> PurchaseResult:
        if (
            order.vtpass_status == VtpassStatus.SUCCESSFUL.value
            and order.on_chain_status == OnChainStatus.CONFIRMED.value
        ):
            metrics.record_idempotency_lookup("replay")
            logger.info("purchase_replayed", request_id=order.request_id)
            return PurchaseResult(
                request_id=order.request_id,
                order=order,
                message=REPLAY_MESSAGE,
                replayed=True,
                vtpass_data=order.vtpass_response,
            )

        metrics.record_idempotency_lookup("conflict")
        logger.warning(
            "purchase_conflict", request_id=order.request_id, current_status=order.vtpass_status
        )
        raise OrderConflict(
            f"Order with this Request ID already exists. Current status: {order.vtpass_status}",
            request_id=order.request_id,
            current_status=order.vtpass_status,
        )

    async def _reconcile(
        self, request: PurchaseRequest, order: Order, response: Any
    ) -> PurchaseResult:
        success = response.get("success") if isinstance(response, Mapping) else None
        if not isinstance(success, bool):
            return await self._reject_malformed(request, response)

        data = response.get("data")
        if not success:
            return await self._reject_declined(request, response.get("error"), data)

        request_id = request.request_id
        vtpass_data = data if isinstance(data, Mapping) else {}
        patch: Dict[str, Any] = {
            "vtpass_status": VtpassStatus.SUCCESSFUL.value,
            "vtpass_response": _jsonable(data),
        }
        details = None
        if request.service_type == ServiceType.ELECTRICITY:
            patch.update(electricity_fields(request, vtpass_data))
            details = {
                "token": patch.get("prepaid_token"),
                "units": patch.get("units"),
                "amount": vtpass_data.get("amount", request.amount_naira),
            }

        try:
            order = await self.store.update(
                request_id, patch, expected_status=VtpassStatus.PENDING.value
            )
        except GatewayError as e:
            metrics.record_reconciliation_write_failure(VtpassStatus.SUCCESSFUL.value)
            logger.critical(
                "fulfilled_order_not_recorded",
                request_id=request_id,
                error=e.message,
                vtpass_response=patch["vtpass_response"],
            )
            raise ReconciliationWriteError(
                f"Provider succeeded but order update failed: {e.message}",
                request_id=request_id,
            ) from e

        metrics.record_status_transition(VtpassStatus.SUCCESSFUL.value)
        logger.info("purchase_succeeded", request_id=request_id, order_id=str(order.id))
        return PurchaseResult(
            request_id=request_id,
            order=order,
            message=SUCCESS_MESSAGES[request.service_type],
            vtpass_data=_jsonable(data),
            details=details,
        )

    async def _reject_declined(
        self, request: PurchaseRequest, reason: Any, data: Any
    ) -> NoReturn:
        request_id = request.request_id
        fallback = {"message": reason or "VTpass reported failure without specific error."}
        await self._record_failure(
            request_id,
            VtpassStatus.FAILED,
            _jsonable(data) if data else fallback,
            str(reason) if reason else None,
        )
        logger.warning("purchase_declined", request_id=request_id, reason=reason)
        raise FulfillmentBusinessError(
            str(reason) if reason else DECLINE_MESSAGES[request.service_type],
            request_id=request_id,
        )

    async def _reject_malformed(self, request: PurchaseRequest, raw: Any) -> NoReturn:
        request_id = request.request_id
        await self._record_failure(
            request_id,
            VtpassStatus.FAILED_MALFORMED_RESPONSE,
            {"message": "Malformed VTpass response", "rawResponse": _jsonable(raw)},
            "Malformed VTpass response",
        )
        logger.error("purchase_malformed_response", request_id=request_id, raw=_jsonable(raw))
        raise MalformedFulfillmentResponse(
            "VTpass returned an unreadable response. Please contact support with "
            f"Request ID: {request_id}",
            request_id=request_id,
            raw_response=raw,
        )

    async def _reject_unreachable(self, request: PurchaseRequest, error: Exception) -> NoReturn:
        request_id = request.request_id
        if isinstance(error, asyncio.TimeoutError):
            reason = (
                f"timed out after {self.settings.fulfillment_call_timeout_seconds:g}s"
            )
        else:
            reason = str(error) or type(error).__name__
        diagnostic = f"VTpass API call failed: {reason}"
        await self._record_failure(
            request_id, VtpassStatus.FAILED_API_CALL, {"message": diagnostic}, diagnostic
        )
        logger.error(
            "purchase_provider_unreachable",
            request_id=request_id,
            error=reason,
            error_type=type(error).__name__,
        )
        raise FulfillmentTransportError(
            f"Failed to communicate with VTpass for {request.service_type.value} purchase. "
            f"Request ID: {request_id}",
            request_id=request_id,
            original_error=error,
        ) from error

    async def _record_failure(
        self,
        request_id: str,
        status: VtpassStatus,
        vtpass_response: Any,
        error_message: Optional[str],
    ) -> None:
        """Best-effort write of a failed outcome; never masks the caller's error."""
        try:
            await self.store.update(
                request_id,
                {
                    "vtpass_status": status.value,
                    "vtpass_response": vtpass_response,
                    "error_message": error_message,
                },
                expected_status=VtpassStatus.PENDING.value,
            )
        except GatewayError as e:
            metrics.record_reconciliation_write_failure(status.value)
            logger.error(
                "failed_order_not_recorded",
                request_id=request_id,
                target_status=status.value,
                error=e.message,
            )
            return
        metrics.record_status_transition(status.value)
