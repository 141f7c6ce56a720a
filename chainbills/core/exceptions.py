"""
Exception taxonomy for the purchase gateway.

Every exception carries:
1. An error code (stable, for client handling)
2. A user message (safe to show to users)
3. The HTTP status the surface should answer with
4. The caller's requestId, so support can trace the order
"""
from typing import Any, Dict, Iterable, Optional


class GatewayError(Exception):
    """
    Base exception for all gateway errors.

    ``message`` is the internal diagnostic; ``user_message`` is what the
    caller sees. Extra keyword arguments are kept as ``details``.
    """

    error_code = "gateway_error"
    http_status = 500

    def __init__(
        self,
        message: str,
        request_id: Optional[str] = None,
        user_message: Optional[str] = None,
        **details: Any,
    ):
        super().__init__(message)
        self.message = message
        self.request_id = request_id
        self.user_message = user_message or message
        self.details = details

    def to_response(self, include_details: bool = False) -> Dict[str, Any]:
        """Convert to the JSON body returned by the HTTP surface."""
        body: Dict[str, Any] = {
            "status": "error",
            "message": self.user_message,
            "requestId": self.request_id,
            "errorCode": self.error_code,
        }
        if include_details:
            body["details"] = {"error": self.message, "type": type(self).__name__, **self.details}
        return body


# ============================================================================
# REQUEST ERRORS (no side effects)
# ============================================================================


class ValidationError(GatewayError):
    """Structurally invalid purchase request; nothing was persisted."""

    error_code = "validation_error"
    http_status = 400

    def __init__(
        self,
        message: str,
        fields: Iterable[str] = (),
        request_id: Optional[str] = None,
        **details: Any,
    ):
        self.fields = frozenset(fields)
        super().__init__(message, request_id=request_id, fields=sorted(self.fields), **details)

    def to_response(self, include_details: bool = False) -> Dict[str, Any]:
        body = super().to_response(include_details)
        body["fields"] = sorted(self.fields)
        return body


class OrderConflict(GatewayError):
    """The requestId is taken by an order that cannot be replayed."""

    error_code = "order_conflict"
    http_status = 409

    def __init__(
        self,
        message: str,
        request_id: Optional[str] = None,
        current_status: Optional[str] = None,
        **details: Any,
    ):
        self.current_status = current_status
        super().__init__(message, request_id=request_id, current_status=current_status, **details)

    def to_response(self, include_details: bool = False) -> Dict[str, Any]:
        body = super().to_response(include_details)
        if self.current_status is not None:
            body["currentStatus"] = self.current_status
        return body


class OrderNotFound(GatewayError):
    """No order exists for the given key."""

    error_code = "order_not_found"
    http_status = 404


# ============================================================================
# PERSISTENCE ERRORS
# ============================================================================


class StoreError(GatewayError):
    """Persistence failure. Safe to retry when raised before the fulfillment call."""

    error_code = "store_error"
    http_status = 500

    def __init__(self, message: str, request_id: Optional[str] = None, **details: Any):
        super().__init__(
            message,
            request_id=request_id,
            user_message=details.pop(
                "user_message", "We could not record your order. Please try again."
            ),
            **details,
        )


class DuplicateKeyError(StoreError):
    """A unique key (requestId or transactionHash) is already claimed by another order."""

    error_code = "duplicate_key"
    http_status = 409

    def __init__(self, key: str, value: str, request_id: Optional[str] = None):
        self.key = key
        self.value = value
        super().__init__(
            f"Duplicate {key}: {value}",
            request_id=request_id,
            user_message=f"An order with this {key} already exists.",
            key=key,
        )


class InvalidStateTransition(StoreError):
    """The order is not in the state the update expected."""

    error_code = "invalid_state_transition"
    http_status = 409

    def __init__(
        self,
        request_id: str,
        current_status: str,
        target_status: Optional[str] = None,
    ):
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            f"Cannot move order {request_id} from {current_status} to {target_status}",
            request_id=request_id,
            user_message=f"Order is already {current_status}.",
            current_status=current_status,
            target_status=target_status,
        )


class ReconciliationWriteError(StoreError):
    """
    The provider answered but the order record could not be updated.

    This is the one failure where an external charge may have happened
    without a matching record, so the caller is sent to support.
    """

    error_code = "reconciliation_write_failed"
    http_status = 500

    def __init__(self, message: str, request_id: Optional[str] = None, **details: Any):
        super().__init__(
            message,
            request_id=request_id,
            user_message=(
                "Your purchase was processed by the provider but we could not update "
                f"your order record. Please contact support with Request ID: {request_id}"
            ),
            **details,
        )


# ============================================================================
# FULFILLMENT ERRORS
# ============================================================================


class FulfillmentError(GatewayError):
    """Base class for fulfillment provider failures."""

    error_code = "fulfillment_error"
    http_status = 500


class FulfillmentTransportError(FulfillmentError):
    """Provider unreachable, timed out, or answered with a non-JSON body."""

    error_code = "fulfillment_transport_error"

    def __init__(
        self,
        message: str,
        request_id: Optional[str] = None,
        original_error: Optional[Exception] = None,
        **details: Any,
    ):
        self.original_error = original_error
        super().__init__(message, request_id=request_id, **details)


class FulfillmentBusinessError(FulfillmentError):
    """Provider responded but declined the purchase."""

    error_code = "fulfillment_declined"


class MalformedFulfillmentResponse(FulfillmentError):
    """Provider response lacks the expected success indicator."""

    error_code = "fulfillment_malformed_response"

    def __init__(
        self,
        message: str,
        request_id: Optional[str] = None,
        raw_response: Any = None,
        **details: Any,
    ):
        self.raw_response = raw_response
        super().__init__(message, request_id=request_id, **details)
