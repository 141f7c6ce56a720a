"""Core purchase gateway logic."""
from .exceptions import (
    DuplicateKeyError,
    FulfillmentBusinessError,
    FulfillmentTransportError,
    GatewayError,
    MalformedFulfillmentResponse,
    OrderConflict,
    OrderNotFound,
    ReconciliationWriteError,
    StoreError,
    ValidationError,
)
from .states import OnChainStatus, ServiceType, VtpassStatus

__all__ = [
    "DuplicateKeyError",
    "FulfillmentBusinessError",
    "FulfillmentTransportError",
    "GatewayError",
    "MalformedFulfillmentResponse",
    "OnChainStatus",
    "OrderConflict",
    "OrderNotFound",
    "ReconciliationWriteError",
    "ServiceType",
    "StoreError",
    "ValidationError",
    "VtpassStatus",
]
