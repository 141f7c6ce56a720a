"""
Pydantic schemas for API request/response models.

Purchase request bodies are validated by ``chainbills.core.validators`` so
that every rejection carries the caller's requestId; the models here
document responses and the catalog endpoints.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class PurchaseResponse(_WireModel):
    """Response schema for a successful or replayed purchase."""

    status: str = Field(default="success", description="Always 'success'")
    message: str = Field(..., description="Human readable outcome")
    request_id: str = Field(..., alias="requestId", description="Caller's request identifier")
    order_id: str = Field(..., alias="orderId", description="Order identifier")
    order: Dict[str, Any] = Field(..., description="The stored order")
    vtpass_data: Optional[Any] = Field(
        default=None, alias="vtpassData", description="Provider payload"
    )
    details: Optional[Dict[str, Any]] = Field(
        default=None, description="Token and units for electricity purchases"
    )

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "status": "success",
                    "message": "Airtime purchased successfully!",
                    "requestId": "req-20250106-0001",
                    "orderId": "123e4567-e89b-12d3-a456-426614174000",
                    "order": {"requestId": "req-20250106-0001", "vtpassStatus": "successful"},
                    "vtpassData": {"code": "000", "response_description": "TRANSACTION SUCCESSFUL"},
                }
            ]
        },
    )


class ErrorResponse(_WireModel):
    """Response schema for every failed request."""

    status: str = Field(default="error", description="Always 'error'")
    message: str = Field(..., description="User-safe error message")
    request_id: Optional[str] = Field(default=None, alias="requestId")
    error_code: str = Field(..., alias="errorCode", description="Stable error code")
    fields: Optional[List[str]] = Field(default=None, description="Offending request fields")
    current_status: Optional[str] = Field(
        default=None, alias="currentStatus", description="Status of a conflicting order"
    )
    details: Optional[Dict[str, Any]] = Field(
        default=None, description="Diagnostics (non-production only)"
    )


class VerifyCustomerRequest(_WireModel):
    """Request schema for meter/smartcard verification."""

    service_id: str = Field(..., alias="serviceID", min_length=1)
    billers_code: str = Field(..., alias="billersCode", min_length=1)
    type: Optional[str] = Field(default=None, description="'prepaid'/'postpaid' for meters")

    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        json_schema_extra={
            "examples": [
                {"serviceID": "ikeja-electric", "billersCode": "1111111111111", "type": "prepaid"},
                {"serviceID": "dstv", "billersCode": "1212121212"},
            ]
        },
    )


class CatalogResponse(BaseModel):
    """Response schema for provider catalog lookups."""

    success: bool
    content: Optional[Any] = None
    error: Optional[str] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class OrderListResponse(BaseModel):
    """Response schema for paged order listings."""

    orders: List[Dict[str, Any]]
    pagination: Pagination
    filters: Dict[str, Any] = Field(default_factory=dict)


class OrderDetailResponse(BaseModel):
    order: Dict[str, Any]


class HistoryResponse(BaseModel):
    success: bool = True
    orders: List[Dict[str, Any]]


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")
