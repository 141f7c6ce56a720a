"""
API routes for utility purchases, the VTpass catalog and order history.
"""
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from chainbills.config import get_settings
from chainbills.core.exceptions import GatewayError, OrderNotFound, ValidationError
from chainbills.core.order_store import OrderFilter, SqlOrderStore
from chainbills.core.reconciliation import OrderReconciliationEngine
from chainbills.core.states import ServiceType
from chainbills.core.time_range import RANGE_HELP, parse_time_range
from chainbills.core.validators import extract_request_id
from chainbills.database.connection import get_session_factory
from chainbills.integrations.vtpass_client import VTPassClient
from chainbills.monitoring.health import HealthCheck

from .schemas import (
    CatalogResponse,
    ErrorResponse,
    HealthCheckResponse,
    HistoryResponse,
    OrderDetailResponse,
    OrderListResponse,
    PurchaseResponse,
    VerifyCustomerRequest,
)

logger = structlog.get_logger(__name__)

purchase_router = APIRouter(prefix="/api", tags=["purchases"])
catalog_router = APIRouter(prefix="/api/vtpass", tags=["catalog"])
order_router = APIRouter(prefix="/api", tags=["orders"])
monitoring_router = APIRouter(tags=["monitoring"])

PURCHASE_RESPONSES: Dict[int | str, Dict[str, Any]] = {
    400: {"model": ErrorResponse, "description": "Invalid request"},
    409: {"model": ErrorResponse, "description": "requestId or transactionHash already used"},
    500: {"model": ErrorResponse, "description": "Fulfillment or storage failure"},
}

# Wire names accepted by ?sort=, mapped to store columns
SORT_FIELDS = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "amountNaira": "amount_naira",
    "created_at": "created_at",
    "updated_at": "updated_at",
    "amount_naira": "amount_naira",
}

HISTORY_LIMIT = 100

_fulfillment_client: Optional[VTPassClient] = None


def get_order_store() -> SqlOrderStore:
    return SqlOrderStore(get_session_factory())


def get_fulfillment_client() -> VTPassClient:
    """Shared VTpass client; one connection pool per process."""
    global _fulfillment_client
    if _fulfillment_client is None:
        _fulfillment_client = VTPassClient()
    return _fulfillment_client


async def close_fulfillment_client() -> None:
    global _fulfillment_client
    if _fulfillment_client is not None:
        await _fulfillment_client.aclose()
        _fulfillment_client = None


def get_reconciliation_engine(
    store: SqlOrderStore = Depends(get_order_store),
    client: VTPassClient = Depends(get_fulfillment_client),
) -> OrderReconciliationEngine:
    return OrderReconciliationEngine(store, client)


def get_health_check() -> HealthCheck:
    return HealthCheck()


def _error_response(error: GatewayError) -> JSONResponse:
    return JSONResponse(
        status_code=error.http_status,
        content=error.to_response(include_details=not get_settings().is_production),
    )


async def _handle_purchase(
    service_type: ServiceType, payload: Any, engine: OrderReconciliationEngine
) -> Any:
    request_id = extract_request_id(payload)
    try:
        result = await engine.submit_purchase(service_type, payload)
    except GatewayError as e:
        log = logger.warning if e.http_status < 500 else logger.error
        log(
            "api_purchase_failed",
            request_id=e.request_id or request_id,
            service_type=service_type.value,
            error_code=e.error_code,
            error=e.message,
        )
        if e.request_id is None:
            e.request_id = request_id
        return _error_response(e)
    except Exception as e:
        logger.exception(
            "api_purchase_unexpected_error",
            request_id=request_id,
            service_type=service_type.value,
            error=str(e),
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "status": "error",
                "message": "An unexpected error occurred. Please try again later.",
                "requestId": request_id,
                "errorCode": "internal_error",
            },
        )

    logger.info(
        "api_purchase_succeeded",
        request_id=result.request_id,
        service_type=service_type.value,
        replayed=result.replayed,
    )
    return result.to_dict()


@purchase_router.post(
    "/airtime",
    response_model=PurchaseResponse,
    responses=PURCHASE_RESPONSES,
    summary="Buy airtime",
)
async def purchase_airtime(
    payload: Any = Body(...),
    engine: OrderReconciliationEngine = Depends(get_reconciliation_engine),
) -> Any:
    return await _handle_purchase(ServiceType.AIRTIME, payload, engine)


@purchase_router.post(
    "/electricity",
    response_model=PurchaseResponse,
    responses=PURCHASE_RESPONSES,
    summary="Pay an electricity bill",
)
async def purchase_electricity(
    payload: Any = Body(...),
    engine: OrderReconciliationEngine = Depends(get_reconciliation_engine),
) -> Any:
    """Returns the prepaid token and units under ``details`` on success."""
    return await _handle_purchase(ServiceType.ELECTRICITY, payload, engine)


@purchase_router.post(
    "/internet",
    response_model=PurchaseResponse,
    responses=PURCHASE_RESPONSES,
    summary="Buy an internet data bundle",
)
@purchase_router.post(
    "/data",
    response_model=PurchaseResponse,
    responses=PURCHASE_RESPONSES,
    summary="Buy an internet data bundle (alias of /api/internet)",
)
async def purchase_internet(
    payload: Any = Body(...),
    engine: OrderReconciliationEngine = Depends(get_reconciliation_engine),
) -> Any:
    return await _handle_purchase(ServiceType.INTERNET, payload, engine)


@purchase_router.post(
    "/tv",
    response_model=PurchaseResponse,
    responses=PURCHASE_RESPONSES,
    summary="Pay a TV subscription",
)
async def purchase_tv(
    payload: Any = Body(...),
    engine: OrderReconciliationEngine = Depends(get_reconciliation_engine),
) -> Any:
    return await _handle_purchase(ServiceType.TV, payload, engine)


@catalog_router.get("/services", response_model=CatalogResponse, summary="List VTpass services")
async def list_services(
    identifier: Optional[str] = Query(default=None, description="e.g. 'data', 'tv-subscription'"),
    client: VTPassClient = Depends(get_fulfillment_client),
) -> Any:
    result = await client.list_services(identifier)
    if not result["success"]:
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"success": False, "error": result["error"], "vtpassResponse": result["data"]},
        )
    return {"success": True, "content": result["data"]}


@catalog_router.get(
    "/service-variations", response_model=CatalogResponse, summary="List plans for a service"
)
async def list_service_variations(
    service_id: str = Query(..., alias="serviceID", min_length=1),
    client: VTPassClient = Depends(get_fulfillment_client),
) -> Any:
    result = await client.list_variations(service_id)
    if not result["success"]:
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"success": False, "error": result["error"], "vtpassResponse": result["data"]},
        )
    return {"success": True, "content": result["data"]}


@catalog_router.post("/verify", summary="Verify a meter or smartcard number")
async def verify_customer(
    request: VerifyCustomerRequest,
    client: VTPassClient = Depends(get_fulfillment_client),
) -> Any:
    result = await client.verify_customer(request.service_id, request.billers_code, request.type)
    if result["success"]:
        return {"success": True, "data": result["data"]}

    if result.get("needs_whitelisting"):
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={
                "success": False,
                "error": result["error"],
                "vtpassResponse": result["data"],
                "needsWhitelisting": True,
            },
        )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "error": result["error"], "vtpassResponse": result["data"]},
    )


@order_router.get("/orders", response_model=OrderListResponse, summary="List orders")
async def list_orders(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1),
    time_range: Optional[str] = Query(default=None, alias="range"),
    user: Optional[str] = Query(default=None),
    chain_id: Optional[int] = Query(default=None, alias="chainId"),
    sort: str = Query(default="createdAt"),
    order: str = Query(default="desc"),
    service_type: Optional[str] = Query(default=None, alias="serviceType"),
    vtpass_status: Optional[str] = Query(default=None, alias="vtpassStatus"),
    store: SqlOrderStore = Depends(get_order_store),
) -> Dict[str, Any]:
    """
    Page through orders.

    ``range`` accepts relative windows (``12h``, ``7d``, ``2w``, ``6m``,
    ``day``, ``month``, ``year``) or calendar periods (``2025``,
    ``2025-12``, ``2025-12-10``, ``12/10/2025``).
    """
    order_filter = OrderFilter(
        user_address=user,
        chain_id=chain_id,
        service_type=service_type,
        vtpass_status=vtpass_status,
    )
    if time_range:
        window = parse_time_range(time_range)
        if window is None:
            raise ValidationError(RANGE_HELP, fields={"range"})
        order_filter.created_from, order_filter.created_before = window

    result = await store.list_by_filter(
        order_filter,
        page=page,
        limit=limit,
        sort=SORT_FIELDS.get(sort, "created_at"),
        ascending=order.lower() == "asc",
    )

    body = result.to_dict()
    body["filters"] = {
        key: value
        for key, value in (
            ("chainId", chain_id),
            ("range", time_range),
            ("user", user),
            ("serviceType", service_type),
            ("vtpassStatus", vtpass_status),
        )
        if value is not None
    }
    return body


@order_router.get(
    "/orders/user/{user_address}",
    response_model=OrderListResponse,
    summary="List a wallet's orders",
)
async def list_user_orders(
    user_address: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1),
    chain_id: Optional[int] = Query(default=None, alias="chainId"),
    store: SqlOrderStore = Depends(get_order_store),
) -> Dict[str, Any]:
    result = await store.list_by_user(user_address, page=page, limit=limit, chain_id=chain_id)
    body = result.to_dict()
    body["filters"] = {"user": user_address.lower()}
    if chain_id is not None:
        body["filters"]["chainId"] = chain_id
    return body


@order_router.get(
    "/orders/{request_id}",
    response_model=OrderDetailResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get one order by requestId",
)
async def get_order(
    request_id: str,
    chain_id: Optional[int] = Query(default=None, alias="chainId"),
    store: SqlOrderStore = Depends(get_order_store),
) -> Dict[str, Any]:
    order = await store.find_by_request_id(request_id, chain_id=chain_id)
    if order is None:
        raise OrderNotFound("Order not found", request_id=request_id)
    return {"order": order.to_dict()}


@order_router.get("/history", response_model=HistoryResponse, summary="Latest orders of a wallet")
async def history(
    user_address: Optional[str] = Query(default=None, alias="userAddress"),
    store: SqlOrderStore = Depends(get_order_store),
) -> Dict[str, Any]:
    if not user_address:
        raise ValidationError("userAddress is required", fields={"userAddress"})
    result = await store.list_by_user(user_address, page=1, limit=HISTORY_LIMIT)
    return {"success": True, "orders": [order.to_dict() for order in result.orders]}


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    return await health_check.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
)
async def liveness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
)
async def readiness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    result = await health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
