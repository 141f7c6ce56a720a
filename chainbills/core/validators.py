"""
Request validators for purchase submissions.

Each service type has its own input contract. Validation runs before any
side effect: a rejected payload never creates an order and never reaches
the fulfillment provider.
"""
from typing import Any, ClassVar, Dict, Mapping, Optional, Set, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from chainbills.config import Settings, get_settings
from chainbills.core.chains import SUPPORTED_CHAIN_IDS, is_supported_chain
from chainbills.core.exceptions import ValidationError
from chainbills.core.states import OnChainStatus, ServiceType, VtpassStatus

# Error types that mean "the caller did not send it"
_MISSING_ERROR_TYPES = {"missing", "string_too_short"}


class PurchaseRequest(BaseModel):
    """Fields shared by every purchase, keyed by their wire names."""

    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        coerce_numbers_to_str=True,
        extra="ignore",
        frozen=True,
        allow_inf_nan=False,
    )

    service_type: ClassVar[ServiceType]
    identifier_attr: ClassVar[str] = "phone"

    request_id: str = Field(..., alias="requestId", min_length=1)
    service_id: str = Field(..., alias="serviceID", min_length=1)
    amount_naira: float = Field(..., alias="amount", gt=0)
    crypto_used: float = Field(..., alias="cryptoUsed", gt=0)
    crypto_symbol: str = Field(..., alias="cryptoSymbol", min_length=1)
    transaction_hash: str = Field(..., alias="transactionHash", min_length=1)
    user_address: str = Field(..., alias="userAddress", min_length=1)
    chain_id: int = Field(..., alias="chainId", gt=0)
    chain_name: str = Field(..., alias="chainName", min_length=1)
    on_chain_status: OnChainStatus = Field(default=OnChainStatus.CONFIRMED, alias="onChainStatus")
    variation_code: Optional[str] = Field(default=None, alias="variation_code")
    phone: Optional[str] = Field(default=None, alias="phone")

    @field_validator("user_address", "transaction_hash")
    @classmethod
    def lowercase(cls, v: str) -> str:
        return v.lower()

    @property
    def customer_identifier(self) -> str:
        return getattr(self, self.identifier_attr)

    def to_order_fields(self) -> Dict[str, Any]:
        """Columns for the initial pending order row."""
        return {
            "request_id": self.request_id,
            "user_address": self.user_address,
            "transaction_hash": self.transaction_hash,
            "service_type": self.service_type.value,
            "service_id": self.service_id,
            "variation_code": self.variation_code,
            "customer_identifier": self.customer_identifier,
            "phone": self.phone,
            "amount_naira": self.amount_naira,
            "crypto_used": self.crypto_used,
            "crypto_symbol": self.crypto_symbol,
            "chain_id": self.chain_id,
            "chain_name": self.chain_name,
            "on_chain_status": self.on_chain_status.value,
            "vtpass_status": VtpassStatus.PENDING.value,
        }

    def to_vtpass_params(self) -> Dict[str, Any]:
        """Body for the provider's purchase call."""
        amount = self.amount_naira
        params: Dict[str, Any] = {
            "request_id": self.request_id,
            "serviceID": self.service_id,
            "billersCode": self.customer_identifier,
            "amount": int(amount) if amount.is_integer() else amount,
            "phone": self.phone or self.customer_identifier,
        }
        if self.variation_code:
            params["variation_code"] = self.variation_code
        return params


class AirtimePurchase(PurchaseRequest):
    service_type = ServiceType.AIRTIME

    phone: str = Field(..., alias="phone", min_length=1)


class InternetPurchase(PurchaseRequest):
    service_type = ServiceType.INTERNET

    phone: str = Field(..., alias="phone", min_length=1)
    variation_code: str = Field(..., alias="variation_code", min_length=1)


class ElectricityPurchase(PurchaseRequest):
    service_type = ServiceType.ELECTRICITY
    identifier_attr = "meter_number"

    meter_number: str = Field(..., alias="meter_number", min_length=1)
    variation_code: str = Field(..., alias="variation_code", min_length=1)
    phone: str = Field(..., alias="phone", min_length=1)


class TvPurchase(PurchaseRequest):
    service_type = ServiceType.TV
    identifier_attr = "billers_code"

    billers_code: str = Field(..., alias="billersCode", min_length=1)
    variation_code: str = Field(..., alias="variation_code", min_length=1)
    phone: str = Field(..., alias="phone", min_length=1)


PURCHASE_MODELS: Dict[ServiceType, Type[PurchaseRequest]] = {
    ServiceType.AIRTIME: AirtimePurchase,
    ServiceType.INTERNET: InternetPurchase,
    ServiceType.ELECTRICITY: ElectricityPurchase,
    ServiceType.TV: TvPurchase,
}


def extract_request_id(payload: Any) -> Optional[str]:
    """Best-effort requestId for echoing back on every response path."""
    if isinstance(payload, Mapping):
        value = payload.get("requestId")
        if value is not None and value != "":
            return str(value)
    return None


def resolve_service_type(service_type: Any, request_id: Optional[str] = None) -> ServiceType:
    try:
        return ServiceType(service_type)
    except ValueError:
        raise ValidationError(
            f"Unsupported service type: {service_type}",
            fields={"serviceType"},
            request_id=request_id,
        )


def _split_errors(exc: PydanticValidationError) -> tuple[Set[str], Set[str]]:
    missing: Set[str] = set()
    invalid: Set[str] = set()
    for error in exc.errors():
        field = str(error["loc"][0]) if error["loc"] else "payload"
        if error["type"] in _MISSING_ERROR_TYPES or error.get("input") in (None, ""):
            missing.add(field)
        else:
            invalid.add(field)
    return missing, invalid


def validate_purchase(
    service_type: Any,
    payload: Any,
    settings: Optional[Settings] = None,
) -> PurchaseRequest:
    """
    Validate a raw purchase payload for one service type.

    Args:
        service_type: ServiceType or its string value ("data" maps to internet)
        payload: Decoded JSON body
        settings: Amount/chain policy (defaults to application settings)

    Returns:
        PurchaseRequest: The typed, normalized request

    Raises:
        ValidationError: Carrying the offending field names
    """
    settings = settings or get_settings()
    request_id = extract_request_id(payload)
    model = PURCHASE_MODELS[resolve_service_type(service_type, request_id)]

    if not isinstance(payload, Mapping):
        raise ValidationError("Request body must be a JSON object.", request_id=request_id)

    try:
        request = model.model_validate(dict(payload))
    except PydanticValidationError as e:
        missing, invalid = _split_errors(e)
        if missing:
            message = f"Missing required fields in request body: {', '.join(sorted(missing))}."
        elif invalid == {"amount"}:
            message = "Invalid amount provided."
        else:
            message = f"Invalid value for: {', '.join(sorted(invalid))}."
        raise ValidationError(message, fields=missing | invalid, request_id=request_id)

    minimum = settings.purchase_min_amount_naira
    maximum = settings.purchase_max_amount_naira
    if not minimum <= request.amount_naira <= maximum:
        raise ValidationError(
            f"Amount must be between {minimum:g} and {maximum:g} Naira.",
            fields={"amount"},
            request_id=request_id,
        )

    if request.on_chain_status == OnChainStatus.FAILED:
        raise ValidationError(
            "On-chain payment is marked as failed; nothing to fulfill.",
            fields={"onChainStatus"},
            request_id=request_id,
        )

    if settings.restrict_to_supported_chains and not is_supported_chain(request.chain_id):
        raise ValidationError(
            f"Unsupported chain {request.chain_id}. Supported chains: {SUPPORTED_CHAIN_IDS}",
            fields={"chainId"},
            request_id=request_id,
        )

    return request
