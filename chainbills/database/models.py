"""SQLAlchemy database models for the purchase gateway."""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from chainbills.core.states import OnChainStatus, VtpassStatus

JSONType = JSON().with_variant(JSONB(), "postgresql")

# Electricity fields are filled from the provider payload on success only.
ELECTRICITY_FIELDS = (
    "prepaid_token",
    "units",
    "kct1",
    "kct2",
    "tariff",
    "meter_type",
    "customer_name",
    "customer_address",
    "account_number",
    "meter_number",
    "transaction_date",
    "purchased_code",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _sql_in(values: Any) -> str:
    return ", ".join(f"'{v.value}'" for v in values)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class Order(Base):
    """
    Purchase orders table.

    One row per purchase attempt, keyed by the caller's requestId. The row is
    claimed before the provider is called and then reconciled with the
    provider's answer.
    """

    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    request_id: Mapped[str] = mapped_column(String(255), nullable=False)
    user_address: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    transaction_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    service_type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    service_id: Mapped[str] = mapped_column(String(100), nullable=False)
    variation_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    customer_identifier: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    amount_naira: Mapped[float] = mapped_column(Float, nullable=False)
    crypto_used: Mapped[float] = mapped_column(Float, nullable=False)
    crypto_symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    # Nullable only for legacy rows awaiting the chain backfill
    chain_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    chain_name: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    on_chain_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=OnChainStatus.PENDING.value
    )
    vtpass_status: Mapped[str] = mapped_column(
        String(40), nullable=False, default=VtpassStatus.PENDING.value, index=True
    )
    vtpass_response: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    prepaid_token: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    units: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    kct1: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    kct2: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    tariff: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    meter_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    customer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    account_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    meter_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    transaction_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    purchased_code: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("request_id", name="uq_orders_request_id"),
        UniqueConstraint("transaction_hash", name="uq_orders_transaction_hash"),
        CheckConstraint("amount_naira > 0", name="positive_amount"),
        CheckConstraint(
            f"vtpass_status IN ({_sql_in(VtpassStatus)})",
            name="valid_vtpass_status",
        ),
        CheckConstraint(
            f"on_chain_status IN ({_sql_in(OnChainStatus)})",
            name="valid_on_chain_status",
        ),
        Index("idx_orders_user_created", "user_address", "created_at"),
        Index("idx_orders_chain_created", "chain_id", "created_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the wire names the storefront expects."""
        data: Dict[str, Any] = {
            "orderId": str(self.id),
            "requestId": self.request_id,
            "userAddress": self.user_address,
            "transactionHash": self.transaction_hash,
            "serviceType": self.service_type,
            "serviceID": self.service_id,
            "variationCode": self.variation_code,
            "customerIdentifier": self.customer_identifier,
            "phone": self.phone,
            "amountNaira": self.amount_naira,
            "cryptoUsed": self.crypto_used,
            "cryptoSymbol": self.crypto_symbol,
            "chainId": self.chain_id,
            "chainName": self.chain_name,
            "onChainStatus": self.on_chain_status,
            "vtpassStatus": self.vtpass_status,
            "vtpassResponse": self.vtpass_response,
            "errorMessage": self.error_message,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
        for field in ELECTRICITY_FIELDS:
            value = getattr(self, field)
            if value is not None:
                data[field] = value.isoformat() if isinstance(value, datetime) else value
        return data

    def __repr__(self) -> str:
        """String representation of Order."""
        return (
            f"<Order(request_id={self.request_id}, service_type={self.service_type}, "
            f"amount={self.amount_naira}, vtpass_status={self.vtpass_status})>"
        )
