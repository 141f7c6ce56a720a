"""
Order persistence.

Every operation runs in its own short transaction: a claimed order is
committed before the fulfillment provider is called, and each reconciliation
write is committed on its own. Uniqueness of requestId and transactionHash
is enforced by the database, never by a read-then-write check.
"""
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chainbills.core.exceptions import (
    DuplicateKeyError,
    InvalidStateTransition,
    OrderNotFound,
    StoreError,
)
from chainbills.core.states import can_transition
from chainbills.database.models import Order

logger = structlog.get_logger(__name__)

SORTABLE_COLUMNS = {
    "created_at": Order.created_at,
    "updated_at": Order.updated_at,
    "amount_naira": Order.amount_naira,
}

MAX_PAGE_SIZE = 100

# Unique keys in the order they are matched against the driver's error text
_UNIQUE_KEYS = ("transaction_hash", "request_id")


@dataclass
class OrderFilter:
    """Optional predicates for order listings; None means "any"."""

    user_address: Optional[str] = None
    chain_id: Optional[int] = None
    service_type: Optional[str] = None
    vtpass_status: Optional[str] = None
    created_from: Optional[datetime] = None
    created_before: Optional[datetime] = None


@dataclass
class OrderPage:
    orders: List[Order] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orders": [order.to_dict() for order in self.orders],
            "pagination": {
                "total": self.total,
                "page": self.page,
                "limit": self.limit,
                "pages": self.pages,
            },
        }


def _duplicate_key(error: IntegrityError) -> Optional[str]:
    text = str(error.orig if error.orig is not None else error).lower()
    for key in _UNIQUE_KEYS:
        if key in text or f"uq_orders_{key}" in text:
            return key
    return None


class SqlOrderStore:
    """Order store backed by a SQLAlchemy async session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(self, fields: Mapping[str, Any]) -> Order:
        """
        Insert a new order.

        Args:
            fields: Column values, keyed by attribute name

        Returns:
            Order: The committed order

        Raises:
            DuplicateKeyError: requestId or transactionHash already claimed
            StoreError: Any other persistence failure
        """
        request_id = fields.get("request_id")
        order = Order(**fields)
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(order)
        except IntegrityError as e:
            key = _duplicate_key(e)
            if key is None:
                logger.error("order_insert_rejected", request_id=request_id, error=str(e.orig))
                raise StoreError(f"Order insert rejected: {e.orig}", request_id=request_id)
            logger.info("order_duplicate_key", request_id=request_id, key=key)
            raise DuplicateKeyError(key, str(fields.get(key)), request_id=request_id)
        except SQLAlchemyError as e:
            logger.error("order_insert_failed", request_id=request_id, error=str(e))
            raise StoreError(f"Failed to create order: {e}", request_id=request_id)

        logger.info("order_created", request_id=request_id, order_id=str(order.id))
        return order

    async def find_by_request_id(
        self, request_id: str, chain_id: Optional[int] = None
    ) -> Optional[Order]:
        stmt = select(Order).where(Order.request_id == request_id)
        if chain_id is not None:
            stmt = stmt.where(Order.chain_id == chain_id)
        return await self._scalar(stmt, request_id)

    async def find_by_transaction_hash(self, transaction_hash: str) -> Optional[Order]:
        stmt = select(Order).where(Order.transaction_hash == transaction_hash.lower())
        return await self._scalar(stmt, None)

    async def update(
        self,
        request_id: str,
        patch: Mapping[str, Any],
        expected_status: Optional[str] = None,
    ) -> Order:
        """
        Apply a patch to one order inside a row-locked transaction.

        Args:
            request_id: Order key
            patch: Attribute values to set
            expected_status: If given, the vtpass_status the order must still have

        Returns:
            Order: The updated order

        Raises:
            OrderNotFound: No order with this requestId
            InvalidStateTransition: Order left ``expected_status`` concurrently, or
                the patch moves vtpass_status along a forbidden transition
            StoreError: Any other persistence failure
        """
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    stmt = select(Order).where(Order.request_id == request_id).with_for_update()
                    order = (await session.execute(stmt)).scalar_one_or_none()
                    if order is None:
                        raise OrderNotFound(f"Order {request_id} not found", request_id=request_id)
                    target = patch.get("vtpass_status")
                    if (expected_status is not None and order.vtpass_status != expected_status) or (
                        target is not None
                        and target != order.vtpass_status
                        and not can_transition(order.vtpass_status, target)
                    ):
                        raise InvalidStateTransition(request_id, order.vtpass_status, target)
                    for key, value in patch.items():
                        setattr(order, key, value)
        except SQLAlchemyError as e:
            logger.error("order_update_failed", request_id=request_id, error=str(e))
            raise StoreError(f"Failed to update order: {e}", request_id=request_id)

        logger.info(
            "order_updated",
            request_id=request_id,
            fields=sorted(patch),
            vtpass_status=order.vtpass_status,
        )
        return order

    async def list_by_user(
        self,
        user_address: str,
        page: int = 1,
        limit: int = 20,
        chain_id: Optional[int] = None,
    ) -> OrderPage:
        return await self.list_by_filter(
            OrderFilter(user_address=user_address, chain_id=chain_id), page=page, limit=limit
        )

    async def list_by_filter(
        self,
        order_filter: Optional[OrderFilter] = None,
        page: int = 1,
        limit: int = 20,
        sort: str = "created_at",
        ascending: bool = False,
    ) -> OrderPage:
        """
        Page through orders matching a filter.

        Unknown sort columns fall back to created_at; limit is clamped to 1-100.
        """
        order_filter = order_filter or OrderFilter()
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        column = SORTABLE_COLUMNS.get(sort, Order.created_at)

        conditions = []
        if order_filter.user_address:
            conditions.append(Order.user_address == order_filter.user_address.lower())
        if order_filter.chain_id is not None:
            conditions.append(Order.chain_id == order_filter.chain_id)
        if order_filter.service_type:
            conditions.append(Order.service_type == order_filter.service_type)
        if order_filter.vtpass_status:
            conditions.append(Order.vtpass_status == order_filter.vtpass_status)
        if order_filter.created_from is not None:
            conditions.append(Order.created_at >= order_filter.created_from)
        if order_filter.created_before is not None:
            conditions.append(Order.created_at < order_filter.created_before)

        count_stmt = select(func.count()).select_from(Order).where(*conditions)
        stmt = (
            select(Order)
            .where(*conditions)
            .order_by(column.asc() if ascending else column.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        try:
            async with self._session_factory() as session:
                total = (await session.execute(count_stmt)).scalar_one()
                orders = list((await session.execute(stmt)).scalars().all())
        except SQLAlchemyError as e:
            logger.error("order_listing_failed", error=str(e))
            raise StoreError(f"Failed to list orders: {e}")

        return OrderPage(orders=orders, total=total, page=page, limit=limit)

    async def backfill_chain_info(self, cutoff: datetime, chain_id: int, chain_name: str) -> int:
        """
        Assign chain info to orders created before ``cutoff`` that lack it.

        Rows that already carry both fields are left alone, so running this
        twice changes nothing the second time.

        Returns:
            int: Number of orders updated
        """
        stmt = (
            update(Order)
            .where(
                Order.created_at < cutoff,
                or_(Order.chain_id.is_(None), Order.chain_name.is_(None)),
            )
            .values(chain_id=chain_id, chain_name=chain_name)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error("chain_backfill_failed", error=str(e))
            raise StoreError(f"Failed to backfill chain info: {e}")

        logger.info("chain_backfill_applied", updated=result.rowcount, chain_id=chain_id)
        return result.rowcount

    async def _scalar(self, stmt: Any, request_id: Optional[str]) -> Optional[Order]:
        try:
            async with self._session_factory() as session:
                return (await session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("order_lookup_failed", request_id=request_id, error=str(e))
            raise StoreError(f"Failed to look up order: {e}", request_id=request_id)
