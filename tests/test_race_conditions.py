"""
Race condition tests for purchase submission.

Concurrent submissions of one requestId must produce exactly one order and
exactly one fulfillment call; the database's unique constraint decides the
winner.
"""
import asyncio
from typing import Any, Optional
from unittest.mock import AsyncMock

import pytest

from chainbills.core.exceptions import OrderConflict
from chainbills.core.order_store import SqlOrderStore
from chainbills.core.reconciliation import OrderReconciliationEngine, PurchaseResult
from chainbills.database.models import Order


class StaleLookupStore(SqlOrderStore):
    """Store whose first requestId lookup misses, as if a racing insert landed just after it."""

    def __init__(self, session_factory: Any):
        super().__init__(session_factory)
        self.lookups = 0

    async def find_by_request_id(
        self, request_id: str, chain_id: Optional[int] = None
    ) -> Optional[Order]:
        self.lookups += 1
        if self.lookups == 1:
            return None
        return await super().find_by_request_id(request_id, chain_id)


@pytest.mark.race
@pytest.mark.asyncio
async def test_concurrent_same_request_id_creates_one_order(
    engine: OrderReconciliationEngine,
    order_store: SqlOrderStore,
    fulfillment_client: AsyncMock,
    sample_airtime_payload: dict,
) -> None:
    """Two simultaneous submissions: one purchase, the other replays or conflicts."""
    results = await asyncio.gather(
        engine.submit_purchase("airtime", sample_airtime_payload),
        engine.submit_purchase("airtime", sample_airtime_payload),
        return_exceptions=True,
    )

    successes = [r for r in results if isinstance(r, PurchaseResult) and not r.replayed]
    others = [r for r in results if r not in successes]
    assert len(successes) == 1
    assert len(others) == 1
    assert isinstance(others[0], (OrderConflict, PurchaseResult))
    assert fulfillment_client.purchase.await_count == 1

    page = await order_store.list_by_user(sample_airtime_payload["userAddress"])
    assert page.total == 1


@pytest.mark.race
@pytest.mark.asyncio
async def test_concurrent_same_request_id_with_distinct_transactions(
    engine: OrderReconciliationEngine,
    order_store: SqlOrderStore,
    fulfillment_client: AsyncMock,
    make_payload: Any,
) -> None:
    """Same requestId, different on-chain payments: still one order and one purchase."""
    first = make_payload()
    second = make_payload(requestId=first["requestId"])
    assert first["transactionHash"] != second["transactionHash"]

    results = await asyncio.gather(
        engine.submit_purchase("airtime", first),
        engine.submit_purchase("airtime", second),
        return_exceptions=True,
    )

    fresh = [r for r in results if isinstance(r, PurchaseResult) and not r.replayed]
    assert len(fresh) == 1
    assert all(isinstance(r, (PurchaseResult, OrderConflict)) for r in results)
    assert fulfillment_client.purchase.await_count == 1

    page = await order_store.list_by_user(first["userAddress"])
    assert page.total == 1
    winner = page.orders[0].transaction_hash
    assert winner == fresh[0].order.transaction_hash
    loser = second if winner == first["transactionHash"] else first
    assert await order_store.find_by_transaction_hash(loser["transactionHash"]) is None


@pytest.mark.race
@pytest.mark.asyncio
async def test_many_concurrent_submissions(
    engine: OrderReconciliationEngine,
    order_store: SqlOrderStore,
    fulfillment_client: AsyncMock,
    sample_airtime_payload: dict,
) -> None:
    results = await asyncio.gather(
        *(engine.submit_purchase("airtime", sample_airtime_payload) for _ in range(5)),
        return_exceptions=True,
    )

    unexpected = [
        r for r in results if not isinstance(r, (PurchaseResult, OrderConflict))
    ]
    assert unexpected == []
    assert fulfillment_client.purchase.await_count == 1
    assert (await order_store.list_by_user(sample_airtime_payload["userAddress"])).total == 1


@pytest.mark.race
@pytest.mark.asyncio
async def test_distinct_request_ids_all_succeed(
    engine: OrderReconciliationEngine,
    order_store: SqlOrderStore,
    fulfillment_client: AsyncMock,
    make_payload: Any,
) -> None:
    payloads = [make_payload() for _ in range(4)]

    results = await asyncio.gather(
        *(engine.submit_purchase("airtime", payload) for payload in payloads)
    )

    assert len({r.order.id for r in results}) == 4
    assert fulfillment_client.purchase.await_count == 4
    assert (await order_store.list_by_user(payloads[0]["userAddress"])).total == 4


@pytest.mark.race
@pytest.mark.asyncio
async def test_lost_insert_race_replays_finished_order(
    session_factory: Any,
    fulfillment_client: AsyncMock,
    test_settings: Any,
    sample_airtime_payload: dict,
) -> None:
    """The loser of the insert re-reads the winner's order and replays it."""
    await OrderReconciliationEngine(
        SqlOrderStore(session_factory), fulfillment_client, test_settings
    ).submit_purchase("airtime", sample_airtime_payload)

    racing = OrderReconciliationEngine(
        StaleLookupStore(session_factory), fulfillment_client, test_settings
    )
    result = await racing.submit_purchase("airtime", sample_airtime_payload)

    assert result.replayed is True
    assert fulfillment_client.purchase.await_count == 1


@pytest.mark.race
@pytest.mark.asyncio
async def test_lost_insert_race_conflicts_with_pending_order(
    session_factory: Any,
    fulfillment_client: AsyncMock,
    test_settings: Any,
    make_order_fields: Any,
    make_payload: Any,
) -> None:
    fields = make_order_fields()
    await SqlOrderStore(session_factory).create(fields)

    racing = OrderReconciliationEngine(
        StaleLookupStore(session_factory), fulfillment_client, test_settings
    )
    with pytest.raises(OrderConflict) as exc_info:
        await racing.submit_purchase("airtime", make_payload(requestId=fields["request_id"]))

    assert exc_info.value.current_status == "pending"
    fulfillment_client.purchase.assert_not_awaited()
