"""
Tests for the SQL order store against a real SQLite database.
"""
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from chainbills.core.exceptions import (
    DuplicateKeyError,
    InvalidStateTransition,
    OrderNotFound,
    StoreError,
)
from chainbills.core.order_store import OrderFilter, SqlOrderStore


class TestOrderStore:
    """Test suite for SqlOrderStore."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_and_find(self, order_store: SqlOrderStore, make_order_fields: Any) -> None:
        fields = make_order_fields()

        created = await order_store.create(fields)
        found = await order_store.find_by_request_id(fields["request_id"])

        assert found is not None
        assert found.id == created.id
        assert found.vtpass_status == "pending"
        assert found.created_at is not None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_find_missing_returns_none(self, order_store: SqlOrderStore) -> None:
        assert await order_store.find_by_request_id("req-missing") is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_find_by_request_id_scoped_to_chain(
        self, order_store: SqlOrderStore, make_order_fields: Any
    ) -> None:
        fields = make_order_fields(chain_id=1135, chain_name="Lisk")
        await order_store.create(fields)

        assert await order_store.find_by_request_id(fields["request_id"], chain_id=1135) is not None
        assert await order_store.find_by_request_id(fields["request_id"], chain_id=8453) is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_find_by_transaction_hash_ignores_case(
        self, order_store: SqlOrderStore, make_order_fields: Any
    ) -> None:
        fields = make_order_fields(transaction_hash="0xdeadbeef")
        await order_store.create(fields)

        found = await order_store.find_by_transaction_hash("0xDEADBEEF")

        assert found is not None
        assert found.request_id == fields["request_id"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_duplicate_request_id(
        self, order_store: SqlOrderStore, make_order_fields: Any
    ) -> None:
        first = make_order_fields()
        await order_store.create(first)

        with pytest.raises(DuplicateKeyError) as exc_info:
            await order_store.create(make_order_fields(request_id=first["request_id"]))

        assert exc_info.value.key == "request_id"
        assert exc_info.value.value == first["request_id"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_duplicate_transaction_hash(
        self, order_store: SqlOrderStore, make_order_fields: Any
    ) -> None:
        first = make_order_fields()
        await order_store.create(first)

        with pytest.raises(DuplicateKeyError) as exc_info:
            await order_store.create(make_order_fields(transaction_hash=first["transaction_hash"]))

        assert exc_info.value.key == "transaction_hash"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_check_constraint_violation_is_store_error(
        self, order_store: SqlOrderStore, make_order_fields: Any
    ) -> None:
        with pytest.raises(StoreError) as exc_info:
            await order_store.create(make_order_fields(vtpass_status="teleported"))

        assert not isinstance(exc_info.value, DuplicateKeyError)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_update_applies_patch(
        self, order_store: SqlOrderStore, make_order_fields: Any
    ) -> None:
        fields = make_order_fields()
        await order_store.create(fields)

        updated = await order_store.update(
            fields["request_id"],
            {"vtpass_status": "successful", "vtpass_response": {"code": "000"}},
            expected_status="pending",
        )

        assert updated.vtpass_status == "successful"
        assert updated.vtpass_response == {"code": "000"}

        reloaded = await order_store.find_by_request_id(fields["request_id"])
        assert reloaded.vtpass_status == "successful"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_update_rejects_unexpected_status(
        self, order_store: SqlOrderStore, make_order_fields: Any
    ) -> None:
        fields = make_order_fields(vtpass_status="failed")
        await order_store.create(fields)

        with pytest.raises(InvalidStateTransition) as exc_info:
            await order_store.update(
                fields["request_id"], {"vtpass_status": "successful"}, expected_status="pending"
            )

        assert exc_info.value.current_status == "failed"
        reloaded = await order_store.find_by_request_id(fields["request_id"])
        assert reloaded.vtpass_status == "failed"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_update_missing_order(self, order_store: SqlOrderStore) -> None:
        with pytest.raises(OrderNotFound):
            await order_store.update("req-missing", {"vtpass_status": "failed"})

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_update_refuses_leaving_terminal_status(
        self, order_store: SqlOrderStore, make_order_fields: Any
    ) -> None:
        fields = make_order_fields(vtpass_status="successful")
        await order_store.create(fields)

        with pytest.raises(InvalidStateTransition):
            await order_store.update(fields["request_id"], {"vtpass_status": "pending"})


class TestOrderListing:
    """Test suite for paged order listings."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_list_by_user_is_case_insensitive(
        self, order_store: SqlOrderStore, make_order_fields: Any
    ) -> None:
        for _ in range(3):
            await order_store.create(make_order_fields(user_address="0xaaa"))
        await order_store.create(make_order_fields(user_address="0xbbb"))

        page = await order_store.list_by_user("0xAAA")

        assert page.total == 3
        assert {order.user_address for order in page.orders} == {"0xaaa"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_list_by_user_filters_chain(
        self, order_store: SqlOrderStore, make_order_fields: Any
    ) -> None:
        await order_store.create(make_order_fields(user_address="0xaaa"))
        await order_store.create(
            make_order_fields(user_address="0xaaa", chain_id=42220, chain_name="Celo")
        )

        page = await order_store.list_by_user("0xaaa", chain_id=42220)

        assert page.total == 1
        assert page.orders[0].chain_name == "Celo"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_paging_and_newest_first(
        self, order_store: SqlOrderStore, make_order_fields: Any
    ) -> None:
        base = datetime(2025, 6, 1, tzinfo=timezone.utc)
        for i in range(5):
            await order_store.create(
                make_order_fields(request_id=f"req-{i}", created_at=base + timedelta(hours=i))
            )

        first = await order_store.list_by_filter(page=1, limit=2)
        last = await order_store.list_by_filter(page=3, limit=2)

        assert first.total == 5
        assert first.pages == 3
        assert [o.request_id for o in first.orders] == ["req-4", "req-3"]
        assert [o.request_id for o in last.orders] == ["req-0"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_sort_by_amount_ascending(
        self, order_store: SqlOrderStore, make_order_fields: Any
    ) -> None:
        for amount in (900.0, 100.0, 500.0):
            await order_store.create(make_order_fields(amount_naira=amount))

        page = await order_store.list_by_filter(sort="amount_naira", ascending=True)

        assert [o.amount_naira for o in page.orders] == [100.0, 500.0, 900.0]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_sort_falls_back_to_created_at(
        self, order_store: SqlOrderStore, make_order_fields: Any
    ) -> None:
        await order_store.create(make_order_fields())

        page = await order_store.list_by_filter(sort="request_id; DROP TABLE orders")

        assert page.total == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_limit_is_clamped(self, order_store: SqlOrderStore, make_order_fields: Any) -> None:
        await order_store.create(make_order_fields())

        assert (await order_store.list_by_filter(limit=500)).limit == 100
        assert (await order_store.list_by_filter(limit=0)).limit == 1
        assert (await order_store.list_by_filter(page=-3)).page == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_filters_combine(self, order_store: SqlOrderStore, make_order_fields: Any) -> None:
        await order_store.create(make_order_fields(service_type="tv", vtpass_status="successful"))
        await order_store.create(make_order_fields(service_type="tv", vtpass_status="failed"))
        await order_store.create(make_order_fields(service_type="airtime", vtpass_status="successful"))

        page = await order_store.list_by_filter(
            OrderFilter(service_type="tv", vtpass_status="successful")
        )

        assert page.total == 1
        assert page.orders[0].service_type == "tv"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_created_window_is_half_open(
        self, order_store: SqlOrderStore, make_order_fields: Any
    ) -> None:
        start = datetime(2025, 12, 1, tzinfo=timezone.utc)
        end = datetime(2026, 1, 1, tzinfo=timezone.utc)
        await order_store.create(make_order_fields(request_id="req-start", created_at=start))
        await order_store.create(make_order_fields(request_id="req-mid", created_at=start + timedelta(days=9)))
        await order_store.create(make_order_fields(request_id="req-end", created_at=end))

        page = await order_store.list_by_filter(
            OrderFilter(created_from=start, created_before=end), ascending=True
        )

        assert [o.request_id for o in page.orders] == ["req-start", "req-mid"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_page_to_dict(self, order_store: SqlOrderStore, make_order_fields: Any) -> None:
        await order_store.create(make_order_fields())

        body = (await order_store.list_by_filter(limit=10)).to_dict()

        assert body["pagination"] == {"total": 1, "page": 1, "limit": 10, "pages": 1}
        assert body["orders"][0]["vtpassStatus"] == "pending"
