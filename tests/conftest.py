"""
Pytest configuration and fixtures.
"""
import uuid
from typing import Any, AsyncGenerator, Callable, Dict
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from chainbills.config import Settings
from chainbills.core.order_store import SqlOrderStore
from chainbills.core.reconciliation import OrderReconciliationEngine
from chainbills.database.connection import create_session_factory, init_db
from chainbills.integrations.vtpass_client import VTPassClient


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        _env_file=None,
        vtpass_api_key="test-api-key",
        vtpass_public_key="PK_test_public",
        vtpass_secret_key="SK_test_secret",
        vtpass_base_url="https://sandbox.vtpass.test/api",
        database_url="sqlite+aiosqlite:///:memory:",
        app_name="chainbills-gateway-test",
        app_env="test",
        log_level="DEBUG",
        fulfillment_call_timeout_seconds=0.2,
    )


@pytest_asyncio.fixture
async def session_factory(tmp_path: Any) -> AsyncGenerator[async_sessionmaker[AsyncSession], Any]:
    """SQLite file database with the orders table created."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}",
        poolclass=NullPool,
    )
    await init_db(engine)

    yield create_session_factory(engine)

    await engine.dispose()


@pytest.fixture
def order_store(session_factory: async_sessionmaker[AsyncSession]) -> SqlOrderStore:
    return SqlOrderStore(session_factory)


@pytest.fixture
def fulfillment_client() -> AsyncMock:
    """VTpass client that approves every purchase unless told otherwise."""
    client = AsyncMock(spec=VTPassClient)
    client.purchase.return_value = {
        "success": True,
        "data": {
            "code": "000",
            "response_description": "TRANSACTION SUCCESSFUL",
            "amount": 500,
            "content": {"transactions": {"status": "delivered", "transactionId": "17"}},
        },
    }
    return client


@pytest.fixture
def engine(
    order_store: SqlOrderStore, fulfillment_client: AsyncMock, test_settings: Settings
) -> OrderReconciliationEngine:
    return OrderReconciliationEngine(order_store, fulfillment_client, test_settings)


_SERVICE_FIELDS: Dict[str, Dict[str, Any]] = {
    "airtime": {"phone": "08011111111", "serviceID": "mtn"},
    "internet": {"phone": "08011111111", "serviceID": "mtn-data", "variation_code": "mtn-10mb-100"},
    "electricity": {
        "meter_number": "1111111111111",
        "serviceID": "ikeja-electric",
        "variation_code": "prepaid",
        "phone": "08011111111",
    },
    "tv": {
        "billersCode": "1212121212",
        "serviceID": "dstv",
        "variation_code": "dstv-padi",
        "phone": "08011111111",
    },
}


@pytest.fixture
def make_payload() -> Callable[..., Dict[str, Any]]:
    """Build a valid purchase body; every call gets a fresh requestId and tx hash."""

    def _make(service_type: str = "airtime", **overrides: Any) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "requestId": f"req-{uuid.uuid4().hex[:12]}",
            "amount": 500,
            "cryptoUsed": 0.31,
            "cryptoSymbol": "USDC",
            "transactionHash": f"0x{uuid.uuid4().hex}{uuid.uuid4().hex}",
            "userAddress": "0xAbC0000000000000000000000000000000000001",
            "chainId": 8453,
            "chainName": "Base",
            **_SERVICE_FIELDS[service_type],
        }
        payload.update(overrides)
        return payload

    return _make


@pytest.fixture
def sample_airtime_payload(make_payload: Callable[..., Dict[str, Any]]) -> Dict[str, Any]:
    """Sample airtime purchase body."""
    return make_payload("airtime")


@pytest.fixture
def make_order_fields() -> Callable[..., Dict[str, Any]]:
    """Column values for inserting orders straight through the store."""

    def _make(**overrides: Any) -> Dict[str, Any]:
        fields: Dict[str, Any] = {
            "request_id": f"req-{uuid.uuid4().hex[:12]}",
            "user_address": "0xabc0000000000000000000000000000000000001",
            "transaction_hash": f"0x{uuid.uuid4().hex}",
            "service_type": "airtime",
            "service_id": "mtn",
            "customer_identifier": "08011111111",
            "phone": "08011111111",
            "amount_naira": 500.0,
            "crypto_used": 0.31,
            "crypto_symbol": "USDC",
            "chain_id": 8453,
            "chain_name": "Base",
            "on_chain_status": "confirmed",
            "vtpass_status": "pending",
        }
        fields.update(overrides)
        return fields

    return _make
