"""
Chain info backfill task.

Orders placed before multi-chain support carry no chainId/chainName; all of
them were paid on Base. This task assigns the legacy chain to those orders.
It is idempotent and runs only when invoked, never from request handling.
"""
import argparse
import asyncio
from datetime import datetime, timezone
from typing import List, Optional

import structlog

from chainbills.config import get_settings
from chainbills.core.chains import get_chain_name
from chainbills.core.order_store import SqlOrderStore
from chainbills.database.connection import close_db, get_session_factory, init_db
from chainbills.monitoring.logging import setup_logging
from chainbills.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


async def run_chain_backfill(
    store: SqlOrderStore,
    cutoff: datetime,
    chain_id: int,
    chain_name: Optional[str] = None,
) -> int:
    """
    Assign ``chain_id`` to orders created before ``cutoff`` without chain info.

    Returns:
        int: Number of orders updated (0 on a repeat run)
    """
    chain_name = chain_name or get_chain_name(chain_id)
    logger.info(
        "chain_backfill_started",
        cutoff=cutoff.isoformat(),
        chain_id=chain_id,
        chain_name=chain_name,
    )

    updated = await store.backfill_chain_info(cutoff, chain_id, chain_name)
    metrics.record_chain_backfill(updated)

    logger.info("chain_backfill_completed", updated=updated, chain_id=chain_id)
    return updated


def _parse_cutoff(value: str) -> datetime:
    cutoff = datetime.fromisoformat(value)
    return cutoff if cutoff.tzinfo else cutoff.replace(tzinfo=timezone.utc)


async def _main(cutoff: datetime, chain_id: int, create_tables: bool) -> int:
    try:
        if create_tables:
            await init_db()
        return await run_chain_backfill(SqlOrderStore(get_session_factory()), cutoff, chain_id)
    finally:
        await close_db()


def main(argv: Optional[List[str]] = None) -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Assign chain info to legacy orders")
    parser.add_argument(
        "--cutoff",
        type=_parse_cutoff,
        default=settings.legacy_chain_cutoff,
        help="ISO timestamp; orders created before it are backfilled (UTC if naive)",
    )
    parser.add_argument(
        "--chain-id",
        type=int,
        default=settings.legacy_chain_id,
        help="Chain assigned to legacy orders",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables before backfilling",
    )
    args = parser.parse_args(argv)

    setup_logging()
    updated = asyncio.run(_main(args.cutoff, args.chain_id, args.create_tables))
    print(f"Backfilled chain info on {updated} order(s)")


if __name__ == "__main__":
    main()
