"""Maintenance tasks run outside the request path."""
from .chain_backfill import run_chain_backfill

__all__ = ["run_chain_backfill"]
