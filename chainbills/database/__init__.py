"""Database package for the purchase gateway."""
from .connection import close_db, create_session_factory, get_session_factory, init_db
from .models import ELECTRICITY_FIELDS, Base, Order

__all__ = [
    "Base",
    "ELECTRICITY_FIELDS",
    "Order",
    "close_db",
    "create_session_factory",
    "get_session_factory",
    "init_db",
]
