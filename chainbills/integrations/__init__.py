"""External integrations for utility fulfillment."""
from .vtpass_client import CircuitBreaker, VTPassClient

__all__ = ["CircuitBreaker", "VTPassClient"]
