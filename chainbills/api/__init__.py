"""FastAPI application and routes."""
from .main import app
from .schemas import ErrorResponse, PurchaseResponse, VerifyCustomerRequest

__all__ = ["app", "ErrorResponse", "PurchaseResponse", "VerifyCustomerRequest"]
