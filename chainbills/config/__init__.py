"""Configuration package for the gateway."""
from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
