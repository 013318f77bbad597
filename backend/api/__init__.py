"""API route handlers."""
from . import lots, market_data

__all__ = ["lots", "market_data"]
