"""
Configuration for the SmartCart optimization service.

All values come from the environment (optionally a .env file) with
development defaults. Anything here can also be passed explicitly to the
engine, so tests never depend on the process environment.
"""

import os
from typing import Dict, List, Optional

from dotenv import load_dotenv

load_dotenv()


def _get_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _get_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [part.strip() for part in raw.split(",") if part.strip()]


# Database (store catalog + result cache)
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./smartcart.db")

# Result cache
OPTIMIZATION_CACHE_TTL = int(os.getenv("OPTIMIZATION_CACHE_TTL", "600"))  # seconds

# Store integrations
STORE_LOOKUP_TIMEOUT = _get_float("STORE_LOOKUP_TIMEOUT", 2.0)  # seconds, per lookup

# Delivery
DEFAULT_DELIVERY_FEE = _get_float("DEFAULT_DELIVERY_FEE", 9.95)
FREE_DELIVERY_THRESHOLD = _get_float("FREE_DELIVERY_THRESHOLD", None)  # None = disabled

# Stores preferred for organic / produce items by the meal-plan strategy
QUALITY_STORES = _get_list("QUALITY_STORES", ["kroger", "safeway"])

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Default catalog, in catalog order: (store_id, display name, delivery fee)
DEFAULT_STORES = [
    ("kroger", "Kroger", 9.95),
    ("safeway", "Safeway", 12.95),
    ("walmart", "Walmart", 7.95),
    ("target", "Target", 9.95),
]

# Per-store API settings. An empty key means the client serves mock prices.
STORE_API_SETTINGS: Dict[str, Dict[str, str]] = {
    store_id: {
        "api_key": os.getenv(f"{store_id.upper()}_API_KEY", ""),
        "api_url": os.getenv(f"{store_id.upper()}_API_URL", f"https://api.{store_id}.com/v1"),
    }
    for store_id, _, _ in DEFAULT_STORES
}
