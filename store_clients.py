"""
Store Integration Clients

One client per integrated store, each answering "what does product X cost
here, and is it in stock?".

Features:
- HTTP lookup against the store's price endpoint when an API key is set
- Deterministic mock prices when no key is configured (development mode)
- Blocking HTTP runs in a worker thread so lookups can be fanned out
  concurrently on the event loop
- Every failure surfaces as StoreLookupError; callers decide whether to absorb it
"""

import asyncio
import logging
import random
from typing import Dict, List, Optional

import requests

logger = logging.getLogger(__name__)


class StoreLookupError(Exception):
    """Raised when a store integration call fails"""

    def __init__(self, store_id: str, product_id: str, reason: str):
        super().__init__(f"{store_id} lookup for {product_id} failed: {reason}")
        self.store_id = store_id
        self.product_id = product_id
        self.reason = reason


class StoreApiClient:
    """Price/availability client for a single store"""

    TIMEOUT = 2  # seconds, per HTTP request

    def __init__(self, store_id: str, api_url: str = "", api_key: str = ""):
        """
        Initialize store client.

        Args:
            store_id: Catalog id of the store, e.g. "kroger"
            api_url: Base URL of the store API
            api_key: Bearer token; empty means mock mode
        """
        self.store_id = store_id
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key

        mode = "live" if api_key else "mock"
        logger.info(f"StoreApiClient[{store_id}] initialized ({mode})")

    async def get_price(self, product_id: str) -> Optional[Dict]:
        """
        Look up one product.

        Returns:
            {"price": float, "inStock": bool}, or None when the store
            does not carry the product

        Raises:
            StoreLookupError: On network, HTTP or payload errors
        """
        if not self.api_key:
            return self._mock_price(product_id)

        return await asyncio.to_thread(self._fetch_price, product_id)

    def _fetch_price(self, product_id: str) -> Optional[Dict]:
        url = f"{self.api_url}/products/{product_id}/price"
        logger.debug(f"{self.store_id} GET {url}")

        try:
            response = requests.get(
                url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.TIMEOUT
            )
            if response.status_code == 404:
                return None
            response.raise_for_status()
            data = response.json()
            return {
                "price": float(data["price"]),
                "inStock": data.get("inStock", True) is not False,
            }

        except requests.exceptions.Timeout:
            raise StoreLookupError(self.store_id, product_id, "timeout")

        except requests.exceptions.HTTPError as e:
            raise StoreLookupError(self.store_id, product_id, f"HTTP {e.response.status_code}")

        except requests.exceptions.RequestException as e:
            raise StoreLookupError(self.store_id, product_id, str(e))

        except (ValueError, KeyError, TypeError) as e:  # Bad JSON or missing fields
            raise StoreLookupError(self.store_id, product_id, f"invalid payload: {e}")

    def _mock_price(self, product_id: str) -> Dict:
        # Seeded per (store, product) so repeated lookups agree
        rng = random.Random(f"{self.store_id}:{product_id}")
        return {
            "price": round(2.99 + rng.random() * 10, 2),
            "inStock": rng.random() > 0.1,
        }


def build_store_clients(store_settings: Dict[str, Dict[str, str]]) -> List[StoreApiClient]:
    """
    Create one client per configured store.

    Args:
        store_settings: {store_id: {"api_url": ..., "api_key": ...}}
    """
    return [
        StoreApiClient(store_id, settings.get("api_url", ""), settings.get("api_key", ""))
        for store_id, settings in store_settings.items()
    ]
