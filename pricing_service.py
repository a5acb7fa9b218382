"""
Store Price Source

Resolves, for each product in a cart, the (store, price, in-stock) entries
across every integrated store.

Decision Logic:
- Every (product, store) lookup is issued concurrently and awaited as a group
- Each lookup is wrapped on its own: a failure or timeout drops that store
  from that product's list and is logged, never raised
- Surviving entries are returned sorted by store id, so "first match"
  tie-breaks downstream do not depend on which lookup finished first
- Delivery fees are a static lookup in the store catalog
"""

import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Sequence

from config import DEFAULT_DELIVERY_FEE, DEFAULT_STORES, STORE_LOOKUP_TIMEOUT
from shopping_cart import StoreInfo, StorePrice
from store_clients import StoreLookupError

logger = logging.getLogger(__name__)


# ============================================================================
# STORE CATALOGS
# ============================================================================

class StaticStoreCatalog:
    """Store catalog held in memory, in catalog order"""

    def __init__(
        self,
        stores: Iterable[StoreInfo],
        default_delivery_fee: float = DEFAULT_DELIVERY_FEE
    ):
        self.default_delivery_fee = default_delivery_fee
        self._load(stores)

    def _load(self, stores: Iterable[StoreInfo]) -> None:
        self._stores = list(stores)
        self._by_id = {store.store_id: store for store in self._stores}

    @classmethod
    def from_tuples(cls, stores=DEFAULT_STORES, **kwargs) -> "StaticStoreCatalog":
        """Build from (store_id, name, delivery_fee) tuples."""
        return cls([StoreInfo(sid, name, float(fee)) for sid, name, fee in stores], **kwargs)

    def store_ids(self) -> List[str]:
        return [store.store_id for store in self._stores]

    def get_store(self, store_id: str) -> Optional[StoreInfo]:
        return self._by_id.get(store_id)

    def store_name(self, store_id: str) -> str:
        store = self._by_id.get(store_id)
        return store.name if store else store_id

    def delivery_fee(self, store_id: str) -> float:
        """Flat fee for a store; unknown stores get the default fee."""
        store = self._by_id.get(store_id)
        return store.delivery_fee if store else self.default_delivery_fee


class DatabaseStoreCatalog(StaticStoreCatalog):
    """Store catalog loaded from the stores table (active rows, by position)"""

    def __init__(self, db_manager, default_delivery_fee: float = DEFAULT_DELIVERY_FEE):
        self.db_manager = db_manager
        super().__init__(self._query_stores(), default_delivery_fee)

    def _query_stores(self) -> List[StoreInfo]:
        from models import Store

        with self.db_manager.session_scope() as session:
            rows = (
                session.query(Store)
                .filter(Store.active == True)  # noqa: E712
                .order_by(Store.position, Store.store_id)
                .all()
            )
            stores = [StoreInfo(row.store_id, row.name, float(row.delivery_fee)) for row in rows]

        logger.info(f"✓ Loaded {len(stores)} stores from database")
        return stores

    def refresh(self) -> None:
        """Reload the catalog after stores were added or deactivated."""
        self._load(self._query_stores())


# ============================================================================
# PRICE SOURCE
# ============================================================================

class StorePriceSource:
    """Fans out price lookups to every store client"""

    def __init__(
        self,
        clients: Sequence,
        catalog: StaticStoreCatalog,
        timeout: Optional[float] = STORE_LOOKUP_TIMEOUT
    ):
        """
        Initialize price source.

        Args:
            clients: Objects with a store_id attribute and an async get_price(product_id)
            catalog: Store catalog used for delivery fees
            timeout: Per-lookup timeout in seconds (None disables it)
        """
        self.clients = list(clients)
        self.catalog = catalog
        self.timeout = timeout

    async def get_prices_for_products(
        self,
        product_ids: List[str]
    ) -> Dict[str, List[StorePrice]]:
        """
        Fetch prices for every product from every store concurrently.

        Args:
            product_ids: Products to price (duplicates are looked up once)

        Returns:
            {product_id: [StorePrice, ...]} sorted by store id. A product no
            store answered for maps to an empty list.
        """
        unique_ids = list(dict.fromkeys(product_ids))

        pairs = [(product_id, client) for product_id in unique_ids for client in self.clients]
        results = await asyncio.gather(
            *(self._lookup(client, product_id) for product_id, client in pairs)
        )

        price_map: Dict[str, List[StorePrice]] = {product_id: [] for product_id in unique_ids}
        for (product_id, _), store_price in zip(pairs, results):
            if store_price is not None:
                price_map[product_id].append(store_price)

        for product_id, prices in price_map.items():
            prices.sort(key=lambda p: p.store_id)
            if not prices:
                logger.warning(f"⚠ No store returned a price for {product_id}")

        logger.info(
            f"Priced {len(unique_ids)} products across {len(self.clients)} stores "
            f"({sum(len(p) for p in price_map.values())}/{len(pairs)} lookups succeeded)"
        )
        return price_map

    async def _lookup(self, client, product_id: str) -> Optional[StorePrice]:
        store_id = client.store_id
        try:
            if self.timeout is None:
                data = await client.get_price(product_id)
            else:
                data = await asyncio.wait_for(client.get_price(product_id), self.timeout)

            if data is None:
                return None

            return StorePrice(
                store_id=store_id,
                price=float(data["price"]),
                in_stock=bool(data.get("inStock", True)),
                delivery_fee=self.catalog.delivery_fee(store_id),
            )

        except asyncio.TimeoutError:
            logger.warning(f"⚠ {store_id} timed out pricing {product_id}")
            return None

        except StoreLookupError as e:
            logger.warning(f"⚠ {e}")
            return None

        except Exception as e:
            logger.warning(f"⚠ Unexpected error from {store_id} pricing {product_id}: {e}")
            return None
