"""
Shared test helpers: fake store clients, price maps and a wired engine.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from config import DEFAULT_STORES
from optimizer import PriceOptimizationEngine
from pricing_service import StaticStoreCatalog, StorePriceSource
from result_cache import InMemoryResultCache
from shopping_cart import CartItem, StorePrice

FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeStoreClient:
    """
    In-memory store client.

    prices: {product_id: price} or {product_id: (price, in_stock)}
    """

    def __init__(self, store_id, prices=None, delay=0.0, error=None):
        self.store_id = store_id
        self.prices = prices or {}
        self.delay = delay
        self.error = error
        self.calls = []

    async def get_price(self, product_id):
        self.calls.append(product_id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error

        entry = self.prices.get(product_id)
        if entry is None:
            return None
        if isinstance(entry, tuple):
            price, in_stock = entry
        else:
            price, in_stock = entry, True
        return {"price": price, "inStock": in_stock}


def default_catalog():
    return StaticStoreCatalog.from_tuples(DEFAULT_STORES)


def make_prices(table, catalog=None):
    """
    Build a price-source style map from {product_id: {store_id: price | (price, in_stock)}}.
    Lists come back sorted by store id, like StorePriceSource returns them.
    """
    catalog = catalog or default_catalog()
    prices = {}
    for product_id, by_store in table.items():
        entries = []
        for store_id, entry in by_store.items():
            price, in_stock = entry if isinstance(entry, tuple) else (entry, True)
            entries.append(StorePrice(store_id, price, in_stock, catalog.delivery_fee(store_id)))
        prices[product_id] = sorted(entries, key=lambda p: p.store_id)
    return prices


def clients_from_table(table):
    """One FakeStoreClient per catalog store from a {product_id: {store_id: price}} table."""
    per_store = {store_id: {} for store_id, _, _ in DEFAULT_STORES}
    for product_id, by_store in table.items():
        for store_id, entry in by_store.items():
            per_store.setdefault(store_id, {})[product_id] = entry
    return [FakeStoreClient(store_id, prices) for store_id, prices in per_store.items()]


def make_engine(table, cache=None, **kwargs):
    catalog = default_catalog()
    clients = clients_from_table(table)
    source = StorePriceSource(clients, catalog, timeout=1.0)
    engine = PriceOptimizationEngine(source, catalog, cache=cache, now=lambda: FIXED_NOW, **kwargs)
    return engine, clients


def item(product_id, quantity=1, category=None, name=None):
    return CartItem(product_id=product_id, name=name or product_id.title(), quantity=quantity, category=category)


# Two staples every store carries, at different prices
STAPLES = {
    "milk": {"kroger": 3.49, "safeway": 3.99, "walmart": 2.99, "target": 3.29},
    "bread": {"kroger": 2.49, "safeway": 2.99, "walmart": 2.79, "target": 2.19},
}


@pytest.fixture
def catalog():
    return default_catalog()


@pytest.fixture
def staples_engine():
    engine, clients = make_engine(STAPLES, cache=InMemoryResultCache())
    return engine


@pytest.fixture
def memory_db():
    from database import DatabaseManager

    db_manager = DatabaseManager("sqlite:///:memory:")
    db_manager.init_db()
    yield db_manager
    db_manager.close()
