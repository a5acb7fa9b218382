"""
Price Optimization Engine

Orchestrates one optimization call:
1. Validate the cart and strategy
2. Check the result cache (key: sorted cart contents + strategy)
3. On a miss, fan out price lookups to every store
4. Dispatch to the strategy algorithm in solver.py
5. Compute savings, delivery windows and timing
6. Write the result through to the cache and log a metrics line

Also hosts the multi-strategy helpers used by the HTTP layer: strategy
comparison, quick savings estimate and per-product store comparison.

The engine holds no per-request state. Its collaborators (store catalog,
price source, result cache) are injected at construction.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence

from config import (
    FREE_DELIVERY_THRESHOLD,
    OPTIMIZATION_CACHE_TTL,
    QUALITY_STORES,
    STORE_API_SETTINGS,
    STORE_LOOKUP_TIMEOUT,
    DEFAULT_STORES,
)
from pricing_service import DatabaseStoreCatalog, StaticStoreCatalog, StorePriceSource
from result_cache import DatabaseResultCache, InMemoryResultCache, ResultCache, build_cache_key
from shopping_cart import (
    CartItem,
    DeliveryWindow,
    OptimizationStrategy,
    OptimizedCart,
    StoreCartBreakdown,
    UnsupportedStrategy,
    validate_cart,
)
from solver import (
    STRATEGY_HANDLERS,
    DeliveryFeePolicy,
    PriceMap,
    breakdown_total,
    bundling_recommendations,
    calculate_savings,
    savings_percentage,
)
from store_clients import build_store_clients

logger = logging.getLogger(__name__)


# Static catalog served by GET /optimize/strategies
STRATEGY_CATALOG = [
    {
        "id": "budget",
        "name": "Budget Optimizer",
        "description": "Find the absolute lowest total cost across all stores",
        "bestFor": "Families looking to maximize savings on their grocery budget",
        "typicalSavings": "15-25%",
        "storeCount": "1-2 stores",
        "deliveryPreference": "cheapest",
    },
    {
        "id": "convenience",
        "name": "Convenience Seeker",
        "description": "Minimize shopping complexity with single or dual-store orders",
        "bestFor": "Busy professionals who value time over maximum savings",
        "typicalSavings": "5-10%",
        "storeCount": "1 store preferred",
        "deliveryPreference": "fastest",
    },
    {
        "id": "split-cart",
        "name": "Split-Cart Maximizer",
        "description": "Get the best price for each item across multiple stores",
        "bestFor": "Strategic shoppers who want the absolute best deal on every item",
        "typicalSavings": "10-15%",
        "storeCount": "2-4 stores",
        "deliveryPreference": "coordinated",
    },
    {
        "id": "meal-plan",
        "name": "Meal Planner",
        "description": "Balance cost with quality for meal prep and healthy eating",
        "bestFor": "Health-conscious shoppers and meal preppers",
        "typicalSavings": "8-12%",
        "storeCount": "1-2 stores",
        "deliveryPreference": "quality-focused",
    },
]

# Strategies run side by side by compare_strategies
COMPARISON_STRATEGIES = [
    OptimizationStrategy(type="budget", delivery_preference="cheapest", max_stores=1),
    OptimizationStrategy(type="convenience", delivery_preference="fastest", max_stores=2),
    OptimizationStrategy(type="split-cart", delivery_preference="cheapest", max_stores=4),
    OptimizationStrategy(type="meal-plan", delivery_preference="single-trip", max_stores=2),
]

# Public HTTP mode names -> internal strategies
MODE_STRATEGIES = {
    "price": OptimizationStrategy(type="budget", delivery_preference="cheapest"),
    "time": OptimizationStrategy(type="convenience", delivery_preference="fastest"),
    "convenience": OptimizationStrategy(type="convenience", delivery_preference="single-trip"),
}


def strategy_for_mode(mode: str) -> OptimizationStrategy:
    """Map a public mode name ('price', 'time', 'convenience') to a strategy."""
    try:
        return MODE_STRATEGIES[mode]
    except KeyError:
        raise UnsupportedStrategy(mode)


class PriceOptimizationEngine:
    """Entry point for cart optimization"""

    def __init__(
        self,
        price_source: StorePriceSource,
        catalog: StaticStoreCatalog,
        cache: Optional[ResultCache] = None,
        cache_ttl: int = OPTIMIZATION_CACHE_TTL,
        quality_stores: Sequence[str] = tuple(QUALITY_STORES),
        free_delivery_threshold: Optional[float] = FREE_DELIVERY_THRESHOLD,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """
        Initialize the engine.

        Args:
            price_source: Fan-out price lookup
            catalog: Store catalog (order, names, delivery fees)
            cache: Result cache handle with async get/set; None disables caching
            cache_ttl: Seconds a result stays cached
            quality_stores: Default allowlist for the meal-plan strategy
            free_delivery_threshold: Subtotal that waives a store's delivery fee
            now: Clock used for delivery windows
        """
        self.price_source = price_source
        self.catalog = catalog
        self.cache = cache
        self.cache_ttl = cache_ttl
        self.quality_stores = tuple(quality_stores)
        self.fees = DeliveryFeePolicy(catalog, free_delivery_threshold)
        self._now = now

    async def optimize_cart(
        self,
        cart: List[CartItem],
        strategy: OptimizationStrategy,
        user_id: Optional[str] = None
    ) -> OptimizedCart:
        """
        Optimize a cart with one strategy.

        Args:
            cart: One entry per distinct product
            strategy: Strategy type and parameters
            user_id: Caller identity, used for logging only

        Returns:
            OptimizedCart. Items no store could supply are left out of every
            breakdown; item_count still counts them.

        Raises:
            CartValidationError: Malformed cart or strategy parameters
            UnsupportedStrategy: Unknown strategy type
        """
        validate_cart(cart)
        strategy.validate()
        if strategy.type not in STRATEGY_HANDLERS:
            raise UnsupportedStrategy(strategy.type)

        start_time = time.perf_counter()
        cache_key = build_cache_key(cart, strategy)

        if self.cache is not None:
            cached = await self.cache.get(cache_key)
            if cached:
                logger.info(f"Cache hit for optimization: {cache_key}")
                return OptimizedCart.from_dict(cached)

        prices = await self.price_source.get_prices_for_products(
            [item.product_id for item in cart]
        )
        result = self.solve(cart, strategy, prices)
        result.optimization_time = int((time.perf_counter() - start_time) * 1000)

        if self.cache is not None:
            await self.cache.set(cache_key, result.to_dict(), self.cache_ttl)

        logger.info(
            f"Optimization completed: {strategy.type} | "
            f"{result.store_count} stores | "
            f"${result.total_cost:.2f} | "
            f"{result.savings_percentage:.1f}% savings | "
            f"{result.optimization_time}ms"
            + (f" | user {user_id}" if user_id else "")
        )

        return result

    def solve(
        self,
        cart: List[CartItem],
        strategy: OptimizationStrategy,
        prices: PriceMap
    ) -> OptimizedCart:
        """Run the strategy on already-fetched prices (no I/O, no cache)."""
        handler = STRATEGY_HANDLERS.get(strategy.type)
        if handler is None:
            raise UnsupportedStrategy(strategy.type)

        store_ids = self.catalog.store_ids()
        if strategy.type == "meal-plan":
            quality = strategy.quality_stores if strategy.quality_stores is not None else self.quality_stores
            breakdown = handler(cart, strategy, store_ids, prices, self.fees, quality_stores=quality)
        else:
            breakdown = handler(cart, strategy, store_ids, prices, self.fees)

        total_cost = breakdown_total(breakdown)
        savings = calculate_savings(cart, breakdown, store_ids, prices, self.fees)

        return OptimizedCart(
            strategy=strategy.type,
            total_cost=total_cost,
            estimated_savings=savings,
            savings_percentage=savings_percentage(total_cost, savings),
            store_breakdown=breakdown,
            delivery_windows=self.get_delivery_windows(breakdown),
            optimization_time=0,
            item_count=len(cart),
            store_count=len(breakdown),
        )

    def recommendations(self, result: OptimizedCart) -> List[Dict]:
        """Free-delivery top-up hints for a result's store orders."""
        return bundling_recommendations(result.store_breakdown, self.fees)

    def get_delivery_windows(self, breakdown: List[StoreCartBreakdown]) -> List[DeliveryWindow]:
        """One window per store: earliest in 2 hours, latest in 24 hours."""
        now = self._now()
        return [
            DeliveryWindow(
                store_id=store.store_id,
                earliest_delivery=now + timedelta(hours=2),
                latest_delivery=now + timedelta(hours=24),
                delivery_fee=store.delivery_fee,
            )
            for store in breakdown
        ]

    # ------------------------------------------------------------------
    # Multi-strategy helpers
    # ------------------------------------------------------------------

    async def compare_strategies(
        self,
        cart: List[CartItem],
        user_id: Optional[str] = None
    ) -> Dict:
        """
        Run every comparison strategy concurrently.

        A strategy that fails is reported with its error instead of failing
        the whole comparison. The recommendation is the successful result
        with the highest savings percentage (first one on ties).

        Returns:
            {"comparisons": [{"strategy", "result", "error"}], "recommendation": {...} | None}
        """
        validate_cart(cart)

        async def run(strategy: OptimizationStrategy) -> Dict:
            try:
                result = await self.optimize_cart(cart, strategy, user_id)
                return {"strategy": strategy.type, "result": result, "error": None}
            except Exception as e:
                logger.error(f"✗ Strategy {strategy.type} failed during comparison: {e}")
                return {"strategy": strategy.type, "result": None, "error": str(e)}

        comparisons = await asyncio.gather(*(run(s) for s in COMPARISON_STRATEGIES))

        best = None
        for entry in comparisons:
            if entry["result"] is None:
                continue
            if best is None or entry["result"].savings_percentage > best["result"].savings_percentage:
                best = entry

        recommendation = None
        if best is not None:
            result = best["result"]
            recommendation = {
                "strategy": best["strategy"],
                "reason": (
                    f"Offers {result.savings_percentage:.1f}% savings "
                    f"(${result.estimated_savings:.2f})"
                ),
                "result": result,
            }

        return {"comparisons": list(comparisons), "recommendation": recommendation}

    async def estimate_savings(self, cart: List[CartItem]) -> Dict:
        """Cheap savings estimate: budget strategy restricted to one store."""
        result = await self.optimize_cart(
            cart,
            OptimizationStrategy(type="budget", delivery_preference="cheapest", max_stores=1),
        )
        return {
            "estimatedSavings": result.estimated_savings,
            "savingsPercentage": result.savings_percentage,
            "totalCost": result.total_cost,
            "message": (
                f"You could save ${result.estimated_savings:.2f} "
                f"({result.savings_percentage:.1f}%) with SmartCart optimization"
            ),
        }

    async def compare_store_prices(self, product_ids: List[str]) -> List[Dict]:
        """
        Price each product at every store.

        Returns:
            Per product: every store price, the cheapest in-stock store and
            the min/max price seen (None when no store answered)
        """
        prices = await self.price_source.get_prices_for_products(product_ids)

        comparisons = []
        for product_id, store_prices in prices.items():
            in_stock = [p for p in store_prices if p.in_stock]
            cheapest = None
            for candidate in in_stock:
                if cheapest is None or candidate.price < cheapest.price:
                    cheapest = candidate

            all_prices = [p.price for p in store_prices]
            comparisons.append({
                "productId": product_id,
                "stores": [p.to_dict() for p in store_prices],
                "cheapestStore": cheapest.store_id if cheapest else None,
                "cheapestPrice": cheapest.price if cheapest else None,
                "priceRange": {"min": min(all_prices), "max": max(all_prices)} if all_prices else None,
            })

        return comparisons


def build_engine(db_manager=None) -> PriceOptimizationEngine:
    """
    Wire an engine from configuration.

    With a DatabaseManager the catalog and result cache live in the
    database; without one, the default catalog and an in-memory cache are used.
    """
    if db_manager is not None:
        catalog = DatabaseStoreCatalog(db_manager)
        cache = DatabaseResultCache(db_manager)
    else:
        catalog = StaticStoreCatalog.from_tuples(DEFAULT_STORES)
        cache = InMemoryResultCache()

    settings = {sid: STORE_API_SETTINGS.get(sid, {}) for sid in catalog.store_ids()}
    price_source = StorePriceSource(build_store_clients(settings), catalog, timeout=STORE_LOOKUP_TIMEOUT)

    return PriceOptimizationEngine(price_source, catalog, cache=cache)
