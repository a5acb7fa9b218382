"""
Cart Solver - store assignment algorithms

This module implements the "Brain" that decides which store supplies which
cart item. It is pure: prices, the store catalog and delivery rules are
passed in, nothing is fetched here.

Rules:
- Budget: search every store subset of size 1..maxStores (lexicographic by
  store id), partition the cart greedily inside each subset, keep the
  cheapest subtotal + delivery. Partial subsets compete on what they supply.
- Split-cart: per item, lowest in-stock price, preferred stores first.
- Convenience: first catalog store stocking everything, else the first two
  catalog stores partitioned greedily.
- Meal-plan: organic/produce items go to the cheapest quality store that
  has them, everything else to the global cheapest.
- Savings: most expensive complete single-store basket minus our total.
- Recommendations: orders less than $10 short of free delivery get a top-up hint.

Ties always go to the first candidate in a deterministic order: subset
generation order for budget, store-id order of the price lists elsewhere.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple, TypeVar

from shopping_cart import (
    BreakdownItem,
    CartItem,
    OptimizationStrategy,
    PriceMatrix,
    StoreCartBreakdown,
    StorePrice,
)

T = TypeVar("T")

PriceMap = Dict[str, List[StorePrice]]
Assignment = Dict[str, StorePrice]  # product_id -> chosen store price

QUALITY_CATEGORY_TAGS = ("organic", "produce")

# Suggest topping up an order when it is this close to free delivery
BUNDLE_HINT_WINDOW = 10.0
MAX_RECOMMENDATIONS = 5


class StoreCatalog(Protocol):
    def store_ids(self) -> List[str]: ...

    def store_name(self, store_id: str) -> str: ...

    def delivery_fee(self, store_id: str) -> float: ...


@dataclass
class DeliveryFeePolicy:
    """
    Delivery fee rules shared by every strategy and the savings baseline.

    Attributes:
        catalog: Store catalog (names and flat per-store fees)
        free_delivery_threshold: Subtotal at which delivery becomes free; None disables it
    """
    catalog: StoreCatalog
    free_delivery_threshold: Optional[float] = None

    def fee_for(self, store_id: str, subtotal: float) -> float:
        if self.free_delivery_threshold is not None and subtotal >= self.free_delivery_threshold:
            return 0.0
        return self.catalog.delivery_fee(store_id)

    def store_name(self, store_id: str) -> str:
        return self.catalog.store_name(store_id)


# ============================================================================
# COMBINATION GENERATOR
# ============================================================================

def get_combinations(items: Sequence[T], size: int) -> List[List[T]]:
    """
    All subsets of `size` elements, keeping input order.

    Recursive head/tail generation: each element in turn is the head,
    combined with every (size - 1)-subset of the elements after it.

    >>> get_combinations(["a", "b", "c"], 2)
    [['a', 'b'], ['a', 'c'], ['b', 'c']]
    """
    if size <= 0 or size > len(items):
        return []
    if size == 1:
        return [[item] for item in items]

    result = []
    for i in range(len(items) - size + 1):
        head = items[i]
        for tail in get_combinations(items[i + 1:], size - 1):
            result.append([head] + tail)
    return result


def generate_store_combinations(store_ids: Sequence[str], max_stores: int) -> List[List[str]]:
    """Subsets of size 1..max_stores, smaller sizes first."""
    combinations = []
    for size in range(1, min(max_stores, len(store_ids)) + 1):
        combinations.extend(get_combinations(list(store_ids), size))
    return combinations


# ============================================================================
# BREAKDOWN HELPERS
# ============================================================================

def find_store_price(prices: PriceMap, product_id: str, store_id: str) -> Optional[StorePrice]:
    """In-stock price of a product at a store, or None."""
    for store_price in prices.get(product_id, []):
        if store_price.store_id == store_id and store_price.in_stock:
            return store_price
    return None


def breakdown_total(breakdown: List[StoreCartBreakdown]) -> float:
    return sum(store.subtotal + store.delivery_fee for store in breakdown)


def _make_breakdown(
    store_id: str,
    entries: List[Tuple[CartItem, float]],
    fees: DeliveryFeePolicy,
) -> StoreCartBreakdown:
    items = [
        BreakdownItem(
            product_id=item.product_id,
            name=item.name,
            quantity=item.quantity,
            price=price,
            total_price=price * item.quantity,
        )
        for item, price in entries
    ]
    subtotal = sum(i.total_price for i in items)
    return StoreCartBreakdown(
        store_id=store_id,
        store_name=fees.store_name(store_id),
        items=items,
        subtotal=subtotal,
        delivery_fee=fees.fee_for(store_id, subtotal),
    )


def calculate_store_breakdown(
    cart: List[CartItem],
    store_ids: Sequence[str],
    prices: PriceMap,
    fees: DeliveryFeePolicy,
) -> List[StoreCartBreakdown]:
    """
    Greedy first-available partition of the cart over an ordered store list.

    Each item goes to the first store in `store_ids` that has it in stock.
    Items no listed store stocks are left out. Stores that receive nothing
    produce no breakdown.

    Args:
        cart: Cart items in input order
        store_ids: Candidate stores, in priority order
        prices: Price source output
        fees: Delivery fee rules

    Returns:
        One breakdown per populated store, in `store_ids` order
    """
    entries_by_store: Dict[str, List[Tuple[CartItem, float]]] = {sid: [] for sid in store_ids}

    for item in cart:
        for store_id in store_ids:
            store_price = find_store_price(prices, item.product_id, store_id)
            if store_price:
                entries_by_store[store_id].append((item, store_price.price))
                break

    return [
        _make_breakdown(store_id, entries, fees)
        for store_id, entries in entries_by_store.items()
        if entries
    ]


def group_items_by_store(
    cart: List[CartItem],
    assignments: Assignment,
) -> Dict[str, List[Tuple[CartItem, float]]]:
    """Group per-item assignments by store, stores ordered by first use in the cart."""
    groups: Dict[str, List[Tuple[CartItem, float]]] = {}
    for item in cart:
        assignment = assignments.get(item.product_id)
        if assignment is None:
            continue
        groups.setdefault(assignment.store_id, []).append((item, assignment.price))
    return groups


def build_store_breakdown(
    groups: Dict[str, List[Tuple[CartItem, float]]],
    fees: DeliveryFeePolicy,
) -> List[StoreCartBreakdown]:
    return [_make_breakdown(store_id, entries, fees) for store_id, entries in groups.items()]


def _cheapest(candidates: List[StorePrice]) -> Optional[StorePrice]:
    """Lowest price; the first one wins ties."""
    best = None
    for candidate in candidates:
        if best is None or candidate.price < best.price:
            best = candidate
    return best


def _in_stock(prices: PriceMap, product_id: str) -> List[StorePrice]:
    return [p for p in prices.get(product_id, []) if p.in_stock]


# ============================================================================
# STRATEGIES
# ============================================================================

def optimize_for_minimum_cost(
    cart: List[CartItem],
    strategy: OptimizationStrategy,
    store_ids: Sequence[str],
    prices: PriceMap,
    fees: DeliveryFeePolicy,
) -> List[StoreCartBreakdown]:
    """
    Budget: lowest subtotal + delivery over every subset of up to maxStores stores.

    Subsets that supply only part of the cart still compete on the cost of
    what they do supply. A subset supplying nothing is skipped, so a cart
    nobody stocks yields an empty breakdown.
    """
    max_stores = strategy.max_stores or 1

    best_option: List[StoreCartBreakdown] = []
    lowest_cost = float('inf')

    for combo in generate_store_combinations(sorted(store_ids), max_stores):
        breakdown = calculate_store_breakdown(cart, combo, prices, fees)
        if not breakdown:
            continue

        total_cost = breakdown_total(breakdown)
        if total_cost < lowest_cost:
            lowest_cost = total_cost
            best_option = breakdown

    return best_option


def optimize_for_best_item_prices(
    cart: List[CartItem],
    strategy: OptimizationStrategy,
    store_ids: Sequence[str],
    prices: PriceMap,
    fees: DeliveryFeePolicy,
) -> List[StoreCartBreakdown]:
    """Split-cart: each item at its lowest in-stock price, preferred stores first."""
    preferred = set(strategy.preferred_stores)
    assignments: Assignment = {}

    for item in cart:
        available = _in_stock(prices, item.product_id)
        if preferred:
            preferred_prices = [p for p in available if p.store_id in preferred]
            if preferred_prices:
                available = preferred_prices

        choice = _cheapest(available)
        if choice:
            assignments[item.product_id] = choice

    return build_store_breakdown(group_items_by_store(cart, assignments), fees)


def optimize_for_convenience(
    cart: List[CartItem],
    strategy: OptimizationStrategy,
    store_ids: Sequence[str],
    prices: PriceMap,
    fees: DeliveryFeePolicy,
) -> List[StoreCartBreakdown]:
    """
    Convenience: as few stores as possible, price ignored.

    Uses the first catalog store that stocks every item. Without one, the
    cart is split greedily over the first two catalog stores, which may
    leave items unassigned.
    """
    matrix = PriceMatrix.from_prices([item.product_id for item in cart], list(store_ids), prices)
    complete_stores = matrix.fulfilling_stores()

    target_stores = complete_stores[:1] or list(store_ids)[:2]
    return calculate_store_breakdown(cart, target_stores, prices, fees)


def is_quality_item(item: CartItem) -> bool:
    category = (item.category or "").lower()
    return any(tag in category for tag in QUALITY_CATEGORY_TAGS)


def optimize_for_meal_planning(
    cart: List[CartItem],
    strategy: OptimizationStrategy,
    store_ids: Sequence[str],
    prices: PriceMap,
    fees: DeliveryFeePolicy,
    quality_stores: Sequence[str] = (),
) -> List[StoreCartBreakdown]:
    """Meal-plan: organic/produce from the cheapest quality store, the rest at the global lowest price."""
    quality = set(quality_stores)
    assignments: Assignment = {}

    for item in cart:
        available = _in_stock(prices, item.product_id)

        choice = None
        if is_quality_item(item):
            choice = _cheapest([p for p in available if p.store_id in quality])
        if choice is None:
            choice = _cheapest(available)

        if choice:
            assignments[item.product_id] = choice

    return build_store_breakdown(group_items_by_store(cart, assignments), fees)


StrategyHandler = Callable[..., List[StoreCartBreakdown]]

STRATEGY_HANDLERS: Dict[str, StrategyHandler] = {
    "budget": optimize_for_minimum_cost,
    "convenience": optimize_for_convenience,
    "split-cart": optimize_for_best_item_prices,
    "meal-plan": optimize_for_meal_planning,
}


# ============================================================================
# SAVINGS
# ============================================================================

def calculate_savings(
    cart: List[CartItem],
    breakdown: List[StoreCartBreakdown],
    store_ids: Sequence[str],
    prices: PriceMap,
    fees: DeliveryFeePolicy,
) -> float:
    """
    Savings against the most expensive store that could supply the whole cart.

    Args:
        cart: Original cart
        breakdown: Chosen allocation
        store_ids: Catalog stores considered as single-store baselines
        prices: Price source output
        fees: Delivery fee rules

    Returns:
        max(0, highest complete single-store total - allocation total);
        0 when no single store can supply everything
    """
    if not cart:
        return 0.0

    matrix = PriceMatrix.from_prices([item.product_id for item in cart], list(store_ids), prices)
    totals = matrix.store_totals({item.product_id: item.quantity for item in cart})

    highest_cost = 0.0
    for store_id in matrix.fulfilling_stores():
        subtotal = float(totals[store_id])
        highest_cost = max(highest_cost, subtotal + fees.fee_for(store_id, subtotal))

    if highest_cost == 0.0:
        return 0.0

    return max(0.0, highest_cost - breakdown_total(breakdown))


def savings_percentage(total_cost: float, savings: float) -> float:
    """Savings as a share of what the user would otherwise have paid."""
    if total_cost <= 0:
        return 0.0
    return (savings / (total_cost + savings)) * 100


# ============================================================================
# RECOMMENDATIONS
# ============================================================================

def bundling_recommendations(
    breakdown: List[StoreCartBreakdown],
    fees: DeliveryFeePolicy,
    window: float = BUNDLE_HINT_WINDOW,
) -> List[Dict]:
    """
    Hints for store orders that fall just short of free delivery.

    A store qualifies when its subtotal is under the free-delivery threshold
    by less than `window`. The potential saving is the fee that store would
    waive. Nothing is suggested while no threshold is configured.

    Returns:
        Up to MAX_RECOMMENDATIONS dicts, largest potential saving first
    """
    threshold = fees.free_delivery_threshold
    if threshold is None:
        return []

    recommendations = []
    for store in breakdown:
        needed = threshold - store.subtotal
        if 0 < needed < window:
            recommendations.append({
                "type": "bundle",
                "storeId": store.store_id,
                "message": f"Add ${needed:.2f} more from {store.store_name} for free delivery",
                "amountNeeded": needed,
                "potentialSavings": fees.catalog.delivery_fee(store.store_id),
            })

    recommendations.sort(key=lambda r: r["potentialSavings"], reverse=True)
    return recommendations[:MAX_RECOMMENDATIONS]
