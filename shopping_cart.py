"""
Shopping Cart Domain - data structures for cart price optimization

This module defines:
1. Cart input objects (CartItem, OptimizationStrategy)
2. Store-side objects (StoreInfo, StorePrice)
3. Result objects (StoreCartBreakdown, DeliveryWindow, OptimizedCart)
4. PriceMatrix: products x stores table of in-stock unit prices
5. The optimization error taxonomy

Every object here is created fresh per optimization request and never
mutated after the request returns. Results serialize to the camelCase JSON
shape used on the wire and in the result cache.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd


STRATEGY_TYPES = ("budget", "convenience", "split-cart", "meal-plan")
DELIVERY_PREFERENCES = ("fastest", "cheapest", "single-trip")
MAX_STORES_LIMIT = 10


# ============================================================================
# ERRORS
# ============================================================================

class OptimizationError(Exception):
    """Base class for errors that reject an optimization call"""
    pass


class CartValidationError(OptimizationError, ValueError):
    """Raised when the cart or strategy is malformed"""
    pass


class UnsupportedStrategy(OptimizationError):
    """Raised when the strategy type has no matching algorithm"""

    def __init__(self, strategy_type: str):
        super().__init__(f"Unknown optimization strategy: {strategy_type}")
        self.strategy_type = strategy_type


# ============================================================================
# CART INPUT
# ============================================================================

@dataclass(frozen=True)
class CartItem:
    """
    One distinct product in the user's cart.

    Attributes:
        product_id: Catalog product identifier
        name: Display name
        quantity: Units requested (>= 1)
        max_price: Optional unit price ceiling set by the user
        category: Optional category tag, e.g. "produce" or "organic dairy"
    """
    product_id: str
    name: str
    quantity: int
    max_price: Optional[float] = None
    category: Optional[str] = None

    def to_dict(self) -> Dict:
        data = {"productId": self.product_id, "name": self.name, "quantity": self.quantity}
        if self.max_price is not None:
            data["maxPrice"] = self.max_price
        if self.category is not None:
            data["category"] = self.category
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "CartItem":
        return cls(
            product_id=str(data["productId"]),
            name=data.get("name") or str(data["productId"]),
            quantity=int(data["quantity"]),
            max_price=data.get("maxPrice"),
            category=data.get("category"),
        )


@dataclass(frozen=True)
class OptimizationStrategy:
    """
    How cart items should be assigned to stores.

    Attributes:
        type: One of STRATEGY_TYPES
        delivery_preference: One of DELIVERY_PREFERENCES
        max_stores: Upper bound on stores searched by the budget strategy (1-10)
        prioritize_savings: Carried for callers; no algorithm reads it yet
        preferred_stores: Store ids the split-cart strategy tries first
        quality_stores: Overrides the configured meal-plan quality allowlist
    """
    type: str
    delivery_preference: str = "cheapest"
    max_stores: Optional[int] = None
    prioritize_savings: bool = False
    preferred_stores: Tuple[str, ...] = ()
    quality_stores: Optional[Tuple[str, ...]] = None

    def validate(self) -> None:
        """Check field ranges. The type itself is checked at dispatch."""
        if self.delivery_preference not in DELIVERY_PREFERENCES:
            raise CartValidationError(
                f"deliveryPreference must be one of {', '.join(DELIVERY_PREFERENCES)}"
            )
        if self.max_stores is not None and not 1 <= self.max_stores <= MAX_STORES_LIMIT:
            raise CartValidationError(f"maxStores must be between 1 and {MAX_STORES_LIMIT}")

    @classmethod
    def from_dict(cls, data: Dict) -> "OptimizationStrategy":
        quality = data.get("qualityStores")
        return cls(
            type=data["type"],
            delivery_preference=data.get("deliveryPreference", "cheapest"),
            max_stores=data.get("maxStores"),
            prioritize_savings=bool(data.get("prioritizeSavings", False)),
            preferred_stores=tuple(data.get("preferredStores") or ()),
            quality_stores=tuple(quality) if quality is not None else None,
        )


def validate_cart(cart: List[CartItem]) -> None:
    """Reject carts with bad quantities or repeated products."""
    seen = set()
    for item in cart:
        if item.quantity < 1:
            raise CartValidationError(f"quantity for {item.product_id} must be at least 1")
        if item.product_id in seen:
            raise CartValidationError(
                f"product {item.product_id} appears more than once; merge quantities instead"
            )
        seen.add(item.product_id)


# ============================================================================
# STORE SIDE
# ============================================================================

@dataclass(frozen=True)
class StoreInfo:
    """A store in the catalog with its flat delivery fee."""
    store_id: str
    name: str
    delivery_fee: float


@dataclass(frozen=True)
class StorePrice:
    """Price and availability of one product at one store."""
    store_id: str
    price: float
    in_stock: bool
    delivery_fee: float

    def to_dict(self) -> Dict:
        return {
            "storeId": self.store_id,
            "price": self.price,
            "inStock": self.in_stock,
            "deliveryFee": self.delivery_fee,
        }


# ============================================================================
# RESULT OBJECTS
# ============================================================================

@dataclass
class BreakdownItem:
    product_id: str
    name: str
    quantity: int
    price: float
    total_price: float

    def to_dict(self) -> Dict:
        return {
            "productId": self.product_id,
            "name": self.name,
            "quantity": self.quantity,
            "price": self.price,
            "totalPrice": self.total_price,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "BreakdownItem":
        return cls(
            product_id=data["productId"],
            name=data["name"],
            quantity=data["quantity"],
            price=data["price"],
            total_price=data["totalPrice"],
        )


@dataclass
class StoreCartBreakdown:
    """
    The slice of an optimized cart bought from one store.

    Attributes:
        store_id: Store identifier
        store_name: Display name (falls back to the id for unknown stores)
        items: Items assigned to this store
        subtotal: Sum of item totals
        delivery_fee: Fee charged by this store for this order
        savings: Per-store savings (reserved, always 0 today)
    """
    store_id: str
    store_name: str
    items: List[BreakdownItem] = field(default_factory=list)
    subtotal: float = 0.0
    delivery_fee: float = 0.0
    savings: float = 0.0

    @property
    def total(self) -> float:
        return self.subtotal + self.delivery_fee

    def to_dict(self) -> Dict:
        return {
            "storeId": self.store_id,
            "storeName": self.store_name,
            "items": [item.to_dict() for item in self.items],
            "subtotal": self.subtotal,
            "deliveryFee": self.delivery_fee,
            "savings": self.savings,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "StoreCartBreakdown":
        return cls(
            store_id=data["storeId"],
            store_name=data["storeName"],
            items=[BreakdownItem.from_dict(item) for item in data["items"]],
            subtotal=data["subtotal"],
            delivery_fee=data["deliveryFee"],
            savings=data.get("savings", 0.0),
        )


@dataclass
class DeliveryWindow:
    store_id: str
    earliest_delivery: datetime
    latest_delivery: datetime
    delivery_fee: float

    def to_dict(self) -> Dict:
        return {
            "storeId": self.store_id,
            "earliestDelivery": self.earliest_delivery.isoformat(),
            "latestDelivery": self.latest_delivery.isoformat(),
            "deliveryFee": self.delivery_fee,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "DeliveryWindow":
        return cls(
            store_id=data["storeId"],
            earliest_delivery=datetime.fromisoformat(data["earliestDelivery"]),
            latest_delivery=datetime.fromisoformat(data["latestDelivery"]),
            delivery_fee=data["deliveryFee"],
        )


@dataclass
class OptimizedCart:
    """
    Result of one optimization call.

    item_count always reflects the size of the input cart, so callers can
    detect items that no store could supply by comparing it with the
    products present in store_breakdown.
    """
    strategy: str
    total_cost: float
    estimated_savings: float
    savings_percentage: float
    store_breakdown: List[StoreCartBreakdown]
    delivery_windows: List[DeliveryWindow]
    optimization_time: int  # milliseconds
    item_count: int
    store_count: int

    def fulfilled_product_ids(self) -> List[str]:
        return [item.product_id for store in self.store_breakdown for item in store.items]

    def has_unfulfilled_items(self) -> bool:
        """True when at least one cart item is in no store breakdown."""
        return len(self.fulfilled_product_ids()) < self.item_count

    def unfulfilled_product_ids(self, cart: Iterable[CartItem]) -> List[str]:
        """Cart products that appear in no store breakdown."""
        fulfilled = set(self.fulfilled_product_ids())
        return [item.product_id for item in cart if item.product_id not in fulfilled]

    def to_dict(self) -> Dict:
        return {
            "strategy": self.strategy,
            "totalCost": self.total_cost,
            "estimatedSavings": self.estimated_savings,
            "savingsPercentage": self.savings_percentage,
            "storeBreakdown": [store.to_dict() for store in self.store_breakdown],
            "deliveryWindows": [window.to_dict() for window in self.delivery_windows],
            "optimizationTime": self.optimization_time,
            "itemCount": self.item_count,
            "storeCount": self.store_count,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "OptimizedCart":
        return cls(
            strategy=data["strategy"],
            total_cost=data["totalCost"],
            estimated_savings=data["estimatedSavings"],
            savings_percentage=data["savingsPercentage"],
            store_breakdown=[StoreCartBreakdown.from_dict(s) for s in data["storeBreakdown"]],
            delivery_windows=[DeliveryWindow.from_dict(w) for w in data["deliveryWindows"]],
            optimization_time=data["optimizationTime"],
            item_count=data["itemCount"],
            store_count=data["storeCount"],
        )


# ============================================================================
# PRICE MATRIX
# ============================================================================

class PriceMatrix:
    """
    Two-sided price matrix: rows are products, columns are stores.

    Values are in-stock unit prices. A product that a store does not carry,
    or carries but has out of stock, holds float('inf').
    """

    def __init__(self, product_ids: List[str], store_ids: List[str]):
        self.product_ids = list(product_ids)
        self.store_ids = list(store_ids)

        self.data = pd.DataFrame(
            data=float('inf'),
            index=self.product_ids,
            columns=self.store_ids,
            dtype=float
        )

    @classmethod
    def from_prices(
        cls,
        product_ids: List[str],
        store_ids: List[str],
        prices: Dict[str, List[StorePrice]],
    ) -> "PriceMatrix":
        """Build a matrix from the price source output, ignoring out-of-stock entries."""
        matrix = cls(product_ids, store_ids)
        for product_id in product_ids:
            for store_price in prices.get(product_id, []):
                if store_price.in_stock and store_price.store_id in matrix.data.columns:
                    matrix.set_price(product_id, store_price.store_id, store_price.price)
        return matrix

    def set_price(self, product_id: str, store_id: str, price: float) -> None:
        if product_id not in self.data.index:
            raise ValueError(f"Product '{product_id}' not in price matrix")
        if store_id not in self.data.columns:
            raise ValueError(f"Store '{store_id}' not in price matrix")

        self.data.loc[product_id, store_id] = price

    def get_price(self, product_id: str, store_id: str) -> float:
        return self.data.loc[product_id, store_id]

    def store_totals(self, quantities: Dict[str, int]) -> pd.Series:
        """Cost of buying every product at each store (inf where something is missing)."""
        qty = pd.Series(quantities, dtype=float).reindex(self.data.index).fillna(0.0)
        return self.data.mul(qty, axis=0).sum(axis=0)

    def fulfilling_stores(self) -> List[str]:
        """Stores, in column order, that stock every product in the matrix."""
        complete = (self.data != float('inf')).all(axis=0)
        return [store_id for store_id in self.store_ids if bool(complete[store_id])]
