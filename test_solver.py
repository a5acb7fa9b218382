"""
Tests for the store assignment algorithms
"""

import pytest

from conftest import STAPLES, default_catalog, item, make_engine, make_prices
from shopping_cart import OptimizationStrategy
from solver import (
    DeliveryFeePolicy,
    STRATEGY_HANDLERS,
    breakdown_total,
    bundling_recommendations,
    calculate_savings,
    calculate_store_breakdown,
    generate_store_combinations,
    get_combinations,
    is_quality_item,
    optimize_for_best_item_prices,
    optimize_for_convenience,
    optimize_for_meal_planning,
    optimize_for_minimum_cost,
    savings_percentage,
)

STORE_IDS = ["kroger", "safeway", "walmart", "target"]


@pytest.fixture
def fees():
    return DeliveryFeePolicy(default_catalog())


def budget(max_stores=None):
    return OptimizationStrategy(type="budget", max_stores=max_stores)


# ============================================================================
# COMBINATIONS
# ============================================================================

def test_get_combinations_keeps_input_order():
    assert get_combinations(["a", "b", "c"], 2) == [["a", "b"], ["a", "c"], ["b", "c"]]
    assert get_combinations(["a", "b", "c"], 3) == [["a", "b", "c"]]


def test_get_combinations_out_of_range_sizes():
    assert get_combinations(["a", "b"], 0) == []
    assert get_combinations(["a", "b"], 3) == []
    assert get_combinations([], 1) == []


def test_generate_store_combinations_smaller_sizes_first():
    combos = generate_store_combinations(["a", "b", "c", "d"], 2)

    assert len(combos) == 4 + 6
    assert combos[:4] == [["a"], ["b"], ["c"], ["d"]]
    assert combos[4] == ["a", "b"]


def test_generate_store_combinations_caps_at_catalog_size():
    assert len(generate_store_combinations(["a", "b", "c", "d"], 10)) == 15


# ============================================================================
# BREAKDOWN
# ============================================================================

def test_greedy_breakdown_uses_first_listed_store(fees):
    prices = make_prices({
        "milk": {"kroger": 3.49, "walmart": 2.99},
        "eggs": {"walmart": 4.10},
    })
    cart = [item("milk", 2), item("eggs")]

    breakdown = calculate_store_breakdown(cart, ["kroger", "walmart"], prices, fees)

    assert [b.store_id for b in breakdown] == ["kroger", "walmart"]
    assert breakdown[0].items[0].total_price == pytest.approx(6.98)
    assert breakdown[0].delivery_fee == pytest.approx(9.95)
    assert breakdown[1].store_name == "Walmart"


def test_greedy_breakdown_skips_out_of_stock(fees):
    prices = make_prices({"milk": {"kroger": (3.49, False), "walmart": 2.99}})

    breakdown = calculate_store_breakdown([item("milk")], ["kroger", "walmart"], prices, fees)

    assert [b.store_id for b in breakdown] == ["walmart"]


def test_free_delivery_threshold_waives_fee():
    policy = DeliveryFeePolicy(default_catalog(), free_delivery_threshold=35.0)

    assert policy.fee_for("kroger", 40.0) == 0.0
    assert policy.fee_for("kroger", 10.0) == pytest.approx(9.95)
    assert policy.fee_for("unknown-store", 10.0) == pytest.approx(9.95)


# ============================================================================
# BUDGET
# ============================================================================

def test_budget_single_store_picks_cheapest(fees):
    prices = make_prices({"p1": {"kroger": 3.00, "walmart": 2.50}})
    cart = [item("p1", name="Milk")]

    breakdown = optimize_for_minimum_cost(cart, budget(1), STORE_IDS, prices, fees)

    assert [b.store_id for b in breakdown] == ["walmart"]
    assert breakdown_total(breakdown) == pytest.approx(2.50 + 7.95)


def test_budget_defaults_to_one_store(fees):
    prices = make_prices(STAPLES)
    cart = [item("milk"), item("bread")]

    breakdown = optimize_for_minimum_cost(cart, budget(), STORE_IDS, prices, fees)

    assert len(breakdown) == 1
    assert breakdown[0].store_id == "walmart"
    assert breakdown_total(breakdown) == pytest.approx(2.99 + 2.79 + 7.95)


def test_budget_partial_subset_can_win(fees):
    prices = make_prices({
        "p1": {"kroger": 5.00, "walmart": 2.00},
        "p2": {"kroger": 4.00},
    })
    cart = [item("p1"), item("p2")]

    breakdown = optimize_for_minimum_cost(cart, budget(1), STORE_IDS, prices, fees)

    assert [b.store_id for b in breakdown] == ["walmart"]
    assert [i.product_id for i in breakdown[0].items] == ["p1"]


def test_budget_nothing_in_stock_returns_empty(fees):
    prices = make_prices({"p1": {"kroger": (3.0, False), "walmart": (2.0, False)}})

    assert optimize_for_minimum_cost([item("p1")], budget(4), STORE_IDS, prices, fees) == []


def test_budget_never_costs_more_than_convenience(fees):
    prices = make_prices(STAPLES)
    cart = [item("milk", 2), item("bread")]

    cheapest = optimize_for_minimum_cost(cart, budget(4), STORE_IDS, prices, fees)
    convenient = optimize_for_convenience(
        cart, OptimizationStrategy(type="convenience"), STORE_IDS, prices, fees
    )

    assert len(convenient) == 1
    assert breakdown_total(cheapest) <= breakdown_total(convenient)


# ============================================================================
# CONVENIENCE
# ============================================================================

def test_convenience_first_complete_store_in_catalog_order(fees):
    prices = make_prices({
        "p1": {"safeway": 5.00, "target": 1.00},
        "p2": {"safeway": 5.00, "target": 1.00},
    })
    cart = [item("p1"), item("p2")]

    breakdown = optimize_for_convenience(
        cart, OptimizationStrategy(type="convenience"), STORE_IDS, prices, fees
    )

    assert [b.store_id for b in breakdown] == ["safeway"]


def test_convenience_falls_back_to_first_two_stores(fees):
    prices = make_prices({
        "p1": {"kroger": 3.00},
        "p2": {"safeway": 2.00},
    })
    cart = [item("p1"), item("p2")]

    breakdown = optimize_for_convenience(
        cart, OptimizationStrategy(type="convenience"), STORE_IDS, prices, fees
    )

    assert [b.store_id for b in breakdown] == ["kroger", "safeway"]


def test_convenience_fallback_omits_unstocked_item():
    engine, _ = make_engine({
        "p1": {"kroger": 3.00},
        "p2": {"walmart": 2.00},
    })
    cart = [item("p1"), item("p2")]

    result = engine.solve(
        cart,
        OptimizationStrategy(type="convenience"),
        make_prices({"p1": {"kroger": 3.00}, "p2": {"walmart": 2.00}}),
    )

    assert result.store_count == 1
    assert result.item_count == 2
    assert result.unfulfilled_product_ids(cart) == ["p2"]


# ============================================================================
# SPLIT-CART
# ============================================================================

def test_split_cart_cheapest_per_item(fees):
    prices = make_prices(STAPLES)
    cart = [item("milk"), item("bread")]

    breakdown = optimize_for_best_item_prices(
        cart, OptimizationStrategy(type="split-cart"), STORE_IDS, prices, fees
    )

    assert [b.store_id for b in breakdown] == ["walmart", "target"]


def test_split_cart_preferred_store_wins_when_stocked(fees):
    prices = make_prices({"p1": {"kroger": 3.00, "walmart": 2.50, "target": 4.00}})
    strategy = OptimizationStrategy(type="split-cart", preferred_stores=("target",))

    breakdown = optimize_for_best_item_prices([item("p1")], strategy, STORE_IDS, prices, fees)

    assert [b.store_id for b in breakdown] == ["target"]


def test_split_cart_preferred_store_missing_falls_back(fees):
    prices = make_prices({"p1": {"kroger": 3.00, "walmart": 2.50, "target": (4.00, False)}})
    strategy = OptimizationStrategy(type="split-cart", preferred_stores=("target",))

    breakdown = optimize_for_best_item_prices([item("p1")], strategy, STORE_IDS, prices, fees)

    assert [b.store_id for b in breakdown] == ["walmart"]


def test_split_cart_tie_goes_to_lowest_store_id(fees):
    prices = make_prices({"p1": {"walmart": 2.00, "kroger": 2.00}})

    breakdown = optimize_for_best_item_prices(
        [item("p1")], OptimizationStrategy(type="split-cart"), STORE_IDS, prices, fees
    )

    assert breakdown[0].store_id == "kroger"


# ============================================================================
# MEAL-PLAN
# ============================================================================

def test_is_quality_item_matches_case_insensitively():
    assert is_quality_item(item("spinach", category="Organic Produce"))
    assert is_quality_item(item("apples", category="PRODUCE"))
    assert not is_quality_item(item("milk", category="dairy"))
    assert not is_quality_item(item("salt"))


def test_meal_plan_quality_items_from_quality_stores(fees):
    prices = make_prices({
        "spinach": {"kroger": 4.00, "safeway": 3.50, "walmart": 2.00},
        "milk": {"kroger": 3.49, "walmart": 2.99},
    })
    cart = [item("spinach", category="organic produce"), item("milk", category="dairy")]

    breakdown = optimize_for_meal_planning(
        cart, OptimizationStrategy(type="meal-plan"), STORE_IDS, prices, fees,
        quality_stores=("kroger", "safeway"),
    )

    assert [b.store_id for b in breakdown] == ["safeway", "walmart"]


def test_meal_plan_quality_item_without_quality_store_uses_global_cheapest(fees):
    prices = make_prices({"apples": {"walmart": 1.00, "target": 1.50}})

    breakdown = optimize_for_meal_planning(
        [item("apples", category="produce")], OptimizationStrategy(type="meal-plan"),
        STORE_IDS, prices, fees, quality_stores=("kroger", "safeway"),
    )

    assert [b.store_id for b in breakdown] == ["walmart"]


def test_meal_plan_quality_stores_override_from_strategy():
    table = {"spinach": {"kroger": 4.00, "safeway": 3.50, "walmart": 2.00}}
    engine, _ = make_engine(table)
    strategy = OptimizationStrategy(type="meal-plan", quality_stores=("walmart",))

    result = engine.solve([item("spinach", category="organic")], strategy, make_prices(table))

    assert result.store_breakdown[0].store_id == "walmart"


# ============================================================================
# SAVINGS
# ============================================================================

def test_savings_against_most_expensive_complete_store(fees):
    prices = make_prices(STAPLES)
    cart = [item("milk"), item("bread")]
    breakdown = optimize_for_minimum_cost(cart, budget(1), STORE_IDS, prices, fees)

    savings = calculate_savings(cart, breakdown, STORE_IDS, prices, fees)

    # safeway is the priciest complete basket: 3.99 + 2.99 + 12.95
    assert savings == pytest.approx((3.99 + 2.99 + 12.95) - (2.99 + 2.79 + 7.95))


def test_savings_zero_when_no_store_has_everything(fees):
    prices = make_prices({"p1": {"kroger": 3.00}, "p2": {"walmart": 2.00}})
    cart = [item("p1"), item("p2")]
    breakdown = optimize_for_best_item_prices(
        cart, OptimizationStrategy(type="split-cart"), STORE_IDS, prices, fees
    )

    assert calculate_savings(cart, breakdown, STORE_IDS, prices, fees) == 0.0


def test_savings_zero_for_empty_cart(fees):
    assert calculate_savings([], [], STORE_IDS, {}, fees) == 0.0


def test_savings_percentage():
    assert savings_percentage(12.0, 3.0) == pytest.approx(20.0)
    assert savings_percentage(0.0, 5.0) == 0.0


def test_nothing_in_stock_yields_empty_result():
    table = {"p1": {"kroger": (3.0, False), "walmart": (2.0, False)}}
    engine, _ = make_engine(table)

    result = engine.solve([item("p1")], budget(4), make_prices(table))

    assert result.store_breakdown == []
    assert result.total_cost == 0
    assert result.estimated_savings == 0
    assert result.savings_percentage == 0
    assert result.item_count == 1
    assert result.store_count == 0


# ============================================================================
# CROSS-STRATEGY PROPERTIES
# ============================================================================

PROPERTY_TABLES = [
    STAPLES,
    {
        "milk": {"kroger": 3.49, "walmart": (2.99, False), "target": 3.29},
        "bread": {"safeway": 2.99},
        "eggs": {"walmart": 4.10, "target": (3.90, False)},
    },
    {
        "spinach": {"kroger": 4.00, "safeway": 3.50, "walmart": 2.00},
        "apples": {"walmart": 1.20, "target": 1.10},
        "milk": {"kroger": 3.49, "walmart": 2.99},
    },
    {
        "milk": {"kroger": 3.49, "walmart": 2.99},
        "bread": {"kroger": 2.49, "walmart": 2.29},
    },
    {"saffron": {"kroger": (12.0, False)}},
]


def property_cart(table):
    categories = {"spinach": "organic produce", "apples": "produce"}
    return [
        item(product_id, quantity=i + 1, category=categories.get(product_id))
        for i, product_id in enumerate(table)
    ]


@pytest.mark.parametrize("table", PROPERTY_TABLES)
@pytest.mark.parametrize("strategy_type", list(STRATEGY_HANDLERS))
def test_strategy_results_are_well_formed(table, strategy_type):
    engine, _ = make_engine(table)
    cart = property_cart(table)
    quantities = {i.product_id: i.quantity for i in cart}

    result = engine.solve(cart, OptimizationStrategy(type=strategy_type), make_prices(table))

    fulfilled = result.fulfilled_product_ids()
    assert len(fulfilled) == len(set(fulfilled))
    for store in result.store_breakdown:
        for entry in store.items:
            assert entry.quantity <= quantities[entry.product_id]
    assert result.total_cost >= 0
    assert result.estimated_savings >= 0
    assert 0 <= result.savings_percentage <= 100
    assert result.item_count == len(cart)
    assert result.store_count == len(result.store_breakdown)


@pytest.mark.parametrize("table", PROPERTY_TABLES)
def test_budget_no_dearer_than_single_store_meal_plan(table):
    engine, _ = make_engine(table)
    cart = property_cart(table)
    prices = make_prices(table)

    meal_plan = engine.solve(cart, OptimizationStrategy(type="meal-plan"), prices)
    if meal_plan.store_count != 1 or meal_plan.has_unfulfilled_items():
        pytest.skip("meal-plan result spans several stores or misses items")

    cheapest = engine.solve(cart, OptimizationStrategy(type="budget", max_stores=1), prices)

    assert cheapest.total_cost <= meal_plan.total_cost + 1e-9


# ============================================================================
# RECOMMENDATIONS
# ============================================================================

def bundle_breakdown(fees):
    prices = make_prices({
        "a": {"walmart": 28.00},
        "b": {"kroger": 20.00},
        "c": {"target": 40.00},
        "d": {"safeway": 30.00},
    })
    cart = [item("a"), item("b"), item("c"), item("d")]
    return calculate_store_breakdown(cart, ["walmart", "kroger", "target", "safeway"], prices, fees)


def test_bundling_hint_for_orders_just_under_threshold():
    fees = DeliveryFeePolicy(default_catalog(), free_delivery_threshold=35.0)

    hints = bundling_recommendations(bundle_breakdown(fees), fees)

    assert [h["storeId"] for h in hints] == ["safeway", "walmart"]
    assert hints[1]["message"] == "Add $7.00 more from Walmart for free delivery"
    assert hints[1]["potentialSavings"] == pytest.approx(7.95)
    assert hints[0]["amountNeeded"] == pytest.approx(5.00)


def test_no_bundling_hint_without_threshold(fees):
    assert bundling_recommendations(bundle_breakdown(fees), fees) == []


def test_fee_policy_accepts_any_catalog_with_names_and_fees():
    class FlatCatalog:
        def store_ids(self):
            return ["corner"]

        def store_name(self, store_id):
            return store_id.upper()

        def delivery_fee(self, store_id):
            return 3.0

    policy = DeliveryFeePolicy(FlatCatalog(), free_delivery_threshold=20.0)

    assert policy.fee_for("corner", 5.0) == 3.0
    assert policy.store_name("corner") == "CORNER"
