"""
Streamlit UI for SmartCart

- Input: cart rows (product id, name, quantity, category)
- Optimize: one strategy, or all four side by side
- Display: per-store breakdown, delivery fees, totals and savings
"""

import asyncio
import logging

import pandas as pd
import streamlit as st

from config import DEFAULT_STORES, LOG_LEVEL
from optimizer import STRATEGY_CATALOG, build_engine
from shopping_cart import CartItem, CartValidationError, OptimizationStrategy, UnsupportedStrategy

logging.basicConfig(level=LOG_LEVEL)

st.set_page_config(page_title="SmartCart Optimizer", layout="wide")

st.title("SmartCart Optimizer 🛒")
st.caption("Find the cheapest way to buy your cart across " + ", ".join(name for _, name, _ in DEFAULT_STORES))

# ============================================================================
# ENGINE INITIALIZATION
# ============================================================================


@st.cache_resource
def init_engine():
    """Engine backed by the configured database (catalog + result cache)."""
    from database import get_db_manager

    db_manager = get_db_manager()
    db_manager.init_db()
    db_manager.seed_stores(DEFAULT_STORES)

    if not db_manager.health_check():
        raise RuntimeError("Database connection failed")

    return build_engine(db_manager)


try:
    engine = init_engine()
except Exception as e:
    st.error(f"❌ Failed to initialize services: {e}")
    st.stop()

# ============================================================================
# CART INPUT
# ============================================================================

DEFAULT_CART = pd.DataFrame([
    {"productId": "milk-1gal", "name": "Whole Milk", "quantity": 1, "category": "dairy"},
    {"productId": "spinach-organic", "name": "Organic Spinach", "quantity": 2, "category": "organic produce"},
    {"productId": "bread-wheat", "name": "Wheat Bread", "quantity": 1, "category": "bakery"},
])

st.header("Your Cart 🧾")
cart_df = st.data_editor(DEFAULT_CART, num_rows="dynamic", use_container_width=True)

strategy_names = {entry["id"]: entry["name"] for entry in STRATEGY_CATALOG}

col_input_1, col_input_2 = st.columns([2, 1])
with col_input_1:
    strategy_type = st.selectbox(
        "Strategy",
        options=list(strategy_names),
        format_func=lambda sid: strategy_names[sid],
    )
with col_input_2:
    max_stores = st.number_input("Max stores (budget)", min_value=1, max_value=10, value=2)


def cart_from_frame(df: pd.DataFrame):
    rows = df.dropna(subset=["productId"])
    return [
        CartItem(
            product_id=str(row["productId"]).strip(),
            name=str(row["name"] or row["productId"]),
            quantity=int(row["quantity"]),
            category=row["category"] if isinstance(row["category"], str) and row["category"] else None,
        )
        for _, row in rows.iterrows()
        if str(row["productId"]).strip()
    ]


def show_result(result):
    c1, c2, c3 = st.columns(3)
    c1.metric("💰 Total", f"${result.total_cost:.2f}")
    c2.metric("📉 Savings", f"${result.estimated_savings:.2f}", f"{result.savings_percentage:.1f}%")
    c3.metric("🏬 Stores", result.store_count)

    for store in result.store_breakdown:
        st.subheader(store.store_name)
        st.write(f"Subtotal **${store.subtotal:.2f}** + delivery **${store.delivery_fee:.2f}**")
        for item in store.items:
            st.write(f"- {item.name} × {item.quantity}: ${item.total_price:.2f}")

    if result.has_unfulfilled_items():
        st.warning("⚠️ Some items are not available at any store and were left out.")

    for hint in engine.recommendations(result):
        st.info(f"💡 {hint['message']}")


# ============================================================================
# ACTIONS
# ============================================================================

try:
    cart = cart_from_frame(cart_df)
except (ValueError, TypeError) as e:
    st.error(f"❌ Invalid cart row: {e}")
    st.stop()

col_btn_1, col_btn_2 = st.columns(2)

if col_btn_1.button("⚡ Optimize", type="primary"):
    strategy = OptimizationStrategy(type=strategy_type, max_stores=int(max_stores))
    try:
        with st.spinner("Fetching prices and optimizing..."):
            result = asyncio.run(engine.optimize_cart(cart, strategy))
    except (CartValidationError, UnsupportedStrategy) as e:
        st.error(f"❌ {e}")
        st.stop()

    st.header(f"{strategy_names[strategy_type]} ✅")
    show_result(result)

if col_btn_2.button("📊 Compare all strategies"):
    try:
        with st.spinner("Running every strategy..."):
            comparison = asyncio.run(engine.compare_strategies(cart))
    except CartValidationError as e:
        st.error(f"❌ {e}")
        st.stop()

    rows = []
    for entry in comparison["comparisons"]:
        result = entry["result"]
        rows.append({
            "Strategy": strategy_names.get(entry["strategy"], entry["strategy"]),
            "Total": round(result.total_cost, 2) if result else None,
            "Savings %": round(result.savings_percentage, 1) if result else None,
            "Stores": result.store_count if result else None,
            "Error": entry["error"] or "",
        })
    st.dataframe(pd.DataFrame(rows), use_container_width=True)

    recommendation = comparison["recommendation"]
    if recommendation:
        st.success(f"Recommended: {strategy_names[recommendation['strategy']]} · {recommendation['reason']}")
        show_result(recommendation["result"])

st.markdown("---")
st.caption("🛒 SmartCart · Prices are mock values unless store API keys are configured")
