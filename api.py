"""
HTTP API for the SmartCart optimization service

Endpoints:
- POST /optimize                  optimize a cart (public mode or full strategy)
- POST /optimize/compare          run all four strategies, recommend the best
- GET  /optimize/strategies       static strategy catalog
- POST /optimize/estimate-savings quick budget estimate (single store)
- POST /optimize/compare-stores   per-product price comparison across stores
- GET  /health                    liveness + database status

Malformed bodies get 400 with per-field details. Unexpected failures get a
generic 500; internal error text is logged, never returned.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import List, Literal, Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from config import DEFAULT_STORES, LOG_LEVEL
from optimizer import STRATEGY_CATALOG, PriceOptimizationEngine, build_engine, strategy_for_mode
from shopping_cart import (
    CartItem,
    CartValidationError,
    OptimizationStrategy,
    UnsupportedStrategy,
)

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)


# --------------------- Request schemas ---------------------


class CartItemIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(..., alias="productId", min_length=1)
    name: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)
    max_price: Optional[float] = Field(None, alias="maxPrice", ge=0)
    category: Optional[str] = None

    def to_cart_item(self) -> CartItem:
        return CartItem(
            product_id=self.product_id,
            name=self.name,
            quantity=self.quantity,
            max_price=self.max_price,
            category=self.category,
        )


class StrategyIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str
    delivery_preference: Literal["fastest", "cheapest", "single-trip"] = Field(
        "cheapest", alias="deliveryPreference"
    )
    max_stores: Optional[int] = Field(None, alias="maxStores", ge=1, le=10)
    prioritize_savings: bool = Field(False, alias="prioritizeSavings")
    preferred_stores: List[str] = Field(default_factory=list, alias="preferredStores")
    quality_stores: Optional[List[str]] = Field(None, alias="qualityStores")

    def to_strategy(self) -> OptimizationStrategy:
        return OptimizationStrategy(
            type=self.type,
            delivery_preference=self.delivery_preference,
            max_stores=self.max_stores,
            prioritize_savings=self.prioritize_savings,
            preferred_stores=tuple(self.preferred_stores),
            quality_stores=tuple(self.quality_stores) if self.quality_stores is not None else None,
        )


class OptimizeRequest(BaseModel):
    items: List[CartItemIn] = Field(..., min_length=1, validation_alias=AliasChoices("items", "cart"))
    mode: Optional[Literal["price", "time", "convenience"]] = None
    strategy: Optional[StrategyIn] = None
    user_id: Optional[str] = Field(None, alias="userId")


class CompareRequest(BaseModel):
    cart: List[CartItemIn] = Field(..., min_length=1)
    user_id: Optional[str] = Field(None, alias="userId")


class EstimateItemIn(BaseModel):
    product_id: str = Field(..., alias="productId", min_length=1)
    quantity: int = Field(..., ge=1)
    name: Optional[str] = None

    def to_cart_item(self) -> CartItem:
        return CartItem(product_id=self.product_id, name=self.name or self.product_id, quantity=self.quantity)


class EstimateRequest(BaseModel):
    cart: List[EstimateItemIn] = Field(..., min_length=1)


class CompareStoresRequest(BaseModel):
    product_ids: List[str] = Field(..., alias="productIds", min_length=1)


# --------------------- Error responses ---------------------


def _validation_details(exc: RequestValidationError) -> List[dict]:
    return [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", ""),
            "type": err.get("type", ""),
        }
        for err in exc.errors()
    ]


async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Invalid request data", "details": _validation_details(exc)},
    )


async def cart_validation_handler(request: Request, exc: CartValidationError):
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Invalid request data", "details": [{"message": str(exc)}]},
    )


async def unsupported_strategy_handler(request: Request, exc: UnsupportedStrategy):
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Unsupported strategy", "message": str(exc)},
    )


def _server_error(message: str) -> JSONResponse:
    return JSONResponse(status_code=500, content={"success": False, "error": message})


# --------------------- Routes ---------------------

router = APIRouter(tags=["optimization"])


def get_engine(request: Request) -> PriceOptimizationEngine:
    return request.app.state.engine


@router.post("/optimize")
async def optimize(payload: OptimizeRequest, engine: PriceOptimizationEngine = Depends(get_engine)):
    start_time = time.perf_counter()
    cart = [item.to_cart_item() for item in payload.items]
    strategy = payload.strategy.to_strategy() if payload.strategy else strategy_for_mode(payload.mode or "price")

    logger.info(f"Optimization request: {strategy.type} strategy for {len(cart)} items")

    try:
        result = await engine.optimize_cart(cart, strategy, payload.user_id)
    except (CartValidationError, UnsupportedStrategy):
        raise
    except Exception:
        logger.exception("Optimization error")
        return _server_error("Optimization failed")

    return {
        "success": True,
        "data": result.to_dict(),
        "meta": {
            "processingTime": int((time.perf_counter() - start_time) * 1000),
            "itemsOptimized": len(cart),
            "strategyUsed": strategy.type,
            "unavailableItems": result.unfulfilled_product_ids(cart),
            "recommendations": engine.recommendations(result),
        },
    }


@router.post("/optimize/compare")
async def compare(payload: CompareRequest, engine: PriceOptimizationEngine = Depends(get_engine)):
    start_time = time.perf_counter()
    cart = [item.to_cart_item() for item in payload.cart]

    logger.info(f"Strategy comparison request for {len(cart)} items")

    try:
        comparison = await engine.compare_strategies(cart, payload.user_id)
    except CartValidationError:
        raise
    except Exception:
        logger.exception("Strategy comparison error")
        return _server_error("Comparison failed")

    recommendation = comparison["recommendation"]
    if recommendation is not None:
        recommendation = {**recommendation, "result": recommendation["result"].to_dict()}

    return {
        "success": True,
        "data": {
            "comparisons": [
                {
                    "strategy": entry["strategy"],
                    "result": entry["result"].to_dict() if entry["result"] else None,
                    "error": entry["error"],
                }
                for entry in comparison["comparisons"]
            ],
            "recommendation": recommendation,
        },
        "meta": {
            "processingTime": int((time.perf_counter() - start_time) * 1000),
            "itemsAnalyzed": len(cart),
            "strategiesCompared": len(comparison["comparisons"]),
        },
    }


@router.get("/optimize/strategies")
async def list_strategies():
    return {"success": True, "data": STRATEGY_CATALOG}


@router.post("/optimize/estimate-savings")
async def estimate_savings(payload: EstimateRequest, engine: PriceOptimizationEngine = Depends(get_engine)):
    cart = [item.to_cart_item() for item in payload.cart]

    try:
        estimate = await engine.estimate_savings(cart)
    except CartValidationError:
        raise
    except Exception:
        logger.exception("Savings estimate error")
        return _server_error("Estimation failed")

    return {"success": True, "data": estimate}


@router.post("/optimize/compare-stores")
async def compare_stores(payload: CompareStoresRequest, engine: PriceOptimizationEngine = Depends(get_engine)):
    try:
        comparisons = await engine.compare_store_prices(payload.product_ids)
    except Exception:
        logger.exception("Store comparison error")
        return _server_error("Comparison failed")

    return {"success": True, "data": {"comparisons": comparisons}}


@router.get("/health")
async def health(request: Request):
    db_manager = getattr(request.app.state, "db_manager", None)
    database_ok = db_manager.health_check() if db_manager is not None else None
    cache = getattr(request.app.state.engine, "cache", None)

    status = "ok" if database_ok is not False else "degraded"
    return {
        "status": status,
        "database": database_ok,
        "cache": type(cache).__name__ if cache is not None else None,
    }


# --------------------- App factory ---------------------


def create_app(engine: Optional[PriceOptimizationEngine] = None) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        engine: Pre-built engine (tests). When None, the engine is wired
            from configuration at startup, backed by the database.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.engine is None:
            from database import get_db_manager

            db_manager = get_db_manager()
            db_manager.init_db()
            db_manager.seed_stores(DEFAULT_STORES)
            app.state.db_manager = db_manager
            app.state.engine = build_engine(db_manager)
        yield
        if getattr(app.state, "db_manager", None) is not None:
            app.state.db_manager.close()

    app = FastAPI(
        title="SmartCart Optimization API",
        version="1.0.0",
        lifespan=lifespan,
        description="Cart price optimization across grocery stores",
    )
    app.state.engine = engine
    app.state.db_manager = None

    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(CartValidationError, cart_validation_handler)
    app.add_exception_handler(UnsupportedStrategy, unsupported_strategy_handler)
    app.include_router(router)

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
