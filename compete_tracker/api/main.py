"""FastAPI application for Compete Tracker."""

import asyncio
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from ..agents.task_client import CancelToken
from ..errors import (
    AgentNotConfigured,
    AgentTimeoutError,
    BlockedOrUnavailable,
    EntityNotFound,
    MissingIdentity,
    NetworkError,
    ProviderError,
    TaskCancelled,
    TrackerError,
)
from ..history.models import EntityKind
from ..orchestrator.coordinator import RefreshCoordinator, build_coordinator
from ..utils.config import get_config

# Non-standard code (nginx convention) for requests the client abandoned
CLIENT_CLOSED_REQUEST = 499

ERROR_STATUS = [
    (MissingIdentity, 400),
    (EntityNotFound, 404),
    (AgentNotConfigured, 500),
    (NetworkError, 502),
    (ProviderError, 502),
    (BlockedOrUnavailable, 503),
    (AgentTimeoutError, 504),
    (TaskCancelled, CLIENT_CLOSED_REQUEST),
]


# ============================================================================
# Request bodies
# ============================================================================


class CompetitorCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    store_url: str = Field(alias="storeUrl", min_length=1)


class CompetitorRefresh(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[int] = None
    store_url: Optional[str] = Field(default=None, alias="storeUrl")


class ProductCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_url: str = Field(alias="productUrl", min_length=1)
    competitor: Optional[str] = None


class ProductRefresh(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[int] = None
    product_url: Optional[str] = Field(default=None, alias="productUrl")


class FunnelRequest(BaseModel):
    competitor: str = Field(min_length=1)
    query: str = Field(min_length=1)


# ============================================================================
# Helpers
# ============================================================================


def status_for(error: TrackerError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 500


def error_body(error: TrackerError) -> dict:
    body = {"error": str(error), "type": type(error).__name__}
    if isinstance(error, ProviderError):
        body["status"] = error.status_code
        body["body"] = error.body
    if isinstance(error, BlockedOrUnavailable):
        body["reason"] = error.reason
    return body


def get_coordinator(request: Request) -> RefreshCoordinator:
    """Coordinator for this app, built from configuration on first use."""
    if request.app.state.coordinator is None:
        request.app.state.coordinator = build_coordinator()
    return request.app.state.coordinator


async def watch_disconnect(request: Request, cancel: CancelToken, interval: float = 0.5):
    """Cancel ``cancel`` once the client goes away."""
    while not cancel.cancelled:
        if await request.is_disconnected():
            logger.info("Client disconnected, cancelling agent task")
            cancel.cancel()
            return
        await asyncio.sleep(interval)


async def refresh_one(
    coordinator: RefreshCoordinator,
    kind: EntityKind,
    entity_id: Optional[int],
    identity: Optional[str],
):
    if not identity:
        if entity_id is None:
            raise MissingIdentity(f"Provide an id or URL of the {kind.value} to refresh")
        stored = coordinator.db.get(kind, entity_id)
        if stored is None:
            raise EntityNotFound(f"No {kind.value} with id {entity_id}")
        identity = stored.identity
    return await coordinator.refresh_tracked(kind, identity)


# ============================================================================
# Application
# ============================================================================


def create_app(
    coordinator: Optional[RefreshCoordinator] = None,
    seed_store_urls: Optional[List[str]] = None,
) -> FastAPI:
    """Build the API.

    Args:
        coordinator: Refresh coordinator; built from configuration on the
            first request when omitted
        seed_store_urls: Store URLs the cron endpoint starts tracking if they
            are not tracked yet; defaults to ``seed_store_urls`` from config
    """
    config = get_config()

    app = FastAPI(
        title="Compete Tracker API",
        description="Competitor and product tracking with snapshot history",
        version="1.0.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.coordinator = coordinator
    app.state.seed_store_urls = (
        seed_store_urls if seed_store_urls is not None else list(config.seed_store_urls)
    )

    @app.exception_handler(TrackerError)
    async def tracker_error_handler(request: Request, exc: TrackerError):
        status = status_for(exc)
        if status >= 500 and status != CLIENT_CLOSED_REQUEST:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        else:
            logger.warning(f"{request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=status, content=error_body(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
        )

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": "Compete Tracker API",
            "version": "1.0.0",
            "status": "running",
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "timestamp": datetime.utcnow().isoformat(),
        }

    # ------------------------------------------------------------------
    # Competitors
    # ------------------------------------------------------------------

    @app.get("/competitors")
    async def list_competitors(coordinator: RefreshCoordinator = Depends(get_coordinator)):
        competitors = coordinator.db.list_competitors()
        return {
            "competitors": [c.model_dump(mode="json") for c in competitors],
            "total": len(competitors),
        }

    @app.get("/competitors/{competitor_id}")
    async def get_competitor(
        competitor_id: int,
        coordinator: RefreshCoordinator = Depends(get_coordinator),
    ):
        competitor = coordinator.db.get(EntityKind.COMPETITOR, competitor_id)
        if competitor is None:
            raise HTTPException(status_code=404, detail="Competitor not found")
        return competitor.model_dump(mode="json")

    @app.post("/competitors", status_code=201)
    async def add_competitor(
        body: CompetitorCreate,
        coordinator: RefreshCoordinator = Depends(get_coordinator),
    ):
        """Track a store and take its first snapshot."""
        competitor = await coordinator.track(EntityKind.COMPETITOR, body.store_url)
        return competitor.model_dump(mode="json")

    @app.patch("/competitors/refresh")
    async def refresh_competitor(
        body: CompetitorRefresh,
        coordinator: RefreshCoordinator = Depends(get_coordinator),
    ):
        competitor = await refresh_one(coordinator, EntityKind.COMPETITOR, body.id, body.store_url)
        return competitor.model_dump(mode="json")

    @app.delete("/competitors/{competitor_id}")
    async def delete_competitor(
        competitor_id: int,
        coordinator: RefreshCoordinator = Depends(get_coordinator),
    ):
        if not coordinator.db.delete(EntityKind.COMPETITOR, competitor_id):
            raise HTTPException(status_code=404, detail="Competitor not found")
        return {"deleted": True, "id": competitor_id}

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    @app.get("/products")
    async def list_products(
        seller: Optional[str] = Query(None, description="Only products sold by this competitor"),
        coordinator: RefreshCoordinator = Depends(get_coordinator),
    ):
        products = coordinator.db.list_products(competitor=seller)
        return {
            "products": [p.model_dump(mode="json") for p in products],
            "total": len(products),
        }

    @app.get("/products/{product_id}")
    async def get_product(
        product_id: int,
        coordinator: RefreshCoordinator = Depends(get_coordinator),
    ):
        product = coordinator.db.get(EntityKind.PRODUCT, product_id)
        if product is None:
            raise HTTPException(status_code=404, detail="Product not found")
        return product.model_dump(mode="json")

    @app.post("/products", status_code=201)
    async def add_product(
        body: ProductCreate,
        coordinator: RefreshCoordinator = Depends(get_coordinator),
    ):
        product = await coordinator.track(
            EntityKind.PRODUCT, body.product_url, competitor=body.competitor
        )
        return product.model_dump(mode="json")

    @app.patch("/products/refresh")
    async def refresh_product(
        body: ProductRefresh,
        coordinator: RefreshCoordinator = Depends(get_coordinator),
    ):
        product = await refresh_one(coordinator, EntityKind.PRODUCT, body.id, body.product_url)
        return product.model_dump(mode="json")

    @app.delete("/products/{product_id}")
    async def delete_product(
        product_id: int,
        coordinator: RefreshCoordinator = Depends(get_coordinator),
    ):
        if not coordinator.db.delete(EntityKind.PRODUCT, product_id):
            raise HTTPException(status_code=404, detail="Product not found")
        return {"deleted": True, "id": product_id}

    # ------------------------------------------------------------------
    # Ad funnels
    # ------------------------------------------------------------------

    @app.post("/ad-funnels")
    async def explore_funnel(
        body: FunnelRequest,
        request: Request,
        coordinator: RefreshCoordinator = Depends(get_coordinator),
    ):
        """Follow a competitor's sponsored ad through to checkout.

        The agent task is cancelled if the client disconnects first.
        """
        cancel = CancelToken()
        watcher = asyncio.create_task(watch_disconnect(request, cancel))
        try:
            run = await coordinator.explore_funnel(body.competitor, body.query, cancel)
        finally:
            watcher.cancel()
            await asyncio.gather(watcher, return_exceptions=True)
        return run.model_dump(mode="json", by_alias=True)

    @app.get("/ad-funnels")
    async def list_funnel_runs(
        limit: int = Query(20, ge=1, le=100, description="Number of runs"),
        coordinator: RefreshCoordinator = Depends(get_coordinator),
    ):
        runs = coordinator.db.list_funnel_runs(limit=limit)
        return {"runs": [run.model_dump(mode="json", by_alias=True) for run in runs]}

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    @app.post("/cron/update")
    async def cron_update(
        request: Request,
        coordinator: RefreshCoordinator = Depends(get_coordinator),
    ):
        """Refresh everything tracked, then start tracking any new seed stores."""
        outcomes = await coordinator.refresh_all()
        outcomes += await coordinator.ensure_tracked(
            EntityKind.COMPETITOR, request.app.state.seed_store_urls
        )
        return {
            "success": all(outcome.ok for outcome in outcomes),
            "timestamp": datetime.utcnow().isoformat(),
            "refreshed": sum(1 for outcome in outcomes if outcome.ok),
            "failed": sum(1 for outcome in outcomes if not outcome.ok),
            "results": [outcome.model_dump(mode="json") for outcome in outcomes],
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    config = get_config()
    uvicorn.run(
        "compete_tracker.api.main:app",
        host=config.api.host,
        port=config.api.port,
        reload=False,
    )
