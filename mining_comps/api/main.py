from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from mining_comps.cache import TTLCache
from mining_comps.config import settings
from mining_comps.facts import FACT_SPECS
from mining_comps.ingestion.pipeline import ReconciliationPipeline, build_pipeline
from mining_comps.listing import build_listing
from mining_comps.models import CompanyListing, CompanyRecord, FactSpec, IngestionSummary
from mining_comps.storage import CompanyStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def schedule_ingestion(state) -> asyncio.Task[IngestionSummary]:
    """Start a run in the background and drop the listing cache once it ends.

    The task is kept on `state.ingest_tasks` until done so its outcome is
    collected and logged.
    """
    task = asyncio.create_task(state.pipeline.run_once())
    state.ingest_tasks.add(task)

    def _finished(done: asyncio.Task[IngestionSummary]) -> None:
        state.ingest_tasks.discard(done)
        state.listing_cache.clear()
        if done.cancelled():
            logger.warning("Background ingestion cancelled")
        elif done.exception() is not None:
            logger.error("Background ingestion failed: %s", done.exception())
        else:
            logger.info("Background ingestion finished: %s", done.result().model_dump())

    task.add_done_callback(_finished)
    return task


def create_app(
    store: Optional[CompanyStore] = None,
    pipeline: Optional[ReconciliationPipeline] = None,
    cache_ttl_seconds: Optional[float] = None,
) -> FastAPI:
    """Build the API around an injected store/pipeline; defaults come from settings."""
    app = FastAPI(
        title="Mining Comps API",
        version="0.1.0",
        description="Reconciled financial and mining metrics for a list of mining companies.",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    pipeline = pipeline or build_pipeline()
    app.state.pipeline = pipeline
    app.state.store = store or pipeline.store
    ttl = settings.listing_cache_ttl_seconds if cache_ttl_seconds is None else cache_ttl_seconds
    app.state.listing_cache = TTLCache(ttl)
    app.state.ingest_tasks = set()

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @app.get("/sources", response_model=List[str])
    async def list_sources(request: Request) -> List[str]:
        return request.app.state.pipeline.source_names

    @app.get("/facts", response_model=List[FactSpec])
    async def list_facts() -> List[FactSpec]:
        return list(FACT_SPECS.values())

    @app.post("/ingest/run", response_model=IngestionSummary)
    async def trigger_ingestion(
        request: Request,
        background: bool = Query(False, description="Run ingestion as a background task"),
    ):
        """Trigger a reconciliation run. Use `background=true` to return immediately."""
        state = request.app.state
        state.listing_cache.clear()
        if background:
            schedule_ingestion(state)
            return IngestionSummary(total_companies=0, written_companies=0, sources=state.pipeline.source_names)

        summary = await state.pipeline.run_once()
        state.listing_cache.clear()
        return summary

    @app.get("/companies", response_model=List[CompanyListing])
    async def list_companies(
        request: Request,
        response: Response,
        sort: Optional[str] = Query(None, description="Field to sort by, e.g. market_cap or ev_per_oz"),
        descending: bool = Query(True, description="Sort descending"),
        ticker: Optional[str] = Query(None, description="Filter by ticker symbol"),
        limit: int = Query(500, ge=1, le=5000, description="Maximum number of rows to return"),
    ) -> List[CompanyListing]:
        cache: TTLCache[List[CompanyRecord]] = request.app.state.listing_cache
        records = cache.get()
        if records is None:
            records = request.app.state.store.load()
            cache.put(records)
            logger.info("Listing cache refreshed with %s companies", len(records))
        if ticker:
            records = [r for r in records if r.ticker == ticker.strip().upper()]
        try:
            rows = build_listing(records, sort=sort, descending=descending)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        response.headers["Cache-Control"] = f"public, max-age={int(cache.ttl_seconds)}"
        return rows[:limit]

    @app.get("/companies/{ticker}", response_model=CompanyRecord)
    async def get_company(request: Request, ticker: str) -> CompanyRecord:
        record = request.app.state.store.get(ticker.upper())
        if record is None:
            raise HTTPException(status_code=404, detail=f"Unknown ticker {ticker.upper()}")
        return record

    return app


app = create_app()
