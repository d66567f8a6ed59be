# ---------------------------------------------------------
# nftmarket/main.py
# NFT Rental Marketplace - reconciliation backend
#
# Run: uvicorn nftmarket.main:app --reload (from repo root)
#
# - FastAPI + JSON document store
# - /api/nft/verify     : verify ledger ownership, upsert asset, mirror accounts
# - /api/nft/details    : read-only ledger view of a token
# - /api/rentals/sync   : mirror ERC-4907 usage rights for one token
# - /accounts/*         : registration, wallet linking, owned / rented views
# - background scheduler: periodic rental sync sweep (SCHEDULER_ENABLED)
# ---------------------------------------------------------

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Callable, Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from nftmarket.chain import ChainReader, JsonRpcChainReader
from nftmarket.config import (
    CORS_ORIGINS,
    DATASTORE_PATH,
    IS_DEV,
    IS_PROD,
    SCHEDULER_ENABLED,
    SYNC_INTERVAL_SECONDS,
    SYNC_WORKERS,
)
from nftmarket.datastore import DocumentStore
from nftmarket.metadata import MetadataResolver
from nftmarket.reconcile import ReconciliationEngine
from nftmarket.repositories import AccountRepository, AssetRepository, ContractRepository
from nftmarket.scheduler import RentalSyncScheduler
from nftmarket import routes_accounts, routes_assets, routes_rentals


def build_engine(
    store: DocumentStore,
    chain: ChainReader,
    resolver: MetadataResolver,
    clock: Optional[Callable[[], float]] = None,
) -> ReconciliationEngine:
    return ReconciliationEngine(
        assets=AssetRepository(store),
        contracts=ContractRepository(store),
        accounts=AccountRepository(store),
        chain=chain,
        resolver=resolver,
        clock=clock or time.time,
    )


def create_app(
    store: Optional[DocumentStore] = None,
    chain: Optional[ChainReader] = None,
    resolver: Optional[MetadataResolver] = None,
    start_scheduler: Optional[bool] = None,
    clock: Optional[Callable[[], float]] = None,
) -> FastAPI:
    """
    Wire store → engine → scheduler → routes.

    The store is opened on startup (if the caller has not opened it already) and
    closed on shutdown; the scheduler thread is started only when
    start_scheduler (default: SCHEDULER_ENABLED) is true.
    """
    store = store or DocumentStore(DATASTORE_PATH)
    engine = build_engine(store, chain or JsonRpcChainReader(), resolver or MetadataResolver(), clock)
    scheduler = RentalSyncScheduler(engine, interval_seconds=SYNC_INTERVAL_SECONDS, workers=SYNC_WORKERS)
    run_scheduler = SCHEDULER_ENABLED if start_scheduler is None else start_scheduler

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store.open()
        if run_scheduler:
            scheduler.start()
        try:
            yield
        finally:
            if scheduler.running:
                scheduler.stop()
            store.close()

    app = FastAPI(title="NFT Rental Marketplace Backend", version="0.1", lifespan=lifespan)
    app.state.store = store
    app.state.engine = engine
    app.state.scheduler = scheduler

    # CORS configuration from config module
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS if IS_PROD else ["*"],  # Restrict origins in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    app.include_router(routes_accounts.router)
    app.include_router(routes_assets.router)
    app.include_router(routes_rentals.router)

    if IS_DEV:
        print(f"[STARTUP] Routes mounted: {len(app.routes)}, scheduler={'on' if run_scheduler else 'off'}")
    return app


app = create_app()
