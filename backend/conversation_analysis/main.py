"""Application bootstrap for the Conversation Analysis API.

This module wires the FastAPI application, attaches middleware, and exposes small lifecycle utilities.

Functions:
    lifespan(app: FastAPI): Initialise database state, optionally start in-process workers, and yield control back to FastAPI.
    health_check(): Lightweight readiness probe used by monitoring and local smoke tests.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from conversation_analysis.api import api_router
from conversation_analysis.core.config import get_settings
from conversation_analysis.core.logging import configure_logging
from conversation_analysis.db.session import SessionLocal, init_db
from conversation_analysis.worker import AnalysisWorkerPool

settings = get_settings()
configure_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    pool: AnalysisWorkerPool | None = None
    if settings.start_workers_with_app:
        pool = AnalysisWorkerPool(SessionLocal, settings=settings)
        pool.start()
    try:
        yield
    finally:
        if pool is not None:
            await pool.stop()


app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/health")
async def health_check():
    return {"status": "ok"}
