# wmsalloc/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from wmsalloc import __version__
from wmsalloc.api.routers.inventory_allocations import router as inventory_allocations_router
from wmsalloc.core.config import get_settings
from wmsalloc.core.logging import setup_logging
from wmsalloc.db.base import init_models
from wmsalloc.db.session import close_engines
from wmsalloc.http_problem_handlers import register_exception_handlers
from wmsalloc.metrics import router as metrics_router

settings = get_settings()
setup_logging(settings.LOG_LEVEL, json=settings.JSON_LOG)
logger = logging.getLogger("wmsalloc")


@asynccontextmanager
async def lifespan(_app: FastAPI):
    init_models()
    logger.info("wmsalloc %s starting (env=%s)", __version__, settings.ENV)
    yield
    await close_engines()


app = FastAPI(
    title="WMS Allocation",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

register_exception_handlers(app)

app.include_router(inventory_allocations_router)
app.include_router(metrics_router)


@app.get("/ping")
async def ping():
    return {"status": "ok"}


@app.get("/healthz")
async def healthz():
    return {"status": "ok", "version": __version__}
