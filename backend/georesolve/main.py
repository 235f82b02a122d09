from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from georesolve.api.routes import router
from georesolve.core.config import get_settings
from georesolve.core.logging import configure_logging, get_logger
from georesolve.services.gateway import close_catalog_gateway


settings = get_settings()
configure_logging(settings.debug)

_logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    _logger.info("Catalog gateway configured", base_url=settings.catalog_base_url)
    yield
    await close_catalog_gateway()


app = FastAPI(
    title="Georesolve API",
    version="0.1.0",
    debug=settings.debug,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


@app.get("/health", tags=["system"])
async def health_check() -> dict[str, str]:
    """Return basic service health."""

    return {"status": "ok"}
