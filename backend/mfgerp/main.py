# backend/mfgerp/main.py
import logging
import os
from contextlib import asynccontextmanager
from typing import List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .apps.catalog import router as catalog_router
from .apps.catalog.services import build_item_cache
from .apps.ledger import router as ledger_router
from .apps.ledger.locks import BatchLockRegistry

logger = logging.getLogger(__name__)


def _allowed_origins() -> List[str]:
    """
    Parse CORS_ALLOWED_ORIGINS from env.

    Accepts comma-separated origins. If unset, defaults to local dev ports.
    """
    raw = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if raw:
        origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
        if origins:
            return origins
    return [
        "http://127.0.0.1:5173",
        "http://localhost:5173",
        "http://localhost:4173",
    ]


@asynccontextmanager
async def lifespan(app: FastAPI):
    cache = build_item_cache()
    app.state.item_cache = cache
    app.state.batch_locks = BatchLockRegistry()
    cache.start()
    logger.info("Item cache sweep started", extra={"ttl_seconds": cache.ttl_seconds})
    try:
        yield
    finally:
        cache.stop()
        logger.info("Item cache sweep stopped")


app = FastAPI(title="Manufacturing ERP Ledger API", version="1.0.0", lifespan=lifespan)
cors_origins = _allowed_origins()
allow_credentials = "*" not in cors_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/", tags=["health"])
def read_root():
    return {"status": "ok", "message": "Manufacturing ledger backend is running"}


@app.get("/health", tags=["health"])
def health():
    return {"status": "ok"}


app.include_router(catalog_router)
app.include_router(ledger_router)
