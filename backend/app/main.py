"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.api import chain
from app.config import ALLOWED_ORIGINS, RECORDS_DIR

logger = logging.getLogger(__name__)


def _cleanup_stale_writes():
    """Delete temp files left behind by a record-store write interrupted by a crash."""
    cleaned = 0
    for f in RECORDS_DIR.glob("parcel_*.tmp"):
        try:
            f.unlink(missing_ok=True)
            cleaned += 1
        except OSError:
            logger.warning(f"Startup cleanup: could not remove {f.name}")
    if cleaned:
        logger.info(f"Startup cleanup: removed {cleaned} interrupted write(s)")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: clear interrupted writes on startup."""
    _cleanup_stale_writes()
    yield


app = FastAPI(
    title="Nondh Chain Engine",
    description="Ownership chain ordering, lineage and validity propagation for land parcels",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(chain.router, prefix="/api/parcels", tags=["Parcels"])


@app.get("/api/health")
async def health():
    return {"status": "operational", "platform": "Nondh Chain Engine"}
