from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from campusmatch.api.rate_limit import RateLimiter
from campusmatch.api.routes_analytics import router as analytics_router
from campusmatch.api.routes_claims import router as claims_router
from campusmatch.api.routes_config import router as config_router
from campusmatch.api.routes_items import router as items_router
from campusmatch.api.routes_matches import router as matches_router
from campusmatch.config.settings import settings
from campusmatch.db.engine import build_engine, ping_db
from campusmatch.errors import (
    CollaboratorUnavailable,
    ConcurrentResolutionConflict,
    NotFoundError,
    ValidationError,
)
from campusmatch.logging_setup import configure_logging

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="campusmatch")
app.state.rate_limiter = RateLimiter(limit_per_min=settings.rate_limit_per_min)

cors_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for router in (config_router, items_router, matches_router, claims_router, analytics_router):
    app.include_router(router, prefix=settings.api_prefix)


@app.exception_handler(ValidationError)
async def _validation_error(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def _not_found(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ConcurrentResolutionConflict)
async def _conflict(request: Request, exc: ConcurrentResolutionConflict):
    logger.warning("giving up on resolution: %s", exc)
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(CollaboratorUnavailable)
async def _collaborator(request: Request, exc: CollaboratorUnavailable):
    logger.error("collaborator failure reached the API: %s", exc)
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.middleware("http")
async def rate_limit_middleware(request: Request, call_next):
    limiter: RateLimiter = request.app.state.rate_limiter
    client_ip = request.client.host if request.client else "unknown"
    if not limiter.allow(client_ip):
        return JSONResponse(status_code=429, content={"detail": "Rate limit exceeded"})
    return await call_next(request)


@app.get("/health")
def health() -> dict:
    db = ping_db(build_engine())
    return {
        "status": "ok" if db.ok else "degraded",
        "db": {"ok": db.ok, "detail": db.detail},
    }


@app.get("/api/health")
def health_api() -> dict:
    return health()
