"""FastAPI check-in API - participants, entitlements, groups, settings."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import config
from core.errors import CheckpointError
from core.models.base import init_db

from web.api.auth_routes import router as auth_router
from web.api.dashboard_routes import router as dashboard_router
from web.api.entitlement_routes import router as entitlement_router
from web.api.group_routes import router as group_router
from web.api.participant_routes import router as participant_router
from web.api.settings_routes import router as settings_router

logger = logging.getLogger("checkpoint.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield


app = FastAPI(title=f"{config.APP_NAME} API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(auth_router)
app.include_router(participant_router)
app.include_router(entitlement_router)
app.include_router(group_router)
app.include_router(settings_router)
app.include_router(dashboard_router)


@app.exception_handler(CheckpointError)
async def checkpoint_error_handler(request: Request, exc: CheckpointError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.code)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "code": "SERVER_ERROR", "error": repr(exc)},
    )


@app.get("/api/health")
async def health():
    return {"status": "ok"}
