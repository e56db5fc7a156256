# This file loads env variables and must thus be imported before anything else.
from . import env_loader  # noqa: F401
from .env_loader import get_current_environment

import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Response
from fastapi.middleware.cors import CORSMiddleware

from grooming.models.user import User
from grooming.sync.engine import build_sync_engine
from .auth import require_staff
from .models import EnvironmentResponse
from .routers import calendar_connection_router, sync_router, webhook_router

"""FastAPI application for the grooming calendar sync engine.

Builds the sync engine at startup and exposes the connection, sync
administration and webhook routes. Jobs are handed to the Celery workers in
``grooming.worker``.
"""

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = build_sync_engine()
    app.state.sync_engine = engine
    yield


app = FastAPI(lifespan=lifespan)
app.include_router(calendar_connection_router)
app.include_router(sync_router)
app.include_router(webhook_router)
app.add_middleware(
    CORSMiddleware,  # type: ignore[arg-type]
    allow_origins=[
        "http://localhost:5173",  # Vite dev server
        "http://127.0.0.1:5173",
        os.environ["PUBLIC_DASHBOARD_BASE_URL"],
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s - %(filename)s:%(lineno)d",
    datefmt="%Y-%m-%d %H:%M:%S",
)
# Configure the logging for the app itself if the user specifies it.
if "LOG_LEVEL" in os.environ:
    match os.environ["LOG_LEVEL"].upper():
        case "DEBUG":
            log_level = logging.DEBUG
        case "INFO":
            log_level = logging.INFO
        case "WARNING":
            log_level = logging.WARNING
        case "ERROR":
            log_level = logging.ERROR
        case "CRITICAL":
            log_level = logging.CRITICAL
        case _:
            raise ValueError(f"Invalid log level: {os.environ['LOG_LEVEL']}")
    logging.getLogger("grooming").setLevel(log_level)


@app.get("/health")
@app.options("/health")
def health_check(response: Response) -> dict[str, str]:
    """Health check endpoint that returns 200 status with CORS from anywhere."""
    response.headers["Access-Control-Allow-Origin"] = "*"
    response.headers["Access-Control-Allow-Methods"] = "GET, OPTIONS"
    response.headers["Access-Control-Allow-Headers"] = "*"
    return {"status": "healthy"}


@app.get("/environment", response_model=EnvironmentResponse)
def get_environment(_user: User = Depends(require_staff)) -> EnvironmentResponse:
    return EnvironmentResponse(environment=get_current_environment())


@app.get("/auth/verify")
def verify_auth(user: User = Depends(require_staff)) -> dict[str, str]:
    """Validate credentials without side effects; used by the dashboard login."""
    return {"status": "authenticated", "username": user.username or "", "role": user.role}
