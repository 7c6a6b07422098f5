from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from coursetrack.api.admin import router as admin_router
from coursetrack.api.analytics import router as analytics_router
from coursetrack.api.catalog import router as catalog_router
from coursetrack.api.enrollments import router as enrollments_router
from coursetrack.api.health import router as health_router
from coursetrack.api.metrics_endpoint import router as metrics_router
from coursetrack.api.progress import router as progress_router
from coursetrack.api.sessions import router as sessions_router
from coursetrack.core.config import SETTINGS
from coursetrack.core.logging import setup_logging
from coursetrack.db.engine import lifespan_db
from coursetrack.db.redis import lifespan_redis
from coursetrack.middleware.metrics import MetricsMiddleware
from coursetrack.middleware.request_context import (
    RequestContextMiddleware,
    install_log_filter,
)

setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
install_log_filter()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # teardown runs in reverse order
    async with lifespan_db():
        async with lifespan_redis():
            yield


app = FastAPI(
    title="coursetrack",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(SETTINGS.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Last added runs first: RequestContext -> Metrics -> CORS -> handler
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(progress_router)
app.include_router(admin_router)
app.include_router(catalog_router)
app.include_router(analytics_router)
app.include_router(enrollments_router)
app.include_router(sessions_router)

logger.info(
    "coursetrack started  env=%s log_level=%s port=%d docs=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    "on" if SETTINGS.is_dev else "off",
)
