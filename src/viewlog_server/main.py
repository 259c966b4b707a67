from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .geo import build_resolver
from .logging_config import get_logger
from .middleware import ResponseCompletionMiddleware, SecurityHeadersMiddleware
from .pipeline import Resolver, ViewPipeline
from .responders import register_routes
from .settings import Settings, load_settings
from .sink import LogSink, LoggingSink

logger = get_logger(__name__)

VERSION = "0.1.0"


def create_app(
    settings: Optional[Settings] = None,
    *,
    sink: Optional[LogSink] = None,
    resolver: Optional[Resolver] = None,
) -> FastAPI:
    settings = settings or load_settings()
    owned_resolver = None
    if resolver is None:
        owned_resolver = build_resolver(settings.geo_url_template, settings.geo_timeout_s)
        resolver = owned_resolver
    sink = sink or LoggingSink(settings.service_name)

    pipeline = ViewPipeline(
        resolver,
        sink,
        parse_user_agents=settings.parse_user_agents,
        trust_proxy=settings.trust_proxy,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting viewlog server", extra={"service": settings.service_name})
        yield
        logger.info("Shutting down viewlog server, %d view(s) pending", pipeline.pending)
        await pipeline.drain()
        if owned_resolver is not None:
            await owned_resolver.aclose()

    app = FastAPI(
        title="viewlog",
        version=VERSION,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.pipeline = pipeline

    app.add_middleware(SecurityHeadersMiddleware, permissions_policy=settings.permissions_policy)
    # Added last so it wraps everything and sees the final status.
    app.add_middleware(
        ResponseCompletionMiddleware,
        on_complete=pipeline.record,
        capture_body=settings.capture_body,
        max_body_bytes=settings.max_body_bytes,
    )

    register_routes(app)
    return app
