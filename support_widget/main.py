"""FastAPI application hosting the support widget engine.

- Configures logging, optional CORS for the pages embedding the widget,
  Prometheus metrics and rate limiting.
- Builds the shared conversation/message stores selected by
  ``WIDGET_STORE_BACKEND`` and the registry of widget sessions.
- Exposes health/version/config endpoints and the widget routes.

Run it with ``uvicorn support_widget.main:app``.
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .config import EngineSettings, WidgetConfig
from .limits import limiter, send_rate_limit
from .registry import WidgetRegistry
from .routers import widget
from .stores import build_stores

load_dotenv()

logger = logging.getLogger(__name__)

settings = EngineSettings.from_env()


async def evict_idle_sessions(registry: WidgetRegistry, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        await registry.evict_idle()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.store_backend == "postgres" and settings.database_url:
        from .stores.postgres import ensure_schema

        ensure_schema(settings.database_url)
    registry = getattr(app.state, "widgets", None)
    sweeper = None
    if registry is not None:
        sweeper = asyncio.create_task(
            evict_idle_sessions(registry, min(60.0, max(settings.session_idle_ttl, 1.0)))
        )
    yield
    if sweeper is not None:
        sweeper.cancel()
        await asyncio.gather(sweeper, return_exceptions=True)
    if registry is not None:
        await registry.close_all()


app = FastAPI(lifespan=lifespan)
init_logging(app)
app.state.limiter = limiter
app.state.settings = settings
app.state.widgets = WidgetRegistry(build_stores(settings), settings)
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)
# Pages allowed to embed the widget
widget_origins = os.getenv("WIDGET_ALLOWED_ORIGINS")
if widget_origins:
    origins = [o.strip() for o in widget_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
app.include_router(widget.router)

# Expose Prometheus metrics
Instrumentator().instrument(app).expose(
    app, include_in_schema=False, endpoint="/api/metrics"
)


@app.get("/api/health")
async def health():
    """Liveness/readiness probe with a minimal JSON body."""
    return {"status": "ok"}


@app.get("/api/version")
async def version():
    """Return version information for the application."""
    return {
        "version": __version__,
        "build_date": __build_date__,
        "commit_sha": __commit_sha__,
    }


@app.get("/api/config")
async def config():
    """Expose the widget defaults and limits the embed snippet can rely on."""
    return {
        "WIDGET_DEFAULTS": WidgetConfig.env_defaults(),
        "STORE_BACKEND": settings.store_backend,
        "AUTO_REPLY_DELAY_SECONDS": settings.reply_delay,
        "CHAT_MAX_MESSAGE_LENGTH": settings.max_message_length,
        "WIDGET_SEND_RATE_LIMIT": send_rate_limit(),
    }
