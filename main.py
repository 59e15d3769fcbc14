"""
main.py
───────
Prerender server — FastAPI application entry point.

Sits in front of a client-rendered site.  Crawlers hitting any path get the
fully rendered page: served from cache when possible, otherwise rendered by
headless Chromium and written through to the cache.

Route handlers are thin: the prerender flow lives in dispatcher.py.

Lifespan — what happens at startup / shutdown
──────────────────────────────────────────────
Startup:
  1. Configure structured JSON logging.
  2. Select the cache store (Redis with a PING probe, in-process memory, or
     the null store when nothing is configured or reachable).
  3. Start the renderer (launches the shared Chromium when enabled).
  4. Build the dispatcher and publish everything on ``app.state``.

Shutdown:
  1. Close the renderer, stopping any shared Chromium process.
  2. Close the cache store connection.

Endpoints
─────────
  GET /health   liveness, never touches cache or browser
  GET /*        prerender entry point
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from cache import connect_cache_store
from config import PrerenderConfig, get_config
from dispatcher import Dispatcher
from logging_config import configure_logging, get_logger
from models import HTML_MEDIA_TYPE, HealthResponse
from policy import RoutePolicy
from renderer import Renderer

if TYPE_CHECKING:
    from cache import CacheStore

logger = get_logger(__name__)


def create_app(
    config:      Optional[PrerenderConfig] = None,
    cache_store: Optional["CacheStore"]    = None,
    renderer:    Optional[Renderer]        = None,
) -> FastAPI:
    """
    Build the application.

    ``cache_store`` and ``renderer`` may be injected (tests do); otherwise
    they are built from ``config`` during startup.
    """
    cfg = config or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # ── Startup ───────────────────────────────────────────────────────────
        configure_logging(cfg.log_level)

        store = cache_store if cache_store is not None else await connect_cache_store(cfg.cache_url)
        render = renderer if renderer is not None else Renderer.from_config(cfg)
        await render.start()

        app.state.config     = cfg
        app.state.renderer   = render
        app.state.dispatcher = Dispatcher(cfg, RoutePolicy.from_config(cfg), store, render)

        logger.info(
            "prerender_server_started",
            origin_url=cfg.origin_url,
            cache_backend=store.name,
            port=cfg.port,
            shared_browser=render.shared,
        )

        yield

        # ── Shutdown ──────────────────────────────────────────────────────────
        await render.close()
        await store.close()
        logger.info("prerender_server_shutdown")

    app = FastAPI(
        title="Prerender",
        version="1.0.0",
        description="Renders client-side pages for crawlers and caches the markup.",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    # ──────────────────────────────────────────────────────────────────────────
    # Health — registered before the catch-all
    # ──────────────────────────────────────────────────────────────────────────

    @app.get("/health")
    async def health() -> JSONResponse:
        return JSONResponse(HealthResponse().model_dump(mode="json"))

    # ──────────────────────────────────────────────────────────────────────────
    # Prerender
    # ──────────────────────────────────────────────────────────────────────────

    @app.get("/{path:path}")
    async def prerender(request: Request) -> Response:
        dispatcher: Dispatcher = request.app.state.dispatcher
        result = await dispatcher.dispatch(request.url.path, _original_url(request))
        return Response(
            content=result.body,
            status_code=result.status_code,
            media_type=HTML_MEDIA_TYPE,
            headers=result.headers,
        )

    return app


def _original_url(request: Request) -> str:
    """Path and query exactly as the client sent them."""
    raw_path = request.scope.get("raw_path")
    path = raw_path.decode("latin-1").split("?", 1)[0] if raw_path else request.url.path
    query = request.url.query
    return f"{path}?{query}" if query else path


app = create_app()


def run() -> None:
    import uvicorn

    cfg = get_config()
    configure_logging(cfg.log_level)
    uvicorn.run(create_app(cfg), host=cfg.host, port=cfg.port, log_config=None)


if __name__ == "__main__":
    run()
