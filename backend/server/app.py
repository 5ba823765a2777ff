from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from tfttrack.config import configure_logging, get_config
from tfttrack.tracker import Tracker
from .cron.scheduler import start_scheduler
from .deps import fail
from .routers import admin, health, matches, players


log = logging.getLogger(__name__)

_HTTP_CODES = {400: "INVALID_INPUT", 401: "UNAUTHORIZED", 404: "NOT_FOUND", 405: "METHOD_NOT_ALLOWED"}


def create_app(tracker: Optional[Tracker] = None, cfg: Optional[Dict[str, Any]] = None) -> FastAPI:
    if tracker is None:
        cfg = cfg or get_config()
        configure_logging(cfg)
        tracker = Tracker.from_config(cfg)

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        task = start_scheduler(tracker)
        try:
            yield
        finally:
            if task is not None:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    app = FastAPI(title="TFT Tracker", version="1.0.0", lifespan=lifespan)
    app.state.tracker = tracker

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(matches.router, prefix="/api", tags=["matches"])
    app.include_router(players.router, prefix="/api", tags=["players"])
    app.include_router(admin.router, prefix="/api/admin", tags=["admin"])
    app.include_router(health.router, prefix="/api", tags=["health"])

    @app.exception_handler(StarletteHTTPException)
    async def on_http_error(request: Request, exc: StarletteHTTPException):
        code = _HTTP_CODES.get(exc.status_code, "HTTP_ERROR")
        return JSONResponse(fail(code, str(exc.detail)), status_code=exc.status_code, headers={"Cache-Control": "no-store"})

    # Global error handler -> uniform envelope
    @app.exception_handler(Exception)
    async def on_error(request: Request, exc: Exception):
        log.exception("unhandled error path=%s", request.url.path)
        return JSONResponse(fail("INTERNAL", str(exc)), status_code=500, headers={"Cache-Control": "no-store"})

    @app.middleware("http")
    async def no_store_middleware(request: Request, call_next):
        response = await call_next(request)
        if request.url.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store"
        return response

    return app
