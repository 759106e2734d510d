from __future__ import annotations

import logging
import time
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from api.v1.router import health_payload, router as v1_router
from services.radar_proxy import RadarProxy, build_radar_proxy

logger = logging.getLogger("radarproxy.hub")
if not logger.handlers:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(proxy: Optional[RadarProxy] = None) -> FastAPI:
    app = FastAPI(title=settings.app_name, version=settings.app_version)
    app.state.radar_proxy = proxy if proxy is not None else build_radar_proxy(settings)
    app.state.started_at = time.monotonic()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        dur_ms = (time.perf_counter() - start) * 1000.0
        level = logging.WARNING if response.status_code >= 400 else logging.INFO
        logger.log(level, "%s %s -> %s (%.1f ms)", request.method, request.url.path, response.status_code, dur_ms)
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})

    @app.get("/", tags=["meta"])
    async def root():
        return {"name": settings.app_name, "version": settings.app_version}

    @app.get("/health", tags=["meta"])
    async def health(request: Request):
        return JSONResponse(health_payload(request))

    app.include_router(v1_router)

    @app.on_event("startup")
    async def _startup():
        logger.info(
            "Radar proxy starting: origin ftp://%s%s, cache %s (ttl %gh, budget %gMB)",
            settings.ftp_host,
            settings.ftp_path,
            settings.cache_dir,
            settings.cache_ttl_hours,
            settings.max_cache_size_mb,
        )
        if not settings.janitor_enabled:
            logger.info("Cache janitor disabled (set JANITOR_ENABLED=true to enable).")
        await app.state.radar_proxy.start(
            janitor=settings.janitor_enabled,
            probe_origin=settings.origin_probe_on_startup,
        )

    @app.on_event("shutdown")
    async def _shutdown():
        await app.state.radar_proxy.close()

    return app


app = create_app()


def run() -> None:
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
