from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from readfocus.highlights import CredentialUnavailable, SessionExpired, UpstreamError

from api.routes.notebooks import router as notebooks_router
from api.routes.passages import router as passages_router
from api.routes.sync import router as sync_router

logger = logging.getLogger(__name__)


def _session_expired(request: Request, exc: SessionExpired) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"error": "WeChat Reading Session Expired", "code": "SESSION_EXPIRED"},
    )


def _credential_unavailable(request: Request, exc: CredentialUnavailable) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"error": "Cookie not configured", "code": "CREDENTIAL_UNAVAILABLE"},
    )


def _upstream_error(request: Request, exc: UpstreamError) -> JSONResponse:
    logger.error("Upstream failure on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=502,
        content={"error": "Failed to fetch content. Please try again.", "details": str(exc), "code": "UPSTREAM_ERROR"},
    )


def create_app() -> FastAPI:
    app = FastAPI(title="ReadFocus API", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(SessionExpired, _session_expired)
    app.add_exception_handler(CredentialUnavailable, _credential_unavailable)
    app.add_exception_handler(UpstreamError, _upstream_error)

    app.include_router(notebooks_router)
    app.include_router(passages_router)
    app.include_router(sync_router)

    @app.get("/healthz")
    def health() -> dict:
        return {"status": "ok"}

    return app


app = create_app()
