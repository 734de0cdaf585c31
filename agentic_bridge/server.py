"""FastAPI application exposing the generate endpoints."""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Optional

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from .auth_gate import AuthGate
from .config import BridgeConfig, load_config
from .service import GenerateService

logger = logging.getLogger(__name__)

_ROUTE_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


def create_app(
    config: Optional[BridgeConfig] = None,
    *,
    service: Optional[GenerateService] = None,
    auth_gate: Optional[AuthGate] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> FastAPI:
    config = config or load_config()
    service = service or GenerateService(config, auth_gate=auth_gate, environ=environ)

    app = FastAPI(
        title="agentic-bridge",
        description="Canonical tool-calling bridge for Gemini, Anthropic and OpenAI-compatible backends",
        version="0.1.0",
    )
    app.state.service = service

    @app.get("/healthz")
    async def healthz() -> Any:
        return {"status": "ok", "providers": service.router.available_providers()}

    @app.api_route("/api/generate-{provider}", methods=_ROUTE_METHODS)
    async def generate(provider: str, request: Request) -> Any:
        body: Any = None
        if request.method == "POST":
            raw = await request.body()
            if raw:
                try:
                    body = json.loads(raw)
                except ValueError:
                    return JSONResponse({"error": "Request body must be valid JSON"}, status_code=400)
        # Provider SDK calls block; keep them off the event loop.
        result = await run_in_threadpool(
            service.handle,
            request.method,
            provider,
            request.headers.get("authorization"),
            body,
        )
        return JSONResponse(result.body, status_code=result.status_code, headers=result.headers)

    logger.info("agentic-bridge app ready; providers: %s", ", ".join(service.router.available_providers()))
    return app


__all__ = ["create_app"]
