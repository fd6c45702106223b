"""FastAPI application exposing the user function over HTTP."""

from __future__ import annotations

from typing import Any, Callable

import structlog
from fastapi import FastAPI, Request, Response

from fnruntime import metrics
from fnruntime.adapter import handle_request
from fnruntime.bodies import BodyParseError, BodyParser
from fnruntime.loader import load_handler
from fnruntime.logs import configure_logging
from fnruntime.settings import Settings, get_settings

FUNCTION_METHODS = ["POST", "GET", "PATCH", "PUT", "DELETE", "OPTIONS"]

_request_logger = structlog.get_logger("request")


def create_app(
    settings: Settings | None = None,
    handler: Callable[..., Any] | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    handler = handler or load_handler(settings)
    parser = BodyParser(settings)

    # Every other path belongs to the function, so no docs or schema routes.
    app = FastAPI(title="fn-template", docs_url=None, redoc_url=None, openapi_url=None)

    @app.exception_handler(BodyParseError)
    async def body_parse_error(request: Request, exc: BodyParseError) -> Response:
        _request_logger.warning(
            "request_rejected",
            path=str(request.url.path),
            reason=exc.message,
            status_code=exc.status_code,
        )
        return Response(content=exc.message, status_code=exc.status_code, media_type="text/plain")

    @app.get("/_/health", response_class=Response)
    async def health() -> Response:
        return Response(content="ok\n", media_type="text/plain")

    if settings.metrics_enabled:

        @app.get("/_/metrics", response_class=Response)
        async def metrics_endpoint() -> Response:
            payload, content_type = metrics.render_metrics()
            return Response(content=payload, media_type=content_type)

    @app.api_route("/{path:path}", methods=FUNCTION_METHODS, response_class=Response)
    async def invoke_function(request: Request) -> Response:
        return await handle_request(
            request,
            handler,
            parser,
            extended=settings.urlencoded_extended,
            timeout=settings.exec_timeout,
        )

    app.state.settings = settings
    app.state.handler = handler
    return app
