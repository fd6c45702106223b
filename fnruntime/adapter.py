"""Translate one HTTP request into one handler invocation and back."""

from __future__ import annotations

import asyncio
import dataclasses
import inspect
import json
from collections.abc import Callable, Mapping
from time import perf_counter
from typing import Any

import structlog
from fastapi import Request, Response
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel

from fnruntime import metrics
from fnruntime.bodies import DEFAULT_CONTENT_TYPE, BodyParseError, BodyParser
from fnruntime.forms import parse_query
from fnruntime.function import (
    DEFAULT_STATUS,
    CompletionSlot,
    FunctionContext,
    FunctionEvent,
    Outcome,
)

LOGGER = structlog.get_logger(__name__)

Handler = Callable[..., Any]

RESOURCE_EXTENSIONS = (
    ".css",
    ".js",
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".ico",
    ".svg",
    ".woff",
    ".woff2",
    ".ttf",
    ".eot",
)


def is_resource_request(path: str) -> bool:
    return path.lower().endswith(RESOURCE_EXTENSIONS)


def collect_headers(request: Request) -> dict[str, str]:
    headers: dict[str, str] = {}
    for name, value in request.headers.items():
        if name in headers:
            headers[name] = f"{headers[name]}, {value}"
        else:
            headers[name] = value
    if not headers.get("content-type"):
        headers["content-type"] = DEFAULT_CONTENT_TYPE
    return headers


async def read_body(request: Request, limit: int) -> bytes:
    """Read at most ``limit`` bytes of body, rejecting larger ones before buffering them."""
    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > limit:
        raise BodyParseError(413, "request entity too large")
    chunks: list[bytes] = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > limit:
            raise BodyParseError(413, "request entity too large")
        chunks.append(chunk)
    return b"".join(chunks)


async def build_event(request: Request, parser: BodyParser, *, extended: bool = True) -> FunctionEvent:
    headers = collect_headers(request)
    limit = parser.limit_for(headers["content-type"])
    # Bodies of unparsed content types are never read.
    payload = b"" if limit is None else await read_body(request, limit)
    return FunctionEvent(
        body=parser.parse(headers["content-type"], payload),
        headers=headers,
        method=request.method,
        query=parse_query(request.url.query, extended=extended),
        path=request.url.path,
    )


def accepts_callback(handler: Handler) -> bool:
    """True when the handler can take ``(event, context, callback)``."""
    try:
        signature = inspect.signature(handler)
    except (TypeError, ValueError):
        return True
    positional = 0
    for param in signature.parameters.values():
        if param.kind is inspect.Parameter.VAR_POSITIONAL:
            return True
        if param.kind in (
            inspect.Parameter.POSITIONAL_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
        ):
            positional += 1
    return positional >= 3


async def invoke(
    handler: Handler,
    event: FunctionEvent,
    *,
    timeout: float | None = None,
) -> tuple[FunctionContext, Outcome]:
    """Run the handler and wait for the first outcome it produces.

    The handler may return a value, return an awaitable, call
    ``context.succeed``/``context.fail`` or call the callback. A returned
    value only counts when nothing completed the context first.
    """

    slot = CompletionSlot()
    context = FunctionContext(slot)
    args: tuple[Any, ...] = (event, context)
    if accepts_callback(handler):
        args += (context.callback,)

    async def complete() -> Outcome:
        try:
            if inspect.iscoroutinefunction(handler):
                result = await handler(*args)
            else:
                result = await asyncio.to_thread(handler, *args)
                if inspect.isawaitable(result):
                    result = await result
        except Exception as exc:  # noqa: BLE001 - any handler error becomes a failure outcome
            slot.offer(Outcome.failure(exc))
        else:
            if not context.cb_called:
                context.succeed(result)
        return await slot.wait()

    return context, await asyncio.wait_for(complete(), timeout)


def is_structured(value: Any) -> bool:
    if isinstance(value, (str, bytes, bytearray, memoryview)):
        return False
    if isinstance(value, (Mapping, list, tuple, BaseModel)):
        return True
    return dataclasses.is_dataclass(value) and not isinstance(value, type)


def render_response(context: FunctionContext, outcome: Outcome) -> Response:
    if outcome.failed:
        status_code = context.get_status()
        if status_code == DEFAULT_STATUS:
            status_code = 500
        body = "" if outcome.error is None else str(outcome.error)
        return Response(content=body, status_code=status_code, media_type="text/plain")

    headers = dict(context.get_headers())
    has_type = any(name.lower() == "content-type" for name in headers)
    value = outcome.value

    if is_structured(value):
        content: str | bytes = json.dumps(
            jsonable_encoder(value), separators=(",", ":"), ensure_ascii=False
        )
        default_type = "application/json"
    elif isinstance(value, (bytes, bytearray, memoryview)):
        content = bytes(value)
        default_type = "application/octet-stream"
    elif isinstance(value, str):
        content = value
        default_type = "text/html; charset=utf-8"
    elif value is None:
        content = b""
        default_type = None
    else:
        content = json.dumps(jsonable_encoder(value), separators=(",", ":"), ensure_ascii=False)
        default_type = "application/json"

    if not has_type and default_type is not None:
        headers["content-type"] = default_type

    return Response(content=content, status_code=context.get_status(), headers=headers)


async def handle_request(
    request: Request,
    handler: Handler,
    parser: BodyParser,
    *,
    extended: bool = True,
    timeout: float | None = None,
) -> Response:
    if is_resource_request(request.url.path):
        metrics.observe_static_rejection()
        return Response(content="Not found", status_code=404, media_type="text/plain")

    event = await build_event(request, parser, extended=extended)

    start = perf_counter()
    try:
        context, outcome = await invoke(handler, event, timeout=timeout)
    except asyncio.TimeoutError:
        metrics.observe_invocation(outcome="timeout", latency_s=perf_counter() - start)
        LOGGER.error("function.timeout", path=event.path, method=event.method, timeout_seconds=timeout)
        return Response(content="Function timed out", status_code=504, media_type="text/plain")

    latency_s = perf_counter() - start
    if not outcome.failed:
        try:
            response = render_response(context, outcome)
        except (TypeError, ValueError) as exc:
            outcome = Outcome.failure(TypeError(f"cannot encode function result: {exc}"))
        else:
            metrics.observe_invocation(outcome="success", latency_s=latency_s)
            LOGGER.debug("function.succeeded", path=event.path, method=event.method, latency_s=latency_s)
            return response

    metrics.observe_invocation(outcome="failure", latency_s=latency_s)
    error = outcome.error
    LOGGER.error(
        "function.failed",
        path=event.path,
        method=event.method,
        error=str(error),
        exc_info=error if isinstance(error, BaseException) else None,
    )
    return render_response(context, outcome)
