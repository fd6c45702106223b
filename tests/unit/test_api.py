from __future__ import annotations

import asyncio
import datetime
import json
import time
from decimal import Decimal
from typing import Any

import pytest
from fastapi.testclient import TestClient

from fnruntime.loader import BUNDLED_HANDLER, load_handler
from fnruntime.main import create_app
from fnruntime.settings import Settings


def get_client(handler: Any, **overrides: Any) -> TestClient:
    settings = Settings(**overrides)
    return TestClient(create_app(settings, handler=handler))


def echo_handler(event, context):
    return {
        "body": event.body,
        "content_type": event.headers["content-type"],
        "method": event.method,
        "path": event.path,
        "query": dict(event.query),
    }


def test_bundled_handler_echoes_json_body() -> None:
    handler = load_handler(Settings(handler_path=BUNDLED_HANDLER))
    client = get_client(handler)

    resp = client.post("/", json={"message": "Hello World"})

    assert resp.status_code == 200
    assert resp.json() == {
        "body": '{"message":"Hello World"}',
        "content-type": "application/json",
    }


def test_missing_content_type_defaults_to_text_plain() -> None:
    client = get_client(echo_handler)

    resp = client.post("/greet", content=b"hello there")
    body = resp.json()

    assert resp.status_code == 200
    assert body["content_type"] == "text/plain"
    assert body["body"] == "hello there"
    assert body["path"] == "/greet"
    assert body["method"] == "POST"


@pytest.mark.parametrize(
    "path",
    ["/favicon.ico", "/static/app.JS", "/css/site.css", "/fonts/a.woff2", "/img/logo.Png"],
)
@pytest.mark.parametrize("method", ["GET", "POST", "DELETE"])
def test_static_resource_paths_never_reach_handler(path: str, method: str) -> None:
    calls: list[str] = []

    def handler(event, context):
        calls.append(event.path)
        return "should not happen"

    client = get_client(handler)
    resp = client.request(method, path)

    assert resp.status_code == 404
    assert resp.text == "Not found"
    assert calls == []


@pytest.mark.parametrize("method", ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"])
def test_all_function_methods_route_to_handler(method: str) -> None:
    client = get_client(echo_handler)

    resp = client.request(method, "/items/7?verbose=1")

    assert resp.status_code == 200
    assert resp.json()["method"] == method
    assert resp.json()["path"] == "/items/7"
    assert resp.json()["query"] == {"verbose": "1"}


def test_query_uses_extended_parsing() -> None:
    client = get_client(echo_handler)

    resp = client.get("/?filter[name]=ada&tag=a&tag=b&ids[]=1&ids[]=2")

    assert resp.json()["query"] == {
        "filter": {"name": "ada"},
        "tag": ["a", "b"],
        "ids": ["1", "2"],
    }


def test_structured_results_are_json_encoded() -> None:
    client = get_client(lambda event, context: [1, {"two": 2}, None])

    resp = client.get("/")

    assert resp.status_code == 200
    assert resp.text == '[1,{"two":2},null]'
    assert resp.headers["content-type"] == "application/json"


def test_string_results_are_sent_verbatim() -> None:
    client = get_client(lambda event, context: '{"not": "re-encoded"}')

    resp = client.get("/")

    assert resp.text == '{"not": "re-encoded"}'
    assert resp.headers["content-type"].startswith("text/html")


def test_bytes_results_are_sent_as_bytes() -> None:
    client = get_client(lambda event, context: b"\x00\x01binary")

    resp = client.get("/")

    assert resp.content == b"\x00\x01binary"
    assert resp.headers["content-type"] == "application/octet-stream"


def test_none_result_sends_empty_body() -> None:
    client = get_client(lambda event, context: None)

    resp = client.get("/")

    assert resp.status_code == 200
    assert resp.content == b""


def test_context_headers_and_status_are_applied() -> None:
    def handler(event, context):
        context.set_status(201).set_headers({"X-Fn": "yes", "Content-Type": "text/csv"})
        return "a,b\n1,2\n"

    client = get_client(handler)
    resp = client.post("/", content=b"")

    assert resp.status_code == 201
    assert resp.headers["x-fn"] == "yes"
    assert resp.headers["content-type"].startswith("text/csv")
    assert resp.text == "a,b\n1,2\n"


def test_synchronous_raise_defaults_to_500() -> None:
    def handler(event, context):
        raise RuntimeError("boom")

    client = get_client(handler)
    resp = client.get("/")

    assert resp.status_code == 500
    assert resp.text == "boom"


def test_raise_after_explicit_200_is_still_500() -> None:
    def handler(event, context):
        context.set_status(200)
        raise ValueError("bad input")

    resp = get_client(handler).get("/")

    assert resp.status_code == 500


def test_raise_keeps_explicit_error_status() -> None:
    def handler(event, context):
        context.set_status(422)
        raise ValueError("bad input")

    resp = get_client(handler).get("/")

    assert resp.status_code == 422
    assert resp.text == "bad input"


def test_async_rejection_is_a_failure() -> None:
    async def handler(event, context):
        await asyncio.sleep(0)
        raise KeyError("missing")

    resp = get_client(handler).get("/")

    assert resp.status_code == 500
    assert resp.text == "'missing'"


def test_explicit_fail_uses_error_string() -> None:
    async def handler(event, context):
        context.fail("nope")

    resp = get_client(handler).get("/")

    assert resp.status_code == 500
    assert resp.text == "nope"


def test_first_completion_wins() -> None:
    async def handler(event, context):
        context.succeed({"first": True})
        context.fail("too late")
        context.succeed("also too late")
        return "ignored return"

    resp = get_client(handler).get("/")

    assert resp.status_code == 200
    assert resp.json() == {"first": True}


def test_callback_style_handler() -> None:
    def handler(event, context, callback):
        callback(None, {"via": "callback"})

    resp = get_client(handler).get("/")

    assert resp.status_code == 200
    assert resp.json() == {"via": "callback"}


def test_callback_error_is_a_failure() -> None:
    def handler(event, context, callback):
        callback(PermissionError("denied"))

    resp = get_client(handler).get("/")

    assert resp.status_code == 500
    assert resp.text == "denied"


def test_returned_value_ignored_after_callback() -> None:
    def handler(event, context, callback):
        callback(None, "from callback")
        return "from return"

    resp = get_client(handler).get("/")

    assert resp.text == "from callback"


def test_returned_awaitable_is_awaited() -> None:
    async def compute() -> dict[str, int]:
        await asyncio.sleep(0)
        return {"answer": 42}

    def handler(event, context):
        return compute()

    resp = get_client(handler).get("/")

    assert resp.json() == {"answer": 42}


def test_raw_body_mode_passes_bytes() -> None:
    def handler(event, context):
        return {"type": type(event.body).__name__, "size": len(event.body)}

    client = get_client(handler, raw_body=True)
    resp = client.post("/", content=b'{"a":1}', headers={"content-type": "application/json"})

    assert resp.json() == {"type": "bytes", "size": len(b'{"a":1}')}


def test_urlencoded_form_body() -> None:
    client = get_client(echo_handler)

    resp = client.post("/", data={"user[name]": "ada", "user[role]": "admin"})

    assert resp.json()["body"] == {"user": {"name": "ada", "role": "admin"}}


def test_malformed_json_is_rejected_before_handler() -> None:
    calls: list[Any] = []

    def handler(event, context):
        calls.append(event)

    client = get_client(handler)
    resp = client.post("/", content=b"{not json", headers={"content-type": "application/json"})

    assert resp.status_code == 400
    assert calls == []


def test_json_over_limit_is_rejected() -> None:
    client = get_client(echo_handler, max_json_size="10b")

    resp = client.post("/", json={"payload": "x" * 64})

    assert resp.status_code == 413


def test_exec_timeout_returns_504() -> None:
    def handler(event, context):
        time.sleep(0.5)
        return "late"

    client = get_client(handler, exec_timeout=0.05)
    resp = client.get("/")

    assert resp.status_code == 504
    assert resp.text == "Function timed out"


def test_health_endpoint_skips_handler() -> None:
    calls: list[Any] = []
    client = get_client(lambda event, context: calls.append(event))

    resp = client.get("/_/health")

    assert resp.status_code == 200
    assert resp.text == "ok\n"
    assert calls == []


def test_metrics_endpoint_when_enabled() -> None:
    client = get_client(lambda event, context: "ok", metrics_enabled=True)
    client.get("/")

    resp = client.get("/_/metrics")

    assert resp.status_code == 200
    assert "fn_invocations_total" in resp.text


def test_metrics_path_belongs_to_function_when_disabled() -> None:
    client = get_client(lambda event, context: "function", metrics_enabled=False)

    resp = client.get("/_/metrics")

    assert resp.text == "function"


@pytest.mark.parametrize(
    ("result", "expected"),
    [
        ({2, 1}, "[1,2]"),
        (datetime.date(2024, 1, 2), '"2024-01-02"'),
        (Decimal("2"), "2"),
    ],
)
def test_non_json_native_results_are_encoded(result: Any, expected: str) -> None:
    resp = get_client(lambda event, context: result).get("/")

    assert resp.status_code == 200
    assert resp.text == expected
    assert resp.headers["content-type"] == "application/json"


def test_unencodable_result_is_a_logged_failure() -> None:
    client = get_client(lambda event, context: object(), metrics_enabled=True)

    resp = client.get("/")

    assert resp.status_code == 500
    assert resp.headers["content-type"].startswith("text/plain")
    assert resp.text.startswith("cannot encode function result")
    metrics_text = client.get("/_/metrics").text
    assert 'fn_invocations_total{outcome="failure"}' in metrics_text


def test_streamed_body_over_limit_is_rejected() -> None:
    calls: list[Any] = []
    client = get_client(lambda event, context: calls.append(event), max_text_size="10b")

    resp = client.post(
        "/",
        content=iter([b"a" * 8, b"b" * 8, b"c" * 8]),
        headers={"content-type": "text/plain"},
    )

    assert resp.status_code == 413
    assert calls == []


def test_unparsed_content_type_body_is_not_read() -> None:
    client = get_client(echo_handler, max_text_size="1b", max_json_size="1b")

    resp = client.post("/", content=b"\x89PNG" * 64, headers={"content-type": "image/png"})

    assert resp.status_code == 200
    assert resp.json()["body"] == {}


def test_event_mappings_encode_as_json() -> None:
    def handler(event, context):
        return json.dumps({"headers": event.headers, "query": event.query})

    resp = get_client(handler).get("/?a=1", headers={"x-trace": "abc"})
    payload = json.loads(resp.text)

    assert payload["headers"]["x-trace"] == "abc"
    assert payload["query"] == {"a": "1"}
