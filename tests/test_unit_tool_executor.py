# FILE: test_unit_tool_executor.py

import json
from concurrent.futures import ThreadPoolExecutor
from typing import Any, List, Optional

import httpx
import pytest
from pydantic import ValidationError

from apicopilot.models.tool_model import ExecutionResult
from apicopilot.tools.executor import CLIENT_USER_AGENT, ExecutorConfig, ToolExecutor, build_request


BASE_URL = "http://api.test"


class RecordingTarget:
    """A MockTransport handler that records requests and replays one canned answer."""

    def __init__(self, status: int = 200, body: Any = None, text: Optional[str] = None, error: Optional[Exception] = None):
        self.status = status
        self.body = body
        self.text = text
        self.error = error
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.text is not None:
            return httpx.Response(self.status, text=self.text)
        return httpx.Response(self.status, json=self.body if self.body is not None else {"ok": True})

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]

    def last_json(self) -> Any:
        return json.loads(self.last.content) if self.last.content else None


def _executor(target: RecordingTarget, **config_kwargs) -> ToolExecutor:
    return ToolExecutor(ExecutorConfig(BASE_URL, **config_kwargs), transport=httpx.MockTransport(target))


@pytest.mark.asyncio
async def test_parameters_are_placed_in_path_query_header_and_body(shop_catalog):
    target = RecordingTarget(body={"id": "5", "status": "open"})
    executor = _executor(target)

    result = await executor.execute(
        shop_catalog.get_tool("updateorder"),
        {"orderId": "5", "status": "open", "note": "hi", "X-Request-Source": "bot"},
    )

    assert result.success is True
    assert result.status == 200
    assert result.data == {"id": "5", "status": "open"}
    assert result.execution_time_ms >= 0

    req = target.last
    assert req.method == "PATCH"
    assert str(req.url) == "http://api.test/orders/5?status=open"
    assert target.last_json() == {"note": "hi"}
    assert req.headers["x-request-source"] == "bot"
    assert req.headers["content-type"] == "application/json"
    assert req.headers["user-agent"] == CLIENT_USER_AGENT


@pytest.mark.asyncio
async def test_path_values_are_percent_encoded(shop_catalog):
    target = RecordingTarget()
    await _executor(target).execute(shop_catalog.get_tool("getorder"), {"orderId": "a b/c"})

    assert target.last.url.raw_path == b"/orders/a%20b%2Fc"


@pytest.mark.asyncio
async def test_get_never_sends_a_body(shop_catalog):
    target = RecordingTarget()
    await _executor(target).execute(shop_catalog.get_tool("listorders"), {"status": "open", "limit": 10})

    assert target.last.content == b""
    assert dict(target.last.url.params) == {"status": "open", "limit": "10"}


@pytest.mark.asyncio
async def test_query_values_are_stringified(shop_catalog):
    target = RecordingTarget()
    await _executor(target).execute(shop_catalog.get_tool("listorders"), {"status": True, "limit": None})

    assert dict(target.last.url.params) == {"status": "true"}


@pytest.mark.asyncio
async def test_array_query_values_repeat_the_key(shop_catalog):
    target = RecordingTarget()
    await _executor(target).execute(shop_catalog.get_tool("listorders"), {"status": ["open", "shipped"], "limit": 10})

    assert target.last.url.params.get_list("status") == ["open", "shipped"]
    assert target.last.url.params["limit"] == "10"
    assert "%5B" not in str(target.last.url)


@pytest.mark.asyncio
async def test_token_and_authorization_are_equivalent(shop_catalog):
    tool = shop_catalog.get_tool("createorder")
    params = {"productId": "p1", "quantity": 1}

    a, b = RecordingTarget(), RecordingTarget()
    await _executor(a).execute(tool, {**params, "token": "abc"})
    await _executor(b).execute(tool, {**params, "authorization": "Bearer abc"})

    assert a.last.headers["authorization"] == "Bearer abc"
    assert b.last.headers["authorization"] == "Bearer abc"
    assert a.last_json() == b.last_json() == params


@pytest.mark.asyncio
async def test_caller_headers_win(shop_catalog):
    target = RecordingTarget()
    await _executor(target).execute(
        shop_catalog.get_tool("getorder"),
        {"orderId": "1", "headers": {"user-agent": "custom/2.0", "X-Trace": "t1"}},
    )

    assert target.last.headers["user-agent"] == "custom/2.0"
    assert target.last.headers["x-trace"] == "t1"


@pytest.mark.asyncio
async def test_explicit_body_is_sent_verbatim(shop_catalog):
    target = RecordingTarget()
    await _executor(target).execute(
        shop_catalog.get_tool("put_products_productid_images"),
        {"productId": "p1", "body": ["a.png", "b.png"]},
    )

    assert target.last.url.path == "/products/p1/images"
    assert target.last_json() == ["a.png", "b.png"]


@pytest.mark.asyncio
async def test_missing_path_parameter_rejects_before_sending(shop_catalog):
    target = RecordingTarget()
    result = await _executor(target).execute(shop_catalog.get_tool("getorder"), {})

    assert result.success is False
    assert result.error_type == "validation"
    assert "orderId" in result.error
    assert target.requests == []


@pytest.mark.asyncio
async def test_http_error_keeps_status_and_body(shop_catalog):
    target = RecordingTarget(status=404, body={"message": "no such order"})
    result = await _executor(target).execute(shop_catalog.get_tool("getorder"), {"orderId": "9"})

    assert result.success is False
    assert result.error_type == "http"
    assert result.error == "HTTP error 404: Not Found"
    assert result.status == 404
    assert result.data == {"message": "no such order"}


@pytest.mark.asyncio
async def test_unreachable_target_is_a_connection_error(shop_catalog):
    target = RecordingTarget(error=httpx.ConnectError("connection refused"))
    result = await _executor(target).execute(shop_catalog.get_tool("getorder"), {"orderId": "9"})

    assert result.success is False
    assert result.error_type == "connection"
    assert result.error.startswith("Connection error: could not reach the API server")
    assert result.status is None
    assert result.data is None


@pytest.mark.asyncio
async def test_unexpected_failure_is_internal(shop_catalog):
    target = RecordingTarget(error=RuntimeError("kaboom"))
    result = await _executor(target).execute(shop_catalog.get_tool("getorder"), {"orderId": "9"})

    assert result.success is False
    assert result.error_type == "internal"
    assert result.error == "Internal error: kaboom"


@pytest.mark.asyncio
async def test_text_responses_are_returned_as_text(shop_catalog):
    target = RecordingTarget(text="pong")
    result = await _executor(target).execute(shop_catalog.get_tool("getorder"), {"orderId": "1"})

    assert result.success is True
    assert result.data == "pong"


def test_build_request_excludes_reserved_and_declared_names(shop_catalog):
    config = ExecutorConfig(BASE_URL)
    resolved = build_request(
        shop_catalog.get_tool("updateorder"),
        {"orderId": "1", "status": "open", "X-Request-Source": "a", "token": "t", "headers": {}, "note": "n"},
        config.snapshot(),
    )

    assert resolved.method == "PATCH"
    assert resolved.url == "http://api.test/orders/1"
    assert resolved.query == {"status": "open"}
    assert resolved.body == {"note": "n"}


def test_build_request_leaves_body_absent_when_nothing_remains(shop_catalog):
    resolved = build_request(shop_catalog.get_tool("updateorder"), {"orderId": "1"}, ExecutorConfig(BASE_URL).snapshot())
    assert resolved.body is None


def test_config_mutators():
    config = ExecutorConfig("http://one.test/")
    assert config.base_url == "http://one.test"

    config.set_base_url("http://two.test///")
    assert config.base_url == "http://two.test"

    config.set_default_headers({"X-Tenant": "acme"})
    config.set_default_headers({"content-type": "application/vnd.api+json"})
    headers = config.default_headers
    assert headers["X-Tenant"] == "acme"
    assert headers["content-type"] == "application/vnd.api+json"
    assert "Content-Type" not in headers

    config.set_auth_token("abc")
    assert config.default_headers["Authorization"] == "Bearer abc"
    config.set_auth_token("Bearer abc")
    assert config.default_headers["Authorization"] == "Bearer abc"

    config.clear_auth_token()
    assert "Authorization" not in config.default_headers


def test_snapshots_are_immutable_and_isolated():
    config = ExecutorConfig(BASE_URL)
    before = config.snapshot()
    config.set_base_url("http://elsewhere.test")

    assert before.base_url == BASE_URL
    with pytest.raises(TypeError):
        before.default_headers["X-New"] = "1"


def test_concurrent_header_updates_are_not_lost():
    config = ExecutorConfig(BASE_URL)

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda i: config.set_default_headers({f"X-H{i}": str(i)}), range(200)))

    headers = config.default_headers
    assert all(headers[f"X-H{i}"] == str(i) for i in range(200))


@pytest.mark.asyncio
async def test_executor_mutators_pass_through(shop_catalog):
    target = RecordingTarget()
    executor = _executor(target)

    executor.set_base_url("http://other.test/")
    executor.set_auth_token("tok")
    await executor.execute(shop_catalog.get_tool("getorder"), {"orderId": "1"})

    assert str(target.last.url) == "http://other.test/orders/1"
    assert target.last.headers["authorization"] == "Bearer tok"

    executor.clear_auth_token()
    await executor.execute(shop_catalog.get_tool("getorder"), {"orderId": "1"})
    assert "authorization" not in target.last.headers


@pytest.mark.asyncio
async def test_health_check():
    healthy = RecordingTarget(body={"status": "ok"})
    result = await _executor(healthy).health_check()
    assert result.success is True
    assert healthy.last.url.path == "/health"

    down = RecordingTarget(status=503, body={"status": "down"})
    result = await _executor(down).health_check()
    assert result.success is False
    assert result.status == 503

    unreachable = RecordingTarget(error=httpx.ConnectTimeout("timed out"))
    result = await _executor(unreachable).health_check()
    assert result.success is False
    assert result.error_type == "connection"

    broken = RecordingTarget(error=RuntimeError("port must be 0-65535"))
    result = await _executor(broken).health_check()
    assert result.success is False
    assert result.error_type == "internal"
    assert "port must be 0-65535" in result.error


def test_execution_result_invariants():
    with pytest.raises(ValidationError):
        ExecutionResult(success=True, error="nope", error_type="internal")
    with pytest.raises(ValidationError):
        ExecutionResult(success=False)
    with pytest.raises(ValidationError):
        ExecutionResult(success=False, error="x", error_type="connection", status=500)

    payload = ExecutionResult.fail("HTTP error 500: Internal Server Error", error_type="http", status=500).to_payload()
    assert payload == {
        "success": False,
        "status": 500,
        "executionTimeMs": 0,
        "error": "HTTP error 500: Internal Server Error",
        "errorType": "http",
    }
