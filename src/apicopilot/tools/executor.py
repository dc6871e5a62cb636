# tools/executor.py

from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Union
from urllib.parse import quote

import httpx

from apicopilot.core.exceptions import ToolParameterError
from apicopilot.core.logger import setup_logger
from apicopilot.models.tool_model import ExecutionResult, ToolDefinition
from apicopilot.tools.compiler import extract_path_parameters

logger = setup_logger(__name__)


CLIENT_USER_AGENT = "apicopilot/1.0.0"
DEFAULT_TIMEOUT_S = 30.0
HEALTH_PATH = "/health"
HEALTH_TIMEOUT_S = 5.0

# Parameters that steer the request itself and never travel in the body.
RESERVED_PARAMS = frozenset({"authorization", "token", "headers"})
BODYLESS_METHODS = frozenset({"GET", "DELETE"})


def normalize_bearer(token: str) -> str:
    token = str(token).strip()
    return token if token.startswith("Bearer ") else f"Bearer {token}"


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def _query_value(value: Any) -> Union[str, List[str]]:
    if isinstance(value, (list, tuple)):
        return [_stringify(v) for v in value]
    return _stringify(value)


@dataclass(frozen=True)
class _ConfigSnapshot:
    base_url: str
    default_headers: Mapping[str, str] = field(default_factory=dict)


class ExecutorConfig:
    """Shared, mutable target-API configuration.

    Readers grab the current immutable snapshot without locking; mutators
    build a new snapshot under a short lock and swap it in.
    """

    def __init__(self, base_url: str, default_headers: Optional[Dict[str, str]] = None) -> None:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": CLIENT_USER_AGENT,
        }
        headers.update(default_headers or {})
        self._lock = threading.Lock()
        self._snapshot = _ConfigSnapshot(
            base_url=self._clean_base_url(base_url),
            default_headers=MappingProxyType(headers),
        )

    @staticmethod
    def _clean_base_url(base_url: str) -> str:
        return str(base_url).rstrip("/")

    def snapshot(self) -> _ConfigSnapshot:
        return self._snapshot

    @property
    def base_url(self) -> str:
        return self._snapshot.base_url

    @property
    def default_headers(self) -> Dict[str, str]:
        return dict(self._snapshot.default_headers)

    def set_base_url(self, base_url: str) -> None:
        with self._lock:
            self._snapshot = _ConfigSnapshot(
                base_url=self._clean_base_url(base_url),
                default_headers=self._snapshot.default_headers,
            )

    def set_default_headers(self, headers: Dict[str, str]) -> None:
        """Merge headers into the defaults (existing keys are overwritten)."""
        incoming = {str(k): str(v) for k, v in headers.items()}
        overridden = {k.lower() for k in incoming}
        with self._lock:
            merged = {
                k: v for k, v in self._snapshot.default_headers.items() if k.lower() not in overridden
            }
            merged.update(incoming)
            self._snapshot = _ConfigSnapshot(
                base_url=self._snapshot.base_url,
                default_headers=MappingProxyType(merged),
            )

    def set_auth_token(self, token: str) -> None:
        self.set_default_headers({"Authorization": normalize_bearer(token)})

    def clear_auth_token(self) -> None:
        with self._lock:
            headers = {
                k: v for k, v in self._snapshot.default_headers.items() if k.lower() != "authorization"
            }
            self._snapshot = _ConfigSnapshot(
                base_url=self._snapshot.base_url,
                default_headers=MappingProxyType(headers),
            )


@dataclass(frozen=True)
class ResolvedRequest:
    """A parameter bag after placement: everything httpx needs, nothing untyped left."""

    method: str
    url: str
    query: Dict[str, Union[str, List[str]]]
    headers: httpx.Headers
    body: Optional[Any] = None


def build_request(
    tool: ToolDefinition,
    params: Optional[Dict[str, Any]],
    config: _ConfigSnapshot,
) -> ResolvedRequest:
    """Place each parameter in the path, query, headers or body.

    Raises ToolParameterError when a `{param}` in the path template has no value.
    """
    params = dict(params or {})
    binding = tool.binding
    path_names = extract_path_parameters(binding.path)

    # Path
    missing = [n for n in path_names if params.get(n) is None]
    if missing:
        raise ToolParameterError(
            f"Missing path parameter(s) for {binding.method} {binding.path}: {', '.join(missing)}",
            missing=tuple(missing),
        )
    path = binding.path
    for name in path_names:
        path = path.replace("{" + name + "}", quote(_stringify(params[name]), safe="!*'()"))

    # Headers
    headers = httpx.Headers(dict(config.default_headers))
    token = params.get("authorization") or params.get("token")
    if token:
        headers["Authorization"] = normalize_bearer(token)
    for name in binding.header_params:
        if params.get(name) is not None:
            headers[name] = _stringify(params[name])
    custom = params.get("headers")
    if isinstance(custom, dict):
        headers.update({str(k): _stringify(v) for k, v in custom.items()})

    # Query (arrays explode into repeated keys)
    query = {
        name: _query_value(params[name])
        for name in binding.query_params
        if params.get(name) is not None
    }

    # Body
    body: Optional[Any] = None
    method = binding.method.upper()
    if method not in BODYLESS_METHODS:
        if params.get("body") is not None:
            body = params["body"]
        else:
            excluded = set(RESERVED_PARAMS) | set(path_names) | set(binding.query_params) | set(binding.header_params)
            remaining = {k: v for k, v in params.items() if k not in excluded}
            body = remaining or None

    return ResolvedRequest(
        method=method,
        url=f"{config.base_url}{path}",
        query=query,
        headers=headers,
        body=body,
    )


def _response_data(resp: httpx.Response) -> Any:
    if not resp.content:
        return None
    try:
        return resp.json()
    except ValueError:
        return resp.text


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class ToolExecutor:
    """Executes compiled tools against the target REST API.

    Stateless per call; the only shared state is the ExecutorConfig.
    """

    def __init__(
        self,
        config: ExecutorConfig,
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config
        self.timeout_s = timeout_s
        self._transport = transport

    def _client(self, timeout_s: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout_s, transport=self._transport)

    async def execute(self, tool: ToolDefinition, params: Optional[Dict[str, Any]] = None) -> ExecutionResult:
        start = time.perf_counter()

        try:
            request = build_request(tool, params, self.config.snapshot())
        except ToolParameterError as e:
            logger.warning(f"Rejected tool '{tool.name}' before dispatch: {e}")
            return ExecutionResult.fail(str(e), error_type="validation", execution_time_ms=_elapsed_ms(start))
        except Exception as e:
            logger.exception(f"Failed to build request for tool '{tool.name}'")
            return ExecutionResult.fail(
                f"Internal error: {e}", error_type="internal", execution_time_ms=_elapsed_ms(start)
            )

        logger.info(f"Executing tool '{tool.name}': {request.method} {request.url}")

        try:
            async with self._client(self.timeout_s) as client:
                resp = await client.request(
                    request.method,
                    request.url,
                    params=request.query or None,
                    headers=request.headers,
                    json=request.body,
                )
                resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.warning(f"Tool '{tool.name}' got HTTP {status} from {request.method} {request.url}")
            return ExecutionResult.fail(
                f"HTTP error {status}: {e.response.reason_phrase}",
                error_type="http",
                status=status,
                data=_response_data(e.response),
                execution_time_ms=_elapsed_ms(start),
            )
        except httpx.RequestError as e:
            logger.warning(f"Tool '{tool.name}' could not reach {request.url}: {e!r}")
            return ExecutionResult.fail(
                f"Connection error: could not reach the API server ({type(e).__name__})",
                error_type="connection",
                execution_time_ms=_elapsed_ms(start),
            )
        except Exception as e:
            logger.exception(f"Tool '{tool.name}' failed unexpectedly")
            return ExecutionResult.fail(
                f"Internal error: {e}", error_type="internal", execution_time_ms=_elapsed_ms(start)
            )

        elapsed = _elapsed_ms(start)
        logger.info(f"Tool '{tool.name}' completed status={resp.status_code} elapsed_ms={elapsed}")
        return ExecutionResult.ok(
            _response_data(resp),
            status=resp.status_code,
            headers=dict(resp.headers),
            execution_time_ms=elapsed,
        )

    async def health_check(self) -> ExecutionResult:
        start = time.perf_counter()
        snapshot = self.config.snapshot()
        try:
            async with self._client(HEALTH_TIMEOUT_S) as client:
                resp = await client.get(
                    f"{snapshot.base_url}{HEALTH_PATH}", headers=dict(snapshot.default_headers)
                )
                resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            return ExecutionResult.fail(
                f"Health check failed: HTTP {e.response.status_code}",
                error_type="http",
                status=e.response.status_code,
                data=_response_data(e.response),
                execution_time_ms=_elapsed_ms(start),
            )
        except httpx.RequestError as e:
            return ExecutionResult.fail(
                f"Health check failed: {type(e).__name__}",
                error_type="connection",
                execution_time_ms=_elapsed_ms(start),
            )
        except Exception as e:
            logger.exception("Health check failed unexpectedly")
            return ExecutionResult.fail(
                f"Health check failed: {e}", error_type="internal", execution_time_ms=_elapsed_ms(start)
            )
        return ExecutionResult.ok(
            _response_data(resp), status=resp.status_code, execution_time_ms=_elapsed_ms(start)
        )

    # Configuration pass-throughs
    def set_base_url(self, base_url: str) -> None:
        self.config.set_base_url(base_url)

    def set_default_headers(self, headers: Dict[str, str]) -> None:
        self.config.set_default_headers(headers)

    def set_auth_token(self, token: str) -> None:
        self.config.set_auth_token(token)

    def clear_auth_token(self) -> None:
        self.config.clear_auth_token()
