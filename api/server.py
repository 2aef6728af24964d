"""
Operix - HTTP Server

Minimal HTTP/1.1 server on asyncio streams. One request per connection
(responses carry ``Connection: close``).

Request flow:
    read head -> parse request line/headers/query -> buffer body
    -> CORS headers -> OPTIONS short-circuit -> decode body
    -> middleware chain -> route dispatch -> write response

Every request runs under a deadline (``ServerConfig.request_timeout``):
reading the request is bounded by it (408 on expiry) and so is the
dispatch (503 on expiry). Errors never escape a connection handler;
clients only see a status code and a minimal JSON error body.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import time
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union
from urllib.parse import parse_qsl, urlsplit

import structlog
from opentelemetry import trace
from opentelemetry.trace import SpanKind, Status, StatusCode
from pydantic import ValidationError

from api.http import BODY_METHODS, HttpMethod, HttpRequest, HttpResponse, RequestContext
from api.router import Router
from config import CorsConfig, ServerConfig
from core.errors import BadRequestError, HttpError, PayloadTooLargeError, RequestParseError
from core.events import EventBus
from core.middleware import MiddlewareManager
from observability.logging import get_logger
from observability.tracing import get_tracer

HeaderInput = Union[Mapping[str, str], Iterable[Tuple[str, str]]]


def _normalize_headers(headers: Optional[HeaderInput]) -> Dict[str, str]:
    """Lower-case names; repeated headers are joined with ``, ``."""
    result: Dict[str, str] = {}
    if headers is None:
        return result
    items = headers.items() if isinstance(headers, Mapping) else headers
    for name, value in items:
        key = name.strip().lower()
        value = value.strip()
        result[key] = f"{result[key]}, {value}" if key in result else value
    return result


class HttpServer:
    """Accepts connections and runs requests through middleware and router."""

    def __init__(
        self,
        router: Router,
        middleware: MiddlewareManager,
        server_config: Optional[ServerConfig] = None,
        cors_config: Optional[CorsConfig] = None,
        events: Optional[EventBus] = None,
        logger: Optional[structlog.stdlib.BoundLogger] = None,
    ):
        self._router = router
        self._middleware = middleware
        self._config = server_config or ServerConfig()
        self._cors = cors_config or CorsConfig()
        self._events = events or EventBus()
        self._logger = logger or get_logger("operix.http")
        self._tracer = get_tracer("operix.http")

        self._server: Optional[asyncio.Server] = None
        self._bound_port: Optional[int] = None
        self._started_at: Optional[float] = None
        self._connections: Set[asyncio.Task[Any]] = set()
        self._requests_handled = 0

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._server is not None

    @property
    def host(self) -> str:
        return self._config.host

    @property
    def port(self) -> int:
        """Bound port while running (useful with port 0), else the configured one."""
        return self._bound_port if self._bound_port is not None else self._config.port

    @property
    def config(self) -> ServerConfig:
        return self._config

    @property
    def cors(self) -> CorsConfig:
        return self._cors

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        if self._server is not None:
            self._logger.warning("HTTP server already running", host=self.host, port=self.port)
            return

        self._server = await asyncio.start_server(
            self._handle_connection,
            host=self._config.host,
            port=self._config.port,
            limit=self._config.max_header_bytes,
        )
        sockets = self._server.sockets or ()
        self._bound_port = sockets[0].getsockname()[1] if sockets else self._config.port
        self._started_at = time.monotonic()

        self._logger.info("HTTP server listening", host=self.host, port=self.port)
        self._events.emit("server:started", {"host": self.host, "port": self.port})

    async def stop(self) -> None:
        if self._server is None:
            self._logger.warning("HTTP server not running")
            return

        server = self._server
        self._server = None
        server.close()

        pending = {task for task in self._connections if not task.done()}
        if pending:
            self._logger.info("Waiting for in-flight requests", count=len(pending))
            _, still_running = await asyncio.wait(pending, timeout=self._config.shutdown_grace)
            for task in still_running:
                task.cancel()
            if still_running:
                await asyncio.wait(still_running)

        await server.wait_closed()

        port = self.port
        self._bound_port = None
        self._started_at = None
        self._logger.info("HTTP server stopped", host=self.host, port=port)
        self._events.emit("server:stopped", {"host": self.host, "port": port})

    def update_config(
        self,
        server_config: Optional[ServerConfig] = None,
        cors_config: Optional[CorsConfig] = None,
    ) -> None:
        """Swap configuration; listener settings apply on the next start()."""
        if server_config is not None:
            if self.is_running and (
                server_config.host != self._config.host or server_config.port != self._config.port
            ):
                self._logger.warning("Listener address change takes effect after restart")
            self._config = server_config
        if cors_config is not None:
            self._cors = cors_config

    def status(self) -> Dict[str, Any]:
        uptime = time.monotonic() - self._started_at if self._started_at is not None else 0.0
        return {
            "running": self.is_running,
            "host": self.host,
            "port": self.port,
            "uptime_seconds": round(uptime, 3),
            "active_connections": sum(1 for task in self._connections if not task.done()),
            "requests_handled": self._requests_handled,
            "routes": len(self._router),
            "middleware": len(self._middleware),
        }

    # -------------------------------------------------------------------------
    # Connection handling
    # -------------------------------------------------------------------------

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._connections.add(task)

        peer = writer.get_extra_info("peername")
        client = (str(peer[0]), int(peer[1])) if isinstance(peer, tuple) and len(peer) >= 2 else None
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.request_timeout

        try:
            try:
                async with asyncio.timeout_at(deadline):
                    method, target, headers, body = await self._read_request(reader)
            except HttpError as e:
                response = self._error_response(e.status_code, e.public_message)
                self._logger.info("Rejected malformed request", status=e.status_code, reason=e.message, client=client)
                writer.write(response.to_bytes())
            except TimeoutError:
                response = self._error_response(408, "Request Timeout")
                writer.write(response.to_bytes())
            except asyncio.IncompleteReadError:
                return
            else:
                response = await self.handle_request(method, target, headers, body, client, deadline=deadline)
                writer.write(response.to_bytes(include_body=method.upper() != HttpMethod.HEAD.value))
            await writer.drain()
        except ConnectionError as e:
            self._logger.debug("Client connection lost", client=client, error=e)
        except Exception as e:
            self._logger.error("Connection handler failed", client=client, error=e, exc_info=e)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, asyncio.CancelledError):
                pass
            if task is not None:
                self._connections.discard(task)

    async def _read_request(
        self,
        reader: asyncio.StreamReader,
    ) -> Tuple[str, str, List[Tuple[str, str]], bytes]:
        try:
            raw_head = await reader.readuntil(b"\r\n\r\n")
        except asyncio.LimitOverrunError as e:
            raise BadRequestError("Request head exceeds size limit", cause=e) from e

        lines = raw_head[:-4].decode("latin-1").split("\r\n")
        parts = lines[0].split(" ")
        if len(parts) != 3 or not parts[0] or not parts[1] or not parts[2].startswith("HTTP/1."):
            raise BadRequestError(f"Malformed request line: {lines[0][:100]!r}")
        method, target, _version = parts

        headers: List[Tuple[str, str]] = []
        for line in lines[1:]:
            name, sep, value = line.partition(":")
            if not sep or not name or name != name.strip():
                raise BadRequestError(f"Malformed header line: {line[:100]!r}")
            headers.append((name, value.strip()))

        body = b""
        if method.upper() in {m.value for m in BODY_METHODS}:
            body = await self._read_body(reader, _normalize_headers(headers))
        return method, target, headers, body

    async def _read_body(self, reader: asyncio.StreamReader, headers: Dict[str, str]) -> bytes:
        limit = self._config.max_body_bytes

        if "chunked" in headers.get("transfer-encoding", "").lower():
            chunks: List[bytes] = []
            total = 0
            while True:
                try:
                    size_line = await reader.readline()
                except ValueError as e:
                    raise BadRequestError("Chunk size line exceeds size limit", cause=e) from e
                try:
                    size = int(size_line.split(b";")[0].strip(), 16)
                except ValueError as e:
                    raise BadRequestError("Malformed chunk size", cause=e) from e
                if size == 0:
                    # trailer section ends with an empty line
                    while (await reader.readline()).strip():
                        pass
                    return b"".join(chunks)
                total += size
                if total > limit:
                    raise PayloadTooLargeError(f"Chunked body exceeds {limit} bytes")
                chunk = await reader.readexactly(size + 2)
                if chunk[-2:] != b"\r\n":
                    raise BadRequestError("Chunk not terminated by CRLF")
                chunks.append(chunk[:-2])

        raw_length = headers.get("content-length")
        if raw_length is None:
            return b""
        try:
            length = int(raw_length)
        except ValueError as e:
            raise BadRequestError(f"Invalid Content-Length {raw_length!r}", cause=e) from e
        if length < 0:
            raise BadRequestError(f"Invalid Content-Length {raw_length!r}")
        if length > limit:
            raise PayloadTooLargeError(f"Body of {length} bytes exceeds {limit} bytes")
        return await reader.readexactly(length) if length else b""

    # -------------------------------------------------------------------------
    # Request handling
    # -------------------------------------------------------------------------

    async def handle_request(
        self,
        method: str,
        target: str,
        headers: Optional[HeaderInput] = None,
        body: bytes = b"",
        client: Optional[Tuple[str, int]] = None,
        deadline: Optional[float] = None,
    ) -> HttpResponse:
        """
        Run one already-framed request through CORS, middleware and routing.

        Never raises for request-time failures; they become error responses.
        """
        loop = asyncio.get_running_loop()
        if deadline is None:
            deadline = loop.time() + self._config.request_timeout

        parsed = urlsplit(target)
        request = HttpRequest(
            method=method.upper(),
            url=target,
            pathname=parsed.path or "/",
            query=dict(parse_qsl(parsed.query, keep_blank_values=True)),
            headers=_normalize_headers(headers),
            raw_body=body,
            client=client,
        )
        response = HttpResponse()
        context = RequestContext(request=request, response=response, deadline=deadline)
        self._requests_handled += 1

        with self._tracer.start_as_current_span(
            f"{request.method} {request.pathname}",
            kind=SpanKind.SERVER,
            record_exception=False,
            set_status_on_exception=False,
        ) as span:
            span.set_attribute("http.method", request.method)
            span.set_attribute("http.target", target)
            span.set_attribute("operix.request_id", context.request_id)

            self._apply_cors(request, response)

            if request.method == HttpMethod.OPTIONS.value:
                response.status(200)
                span.set_attribute("http.status_code", 200)
                return response

            scope = asyncio.timeout_at(deadline)
            try:
                async with scope:
                    self._decode_body(request)
                    await self._middleware.execute(context, self._dispatch)
            except TimeoutError as e:
                if not scope.expired():
                    self._internal_error(context, e, span)
                else:
                    self._logger.warning(
                        "Request exceeded deadline",
                        request_id=context.request_id,
                        method=request.method,
                        path=request.pathname,
                        timeout=self._config.request_timeout,
                    )
                    span.set_status(Status(StatusCode.ERROR, "deadline exceeded"))
                    self._fail(response, 503, "Service Unavailable")
            except HttpError as e:
                self._logger.info(
                    "Request rejected",
                    request_id=context.request_id,
                    status=e.status_code,
                    reason=e.message,
                )
                self._fail(response, e.status_code, e.public_message)
            except Exception as e:
                self._internal_error(context, e, span)

            span.set_attribute("http.status_code", response.status_code)
            if context.route is not None:
                span.set_attribute("http.route", context.route.pattern)

        return response

    def _decode_body(self, request: HttpRequest) -> None:
        """Decode the buffered body for POST/PUT/PATCH; other methods keep None."""
        if request.method not in {m.value for m in BODY_METHODS}:
            return

        if "application/json" in request.content_type.lower():
            if not request.raw_body.strip():
                request.body = {}
                return
            try:
                request.body = json.loads(request.raw_body)
            except (UnicodeDecodeError, ValueError) as e:
                raise RequestParseError(f"Malformed JSON body: {e}", cause=e) from e
        else:
            request.body = request.raw_body.decode("utf-8", errors="replace")

    async def _dispatch(self, context: RequestContext) -> None:
        """Terminal step of the middleware chain: route match and handler call."""
        request = context.request
        response = context.response

        match = self._router.resolve(request.method, request.pathname)
        if match is None:
            response.status(404).json({"error": "Not Found"})
            return

        context.route = match.route
        request.params = match.params

        body_model = match.route.options.body_model
        if body_model is not None:
            try:
                request.validated = body_model.model_validate(
                    request.body if isinstance(request.body, dict) else {}
                )
            except ValidationError as e:
                response.status(400).json({
                    "error": "Bad Request",
                    "details": json.loads(e.json(include_url=False)),
                })
                return

        result = match.route.handler(request, response)
        if inspect.isawaitable(result):
            await result

    def _apply_cors(self, request: HttpRequest, response: HttpResponse) -> None:
        cors = self._cors
        origin = cors.allow_origin_for(request.header("origin"))
        response.header("Access-Control-Allow-Origin", origin)
        if origin != "*" and len(cors.origins) > 1:
            response.header("Vary", "Origin")
        response.header("Access-Control-Allow-Methods", ", ".join(cors.allow_methods))
        response.header("Access-Control-Allow-Headers", ", ".join(cors.allow_headers))
        if cors.credentials:
            response.header("Access-Control-Allow-Credentials", "true")

    def _internal_error(self, context: RequestContext, error: BaseException, span: trace.Span) -> None:
        self._logger.error(
            "Request failed",
            request_id=context.request_id,
            method=context.request.method,
            path=context.request.pathname,
            error=error,
            exc_info=error,
        )
        span.record_exception(error)
        span.set_status(Status(StatusCode.ERROR, str(error)))
        self._fail(context.response, 500, "Internal Server Error")

    @staticmethod
    def _fail(response: HttpResponse, status: int, message: str) -> None:
        response.reset().status(status).json({"error": message})

    def _error_response(self, status: int, message: str) -> HttpResponse:
        response = HttpResponse()
        response.header("Access-Control-Allow-Origin", self._cors.allow_origin_for(None))
        self._fail(response, status, message)
        return response
