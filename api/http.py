"""
Operix - HTTP Request/Response Model

Transport-independent request and response objects plus the typed
RequestContext threaded through the middleware chain.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from dataclasses import dataclass, field
from enum import Enum
from http import HTTPStatus
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel

from core.errors import ResponseAlreadySentError

if TYPE_CHECKING:
    from api.router import Route


class HttpMethod(str, Enum):
    """Methods a route can be registered for."""
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"

    @classmethod
    def parse(cls, method: Union[str, "HttpMethod"]) -> "HttpMethod":
        """Case-insensitive lookup; raises ValueError for unknown methods."""
        if isinstance(method, cls):
            return method
        return cls(str(method).upper())


# Methods whose request body is buffered and decoded before dispatch
BODY_METHODS = frozenset({HttpMethod.POST, HttpMethod.PUT, HttpMethod.PATCH})


@dataclass
class HttpRequest:
    """
    Parsed request as seen by middleware and handlers.

    ``headers`` keys are lower-case. ``params`` is filled in by the router
    once a route matches. ``validated`` holds the pydantic model instance
    when the route declares a body model.
    """
    method: str
    url: str
    pathname: str
    query: Dict[str, str] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    raw_body: bytes = b""
    params: Dict[str, str] = field(default_factory=dict)
    client: Optional[Tuple[str, int]] = None
    validated: Optional[BaseModel] = None

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name.lower(), default)

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")

    @property
    def client_ip(self) -> Optional[str]:
        """First X-Forwarded-For entry, else the peer address."""
        forwarded = self.headers.get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
        return self.client[0] if self.client else None


class HttpResponse:
    """
    Fluent response writer.

    ``status`` and ``header`` may be called any number of times before the
    body is written; ``json`` and ``send`` write the body once.
    """

    def __init__(self) -> None:
        self.status_code: int = 200
        self._headers: Dict[str, Tuple[str, str]] = {}
        self.body: bytes = b""
        self.sent: bool = False

    # -------------------------------------------------------------------------
    # Fluent API
    # -------------------------------------------------------------------------

    def status(self, code: int) -> "HttpResponse":
        self.status_code = int(code)
        return self

    def header(self, name: str, value: Any) -> "HttpResponse":
        self._headers[name.lower()] = (name, str(value))
        return self

    def json(self, data: Any) -> "HttpResponse":
        if isinstance(data, BaseModel):
            data = data.model_dump(mode="json")
        payload = json.dumps(data, default=str, separators=(",", ":")).encode("utf-8")
        return self._write(payload, "application/json")

    def send(self, data: Union[str, bytes, None] = None) -> "HttpResponse":
        if data is None:
            payload = b""
        elif isinstance(data, bytes):
            payload = data
        else:
            payload = str(data).encode("utf-8")
        return self._write(payload, "text/plain; charset=utf-8")

    def _write(self, payload: bytes, default_type: str) -> "HttpResponse":
        if self.sent:
            raise ResponseAlreadySentError("Response body has already been written")
        if payload and "content-type" not in self._headers:
            self.header("Content-Type", default_type)
        self.body = payload
        self.sent = True
        return self

    # -------------------------------------------------------------------------
    # Inspection / serialization
    # -------------------------------------------------------------------------

    def get_header(self, name: str) -> Optional[str]:
        entry = self._headers.get(name.lower())
        return entry[1] if entry else None

    def remove_header(self, name: str) -> None:
        self._headers.pop(name.lower(), None)

    @property
    def headers(self) -> Dict[str, str]:
        """Headers with their original casing."""
        return {name: value for name, value in self._headers.values()}

    def json_body(self) -> Any:
        return json.loads(self.body) if self.body else None

    def reset(self) -> "HttpResponse":
        """Discard status and body; headers set so far (e.g. CORS) are kept."""
        self.status_code = 200
        self.body = b""
        self.sent = False
        self._headers.pop("content-type", None)
        return self

    def to_bytes(self, include_body: bool = True) -> bytes:
        """Serialize as an HTTP/1.1 response with Connection: close."""
        try:
            reason = HTTPStatus(self.status_code).phrase
        except ValueError:
            reason = "Unknown"

        lines: List[str] = [f"HTTP/1.1 {self.status_code} {reason}"]
        for key, (name, value) in self._headers.items():
            if key in ("content-length", "connection"):
                continue
            lines.append(f"{name}: {value}")
        lines.append(f"Content-Length: {len(self.body)}")
        lines.append("Connection: close")

        head = ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1")
        return head + self.body if include_body else head


@dataclass
class RequestContext:
    """
    Per-request state handed to every middleware and the route dispatcher.

    ``deadline`` is an event-loop timestamp (``loop.time()``) after which the
    server abandons the request with a 503; None means no deadline.
    """
    request: HttpRequest
    response: HttpResponse
    deadline: Optional[float] = None
    route: Optional["Route"] = None
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])
    state: Dict[str, Any] = field(default_factory=dict)

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline (never negative), or None."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - asyncio.get_running_loop().time())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0.0
