"""
Operix - Router

Maps (method, path pattern) pairs to handlers and resolves concrete
request paths to a handler plus extracted path parameters.

Patterns are made of literal segments and ``:name`` placeholders; a
placeholder matches exactly one non-empty segment and never crosses a
``/``. Patterns and request paths are normalized the same way: a leading
``/`` is added and a trailing ``/`` is dropped (except for the root).

Resolution:
    1. exact lookup of ``METHOD:/literal/path`` (no placeholders involved)
    2. otherwise every route of that method with the same segment count is
       tried, and the most specific match wins: comparing segments left to
       right, a literal segment beats a placeholder. Routes that are equally
       specific resolve in registration order.

So with ``/users/:id`` and ``/users/me`` both registered, ``/users/me``
always goes to the literal route regardless of registration order.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Tuple,
    Type,
    Union,
)
from urllib.parse import unquote

import structlog
from pydantic import BaseModel

from api.http import HttpMethod, HttpRequest, HttpResponse
from core.errors import DuplicateNameError, DuplicateRouteError, InvalidRouteError
from observability.logging import get_logger

Handler = Callable[[HttpRequest, HttpResponse], Union[Awaitable[None], None]]

_PARAM_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def normalize_path(path: str) -> str:
    """Ensure a leading slash and drop a trailing one (root stays ``/``)."""
    if not path.startswith("/"):
        path = "/" + path
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/") or "/"
    return path


def split_path(path: str) -> Tuple[str, ...]:
    stripped = path.strip("/")
    return tuple(stripped.split("/")) if stripped else ()


def join_paths(prefix: str, path: str) -> str:
    prefix = normalize_path(prefix)
    path = normalize_path(path)
    if prefix == "/":
        return path
    if path == "/":
        return prefix
    return prefix + path


@dataclass
class RouteOptions:
    """Descriptive and validation metadata attached to a route."""
    description: str = ""
    summary: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    middleware: List[str] = field(default_factory=list)
    body_model: Optional[Type[BaseModel]] = None


@dataclass
class Route:
    """A registered route. Identity is ``key`` (``METHOD:pattern``)."""
    method: HttpMethod
    pattern: str
    handler: Handler
    options: RouteOptions = field(default_factory=RouteOptions)
    segments: Tuple[str, ...] = ()
    order: int = 0

    @property
    def key(self) -> str:
        return f"{self.method.value}:{self.pattern}"

    @property
    def is_dynamic(self) -> bool:
        return any(segment.startswith(":") for segment in self.segments)

    @property
    def param_names(self) -> List[str]:
        return [s[1:] for s in self.segments if s.startswith(":")]

    @property
    def specificity(self) -> Tuple[int, ...]:
        """Per-segment rank, 0 for literal and 1 for placeholder; lower is more specific."""
        return tuple(1 if s.startswith(":") else 0 for s in self.segments)

    def match(self, segments: Tuple[str, ...]) -> Optional[Dict[str, str]]:
        """Extracted params if ``segments`` fits this pattern, else None."""
        if len(segments) != len(self.segments):
            return None
        params: Dict[str, str] = {}
        for expected, actual in zip(self.segments, segments):
            if expected.startswith(":"):
                if not actual:
                    return None
                params[expected[1:]] = unquote(actual)
            elif expected != actual:
                return None
        return params

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method.value,
            "path": self.pattern,
            "description": self.options.description,
            "tags": list(self.options.tags),
            "middleware": list(self.options.middleware),
        }


@dataclass
class RouteMatch:
    """Result of a successful resolve()."""
    route: Route
    params: Dict[str, str] = field(default_factory=dict)


class _RegistrationMixin(ABC):
    """Verb helpers shared by Router and RouteGroup."""

    @abstractmethod
    def register(
        self,
        method: Union[str, HttpMethod],
        path: str,
        handler: Handler,
        options: Optional[RouteOptions] = None,
    ) -> Route:
        ...

    def route(
        self,
        method: Union[str, HttpMethod],
        path: str,
        handler: Optional[Handler] = None,
        **options: Any,
    ) -> Any:
        """
        Register ``handler`` directly, or act as a decorator when it is omitted.

        Keyword options are passed to RouteOptions.
        """
        route_options = RouteOptions(**options) if options else None
        if handler is not None:
            return self.register(method, path, handler, route_options)

        def decorator(func: Handler) -> Handler:
            self.register(method, path, func, route_options)
            return func

        return decorator

    def get(self, path: str, handler: Optional[Handler] = None, **options: Any) -> Any:
        return self.route(HttpMethod.GET, path, handler, **options)

    def post(self, path: str, handler: Optional[Handler] = None, **options: Any) -> Any:
        return self.route(HttpMethod.POST, path, handler, **options)

    def put(self, path: str, handler: Optional[Handler] = None, **options: Any) -> Any:
        return self.route(HttpMethod.PUT, path, handler, **options)

    def delete(self, path: str, handler: Optional[Handler] = None, **options: Any) -> Any:
        return self.route(HttpMethod.DELETE, path, handler, **options)

    def patch(self, path: str, handler: Optional[Handler] = None, **options: Any) -> Any:
        return self.route(HttpMethod.PATCH, path, handler, **options)

    def head(self, path: str, handler: Optional[Handler] = None, **options: Any) -> Any:
        return self.route(HttpMethod.HEAD, path, handler, **options)

    def options(self, path: str, handler: Optional[Handler] = None, **options: Any) -> Any:
        return self.route(HttpMethod.OPTIONS, path, handler, **options)


class RouteGroup(_RegistrationMixin):
    """Registers routes under a fixed path prefix into the owning router."""

    def __init__(self, router: "Router", prefix: str):
        self._router = router
        self.prefix = normalize_path(prefix)

    def register(
        self,
        method: Union[str, HttpMethod],
        path: str,
        handler: Handler,
        options: Optional[RouteOptions] = None,
    ) -> Route:
        return self._router.register(method, join_paths(self.prefix, path), handler, options)

    def group(self, prefix: str) -> "RouteGroup":
        """Nested group; its prefix is appended to this group's prefix."""
        return self._router.create_group(join_paths(self.prefix, prefix))

    def routes(self) -> List[Route]:
        """Routes registered under this group's prefix."""
        prefix = self.prefix.rstrip("/") + "/"
        return [
            route for route in self._router.get_all_routes()
            if route.pattern == self.prefix or route.pattern.startswith(prefix)
        ]

    def __repr__(self) -> str:
        return f"RouteGroup(prefix={self.prefix!r})"


class Router(_RegistrationMixin):
    """Route registry and resolver."""

    def __init__(self, logger: Optional[structlog.stdlib.BoundLogger] = None):
        self._routes: Dict[str, Route] = {}
        self._by_method: Dict[HttpMethod, List[Route]] = {}
        self._groups: Dict[str, RouteGroup] = {}
        self._counter = 0
        self._logger = logger or get_logger("operix.router")

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register(
        self,
        method: Union[str, HttpMethod],
        path: str,
        handler: Handler,
        options: Optional[RouteOptions] = None,
    ) -> Route:
        try:
            http_method = HttpMethod.parse(method)
        except ValueError as e:
            raise InvalidRouteError(f"Unsupported HTTP method '{method}'", cause=e) from e

        pattern = normalize_path(path)
        segments = split_path(pattern)
        self._check_segments(pattern, segments)

        route = Route(
            method=http_method,
            pattern=pattern,
            handler=handler,
            options=options or RouteOptions(),
            segments=segments,
            order=self._counter,
        )
        if route.key in self._routes:
            raise DuplicateRouteError(route.key)

        self._counter += 1
        self._routes[route.key] = route
        self._by_method.setdefault(http_method, []).append(route)
        self._logger.debug("Route registered", route=route.key)
        return route

    @staticmethod
    def _check_segments(pattern: str, segments: Tuple[str, ...]) -> None:
        seen = set()
        for segment in segments:
            if not segment:
                raise InvalidRouteError(f"Route pattern '{pattern}' contains an empty segment")
            if segment.startswith(":"):
                name = segment[1:]
                if not _PARAM_NAME.match(name):
                    raise InvalidRouteError(
                        f"Route pattern '{pattern}' has an invalid parameter name '{segment}'"
                    )
                if name in seen:
                    raise InvalidRouteError(
                        f"Route pattern '{pattern}' repeats parameter '{name}'"
                    )
                seen.add(name)

    def create_group(self, prefix: str) -> RouteGroup:
        prefix = normalize_path(prefix)
        if prefix in self._groups:
            raise DuplicateNameError("Route group", prefix)
        group = RouteGroup(self, prefix)
        self._groups[prefix] = group
        return group

    def group(self, prefix: str) -> RouteGroup:
        """Alias of create_group() so routers and groups nest the same way."""
        return self.create_group(prefix)

    def clear(self) -> None:
        self._routes.clear()
        self._by_method.clear()
        self._groups.clear()

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def resolve(self, method: Union[str, HttpMethod], path: str) -> Optional[RouteMatch]:
        """Find the route for a concrete request path, or None (a 404)."""
        try:
            http_method = HttpMethod.parse(method)
        except ValueError:
            return None

        pathname = normalize_path(path)
        exact = self._routes.get(f"{http_method.value}:{pathname}")
        if exact is not None and not exact.is_dynamic:
            return RouteMatch(route=exact)

        segments = split_path(pathname)
        best: Optional[RouteMatch] = None
        for route in self._by_method.get(http_method, ()):
            params = route.match(segments)
            if params is None:
                continue
            if best is None or route.specificity < best.route.specificity:
                best = RouteMatch(route=route, params=params)
        return best

    def get_route(self, method: Union[str, HttpMethod], pattern: str) -> Optional[Route]:
        """Registered route by its exact pattern (no matching)."""
        try:
            http_method = HttpMethod.parse(method)
        except ValueError:
            return None
        return self._routes.get(f"{http_method.value}:{normalize_path(pattern)}")

    def get_all_routes(self) -> List[Route]:
        return list(self._routes.values())

    def get_routes_by_tag(self, tag: str) -> List[Route]:
        return [route for route in self._routes.values() if tag in route.options.tags]

    def get_groups(self) -> List[RouteGroup]:
        return list(self._groups.values())

    def __len__(self) -> int:
        return len(self._routes)

    # -------------------------------------------------------------------------
    # Documentation
    # -------------------------------------------------------------------------

    def generate_spec(
        self,
        title: str = "Operix API",
        version: str = "1.0.0",
        description: str = "",
    ) -> Dict[str, Any]:
        """OpenAPI 3.0 document describing every registered route."""
        paths: Dict[str, Dict[str, Any]] = {}

        for route in self._routes.values():
            openapi_path = "/" + "/".join(
                "{" + s[1:] + "}" if s.startswith(":") else s for s in route.segments
            )
            operation: Dict[str, Any] = {
                "summary": route.options.summary or route.options.description or route.key,
                "tags": list(route.options.tags),
                "responses": {"200": {"description": "Successful response"}},
            }
            if route.options.description:
                operation["description"] = route.options.description
            if route.param_names:
                operation["parameters"] = [
                    {"name": name, "in": "path", "required": True, "schema": {"type": "string"}}
                    for name in route.param_names
                ]
            if route.options.body_model is not None:
                operation["requestBody"] = {
                    "required": True,
                    "content": {
                        "application/json": {"schema": route.options.body_model.model_json_schema()}
                    },
                }
                operation["responses"]["400"] = {"description": "Validation error"}
            if route.options.middleware:
                operation["x-middleware"] = list(route.options.middleware)

            paths.setdefault(openapi_path, {})[route.method.value.lower()] = operation

        info: Dict[str, Any] = {"title": title, "version": version}
        if description:
            info["description"] = description
        return {"openapi": "3.0.0", "info": info, "paths": paths}
