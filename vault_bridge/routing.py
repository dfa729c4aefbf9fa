"""
Route table for Vault Bridge.

Routes are registered during setup in order and frozen when the server
starts. Matching is a linear scan: the first route whose method and path
structure both match wins.
"""

import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import unquote

from pydantic import BaseModel

from .context import RequestContext
from .errors import InvalidInputError

Handler = Callable[[RequestContext], Awaitable[Any]]

PARAM_PATTERN = re.compile(r':(\w+)')
SEGMENT_PATTERN = r'([^/]+)'


@dataclass(frozen=True, slots=True)
class Route:
    """A registered route.

    ``pattern`` is the declared path such as ``/tags/:tag/notes``; each
    ``:name`` captures exactly one path segment.
    """

    method: str
    pattern: str
    param_names: tuple[str, ...]
    regex: re.Pattern[str]
    handler: Handler
    body_model: type[BaseModel] | None = None


@dataclass(frozen=True, slots=True)
class RouteMatch:
    """Result of a successful route match."""

    route: Route
    params: dict[str, str]


def compile_pattern(pattern: str) -> tuple[re.Pattern[str], tuple[str, ...]]:
    """Convert ``/notes/:path/move`` into an anchored regex plus its parameter names."""
    names: list[str] = []
    parts: list[str] = []
    pos = 0
    for match in PARAM_PATTERN.finditer(pattern):
        name = match.group(1)
        if name in names:
            raise ValueError(f"Duplicate route parameter {name!r} in {pattern}")
        parts.append(re.escape(pattern[pos:match.start()]))
        parts.append(SEGMENT_PATTERN)
        names.append(name)
        pos = match.end()
    parts.append(re.escape(pattern[pos:]))
    return re.compile("".join(parts)), tuple(names)


class RouteTable:
    """Ordered (method, pattern, handler) entries.

    Usage::

        table = RouteTable()
        table.register("GET", "/tags/:tag/notes", handler)
        match = table.match("GET", "/tags/work/notes")
        match.params  # {"tag": "work"}
    """

    def __init__(self) -> None:
        self._routes: list[Route] = []
        self._frozen = False

    def register(
        self,
        method: str,
        pattern: str,
        handler: Handler,
        body_model: type[BaseModel] | None = None,
    ) -> Route:
        if self._frozen:
            raise RuntimeError("Cannot add routes after the server has started.")
        regex, names = compile_pattern(pattern)
        route = Route(
            method=method.upper(),
            pattern=pattern,
            param_names=names,
            regex=regex,
            handler=handler,
            body_model=body_model,
        )
        self._routes.append(route)
        return route

    def freeze(self) -> None:
        self._frozen = True

    @property
    def routes(self) -> tuple[Route, ...]:
        return tuple(self._routes)

    def __len__(self) -> int:
        return len(self._routes)

    def match(self, method: str, raw_path: str) -> RouteMatch | None:
        """Find the first route matching method and the still percent-encoded path.

        Raises:
            InvalidInputError: If a captured segment is not valid percent-encoded UTF-8
        """
        method = method.upper()
        for route in self._routes:
            if route.method != method:
                continue
            found = route.regex.fullmatch(raw_path)
            if found is None:
                continue
            params: dict[str, str] = {}
            for name, value in zip(route.param_names, found.groups()):
                try:
                    params[name] = unquote(value, errors="strict")
                except UnicodeDecodeError:
                    raise InvalidInputError(f"Malformed path parameter: {name}")
            return RouteMatch(route=route, params=params)
        return None
