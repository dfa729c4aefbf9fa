"""
Per-request state handed to route handlers.
"""

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any


class _NoBody:
    """Sentinel for a request that carried no body at all."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NO_BODY"


NO_BODY = _NoBody()


@dataclass
class RequestContext:
    """Transient record for one request, discarded once the response is written.

    ``body`` is NO_BODY, the parsed JSON value, the raw text when the body was
    not JSON, or a validated model instance when the route declares a schema.
    ``cancelled`` is set when the request deadline expires so long-running
    handlers can stop early.
    """

    method: str
    path: str
    params: dict[str, str] = field(default_factory=dict)
    query: Mapping[str, str] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)
    raw_body: bytes | None = None
    body: Any = NO_BODY
    cancelled: asyncio.Event = field(default_factory=asyncio.Event)
    responded: bool = False
