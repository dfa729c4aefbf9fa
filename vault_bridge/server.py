"""
HTTP server for Vault Bridge.

Contains the Dispatcher, which takes every raw request through health check,
authentication, route matching, body ingestion and the handler deadline, and
BridgeServer, which binds the loopback socket and drains connections on
shutdown. aiohttp supplies HTTP parsing and the listening socket only.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable, Sequence
from functools import partial
from typing import Any

import structlog
from aiohttp import web
from aiohttp.http_exceptions import HttpProcessingError
from pydantic import BaseModel, TypeAdapter, ValidationError

from .auth import AuthGate
from .context import NO_BODY, RequestContext
from .errors import (
    BodyReadError,
    BodyTooLargeError,
    BridgeError,
    InvalidInputError,
    NotFoundError,
    RequestTimeoutError,
)
from .routing import Handler, RouteTable

logger = structlog.get_logger(__name__)

HEALTH_PATH = "/health"
CORS_METHODS = "GET, POST, PUT, DELETE, OPTIONS"
CORS_HEADERS = "Content-Type, Authorization"

HealthProvider = Callable[[bool], Awaitable[dict[str, Any]]]

_payload_adapter = TypeAdapter(Any)


# ============== Envelope ==============

def success_response(data: Any) -> web.Response:
    payload = _payload_adapter.dump_python(data, mode="json")
    return web.json_response({"ok": True, "data": payload})


def error_response(status: int, code: str, message: str) -> web.Response:
    return web.json_response({"ok": False, "error": {"code": code, "message": message}}, status=status)


# ============== Body ingestion ==============

async def read_body(request: web.BaseRequest, limit: int) -> bytes:
    """Read the request body incrementally, failing once it exceeds limit bytes.

    Raises:
        BodyTooLargeError: Declared or streamed size is over the cap
        BodyReadError: The stream broke before the body was complete
    """
    if request.content_length is not None and request.content_length > limit:
        raise BodyTooLargeError(limit)

    chunks: list[bytes] = []
    size = 0
    try:
        async for chunk in request.content.iter_any():
            size += len(chunk)
            if size > limit:
                raise BodyTooLargeError(limit)
            chunks.append(chunk)
    except (OSError, HttpProcessingError) as e:
        raise BodyReadError(f"Failed to read request body: {e}")

    return b"".join(chunks)


def parse_body(raw: bytes) -> Any:
    """Parse a body as JSON, passing non-JSON text through unchanged.

    An empty body is NO_BODY, so handlers can tell it apart from ``{}``.
    Bytes that are not valid UTF-8 are an InvalidInputError.
    """
    if not raw:
        return NO_BODY
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise InvalidInputError(f"Request body is not valid UTF-8: {e.reason} at byte {e.start}") from e
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def validate_body(model: type[BaseModel], body: Any) -> BaseModel:
    """Validate an ingested body against a route's schema; NO_BODY counts as ``{}``."""
    if body is NO_BODY:
        body = {}
    if not isinstance(body, dict):
        raise InvalidInputError("Request body must be a JSON object")
    try:
        return model.model_validate(body)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"])
        raise InvalidInputError(f"Invalid request body: {field}: {first['msg']}" if field else first["msg"])


# ============== Dispatcher ==============

def _log_late_completion(ctx: RequestContext, task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.warning("late_handler_failed", method=ctx.method, path=ctx.path, error=str(error))
    else:
        logger.info("late_handler_result_discarded", method=ctx.method, path=ctx.path)


class Dispatcher:
    """Turns one raw aiohttp request into exactly one enveloped response.

    Usable directly as the request handler of ``aiohttp.web.Server``.
    """

    def __init__(
        self,
        routes: RouteTable,
        auth: AuthGate,
        health: HealthProvider,
        max_body_size: int = 10 * 1024 * 1024,
        request_timeout: float = 30.0,
        cors_origins: Sequence[str] = (),
    ):
        self.routes = routes
        self.auth = auth
        self.health = health
        self.max_body_size = max_body_size
        self.request_timeout = request_timeout
        self.cors_origins = tuple(cors_origins)

    async def __call__(self, request: web.BaseRequest) -> web.StreamResponse:
        ctx = RequestContext(
            method=request.method,
            path=request.rel_url.path,
            query=request.rel_url.query,
            headers=request.headers,
        )

        if request.method == "OPTIONS":
            return self._respond(request, ctx, web.Response(status=204))

        try:
            data = await self._dispatch(request, ctx)
            response = success_response(data)
        except BridgeError as e:
            logger.debug("request_rejected", method=ctx.method, path=ctx.path, code=e.code, status=e.status)
            response = error_response(e.status, e.code, e.message)
            if isinstance(e, BodyTooLargeError):
                response.force_close()
        except Exception as e:
            logger.error("handler_crashed", method=ctx.method, path=ctx.path, error=str(e), exc_info=True)
            response = error_response(500, "INTERNAL_ERROR", str(e) or e.__class__.__name__)

        return self._respond(request, ctx, response)

    def _respond(self, request: web.BaseRequest, ctx: RequestContext, response: web.StreamResponse) -> web.StreamResponse:
        if ctx.responded:
            raise RuntimeError(f"Response already sent for {ctx.method} {ctx.path}")
        ctx.responded = True
        response.headers.update(self.cors_headers(request.headers.get("Origin")))
        return response

    async def _dispatch(self, request: web.BaseRequest, ctx: RequestContext) -> Any:
        if ctx.method == "GET" and ctx.path == HEALTH_PATH:
            return await self.health(self.auth.check(request.headers))

        self.auth.verify(request.headers)

        match = self.routes.match(ctx.method, request.rel_url.raw_path)
        if match is None:
            raise NotFoundError(f"Route not found: {ctx.method} {ctx.path}")
        ctx.params = match.params

        ctx.raw_body = await read_body(request, self.max_body_size)
        ctx.body = parse_body(ctx.raw_body)
        if match.route.body_model is not None:
            ctx.body = validate_body(match.route.body_model, ctx.body)

        return await self._run_handler(match.route.handler, ctx)

    async def _run_handler(self, handler: Handler, ctx: RequestContext) -> Any:
        """Await the handler for at most request_timeout seconds.

        On expiry the handler is left running with ``ctx.cancelled`` set; its
        eventual result or error is logged and discarded.
        """
        task = asyncio.ensure_future(handler(ctx))
        try:
            done, _ = await asyncio.wait({task}, timeout=self.request_timeout)
        except asyncio.CancelledError:
            ctx.cancelled.set()
            raise

        if task in done:
            return task.result()

        ctx.cancelled.set()
        task.add_done_callback(partial(_log_late_completion, ctx))
        logger.warning("request_timeout", method=ctx.method, path=ctx.path, timeout=self.request_timeout)
        raise RequestTimeoutError()

    # ============== CORS ==============

    def origin_allowed(self, origin: str) -> bool:
        """Exact allow-list match, or the same origin with an explicit port."""
        return any(origin == allowed or origin.startswith(allowed + ":") for allowed in self.cors_origins)

    def cors_headers(self, origin: str | None) -> dict[str, str]:
        if not origin or not self.origin_allowed(origin):
            return {}
        return {
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Methods": CORS_METHODS,
            "Access-Control-Allow-Headers": CORS_HEADERS,
            "Vary": "Origin",
        }


# ============== Lifecycle ==============

class BridgeServer:
    """Binds the dispatcher to a loopback socket.

    start() fails loudly when the port cannot be bound. stop() stops
    accepting connections at once, gives in-flight requests up to
    shutdown_timeout seconds, then closes whatever remains.
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        host: str = "127.0.0.1",
        port: int = 27182,
        shutdown_timeout: float = 5.0,
    ):
        self.dispatcher = dispatcher
        self.host = host
        self._port = port
        self.shutdown_timeout = shutdown_timeout
        self._runner: web.ServerRunner | None = None

    @property
    def is_running(self) -> bool:
        return self._runner is not None

    @property
    def port(self) -> int:
        """Bound port once started (useful when configured with port 0)."""
        if self._runner is not None and self._runner.addresses:
            return self._runner.addresses[0][1]
        return self._port

    async def start(self) -> None:
        """Bind and start serving.

        Raises:
            RuntimeError: If already started
            OSError: If the address cannot be bound
        """
        if self._runner is not None:
            raise RuntimeError("Server already started")

        self.dispatcher.routes.freeze()
        runner = web.ServerRunner(web.Server(self.dispatcher), shutdown_timeout=self.shutdown_timeout)
        await runner.setup()
        site = web.TCPSite(runner, self.host, self._port)
        try:
            await site.start()
        except OSError as e:
            logger.error("server_bind_failed", host=self.host, port=self._port, error=str(e))
            await runner.cleanup()
            raise

        self._runner = runner
        logger.info("server_started", host=self.host, port=self.port, routes=len(self.dispatcher.routes))

    async def stop(self) -> None:
        """Stop the server; always returns within roughly shutdown_timeout seconds."""
        if self._runner is None:
            return
        runner, self._runner = self._runner, None

        try:
            await asyncio.wait_for(runner.cleanup(), timeout=self.shutdown_timeout + 1.0)
        except asyncio.TimeoutError:
            logger.warning("server_shutdown_forced", timeout=self.shutdown_timeout)
        logger.info("server_stopped")
