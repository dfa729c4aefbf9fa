"""
Route registration for Vault Bridge.

Each register_*_routes function adds one group of handlers to the route
table. Handlers receive a RequestContext and return the payload for the
success envelope; errors are raised as BridgeError subclasses.
"""

from typing import Any

from .cache import VaultCache
from .config import VERSION, Settings
from .context import RequestContext
from .daily import create_daily_note, get_daily_note, resolve_day
from .errors import InvalidInputError, NotFoundError
from .graph import get_neighbors, traverse
from .links import get_backlinks, get_outlinks
from .models import (
    CreateNoteRequest,
    DailyNoteRequest,
    GraphQueryRequest,
    MoveNoteRequest,
    RunTemplateRequest,
    SearchRequest,
    UpdateNoteRequest,
)
from .resolver import LinkResolver
from .routing import RouteTable
from .search import list_notes, list_tags, notes_by_tag, search_notes
from .server import HealthProvider
from .templates import list_templates, run_template
from .writer import create_note, delete_note, get_note, move_note, update_note

DIRECTIONS = ("in", "out", "both")


# ============== Query helpers ==============

def query_int(ctx: RequestContext, name: str, default: int, minimum: int = 1) -> int:
    value = ctx.query.get(name)
    if value is None or value == "":
        return default
    try:
        number = int(value)
    except ValueError:
        raise InvalidInputError(f"Invalid {name}: {value}")
    if number < minimum:
        raise InvalidInputError(f"Invalid {name}: must be at least {minimum}")
    return number


def query_bool(ctx: RequestContext, name: str) -> bool:
    return ctx.query.get(name, "").lower() in ("true", "1", "yes")


def query_direction(ctx: RequestContext) -> str:
    direction = ctx.query.get("direction") or "both"
    if direction not in DIRECTIONS:
        raise InvalidInputError(f"Invalid direction: {direction}")
    return direction


# ============== Route groups ==============

def register_note_routes(table: RouteTable, cache: VaultCache, resolver: LinkResolver, settings: Settings) -> None:

    async def list_handler(ctx: RequestContext):
        return await list_notes(
            cache,
            folder=ctx.query.get("folder"),
            tag=ctx.query.get("tag"),
            limit=query_int(ctx, "limit", 100),
        )

    async def create_handler(ctx: RequestContext):
        body: CreateNoteRequest = ctx.body
        return await create_note(cache, body.path, body.content, body.frontmatter)

    async def read_handler(ctx: RequestContext):
        note = await cache.require(ctx.params["path"])
        return await get_note(cache, note)

    async def update_handler(ctx: RequestContext):
        body: UpdateNoteRequest = ctx.body
        note = await cache.require(ctx.params["path"])
        return await update_note(cache, note, body.content, body.append, body.frontmatter)

    async def delete_handler(ctx: RequestContext):
        note = await cache.require(ctx.params["path"])
        return await delete_note(cache, note)

    async def move_handler(ctx: RequestContext):
        body: MoveNoteRequest = ctx.body
        note = await cache.require(ctx.params["path"])
        return await move_note(cache, resolver, note, body.new_path)

    table.register("GET", "/notes", list_handler)
    table.register("POST", "/notes", create_handler, CreateNoteRequest)
    table.register("GET", "/notes/:path", read_handler)
    table.register("PUT", "/notes/:path", update_handler, UpdateNoteRequest)
    table.register("DELETE", "/notes/:path", delete_handler)
    table.register("POST", "/notes/:path/move", move_handler, MoveNoteRequest)


def register_link_routes(table: RouteTable, cache: VaultCache, resolver: LinkResolver, settings: Settings) -> None:

    async def backlinks_handler(ctx: RequestContext):
        note = await cache.require(ctx.params["path"])
        return await get_backlinks(cache, resolver, note, settings.batch_size, ctx.cancelled)

    async def outlinks_handler(ctx: RequestContext):
        note = await cache.require(ctx.params["path"])
        return await get_outlinks(cache, resolver, note)

    table.register("GET", "/notes/:path/backlinks", backlinks_handler)
    table.register("GET", "/notes/:path/outlinks", outlinks_handler)


def register_search_routes(table: RouteTable, cache: VaultCache, resolver: LinkResolver, settings: Settings) -> None:

    async def search_handler(ctx: RequestContext):
        body: SearchRequest = ctx.body
        return await search_notes(
            cache,
            body.query,
            folder=body.folder,
            limit=body.limit,
            case_sensitive=body.case_sensitive,
            batch_size=settings.batch_size,
            cancelled=ctx.cancelled,
        )

    table.register("POST", "/search", search_handler, SearchRequest)


def register_tag_routes(table: RouteTable, cache: VaultCache, resolver: LinkResolver, settings: Settings) -> None:

    async def tags_handler(ctx: RequestContext):
        return await list_tags(cache)

    async def tag_notes_handler(ctx: RequestContext):
        return await notes_by_tag(
            cache,
            ctx.params["tag"],
            exact=query_bool(ctx, "exact"),
            limit=query_int(ctx, "limit", 50),
        )

    table.register("GET", "/tags", tags_handler)
    table.register("GET", "/tags/:tag/notes", tag_notes_handler)


def register_daily_routes(table: RouteTable, cache: VaultCache, resolver: LinkResolver, settings: Settings) -> None:

    async def today_handler(ctx: RequestContext):
        return await get_daily_note(cache, resolve_day(None), settings.daily_folder, settings.daily_format)

    async def day_handler(ctx: RequestContext):
        day = resolve_day(ctx.params["date"])
        return await get_daily_note(cache, day, settings.daily_folder, settings.daily_format)

    async def create_handler(ctx: RequestContext):
        body: DailyNoteRequest = ctx.body
        return await create_daily_note(
            cache,
            resolve_day(body.date),
            settings.daily_folder,
            settings.daily_format,
            content=body.content,
            template=body.template,
            template_folders=settings.templates_folders,
        )

    table.register("GET", "/daily", today_handler)
    table.register("GET", "/daily/:date", day_handler)
    table.register("POST", "/daily", create_handler, DailyNoteRequest)


def register_graph_routes(table: RouteTable, cache: VaultCache, resolver: LinkResolver, settings: Settings) -> None:

    async def query_handler(ctx: RequestContext):
        body: GraphQueryRequest = ctx.body
        await cache.refresh()
        start = None
        if body.from_:
            start = await cache.find_note(body.from_)
            if start is None:
                raise NotFoundError(f"Note not found: {body.from_}")
        return await traverse(
            resolver,
            start,
            max_depth=body.depth,
            direction=body.direction,
            snapshot_limit=settings.graph_snapshot_limit,
            cancelled=ctx.cancelled,
        )

    async def neighbors_handler(ctx: RequestContext):
        direction = query_direction(ctx)
        center = await cache.require(ctx.params["path"])
        return get_neighbors(resolver, center, direction)

    table.register("POST", "/graph/query", query_handler, GraphQueryRequest)
    table.register("GET", "/graph/neighbors/:path", neighbors_handler)


def register_template_routes(table: RouteTable, cache: VaultCache, resolver: LinkResolver, settings: Settings) -> None:

    async def list_handler(ctx: RequestContext):
        return await list_templates(cache, settings.templates_folders)

    async def run_handler(ctx: RequestContext):
        body: RunTemplateRequest = ctx.body
        return await run_template(
            cache,
            ctx.params["name"],
            body.destination,
            body.variables,
            settings.templates_folders,
        )

    table.register("GET", "/templates", list_handler)
    table.register("POST", "/templates/:name/run", run_handler, RunTemplateRequest)


ROUTE_GROUPS = (
    register_note_routes,
    register_link_routes,
    register_search_routes,
    register_tag_routes,
    register_daily_routes,
    register_graph_routes,
    register_template_routes,
)


def register_routes(table: RouteTable, cache: VaultCache, resolver: LinkResolver, settings: Settings) -> None:
    """Register every route group, in a fixed order."""
    for register in ROUTE_GROUPS:
        register(table, cache, resolver, settings)


def health_provider(cache: VaultCache) -> HealthProvider:
    """Health payload: liveness for everyone, vault details only with a valid token."""

    async def health(authenticated: bool) -> dict[str, Any]:
        if not authenticated:
            return {"status": "ok"}
        return {
            "status": "ok",
            "version": VERSION,
            "vault": cache.name,
            "note_count": await cache.get_note_count(),
        }

    return health
