"""
Backlink and outlink queries for Vault Bridge.

Single-hop views of the link graph with a short context window around the
link text, for human readers.
"""

import asyncio

import structlog

from .cache import VaultCache
from .models import BacklinkInfo, CachedNote, LinkInfo, LinkRef
from .resolver import LinkResolver
from .utils import get_context, parse_frontmatter, process_batch, strip_extension

logger = structlog.get_logger(__name__)


def _first_context(content: str, refs: list[LinkRef]) -> str:
    for ref in refs:
        context = get_context(content, ref.original)
        if context:
            return context
    return ""


async def get_backlinks(
    cache: VaultCache,
    resolver: LinkResolver,
    target: CachedNote,
    batch_size: int = 50,
    cancelled: asyncio.Event | None = None,
) -> list[BacklinkInfo]:
    """Find every note whose links or embeds resolve to target.

    Sources are read in batches to extract context; a source that fails to
    read is logged and skipped. A note linking to itself is not its own backlink.
    """
    sources = [
        (source, refs)
        for source, refs in resolver.incoming(target.note_id, include_embeds=True)
        if source.note_id != target.note_id
    ]

    async def build(item: tuple[CachedNote, list[LinkRef]]) -> BacklinkInfo:
        source, refs = item
        content = await cache.read(source)
        return BacklinkInfo.from_cached(source, context=_first_context(content, refs))

    results = await process_batch(sources, build, batch_size, cancelled)
    logger.debug("backlinks_collected", target=target.note_id, count=len(results))
    return results


async def get_outlinks(cache: VaultCache, resolver: LinkResolver, source: CachedNote) -> list[LinkInfo]:
    """List the outgoing references of one note.

    Links are reported once per distinct link text, resolved or not. Embeds
    are only reported when they resolve to a note.
    """
    content = await cache.read(source)
    _, body = parse_frontmatter(content)

    results: list[LinkInfo] = []
    seen_links: set[str] = set()
    seen_ids: set[str] = set()

    for ref in source.links:
        if ref.link in seen_links:
            continue
        seen_links.add(ref.link)
        target = resolver.resolve(ref, source.note_id)
        if target is not None:
            if target.note_id == source.note_id:
                continue
            seen_ids.add(target.note_id)
            results.append(LinkInfo(
                path=target.note_id,
                title=target.title,
                exists=True,
                context=get_context(body, ref.original),
            ))
        else:
            link_path = strip_extension(ref.link.split("#", 1)[0].strip())
            if not link_path:
                # heading link within the same note
                continue
            results.append(LinkInfo(
                path=link_path,
                title=link_path.rsplit("/", 1)[-1],
                exists=False,
                context=get_context(body, ref.original),
            ))

    for ref in source.embeds:
        target = resolver.resolve(ref, source.note_id)
        if target is None or target.note_id == source.note_id or target.note_id in seen_ids:
            continue
        seen_ids.add(target.note_id)
        results.append(LinkInfo(
            path=target.note_id,
            title=target.title,
            exists=True,
            context=get_context(body, ref.original),
        ))

    return results
