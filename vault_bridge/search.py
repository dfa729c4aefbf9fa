"""
Search and query functions for Vault Bridge.

Contains note listing, full-text search, and tag exploration.
"""

import asyncio
import json

import structlog

from .cache import VaultCache
from .models import CachedNote, NoteInfo, SearchMatch, SearchResult, TagCount
from .utils import parse_frontmatter, process_batch

logger = structlog.get_logger(__name__)

FRONTMATTER_PREVIEW_LENGTH = 100


def _in_folder(note: CachedNote, folder: str | None) -> bool:
    if not folder:
        return True
    folder = folder.strip("/")
    return note.folder == folder or note.folder.startswith(folder + "/")


async def list_notes(
    cache: VaultCache,
    folder: str | None = None,
    tag: str | None = None,
    limit: int = 100,
) -> list[NoteInfo]:
    """List notes ordered by path, optionally filtered by folder and tag."""
    wanted_tag = tag.lstrip("#") if tag else None
    results: list[NoteInfo] = []

    for note in await cache.get_notes():
        if len(results) >= limit:
            break
        if not _in_folder(note, folder):
            continue
        if wanted_tag and wanted_tag not in note.tags:
            continue
        results.append(NoteInfo.from_cached(note))

    return results


async def search_notes(
    cache: VaultCache,
    query: str,
    folder: str | None = None,
    limit: int = 20,
    case_sensitive: bool = False,
    batch_size: int = 50,
    cancelled: asyncio.Event | None = None,
) -> list[SearchResult]:
    """Full-text search over note bodies and frontmatter.

    Every body line containing the query is a match (1-indexed); a frontmatter
    hit adds one match with line 0. Results are ordered by match count. Notes
    that fail to read are skipped.
    """
    needle = query if case_sensitive else query.lower()
    notes = [note for note in await cache.get_notes() if _in_folder(note, folder)]

    async def scan(note: CachedNote) -> SearchResult | None:
        content = await cache.read(note)
        _, body = parse_frontmatter(content)

        matches: list[SearchMatch] = []
        for number, line in enumerate(body.split("\n"), start=1):
            haystack = line if case_sensitive else line.lower()
            if needle in haystack:
                matches.append(SearchMatch(line=number, text=line.strip()))

        if note.frontmatter:
            fm_str = json.dumps(note.frontmatter, default=str, ensure_ascii=False)
            haystack = fm_str if case_sensitive else fm_str.lower()
            if needle in haystack:
                matches.append(SearchMatch(
                    line=0,
                    text=f"[frontmatter] {fm_str[:FRONTMATTER_PREVIEW_LENGTH]}",
                ))

        if not matches:
            return None
        return SearchResult(note=NoteInfo.from_cached(note), matches=matches)

    results = await process_batch(notes, scan, batch_size, cancelled)
    # stable sort keeps path order among equal counts
    results.sort(key=lambda result: len(result.matches), reverse=True)
    final_results = results[:limit]
    logger.debug("search_completed", query=query, scanned=len(notes), results=len(final_results))
    return final_results


async def list_tags(cache: VaultCache) -> list[TagCount]:
    """Count notes per tag, most used first."""
    counts: dict[str, int] = {}

    for note in await cache.get_notes():
        try:
            for tag in set(note.tags):
                counts[tag] = counts.get(tag, 0) + 1
        except Exception as e:
            logger.warning("tag_collect_failed", path=note.rel_path_str, error=str(e))
            continue

    ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [TagCount(tag=tag, count=count) for tag, count in ordered]


async def notes_by_tag(cache: VaultCache, tag: str, exact: bool = False, limit: int = 50) -> list[NoteInfo]:
    """Find notes carrying a tag, case-insensitively.

    Without exact, any tag containing the search text matches, so "proj"
    finds notes tagged "project/alpha".
    """
    search_tag = tag.lstrip("#").lower()
    results: list[NoteInfo] = []

    for note in await cache.get_notes():
        if len(results) >= limit:
            break
        tags_lower = [t.lower() for t in note.tags]
        if exact:
            matched = search_tag in tags_lower
        else:
            matched = any(search_tag in t for t in tags_lower)
        if matched:
            results.append(NoteInfo.from_cached(note))

    return results
