"""
Note writing functions for Vault Bridge.

Contains create, update, delete and link-aware move of notes.
"""

from datetime import datetime
from urllib.parse import quote

import structlog

from .cache import VaultCache
from .models import CachedNote, LinkRef, Note
from .resolver import LinkResolver
from .utils import NOTE_EXTENSION, parse_frontmatter, serialize_note

logger = structlog.get_logger(__name__)


def note_from_content(note: CachedNote, raw: str) -> Note:
    """Build the API view of a note from its raw text."""
    frontmatter, body = parse_frontmatter(raw)
    title = frontmatter.get("title")
    return Note(
        path=note.note_id,
        title=str(title) if title else note.stem,
        content=body,
        frontmatter=frontmatter,
        raw=raw,
    )


async def get_note(cache: VaultCache, note: CachedNote) -> Note:
    raw = await cache.read(note)
    return note_from_content(note, raw)


async def create_note(cache: VaultCache, path: str, content: str = "", frontmatter: dict | None = None) -> Note:
    """Create a new note; a ``created`` timestamp is added unless given.

    Raises:
        AlreadyExistsError: If a note already exists at path
    """
    fm = {"created": datetime.now().isoformat(), **(frontmatter or {})}
    raw = serialize_note(fm, content)
    note = await cache.write(path, raw, create=True)
    return note_from_content(note, raw)


async def update_note(
    cache: VaultCache,
    note: CachedNote,
    content: str | None = None,
    append: str | None = None,
    frontmatter: dict | None = None,
) -> Note:
    """Replace or append to a note's body and merge frontmatter keys.

    ``content`` wins over ``append`` when both are given. ``modified`` is
    always refreshed.
    """
    existing = await cache.read(note)
    current_fm, body = parse_frontmatter(existing)

    if content is not None:
        body = content
    elif append is not None:
        body = body + "\n" + append

    fm = {**current_fm, **(frontmatter or {}), "modified": datetime.now().isoformat()}
    raw = serialize_note(fm, body)
    updated = await cache.write(note.note_id, raw)
    return note_from_content(updated, raw)


async def delete_note(cache: VaultCache, note: CachedNote) -> dict:
    await cache.delete(note)
    return {"deleted": note.note_id}


def rewrite_link(ref: LinkRef, new_target: str) -> str:
    """Re-render a link token pointing at new_target, keeping subpath, alias and embed marker."""
    subpath = ""
    if "#" in ref.link:
        subpath = "#" + ref.link.split("#", 1)[1]

    if ref.kind == "markdown":
        text_start = ref.original.index("[")
        text_end = ref.original.rindex("](")
        text = ref.original[text_start + 1:text_end]
        url = quote(new_target + NOTE_EXTENSION + subpath, safe="/#")
        return f"{'!' if ref.embed else ''}[{text}]({url})"

    inner = ref.original[3 if ref.embed else 2:-2]
    alias = ""
    if "|" in inner:
        alias = "|" + inner.split("|", 1)[1]
    return f"{'!' if ref.embed else ''}[[{new_target}{subpath}{alias}]]"


async def move_note(cache: VaultCache, resolver: LinkResolver, note: CachedNote, new_path: str) -> Note:
    """Rename a note and rewrite the links that pointed at it.

    Referencing links use the new bare name when it resolves to the moved note
    from the referencing note, otherwise the full path.

    Raises:
        AlreadyExistsError: If a note already exists at new_path
    """
    referrers = resolver.incoming(note.note_id, include_embeds=True)
    moved = await cache.move(note, new_path)

    rewritten = 0
    for source, refs in referrers:
        source_id = moved.note_id if source.note_id == note.note_id else source.note_id
        current = cache.lookup(source_id)
        if current is None:
            continue

        if resolver.resolve_id(moved.stem, source_id) == moved.note_id:
            new_target = moved.stem
        else:
            new_target = moved.note_id

        try:
            content = await cache.read(current)
            updated = content
            for ref in refs:
                updated = updated.replace(ref.original, rewrite_link(ref, new_target))
            if updated != content:
                await cache.write(source_id, updated)
                rewritten += 1
        except OSError as e:
            logger.warning("link_rewrite_failed", path=current.rel_path_str, error=str(e))
            continue

    logger.info("note_links_rewritten", source=note.note_id, destination=moved.note_id, notes=rewritten)
    return await get_note(cache, cache.lookup(moved.note_id) or moved)
