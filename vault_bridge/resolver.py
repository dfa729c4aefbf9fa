"""
Link resolution for Vault Bridge.

Maps raw link tokens to note identities through the metadata index and
keeps a reverse index (target -> referencing sources) so that backlink
queries and incoming-direction traversal do not rescan the whole vault.
"""

import time

import structlog

from .cache import VaultCache
from .models import CachedNote, LinkRef

logger = structlog.get_logger(__name__)

Incoming = list[tuple[CachedNote, list[LinkRef]]]


class LinkResolver:
    """Resolves link tokens and answers "who links here" from a reverse index.

    The reverse index is marked dirty whenever the cache reports a change and
    rebuilt on the next incoming() call.
    """

    def __init__(self, cache: VaultCache):
        self.cache = cache
        self._incoming: dict[str, dict[str, list[LinkRef]]] = {}
        self._dirty = True
        cache.add_listener(self.invalidate)

    def invalidate(self) -> None:
        self._dirty = True

    def resolve(self, link: LinkRef | str, source_id: str) -> CachedNote | None:
        """Resolve a link token written in source_id; a miss is None, not an error."""
        linkpath = link.link if isinstance(link, LinkRef) else link
        return self.cache.first_linkpath_dest(linkpath, source_id)

    def resolve_id(self, link: LinkRef | str, source_id: str) -> str | None:
        note = self.resolve(link, source_id)
        return note.note_id if note is not None else None

    def outgoing(self, note: CachedNote, include_embeds: bool = False) -> list[tuple[CachedNote, LinkRef]]:
        """Resolved outgoing references of one note, in discovery order."""
        refs = note.links + note.embeds if include_embeds else note.links
        resolved = []
        for ref in refs:
            target = self.resolve(ref, note.note_id)
            if target is not None:
                resolved.append((target, ref))
        return resolved

    def _rebuild(self) -> None:
        start_time = time.time()
        incoming: dict[str, dict[str, list[LinkRef]]] = {}
        for note in self.cache.notes():
            for target, ref in self.outgoing(note, include_embeds=True):
                incoming.setdefault(target.note_id, {}).setdefault(note.note_id, []).append(ref)
        self._incoming = incoming
        self._dirty = False
        logger.debug(
            "reverse_index_rebuilt",
            targets=len(incoming),
            generation=self.cache.generation,
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )

    def incoming(self, note_id: str, include_embeds: bool = False) -> Incoming:
        """Notes referencing note_id with the references that resolved to it, ordered by source path."""
        if self._dirty:
            self._rebuild()

        results: Incoming = []
        for source_id in sorted(self._incoming.get(note_id, {})):
            source = self.cache.lookup(source_id)
            if source is None:
                continue
            refs = [
                ref for ref in self._incoming[note_id][source_id]
                if include_embeds or not ref.embed
            ]
            if refs:
                results.append((source, refs))
        return results

    def scan_incoming(self, note_id: str, include_embeds: bool = False) -> Incoming:
        """Full-scan equivalent of incoming(), without the reverse index."""
        results: Incoming = []
        for note in self.cache.notes():
            refs = [
                ref for target, ref in self.outgoing(note, include_embeds=include_embeds)
                if target.note_id == note_id
            ]
            if refs:
                results.append((note, refs))
        return results
