"""
Metadata index and note store for Vault Bridge.

Contains the VaultCache class: an in-memory index of every note's parsed
frontmatter, tags and link tokens, plus the asynchronous read/write
operations on the underlying markdown files.
"""

import asyncio
import posixpath
import time
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from stat import S_ISREG

import aiofiles
import aiofiles.os
import structlog

from .errors import AlreadyExistsError, InvalidInputError, NotFoundError
from .models import CachedNote
from .utils import (
    NOTE_EXTENSION,
    collect_tags,
    extract_links,
    normalize_path,
    parse_frontmatter,
    process_batch,
    strip_extension,
    validate_path_within_vault,
)

logger = structlog.get_logger(__name__)

TRASH_FOLDER = ".trash"


class VaultCache:
    """In-memory metadata index over the vault's markdown notes.

    Uses incremental refresh: only reloads notes whose mtime has changed,
    removes deleted files, and adds new files. Listeners registered with
    add_listener() are called whenever the indexed note set changes.
    """

    def __init__(self, vault_path: Path, ttl: int = 60, batch_size: int = 50):
        self.vault_path = vault_path
        self.ttl = ttl
        self.batch_size = batch_size
        self.generation = 0
        self._notes: dict[str, CachedNote] = {}  # note_id -> note
        self._mtimes: dict[str, float] = {}
        self._by_stem: dict[str, set[str]] = {}  # lowercase stem -> note_ids
        self._loaded_at: float = 0
        self._listeners: list[Callable[[], None]] = []
        self._refresh_lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return self.vault_path.name

    @property
    def is_stale(self) -> bool:
        return (time.time() - self._loaded_at) > self.ttl

    def add_listener(self, callback: Callable[[], None]) -> None:
        """Register a callback fired after every change to the note set."""
        self._listeners.append(callback)

    def _notify(self) -> None:
        self.generation += 1
        for callback in self._listeners:
            callback()

    # ============== Loading ==============

    def _note_id_for(self, note_file: Path) -> str:
        return strip_extension(note_file.relative_to(self.vault_path).as_posix())

    def _scan_files(self) -> list[tuple[Path, float]]:
        """Walk the vault for markdown files, skipping hidden folders.

        Runs in a worker thread; returns (path, mtime) pairs.
        """
        files: list[tuple[Path, float]] = []
        for note_file in self.vault_path.rglob(f"*{NOTE_EXTENSION}"):
            rel_path = note_file.relative_to(self.vault_path)
            if any(part.startswith(".") for part in rel_path.parts):
                continue
            try:
                stat = note_file.stat()
            except OSError:
                # File was deleted between rglob and stat
                continue
            if S_ISREG(stat.st_mode):
                files.append((note_file, stat.st_mtime))
        return files

    async def _load_note(self, note_file: Path) -> CachedNote | None:
        """Load a single note from disk and return a CachedNote or None on error."""
        try:
            stat = await aiofiles.os.stat(note_file)
            async with aiofiles.open(note_file, encoding="utf-8") as f:
                content = await f.read()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("note_read_failed", path=str(note_file), error=str(e))
            return None

        rel_path_str = note_file.relative_to(self.vault_path).as_posix()
        frontmatter, body = parse_frontmatter(content)
        links, embeds = extract_links(body)
        stem = note_file.stem
        folder = posixpath.dirname(rel_path_str)

        title = frontmatter.get("title")
        return CachedNote(
            path=note_file,
            rel_path_str=rel_path_str,
            note_id=strip_extension(rel_path_str),
            stem=stem,
            stem_lower=stem.lower(),
            folder=folder,
            title=str(title) if title else stem,
            frontmatter=frontmatter,
            tags=collect_tags(frontmatter, body),
            links=links,
            embeds=embeds,
            mtime=stat.st_mtime,
        )

    def _index(self, note: CachedNote) -> None:
        old = self._notes.get(note.note_id)
        if old is not None:
            self._by_stem.get(old.stem_lower, set()).discard(old.note_id)
        self._notes[note.note_id] = note
        self._mtimes[note.note_id] = note.mtime
        self._by_stem.setdefault(note.stem_lower, set()).add(note.note_id)

    def _unindex(self, note_id: str) -> CachedNote | None:
        old = self._notes.pop(note_id, None)
        self._mtimes.pop(note_id, None)
        if old is not None:
            stems = self._by_stem.get(old.stem_lower)
            if stems is not None:
                stems.discard(note_id)
                if not stems:
                    del self._by_stem[old.stem_lower]
        return old

    async def _full_reload(self) -> tuple[int, int, int]:
        """Perform a full reload of all notes. Returns (added, updated, removed)."""
        removed = len(self._notes)
        self._notes.clear()
        self._mtimes.clear()
        self._by_stem.clear()

        note_files = [note_file for note_file, _ in await asyncio.to_thread(self._scan_files)]
        notes = await process_batch(note_files, self._load_note, self.batch_size)
        for note in notes:
            self._index(note)

        return len(notes), 0, removed

    async def _incremental_refresh(self) -> tuple[int, int, int]:
        """Perform an incremental refresh. Returns (added, updated, removed)."""
        added = 0
        updated = 0

        scanned = await asyncio.to_thread(self._scan_files)
        current_files = {self._note_id_for(note_file): (note_file, mtime) for note_file, mtime in scanned}

        files_to_load: list[tuple[Path, str]] = []  # (path, reason: 'new' or 'modified')
        for note_id, (note_file, current_mtime) in current_files.items():
            cached_mtime = self._mtimes.get(note_id)
            if cached_mtime is None:
                files_to_load.append((note_file, "new"))
            elif current_mtime > cached_mtime:
                files_to_load.append((note_file, "modified"))

        if files_to_load:
            reasons = {note_file: reason for note_file, reason in files_to_load}
            notes = await process_batch(list(reasons), self._load_note, self.batch_size)
            for note in notes:
                self._index(note)
                if reasons[note.path] == "new":
                    added += 1
                else:
                    updated += 1

        deleted_ids = set(self._notes) - set(current_files)
        for note_id in deleted_ids:
            self._unindex(note_id)

        return added, updated, len(deleted_ids)

    async def refresh(self, force: bool = False) -> None:
        """Reload notes from disk if cache is stale.

        Uses incremental refresh by default: only reloads notes whose mtime
        has changed, removes deleted files, and adds new files.

        Args:
            force: If True, performs a full reload of all notes.
        """
        if not force and not self.is_stale:
            return

        async with self._refresh_lock:
            if not force and not self.is_stale:
                return

            start_time = time.time()

            if force or not self._notes:
                added, updated, removed = await self._full_reload()
                refresh_type = "full"
            else:
                added, updated, removed = await self._incremental_refresh()
                refresh_type = "incremental"

            self._loaded_at = time.time()
            duration_ms = round((time.time() - start_time) * 1000, 2)

            if added or updated or removed:
                self._notify()

            logger.info(
                "cache_refreshed",
                refresh_type=refresh_type,
                note_count=len(self._notes),
                added=added,
                updated=updated,
                removed=removed,
                duration_ms=duration_ms,
            )

    # ============== Lookups ==============

    async def get_notes(self) -> list[CachedNote]:
        """Get all indexed notes, ordered by path."""
        await self.refresh()
        return self.notes()

    def notes(self) -> list[CachedNote]:
        """Indexed notes ordered by path, without refreshing."""
        return [self._notes[note_id] for note_id in sorted(self._notes)]

    def lookup(self, note_id: str) -> CachedNote | None:
        return self._notes.get(note_id)

    async def get_note_count(self) -> int:
        """Return the number of indexed notes."""
        await self.refresh()
        return len(self._notes)

    async def get_by_path(self, note_path: str) -> CachedNote | None:
        """Exact lookup by vault-relative path, with or without the .md extension.

        Security: Validates path to prevent directory traversal attacks.
        """
        await self.refresh()
        rel_path = normalize_path(note_path)
        validate_path_within_vault(rel_path, self.vault_path)
        return self._notes.get(strip_extension(rel_path))

    async def require(self, note_path: str) -> CachedNote:
        note = await self.get_by_path(note_path)
        if note is None:
            raise NotFoundError(f"Note not found: {note_path}")
        return note

    async def find_note(self, identifier: str) -> CachedNote | None:
        """Find a note by path (with or without .md) or by bare name."""
        note = await self.get_by_path(identifier)
        if note is not None:
            return note
        name = strip_extension(identifier.strip("/")).lower()
        candidates = sorted(self._by_stem.get(name, ()), key=lambda note_id: (len(note_id), note_id))
        return self._notes[candidates[0]] if candidates else None

    def first_linkpath_dest(self, linkpath: str, source_id: str) -> CachedNote | None:
        """Resolve a link path as written in source_id to the note it points at.

        Tries the exact vault path, then the path relative to the source's
        folder, then a case-insensitive name/suffix match preferring the
        source's own folder, the shortest path, then path order.
        """
        target = linkpath.split("#", 1)[0].strip().replace("\\", "/")
        if not target:
            return None
        target_id = strip_extension(target.lstrip("/"))

        note = self._notes.get(target_id)
        if note is not None:
            return note

        source_folder = posixpath.dirname(source_id)
        relative_id = posixpath.normpath(posixpath.join(source_folder, strip_extension(target)))
        if not relative_id.startswith(".."):
            note = self._notes.get(relative_id)
            if note is not None:
                return note

        target_lower = posixpath.normpath(target_id).lower()
        stem = posixpath.basename(target_lower)
        candidates = [
            note_id for note_id in self._by_stem.get(stem, ())
            if note_id.lower() == target_lower or note_id.lower().endswith("/" + target_lower)
        ]
        if not candidates:
            return None
        candidates.sort(key=lambda note_id: (posixpath.dirname(note_id) != source_folder, len(note_id), note_id))
        return self._notes[candidates[0]]

    # ============== Store operations ==============

    async def read(self, note: CachedNote) -> str:
        """Read a note's full raw content from disk."""
        async with aiofiles.open(note.path, encoding="utf-8") as f:
            return await f.read()

    async def _reindex_file(self, note_file: Path) -> CachedNote:
        note = await self._load_note(note_file)
        if note is None:
            raise OSError(f"Failed to index {note_file}")
        self._index(note)
        self._notify()
        return note

    async def write(self, note_path: str, content: str, create: bool = False) -> CachedNote:
        """Write content to a note, creating parent folders as needed.

        With create=True an existing file is an AlreadyExistsError. Serialized
        with refresh() through the refresh lock.
        """
        rel_path = normalize_path(note_path)
        file_path = validate_path_within_vault(rel_path, self.vault_path)

        async with self._refresh_lock:
            if create and await aiofiles.os.path.exists(file_path):
                raise AlreadyExistsError(f"Note already exists: {strip_extension(rel_path)}")

            await aiofiles.os.makedirs(file_path.parent, exist_ok=True)
            async with aiofiles.open(file_path, mode="w", encoding="utf-8") as f:
                await f.write(content)

            note = await self._reindex_file(self.vault_path / rel_path)
        logger.info("note_written", path=rel_path, created=create)
        return note

    async def delete(self, note: CachedNote) -> None:
        """Move a note into the vault's hidden trash folder and drop it from the index."""
        trash_dir = self.vault_path / TRASH_FOLDER
        async with self._refresh_lock:
            await aiofiles.os.makedirs(trash_dir, exist_ok=True)
            destination = trash_dir / note.path.name
            if await aiofiles.os.path.exists(destination):
                stamp = datetime.now().strftime("%Y%m%d%H%M%S%f")
                destination = trash_dir / f"{note.stem} {stamp}{NOTE_EXTENSION}"

            await aiofiles.os.rename(note.path, destination)
            self._unindex(note.note_id)
            self._notify()
        logger.info("note_deleted", path=note.rel_path_str, trashed_to=str(destination))

    async def move(self, note: CachedNote, new_path: str) -> CachedNote:
        """Rename a note within the vault."""
        rel_path = normalize_path(new_path)
        file_path = validate_path_within_vault(rel_path, self.vault_path)
        async with self._refresh_lock:
            if await aiofiles.os.path.exists(file_path):
                raise AlreadyExistsError(f"Note already exists: {strip_extension(rel_path)}")

            await aiofiles.os.makedirs(file_path.parent, exist_ok=True)
            await aiofiles.os.rename(note.path, file_path)
            self._unindex(note.note_id)
            moved = await self._reindex_file(self.vault_path / rel_path)
        logger.info("note_moved", source=note.rel_path_str, destination=rel_path)
        return moved

    async def exists(self, note_path: str) -> bool:
        rel_path = normalize_path(note_path)
        file_path = validate_path_within_vault(rel_path, self.vault_path)
        return await aiofiles.os.path.exists(file_path)

    async def folder_exists(self, folder: str) -> bool:
        if not folder:
            return False
        try:
            folder_path = validate_path_within_vault(folder, self.vault_path)
        except InvalidInputError:
            return False
        return await aiofiles.os.path.isdir(folder_path)
