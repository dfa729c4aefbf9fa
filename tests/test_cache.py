"""
Tests for the VaultCache metadata index and note store.
"""

import asyncio
import os
import time
from pathlib import Path

import pytest


class TestVaultCache:
    """Tests for the VaultCache class."""

    def test_cache_initialization(self, temp_vault):
        """Test VaultCache initializes with correct defaults."""
        from vault_bridge.cache import VaultCache

        cache = VaultCache(temp_vault, ttl=30)

        assert cache.vault_path == temp_vault
        assert cache.ttl == 30
        assert cache._notes == {}
        assert cache._mtimes == {}
        assert cache._loaded_at == 0
        assert cache.is_stale is True

    async def test_is_not_stale_after_refresh(self, cache):
        """Test cache is not stale immediately after refresh."""
        assert cache.is_stale is False

    async def test_is_stale_after_ttl(self, temp_vault):
        """Test cache becomes stale after TTL expires."""
        from vault_bridge.cache import VaultCache

        cache = VaultCache(temp_vault, ttl=1)
        await cache.refresh(force=True)

        assert cache.is_stale is False
        time.sleep(1.1)
        assert cache.is_stale is True

    async def test_refresh_loads_notes(self, cache):
        """Test refresh loads every visible note."""
        ids = [note.note_id for note in cache.notes()]

        assert ids == [
            "Concepts/JavaScript",
            "Concepts/Python",
            "References/Docker",
            "Sessions/Dev Setup",
            "Templates/Meeting",
            "invalid_frontmatter",
            "no_frontmatter",
        ]

    async def test_hidden_folders_skipped(self, cache):
        """Test notes in dot-folders are not indexed."""
        assert cache.lookup(".obsidian/workspace") is None

    async def test_scan_returns_paths_with_mtimes(self, cache, temp_vault):
        """Test the vault walk yields (path, mtime) pairs for visible notes only."""
        scanned = await asyncio.to_thread(cache._scan_files)

        assert len(scanned) == 7
        assert all(isinstance(path, Path) and isinstance(mtime, float) for path, mtime in scanned)
        assert temp_vault / ".obsidian" / "workspace.md" not in [path for path, _ in scanned]
        python = temp_vault / "Concepts" / "Python.md"
        assert dict(scanned)[python] == python.stat().st_mtime

    async def test_refresh_skips_if_not_stale(self, cache):
        """Test refresh does nothing if cache is fresh."""
        initial_time = cache._loaded_at
        time.sleep(0.01)
        await cache.refresh(force=False)

        assert cache._loaded_at == initial_time

    async def test_note_fields(self, cache):
        """Test parsed metadata on an indexed note."""
        note = cache.lookup("Concepts/Python")

        assert note.title == "Python"
        assert note.stem == "Python"
        assert note.folder == "Concepts"
        assert note.rel_path_str == "Concepts/Python.md"
        assert note.tags == ["programming", "language", "lang"]
        assert [ref.link for ref in note.links] == ["JavaScript"]

    async def test_title_falls_back_to_stem(self, cache):
        """Test notes without a frontmatter title use the file name."""
        assert cache.lookup("Sessions/Dev Setup").title == "Dev Setup"
        assert cache.lookup("invalid_frontmatter").frontmatter == {}

    async def test_unreadable_note_skipped(self, temp_vault):
        """Test a file that is not valid UTF-8 is logged and skipped."""
        from vault_bridge.cache import VaultCache

        (temp_vault / "binary.md").write_bytes(b"\xff\xfe\x00bad")
        cache = VaultCache(temp_vault)
        await cache.refresh(force=True)

        assert cache.lookup("binary") is None
        assert await cache.get_note_count() == 7

    async def test_incremental_refresh_modified_file(self, temp_vault):
        """Test incremental refresh reloads modified files."""
        from vault_bridge.cache import VaultCache

        cache = VaultCache(temp_vault, ttl=0)
        await cache.refresh(force=True)
        generation = cache.generation

        python_file = temp_vault / "Concepts" / "Python.md"
        python_file.write_text("---\ntitle: Python Modified\n---\nNo links now.\n", encoding="utf-8")
        future = time.time() + 10
        os.utime(python_file, (future, future))

        time.sleep(0.01)
        await cache.refresh()

        note = cache.lookup("Concepts/Python")
        assert note.title == "Python Modified"
        assert note.links == []
        assert cache.generation == generation + 1

    async def test_incremental_refresh_deleted_file(self, temp_vault):
        """Test incremental refresh removes deleted files from the index."""
        from vault_bridge.cache import VaultCache

        cache = VaultCache(temp_vault, ttl=0)
        await cache.refresh(force=True)
        (temp_vault / "Concepts" / "Python.md").unlink()

        time.sleep(0.01)
        await cache.refresh()

        assert cache.lookup("Concepts/Python") is None
        assert "Concepts/Python" not in cache._mtimes
        assert "python" not in cache._by_stem

    async def test_incremental_refresh_new_file(self, temp_vault):
        """Test incremental refresh adds new files."""
        from vault_bridge.cache import VaultCache

        cache = VaultCache(temp_vault, ttl=0)
        await cache.refresh(force=True)
        (temp_vault / "Concepts" / "Rust.md").write_text("Links [[Python]]", encoding="utf-8")

        time.sleep(0.01)
        await cache.refresh()

        assert cache.lookup("Concepts/Rust") is not None

    async def test_unchanged_refresh_does_not_notify(self, temp_vault):
        """Test listeners only fire when the note set changes."""
        from vault_bridge.cache import VaultCache

        calls = []
        cache = VaultCache(temp_vault, ttl=0)
        cache.add_listener(lambda: calls.append(1))
        await cache.refresh(force=True)
        time.sleep(0.01)
        await cache.refresh()

        assert calls == [1]


class TestLookups:
    """Tests for path and name lookups."""

    async def test_get_by_path_with_and_without_extension(self, cache):
        """Test exact lookup accepts the .md suffix or not."""
        assert (await cache.get_by_path("Concepts/Python")).note_id == "Concepts/Python"
        assert (await cache.get_by_path("Concepts/Python.md")).note_id == "Concepts/Python"
        assert await cache.get_by_path("Python") is None

    async def test_get_by_path_rejects_traversal(self, cache):
        """Test traversal paths are rejected before lookup."""
        from vault_bridge.errors import InvalidInputError

        with pytest.raises(InvalidInputError):
            await cache.get_by_path("../outside")

    async def test_require_raises_not_found(self, cache):
        """Test require() raises NotFoundError for a missing note."""
        from vault_bridge.errors import NotFoundError

        with pytest.raises(NotFoundError, match="Note not found: Missing"):
            await cache.require("Missing")

    async def test_find_note_by_bare_name(self, cache):
        """Test find_note falls back to a case-insensitive name lookup."""
        assert (await cache.find_note("python")).note_id == "Concepts/Python"
        assert await cache.find_note("Nope") is None


class TestFirstLinkpathDest:
    """Tests for link path resolution rules."""

    async def test_exact_vault_path(self, cache):
        """Test a full vault path resolves directly."""
        assert cache.first_linkpath_dest("References/Docker", "Concepts/Python").note_id == "References/Docker"
        assert cache.first_linkpath_dest("References/Docker.md", "Concepts/Python").note_id == "References/Docker"

    async def test_relative_to_source_folder(self, cache):
        """Test ../ paths are resolved from the source folder."""
        note = cache.first_linkpath_dest("../References/Docker.md", "Sessions/Dev Setup")

        assert note.note_id == "References/Docker"

    async def test_bare_name_case_insensitive(self, cache):
        """Test a bare name matches the file stem in any folder."""
        assert cache.first_linkpath_dest("docker", "Concepts/Python").note_id == "References/Docker"

    async def test_subpath_dropped(self, cache):
        """Test #heading and #^block suffixes are ignored."""
        assert cache.first_linkpath_dest("Python#History", "References/Docker").note_id == "Concepts/Python"
        assert cache.first_linkpath_dest("#History", "References/Docker") is None

    async def test_unresolved_is_none(self, cache):
        """Test a missing target is unresolved, not an error."""
        assert cache.first_linkpath_dest("Kubernetes", "References/Docker") is None

    async def test_same_folder_preferred(self, temp_vault):
        """Test an ambiguous name prefers the source's own folder."""
        from vault_bridge.cache import VaultCache

        (temp_vault / "References" / "Python.md").write_text("Other Python", encoding="utf-8")
        cache = VaultCache(temp_vault)
        await cache.refresh(force=True)

        assert cache.first_linkpath_dest("Python", "References/Docker").note_id == "References/Python"
        assert cache.first_linkpath_dest("Python", "Sessions/Dev Setup").note_id == "Concepts/Python"

    async def test_shortest_path_preferred(self, temp_vault):
        """Test among equal candidates the shortest path wins."""
        from vault_bridge.cache import VaultCache

        (temp_vault / "Concepts" / "Deep").mkdir()
        (temp_vault / "Concepts" / "Deep" / "Docker.md").write_text("", encoding="utf-8")
        cache = VaultCache(temp_vault)
        await cache.refresh(force=True)

        assert cache.first_linkpath_dest("Docker", "no_frontmatter").note_id == "References/Docker"


class TestStoreOperations:
    """Tests for write, delete and move."""

    async def test_write_create_and_conflict(self, cache, temp_vault):
        """Test creating a note indexes it and a second create conflicts."""
        from vault_bridge.errors import AlreadyExistsError

        note = await cache.write("Inbox/New", "Hello [[Python]]", create=True)

        assert note.note_id == "Inbox/New"
        assert (temp_vault / "Inbox" / "New.md").read_text(encoding="utf-8") == "Hello [[Python]]"
        assert cache.lookup("Inbox/New") is note
        with pytest.raises(AlreadyExistsError):
            await cache.write("Inbox/New", "again", create=True)

    async def test_write_notifies_listeners(self, cache):
        """Test writes bump the generation."""
        generation = cache.generation
        await cache.write("Concepts/Python", "rewritten")

        assert cache.generation > generation

    async def test_delete_moves_to_trash(self, cache, temp_vault):
        """Test delete moves the file into .trash and unindexes it."""
        note = cache.lookup("no_frontmatter")
        await cache.delete(note)

        assert not (temp_vault / "no_frontmatter.md").exists()
        assert (temp_vault / ".trash" / "no_frontmatter.md").exists()
        assert cache.lookup("no_frontmatter") is None

    async def test_delete_twice_same_name_keeps_both(self, cache, temp_vault):
        """Test a name clash in .trash does not overwrite the earlier file."""
        await cache.delete(cache.lookup("no_frontmatter"))
        await cache.write("no_frontmatter", "second", create=True)
        await cache.delete(cache.lookup("no_frontmatter"))

        assert len(list((temp_vault / ".trash").iterdir())) == 2

    async def test_move(self, cache, temp_vault):
        """Test move renames the file and reindexes it."""
        moved = await cache.move(cache.lookup("no_frontmatter"), "Archive/Simple")

        assert moved.note_id == "Archive/Simple"
        assert (temp_vault / "Archive" / "Simple.md").exists()
        assert cache.lookup("no_frontmatter") is None

    async def test_move_onto_existing_conflicts(self, cache):
        """Test moving onto an existing note is rejected."""
        from vault_bridge.errors import AlreadyExistsError

        with pytest.raises(AlreadyExistsError):
            await cache.move(cache.lookup("no_frontmatter"), "Concepts/Python")

    async def test_write_rejects_traversal(self, cache):
        """Test store writes cannot escape the vault."""
        from vault_bridge.errors import InvalidInputError

        with pytest.raises(InvalidInputError):
            await cache.write("../escape", "x", create=True)


class TestRefreshConcurrency:
    """Tests for store operations racing a stale refresh."""

    @staticmethod
    def slow_scan(cache, monkeypatch, delay=0.3):
        """Make the vault walk block its worker thread for delay seconds."""
        scan = cache._scan_files

        def slow():
            time.sleep(delay)
            return scan()

        monkeypatch.setattr(cache, "_scan_files", slow)
        cache._loaded_at = 0

    async def test_write_during_refresh_is_kept(self, cache, temp_vault, monkeypatch):
        """Test a note created while a rescan is in flight stays indexed."""
        self.slow_scan(cache, monkeypatch)

        refreshing = asyncio.ensure_future(cache.refresh())
        await asyncio.sleep(0.05)
        await cache.write("Fresh/New Note", "Written mid-refresh", create=True)
        await refreshing

        assert (temp_vault / "Fresh" / "New Note.md").exists()
        assert cache.lookup("Fresh/New Note") is not None

    async def test_move_during_refresh_is_kept(self, cache, monkeypatch):
        """Test a note moved while a rescan is in flight is indexed at its new path."""
        self.slow_scan(cache, monkeypatch)

        refreshing = asyncio.ensure_future(cache.refresh())
        await asyncio.sleep(0.05)
        await cache.move(cache.lookup("no_frontmatter"), "Archive/Simple")
        await refreshing

        assert cache.lookup("Archive/Simple") is not None
        assert cache.lookup("no_frontmatter") is None
