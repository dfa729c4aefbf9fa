"""
Tests for daily notes.
"""

from datetime import date

import pytest

TODAY = date(2024, 3, 15)


class TestResolveDay:
    """Tests for resolve_day."""

    @pytest.mark.parametrize("value,expected", [
        (None, date(2024, 3, 15)),
        ("today", date(2024, 3, 15)),
        ("Yesterday", date(2024, 3, 14)),
        ("tomorrow", date(2024, 3, 16)),
        ("+2", date(2024, 3, 17)),
        ("-15", date(2024, 2, 29)),
        ("2023-12-31", date(2023, 12, 31)),
        (date(2020, 1, 1), date(2020, 1, 1)),
    ])
    def test_accepted_values(self, value, expected):
        """Test keywords, offsets and ISO dates."""
        from vault_bridge.daily import resolve_day

        assert resolve_day(value, today=TODAY) == expected

    @pytest.mark.parametrize("value", ["next week", "2024-13-01", "15/03/2024", "+", ""])
    def test_rejected_values(self, value):
        """Test anything else is an input error."""
        from vault_bridge.daily import resolve_day
        from vault_bridge.errors import InvalidInputError

        with pytest.raises(InvalidInputError, match="Invalid date"):
            resolve_day(value, today=TODAY)


class TestDailyNotePath:
    """Tests for daily_note_path."""

    def test_default_layout(self):
        from vault_bridge.daily import daily_note_path

        assert daily_note_path(TODAY) == "Daily/2024-03-15"

    def test_custom_folder_and_format(self):
        from vault_bridge.daily import daily_note_path

        assert daily_note_path(TODAY, "Journal/", "%Y/%m/%d") == "Journal/2024/03/15"
        assert daily_note_path(TODAY, "") == "2024-03-15"


class TestDailyNotes:
    """Tests for creating and reading daily notes."""

    async def test_create_then_get(self, cache):
        """Test a created daily note can be read back."""
        from vault_bridge.daily import create_daily_note, get_daily_note

        created = await create_daily_note(cache, TODAY, content="Started the week.")
        fetched = await get_daily_note(cache, TODAY)

        assert created.path == fetched.path == "Daily/2024-03-15"
        assert fetched.content == "Started the week."
        assert "created" in fetched.frontmatter

    async def test_missing_daily_note(self, cache):
        """Test reading a day without a note is not found."""
        from vault_bridge.daily import get_daily_note
        from vault_bridge.errors import NotFoundError

        with pytest.raises(NotFoundError, match="Daily note not found: Daily/2024-03-15"):
            await get_daily_note(cache, TODAY)

    async def test_create_twice_rejected(self, cache):
        """Test a day has at most one daily note."""
        from vault_bridge.daily import create_daily_note
        from vault_bridge.errors import AlreadyExistsError

        await create_daily_note(cache, TODAY)

        with pytest.raises(AlreadyExistsError):
            await create_daily_note(cache, TODAY)

    async def test_create_from_template(self, cache):
        """Test template placeholders use the daily note's date."""
        from vault_bridge.daily import create_daily_note

        note = await create_daily_note(cache, date(2023, 1, 2), template="Meeting", content="Notes")

        assert note.content.startswith("# 2023-01-02\n\nDate: 2023-01-02\n")
        assert note.content.endswith("\nNotes")
        assert "{{attendees}}" in note.content
