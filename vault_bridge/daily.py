"""
Daily notes for Vault Bridge.

One note per calendar day, named with a strftime pattern inside the daily
folder (``Daily/2024-03-15`` by default).
"""

import re
from collections.abc import Sequence
from datetime import date, datetime, timedelta

import structlog

from .cache import VaultCache
from .errors import InvalidInputError, NotFoundError
from .models import Note
from .templates import DEFAULT_TEMPLATE_FOLDERS, render_template
from .writer import create_note, get_note, note_from_content

logger = structlog.get_logger(__name__)

OFFSET_PATTERN = re.compile(r'^[+-]\d{1,5}$')
RELATIVE_DAYS = {"today": 0, "yesterday": -1, "tomorrow": 1}


def resolve_day(value: str | date | None, today: date | None = None) -> date:
    """Turn ``today``, ``yesterday``, ``tomorrow``, ``+N``/``-N`` or ``YYYY-MM-DD`` into a date.

    Raises:
        InvalidInputError: If value is none of those
    """
    today = today or date.today()
    if value is None:
        return today
    if isinstance(value, date):
        return value

    text = value.strip().lower()
    if text in RELATIVE_DAYS:
        return today + timedelta(days=RELATIVE_DAYS[text])
    if OFFSET_PATTERN.match(text):
        return today + timedelta(days=int(text))
    try:
        return datetime.strptime(text, "%Y-%m-%d").date()
    except ValueError:
        raise InvalidInputError(f"Invalid date: {value}")


def daily_note_path(day: date, folder: str = "Daily", fmt: str = "%Y-%m-%d") -> str:
    name = day.strftime(fmt)
    folder = folder.strip("/")
    return f"{folder}/{name}" if folder else name


async def get_daily_note(cache: VaultCache, day: date, folder: str = "Daily", fmt: str = "%Y-%m-%d") -> Note:
    path = daily_note_path(day, folder, fmt)
    note = await cache.get_by_path(path)
    if note is None:
        raise NotFoundError(f"Daily note not found: {path}")
    return await get_note(cache, note)


async def create_daily_note(
    cache: VaultCache,
    day: date,
    folder: str = "Daily",
    fmt: str = "%Y-%m-%d",
    content: str | None = None,
    template: str | None = None,
    template_folders: Sequence[str] = DEFAULT_TEMPLATE_FOLDERS,
) -> Note:
    """Create the daily note for day, from a template or plain content.

    Inside the template ``{{date}}`` is the daily note's date, not today's.

    Raises:
        AlreadyExistsError: If the daily note already exists
        NotFoundError: If the template does not exist
    """
    path = daily_note_path(day, folder, fmt)

    if template:
        variables = {"title": day.strftime(fmt), "date": day.isoformat()}
        raw = await render_template(cache, template, variables, template_folders)
        if content:
            raw = raw + "\n" + content
        note = await cache.write(path, raw, create=True)
        result = note_from_content(note, raw)
    else:
        result = await create_note(cache, path, content or "")

    logger.info("daily_note_created", path=path, template=template)
    return result
