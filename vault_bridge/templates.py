"""
Note templates for Vault Bridge.

Templates are ordinary notes in the vault's templates folder. Running one
substitutes ``{{name}}`` placeholders and writes the result as a new note.
"""

import re
from collections.abc import Sequence
from datetime import datetime

from .cache import VaultCache
from .errors import NotFoundError
from .models import Note, TemplateInfo
from .utils import strip_extension
from .writer import note_from_content

DEFAULT_TEMPLATE_FOLDERS = ("Templates", "templates", "_templates")


async def get_templates_folder(cache: VaultCache, candidates: Sequence[str] = DEFAULT_TEMPLATE_FOLDERS) -> str:
    """First candidate folder present in the vault, else the first candidate."""
    for folder in candidates:
        if await cache.folder_exists(folder):
            return folder
    return candidates[0]


def _placeholder(key: str) -> re.Pattern[str]:
    return re.compile(r'\{\{\s*' + re.escape(key) + r'\s*\}\}')


def process_template(content: str, variables: dict[str, str], now: datetime | None = None) -> str:
    """Substitute ``{{key}}`` placeholders.

    Caller variables are applied first, so they override the built-ins
    ``date``, ``time`` and ``datetime``.
    """
    now = now or datetime.now()
    processed = content

    for key, value in variables.items():
        processed = _placeholder(key).sub(lambda _m: value, processed)

    builtins = {
        "date": now.date().isoformat(),
        "time": now.strftime("%H:%M:%S"),
        "datetime": now.isoformat(),
    }
    for key, value in builtins.items():
        processed = _placeholder(key).sub(lambda _m: value, processed)

    return processed


async def list_templates(cache: VaultCache, candidates: Sequence[str] = DEFAULT_TEMPLATE_FOLDERS) -> list[TemplateInfo]:
    """List templates recursively, named relative to the templates folder."""
    folder = await get_templates_folder(cache, candidates)
    prefix = folder + "/"
    templates = [
        TemplateInfo(name=note.note_id[len(prefix):], path=note.rel_path_str)
        for note in await cache.get_notes()
        if note.note_id.startswith(prefix)
    ]
    templates.sort(key=lambda template: template.name)
    return templates


async def render_template(
    cache: VaultCache,
    name: str,
    variables: dict[str, str],
    candidates: Sequence[str] = DEFAULT_TEMPLATE_FOLDERS,
    now: datetime | None = None,
) -> str:
    """Read a template by name and return its processed text.

    Raises:
        NotFoundError: If no such template exists
    """
    await cache.refresh()
    folder = await get_templates_folder(cache, candidates)
    template = cache.lookup(f"{folder}/{strip_extension(name)}")
    if template is None:
        raise NotFoundError(f"Template not found: {name}")
    content = await cache.read(template)
    return process_template(content, variables, now)


async def run_template(
    cache: VaultCache,
    name: str,
    destination: str,
    variables: dict[str, str] | None = None,
    candidates: Sequence[str] = DEFAULT_TEMPLATE_FOLDERS,
    now: datetime | None = None,
) -> Note:
    """Create a note at destination from a template.

    ``title`` defaults to the destination's file name.

    Raises:
        NotFoundError: If the template does not exist
        AlreadyExistsError: If destination already exists
    """
    title = strip_extension(destination.rstrip("/").rsplit("/", 1)[-1])
    processed = await render_template(cache, name, {"title": title, **(variables or {})}, candidates, now)
    note = await cache.write(destination, processed, create=True)
    return note_from_content(note, processed)
