"""
Utility functions and compiled regex patterns for Vault Bridge.

Contains parsing functions, validation utilities, and pre-compiled patterns.
"""

import asyncio
import re
from collections.abc import Awaitable, Callable, Iterable
from pathlib import Path
from typing import Any, TypeVar
from urllib.parse import unquote

import structlog
import yaml

from .errors import InvalidInputError
from .models import LinkRef

logger = structlog.get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")

# Pre-compiled regex patterns for performance
WIKILINK_PATTERN = re.compile(r'(!?)\[\[([^\[\]\n]+?)\]\]')
MARKDOWN_LINK_PATTERN = re.compile(r'(!?)\[([^\[\]\n]*)\]\(<?([^()<>\s]+)>?\)')
FRONTMATTER_PATTERN = re.compile(r'^---[ \t]*\n(?:(.*?)\n)?---[ \t]*(?:\n|$)', re.DOTALL)
INLINE_TAG_PATTERN = re.compile(r'(?<![\w#&/\[])#([^\W\d][\w/-]*)')
EXTERNAL_LINK_PATTERN = re.compile(r'^[a-zA-Z][a-zA-Z0-9+.-]*:')

NOTE_EXTENSION = ".md"


# ============== Parsing ==============

def parse_frontmatter(content: str) -> tuple[dict, str]:
    """Extract YAML frontmatter and body from note content."""
    frontmatter = {}
    body = content

    match = FRONTMATTER_PATTERN.match(content)
    if match:
        try:
            loaded = yaml.safe_load(match.group(1) or "")
            if isinstance(loaded, dict):
                frontmatter = loaded
        except yaml.YAMLError:
            pass
        body = content[match.end():]

    return frontmatter, body


def serialize_note(frontmatter: dict[str, Any], body: str) -> str:
    """Render frontmatter and body back into note text."""
    if not frontmatter:
        return body
    yaml_content = yaml.safe_dump(frontmatter, allow_unicode=True, default_flow_style=False, sort_keys=False)
    return f"---\n{yaml_content}---\n{body}"


def extract_links(body: str) -> tuple[list[LinkRef], list[LinkRef]]:
    """Extract wiki and markdown link tokens from a note body.

    Returns (links, embeds) in order of appearance. External URLs and
    same-note anchors are not link tokens.
    """
    found: list[tuple[int, LinkRef]] = []

    for match in WIKILINK_PATTERN.finditer(body):
        inner = match.group(2)
        target = inner.split("|", 1)[0].strip()
        if not target:
            continue
        found.append((match.start(), LinkRef(
            link=target,
            original=match.group(0),
            kind="wiki",
            embed=bool(match.group(1)),
        )))

    for match in MARKDOWN_LINK_PATTERN.finditer(body):
        target = match.group(3)
        if EXTERNAL_LINK_PATTERN.match(target) or target.startswith("#"):
            continue
        found.append((match.start(), LinkRef(
            link=unquote(target),
            original=match.group(0),
            kind="markdown",
            embed=bool(match.group(1)),
        )))

    found.sort(key=lambda item: item[0])
    links = [ref for _, ref in found if not ref.embed]
    embeds = [ref for _, ref in found if ref.embed]
    return links, embeds


def collect_tags(frontmatter: dict[str, Any], body: str) -> list[str]:
    """Collect frontmatter and inline tags, without '#', first occurrence wins."""
    tags: list[str] = []

    raw_tags = frontmatter.get("tags") or []
    if isinstance(raw_tags, str):
        raw_tags = re.split(r'[,\s]+', raw_tags)
    if isinstance(raw_tags, list):
        for tag in raw_tags:
            tag_str = str(tag).strip().lstrip("#")
            if tag_str and tag_str not in tags:
                tags.append(tag_str)

    for tag in INLINE_TAG_PATTERN.findall(body):
        if tag not in tags:
            tags.append(tag)

    return tags


def strip_extension(path: str) -> str:
    """Turn a vault-relative file path into a note identity."""
    if path.endswith(NOTE_EXTENSION):
        return path[:-len(NOTE_EXTENSION)]
    return path


def normalize_path(path: str) -> str:
    """Normalize a note path - no leading slash, always the .md extension."""
    path = path.replace("\\", "/").lstrip("/")
    if not path.endswith(NOTE_EXTENSION):
        path += NOTE_EXTENSION
    return path


def get_context(content: str, search_text: str, radius: int = 30) -> str:
    """Extract a one-line window of text around the first occurrence of search_text."""
    idx = content.find(search_text)
    if idx == -1:
        return ""

    start = max(0, idx - radius)
    end = min(len(content), idx + len(search_text) + radius)
    context = content[start:end].replace("\n", " ").strip()

    if start > 0:
        context = "..." + context
    if end < len(content):
        context = context + "..."

    return context


# ============== Bulk processing ==============

async def process_batch(
    items: Iterable[T],
    processor: Callable[[T], Awaitable[R | None]],
    batch_size: int = 50,
    cancelled: asyncio.Event | None = None,
) -> list[R]:
    """Run processor over items in fixed-width concurrent batches.

    Each batch is awaited to completion before the next one starts. A failing
    item is logged and skipped; None results are dropped. When ``cancelled``
    is set, no further batches are started.
    """
    items = list(items)
    results: list[R] = []

    for offset in range(0, len(items), batch_size):
        if cancelled is not None and cancelled.is_set():
            logger.info("batch_cancelled", processed=offset, total=len(items))
            break

        batch = items[offset:offset + batch_size]
        outcomes = await asyncio.gather(*(processor(item) for item in batch), return_exceptions=True)

        for item, outcome in zip(batch, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.warning("batch_item_failed", item=str(item), error=str(outcome))
                continue
            if outcome is not None:
                results.append(outcome)

    return results


# ============== Security Validation ==============

def validate_path_within_vault(path_str: str, vault_path: Path) -> Path:
    """Validate that a path is safely within the vault directory.

    Args:
        path_str: The path string to validate (vault-relative)
        vault_path: The vault root path

    Returns:
        The validated absolute Path

    Raises:
        InvalidInputError: If the path attempts to escape the vault
    """
    if not path_str or not path_str.strip():
        raise InvalidInputError("Path cannot be empty")

    parts = path_str.replace("\\", "/").split("/")
    if ".." in parts:
        raise InvalidInputError("Path traversal detected: '..' is not allowed")

    # Reject absolute paths
    if path_str.startswith("/") or (len(path_str) > 1 and path_str[1] == ":"):
        raise InvalidInputError("Absolute paths are not allowed")

    full_path = (vault_path / path_str).resolve()
    vault_resolved = vault_path.resolve()

    try:
        full_path.relative_to(vault_resolved)
    except ValueError:
        raise InvalidInputError(f"Path escapes vault directory: {path_str}")

    return full_path
