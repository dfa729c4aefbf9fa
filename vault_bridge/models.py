"""
Pydantic models for Vault Bridge.

Contains the metadata-index records, the API payload models, and the request
body schemas validated by the dispatcher before a handler runs.
"""

import datetime
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

LinkKind = Literal["wiki", "markdown"]
Direction = Literal["in", "out", "both"]


class LinkRef(BaseModel):
    """A raw link token extracted from a note, prior to resolution."""

    model_config = ConfigDict(frozen=True)

    link: str  # link path without alias, e.g. "Folder/Target#Heading"
    original: str  # text exactly as written, e.g. "[[Folder/Target#Heading|Alias]]"
    kind: LinkKind = "wiki"
    embed: bool = False


class CachedNote(BaseModel):
    """Model for a note in the metadata index."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    path: Path
    rel_path_str: str
    note_id: str
    stem: str
    stem_lower: str
    folder: str
    title: str
    frontmatter: dict[str, Any]
    tags: list[str]
    links: list[LinkRef]
    embeds: list[LinkRef]
    mtime: float

    def __str__(self) -> str:
        return self.rel_path_str


# ============== API payloads ==============

class NoteInfo(BaseModel):
    """Minimal note info for listings."""

    path: str
    title: str
    tags: list[str]
    created: str | None = None
    modified: str | None = None

    @classmethod
    def from_cached(cls, note: CachedNote, **extra: Any) -> "NoteInfo":
        created = note.frontmatter.get("created")
        modified = note.frontmatter.get("modified")
        return cls(
            path=note.note_id,
            title=note.title,
            tags=note.tags,
            created=str(created) if created is not None else None,
            modified=str(modified) if modified is not None else None,
            **extra,
        )


class Note(BaseModel):
    """A note with its content and metadata."""

    path: str
    title: str
    content: str
    frontmatter: dict[str, Any]
    raw: str


class SearchMatch(BaseModel):
    line: int  # 1-indexed, 0 for a frontmatter match
    text: str


class SearchResult(BaseModel):
    note: NoteInfo
    matches: list[SearchMatch]


class TagCount(BaseModel):
    tag: str
    count: int


class GraphNode(BaseModel):
    """Model for a node in the link graph."""

    id: str
    title: str
    group: str = ""


class GraphEdge(BaseModel):
    """Model for a directed edge in the link graph."""

    model_config = ConfigDict(frozen=True)

    source: str
    target: str
    kind: LinkKind = "wiki"


class GraphResult(BaseModel):
    nodes: list[GraphNode]
    edges: list[GraphEdge]


class Neighbor(BaseModel):
    path: str
    title: str
    direction: Literal["in", "out"]


class BacklinkInfo(NoteInfo):
    context: str


class LinkInfo(BaseModel):
    path: str
    title: str
    exists: bool
    context: str = ""


class TemplateInfo(BaseModel):
    name: str
    path: str


# ============== Request bodies ==============

class CreateNoteRequest(BaseModel):
    path: str = Field(min_length=1)
    content: str = ""
    frontmatter: dict[str, Any] = Field(default_factory=dict)


class UpdateNoteRequest(BaseModel):
    content: str | None = None
    append: str | None = None
    frontmatter: dict[str, Any] | None = None


class MoveNoteRequest(BaseModel):
    new_path: str = Field(min_length=1)


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    folder: str | None = None
    limit: int = Field(default=20, ge=1)
    case_sensitive: bool = False


class GraphQueryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: str | None = Field(default=None, alias="from")
    depth: int = Field(default=1, ge=0)
    direction: Direction = "both"


class RunTemplateRequest(BaseModel):
    destination: str = Field(min_length=1)
    variables: dict[str, str] = Field(default_factory=dict)


class DailyNoteRequest(BaseModel):
    date: datetime.date | None = None
    content: str | None = None
    template: str | None = None
