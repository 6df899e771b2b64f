"""
Core data models for the static site generator.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


# --------------------------------------------------------------------------- #
# Pipeline items

class PageUnit(BaseModel):
    """One fetchable location produced by the enumerator."""
    url: str
    discovered_from: str
    content_id: Optional[int] = None


class FetchedPage(BaseModel):
    """A page body ready to be staged."""
    url: str
    path: str
    body: str
    from_cache: bool = False
    content_id: Optional[int] = None
    fetched_at: datetime = Field(default_factory=_now)


class CacheMeta(BaseModel):
    url: str
    content_id: Optional[int] = None
    stored_at: float


class PublishResult(BaseModel):
    """Outcome of one publisher run."""
    publisher: str
    uploaded: int = 0
    skipped: int = 0
    batches: int = 0
    detail: str = ""


# --------------------------------------------------------------------------- #
# Progress / log

class LogLevel(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    DEBUG = "debug"


class LogEntry(BaseModel):
    """System events for logging and monitoring."""
    level: LogLevel
    message: str
    time: datetime = Field(default_factory=_now)
    elapsed: Optional[str] = None


class ProgressState(BaseModel):
    current: int = 0
    total: int = 0
    percentage: int = 0
    status: str = ""

    @classmethod
    def of(cls, current: int, total: int, status: str) -> "ProgressState":
        percentage = round(current / total * 100) if total > 0 else 0
        return cls(current=current, total=total, percentage=percentage, status=status)


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    CANCEL_REQUESTED = "cancel_requested"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"


# --------------------------------------------------------------------------- #
# Content source records

class ContentType(BaseModel):
    name: str
    public: bool = True
    builtin: bool = False
    has_archive: bool = False
    archive_url: Optional[str] = None


class Entity(BaseModel):
    """A published piece of content (post, page, custom type item)."""
    id: int
    type: str = "post"
    url: str
    status: str = "publish"
    modified: float = 0.0
    date: Optional[datetime] = None
    author_id: Optional[int] = None
    content: str = ""
    thumbnail_id: Optional[int] = None
    format: Optional[str] = None


class Term(BaseModel):
    id: int
    taxonomy: str
    url: str
    count: int = 0


class Author(BaseModel):
    id: int
    url: str
    post_count: int = 0


class DateBucket(BaseModel):
    year: int
    month: int
    day: int


class AttachmentSize(BaseModel):
    file: str
    width: Optional[int] = None
    height: Optional[int] = None


class Attachment(BaseModel):
    """A media library item. ``file`` is relative to the uploads directory."""
    id: int
    file: str
    sizes: Dict[str, AttachmentSize] = Field(default_factory=dict)


class ThemeInfo(BaseModel):
    stylesheet: str
    template: Optional[str] = None


class ContentSnapshot(BaseModel):
    """Serialisable export of everything the generator reads from the CMS."""
    site_url: str
    home_url: Optional[str] = None
    posts_per_page: int = 10
    content_types: List[ContentType] = Field(default_factory=list)
    entities: List[Entity] = Field(default_factory=list)
    terms: List[Term] = Field(default_factory=list)
    custom_taxonomies: List[str] = Field(default_factory=list)
    authors: List[Author] = Field(default_factory=list)
    attachments: List[Attachment] = Field(default_factory=list)
    site_icon_id: Optional[int] = None
    theme_mods: Dict[str, Any] = Field(default_factory=dict)
    theme: Optional[ThemeInfo] = None
