"""
Core interfaces for the static site generator.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import (
    Attachment,
    Author,
    ContentType,
    DateBucket,
    Entity,
    PublishResult,
    Term,
    ThemeInfo,
)


class ContentSource(ABC):
    """Read-only view of the CMS the site is generated from.

    Supplies the listings the URL enumerator walks, the modification times the
    cache validates against, and the filesystem roots the asset collector
    copies from.
    """

    # ---------------------------------------------- #
    # Site
    @abstractmethod
    def site_url(self) -> str:
        """Base URL of the live site, with trailing slash."""

    @abstractmethod
    def home_url(self) -> str:
        """URL of the front page, with trailing slash."""

    @abstractmethod
    def posts_per_page(self) -> int:
        pass

    @abstractmethod
    def published_post_count(self) -> int:
        pass

    # ---------------------------------------------- #
    # Content
    @abstractmethod
    def content_types(self) -> List[ContentType]:
        pass

    @abstractmethod
    def published_entities(self, content_type: str) -> List[Entity]:
        """Published entities of one type, ordered by ascending id."""

    @abstractmethod
    def modified_time(self, entity_id: int) -> Optional[float]:
        """Last modification time (epoch seconds), or None if unknown."""

    @abstractmethod
    def terms(self, taxonomy: str) -> List[Term]:
        pass

    @abstractmethod
    def custom_taxonomies(self) -> List[str]:
        """Public, non-builtin taxonomy names."""

    @abstractmethod
    def date_buckets(self) -> List[DateBucket]:
        """Distinct publication days of published posts."""

    @abstractmethod
    def date_link(self, year: int, month: Optional[int] = None, day: Optional[int] = None) -> str:
        pass

    @abstractmethod
    def authors(self) -> List[Author]:
        """Authors with at least one published post."""

    # ---------------------------------------------- #
    # Media / theme
    @abstractmethod
    def attachment(self, attachment_id: int) -> Optional[Attachment]:
        pass

    @abstractmethod
    def site_icon_id(self) -> Optional[int]:
        pass

    @abstractmethod
    def theme_mods(self) -> Dict[str, Any]:
        pass

    @abstractmethod
    def active_theme(self) -> Optional[ThemeInfo]:
        pass

    def parent_theme(self) -> Optional[str]:
        """Slug of the parent theme when it differs from the active one."""
        theme = self.active_theme()
        if theme and theme.template and theme.template != theme.stylesheet:
            return theme.template
        return None

    # ---------------------------------------------- #
    # Filesystem roots
    @property
    @abstractmethod
    def site_root(self) -> Path:
        pass

    @property
    @abstractmethod
    def content_dir(self) -> Path:
        pass

    @property
    def uploads_dir(self) -> Path:
        return self.content_dir / "uploads"

    @property
    def plugins_dir(self) -> Path:
        return self.content_dir / "plugins"

    @property
    def themes_dir(self) -> Path:
        return self.content_dir / "themes"

    @property
    def includes_dir(self) -> Path:
        return self.site_root / "wp-includes"


class ProgressSink(ABC):
    """Receives the user-facing run log and progress bar."""

    @abstractmethod
    def log(self, message: str, level: str = "info") -> None:
        """Record one entry. ``level`` is error, warning, info or debug."""

    @abstractmethod
    def update_progress(self, current: int, total: int, status: str) -> None:
        pass

    @abstractmethod
    def clear_progress(self) -> None:
        pass

    @abstractmethod
    def clear_logs(self) -> None:
        pass

    @abstractmethod
    def error_count(self) -> int:
        """Number of error-level entries recorded since the last clear."""

    def start_timer(self) -> None:
        """Mark the start of a run for elapsed-time stamps."""

    def flush(self) -> None:
        """Persist buffered entries. No-op for unbuffered sinks."""


class Publisher(ABC):
    """A destination the staged site is delivered to."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name for this publisher."""
        pass

    @abstractmethod
    async def publish(self, staging_root: Path, message: str) -> PublishResult:
        """Deliver the staging tree. Raises PublishError on failure."""
        pass

    async def close(self) -> None:
        """Release any held resources."""
