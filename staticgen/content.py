"""
Content source backed by a YAML export of the CMS.

The export holds the listings the generator needs (content types, published
entities, terms, authors, media) while the filesystem roots point at the live
installation the assets are copied from.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError as PydanticValidationError

from .config import Settings
from .errors import ConfigError
from .interfaces import ContentSource
from .models import (
    Attachment,
    Author,
    ContentSnapshot,
    ContentType,
    DateBucket,
    Entity,
    Term,
    ThemeInfo,
)


logger = logging.getLogger(__name__)


class YamlContentSource(ContentSource):
    """ContentSource over an in-memory :class:`ContentSnapshot`."""

    def __init__(
        self,
        snapshot: ContentSnapshot,
        site_root: Path,
        content_dir: Optional[Path] = None,
        site_url: Optional[str] = None,
    ):
        self.snapshot = snapshot
        # the configured site URL wins over the one recorded in the export
        self._site_url = (site_url or snapshot.site_url).rstrip("/") + "/"
        if site_url and snapshot.site_url.rstrip("/") != site_url.rstrip("/"):
            logger.warning(f"Content export was taken from {snapshot.site_url}, rewriting against {site_url}")
        self._site_root = Path(site_root)
        self._content_dir = Path(content_dir) if content_dir else self._site_root / "wp-content"
        self._entities: Dict[int, Entity] = {e.id: e for e in snapshot.entities}
        self._attachments: Dict[int, Attachment] = {a.id: a for a in snapshot.attachments}

    @classmethod
    def from_file(
        cls,
        path: Path,
        site_root: Path,
        content_dir: Optional[Path] = None,
        site_url: Optional[str] = None,
    ) -> "YamlContentSource":
        try:
            with open(path, "r") as f:
                raw = yaml.safe_load(f) or {}
            snapshot = ContentSnapshot.model_validate(raw)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to read content export {path}: {e}") from e
        except PydanticValidationError as e:
            raise ConfigError(f"Invalid content export {path}: {e}") from e

        logger.info(f"Loaded content export: {len(snapshot.entities)} entities, {len(snapshot.terms)} terms")
        return cls(snapshot, site_root, content_dir, site_url=site_url)

    @classmethod
    def from_settings(cls, settings: Settings) -> "YamlContentSource":
        return cls.from_file(
            Path(settings.site.content_export),
            Path(settings.site.root),
            settings.site.content_path,
            site_url=settings.site.url,
        )

    # ---------------------------------------------- #
    # Site
    def site_url(self) -> str:
        return self._site_url

    def home_url(self) -> str:
        return (self.snapshot.home_url or self._site_url).rstrip("/") + "/"

    def posts_per_page(self) -> int:
        return max(1, self.snapshot.posts_per_page)

    def published_post_count(self) -> int:
        return sum(1 for e in self.snapshot.entities if e.type == "post" and e.status == "publish")

    # ---------------------------------------------- #
    # Content
    def content_types(self) -> List[ContentType]:
        if self.snapshot.content_types:
            return list(self.snapshot.content_types)
        return [
            ContentType(name="post", builtin=True),
            ContentType(name="page", builtin=True),
        ]

    def published_entities(self, content_type: str) -> List[Entity]:
        matches = [
            e for e in self.snapshot.entities
            if e.type == content_type and e.status == "publish"
        ]
        return sorted(matches, key=lambda e: e.id)

    def modified_time(self, entity_id: int) -> Optional[float]:
        entity = self._entities.get(entity_id)
        return entity.modified if entity else None

    def set_modified(self, entity_id: int, modified: float) -> None:
        """Record an edit to an entity (the snapshot is mutable in-process)."""
        entity = self._entities.get(entity_id)
        if entity:
            entity.modified = modified

    def terms(self, taxonomy: str) -> List[Term]:
        return [t for t in self.snapshot.terms if t.taxonomy == taxonomy]

    def custom_taxonomies(self) -> List[str]:
        return list(self.snapshot.custom_taxonomies)

    def date_buckets(self) -> List[DateBucket]:
        seen = set()
        buckets = []
        for entity in self.published_entities("post"):
            if entity.date is None:
                continue
            key = (entity.date.year, entity.date.month, entity.date.day)
            if key in seen:
                continue
            seen.add(key)
            buckets.append(DateBucket(year=key[0], month=key[1], day=key[2]))
        return sorted(buckets, key=lambda b: (b.year, b.month, b.day), reverse=True)

    def date_link(self, year: int, month: Optional[int] = None, day: Optional[int] = None) -> str:
        link = f"{self.home_url()}{year:04d}/"
        if month is not None:
            link += f"{month:02d}/"
            if day is not None:
                link += f"{day:02d}/"
        return link

    def authors(self) -> List[Author]:
        return [a for a in self.snapshot.authors if a.post_count > 0]

    # ---------------------------------------------- #
    # Media / theme
    def attachment(self, attachment_id: int) -> Optional[Attachment]:
        return self._attachments.get(attachment_id)

    def site_icon_id(self) -> Optional[int]:
        return self.snapshot.site_icon_id

    def theme_mods(self) -> Dict[str, Any]:
        return dict(self.snapshot.theme_mods)

    def active_theme(self) -> Optional[ThemeInfo]:
        return self.snapshot.theme

    # ---------------------------------------------- #
    # Filesystem roots
    @property
    def site_root(self) -> Path:
        return self._site_root

    @property
    def content_dir(self) -> Path:
        return self._content_dir
