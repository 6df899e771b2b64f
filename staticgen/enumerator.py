"""
URL enumeration: every page of the site the crawler has to visit.
"""

import logging
import math
from typing import Dict, Iterable, List, Optional

from .config import Settings
from .interfaces import ContentSource, ProgressSink
from .models import PageUnit, Term


logger = logging.getLogger(__name__)

FEED_PATHS = ("feed/", "feed/rss/", "feed/rss2/", "feed/atom/", "comments/feed/")

SITEMAP_PATHS = (
    "sitemap.xml",
    "wp-sitemap.xml",
    "wp-sitemap-posts-post-1.xml",
    "wp-sitemap-posts-page-1.xml",
    "wp-sitemap-taxonomies-category-1.xml",
)


class UrlEnumerator:
    """Builds the ordered, de-duplicated list of pages to generate."""

    def __init__(
        self,
        source: ContentSource,
        settings: Settings,
        progress: Optional[ProgressSink] = None,
    ):
        self.source = source
        self.settings = settings
        self.progress = progress
        self.url_to_content_id: Dict[str, int] = {}
        self._units: List[PageUnit] = []

    def _status(self, status: str) -> None:
        if self.progress:
            self.progress.update_progress(0, 100, status)

    def _add(self, url: str, category: str, content_id: Optional[int] = None) -> None:
        self._units.append(PageUnit(url=url, discovered_from=category, content_id=content_id))

    def _add_paginated(self, link: str, count: int, category: str) -> None:
        self._add(link, category)
        for page in range(2, self._max_pages(count) + 1):
            self._add(f"{link}page/{page}/", category)

    def _add_terms(self, terms: Iterable[Term], category: str, paginate: bool = True) -> None:
        for term in terms:
            if term.count <= 0:
                continue
            if paginate:
                self._add_paginated(term.url, term.count, category)
            else:
                self._add(term.url, category)

    def _max_pages(self, count: int) -> int:
        return math.ceil(count / self.source.posts_per_page())

    # ---------------------------------------------- #
    # Public API
    def enumerate(self) -> List[PageUnit]:
        self._units = []
        self.url_to_content_id = {}
        archives = self.settings.archives
        home = self.source.home_url()

        self._status("Collecting URLs: entities")

        # front page and its pagination
        self._add(home, "home")
        for page in range(2, self._max_pages(self.source.published_post_count()) + 1):
            self._add(f"{home}page/{page}/", "home_page")

        public_types = [t for t in self.source.content_types() if t.public]

        for content_type in public_types:
            for entity in self.source.published_entities(content_type.name):
                self._add(entity.url, "entity", entity.id)
                self.url_to_content_id[entity.url] = entity.id

        for content_type in public_types:
            if not content_type.builtin and content_type.has_archive and content_type.archive_url:
                self._add(content_type.archive_url, "type_archive")

        self._status("Collecting URLs: categories")
        self._add_terms(self.source.terms("category"), "category")

        if archives.tag:
            self._status("Collecting URLs: tags")
            self._add_terms(self.source.terms("post_tag"), "tag")

        if archives.date:
            self._status("Collecting URLs: date archives")
            for bucket in self.source.date_buckets():
                self._add(self.source.date_link(bucket.year), "date")
                self._add(self.source.date_link(bucket.year, bucket.month), "date")
                self._add(self.source.date_link(bucket.year, bucket.month, bucket.day), "date")

        for taxonomy in self.source.custom_taxonomies():
            self._add_terms(self.source.terms(taxonomy), "taxonomy", paginate=False)

        if archives.post_format:
            self._add_terms(self.source.terms("post_format"), "post_format")

        if archives.author:
            for author in self.source.authors():
                self._add_paginated(author.url, author.post_count, "author")

        self._status("Collecting URLs: feeds and sitemaps")

        if archives.rss:
            for path in FEED_PATHS:
                self._add(home + path, "feed")

        if archives.sitemap:
            sitemaps = list(SITEMAP_PATHS)
            if archives.tag:
                sitemaps.append("wp-sitemap-taxonomies-post_tag-1.xml")
            if archives.post_format:
                sitemaps.append("wp-sitemap-taxonomies-post_format-1.xml")
            if archives.author:
                sitemaps.append("wp-sitemap-users-1.xml")
            for path in sitemaps:
                self._add(home + path, "sitemap")

        units = self._dedupe(self._units)
        logger.info(f"Enumerated {len(units)} URLs")
        return units

    @staticmethod
    def _dedupe(units: List[PageUnit]) -> List[PageUnit]:
        seen = set()
        unique = []
        for unit in units:
            if unit.url in seen:
                continue
            seen.add(unit.url)
            unique.append(unit)
        return unique
