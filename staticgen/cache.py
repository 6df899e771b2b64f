"""
On-disk page cache keyed by URL.

Each entry is a pair of files: ``<key>.html`` holding the transformed page and
``<key>.meta`` holding ``{url, content_id, stored_at}``. An entry tied to a
content entity is stale once that entity was modified after ``stored_at``.
"""

import hashlib
import json
import logging
import time
from pathlib import Path
from typing import Callable, Dict, Optional

from .models import CacheMeta


logger = logging.getLogger(__name__)

ModifiedTime = Callable[[int], Optional[float]]


class PageCache:
    """File-backed cache of generated pages."""

    def __init__(
        self,
        cache_dir: Path,
        modified_time: ModifiedTime,
        clock: Callable[[], float] = time.time,
    ):
        self.cache_dir = Path(cache_dir)
        self._modified_time = modified_time
        self._clock = clock
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def key(url: str) -> str:
        return hashlib.sha256(url.encode("utf-8")).hexdigest()

    def _body_path(self, key: str) -> Path:
        return self.cache_dir / f"{key}.html"

    def _meta_path(self, key: str) -> Path:
        return self.cache_dir / f"{key}.meta"

    def _read_meta(self, path: Path) -> Optional[CacheMeta]:
        try:
            return CacheMeta.model_validate(json.loads(path.read_text()))
        except (OSError, ValueError) as e:
            logger.debug(f"Unreadable cache meta {path.name}: {e}")
            return None

    # ---------------------------------------------- #
    # Public API
    def is_valid(self, url: str, content_id: Optional[int] = None) -> bool:
        key = self.key(url)
        if not self._body_path(key).is_file():
            return False

        meta = self._read_meta(self._meta_path(key))
        if meta is None:
            return False

        if content_id is not None:
            modified = self._modified_time(content_id)
            if modified is None or modified > meta.stored_at:
                return False

        return True

    def get(self, url: str) -> Optional[str]:
        try:
            return self._body_path(self.key(url)).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.debug(f"Cache read failed for {url}: {e}")
            return None

    def set(self, url: str, body: str, content_id: Optional[int] = None) -> bool:
        key = self.key(url)
        meta = CacheMeta(url=url, content_id=content_id, stored_at=self._clock())
        try:
            self._body_path(key).write_text(body, encoding="utf-8")
            self._meta_path(key).write_text(meta.model_dump_json())
        except OSError as e:
            logger.debug(f"Cache write failed for {url}: {e}")
            return False
        return True

    def delete(self, url: str) -> bool:
        key = self.key(url)
        success = True
        for path in (self._body_path(key), self._meta_path(key)):
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.debug(f"Cache delete failed for {path.name}: {e}")
                success = False
        return success

    def delete_by_content_id(self, content_id: int) -> int:
        """Drop every entry stored for ``content_id``. Returns the entry count."""
        deleted = 0
        for meta_path in self.cache_dir.glob("*.meta"):
            meta = self._read_meta(meta_path)
            if meta is None or meta.content_id != content_id:
                continue
            self._body_path(meta_path.stem).unlink(missing_ok=True)
            meta_path.unlink(missing_ok=True)
            deleted += 1

        if deleted:
            logger.info(f"Invalidated {deleted} cache entries for content {content_id}")
        return deleted

    def clear_all(self) -> int:
        """Remove every file in the cache directory. Returns the file count."""
        deleted = 0
        for path in self.cache_dir.iterdir():
            if path.is_file():
                try:
                    path.unlink()
                    deleted += 1
                except OSError as e:
                    logger.warning(f"Could not remove {path}: {e}")
        logger.info(f"Cache cleared: {deleted} files removed")
        return deleted

    def stats(self) -> Dict[str, int]:
        bodies = list(self.cache_dir.glob("*.html"))
        return {
            "count": len(bodies),
            "size": sum(p.stat().st_size for p in bodies),
        }
