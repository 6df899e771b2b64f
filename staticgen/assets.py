"""
Asset collection: copy only the theme, media, plugin and runtime files the
generated pages actually reference.
"""

import logging
import posixpath
import re
import shutil
from collections import deque
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Set

from .assembler import OutputAssembler
from .config import Settings
from .interfaces import ContentSource, ProgressSink


logger = logging.getLogger(__name__)

OTHER_CONTENT_DIRS = ("cache", "fonts", "w3tc-config")
EXTRA_ICON_FILES = (
    "apple-touch-icon.png",
    "apple-touch-icon-precomposed.png",
    "browserconfig.xml",
    "manifest.json",
    "site.webmanifest",
)

_LINK_HREF = re.compile(r"""<link[^>]+href=["']([^"']+)["']""", re.I)
_SCRIPT_SRC = re.compile(r"""<script[^>]+src=["']([^"']+)["']""", re.I)
_IMG_SRC = re.compile(r"""<img[^>]+src=["']([^"']+)["']""", re.I)
_SRCSET = re.compile(r"""srcset=["']([^"']+)["']""", re.I)
_STYLE_ATTR_URL = re.compile(r"""style=["'][^"']*url\(["']?([^"')\s]+)["']?\)""", re.I)
_CSS_URL = re.compile(r"""url\(\s*["']?([^"')\s]+)["']?\s*\)""", re.I)
_CSS_IMPORT = re.compile(r"""@import\s+["']([^"']+)["']""", re.I)
_CSS_IMPORT_URL = re.compile(r"""@import\s+url\(["']?([^"')\s]+)["']?\)""", re.I)
_SRCSET_DESCRIPTOR = re.compile(r"\s+\d+[wx]$")
_WP_IMAGE_CLASS = re.compile(r"wp-image-(\d+)")
_GALLERY_IDS = re.compile(r"""\[gallery[^\]]*ids=["']([^"']+)["']""")
_DATED_UPLOAD = re.compile(r"^\d{4}/\d{2}/")
_EXTERNAL = re.compile(r"^(data:|https?://|//)", re.I)


def _strip_query(path: str) -> str:
    return re.sub(r"[?#].*$", "", path)


def _normalize(path: str) -> Optional[str]:
    """Collapse ``.``/``..`` segments; None if the result escapes the root."""
    normalized = posixpath.normpath(path)
    if normalized.startswith("..") or normalized.startswith("/") or normalized == ".":
        return None
    return normalized


class AssetCollector:
    """Copies the files referenced by the staged pages."""

    def __init__(
        self,
        source: ContentSource,
        settings: Settings,
        assembler: OutputAssembler,
        log: ProgressSink,
    ):
        self.source = source
        self.settings = settings
        self.assembler = assembler
        self.log = log
        self.staging_root = assembler.staging_root
        self.content_dest = self.staging_root / "wp-content"

    # ---------------------------------------------- #
    # Entry point
    def collect(self) -> None:
        copied: List[str] = []
        failed: List[str] = []

        for name, step in (
            ("themes", self.copy_themes),
            ("uploads", self.copy_uploads),
            ("plugins", self.copy_plugins),
            ("wp-includes", self.copy_runtime),
        ):
            try:
                count = step()
            except OSError as e:
                self.log.log(f"Asset copy failed for {name}: {e}", "error")
                failed.append(name)
                continue
            if count:
                copied.append(name)

        for name in OTHER_CONTENT_DIRS:
            src = self.source.content_dir / name
            if src.is_dir() and self.assembler.copy_tree(src, self.content_dest / name):
                copied.append(name)

        self.copy_icons()
        if self.settings.archives.robots_txt:
            self.write_robots_txt()

        if copied:
            self.log.log(f"Assets copied: {', '.join(copied)}")
        if failed:
            self.log.log(f"Asset copy errors: {', '.join(failed)}", "error")

    # ---------------------------------------------- #
    # Helpers
    def html_files(self) -> Iterator[Path]:
        return (p for p in self.staging_root.rglob("*.html") if p.is_file())

    def _scan_html(self, patterns: Iterable[re.Pattern]) -> List[str]:
        refs: List[str] = []
        patterns = list(patterns)
        for html_file in self.html_files():
            try:
                content = html_file.read_text(encoding="utf-8", errors="replace")
            except OSError:
                continue
            for pattern in patterns:
                refs.extend(pattern.findall(content))
        return refs

    def _copy(self, src: Path, dst: Path) -> bool:
        if not src.is_file():
            return False
        try:
            return self.assembler.copy_file(src, dst)
        except OSError as e:
            self.log.log(f"Failed to copy {src}: {e}", "error")
            return False

    # ---------------------------------------------- #
    # Themes
    def copy_themes(self) -> int:
        theme = self.source.active_theme()
        themes_dir = self.source.themes_dir
        if theme is None or not themes_dir.is_dir():
            return 0

        slugs = [theme.stylesheet]
        parent = self.source.parent_theme()
        if parent:
            slugs.append(parent)

        copied = 0
        for slug in slugs:
            src = themes_dir / slug
            if src.is_dir() and self.assembler.copy_tree(src, self.content_dest / "themes" / slug):
                copied += 1
        self.log.log(f"Themes copied: {', '.join(slugs)}", "debug")
        return copied

    # ---------------------------------------------- #
    # Uploads
    def referenced_attachment_ids(self) -> Set[int]:
        ids: Set[int] = set()
        for content_type in self.source.content_types():
            for entity in self.source.published_entities(content_type.name):
                if entity.thumbnail_id:
                    ids.add(entity.thumbnail_id)
                ids.update(int(m) for m in _WP_IMAGE_CLASS.findall(entity.content))
                for id_list in _GALLERY_IDS.findall(entity.content):
                    ids.update(int(i) for i in id_list.split(",") if i.strip().isdigit())

        icon = self.source.site_icon_id()
        if icon:
            ids.add(icon)

        mods = self.source.theme_mods()
        for key in ("custom_logo", "header_image_data", "background_image"):
            value = mods.get(key)
            if isinstance(value, dict):
                value = value.get("attachment_id")
            if isinstance(value, int) or (isinstance(value, str) and value.isdigit()):
                ids.add(int(value))

        ids.discard(0)
        return ids

    def copy_uploads(self) -> int:
        uploads_dir = self.source.uploads_dir
        if not uploads_dir.is_dir():
            return 0
        uploads_dest = self.content_dest / "uploads"

        copied = 0
        total_size = 0
        for attachment_id in sorted(self.referenced_attachment_ids()):
            attachment = self.source.attachment(attachment_id)
            if attachment is None:
                continue
            relative = _normalize(attachment.file)
            if relative is None:
                continue
            src = uploads_dir / relative
            if self._copy(src, uploads_dest / relative):
                copied += 1
                total_size += src.stat().st_size

            directory = posixpath.dirname(relative)
            for size in attachment.sizes.values():
                size_rel = posixpath.join(directory, size.file)
                size_src = uploads_dir / size_rel
                if self._copy(size_src, uploads_dest / size_rel):
                    copied += 1
                    total_size += size_src.stat().st_size

        self.log.log(f"Media copied: {copied} files ({total_size / 1024 / 1024:.2f}MB)", "debug")
        return copied + self.copy_referenced_upload_files(uploads_dir, uploads_dest)

    def copy_referenced_upload_files(self, uploads_dir: Path, uploads_dest: Path) -> int:
        """Non-media files under uploads (plugin-generated CSS and similar)."""
        refs = self._scan_html([_LINK_HREF, _SCRIPT_SRC, _CSS_URL])
        relatives: Set[str] = set()
        for ref in refs:
            match = re.search(r"wp-content/uploads/(.+)", _strip_query(ref).lstrip("/"))
            if not match or _DATED_UPLOAD.match(match.group(1)):
                continue
            relative = _normalize(match.group(1))
            if relative:
                relatives.add(relative)

        copied = sum(1 for rel in sorted(relatives) if self._copy(uploads_dir / rel, uploads_dest / rel))
        if copied:
            self.log.log(f"Generated upload files copied: {copied}", "debug")
        return copied

    # ---------------------------------------------- #
    # Plugins
    @staticmethod
    def normalize_plugin_path(path: str) -> Optional[str]:
        path = _strip_query(path).lstrip("/")
        match = re.search(r"(wp-content/plugins/[^\s\"']+)", path)
        return match.group(1) if match else None

    def referenced_plugin_assets(self) -> Set[str]:
        refs = self._scan_html([_LINK_HREF, _SCRIPT_SRC, _IMG_SRC, _STYLE_ATTR_URL])
        for srcset in self._scan_html([_SRCSET]):
            for part in srcset.split(","):
                refs.append(_SRCSET_DESCRIPTOR.sub("", part.strip()).strip())

        referenced: Set[str] = set()
        for ref in refs:
            if "wp-content/plugins/" not in ref:
                continue
            normalized = self.normalize_plugin_path(ref)
            if normalized:
                referenced.add(normalized)

        processed: Set[str] = set()
        for path in sorted(referenced):
            if path.lower().endswith(".css"):
                referenced |= self._css_plugin_refs(path, processed)
        return referenced

    def _plugin_source(self, relative: str) -> Optional[Path]:
        inner = _normalize(relative[len("wp-content/plugins/"):])
        return self.source.plugins_dir / inner if inner else None

    def _css_plugin_refs(self, css_path: str, processed: Set[str]) -> Set[str]:
        if css_path in processed:
            return set()
        processed.add(css_path)

        src = self._plugin_source(css_path)
        if src is None or not src.is_file():
            return set()
        try:
            content = src.read_text(encoding="utf-8", errors="replace")
        except OSError:
            return set()

        css_dir = posixpath.dirname(css_path)
        found: Set[str] = set()
        for pattern in (_CSS_IMPORT, _CSS_IMPORT_URL, _CSS_URL):
            for ref in pattern.findall(content):
                if _EXTERNAL.match(ref):
                    continue
                ref = _strip_query(ref)
                resolved = ref.lstrip("/") if ref.startswith("/") else _normalize(posixpath.join(css_dir, ref))
                if not resolved or not resolved.startswith("wp-content/plugins/"):
                    continue
                found.add(resolved)
                if resolved.lower().endswith(".css"):
                    found |= self._css_plugin_refs(resolved, processed)
        return found

    def copy_plugins(self) -> int:
        if not self.source.plugins_dir.is_dir():
            return 0
        assets = self.referenced_plugin_assets()
        copied = 0
        for relative in sorted(assets):
            src = self._plugin_source(relative)
            if src is not None and self._copy(src, self.staging_root / relative):
                copied += 1
        self.log.log(f"Plugin assets copied: {copied} files", "debug")
        return copied

    # ---------------------------------------------- #
    # Runtime (wp-includes)
    @staticmethod
    def parse_includes_path(url: str) -> Optional[str]:
        url = _strip_query(url)
        match = re.search(r"wp-includes/(.+)$", url)
        if not match or ".." in match.group(1):
            return None
        return match.group(1)

    @classmethod
    def resolve_includes_ref(cls, url: str, current_dir: str) -> Optional[str]:
        url = _strip_query(url)
        if not url or url.startswith("data:"):
            return None
        if re.match(r"^https?://", url, re.I):
            return cls.parse_includes_path(url)
        if url.startswith("/wp-includes/"):
            return _normalize(url[len("/wp-includes/"):])
        if url.startswith("/"):
            return None
        return _normalize(posixpath.join(current_dir, url))

    def referenced_runtime_files(self) -> List[str]:
        refs = set()
        for ref in self._scan_html([_SCRIPT_SRC, _LINK_HREF, _IMG_SRC]):
            path = self.parse_includes_path(ref)
            if path:
                refs.add(path)

        includes_dir = self.source.includes_dir
        queue = deque(sorted(refs))
        processed: Set[str] = set()
        while queue:
            current = queue.popleft()
            if current in processed:
                continue
            processed.add(current)
            if not current.lower().endswith(".css"):
                continue
            try:
                content = (includes_dir / current).read_text(encoding="utf-8", errors="replace")
            except OSError:
                continue
            current_dir = posixpath.dirname(current)
            for pattern in (_CSS_URL, _CSS_IMPORT, _CSS_IMPORT_URL):
                for ref in pattern.findall(content):
                    dep = self.resolve_includes_ref(ref, current_dir)
                    if dep and dep not in processed:
                        refs.add(dep)
                        queue.append(dep)
        return sorted(refs)

    def copy_runtime(self) -> int:
        includes_dir = self.source.includes_dir
        if not includes_dir.is_dir():
            return 0
        files = self.referenced_runtime_files()
        dest = self.staging_root / "wp-includes"
        copied = sum(1 for rel in files if self._copy(includes_dir / rel, dest / rel))
        self.log.log(f"wp-includes files copied: {copied}", "debug")
        return copied

    # ---------------------------------------------- #
    # Root files
    def copy_icons(self) -> None:
        icon_id = self.source.site_icon_id()
        site_root = self.source.site_root
        if icon_id:
            attachment = self.source.attachment(icon_id)
            relative = _normalize(attachment.file) if attachment else None
            icon = self.source.uploads_dir / relative if relative else None
            if icon is None or not icon.is_file():
                self.log.log("Site icon file not found", "error")
            else:
                try:
                    shutil.copyfile(icon, self.staging_root / "favicon.ico")
                    ext = icon.suffix.lower().lstrip(".")
                    if ext and ext != "ico":
                        shutil.copyfile(icon, self.staging_root / f"favicon.{ext}")
                except OSError as e:
                    self.log.log(f"Failed to copy favicon: {e}", "error")
        elif (site_root / "favicon.ico").is_file():
            try:
                shutil.copyfile(site_root / "favicon.ico", self.staging_root / "favicon.ico")
            except OSError as e:
                self.log.log(f"Failed to copy favicon.ico: {e}", "error")

        for name in EXTRA_ICON_FILES:
            src = site_root / name
            if src.is_file():
                try:
                    shutil.copyfile(src, self.staging_root / name)
                except OSError as e:
                    self.log.log(f"Failed to copy {name}: {e}", "warning")

    def write_robots_txt(self) -> None:
        try:
            (self.staging_root / "robots.txt").write_text("")
        except OSError as e:
            self.log.log(f"Failed to write robots.txt: {e}", "error")
