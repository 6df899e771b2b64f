"""
Output assembly: the staging tree a run writes into and publishes from.
"""

import glob
import logging
import os
import shutil
from pathlib import Path
from typing import Iterable, List, Optional

from .errors import ValidationError
from .interfaces import ProgressSink
from .transformer import PageTransformer
from .validation import is_within, validate_include_path, validate_pattern


logger = logging.getLogger(__name__)

FORCED_EXCLUDE_PATTERNS = [
    "wp-content/staticgen-cache",
    "wp-content/staticgen-cache/*",
    "wp-content/uploads/wp2static-*",
    "wp-content/plugins/staticgen",
    "wp-content/plugins/staticgen/*",
    "wp-content/plugins/wp2static",
    "wp-content/plugins/wp2static/*",
    "wp-content/plugins/wp2static-addon-*",
    "wp-content/plugins/wp2static-addon-*/*",
    "wp-content/languages",
    "wp-content/languages/*",
]


def remove_path(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


class OutputAssembler:
    """Writes pages and copies files into the staging root."""

    def __init__(
        self,
        staging_root: Path,
        site_root: Path,
        content_dir: Path,
        log: ProgressSink,
        excluded_extensions: Iterable[str] = (),
        transformer: Optional[PageTransformer] = None,
    ):
        self.staging_root = Path(staging_root)
        self.site_root = Path(site_root)
        self.content_dir = Path(content_dir)
        self.log = log
        self.excluded_extensions = {ext.lower().lstrip(".") for ext in excluded_extensions}
        # set only in relative URL mode
        self.transformer = transformer

    # ---------------------------------------------- #
    # Staging lifecycle
    def prepare(self) -> None:
        """Create an empty staging root, dropping any left by an aborted run."""
        if self.staging_root.exists():
            logger.info(f"Removing stale staging directory {self.staging_root}")
            shutil.rmtree(self.staging_root)
        self.staging_root.mkdir(parents=True, mode=0o700)

    def cleanup(self) -> None:
        if self.staging_root.exists():
            shutil.rmtree(self.staging_root, ignore_errors=True)

    def write_page(self, path: str, body: str) -> Path:
        target = self.staging_root / path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(body, encoding="utf-8")
        return target

    # ---------------------------------------------- #
    # Copying
    def is_copyable(self, path: Path) -> bool:
        name = path.name
        if "\0" in name:
            return False
        if name.startswith(".") and name != ".htaccess":
            return False
        suffix = path.suffix.lower().lstrip(".")
        return suffix not in self.excluded_extensions

    def has_copyable(self, directory: Path) -> bool:
        """Whether ``directory`` holds at least one copyable file, at any depth."""
        try:
            entries = list(directory.iterdir())
        except OSError:
            return False
        for entry in entries:
            if entry.is_dir():
                if self.has_copyable(entry):
                    return True
            elif self.is_copyable(entry):
                return True
        return False

    def copy_file(self, src: Path, dst: Path) -> bool:
        """Copy one file, rewriting site URLs in CSS/JS when in relative mode."""
        if not self.is_copyable(src):
            return False
        dst.parent.mkdir(parents=True, exist_ok=True)
        suffix = src.suffix.lower().lstrip(".")
        if self.transformer and suffix in ("css", "js"):
            try:
                content = src.read_text(encoding="utf-8")
            except UnicodeDecodeError:
                shutil.copyfile(src, dst)
            else:
                dst.write_text(self.transformer.convert_asset(content, suffix), encoding="utf-8")
        else:
            shutil.copyfile(src, dst)
        return True

    def copy_tree(self, src: Path, dst: Path) -> bool:
        """Recursive copy honouring the extension denylist. Returns False on errors."""
        src = Path(src)
        if not src.is_dir():
            self.log.log(f"Source directory does not exist: {src}", "error")
            return False
        try:
            real_src = src.resolve(strict=True)
        except OSError:
            self.log.log(f"Could not resolve source path: {src}", "error")
            return False

        if not self.has_copyable(real_src):
            return True

        errors = self._copy_dir(real_src, Path(dst))
        if errors:
            self.log.log(f"Errors while copying {src}: {errors}", "error")
        return errors == 0

    def _copy_dir(self, real_src: Path, dst: Path) -> int:
        errors = 0
        try:
            dst.mkdir(parents=True, exist_ok=True)
            entries = sorted(real_src.iterdir())
        except OSError as e:
            self.log.log(f"Could not read directory {real_src}: {e}", "error")
            return 1

        for entry in entries:
            if "\0" in entry.name:
                continue
            try:
                real_entry = entry.resolve(strict=True)
            except OSError:
                real_entry = None
            if real_entry is None or not is_within(real_entry, real_src):
                self.log.log(f"Path traversal detected: {entry.name}", "error")
                continue

            if real_entry.is_dir():
                if self.has_copyable(real_entry):
                    errors += self._copy_dir(real_entry, dst / entry.name)
                continue

            try:
                self.copy_file(real_entry, dst / entry.name)
            except OSError as e:
                self.log.log(f"Failed to copy {real_entry}: {e}", "error")
                errors += 1
        return errors

    def copy_includes(self, paths: Iterable[str]) -> int:
        """Copy user-listed files or directories to the staging root."""
        copied = 0
        errors = 0
        for raw in paths:
            raw = raw.strip()
            if not raw:
                continue
            try:
                real = validate_include_path(raw, self.site_root, self.content_dir)
            except ValidationError as e:
                self.log.log(str(e), "error")
                errors += 1
                continue

            dest = self.staging_root / real.name
            if real.is_file():
                try:
                    shutil.copyfile(real, dest)
                    copied += 1
                except OSError as e:
                    self.log.log(f"Failed to copy {real}: {e}", "error")
                    errors += 1
            elif self.copy_tree(real, dest):
                copied += 1
            else:
                errors += 1

        if copied or errors:
            self.log.log(f"Extra files: {copied} copied, {errors} errors", "debug")
        return copied

    # ---------------------------------------------- #
    # Exclusions
    def apply_exclusions(self, user_patterns: Iterable[str] = ()) -> int:
        patterns: List[str] = list(FORCED_EXCLUDE_PATTERNS)
        for raw in user_patterns:
            if not raw.strip():
                continue
            try:
                patterns.append(validate_pattern(raw))
            except ValidationError as e:
                self.log.log(str(e), "error")

        removed = 0
        for pattern in patterns:
            for match in glob.glob(os.path.join(str(self.staging_root), pattern)):
                path = Path(match)
                if not path.exists() and not path.is_symlink():
                    continue
                try:
                    remove_path(path)
                    removed += 1
                except OSError as e:
                    self.log.log(f"Failed to remove {path}: {e}", "error")

        if removed:
            self.log.log(f"Excluded files removed: {removed}")
        return removed
