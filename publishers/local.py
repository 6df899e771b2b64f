"""
Local directory publisher.
"""

import logging
import shutil
from pathlib import Path

from staticgen.config import LocalPublisherSettings
from staticgen.errors import PublishError
from staticgen.interfaces import ProgressSink, Publisher
from staticgen.models import PublishResult

from .batch import walk_files


logger = logging.getLogger(__name__)


def clear_directory(directory: Path, keep: tuple = ()) -> None:
    """Remove everything inside ``directory`` except the names in ``keep``."""
    for entry in directory.iterdir():
        if entry.name in keep:
            continue
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()


def copy_contents(src: Path, dst: Path) -> int:
    """Copy the tree below ``src`` into ``dst``. Returns the number of files."""
    count = 0
    for path in walk_files(src):
        target = dst / path.relative_to(src)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(path, target)
        count += 1
    return count


class LocalPublisher(Publisher):
    """Mirrors the staged site into a directory on this machine."""

    name = "Local directory"

    def __init__(self, settings: LocalPublisherSettings, log: ProgressSink):
        self.target = Path(settings.path)
        self.log = log

    async def publish(self, staging_root: Path, message: str) -> PublishResult:
        try:
            self.target.mkdir(parents=True, exist_ok=True)
            clear_directory(self.target)
            count = copy_contents(Path(staging_root), self.target)
        except OSError as e:
            raise PublishError(f"Local output to {self.target} failed: {e}") from e

        self.log.log(f"Local output complete: {self.target} ({count} files)")
        return PublishResult(publisher=self.name, uploaded=count)
