"""
Zip archive publisher.
"""

import logging
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Callable

from staticgen.config import ZipPublisherSettings
from staticgen.errors import PublishError
from staticgen.interfaces import ProgressSink, Publisher
from staticgen.models import PublishResult

from .batch import relative_posix, walk_files


logger = logging.getLogger(__name__)


def archive_name(now: datetime) -> str:
    return f"static-output-{now.strftime('%Y%m%d_%H%M%S')}.zip"


class ZipPublisher(Publisher):
    """Writes the staged site to a timestamped zip file."""

    name = "Zip archive"

    def __init__(
        self,
        settings: ZipPublisherSettings,
        log: ProgressSink,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.output_dir = Path(settings.output_dir)
        self.log = log
        self._now = now

    async def publish(self, staging_root: Path, message: str) -> PublishResult:
        root = Path(staging_root)
        zip_path = self.output_dir / archive_name(self._now())

        count = 0
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            # only files are written, so empty directories never appear
            with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as zf:
                for path in walk_files(root):
                    if path.suffix == ".zip":
                        continue
                    zf.write(path, relative_posix(path, root))
                    count += 1
        except OSError as e:
            raise PublishError(f"Failed to write {zip_path}: {e}") from e

        size_mb = zip_path.stat().st_size / 1024 / 1024
        self.log.log(f"Zip output complete: {zip_path.name} ({size_mb:.2f}MB)")
        return PublishResult(publisher=self.name, uploaded=count, detail=str(zip_path))
