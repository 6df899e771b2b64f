"""
Shared diff-and-batch upload loop for repository-style publishers.

A subclass answers four questions (does the destination exist, how to
create it, what is already there, how to upload one batch) and
:meth:`BatchPublisher.publish` does the rest: hash the staged tree,
diff it against the remote manifest and push the changes in ordered
batches, one commit per batch.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from abc import abstractmethod
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, NamedTuple, Optional, Sequence, TypeVar

from staticgen.errors import PublishError, RunCancelled
from staticgen.interfaces import ProgressSink, Publisher
from staticgen.models import PublishResult


logger = logging.getLogger(__name__)

T = TypeVar("T")

StopCheck = Callable[[], Awaitable[bool]]
Sleep = Callable[[float], Awaitable[None]]


class StagedFile(NamedTuple):
    path: str           # posix path relative to the staging root
    source: Path
    digest: str

    def read(self) -> bytes:
        return self.source.read_bytes()


def git_blob_sha(content: bytes) -> str:
    """SHA-1 of a git blob object, as reported by tree listings."""
    header = f"blob {len(content)}\0".encode()
    return hashlib.sha1(header + content).hexdigest()


def walk_files(root: Path) -> List[Path]:
    """Regular files below ``root`` in a stable order."""
    return sorted(p for p in Path(root).rglob("*") if p.is_file())


def relative_posix(path: Path, root: Path) -> str:
    return path.relative_to(root).as_posix()


def partition(items: Sequence[T], size: int) -> List[List[T]]:
    size = max(1, size)
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def changed_files(local: Sequence[StagedFile], remote: Optional[Dict[str, str]]) -> List[StagedFile]:
    """Files that are new or whose hash differs from the remote manifest."""
    if remote is None:
        return list(local)
    return [f for f in local if remote.get(f.path) != f.digest]


def batch_message(message: str, index: int, total: int) -> str:
    if total <= 1:
        return message
    return f"{message} (batch {index}/{total})"


class BatchPublisher(Publisher):
    """Diff the staged tree against a remote manifest and upload in batches."""

    name = "BatchPublisher"

    def __init__(
        self,
        log: ProgressSink,
        batch_size: int = 300,
        batch_delay: float = 2.0,
        should_stop: Optional[StopCheck] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.log = log
        self.batch_size = max(1, batch_size)
        self.batch_delay = batch_delay
        self.should_stop = should_stop
        self._sleep = sleep

    # ---------------------------------------------- #
    # Destination specific
    @abstractmethod
    async def check_exists(self) -> bool:
        pass

    @abstractmethod
    async def create(self) -> None:
        pass

    async def prepare_branch(self, message: str) -> None:
        """Make sure the target branch can be committed to."""

    @abstractmethod
    async def fetch_manifest(self) -> Optional[Dict[str, str]]:
        """``{path: hash}`` of the current remote tree, or None if it has no commit."""

    @abstractmethod
    async def upload_batch(self, files: List[StagedFile], message: str) -> None:
        """Upload one batch as a single commit. Raises PublishError."""

    def content_hash(self, content: bytes) -> str:
        return git_blob_sha(content)

    # ---------------------------------------------- #
    # Shared algorithm
    def staged_files(self, staging_root: Path) -> List[StagedFile]:
        root = Path(staging_root)
        return [
            StagedFile(relative_posix(p, root), p, self.content_hash(p.read_bytes()))
            for p in walk_files(root)
        ]

    async def _check_stop(self) -> None:
        if self.should_stop and await self.should_stop():
            raise RunCancelled(f"Cancelled during {self.name} upload")

    async def publish(self, staging_root: Path, message: str) -> PublishResult:
        if not await self.check_exists():
            self.log.log(f"{self.name}: destination not found, creating it")
            await self.create()

        await self.prepare_branch(message)

        try:
            manifest = await self.fetch_manifest()
        except PublishError as e:
            self.log.log(f"{self.name}: could not read remote files, uploading everything ({e})", "warning")
            manifest = None

        local = self.staged_files(staging_root)
        changed = changed_files(local, manifest)
        skipped = len(local) - len(changed)
        if not changed:
            self.log.log(f"{self.name}: no changes to upload")
            return PublishResult(publisher=self.name, skipped=skipped, detail="no changes")

        batches = partition(changed, self.batch_size)
        self.log.log(f"{self.name}: uploading {len(changed)} files in {len(batches)} batches ({skipped} unchanged)")

        for index, batch in enumerate(batches, 1):
            if index > 1:
                await self._check_stop()
                await self._sleep(self.batch_delay)
            try:
                await self.upload_batch(batch, batch_message(message, index, len(batches)))
            except PublishError as e:
                raise PublishError(f"{self.name}: batch {index}/{len(batches)} failed: {e}") from e
            self.log.log(f"{self.name}: batch {index}/{len(batches)} committed ({len(batch)} files)", "debug")

        return PublishResult(
            publisher=self.name,
            uploaded=len(changed),
            skipped=skipped,
            batches=len(batches),
        )
