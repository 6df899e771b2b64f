import asyncio

import pytest

from conftest import write
from publishers.batch import (
    BatchPublisher,
    StagedFile,
    batch_message,
    changed_files,
    git_blob_sha,
    partition,
)
from staticgen.errors import PublishError, RunCancelled


class RecordingPublisher(BatchPublisher):
    name = "Recording"

    def __init__(self, log, exists=True, manifest=None, fail_batch=None, **kwargs):
        super().__init__(log, **kwargs)
        self.exists = exists
        self.manifest = manifest
        self.fail_batch = fail_batch
        self.created = False
        self.batches = []

    async def check_exists(self):
        return self.exists

    async def create(self):
        self.created = True

    async def fetch_manifest(self):
        if isinstance(self.manifest, Exception):
            raise self.manifest
        return self.manifest

    async def upload_batch(self, files, message):
        if len(self.batches) + 1 == self.fail_batch:
            raise PublishError("server said no", status=500)
        self.batches.append(([f.path for f in files], message))


async def no_sleep(_seconds):
    pass


@pytest.fixture
def staging(tmp_path):
    root = tmp_path / "staging"
    write(root / "index.html", "home")
    write(root / "about" / "index.html", "about")
    write(root / "wp-content" / "style.css", "body{}")
    return root


def test_git_blob_sha_matches_git():
    assert git_blob_sha(b"") == "e69de29bb2d1d6434b8b29ae775ad8c2e48c5391"
    assert git_blob_sha(b"hello\n") == "ce013625030ba8dba906f756967f9e9ca394464a"


def test_partition_and_batch_message():
    assert partition([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
    assert partition([1], 0) == [[1]]
    assert batch_message("update", 1, 1) == "update"
    assert batch_message("update", 2, 3) == "update (batch 2/3)"


def test_changed_files(tmp_path):
    a = StagedFile("a.html", tmp_path / "a.html", "1")
    b = StagedFile("b.html", tmp_path / "b.html", "2")
    assert changed_files([a, b], None) == [a, b]
    assert changed_files([a, b], {"a.html": "1", "b.html": "old"}) == [b]


def test_uploads_only_changed_files_in_ordered_batches(staging, log):
    manifest = {"index.html": git_blob_sha(b"home"), "about/index.html": "stale"}
    publisher = RecordingPublisher(log, manifest=manifest, batch_size=1, sleep=no_sleep)

    result = asyncio.run(publisher.publish(staging, "update"))

    assert publisher.batches == [
        (["about/index.html"], "update (batch 1/2)"),
        (["wp-content/style.css"], "update (batch 2/2)"),
    ]
    assert (result.uploaded, result.skipped, result.batches) == (2, 1, 2)


def test_no_changes(staging, log):
    manifest = {
        "index.html": git_blob_sha(b"home"),
        "about/index.html": git_blob_sha(b"about"),
        "wp-content/style.css": git_blob_sha(b"body{}"),
    }
    publisher = RecordingPublisher(log, manifest=manifest)

    result = asyncio.run(publisher.publish(staging, "update"))

    assert publisher.batches == []
    assert result.detail == "no changes"
    assert result.skipped == 3


def test_missing_destination_is_created(staging, log):
    publisher = RecordingPublisher(log, exists=False)
    asyncio.run(publisher.publish(staging, "update"))
    assert publisher.created
    assert len(publisher.batches[0][0]) == 3


def test_unreadable_manifest_uploads_everything(staging, log):
    publisher = RecordingPublisher(log, manifest=PublishError("tree unavailable"))
    result = asyncio.run(publisher.publish(staging, "update"))
    assert result.uploaded == 3
    assert any("uploading everything" in w for w in log.warnings)


def test_batch_failure_names_the_batch(staging, log):
    publisher = RecordingPublisher(log, batch_size=2, fail_batch=2, sleep=no_sleep)
    with pytest.raises(PublishError, match=r"Recording: batch 2/2 failed: server said no \(Status: 500\)"):
        asyncio.run(publisher.publish(staging, "update"))
    assert len(publisher.batches) == 1


def test_cancel_between_batches(staging, log):
    async def stop():
        return True

    publisher = RecordingPublisher(log, batch_size=1, should_stop=stop, sleep=no_sleep)
    with pytest.raises(RunCancelled):
        asyncio.run(publisher.publish(staging, "update"))
    assert len(publisher.batches) == 1


def test_delay_between_batches(staging, log):
    delays = []

    async def sleep(seconds):
        delays.append(seconds)

    publisher = RecordingPublisher(log, batch_size=1, batch_delay=2.5, sleep=sleep)
    asyncio.run(publisher.publish(staging, "update"))
    assert delays == [2.5, 2.5]
