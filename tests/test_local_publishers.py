import asyncio
import zipfile
from datetime import datetime

from conftest import write
from publishers.archive import ZipPublisher, archive_name
from publishers.local import LocalPublisher
from staticgen.config import LocalPublisherSettings, ZipPublisherSettings


def staged(tmp_path):
    root = tmp_path / "staging"
    write(root / "index.html", "home")
    write(root / "about" / "index.html", "about")
    write(root / "old.zip", "zip")
    (root / "empty").mkdir()
    return root


def test_local_publisher_replaces_target(tmp_path, log):
    root = staged(tmp_path)
    target = tmp_path / "out"
    write(target / "stale.html", "old")
    publisher = LocalPublisher(LocalPublisherSettings(enabled=True, path=str(target)), log)

    result = asyncio.run(publisher.publish(root, "update"))

    assert not (target / "stale.html").exists()
    assert (target / "about" / "index.html").read_text() == "about"
    assert result.uploaded == 3


def test_archive_name():
    assert archive_name(datetime(2024, 5, 6, 7, 8, 9)) == "static-output-20240506_070809.zip"


def test_zip_publisher_writes_files_only(tmp_path, log):
    root = staged(tmp_path)
    out = tmp_path / "archives"
    publisher = ZipPublisher(
        ZipPublisherSettings(output_dir=str(out)), log, now=lambda: datetime(2024, 5, 6, 7, 8, 9)
    )

    result = asyncio.run(publisher.publish(root, "update"))

    path = out / "static-output-20240506_070809.zip"
    with zipfile.ZipFile(path) as zf:
        assert sorted(zf.namelist()) == ["about/index.html", "index.html"]
        assert zf.read("index.html") == b"home"
        assert zf.getinfo("index.html").compress_type == zipfile.ZIP_DEFLATED
    assert result.uploaded == 2
    assert result.detail == str(path)
