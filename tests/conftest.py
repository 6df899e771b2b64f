import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest

from staticgen.config import parse_settings
from staticgen.content import YamlContentSource
from staticgen.infra.http import HttpResponse
from staticgen.interfaces import ProgressSink
from staticgen.models import (
    Attachment,
    AttachmentSize,
    Author,
    ContentSnapshot,
    ContentType,
    Entity,
    Term,
    ThemeInfo,
)


SITE = "https://example.com/"


def make_response(status: int = 200, json_body: Any = None, body: Any = b"", headers: Optional[Dict] = None) -> HttpResponse:
    if json_body is not None:
        body = json.dumps(json_body).encode()
    elif isinstance(body, str):
        body = body.encode()
    return HttpResponse(status=status, headers=headers or {}, body=body)


class FakeHttp:
    """Records requests and answers from a route table.

    A route matches when the request URL equals or ends with its pattern.
    Each route holds a queue of answers; the last one repeats. An answer is
    an HttpResponse, an exception to raise, or a callable
    ``(method, url, kwargs) -> HttpResponse``.
    """

    def __init__(self):
        self.routes: List[Tuple[str, str, List[Any]]] = []
        self.calls: List[Tuple[str, str, Dict]] = []
        self.closed = 0

    def add(self, method: str, pattern: str, *answers: Any) -> "FakeHttp":
        self.routes.append((method, pattern, list(answers)))
        return self

    def calls_to(self, method: str, pattern: str) -> List[Tuple[str, str, Dict]]:
        return [c for c in self.calls if c[0] == method and (c[1] == pattern or c[1].endswith(pattern))]

    async def request(self, method: str, url: str, **kwargs) -> HttpResponse:
        self.calls.append((method, url, kwargs))
        for route_method, pattern, answers in self.routes:
            if route_method != method or not (url == pattern or url.endswith(pattern)):
                continue
            answer = answers.pop(0) if len(answers) > 1 else answers[0]
            if isinstance(answer, BaseException):
                raise answer
            if callable(answer):
                return answer(method, url, kwargs)
            return answer
        return make_response(404)

    async def close(self) -> None:
        self.closed += 1


class MemoryLog(ProgressSink):
    """In-memory progress sink."""

    def __init__(self):
        self.entries: List[Tuple[str, str]] = []
        self.progress: List[Tuple[int, int, str]] = []
        self.cleared = 0

    def log(self, message: str, level: str = "info") -> None:
        self.entries.append((level, message))

    def update_progress(self, current: int, total: int, status: str) -> None:
        self.progress.append((current, total, status))

    def clear_progress(self) -> None:
        self.progress = []

    def clear_logs(self) -> None:
        self.entries = []
        self.cleared += 1

    def error_count(self) -> int:
        return len(self.errors)

    @property
    def errors(self) -> List[str]:
        return [m for level, m in self.entries if level == "error"]

    @property
    def warnings(self) -> List[str]:
        return [m for level, m in self.entries if level == "warning"]


@pytest.fixture
def log():
    return MemoryLog()


@pytest.fixture
def fake_http():
    return FakeHttp()


@pytest.fixture
def snapshot():
    return ContentSnapshot(
        site_url=SITE,
        posts_per_page=2,
        content_types=[
            ContentType(name="post", builtin=True),
            ContentType(name="page", builtin=True),
            ContentType(name="product", has_archive=True, archive_url=f"{SITE}products/"),
            ContentType(name="internal", public=False),
        ],
        entities=[
            Entity(id=1, type="post", url=f"{SITE}2024/05/first/", modified=100.0,
                   date=datetime(2024, 5, 6), author_id=1, thumbnail_id=50,
                   content='<img class="wp-image-51" src="x.jpg">'),
            Entity(id=2, type="post", url=f"{SITE}2024/05/second/", modified=100.0,
                   date=datetime(2024, 5, 6), author_id=1),
            Entity(id=3, type="post", url=f"{SITE}2024/06/third/", modified=100.0,
                   date=datetime(2024, 6, 1), author_id=1),
            Entity(id=4, type="post", url=f"{SITE}2024/06/draft/", status="draft"),
            Entity(id=10, type="page", url=f"{SITE}about/", modified=100.0),
            Entity(id=20, type="product", url=f"{SITE}products/widget/", modified=100.0),
            Entity(id=30, type="internal", url=f"{SITE}internal/x/"),
        ],
        terms=[
            Term(id=1, taxonomy="category", url=f"{SITE}category/news/", count=3),
            Term(id=2, taxonomy="category", url=f"{SITE}category/empty/", count=0),
            Term(id=3, taxonomy="post_tag", url=f"{SITE}tag/intro/", count=1),
            Term(id=4, taxonomy="genre", url=f"{SITE}genre/jazz/", count=5),
            Term(id=5, taxonomy="post_format", url=f"{SITE}type/gallery/", count=1),
        ],
        custom_taxonomies=["genre"],
        authors=[
            Author(id=1, url=f"{SITE}author/admin/", post_count=3),
            Author(id=2, url=f"{SITE}author/ghost/", post_count=0),
        ],
        attachments=[
            Attachment(id=50, file="2024/05/cover.jpg",
                       sizes={"thumbnail": AttachmentSize(file="cover-150x150.jpg")}),
            Attachment(id=51, file="2024/05/photo.jpg"),
            Attachment(id=60, file="2024/05/icon.png"),
        ],
        theme=ThemeInfo(stylesheet="child", template="parent"),
    )


@pytest.fixture
def site_root(tmp_path):
    root = tmp_path / "site"
    (root / "wp-content").mkdir(parents=True)
    return root


@pytest.fixture
def source(snapshot, site_root):
    return YamlContentSource(snapshot, site_root)


@pytest.fixture
def make_settings(tmp_path):
    def factory(**sections) -> Any:
        raw: Dict[str, Any] = {
            "site": {"url": SITE, "root": str(tmp_path / "site")},
            "run": {"state_dir": str(tmp_path / "state")},
        }
        for name, values in sections.items():
            raw.setdefault(name, {}).update(values)
        return parse_settings(raw, environ={})
    return factory


def write(path: Path, content: str = "x") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path
