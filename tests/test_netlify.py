import asyncio
import hashlib

import pytest

from conftest import make_response, write
from publishers.netlify import NetlifyPublisher
from staticgen.config import NetlifySettings
from staticgen.errors import PublishError


API = "https://api.netlify.com/api/v1"


def sha1(content: bytes) -> str:
    return hashlib.sha1(content).hexdigest()


@pytest.fixture
def staging(tmp_path):
    root = tmp_path / "staging"
    write(root / "index.html", "home")
    write(root / "about" / "index.html", "about")
    write(root / "a b.html", "spaced")
    return root


@pytest.fixture
def publisher(log, fake_http):
    return NetlifyPublisher(NetlifySettings(enabled=True, api_token="tok", site_id="s1"), log, http=fake_http)


def test_requires_token_and_site(log, fake_http):
    with pytest.raises(PublishError):
        NetlifyPublisher(NetlifySettings(enabled=True, site_id="s1"), log, http=fake_http)


def test_uploads_only_required_digests(publisher, staging, fake_http, log):
    fake_http.add("POST", f"{API}/sites/s1/deploys",
                  make_response(200, {"id": "d1", "required": [sha1(b"about"), sha1(b"spaced")]}))
    fake_http.add("PUT", f"{API}/deploys/d1/files/about/index.html", make_response(200, {}))
    fake_http.add("PUT", f"{API}/deploys/d1/files/a%20b.html", make_response(500, {}))

    result = asyncio.run(publisher.publish(staging, "update:20240101"))

    deploy = fake_http.calls_to("POST", f"{API}/sites/s1/deploys")[0][2]
    assert deploy["json"] == {
        "files": {
            "/a b.html": sha1(b"spaced"),
            "/about/index.html": sha1(b"about"),
            "/index.html": sha1(b"home"),
        },
        "title": "update:20240101",
    }
    assert deploy["headers"]["Authorization"] == "Bearer tok"

    upload = fake_http.calls_to("PUT", f"{API}/deploys/d1/files/about/index.html")[0][2]
    assert upload["data"] == b"about"
    assert upload["headers"]["Content-Type"] == "application/octet-stream"
    assert any("a b.html" in e for e in log.errors)
    assert (result.uploaded, result.skipped) == (1, 1)


def test_deploy_rejected(publisher, staging, fake_http):
    fake_http.add("POST", f"{API}/sites/s1/deploys", make_response(401, {"message": "Access Denied"}))
    with pytest.raises(PublishError, match="Access Denied"):
        asyncio.run(publisher.publish(staging, "update"))
