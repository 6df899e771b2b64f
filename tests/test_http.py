from email.utils import format_datetime
from datetime import datetime, timedelta, timezone

from staticgen.infra.http import HttpClient, HttpResponse, retry_after_seconds


def test_retry_after_seconds():
    assert retry_after_seconds("12") == 12.0
    assert retry_after_seconds(None) is None
    assert retry_after_seconds("soon") is None

    later = format_datetime(datetime.now(timezone.utc) + timedelta(seconds=90), usegmt=True)
    assert 80 < retry_after_seconds(later) <= 90

    earlier = format_datetime(datetime.now(timezone.utc) - timedelta(hours=1), usegmt=True)
    assert retry_after_seconds(earlier) == 0.0


def test_response_helpers():
    resp = HttpResponse(status=201, headers={"X-Total-Pages": "3"}, body=b'{"a": 1}')
    assert resp.ok
    assert resp.header("x-total-pages") == "3"
    assert resp.header("missing", "d") == "d"
    assert resp.json() == {"a": 1}
    assert HttpResponse(status=500, body=b"<html>").json() is None
    assert not HttpResponse(status=404).ok


def test_backoff_prefers_retry_after_and_caps():
    client = HttpClient(backoff_base=1.0, backoff_cap=8.0)
    assert client._delay(3, retry_after=5.0) == 5.0
    assert 1.0 <= client._delay(1) <= 2.0
    assert 8.0 <= client._delay(10) <= 9.0
