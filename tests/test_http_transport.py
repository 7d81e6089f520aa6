from __future__ import annotations

import io
import json
from email.message import Message
from urllib.error import HTTPError

import pytest

import quizreel.upload.http_transport as http_transport
from quizreel.upload.coordinator import CompletedPart, UploadError
from quizreel.upload.http_transport import HttpUploadTransport


class _Response:
    def __init__(self, body: bytes = b"", headers: dict[str, str] | None = None) -> None:
        self._body = body
        self.headers = Message()
        for key, value in (headers or {}).items():
            self.headers[key] = value

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> _Response:
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None


def _capture(monkeypatch, response: _Response) -> list:
    requests = []

    def _urlopen(req, timeout):
        requests.append(req)
        return response

    monkeypatch.setattr(http_transport.request, "urlopen", _urlopen)
    return requests


def test_init_multipart_parses_presigned_parts(monkeypatch) -> None:
    body = {
        "status": "success",
        "data": {
            "asset_id": "a1",
            "upload_id": "u1",
            "part_size": 1024,
            "presigned_parts": [{"partNumber": 2, "url": "https://s/2"}, {"partNumber": 1, "url": "https://s/1"}],
        },
    }
    requests = _capture(monkeypatch, _Response(json.dumps(body).encode("utf-8")))

    target = HttpUploadTransport("http://api/").init_multipart("video.mp4", 2048, 2)

    assert requests[0].full_url == "http://api/live-streams/multipart_upload"
    assert json.loads(requests[0].data) == {"filename": "video.mp4", "filesize": 2048, "chunks": 2}
    assert [part.part_number for part in target.parts] == [1, 2]
    assert (target.asset_id, target.upload_id, target.part_size) == ("a1", "u1", 1024)


def test_upload_part_strips_etag_quotes(monkeypatch) -> None:
    requests = _capture(monkeypatch, _Response(headers={"ETag": '"abc123"'}))

    etag = HttpUploadTransport("http://api").upload_part("https://s/1", b"data")

    assert etag == "abc123"
    assert requests[0].get_method() == "PUT"


def test_upload_part_without_etag_fails(monkeypatch) -> None:
    _capture(monkeypatch, _Response())

    with pytest.raises(UploadError, match="ETag"):
        HttpUploadTransport("http://api").upload_part("https://s/1", b"data")


def test_complete_sends_sorted_parts_payload(monkeypatch) -> None:
    requests = _capture(monkeypatch, _Response(b'{"status": "success"}'))

    HttpUploadTransport("http://api").complete(
        "a1", "u1", [CompletedPart(1, "e1"), CompletedPart(2, "e2")]
    )

    assert requests[0].full_url == "http://api/live-streams/video_upload/complete"
    assert json.loads(requests[0].data) == {
        "asset_id": "a1",
        "upload_id": "u1",
        "parts": [{"PartNumber": 1, "ETag": "e1"}, {"PartNumber": 2, "ETag": "e2"}],
    }


def test_http_error_is_wrapped(monkeypatch) -> None:
    def _urlopen(req, timeout):
        raise HTTPError(req.full_url, 503, "unavailable", Message(), io.BytesIO(b""))

    monkeypatch.setattr(http_transport.request, "urlopen", _urlopen)

    with pytest.raises(UploadError, match="HTTP 503"):
        HttpUploadTransport("http://api").init_single("video.mp4", 10)
