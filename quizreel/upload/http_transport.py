from __future__ import annotations

import json
import logging
from typing import Any
from urllib import request
from urllib.error import HTTPError, URLError

from quizreel.upload.coordinator import (
    CompletedPart,
    MultipartUploadTarget,
    PresignedPart,
    SingleUploadTarget,
    UploadError,
)

logger = logging.getLogger(__name__)

SINGLE_UPLOAD_PATH = "/live-streams/single_upload"
MULTIPART_UPLOAD_PATH = "/live-streams/multipart_upload"
COMPLETE_UPLOAD_PATH = "/live-streams/video_upload/complete"
FAILED_STATUSES = {"error", "failed", "failure"}


class HttpUploadTransport:
    """Upload API client: JSON control calls plus raw PUTs to presigned URLs."""

    def __init__(self, api_base_url: str, *, timeout_seconds: int = 120) -> None:
        self.api_base_url = api_base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    def init_single(self, filename: str, filesize: int) -> SingleUploadTarget:
        data = self._post_json(SINGLE_UPLOAD_PATH, {"filename": filename, "filesize": filesize})
        try:
            return SingleUploadTarget(
                asset_id=str(data["asset_id"]),
                upload_url=str(data["presigned_url"]),
                storage_key=data.get("s3_key"),
            )
        except KeyError as exc:
            raise UploadError(f"Single upload response is missing {exc}.") from exc

    def init_multipart(self, filename: str, filesize: int, part_count: int) -> MultipartUploadTarget:
        data = self._post_json(
            MULTIPART_UPLOAD_PATH,
            {"filename": filename, "filesize": filesize, "chunks": part_count},
        )
        try:
            parts = [
                PresignedPart(part_number=int(row["partNumber"]), url=str(row["url"]))
                for row in data["presigned_parts"]
            ]
            part_size = data.get("part_size")
            return MultipartUploadTarget(
                asset_id=str(data["asset_id"]),
                upload_id=str(data["upload_id"]),
                parts=sorted(parts, key=lambda part: part.part_number),
                part_size=int(part_size) if part_size else None,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise UploadError(f"Multipart upload response is malformed: {exc}") from exc

    def upload_part(self, url: str, data: bytes) -> str:
        req = request.Request(url, data=data, method="PUT")
        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                etag = response.headers.get("ETag")
        except HTTPError as exc:
            raise UploadError(f"Part upload rejected with HTTP {exc.code}.") from exc
        except (URLError, TimeoutError) as exc:
            raise UploadError(f"Part upload failed: {exc}") from exc

        if not etag:
            raise UploadError("Storage response did not include an ETag header.")
        return etag.replace('"', "")

    def complete(
        self,
        asset_id: str,
        upload_id: str | None = None,
        parts: list[CompletedPart] | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"asset_id": asset_id}
        if upload_id is not None:
            body["upload_id"] = upload_id
            body["parts"] = [{"PartNumber": part.part_number, "ETag": part.etag} for part in parts or []]
        return self._post_json(COMPLETE_UPLOAD_PATH, body)

    def _post_json(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.api_base_url}{path}"
        logger.debug("POST %s", url)
        req = request.Request(
            url,
            data=json.dumps(body).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                payload = json.loads(response.read().decode("utf-8"))
        except HTTPError as exc:
            raise UploadError(f"{path} returned HTTP {exc.code}.") from exc
        except (URLError, TimeoutError) as exc:
            raise UploadError(f"{path} request failed: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise UploadError(f"{path} returned invalid JSON.") from exc

        if not isinstance(payload, dict):
            raise UploadError(f"{path} returned an unexpected payload.")
        if str(payload.get("status", "")).lower() in FAILED_STATUSES:
            raise UploadError(f"{path} reported status {payload.get('status')!r}: {payload.get('message', '')}")
        data = payload.get("data", payload)
        if not isinstance(data, dict):
            raise UploadError(f"{path} response has no data object.")
        return data
