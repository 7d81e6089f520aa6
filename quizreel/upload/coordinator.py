from __future__ import annotations

import logging
import math
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_THRESHOLD_BYTES = 50 * 1024 * 1024
DEFAULT_PART_SIZE_BYTES = 50 * 1024 * 1024
DEFAULT_MAX_CONCURRENT_PARTS = 3

UploadProgress = Callable[[int, int], None]


class UploadError(RuntimeError):
    """Raised when an upload cannot be initialised, transferred or completed."""


class UploadPartError(UploadError):
    def __init__(self, part_number: int, message: str) -> None:
        super().__init__(f"Part {part_number} failed: {message}")
        self.part_number = part_number


@dataclass(slots=True, frozen=True)
class SingleUploadTarget:
    asset_id: str
    upload_url: str
    storage_key: str | None = None


@dataclass(slots=True, frozen=True)
class PresignedPart:
    part_number: int
    url: str


@dataclass(slots=True, frozen=True)
class MultipartUploadTarget:
    asset_id: str
    upload_id: str
    parts: list[PresignedPart]
    part_size: int | None = None


@dataclass(slots=True, frozen=True)
class CompletedPart:
    part_number: int
    etag: str


@dataclass(slots=True)
class UploadResult:
    asset_id: str
    size_bytes: int
    upload_id: str | None = None
    parts: list[CompletedPart] = field(default_factory=list)
    response: dict[str, Any] = field(default_factory=dict)

    @property
    def multipart(self) -> bool:
        return self.upload_id is not None


class UploadTransport(Protocol):
    """Storage-side calls the coordinator needs; see ``HttpUploadTransport``."""

    def init_single(self, filename: str, filesize: int) -> SingleUploadTarget: ...

    def init_multipart(self, filename: str, filesize: int, part_count: int) -> MultipartUploadTarget: ...

    def upload_part(self, url: str, data: bytes) -> str: ...

    def complete(
        self,
        asset_id: str,
        upload_id: str | None = None,
        parts: list[CompletedPart] | None = None,
    ) -> dict[str, Any]: ...


class ChunkedUploadCoordinator:
    """Uploads one file, switching to parallel multipart above a size threshold.

    Workers claim part numbers from a shared queue and record each part's tag
    by number; the completion request always lists parts in ascending order.
    The first failed part stops the remaining workers from claiming more.
    """

    def __init__(
        self,
        transport: UploadTransport,
        *,
        threshold_bytes: int = DEFAULT_CHUNK_THRESHOLD_BYTES,
        part_size_bytes: int = DEFAULT_PART_SIZE_BYTES,
        max_workers: int = DEFAULT_MAX_CONCURRENT_PARTS,
        max_part_retries: int = 0,
        retry_backoff_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if part_size_bytes <= 0:
            raise ValueError("part_size_bytes must be positive.")
        self.transport = transport
        self.threshold_bytes = threshold_bytes
        self.part_size_bytes = part_size_bytes
        self.max_workers = max(1, max_workers)
        self.max_part_retries = max(0, max_part_retries)
        self.retry_backoff_seconds = retry_backoff_seconds
        self._sleep = sleep

    def upload(self, path: str | Path, progress: UploadProgress | None = None) -> UploadResult:
        source = Path(path).expanduser()
        if not source.is_file():
            raise UploadError(f"Upload source does not exist: {source}")

        size = source.stat().st_size
        if size == 0:
            raise UploadError(f"Upload source is empty: {source}")

        if size <= self.threshold_bytes:
            return self._upload_single(source, size, progress)
        return self._upload_multipart(source, size, progress)

    def part_count(self, size: int) -> int:
        return math.ceil(size / self.part_size_bytes)

    def _upload_single(self, source: Path, size: int, progress: UploadProgress | None) -> UploadResult:
        logger.info("Uploading %s (%d bytes) in a single request", source.name, size)
        target = self.transport.init_single(source.name, size)
        self._put_with_retry(1, target.upload_url, source.read_bytes())
        if progress is not None:
            progress(size, size)

        response = self.transport.complete(target.asset_id)
        return UploadResult(asset_id=target.asset_id, size_bytes=size, response=response)

    def _upload_multipart(self, source: Path, size: int, progress: UploadProgress | None) -> UploadResult:
        requested_parts = self.part_count(size)
        target = self.transport.init_multipart(source.name, size, requested_parts)
        part_size = target.part_size or self.part_size_bytes
        expected_parts = math.ceil(size / part_size)
        if len(target.parts) != expected_parts:
            raise UploadError(
                f"Server returned {len(target.parts)} presigned parts, expected {expected_parts} "
                f"for {size} bytes at {part_size} bytes per part."
            )

        logger.info(
            "Uploading %s (%d bytes) in %d parts with %d workers",
            source.name,
            size,
            expected_parts,
            self.max_workers,
        )

        pending: queue.Queue[PresignedPart] = queue.Queue()
        for part in target.parts:
            pending.put(part)

        tags: dict[int, str] = {}
        lock = threading.Lock()
        stop = threading.Event()
        uploaded_bytes = 0

        def _worker() -> None:
            nonlocal uploaded_bytes
            while not stop.is_set():
                try:
                    part = pending.get_nowait()
                except queue.Empty:
                    return
                try:
                    data = _read_part(source, part.part_number, part_size)
                except OSError as exc:
                    stop.set()
                    raise UploadPartError(part.part_number, f"could not read part from {source}: {exc}") from exc
                try:
                    etag = self._put_with_retry(part.part_number, part.url, data)
                except UploadPartError:
                    stop.set()
                    raise
                with lock:
                    tags[part.part_number] = etag
                    uploaded_bytes += len(data)
                    if progress is not None:
                        progress(uploaded_bytes, size)
                logger.debug("Part %d uploaded (%d bytes)", part.part_number, len(data))

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [executor.submit(_worker) for _ in range(min(self.max_workers, expected_parts))]
        for future in futures:
            future.result()

        completed = [CompletedPart(part_number=number, etag=tags[number]) for number in sorted(tags)]
        if len(completed) != expected_parts:
            raise UploadError(f"Only {len(completed)} of {expected_parts} parts were uploaded.")

        response = self.transport.complete(target.asset_id, target.upload_id, completed)
        return UploadResult(
            asset_id=target.asset_id,
            size_bytes=size,
            upload_id=target.upload_id,
            parts=completed,
            response=response,
        )

    def _put_with_retry(self, part_number: int, url: str, data: bytes) -> str:
        last_error: Exception | None = None
        for attempt in range(self.max_part_retries + 1):
            if attempt:
                delay = self.retry_backoff_seconds * (2 ** (attempt - 1))
                logger.warning("Retrying part %d in %.1fs (attempt %d): %s", part_number, delay, attempt + 1, last_error)
                self._sleep(delay)
            try:
                return self.transport.upload_part(url, data)
            except (UploadError, OSError) as exc:
                last_error = exc
        raise UploadPartError(part_number, str(last_error)) from last_error


def _read_part(source: Path, part_number: int, part_size: int) -> bytes:
    with source.open("rb") as handle:
        handle.seek((part_number - 1) * part_size)
        return handle.read(part_size)
