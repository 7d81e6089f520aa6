from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Protocol, Sequence

logger = logging.getLogger(__name__)


class EngineError(RuntimeError):
    """Raised when the transcoding engine cannot complete an operation."""


class TranscodingEngine(Protocol):
    """The four primitives the compiler needs from a transcoder.

    File names are flat names inside the engine's private workspace.
    """

    def write_file(self, name: str, data: bytes) -> None: ...

    def exec(self, args: Sequence[str]) -> None: ...

    def read_file(self, name: str) -> bytes: ...

    def delete_file(self, name: str) -> None: ...


class FfmpegEngine:
    """ffmpeg subprocess wrapper operating inside one temporary workspace.

    A job owns one instance; ``close`` removes the whole workspace.
    """

    def __init__(
        self,
        work_dir: str | Path | None = None,
        *,
        binary: str = "ffmpeg",
        timeout_seconds: float | None = None,
    ) -> None:
        parent = Path(work_dir).expanduser().resolve() if work_dir else None
        if parent is not None:
            parent.mkdir(parents=True, exist_ok=True)
        self.workspace = Path(tempfile.mkdtemp(prefix="quizreel-", dir=parent))
        self.binary = binary
        self.timeout_seconds = timeout_seconds
        self._closed = False

    def __enter__(self) -> FfmpegEngine:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def write_file(self, name: str, data: bytes) -> None:
        self._path(name).write_bytes(data)

    def read_file(self, name: str) -> bytes:
        try:
            return self._path(name).read_bytes()
        except FileNotFoundError as exc:
            raise EngineError(f"Engine output not found: {name}") from exc

    def delete_file(self, name: str) -> None:
        self._path(name).unlink(missing_ok=True)

    def list_files(self) -> list[str]:
        return sorted(path.name for path in self.workspace.iterdir())

    def exec(self, args: Sequence[str]) -> None:
        command = [self.binary, "-hide_banner", "-v", "error", *args]
        logger.debug("Running %s", shlex.join(command))
        try:
            subprocess.run(
                command,
                cwd=self.workspace,
                check=True,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
        except FileNotFoundError as exc:
            raise EngineError(
                "ffmpeg executable was not found. Install FFmpeg so ffmpeg is available on PATH."
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise EngineError(f"ffmpeg timed out after {self.timeout_seconds}s") from exc
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or "").strip()
            details = f": {stderr.splitlines()[-1]}" if stderr else ""
            raise EngineError(f"ffmpeg exited with status {exc.returncode}{details}") from exc

    def close(self) -> None:
        if self._closed:
            return
        shutil.rmtree(self.workspace, ignore_errors=True)
        self._closed = True

    def _path(self, name: str) -> Path:
        if self._closed:
            raise EngineError("Engine workspace is already closed.")
        if not name or Path(name).name != name:
            raise EngineError(f"Engine file names must be flat, got {name!r}")
        return self.workspace / name
