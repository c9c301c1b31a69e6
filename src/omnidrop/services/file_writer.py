"""
Writes dropped files below a single base directory.

Every path is rejected syntactically, composed, canonicalized and then
checked to sit under the canonical base before anything touches the disk.
"""
import logging
import os
import posixpath
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from omnidrop.errors import (
    DomainError,
    ErrorCode,
    already_exists_error,
    filesystem_error,
    validation_error,
)
from omnidrop.metrics import MetricsSink

logger = logging.getLogger(__name__)

DIR_MODE = 0o755
FILE_MODE = 0o644

_SEPARATORS = tuple(s for s in (os.sep, os.altsep, "/") if s)


@dataclass(frozen=True)
class WriteResult:
    path: str
    size: int


def _invalid_path(detail: str) -> DomainError:
    return validation_error(f"invalid path: {detail}")


def _clean_directory(directory: str) -> str:
    """Normalize a subdirectory the way a POSIX path cleaner would."""
    normalized = directory.replace("\\", "/") if os.altsep else directory
    cleaned = posixpath.normpath(normalized)
    return "" if cleaned == "." else cleaned


def resolve_target(base_dir: Path, filename: str, directory: Optional[str] = None):
    """
    Returns (canonical target, path relative to base) or raises a
    validation_error whose message starts with "invalid path".
    """
    if ".." in filename or any(sep in filename for sep in _SEPARATORS):
        raise _invalid_path("filename must not contain '..' or path separators")
    if filename in (".", ""):
        raise _invalid_path("filename must name a file")
    if "\x00" in filename or (directory and "\x00" in directory):
        raise _invalid_path("path must not contain NUL bytes")

    relative_dir = ""
    if directory:
        relative_dir = _clean_directory(directory)
        if ".." in relative_dir or relative_dir.startswith("/"):
            raise _invalid_path("directory must be relative and stay inside the base directory")

    base = base_dir.resolve()
    target = (base / relative_dir / filename) if relative_dir else (base / filename)
    canonical = target.resolve()

    base_prefix = str(base).rstrip(os.sep) + os.sep
    if str(canonical) != str(base) and not str(canonical).startswith(base_prefix):
        raise _invalid_path("target escapes the base directory")
    if canonical == base:
        raise _invalid_path("target is the base directory")

    relative = posixpath.join(relative_dir, filename) if relative_dir else filename
    return canonical, relative


def make_directories(path: Path) -> None:
    """Like `mkdir -p`, but every created level gets DIR_MODE."""
    missing = []
    current = path
    while not current.exists():
        missing.append(current)
        current = current.parent
    for directory in reversed(missing):
        try:
            directory.mkdir(mode=DIR_MODE)
        except FileExistsError:
            pass


class FileWriter:
    def __init__(self, base_dir: Path, metrics: Optional[MetricsSink] = None):
        self.base_dir = Path(base_dir)
        self.metrics = metrics

    def write(self, filename: str, content: str, directory: Optional[str] = None) -> WriteResult:
        """
        Creates a new file. Never overwrites: an existing target is a
        validation error, and losing a concurrent create is already_exists.

        Blocking; the route runs it in a worker thread.
        """
        start = time.perf_counter()
        try:
            result = self._write(filename, content, directory)
        except DomainError as e:
            self._record("error", start)
            if e.code == ErrorCode.VALIDATION_ERROR:
                logger.warning(f"File write rejected: {e.message}", extra={"requested_filename": filename})
            raise
        self._record("success", start)
        if self.metrics is not None:
            self.metrics.observe("files_size_bytes", result.size)
        logger.info(f"File created: {result.path}", extra={"size": result.size})
        return result

    def _write(self, filename: str, content: str, directory: Optional[str]) -> WriteResult:
        target, relative = resolve_target(self.base_dir, filename, directory)

        if os.path.lexists(target):
            raise validation_error("file already exists")

        try:
            make_directories(target.parent)
        except OSError as e:
            raise filesystem_error("failed to create directory", cause=e).with_context(
                directory=str(target.parent)
            )

        data = content.encode("utf-8")
        try:
            fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_EXCL, FILE_MODE)
        except FileExistsError as e:
            raise already_exists_error("file already exists").with_cause(e)
        except OSError as e:
            raise filesystem_error("failed to create file", cause=e).with_context(path=relative)

        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
        except OSError as e:
            raise filesystem_error("failed to write file", cause=e).with_context(path=relative)

        return WriteResult(path=relative, size=len(data))

    def _record(self, status: str, start: float) -> None:
        if self.metrics is None:
            return
        self.metrics.increment("file_creations", status=status)
        self.metrics.observe("file_creation_duration_seconds", time.perf_counter() - start)
