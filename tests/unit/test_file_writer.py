"""
Unit tests for path composition, traversal defense and exclusive writes.
"""
import os
import stat
import threading
from unittest.mock import patch

import pytest

from omnidrop.errors import DomainError, ErrorCode
from omnidrop.metrics import PrometheusMetrics
from omnidrop.services.file_writer import FileWriter, resolve_target


@pytest.fixture
def base_dir(tmp_path):
    base = tmp_path / "files"
    base.mkdir()
    return base


@pytest.fixture
def writer(base_dir):
    return FileWriter(base_dir, metrics=PrometheusMetrics())


class TestResolveTarget:
    @pytest.mark.parametrize(
        "filename, directory, expected",
        [
            ("a.txt", None, "a.txt"),
            ("a.txt", "", "a.txt"),
            ("a.txt", "reports", "reports/a.txt"),
            ("a.txt", "reports/2025", "reports/2025/a.txt"),
            ("a.txt", "reports//2025/", "reports/2025/a.txt"),
            ("a.txt", "./reports", "reports/a.txt"),
            ("a.txt", "reports/../notes", "notes/a.txt"),
            (".hidden", None, ".hidden"),
        ],
    )
    def test_safe_paths_stay_under_base(self, base_dir, filename, directory, expected):
        """Test that accepted paths resolve under the canonical base."""
        target, relative = resolve_target(base_dir, filename, directory)

        assert relative == expected
        assert str(target).startswith(str(base_dir.resolve()) + os.sep)

    @pytest.mark.parametrize(
        "filename, directory",
        [
            ("../../etc/passwd", None),
            ("..", None),
            ("a..b", None),
            ("sub/a.txt", None),
            ("a.txt", "../outside"),
            ("a.txt", "reports/../../outside"),
            ("a.txt", "/etc"),
            ("a.txt", ".."),
            (".", None),
            ("a\x00b.txt", None),
            ("a.txt", "sub\x00dir"),
        ],
    )
    def test_traversal_rejected(self, base_dir, filename, directory):
        with pytest.raises(DomainError) as exc_info:
            resolve_target(base_dir, filename, directory)

        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR
        assert "invalid path" in exc_info.value.message

    def test_symlink_escape_rejected(self, base_dir, tmp_path):
        """Test that a symlinked directory pointing outside the base is refused."""
        outside = tmp_path / "outside"
        outside.mkdir()
        (base_dir / "link").symlink_to(outside, target_is_directory=True)

        with pytest.raises(DomainError) as exc_info:
            resolve_target(base_dir, "a.txt", "link")

        assert "invalid path" in exc_info.value.message


class TestFileWriter:
    def test_write_creates_directories_and_file(self, writer, base_dir):
        result = writer.write("report.txt", "hello", "reports/2025")

        target = base_dir / "reports" / "2025" / "report.txt"
        assert result.path == "reports/2025/report.txt"
        assert result.size == 5
        assert target.read_text() == "hello"
        assert stat.S_IMODE(target.stat().st_mode) & 0o777 == 0o644 & ~_umask()
        assert stat.S_IMODE((base_dir / "reports").stat().st_mode) == 0o755 & ~_umask()

    def test_write_utf8(self, writer, base_dir):
        result = writer.write("note.md", "héllo ✓")

        assert (base_dir / "note.md").read_text(encoding="utf-8") == "héllo ✓"
        assert result.size == len("héllo ✓".encode("utf-8"))

    def test_existing_file_is_never_overwritten(self, writer, base_dir):
        writer.write("a.txt", "one")

        with pytest.raises(DomainError) as exc_info:
            writer.write("a.txt", "two")

        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR
        assert exc_info.value.message == "file already exists"
        assert (base_dir / "a.txt").read_text() == "one"

    def test_losing_exclusive_create_is_already_exists(self, writer, base_dir):
        """Test the race where the file appears between the check and the create."""
        (base_dir / "a.txt").write_text("first")

        with patch("omnidrop.services.file_writer.os.path.lexists", return_value=False):
            with pytest.raises(DomainError) as exc_info:
                writer.write("a.txt", "second")

        assert exc_info.value.code == ErrorCode.ALREADY_EXISTS
        assert exc_info.value.http_status == 409
        assert (base_dir / "a.txt").read_text() == "first"

    def test_concurrent_writes_single_winner(self, writer, base_dir):
        """Test that concurrent writers of one path produce exactly one success."""
        barrier = threading.Barrier(8)
        outcomes = []
        lock = threading.Lock()

        def attempt(i):
            barrier.wait(timeout=5)
            try:
                writer.write("race.txt", f"writer-{i}")
                outcome = "ok"
            except DomainError as e:
                outcome = e.message
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=attempt, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert outcomes.count("ok") == 1
        assert all(o == "file already exists" for o in outcomes if o != "ok")
        assert (base_dir / "race.txt").read_text().startswith("writer-")

    def test_mkdir_failure_is_filesystem_error(self, writer, base_dir):
        (base_dir / "blocker").write_text("not a directory")

        with pytest.raises(DomainError) as exc_info:
            writer.write("a.txt", "x", "blocker/sub")

        assert exc_info.value.code == ErrorCode.FILESYSTEM_ERROR
        assert exc_info.value.http_status == 500

    def test_metrics_recorded(self, base_dir):
        metrics = PrometheusMetrics()
        writer = FileWriter(base_dir, metrics=metrics)

        writer.write("a.txt", "hello")
        with pytest.raises(DomainError):
            writer.write("../a.txt", "hello")

        assert metrics.counter_value("file_creations", status="success") == 1
        assert metrics.counter_value("file_creations", status="error") == 1
        assert metrics.histogram_count("files_size_bytes") == 1


def _umask() -> int:
    current = os.umask(0)
    os.umask(current)
    return current
