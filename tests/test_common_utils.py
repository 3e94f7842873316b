"""
Tests for utils/common.py — formatting and filesystem helpers.
"""
import sys
import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from utils.common import elapsed, format_bytes, is_empty_dir, path_size


class TestFormatBytes:
    def test_kilobytes(self):
        assert format_bytes(512 * 1024) == "512 KB"

    def test_megabytes(self):
        assert format_bytes(int(1.5 * 1024 * 1024)) == "1.5 MB"

    def test_gigabytes(self):
        assert format_bytes(2 * 1024 ** 3) == "2.00 GB"

    def test_zero(self):
        assert format_bytes(0) == "0 KB"


class TestElapsed:
    def test_seconds(self, monkeypatch):
        monkeypatch.setattr(time, "time", lambda: 1030.0)
        assert elapsed(1000.0) == "0m 30s"

    def test_hours(self, monkeypatch):
        monkeypatch.setattr(time, "time", lambda: 1000.0 + 3930)
        assert elapsed(1000.0) == "1h 05m 30s"


class TestPathSize:
    def test_single_file(self, tmp_path):
        f = tmp_path / "a.bin"
        f.write_bytes(b"x" * 10)
        assert path_size(f) == 10

    def test_directory_tree(self, tmp_path):
        (tmp_path / "sub").mkdir()
        (tmp_path / "a").write_bytes(b"x" * 3)
        (tmp_path / "sub" / "b").write_bytes(b"x" * 4)
        assert path_size(tmp_path) == 7

    def test_symlinks_not_counted(self, tmp_path):
        (tmp_path / "a").write_bytes(b"x" * 3)
        (tmp_path / "link").symlink_to(tmp_path / "a")
        assert path_size(tmp_path) == 3


class TestIsEmptyDir:
    def test_missing(self, tmp_path):
        assert is_empty_dir(tmp_path / "nope") is True

    def test_empty(self, tmp_path):
        assert is_empty_dir(tmp_path) is True

    def test_non_empty(self, tmp_path):
        (tmp_path / "f").touch()
        assert is_empty_dir(tmp_path) is False
