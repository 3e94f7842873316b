"""
Tests for stack/logging.py — console formatting and the update log mirror.
"""
import io
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from stack.logging import (
    LEVELS,
    SUCCESS,
    ConsoleFormatter,
    attach_file_log,
    detach_file_log,
    get_logger,
    setup_logging,
)


class TestConsoleFormatter:
    def _record(self, level, msg):
        return logging.LogRecord("stack.test", level, __file__, 1, msg, None, None)

    def test_plain(self):
        fmt = ConsoleFormatter(color=False)
        assert fmt.format(self._record(logging.INFO, "hello")) == "[INFO] hello"
        assert fmt.format(self._record(SUCCESS, "done")) == "[SUCCESS] done"

    def test_color_wraps_tag_only(self):
        out = ConsoleFormatter(color=True).format(self._record(logging.ERROR, "bad"))
        assert out.startswith("\033[0;31m[ERROR]\033[0m")
        assert out.endswith(" bad")


class TestSetupLogging:
    def test_levels_mapping(self):
        assert LEVELS["ok"] == SUCCESS
        assert LEVELS["warn"] == logging.WARNING
        assert LEVELS["detail"] == logging.DEBUG

    def test_debug_hidden_unless_verbose(self):
        buf = io.StringIO()
        setup_logging(verbose=False, color=False, stream=buf)
        log = get_logger("t")
        log.debug("hidden")
        log.log(SUCCESS, "shown")
        assert buf.getvalue() == "[SUCCESS] shown\n"

    def test_repeated_setup_does_not_duplicate(self):
        buf = io.StringIO()
        setup_logging(stream=io.StringIO())
        setup_logging(color=False, stream=buf)
        get_logger("t").info("once")
        assert buf.getvalue().count("once") == 1

    def test_does_not_propagate_to_root(self):
        logger = setup_logging(stream=io.StringIO())
        assert logger.propagate is False
        assert get_logger("backup").name == "stack.backup"


class TestFileLog:
    def test_mirror_and_detach(self, tmp_path, stack_log):
        path = tmp_path / "logs" / "update.log"
        handler = attach_file_log(path)
        get_logger("update").warning("disk almost full")
        detach_file_log(handler)
        get_logger("update").info("after detach")

        text = path.read_text()
        assert ": [WARNING] disk almost full" in text
        assert "after detach" not in text
        assert "after detach" in stack_log.getvalue()
