"""
Tests for restore_stack.py — RestoreWorkflow

Builds backup directories and archives on disk and checks the restore
order, the docker commands issued and the cleanup of extracted archives.
"""
import sys
from pathlib import Path
from unittest.mock import MagicMock, call, patch

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import restore_stack
from restore_stack import AOF_CLEANUP, RestoreWorkflow
from stack.archive import create_archive
from stack.compose import CommandError


def _make_backup(root, name="ghostfolio_backup_20260102_030405", rdb=True):
    src = root / name
    (src / "storage" / "user1").mkdir(parents=True)
    (src / "postgresql_dump.sql").write_text("DROP DATABASE IF EXISTS x;\nCREATE DATABASE x;\n")
    (src / "storage" / "user1" / "doc.pdf").write_bytes(b"%PDF")
    (src / "storage" / ".empty").touch()
    if rdb:
        (src / "redis_dump.rdb").write_bytes(b"REDIS0011")
    return src


@pytest.fixture()
def wf(config, fake_compose):
    return RestoreWorkflow(config, compose=fake_compose, health_attempts=3,
                           health_interval=0, input_fn=MagicMock(return_value="y"))


@pytest.fixture()
def backup(config):
    config.backup_dir.mkdir(parents=True, exist_ok=True)
    return _make_backup(config.backup_dir)


# ── Source resolution ─────────────────────────────────────────────────────────

class TestResolveSource:
    def test_directory(self, wf, backup):
        assert wf.resolve_source(backup) == backup

    def test_newest_backup(self, wf, config, backup):
        newer = _make_backup(config.backup_dir, "ghostfolio_backup_20260301_000000")
        assert wf.resolve_source() == newer

    def test_no_backups(self, wf):
        with pytest.raises(FileNotFoundError, match="No backups found"):
            wf.resolve_source()

    def test_missing_path(self, wf, tmp_path):
        with pytest.raises(FileNotFoundError, match="Backup not found"):
            wf.resolve_source(tmp_path / "nope")

    def test_archive_extracted_and_cleaned(self, wf, config, backup):
        archive = create_archive(backup)
        src = wf.resolve_source(archive)
        assert src.name == backup.name
        assert (src / "postgresql_dump.sql").exists()
        assert src.parent.parent == config.backup_dir
        wf.cleanup()
        assert not src.exists()


# ── Stages ────────────────────────────────────────────────────────────────────

class TestStages:
    def test_restore_postgresql(self, wf, fake_compose, backup):
        fed = []

        def exec_in(service, args, stdin=None, **kwargs):
            fed.append(stdin.read())
            return MagicMock(returncode=0)

        fake_compose.exec_in.side_effect = exec_in
        assert wf.restore_postgresql(backup) is True
        service, args = fake_compose.exec_in.call_args.args
        assert service == "postgres"
        assert args == ["psql", "-U", "ghostfolio", "-d", "postgres",
                        "-v", "ON_ERROR_STOP=1", "-q"]
        assert fed == ["DROP DATABASE IF EXISTS x;\nCREATE DATABASE x;\n"]

    def test_restore_postgresql_missing_dump(self, wf, backup, stack_log):
        (backup / "postgresql_dump.sql").unlink()
        assert wf.restore_postgresql(backup) is False
        assert "postgresql_dump.sql missing or empty" in stack_log.getvalue()

    def test_restore_postgresql_error(self, wf, fake_compose, backup):
        fake_compose.exec_in.side_effect = CommandError(["psql"], 3, "ERROR: syntax")
        assert wf.restore_postgresql(backup) is False
        assert wf.results["postgresql"] == "failed"

    def test_restore_redis_rdb(self, wf, fake_compose, backup):
        assert wf.restore_redis(backup) is True
        fake_compose.stop.assert_called_once_with("redis")
        fake_compose.copy.assert_called_once_with(str(backup / "redis_dump.rdb"),
                                                  "redis:/data/dump.rdb")
        fake_compose.run_once.assert_called_once_with("redis", "sh", ["-c", AOF_CLEANUP])
        fake_compose.start.assert_called_once_with("redis")

    def test_restore_redis_data_dir(self, wf, fake_compose, config):
        src = _make_backup(config.backup_dir, rdb=False)
        (src / "redis_data").mkdir()
        assert wf.restore_redis(src) is True
        fake_compose.copy.assert_called_once_with(f"{src / 'redis_data'}/.", "redis:/data/")
        fake_compose.run_once.assert_not_called()

    def test_restore_redis_nothing_to_restore(self, wf, fake_compose, config):
        src = _make_backup(config.backup_dir, rdb=False)
        assert wf.restore_redis(src) is False
        fake_compose.stop.assert_not_called()

    def test_restore_files(self, wf, config, backup):
        assert wf.restore_files(backup) is True
        target = config.data_base_path / "data" / "storage"
        assert (target / "user1" / "doc.pdf").read_bytes() == b"%PDF"
        assert not (target / ".empty").exists()

    def test_restore_files_without_storage(self, wf, tmp_path, stack_log):
        assert wf.restore_files(tmp_path) is True
        assert "No storage directory" in stack_log.getvalue()

    def test_start_app_unhealthy(self, wf, fake_compose, stack_log):
        fake_compose.wait_healthy.return_value = False
        assert wf.start_app() is False
        assert "did not become healthy" in stack_log.getvalue()


# ── Orchestration ─────────────────────────────────────────────────────────────

class TestRun:
    def test_full_restore_order(self, wf, fake_compose, backup):
        assert wf.run(backup) == 0
        ordered = [c for c in fake_compose.mock_calls
                   if c[0] in ("stop", "exec_in", "copy", "run_once", "start")]
        names = [c[0] for c in ordered]
        assert names == ["stop", "exec_in", "stop", "copy", "run_once", "start", "start"]
        assert ordered[0] == call.stop("ghostfolio")
        assert ordered[-1] == call.start("ghostfolio")

    def test_skips(self, wf, fake_compose, config, backup):
        assert wf.run(backup, skip_db=True, skip_redis=True, skip_files=True) == 0
        fake_compose.exec_in.assert_not_called()
        fake_compose.copy.assert_not_called()
        assert not (config.data_base_path / "data" / "storage").exists()

    def test_declined(self, config, fake_compose, backup):
        wf = RestoreWorkflow(config, compose=fake_compose, input_fn=MagicMock(return_value="n"))
        assert wf.run(backup) == 1
        fake_compose.stop.assert_not_called()

    def test_closed_stdin_declines(self, config, fake_compose, backup):
        wf = RestoreWorkflow(config, compose=fake_compose,
                             input_fn=MagicMock(side_effect=EOFError))
        assert wf.run(backup) == 1

    def test_assume_yes_skips_prompt(self, config, fake_compose, backup):
        prompt = MagicMock()
        wf = RestoreWorkflow(config, compose=fake_compose, input_fn=prompt,
                             health_attempts=1, health_interval=0)
        assert wf.run(backup, assume_yes=True) == 0
        prompt.assert_not_called()

    def test_db_failure_still_restarts_app(self, wf, fake_compose, backup):
        fake_compose.exec_in.side_effect = CommandError(["psql"], 3, "ERROR")
        assert wf.run(backup) == 1
        fake_compose.copy.assert_not_called()
        fake_compose.start.assert_called_once_with("ghostfolio")

    def test_archive_temp_dir_removed(self, wf, config, backup):
        archive = create_archive(backup)
        assert wf.run(archive) == 0
        leftovers = [p for p in config.backup_dir.iterdir() if p.name.startswith(".restore_")]
        assert leftovers == []

    def test_corrupt_archive(self, wf, config, fake_compose, stack_log):
        config.backup_dir.mkdir(parents=True, exist_ok=True)
        bad = config.backup_dir / "ghostfolio_backup_20260101_120000.tar.gz"
        bad.write_bytes(b"not a gzip file at all")
        assert wf.run(bad, assume_yes=True) == 1
        assert "not a readable backup archive" in stack_log.getvalue()
        fake_compose.stop.assert_not_called()
        leftovers = [p for p in config.backup_dir.iterdir() if p.name.startswith(".restore_")]
        assert leftovers == []

    def test_no_backup(self, wf, stack_log):
        assert wf.run() == 1
        assert "No backups found" in stack_log.getvalue()

    def test_docker_down(self, wf, fake_compose, backup):
        fake_compose.daemon_running.return_value = False
        assert wf.run(backup) == 1
        fake_compose.stop.assert_not_called()


class TestMain:
    def test_dispatch(self, bundle_dir, tmp_path):
        with patch.object(RestoreWorkflow, "run", return_value=0) as run:
            rc = restore_stack.main([str(tmp_path / "b.tar.gz"), "--skip-redis", "--yes",
                                     "--bundle-dir", str(bundle_dir)])
        assert rc == 0
        run.assert_called_once_with(tmp_path / "b.tar.gz", skip_db=False, skip_redis=True,
                                    skip_files=False, assume_yes=True)
