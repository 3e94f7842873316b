#!/usr/bin/env python3
"""
Restore a Ghostfolio stack from a backup made by backup_stack.py.

Order of operations:
1. Stop the application so nothing writes to the database
2. Feed postgresql_dump.sql to psql (the dump recreates the database)
3. Stop redis, copy the RDB snapshot in, drop the AOF files, start redis
4. Copy storage/ back under DATA_BASE_PATH
5. Start the application and wait until every service is healthy

Usage:
    python restore_stack.py                             # Newest backup in BACKUP_DIR
    python restore_stack.py /var/backups/ghostfolio/ghostfolio_backup_20260101_120000
    python restore_stack.py ghostfolio_backup_20260101_120000.tar.gz --yes
    python restore_stack.py --skip-files                # Database and cache only
"""

from __future__ import annotations

import argparse
import shutil
import sys
import tempfile
from pathlib import Path
from typing import Callable

from stack import archive
from stack.compose import CommandError, ComposeRunner
from stack.layout import STORAGE_DIR
from stack.logging import LEVELS, get_logger, setup_logging
from utils.config import StackConfig

_logger = get_logger("restore")

DUMP_FILE = "postgresql_dump.sql"
RDB_FILE = "redis_dump.rdb"
REDIS_DATA_DIR = "redis_data"

# Redis 7 prefers the AOF over dump.rdb when both exist
AOF_CLEANUP = "rm -rf /data/appendonlydir /data/appendonly.aof"


class RestoreWorkflow:
    """Puts a backup's database, cache and files back into the stack."""

    def __init__(self, config: StackConfig, compose: ComposeRunner | None = None,
                 health_attempts: int = 60, health_interval: float = 2.0,
                 input_fn: Callable[[str], str] = input):
        self.config = config
        self.compose = compose or ComposeRunner(config.compose_file, config.bundle_dir,
                                                services=config.services)
        self.health_attempts = health_attempts
        self.health_interval = health_interval
        self._input = input_fn
        self.results: dict[str, str] = {}
        self._tmp_dir: Path | None = None

    def log(self, msg: str, level: str = "info") -> None:
        _logger.log(LEVELS[level], msg)

    def _record(self, stage: str, ok: bool) -> bool:
        self.results[stage] = "completed" if ok else "failed"
        return ok

    # ── Source ─────────────────────────────────────────────────────────────

    def resolve_source(self, source: Path | None = None) -> Path:
        """Backup directory to restore from, extracting archives first.

        Raises:
            FileNotFoundError: If *source* does not exist or no backup is found.
            ValueError: If an archive is malformed.
        """
        cfg = self.config
        if source is None:
            source = archive.latest_backup(cfg.backup_dir, cfg.backup_prefix)
            if source is None:
                raise FileNotFoundError(f"No backups found in {cfg.backup_dir}")
            self.log(f"Using newest backup: {source.name}")
        source = Path(source)
        if not source.exists():
            raise FileNotFoundError(f"Backup not found: {source}")
        if source.is_dir():
            return source

        self.log(f"Extracting {source.name}...")
        parent = cfg.backup_dir if cfg.backup_dir.is_dir() else None
        self._tmp_dir = Path(tempfile.mkdtemp(prefix=".restore_", dir=parent))
        return archive.extract_archive(source, self._tmp_dir)

    def cleanup(self) -> None:
        if self._tmp_dir is not None:
            shutil.rmtree(self._tmp_dir, ignore_errors=True)
            self._tmp_dir = None

    def confirm(self, source: Path) -> bool:
        self.log(f"This will overwrite the current {self.config.display_name} data "
                 f"with {source.name}", "warn")
        try:
            answer = self._input("Continue with restore? (y/N): ")
        except EOFError:
            return False
        return answer.strip().lower() in ("y", "yes")

    # ── Stages ─────────────────────────────────────────────────────────────

    def stop_app(self) -> bool:
        self.log(f"Stopping {self.config.app_service}...")
        try:
            self.compose.stop(self.config.app_service)
        except CommandError as e:
            self.log(str(e), "error")
            return self._record("stop", False)
        return self._record("stop", True)

    def restore_postgresql(self, src: Path) -> bool:
        self.log("Restoring PostgreSQL database...")
        dump = src / DUMP_FILE
        if not dump.is_file() or dump.stat().st_size == 0:
            self.log(f"{DUMP_FILE} missing or empty in {src}", "error")
            return self._record("postgresql", False)
        try:
            creds = self.config.db_settings()
        except FileNotFoundError:
            self.log(f"{self.config.db_env_file.name} not found; cannot read database credentials",
                     "error")
            return self._record("postgresql", False)

        # The dump carries DROP/CREATE DATABASE, so connect to the maintenance db
        cmd = ["psql", "-U", creds.get("POSTGRES_USER", "postgres"), "-d", "postgres",
               "-v", "ON_ERROR_STOP=1", "-q"]
        try:
            with open(dump, "r", encoding="utf-8") as fh:
                self.compose.exec_in(self.config.db_service, cmd, stdin=fh)
        except (CommandError, OSError) as e:
            self.log(f"PostgreSQL restore failed: {e}", "error")
            return self._record("postgresql", False)
        self.log("PostgreSQL database restored", "ok")
        return self._record("postgresql", True)

    def restore_redis(self, src: Path) -> bool:
        self.log("Restoring Redis data...")
        svc = self.config.cache_service
        rdb = src / RDB_FILE
        data_dir = src / REDIS_DATA_DIR
        if rdb.is_file():
            copy_src = str(rdb)
            copy_dst = f"{svc}:/data/dump.rdb"
        elif data_dir.is_dir():
            copy_src = f"{data_dir}/."
            copy_dst = f"{svc}:/data/"
        else:
            self.log(f"No Redis snapshot in {src}", "error")
            return self._record("redis", False)

        try:
            self.compose.stop(svc)
            self.compose.copy(copy_src, copy_dst)
            if rdb.is_file():
                self.compose.run_once(svc, "sh", ["-c", AOF_CLEANUP])
            self.compose.start(svc)
        except CommandError as e:
            self.log(f"Redis restore failed: {e}", "error")
            return self._record("redis", False)
        self.log("Redis data restored", "ok")
        return self._record("redis", True)

    def restore_files(self, src: Path) -> bool:
        self.log("Restoring user files and storage...")
        storage = src / "storage"
        if not storage.is_dir():
            self.log(f"No storage directory in {src}", "warn")
            return self._record("files", True)
        target = self.config.data_base_path / STORAGE_DIR
        try:
            target.mkdir(parents=True, exist_ok=True)
            shutil.copytree(storage, target, dirs_exist_ok=True,
                            ignore=shutil.ignore_patterns(".empty"))
        except (OSError, shutil.Error) as e:
            self.log(f"Storage restore failed: {e}", "error")
            return self._record("files", False)
        self.log(f"Storage files restored to {target}", "ok")
        return self._record("files", True)

    def start_app(self) -> bool:
        self.log(f"Starting {self.config.app_service}...")
        try:
            self.compose.start(self.config.app_service)
        except CommandError as e:
            self.log(str(e), "error")
            return self._record("start", False)

        self.log("Waiting for services to be ready...")
        if not self.compose.wait_healthy(attempts=self.health_attempts,
                                         interval=self.health_interval):
            self.log("Services did not become healthy after restore", "error")
            return self._record("start", False)
        self.log("Services are running and healthy", "ok")
        return self._record("start", True)

    # ── Orchestration ─────────────────────────────────────────────────────

    def run(self, source: Path | None = None, skip_db: bool = False,
            skip_redis: bool = False, skip_files: bool = False,
            assume_yes: bool = False) -> int:
        self.log(f"Starting {self.config.display_name} restore process...")
        if not self.compose.daemon_running():
            self.log("Docker is not running or accessible", "error")
            return 1
        try:
            src = self.resolve_source(source)
            if not assume_yes and not self.confirm(src):
                self.log("Restore cancelled")
                return 1

            ok = self.stop_app()
            if ok and not skip_db:
                ok = self.restore_postgresql(src)
            if ok and not skip_redis:
                ok = self.restore_redis(src)
            if ok and not skip_files:
                ok = self.restore_files(src)
            # Bring the app back even when a step failed
            started = self.start_app()
        except (FileNotFoundError, ValueError) as e:
            self.log(str(e), "error")
            return 1
        finally:
            self.cleanup()

        if not (ok and started):
            self.log("Restore finished with errors", "error")
            return 1
        self.log("Restore completed successfully!", "ok")
        return 0


# ── CLI ───────────────────────────────────────────────────────────────────────

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Restore the Ghostfolio stack from a backup directory or archive.",
    )
    parser.add_argument("source", nargs="?", type=Path, default=None,
                        help="Backup directory or .tar.gz (default: newest in BACKUP_DIR)")
    parser.add_argument("--skip-db", action="store_true", help="Do not restore PostgreSQL")
    parser.add_argument("--skip-redis", action="store_true", help="Do not restore Redis")
    parser.add_argument("--skip-files", action="store_true", help="Do not restore storage files")
    parser.add_argument("--yes", "-y", action="store_true",
                        help="Do not ask for confirmation")
    parser.add_argument("--bundle-dir", type=Path, default=None,
                        help="Directory containing docker-compose.yml (default: $BUNDLE_DIR or cwd)")
    parser.add_argument("--verbose", action="store_true", help="Show debug output")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose)
    try:
        config = StackConfig.from_env(args.bundle_dir)
    except ValueError as e:
        _logger.error("%s", e)
        return 1
    return RestoreWorkflow(config).run(
        args.source,
        skip_db=args.skip_db,
        skip_redis=args.skip_redis,
        skip_files=args.skip_files,
        assume_yes=args.yes,
    )


if __name__ == "__main__":
    sys.exit(main())
