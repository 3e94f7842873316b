#!/usr/bin/env python3
"""
Back up a running Ghostfolio stack.

Creates a timestamped backup directory under BACKUP_DIR containing:
- postgresql_dump.sql   pg_dump of the application database
- redis_dump.rdb        Redis RDB snapshot (or redis_data/ with all files)
- storage/              user uploaded files
- logs/                 *.log files from the last 7 days
- config/               compose file, masked env files, VERSION
- backup_info.txt       what, when and which app version

Usage:
    python backup_stack.py                    # Full backup (all components)
    python backup_stack.py --db-only          # PostgreSQL + Redis only
    python backup_stack.py --files-only       # Storage and logs only
    python backup_stack.py --config-only      # Configuration only
    python backup_stack.py --compress         # Full backup as .tar.gz
    python backup_stack.py --keep 7           # Retain the last 7 backups

Backup name format: <project>_backup_YYYYMMDD_HHMMSS[.tar.gz]
"""

from __future__ import annotations

import argparse
import shutil
import sys
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable

from stack import archive
from stack.compose import CommandError, ComposeRunner
from stack.envfile import mask_env_text
from stack.layout import LOGS_DIR, STORAGE_DIR, ensure_dir
from stack.logging import LEVELS, get_logger, setup_logging
from utils.common import elapsed, format_bytes, is_empty_dir, path_size
from utils.config import StackConfig

_logger = get_logger("backup")

MODES = {
    "full": "Full Backup",
    "db": "Database Only",
    "files": "Files Only",
    "config": "Configuration Only",
}

LOG_RETENTION_DAYS = 7


class BackupWorkflow:
    """Dumps the database and cache and copies files out of a running stack."""

    def __init__(self, config: StackConfig, compose: ComposeRunner | None = None,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], datetime] = datetime.now,
                 bgsave_attempts: int = 60):
        self.config = config
        self.compose = compose or ComposeRunner(config.compose_file, config.bundle_dir,
                                                services=config.services)
        self._sleep = sleep
        self._clock = clock
        self.bgsave_attempts = bgsave_attempts
        self.results: dict[str, str] = {}
        self.backup_path: Path | None = None

    def log(self, msg: str, level: str = "info") -> None:
        _logger.log(LEVELS[level], msg)

    def _record(self, stage: str, ok: bool) -> bool:
        self.results[stage] = "completed" if ok else "failed"
        return ok

    # ── Requirements ───────────────────────────────────────────────────────

    def check_requirements(self) -> bool:
        self.log("Checking backup requirements...")
        if not self.compose.daemon_running():
            self.log("Docker is not running or accessible", "error")
            return False
        if not self.compose.any_running():
            self.log(f"{self.config.display_name} services are not running", "error")
            return False
        try:
            ensure_dir(self.config.backup_dir, use_sudo=True)
        except OSError as e:
            self.log(f"Cannot create backup directory {self.config.backup_dir}: {e}", "error")
            return False
        self.log("Requirements check passed", "ok")
        return True

    # ── Database backups ───────────────────────────────────────────────────

    def backup_postgresql(self, dest: Path) -> bool:
        self.log("Backing up PostgreSQL database...")
        backup_file = dest / "postgresql_dump.sql"
        try:
            creds = self.config.db_settings()
        except FileNotFoundError:
            self.log(f"{self.config.db_env_file.name} not found; cannot read database credentials",
                     "error")
            return self._record("postgresql", False)

        cmd = [
            "pg_dump",
            "-U", creds.get("POSTGRES_USER", "postgres"),
            "-d", creds.get("POSTGRES_DB", "postgres"),
            "--clean",
            "--if-exists",
            "--create",
        ]
        try:
            with open(backup_file, "w", encoding="utf-8") as out:
                self.compose.exec_in(self.config.db_service, cmd, stdout=out)
        except (CommandError, OSError) as e:
            self.log(f"PostgreSQL backup failed: {e}", "error")
            return self._record("postgresql", False)

        if not backup_file.exists() or backup_file.stat().st_size == 0:
            self.log("PostgreSQL backup failed or is empty", "error")
            return self._record("postgresql", False)
        self.log(f"PostgreSQL backup completed: {format_bytes(backup_file.stat().st_size)}", "ok")
        return self._record("postgresql", True)

    def _redis_cli(self, *args: str) -> str:
        cmd = ["redis-cli"]
        password = self.config.redis_password()
        if password:
            cmd += ["-a", password, "--no-auth-warning"]
        cmd += list(args)
        result = self.compose.exec_in(self.config.cache_service, cmd)
        return (result.stdout or "").strip()

    def _lastsave(self) -> int:
        out = self._redis_cli("LASTSAVE")
        try:
            return int(out.split()[-1])
        except (IndexError, ValueError):
            raise CommandError(["redis-cli", "LASTSAVE"], 0, f"unexpected reply {out!r}")

    def backup_redis(self, dest: Path) -> bool:
        """BGSAVE, wait for LASTSAVE to advance, then copy the snapshot out."""
        self.log("Backing up Redis data...")
        svc = self.config.cache_service
        try:
            before = self._lastsave()
            self._redis_cli("BGSAVE")
            self.log("Waiting for Redis background save to complete...")
            for _ in range(self.bgsave_attempts):
                if self._lastsave() > before:
                    break
                self._sleep(1)
            else:
                self.log("Redis BGSAVE did not finish in time; copying the last snapshot",
                         "warn")
        except CommandError as e:
            self.log(f"Redis backup failed: {e}", "error")
            return self._record("redis", False)

        result = self.compose.copy(f"{svc}:/data/dump.rdb", str(dest / "redis_dump.rdb"),
                                   check=False)
        if result.returncode != 0:
            self.log("Redis dump.rdb not found, copying all Redis data", "warn")
            try:
                self.compose.copy(f"{svc}:/data/.", str(dest / "redis_data"))
            except CommandError as e:
                self.log(f"Redis backup failed: {e}", "error")
                return self._record("redis", False)
        self.log("Redis backup completed", "ok")
        return self._record("redis", True)

    # ── File backups ───────────────────────────────────────────────────────

    def backup_files(self, dest: Path) -> bool:
        self.log("Backing up user files and storage...")
        src = self.config.data_base_path / STORAGE_DIR
        target = dest / "storage"
        target.mkdir(parents=True, exist_ok=True)
        if is_empty_dir(src):
            self.log("No user storage files to backup")
            (target / ".empty").touch()
            return self._record("files", True)
        try:
            shutil.copytree(src, target, dirs_exist_ok=True)
        except (OSError, shutil.Error) as e:
            self.log(f"Storage backup failed: {e}", "error")
            return self._record("files", False)
        self.log(f"Storage files backup completed: {format_bytes(path_size(target))}", "ok")
        return self._record("files", True)

    def backup_logs(self, dest: Path) -> bool:
        """Copy recent ``*.log`` files, keeping their layout below logs/."""
        self.log("Backing up application logs...")
        src = self.config.data_base_path / LOGS_DIR
        target = dest / "logs"
        target.mkdir(parents=True, exist_ok=True)
        if not src.is_dir():
            self.log("No log files to backup")
            (target / ".empty").touch()
            return self._record("logs", True)

        cutoff = (self._clock() - timedelta(days=LOG_RETENTION_DAYS)).timestamp()
        copied = 0
        for log_file in src.rglob("*.log"):
            try:
                if not log_file.is_file() or log_file.stat().st_mtime < cutoff:
                    continue
                out = target / log_file.relative_to(src)
                out.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(log_file, out)
                copied += 1
            except OSError as e:
                # Unreadable service logs (owned by container users) are skipped
                self.log(f"Skipping {log_file}: {e}", "detail")
        if not copied:
            (target / ".empty").touch()
        self.log(f"Recent logs backup completed ({copied} file(s))", "ok")
        return self._record("logs", True)

    def backup_config(self, dest: Path) -> bool:
        self.log("Backing up configuration files...")
        cfg = self.config
        target = dest / "config"
        target.mkdir(parents=True, exist_ok=True)
        try:
            shutil.copy2(cfg.compose_file, target / cfg.compose_file.name)
            for live, example, name in (
                (cfg.env_file, cfg.bundle_dir / ".env.example", "env.masked"),
                (cfg.db_env_file, cfg.bundle_dir / ".db.env.example", "db.env.masked"),
            ):
                src = live if live.exists() else example
                if src.exists():
                    (target / name).write_text(mask_env_text(src.read_text(encoding="utf-8")),
                                               encoding="utf-8")
            if cfg.version_file.exists():
                shutil.copy2(cfg.version_file, target / cfg.version_file.name)
        except OSError as e:
            self.log(f"Configuration backup failed: {e}", "error")
            return self._record("config", False)
        self.log("Configuration backup completed", "ok")
        return self._record("config", True)

    # ── Metadata ───────────────────────────────────────────────────────────

    def write_backup_info(self, dest: Path, mode: str) -> Path:
        cfg = self.config
        image = self.compose.service_image(cfg.app_service) or "unknown"
        info = dest / "backup_info.txt"
        info.write_text(
            f"{cfg.display_name} Backup Information\n"
            f"{'=' * 30}\n"
            f"Backup Date: {self._clock().strftime('%Y-%m-%d %H:%M:%S')}\n"
            f"Backup Type: {MODES[mode]}\n"
            f"{cfg.display_name} Version: {image}\n"
            f"Script Version: {cfg.project_version()}\n",
            encoding="utf-8",
        )
        return info

    # ── Orchestration ─────────────────────────────────────────────────────

    def perform_backup(self, mode: str = "full", compress: bool = False,
                       keep: int | None = None) -> bool:
        cfg = self.config
        name = archive.backup_name(cfg.backup_prefix, self._clock())
        dest = cfg.backup_dir / name
        dest.mkdir(parents=True, exist_ok=True)
        self.write_backup_info(dest, mode)

        ok = True
        if mode in ("full", "db"):
            ok = self.backup_postgresql(dest) and ok
            ok = self.backup_redis(dest) and ok
        if mode in ("full", "files"):
            ok = self.backup_files(dest) and ok
            ok = self.backup_logs(dest) and ok
        if mode in ("full", "config"):
            ok = self.backup_config(dest) and ok

        if not ok:
            self.log(f"Backup incomplete; partial data left in {dest}", "error")
            self.backup_path = dest
            return False

        if compress:
            self.log("Creating compressed archive...")
            try:
                dest = archive.create_archive(dest)
            except OSError as e:
                self.log(f"Archive creation failed: {e}", "error")
                return False
            self.log(f"Archive created: {dest} ({format_bytes(dest.stat().st_size)})", "ok")
        self.backup_path = dest
        self.log(f"Backup completed: {dest}", "ok")

        keep = cfg.keep_backups if keep is None else keep
        if keep > 0:
            self.log(f"Cleaning up old backups (keeping last {keep})...")
            removed = archive.prune_backups(cfg.backup_dir, cfg.backup_prefix, keep)
            self.log(f"Cleanup completed ({len(removed)} removed)", "ok")
        return True

    def run(self, mode: str = "full", compress: bool = False, keep: int | None = None) -> int:
        if mode not in MODES:
            raise ValueError(f"Unknown backup mode: {mode!r}")
        start = time.time()
        self.log(f"Starting {self.config.display_name} backup process...")
        if not self.check_requirements():
            return 1
        if not self.perform_backup(mode, compress=compress, keep=keep):
            return 1
        self.log(f"Backup process completed successfully! ({elapsed(start)})", "ok")
        return 0


# ── CLI ───────────────────────────────────────────────────────────────────────

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Back up the Ghostfolio stack (database, cache, files, configuration).",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  backup_stack.py                 # Full backup (all components)\n"
            "  backup_stack.py --db-only       # Database backup only\n"
            "  backup_stack.py --compress      # Full backup with compression\n"
        ),
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--db-only", action="store_const", dest="mode", const="db",
                      help="Backup database only (PostgreSQL + Redis)")
    mode.add_argument("--files-only", action="store_const", dest="mode", const="files",
                      help="Backup user files and logs only")
    mode.add_argument("--config-only", action="store_const", dest="mode", const="config",
                      help="Backup configuration files only")
    parser.set_defaults(mode="full")
    parser.add_argument("--compress", action="store_true",
                        help="Create compressed tar.gz archive")
    parser.add_argument("--keep", type=int, default=None, metavar="N",
                        help="Retain only the N most-recent backups "
                             "(default: KEEP_BACKUPS, 0 disables pruning)")
    parser.add_argument("--bundle-dir", type=Path, default=None,
                        help="Directory containing docker-compose.yml (default: $BUNDLE_DIR or cwd)")
    parser.add_argument("--verbose", action="store_true", help="Show debug output")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point for the backup script.

    Returns:
        0 on success, 1 on error.
    """
    args = _build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose)
    if args.keep is not None and args.keep < 0:
        _logger.error("--keep must be >= 0, got %d", args.keep)
        return 1
    try:
        config = StackConfig.from_env(args.bundle_dir)
    except ValueError as e:
        _logger.error("%s", e)
        return 1
    return BackupWorkflow(config).run(args.mode, compress=args.compress, keep=args.keep)


if __name__ == "__main__":
    sys.exit(main())
