#!/usr/bin/env python3
"""
Update the Ghostfolio application image with backup and rollback.

Steps:
1. Detect the running version and resolve the target (latest GitHub release
   unless --to-version is given)
2. Validate the target (X.Y.Z and the image exists in the registry)
3. Optionally create a compressed pre-update backup
4. Rewrite GHOSTFOLIO_VERSION in .env (old file kept as .env.backup,
   old version kept in .rollback_version)
5. Pull images, restart the stack and verify health and running version
6. Roll back automatically when any step after the .env edit fails

Every message is mirrored to update.log and every attempt is appended to
update_history.jsonl.

Usage:
    python update_stack.py --backup-first                       # Latest, with backup
    python update_stack.py --to-version 2.185.0 --backup-first  # Specific version
    python update_stack.py --dry-run                            # Show what would happen
    python update_stack.py --rollback                           # Previous version
    python update_stack.py --version                            # Version information
    python update_stack.py --history                            # Recent updates
"""

from __future__ import annotations

import argparse
import os
import shutil
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Callable

import requests

from backup_stack import BackupWorkflow
from stack import ledger
from stack.compose import CommandError, ComposeRunner
from stack.envfile import set_env_value
from stack.health import wait_for_endpoint
from stack.logging import LEVELS, attach_file_log, detach_file_log, get_logger, setup_logging
from stack.versions import (
    fetch_latest_release,
    image_tag,
    is_valid_version,
    normalize_version,
    version_key,
)
from utils.config import StackConfig
from utils.http import api_session, probe_session

_logger = get_logger("update")

UNKNOWN = "unknown"


class UpdateWorkflow:
    """Moves the app service to another image version and back."""

    def __init__(self, config: StackConfig, compose: ComposeRunner | None = None,
                 session: requests.Session | None = None,
                 health_attempts: int = 60, health_interval: float = 2.0,
                 http_attempts: int = 10, http_interval: float = 3.0,
                 sleep: Callable[[float], None] = time.sleep,
                 input_fn: Callable[[str], str] = input):
        self.config = config
        self.compose = compose or ComposeRunner(config.compose_file, config.bundle_dir,
                                                services=config.services)
        self.session = session
        self.health_attempts = health_attempts
        self.health_interval = health_interval
        self.http_attempts = http_attempts
        self.http_interval = http_interval
        self._sleep = sleep
        self._input = input_fn
        self.current_version = UNKNOWN
        self.backup_path: Path | None = None

    def log(self, msg: str, level: str = "info") -> None:
        _logger.log(LEVELS[level], msg)

    # ── Versions ───────────────────────────────────────────────────────────

    def get_current_version(self) -> str:
        name = self.config.display_name
        self.log(f"Detecting current {name} version...")
        image = self.compose.service_image(self.config.app_service)
        if image:
            self.current_version = normalize_version(image_tag(image))
            self.log(f"Current version: {self.current_version}")
        else:
            self.log(f"{name} service not found or not running", "warn")
            self.current_version = UNKNOWN
        return self.current_version

    def get_latest_version(self) -> str | None:
        self.log(f"Fetching latest {self.config.display_name} version from GitHub...")
        session = self.session or api_session()
        try:
            return fetch_latest_release(session, self.config.github_repo)
        except (requests.RequestException, ValueError) as e:
            self.log(f"Failed to fetch latest version from GitHub: {e}", "error")
            return None

    def validate_version(self, version: str) -> bool:
        if not is_valid_version(version):
            self.log(f"Invalid version format: {version}", "error")
            self.log("Expected format: X.Y.Z (e.g., 2.185.0)", "error")
            return False
        image = f"{self.config.image_repo}:{version}"
        if not self.compose.manifest_exists(image):
            self.log(f"Version {version} not found in registry ({image})", "error")
            return False
        self.log(f"Version {version} validated", "ok")
        return True

    # ── Steps ──────────────────────────────────────────────────────────────

    def create_pre_update_backup(self) -> bool:
        self.log("Creating pre-update backup...")
        backup = BackupWorkflow(self.config, compose=self.compose, sleep=self._sleep)
        if backup.run("full", compress=True) != 0:
            self.log("Pre-update backup failed", "error")
            return False
        self.backup_path = backup.backup_path
        self.log("Pre-update backup completed", "ok")
        return True

    def update_env_version(self, new_version: str) -> bool:
        """Point GHOSTFOLIO_VERSION at *new_version*, keeping rollback data."""
        cfg = self.config
        self.log(f"Updating {cfg.env_file.name} to version {new_version}...")
        try:
            shutil.copy2(cfg.env_file, cfg.env_backup_file)
            cfg.rollback_file.write_text(self.current_version + "\n", encoding="utf-8")
            set_env_value(cfg.env_file, "GHOSTFOLIO_VERSION", new_version)
        except OSError as e:
            self.log(f"Could not update {cfg.env_file.name}: {e}", "error")
            return False
        self.log(f"Environment configuration updated to version {new_version}", "ok")
        return True

    def pull_images(self) -> bool:
        self.log("Pulling new Docker images...")
        try:
            self.compose.pull()
        except CommandError as e:
            self.log(f"Failed to pull images: {e}", "error")
            return False
        self.log("Images pulled successfully", "ok")
        return True

    def restart_services(self) -> bool:
        self.log("Restarting services with new version...")
        try:
            self.log("Stopping services...")
            self.compose.down(timeout=30)
            self.log("Starting services with new version...")
            self.compose.up()
        except CommandError as e:
            self.log(f"Failed to restart services: {e}", "error")
            return False
        self.log("Services restarted", "ok")
        return True

    def verify_update(self, target: str) -> bool:
        name = self.config.display_name
        self.log("Verifying update success...")
        if not self.compose.wait_healthy(attempts=self.health_attempts,
                                         interval=self.health_interval, sleep=self._sleep):
            self.log("Services failed to start healthy within expected time", "error")
            return False

        self.log(f"Testing {name} application endpoint...")
        session = self.session or probe_session()
        if not wait_for_endpoint(session, self.config.health_url, attempts=self.http_attempts,
                                 interval=self.http_interval, sleep=self._sleep):
            self.log(f"{name} application is not responding", "error")
            return False
        self.log(f"{name} application is responding", "ok")

        image = self.compose.service_image(self.config.app_service)
        running = normalize_version(image_tag(image)) if image else UNKNOWN
        if running != target:
            self.log(f"Version verification failed: expected {target}, got {running}", "error")
            return False
        self.log(f"Update verified: now running version {running}", "ok")
        return True

    def rollback_update(self) -> bool:
        """Return to the version saved before the last update."""
        cfg = self.config
        self.log("Rolling back to previous version...", "warn")
        if not cfg.rollback_file.exists():
            self.log("No rollback version information found", "error")
            return False
        rollback_version = cfg.rollback_file.read_text(encoding="utf-8").strip()
        self.log(f"Rolling back to version: {rollback_version}")

        try:
            if cfg.env_backup_file.exists():
                os.replace(cfg.env_backup_file, cfg.env_file)
            elif is_valid_version(rollback_version):
                set_env_value(cfg.env_file, "GHOSTFOLIO_VERSION", rollback_version)
            else:
                self.log(f"Cannot roll back: no {cfg.env_backup_file.name} and "
                         f"previous version is {rollback_version!r}", "error")
                return False
        except OSError as e:
            self.log(f"Could not restore {cfg.env_file.name}: {e}", "error")
            return False

        ok = self.pull_images() and self.restart_services()
        ledger.append_record(cfg.history_file, {
            "action": "rollback",
            "to": rollback_version,
            "result": "success" if ok else "failed",
        })
        if ok:
            self.log("Rollback completed successfully", "ok")
        else:
            self.log("Rollback failed", "error")
        return ok

    # ── Runs ───────────────────────────────────────────────────────────────

    def perform_dry_run(self, target: str | None = None) -> int:
        self.log("Performing dry run - no changes will be made")
        current = self.get_current_version()
        latest = self.get_latest_version()
        if latest is None and target is None:
            return 1
        target = normalize_version(target or latest)

        print()
        print("DRY RUN SUMMARY:")
        print("================")
        print(f"Current version: {current}")
        print(f"Latest version:  {latest or UNKNOWN}")
        print(f"Target version:  {target}")
        print()
        if current == target:
            print("Already running the target version - no update needed")
        else:
            if (is_valid_version(target) and is_valid_version(current)
                    and version_key(target) < version_key(current)):
                print(f"Note: {target} is older than {current} (downgrade)")
            print(f"-> Would update from {current} to {target}")
            print("-> Would create backup before update")
            print("-> Would pull new Docker images")
            print("-> Would restart services")
            print("-> Would verify update success")
        print()
        print("To perform actual update, run without --dry-run option")
        return 0

    def perform_update(self, target: str | None = None, backup_first: bool = False) -> int:
        name = self.config.display_name
        current = self.get_current_version()
        if target is None:
            target = self.get_latest_version()
            if target is None:
                return 1
            self.log(f"No version specified, using latest: {target}")
        target = normalize_version(target)

        if not self.validate_version(target):
            return 1
        if current == target:
            self.log(f"Already running version {target}")
            return 0

        self.log(f"Updating from {current} to {target}")
        if backup_first and not self.create_pre_update_backup():
            ledger.append_record(self.config.history_file, {
                "action": "update", "from": current, "to": target,
                "result": "backup_failed",
            })
            return 1

        record = {"action": "update", "from": current, "to": target,
                  "backup": str(self.backup_path) if self.backup_path else None}
        if not self.update_env_version(target):
            record["result"] = "failed"
            ledger.append_record(self.config.history_file, record)
            return 1

        if self.pull_images() and self.restart_services() and self.verify_update(target):
            self.config.env_backup_file.unlink(missing_ok=True)
            record["result"] = "success"
            ledger.append_record(self.config.history_file, record)
            self.log("Update completed successfully!", "ok")
            self.log(f"{name} updated from {current} to {target}", "ok")
            return 0

        self.log("Update failed, attempting rollback...", "error")
        record["result"] = "rolled_back" if self.rollback_update() else "rollback_failed"
        ledger.append_record(self.config.history_file, record)
        return 1

    def confirm_without_backup(self) -> bool:
        self.log("Update without backup is not recommended for production", "warn")
        self.log("Use --backup-first option to create a backup before update", "warn")
        try:
            answer = self._input("Continue without backup? (y/N): ")
        except EOFError:
            return False
        return answer.strip().lower() in ("y", "yes")

    def version_info(self) -> int:
        cfg = self.config
        print(f"{cfg.display_name} Update Script v{cfg.project_version()}")
        print(f"Configured {cfg.display_name} version: {cfg.ghostfolio_version}")
        if cfg.rollback_file.exists():
            rollback = cfg.rollback_file.read_text(encoding="utf-8").strip()
            print(f"Rollback version available: {rollback}")
        return 0

    def history(self, limit: int = 10) -> int:
        records = ledger.read_records(self.config.history_file, limit=limit)
        if not records:
            print("No update history recorded")
            return 0
        for rec in records:
            line = f"{rec.get('timestamp', '?')}  {rec.get('action', '?'):<8}"
            if rec.get("from"):
                line += f" {rec['from']} ->"
            line += f" {rec.get('to', '?')}  {rec.get('result', '?')}"
            print(line)
        return 0

    def _banner(self, event: str) -> None:
        with open(self.config.update_log, "a", encoding="utf-8") as f:
            f.write(f"=== {self.config.display_name} Update {event} at "
                    f"{datetime.now().strftime('%Y-%m-%d %H:%M:%S')} ===\n")

    def run(self, target: str | None = None, backup_first: bool = False,
            dry_run: bool = False, rollback: bool = False, assume_yes: bool = False) -> int:
        if dry_run and rollback:
            raise ValueError("dry_run and rollback are mutually exclusive")
        if not self.config.env_file.exists():
            self.log(f"Environment file {self.config.env_file.name} not found", "error")
            return 1

        self._banner("Started")
        handler = attach_file_log(self.config.update_log)
        try:
            if rollback:
                rc = 0 if self.rollback_update() else 1
            elif dry_run:
                rc = self.perform_dry_run(target)
            elif not backup_first and not assume_yes and not self.confirm_without_backup():
                self.log("Update cancelled by user")
                rc = 0
            else:
                rc = self.perform_update(target, backup_first=backup_first)
        finally:
            detach_file_log(handler)
        self._banner("Completed")
        return rc


# ── CLI ───────────────────────────────────────────────────────────────────────

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Update the Ghostfolio application image with backup and rollback.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  update_stack.py --backup-first                       # Latest with backup\n"
            "  update_stack.py --to-version 2.185.0 --backup-first  # Specific version\n"
            "  update_stack.py --dry-run                            # What would change\n"
            "  update_stack.py --rollback                           # Previous version\n"
        ),
    )
    parser.add_argument("--to-version", metavar="VERSION", default=None,
                        help="Update to a specific version (e.g., 2.185.0)")
    parser.add_argument("--backup-first", action="store_true",
                        help="Create a backup before updating (recommended)")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--dry-run", action="store_true",
                      help="Show what would be updated without making changes")
    mode.add_argument("--rollback", action="store_true",
                      help="Roll back to the version saved before the last update")
    mode.add_argument("--version", action="store_true", help="Show version information")
    mode.add_argument("--history", nargs="?", type=int, const=10, default=None, metavar="N",
                      help="Show the last N update records (default: 10)")
    parser.add_argument("--yes", "-y", action="store_true",
                        help="Do not ask for confirmation when updating without backup")
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

    wf = UpdateWorkflow(config)
    if args.version:
        return wf.version_info()
    if args.history is not None:
        return wf.history(args.history)
    return wf.run(
        target=args.to_version,
        backup_first=args.backup_first,
        dry_run=args.dry_run,
        rollback=args.rollback,
        assume_yes=args.yes,
    )


if __name__ == "__main__":
    sys.exit(main())
