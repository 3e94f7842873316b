#!/usr/bin/env python3
"""
Deploy the Ghostfolio stack with Docker Compose.

Stages:
1. Check requirements (docker, compose plugin, sudo when needed)
2. Create the bind-mount directory tree under DATA_BASE_PATH
3. Create .env / .db.env from their examples and refuse placeholder secrets
4. Check the compose bundle against the resolved environment
5. Pull images, start the services and wait until they are healthy
6. Verify the application answers on its health endpoint

Usage:
    python deploy_stack.py                    # Full deployment (setup + start)
    python deploy_stack.py --setup-only       # Directories and env files only
    python deploy_stack.py --start-only       # Start services only
    python deploy_stack.py --check            # Validate the bundle and exit
    python deploy_stack.py --bundle-dir /opt/ghostfolio
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

import requests

from stack.bundle import check_bundle
from stack.compose import CommandError, ComposeRunner
from stack.envfile import ensure_env_file, find_placeholders
from stack.health import check_endpoint
from stack.layout import create_data_tree, has_sudo, needs_privileges
from stack.logging import LEVELS, get_logger, setup_logging
from utils.config import StackConfig
from utils.http import probe_session

_logger = get_logger("deploy")


class DeployWorkflow:
    """Sets up and starts the compose bundle."""

    def __init__(self, config: StackConfig, compose: ComposeRunner | None = None,
                 session: requests.Session | None = None,
                 health_attempts: int = 60, health_interval: float = 2.0):
        self.config = config
        self.compose = compose or ComposeRunner(config.compose_file, config.bundle_dir,
                                                services=config.services)
        self.session = session
        self.health_attempts = health_attempts
        self.health_interval = health_interval
        self.results: dict[str, str] = {}

    def log(self, msg: str, level: str = "info") -> None:
        _logger.log(LEVELS[level], msg)

    def _record(self, stage: str, ok: bool) -> bool:
        self.results[stage] = "completed" if ok else "failed"
        return ok

    # ── Stages ─────────────────────────────────────────────────────────────

    def check_requirements(self, for_setup: bool = True) -> bool:
        """Docker, the compose plugin and, for setup, enough privileges."""
        self.log("Checking system requirements...")
        if not self.compose.docker_installed():
            self.log("Docker is not installed or not in PATH", "error")
            return self._record("requirements", False)
        if not self.compose.compose_available():
            self.log("Docker Compose is not available", "error")
            return self._record("requirements", False)
        if for_setup and needs_privileges(self.config.data_base_path) and not has_sudo():
            self.log(f"Creating {self.config.data_base_path} requires sudo privileges", "error")
            return self._record("requirements", False)
        self.log("System requirements check passed", "ok")
        return self._record("requirements", True)

    def create_directories(self) -> bool:
        base = self.config.data_base_path
        self.log(f"Creating directory structure at {base}...")
        try:
            create_data_tree(base, use_sudo=True)
        except OSError as e:
            self.log(f"Could not create {base}: {e}", "error")
            return self._record("directories", False)
        self.log("Directory structure created successfully", "ok")
        return self._record("directories", True)

    def setup_environment_files(self) -> bool:
        """Create env files from templates and reject unconfigured secrets."""
        self.log("Setting up environment files...")
        cfg = self.config
        pairs = [
            (cfg.env_file, cfg.bundle_dir / ".env.example", "SECRETS"),
            (cfg.db_env_file, cfg.bundle_dir / ".db.env.example", "PASSWORDS"),
        ]
        for target, template, what in pairs:
            try:
                created = ensure_env_file(target, template)
            except FileNotFoundError as e:
                self.log(str(e), "error")
                return self._record("environment", False)
            if created:
                self.log(f"Created {target.name} from {template.name} - "
                         f"PLEASE CONFIGURE {what}!", "warn")
            else:
                self.log(f"{target.name} file already exists")

        unconfigured = []
        for target, _template, _what in pairs:
            unconfigured += [f"{target.name}:{key}" for key in find_placeholders(target)]
        if unconfigured:
            self.log("Environment files contain default values that must be changed!", "error")
            self.log(f"Replace 'CHANGE_THIS' in: {', '.join(unconfigured)}", "error")
            self.log("Generate secure passwords using: openssl rand -base64 32", "error")
            return self._record("environment", False)

        # Settings may have changed now that .env exists
        self.config = StackConfig.from_env(cfg.bundle_dir)
        self.log("Environment files configured", "ok")
        return self._record("environment", True)

    def check_bundle(self) -> bool:
        self.log("Checking compose bundle...")
        cfg = self.config
        for key, value in cfg.to_dict().items():
            self.log(f"  {key} = {value}", "detail")
        problems = check_bundle(
            cfg.compose_file, cfg.env,
            services=cfg.services,
        )
        for problem in problems:
            self.log(problem, "error")
        if problems:
            return self._record("bundle", False)
        self.log("Compose bundle is consistent", "ok")
        return self._record("bundle", True)

    def start_services(self) -> bool:
        self.log(f"Starting {self.config.display_name} services with Docker Compose...")
        try:
            self.log("Pulling Docker images...")
            self.compose.pull()
            self.log("Starting services...")
            self.compose.up()
        except CommandError as e:
            self.log(str(e), "error")
            return self._record("start", False)

        self.log("Waiting for services to be ready...")
        healthy = self.compose.wait_healthy(
            attempts=self.health_attempts, interval=self.health_interval,
            on_wait=lambda n: self.log(f"still waiting ({n}/{self.health_attempts})", "detail"),
        )
        if not healthy:
            self.log("Services failed to start within expected time", "error")
            self.log("Check service logs: docker compose logs", "error")
            return self._record("start", False)
        self.log("Services are running and healthy", "ok")
        return self._record("start", True)

    def verify_deployment(self) -> bool:
        """Show status and probe the app; an unanswered probe is only a warning."""
        cfg = self.config
        self.log("Verifying deployment...")
        self.log("Service status:")
        print(self.compose.ps_table())

        self.log(f"Testing {cfg.display_name} application...")
        session = self.session or probe_session()
        ok, message = check_endpoint(session, cfg.health_url)
        if ok:
            self.log(f"{cfg.display_name} is responding on port {cfg.external_port}", "ok")
        else:
            self.log(f"{cfg.display_name} may still be starting up ({message})", "warn")
            self.log(f"Check logs with: docker compose logs {cfg.app_service}")

        print()
        self.log("Deployment completed successfully!", "ok")
        print()
        print("Next steps:")
        print(f"1. Open {cfg.app_url} in your browser")
        print("2. Create the first admin user account")
        print(f"3. Configure the reverse proxy to forward {cfg.base_domain} "
              f"to localhost:{cfg.external_port}")
        print()
        print("Useful commands:")
        print("  View logs:     docker compose logs -f")
        print("  Stop services: docker compose down")
        print("  Update:        python update_stack.py --backup-first")
        print("  Backup:        python backup_stack.py --compress")
        print()
        return self._record("verify", True)

    # ── Orchestration ─────────────────────────────────────────────────────

    def run_setup(self) -> bool:
        self.log(f"Starting {self.config.display_name} deployment setup...")
        return (self.check_requirements(for_setup=True)
                and self.create_directories()
                and self.setup_environment_files())

    def run_start(self) -> bool:
        return (self.check_requirements(for_setup=False)
                and self.check_bundle()
                and self.start_services()
                and self.verify_deployment())

    def run(self, setup_only: bool = False, start_only: bool = False) -> int:
        if setup_only and start_only:
            raise ValueError("setup_only and start_only are mutually exclusive")
        if not start_only:
            if not self.run_setup():
                return 1
            if setup_only:
                self.log("Setup completed. Run 'deploy_stack.py --start-only' "
                         "to start services.", "ok")
                return 0
        return 0 if self.run_start() else 1


# ── CLI ───────────────────────────────────────────────────────────────────────

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Deploy the Ghostfolio stack using Docker Compose.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  deploy_stack.py                 # Full deployment (setup + start)\n"
            "  deploy_stack.py --setup-only    # Setup directories and files only\n"
            "  deploy_stack.py --start-only    # Start services only\n"
        ),
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--setup-only", action="store_true",
                      help="Only create directories and environment files")
    mode.add_argument("--start-only", action="store_true",
                      help="Only start Docker services (skip setup)")
    mode.add_argument("--check", action="store_true",
                      help="Validate the compose bundle and environment, then exit")
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

    wf = DeployWorkflow(config)
    if args.check:
        ok = wf.check_bundle()
        error = wf.compose.validate_config() if ok else None
        if error:
            _logger.error("docker compose config: %s", error)
            ok = False
        return 0 if ok else 1
    return wf.run(setup_only=args.setup_only, start_only=args.start_only)


if __name__ == "__main__":
    sys.exit(main())
