"""
Thin wrapper around the ``docker compose`` CLI.

Every call runs ``docker compose -f <compose_file> <args>`` from the bundle
directory, so relative paths and the ``.env`` file resolve the same way they
do when an operator types the command by hand.
"""

from __future__ import annotations

import json
import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Callable, Sequence

from stack.logging import get_logger

_logger = get_logger("compose")

DEFAULT_TIMEOUT = 1800  # pulls on a slow link can take a while


class CommandError(RuntimeError):
    """An external command exited non-zero."""

    def __init__(self, cmd: Sequence[str], returncode: int, stderr: str = "") -> None:
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        msg = f"{' '.join(self.cmd)} exited with {returncode}"
        if self.stderr:
            msg += f": {self.stderr.splitlines()[-1]}"
        super().__init__(msg)


@dataclass
class ServiceStatus:
    """One row of ``docker compose ps``."""

    service: str
    name: str = ""
    state: str = ""
    health: str = ""
    image: str = ""
    status: str = ""

    @property
    def running(self) -> bool:
        return self.state == "running"

    @property
    def healthy(self) -> bool:
        """Running, and healthy if the service defines a health check."""
        return self.running and self.health in ("", "healthy")

    @classmethod
    def from_dict(cls, d: dict) -> "ServiceStatus":
        return cls(
            service=d.get("Service", ""),
            name=d.get("Name", ""),
            state=(d.get("State") or "").lower(),
            health=(d.get("Health") or "").lower(),
            image=d.get("Image", ""),
            status=d.get("Status", ""),
        )


def parse_ps_output(text: str) -> list[ServiceStatus]:
    """Parse ``docker compose ps --format json``.

    Older compose releases print one JSON array, newer ones print one JSON
    object per line; both are accepted.
    """
    text = text.strip()
    if not text:
        return []
    if text.startswith("["):
        rows = json.loads(text)
    else:
        rows = [json.loads(line) for line in text.splitlines() if line.strip()]
    return [ServiceStatus.from_dict(r) for r in rows]


class ComposeRunner:
    """Runs docker / docker compose commands for one bundle."""

    def __init__(self, compose_file: Path, project_dir: Path | None = None,
                 docker: str = "docker",
                 runner: Callable[..., subprocess.CompletedProcess] | None = None,
                 services: Sequence[str] = ()):
        """Initialize the runner.

        Args:
            compose_file: Path to docker-compose.yml.
            project_dir:  Working directory for every command
                          (default: the compose file's directory).
            docker:       Docker executable name or path.
            runner:       Replacement for subprocess.run (tests).
            services:     Services that must be listed by ``ps`` before the
                          stack counts as healthy.
        """
        self.compose_file = Path(compose_file)
        self.project_dir = Path(project_dir) if project_dir else self.compose_file.parent
        self.docker = docker
        self._runner = runner
        self.services = tuple(services)

    # ── command plumbing ────────────────────────────────────────────────

    def compose_cmd(self, *args: str) -> list[str]:
        return [self.docker, "compose", "-f", str(self.compose_file), *args]

    def _run(self, cmd: list[str], check: bool = True, capture: bool = True,
             stdin: IO | None = None, stdout: IO | None = None,
             timeout: int | None = DEFAULT_TIMEOUT) -> subprocess.CompletedProcess:
        run = self._runner or subprocess.run
        _logger.debug("$ %s", " ".join(cmd))
        kwargs = {"cwd": str(self.project_dir), "text": True, "timeout": timeout}
        if stdin is not None:
            kwargs["stdin"] = stdin
        if stdout is not None:
            kwargs["stdout"] = stdout
            kwargs["stderr"] = subprocess.PIPE
        elif capture:
            kwargs["capture_output"] = True
        result = run(cmd, **kwargs)
        if check and result.returncode != 0:
            raise CommandError(cmd, result.returncode, result.stderr or "")
        return result

    def compose(self, *args: str, **kwargs) -> subprocess.CompletedProcess:
        return self._run(self.compose_cmd(*args), **kwargs)

    def _succeeds(self, cmd: list[str], timeout: int = 60) -> bool:
        try:
            return self._run(cmd, check=False, timeout=timeout).returncode == 0
        except (OSError, subprocess.TimeoutExpired):
            return False

    # ── probes ──────────────────────────────────────────────────────────

    def docker_installed(self) -> bool:
        return shutil.which(self.docker) is not None

    def compose_available(self) -> bool:
        return self._succeeds([self.docker, "compose", "version"])

    def daemon_running(self) -> bool:
        return self._succeeds([self.docker, "info"])

    def validate_config(self) -> str | None:
        """Return None if compose accepts the bundle, else its error text."""
        result = self.compose("config", "--quiet", check=False)
        if result.returncode == 0:
            return None
        return (result.stderr or "").strip() or f"exit code {result.returncode}"

    def manifest_exists(self, image: str) -> bool:
        return self._succeeds([self.docker, "manifest", "inspect", image], timeout=120)

    # ── lifecycle ───────────────────────────────────────────────────────

    def pull(self) -> None:
        self.compose("pull", capture=False)

    def up(self) -> None:
        self.compose("up", "-d", capture=False)

    def down(self, timeout: int = 30) -> None:
        self.compose("down", "--timeout", str(timeout), capture=False)

    def stop(self, *services: str) -> None:
        self.compose("stop", *services)

    def start(self, *services: str) -> None:
        self.compose("start", *services)

    # ── status ──────────────────────────────────────────────────────────

    def ps(self, service: str | None = None) -> list[ServiceStatus]:
        args = ["ps", "--format", "json"]
        if service:
            args.append(service)
        result = self.compose(*args, check=False)
        if result.returncode != 0:
            return []
        return parse_ps_output(result.stdout or "")

    def ps_table(self) -> str:
        return (self.compose("ps", check=False).stdout or "").rstrip()

    def any_running(self) -> bool:
        return any(s.running for s in self.ps())

    def all_healthy(self) -> bool:
        statuses = self.ps()
        # ps leaves out exited containers, so a missing service is down
        listed = {s.service for s in statuses}
        if any(name not in listed for name in self.services):
            return False
        return bool(statuses) and all(s.healthy for s in statuses)

    def wait_healthy(self, attempts: int = 60, interval: float = 2.0,
                     sleep: Callable[[float], None] = time.sleep,
                     on_wait: Callable[[int], None] | None = None) -> bool:
        """Poll ``ps`` until every service is healthy or attempts run out."""
        for attempt in range(1, attempts + 1):
            if self.all_healthy():
                return True
            if attempt == attempts:
                break
            if on_wait:
                on_wait(attempt)
            sleep(interval)
        return False

    def service_image(self, service: str) -> str | None:
        """Image reference the running container of *service* was created from."""
        for status in self.ps(service):
            if status.service == service and status.image:
                return status.image
        return None

    # ── data movement ───────────────────────────────────────────────────

    def exec_in(self, service: str, args: Sequence[str], stdin: IO | None = None,
                stdout: IO | None = None, check: bool = True,
                timeout: int | None = DEFAULT_TIMEOUT) -> subprocess.CompletedProcess:
        """``docker compose exec -T <service> <args>`` (no TTY, pipe-friendly)."""
        return self.compose("exec", "-T", service, *args, stdin=stdin, stdout=stdout,
                            check=check, timeout=timeout)

    def copy(self, src: str, dst: str, check: bool = True) -> subprocess.CompletedProcess:
        """``docker compose cp``; container paths are written ``service:/path``."""
        return self.compose("cp", src, dst, check=check)

    def run_once(self, service: str, entrypoint: str,
                 args: Sequence[str]) -> subprocess.CompletedProcess:
        """Run a throwaway container of *service* without its dependencies."""
        return self.compose("run", "--rm", "--no-deps", "--entrypoint", entrypoint,
                            service, *args)
