"""
Bind-mount directory tree under DATA_BASE_PATH.

    <base>/
    ├── data/
    │   ├── db/postgre/      PostgreSQL data files   (0700)
    │   ├── cache/redis/     Redis persistence files (0700)
    │   └── storage/         uploaded files
    └── logs/
        ├── postgres/
        └── redis/

The base path usually sits somewhere only root may write (``/srv``,
``/var/www``), so creation falls back to ``sudo`` and then hands the tree
to the invoking user.
"""

from __future__ import annotations

import os
import subprocess
from pathlib import Path
from typing import Callable

from stack.logging import get_logger

_logger = get_logger("layout")

# (relative path, mode); parents are listed before children
DATA_TREE: tuple[tuple[str, int], ...] = (
    ("data", 0o755),
    ("data/db", 0o755),
    ("data/db/postgre", 0o700),
    ("data/cache", 0o755),
    ("data/cache/redis", 0o700),
    ("data/storage", 0o755),
    ("logs", 0o755),
    ("logs/postgres", 0o755),
    ("logs/redis", 0o755),
)

STORAGE_DIR = "data/storage"
LOGS_DIR = "logs"


def _nearest_existing(path: Path) -> Path:
    path = Path(path).absolute()
    while not path.exists() and path != path.parent:
        path = path.parent
    return path


def needs_privileges(path: Path) -> bool:
    """True if *path* cannot be created or written as the current user."""
    return not os.access(_nearest_existing(path), os.W_OK)


def has_sudo(runner: Callable[..., subprocess.CompletedProcess] | None = None) -> bool:
    """Running as root, or passwordless sudo is available."""
    if hasattr(os, "geteuid") and os.geteuid() == 0:
        return True
    run = runner or subprocess.run
    try:
        result = run(["sudo", "-n", "true"], capture_output=True, timeout=10)
    except (OSError, subprocess.TimeoutExpired):
        return False
    return result.returncode == 0


def _sudo(args: list[str], runner) -> None:
    run = runner or subprocess.run
    result = run(["sudo", *args], capture_output=True, text=True)
    if result.returncode != 0:
        raise PermissionError(
            f"sudo {' '.join(args)} failed: {(result.stderr or '').strip()}"
        )


def ensure_dir(path: Path, use_sudo: bool = False, runner=None) -> Path:
    """Create *path* (and parents) owned by the current user.

    Raises:
        PermissionError: If the directory cannot be created, even with sudo.
    """
    path = Path(path)
    try:
        path.mkdir(parents=True, exist_ok=True)
    except PermissionError:
        if not use_sudo:
            raise
        _logger.debug("mkdir %s denied; retrying with sudo", path)
        _sudo(["mkdir", "-p", str(path)], runner)
        _sudo(["chown", f"{os.getuid()}:{os.getgid()}", str(path)], runner)
    return path


def create_data_tree(base: Path, use_sudo: bool = False, runner=None) -> list[Path]:
    """Create the bind-mount tree under *base* and apply its permissions.

    Returns:
        Every directory of the tree, base first.

    Raises:
        PermissionError: If creation fails and sudo is not allowed or fails.
    """
    base = Path(base)
    dirs = [base] + [base / rel for rel, _mode in DATA_TREE]
    try:
        for d in dirs:
            d.mkdir(parents=True, exist_ok=True)
    except PermissionError:
        if not use_sudo:
            raise
        _logger.debug("Creating %s with sudo", base)
        _sudo(["mkdir", "-p", *[str(d) for d in dirs]], runner)
        _sudo(["chown", "-R", f"{os.getuid()}:{os.getgid()}", str(base)], runner)

    os.chmod(base, 0o755)
    for rel, mode in DATA_TREE:
        os.chmod(base / rel, mode)
    return dirs
