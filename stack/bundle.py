"""Static checks of the compose bundle against its resolved environment."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Iterable, Mapping

import yaml

REQUIRED_SERVICES = ("ghostfolio", "postgres", "redis")

# ${VAR}, ${VAR:-x}, ${VAR-x}, ${VAR:?msg}, ${VAR?msg}; $${...} is an escape
_REF_RE = re.compile(
    r"(?<!\$)\$\{([A-Za-z_][A-Za-z0-9_]*)(:?[-?][^}]*)?\}"
)


def load_compose(path: Path) -> dict:
    """Load and minimally validate a compose file.

    Raises:
        FileNotFoundError: If *path* does not exist.
        ValueError: If the file is not YAML or lacks a ``services`` mapping.
    """
    try:
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ValueError(f"{path} is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"{path} does not contain a mapping")
    if not isinstance(data.get("services"), dict):
        raise ValueError(f"{path} has no services section")
    return data


def referenced_variables(text: str) -> dict[str, bool]:
    """Variables referenced as ``${VAR...}`` mapped to "has a default"."""
    refs: dict[str, bool] = {}
    for m in _REF_RE.finditer(text):
        name, suffix = m.group(1), m.group(2) or ""
        has_default = suffix.startswith("-") or suffix.startswith(":-")
        refs[name] = refs.get(name, False) or has_default
    return refs


def check_bundle(compose_file: Path, env: Mapping[str, str],
                 services: Iterable[str] = REQUIRED_SERVICES) -> list[str]:
    """Return a list of problems with the bundle; empty means it looks sound."""
    problems: list[str] = []
    try:
        data = load_compose(compose_file)
    except (OSError, ValueError) as exc:
        return [str(exc)]

    defined = data["services"]
    for name in services:
        svc = defined.get(name)
        if not isinstance(svc, dict):
            problems.append(f"service '{name}' is not defined")
            continue
        if not svc.get("image"):
            problems.append(f"service '{name}' has no image")
        if not svc.get("healthcheck"):
            problems.append(f"service '{name}' has no healthcheck")

    text = Path(compose_file).read_text(encoding="utf-8")
    for var, has_default in sorted(referenced_variables(text).items()):
        if not has_default and not env.get(var):
            problems.append(f"variable {var} is not set")
    return problems
