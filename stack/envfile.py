"""
Environment file handling for the compose bundle.

The bundle keeps its settings in two dotenv files next to the compose file:

    .env      compose interpolation values plus the app container's env
    .db.env   credentials for the postgres and redis containers

Both start life as copies of their ``*.example`` templates.  Parsing and key
rewriting go through python-dotenv, which reads the same syntax compose does:
``export`` prefixes, quoting, trailing ``# comments`` and ``${VAR}`` /
``${VAR:-default}`` references to earlier keys or the process environment.
"""

from __future__ import annotations

import io
import os
import shutil
import stat
from pathlib import Path

from dotenv import dotenv_values, set_key
from dotenv.parser import parse_stream

PLACEHOLDER = "CHANGE_THIS"
MASK = "***MASKED***"


def _as_strings(values) -> dict[str, str]:
    # A bare ``KEY`` line has no value; compose treats it as empty
    return {k: ("" if v is None else v) for k, v in values.items()}


def parse_env_text(text: str) -> dict[str, str]:
    """Parse dotenv *text* into an ordered dict with references expanded."""
    return _as_strings(dotenv_values(stream=io.StringIO(text), interpolate=True))


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse a dotenv file.  Raises FileNotFoundError when *path* is missing."""
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"{path.name} file not found: {path}")
    return _as_strings(dotenv_values(path, interpolate=True, encoding="utf-8"))


def set_env_value(path: Path, key: str, value: str) -> bool:
    """Set ``key=value`` in a dotenv file, appending the line if absent.

    Every existing assignment of *key* is rewritten; other lines, comments
    and the file mode are preserved.

    Returns:
        True if the file content changed.
    """
    path = Path(path)
    mode = None
    if path.exists():
        if dotenv_values(path, interpolate=False, encoding="utf-8").get(key) == value:
            return False
        mode = stat.S_IMODE(path.stat().st_mode)
    set_key(path, key, value, quote_mode="never", encoding="utf-8")
    if mode is not None:
        os.chmod(path, mode)
    return True


def ensure_env_file(target: Path, template: Path) -> bool:
    """Create *target* from *template* if it does not exist yet.

    The target is always left with mode 0600.

    Returns:
        True if the file was created from the template.

    Raises:
        FileNotFoundError: If neither the target nor the template exists.
    """
    target, template = Path(target), Path(template)
    created = False
    if not target.exists():
        if not template.exists():
            raise FileNotFoundError(f"{template.name} file not found: {template}")
        shutil.copyfile(template, target)
        created = True
    os.chmod(target, 0o600)
    return created


def find_placeholders(path: Path, marker: str = PLACEHOLDER) -> list[str]:
    """Keys in a dotenv file whose raw value still contains *marker*."""
    raw = dotenv_values(Path(path), interpolate=False, encoding="utf-8")
    return [key for key, value in raw.items() if value and marker in value]


def mask_env_text(text: str) -> str:
    """Replace every assigned value with a mask, keeping keys and comments."""
    out = []
    for binding in parse_stream(io.StringIO(text)):
        original = binding.original.string
        if binding.error:
            # Unparsable lines may still hold a secret
            out.append(MASK + ("\n" if original.endswith("\n") else ""))
            continue
        if binding.key is None:
            out.append(original)
            continue
        lead = original[:len(original) - len(original.lstrip())]
        end = "\n" if original.endswith("\n") else ""
        out.append(f"{lead}{binding.key}={MASK}{end}")
    return "".join(out)
