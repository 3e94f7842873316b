"""Release version helpers: parsing, comparison and the latest-release lookup."""

from __future__ import annotations

import re

import requests

GITHUB_API = "https://api.github.com"

_VERSION_RE = re.compile(r"^\d+\.\d+\.\d+$")


def normalize_version(tag: str) -> str:
    """``" v2.185.0\\n"`` -> ``"2.185.0"``."""
    tag = (tag or "").strip()
    if tag[:1] in ("v", "V") and tag[1:2].isdigit():
        tag = tag[1:]
    return tag


def is_valid_version(version: str) -> bool:
    """True for plain ``X.Y.Z`` release versions."""
    return bool(_VERSION_RE.match(version or ""))


def version_key(version: str) -> tuple[int, ...]:
    """Sort key for ``X.Y.Z`` strings.  Raises ValueError for anything else."""
    if not is_valid_version(version):
        raise ValueError(f"Invalid version format: {version!r}")
    return tuple(int(p) for p in version.split("."))


def image_tag(image: str) -> str:
    """Tag part of an image reference.

    Examples:
        ghostfolio/ghostfolio:2.185.0           -> 2.185.0
        registry:5000/ghostfolio/ghostfolio      -> latest
        ghostfolio/ghostfolio:2.1.0@sha256:abc  -> 2.1.0
    """
    ref = image.split("@", 1)[0]
    last = ref.rsplit("/", 1)[-1]
    if ":" in last:
        return last.rsplit(":", 1)[1]
    return "latest"


def fetch_latest_release(session: requests.Session, repo: str, timeout: float = 15) -> str:
    """Version of the latest GitHub release of *repo* (``owner/name``).

    Raises:
        requests.RequestException: On network or HTTP errors.
        ValueError: If the response carries no tag name.
    """
    url = f"{GITHUB_API}/repos/{repo}/releases/latest"
    response = session.get(
        url,
        headers={"Accept": "application/vnd.github+json"},
        timeout=timeout,
    )
    response.raise_for_status()
    tag = response.json().get("tag_name")
    if not tag:
        raise ValueError(f"No tag_name in latest release of {repo}")
    return normalize_version(tag)
