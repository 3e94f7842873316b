"""
Backup artifacts: naming, tar.gz archives and retention.

A backup is a directory (or the ``.tar.gz`` of that directory) named::

    <project>_backup_YYYYMMDD_HHMMSS

The timestamp makes lexicographic order chronological, which is what
retention relies on.
"""

from __future__ import annotations

import re
import shutil
import tarfile
from datetime import datetime
from pathlib import Path

from stack.logging import get_logger

_logger = get_logger("archive")

ARCHIVE_SUFFIX = ".tar.gz"


def backup_name(prefix: str, when: datetime | None = None) -> str:
    """``ghostfolio_backup`` -> ``ghostfolio_backup_20260101_120000``."""
    when = when or datetime.now()
    return f"{prefix}_{when.strftime('%Y%m%d_%H%M%S')}"


def _backup_re(prefix: str) -> re.Pattern:
    return re.compile(rf"^{re.escape(prefix)}_\d{{8}}_\d{{6}}(?:{re.escape(ARCHIVE_SUFFIX)})?$")


def list_backups(backup_dir: Path, prefix: str) -> list[Path]:
    """Backups in *backup_dir*, oldest first.  Other entries are ignored."""
    backup_dir = Path(backup_dir)
    if not backup_dir.is_dir():
        return []
    pattern = _backup_re(prefix)
    return sorted(
        (p for p in backup_dir.iterdir() if pattern.match(p.name)),
        key=lambda p: p.name,
    )


def latest_backup(backup_dir: Path, prefix: str) -> Path | None:
    backups = list_backups(backup_dir, prefix)
    return backups[-1] if backups else None


def prune_backups(backup_dir: Path, prefix: str, keep: int) -> list[Path]:
    """Remove old backups so that only the *keep* most-recent are retained.

    Returns:
        List of deleted backup paths.

    Raises:
        ValueError: If *keep* is less than 1.
    """
    if keep < 1:
        raise ValueError(f"keep must be >= 1, got {keep}")

    backups = list_backups(backup_dir, prefix)
    to_delete = backups[:-keep] if len(backups) > keep else []
    for path in to_delete:
        _logger.debug("Pruning old backup: %s", path)
        if path.is_dir():
            shutil.rmtree(path)
        else:
            path.unlink()
    return to_delete


def create_archive(source_dir: Path) -> Path:
    """Pack *source_dir* into ``<source_dir>.tar.gz`` and remove the directory."""
    source_dir = Path(source_dir)
    archive = source_dir.with_name(source_dir.name + ARCHIVE_SUFFIX)
    with tarfile.open(archive, "w:gz") as tar:
        tar.add(source_dir, arcname=source_dir.name)
    shutil.rmtree(source_dir)
    return archive


def extract_archive(archive: Path, dest_dir: Path) -> Path:
    """Unpack a backup archive into *dest_dir*.

    Returns:
        The backup directory inside *dest_dir*.

    Raises:
        ValueError: If the file is not a readable gzip tarball, a member
                    would land outside *dest_dir*, or the archive does not
                    hold exactly one top-level directory.
    """
    archive, dest_dir = Path(archive), Path(dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)
    root = dest_dir.resolve()
    try:
        with tarfile.open(archive, "r:gz") as tar:
            members = tar.getmembers()
            tops = set()
            for m in members:
                target = (root / m.name).resolve()
                if target != root and root not in target.parents:
                    raise ValueError(f"Unsafe path in archive: {m.name}")
                if m.issym() or m.islnk() or m.isdev():
                    raise ValueError(f"Unsupported member type in archive: {m.name}")
                tops.add(Path(m.name).parts[0])
            if len(tops) != 1:
                raise ValueError(f"{archive.name} does not contain a single backup directory")
            if hasattr(tarfile, "data_filter"):
                tar.extractall(dest_dir, members=members, filter="data")
            else:
                tar.extractall(dest_dir, members=members)
    except (tarfile.TarError, EOFError) as exc:
        raise ValueError(f"{archive.name} is not a readable backup archive") from exc
    return dest_dir / tops.pop()
