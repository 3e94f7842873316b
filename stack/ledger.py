"""
Update history ledger: append-only JSONL record of update and rollback runs.

Every update attempt appends one line to ``update_history.jsonl`` in the
bundle directory, so recent history is one command away::

    tail -5 update_history.jsonl | python -m json.tool

The ledger is never truncated; it is the audit trail behind ``--history``.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


def append_record(ledger_path: Path, record: dict[str, Any]) -> Path:
    """Append *record* (plus a UTC timestamp) as one JSON line."""
    entry = {"timestamp": datetime.now(timezone.utc).isoformat()}
    entry.update(record)
    ledger_path = Path(ledger_path)
    ledger_path.parent.mkdir(parents=True, exist_ok=True)
    with open(ledger_path, "a", encoding="utf-8") as f:
        f.write(json.dumps(entry, separators=(",", ":"), default=str) + "\n")
    return ledger_path


def read_records(ledger_path: Path, limit: int | None = None) -> list[dict[str, Any]]:
    """Return the last *limit* records (all when None), oldest first."""
    ledger_path = Path(ledger_path)
    if not ledger_path.exists():
        return []
    records = []
    for line in ledger_path.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        try:
            rec = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(rec, dict):
            records.append(rec)
    if limit is not None:
        records = records[-limit:] if limit > 0 else []
    return records
