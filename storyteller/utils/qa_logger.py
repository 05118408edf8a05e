"""QA audit trail.

Appends content-intensity validation failures to a JSON-lines file so they
can be reviewed offline.  Writing never raises: a broken audit file must not
break story generation.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from storyteller.config import get_settings
from storyteller.utils.logging_config import get_logger

logger = get_logger("storyteller.qa")

EXCERPT_LIMIT = 500


def _log_path(path: Optional[str | Path] = None) -> Path:
    return Path(path or get_settings().qa_log_path)


def find_mismatches(
    expected: Mapping[str, float],
    actual: Mapping[str, float],
    tolerance: float = 15,
) -> List[Dict[str, Any]]:
    """Dimensions where the analyzed level is more than *tolerance* points off the slider."""
    mismatches = []
    for dimension, wanted in expected.items():
        if dimension not in actual:
            continue
        delta = actual[dimension] - wanted
        if abs(delta) <= tolerance:
            continue
        mismatches.append({
            "dimension": dimension,
            "expected": wanted,
            "actual": actual[dimension],
            "delta": delta,
            "severity": "high" if abs(delta) > 2 * tolerance else "medium",
        })
    return mismatches


def describe_mismatches(mismatches: List[Dict[str, Any]]) -> str:
    if not mismatches:
        return "No mismatches"
    parts = []
    for m in mismatches:
        direction = "exceeded" if m["delta"] > 0 else "under-delivered"
        parts.append(
            f"{m['dimension']}: expected {m['expected']}%, got {m['actual']}% "
            f"({direction} by {abs(m['delta'])}%)"
        )
    return "; ".join(parts)


def log_qa_error(entry: Dict[str, Any], *, path: Optional[str | Path] = None) -> bool:
    record = {"timestamp": datetime.now(timezone.utc).isoformat(), **entry}
    target = _log_path(path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(record, default=str) + "\n")
    except OSError as exc:
        logger.error("qa_log_write_failed | path=%s | error=%s", target, exc)
        return False

    logger.warning("qa_error_logged | type=%s | session=%s | mismatches=%d",
                   entry.get("type"), entry.get("session_id"), len(entry.get("mismatches") or []))
    return True


def log_intensity_mismatch(
    session_id: str,
    expected: Mapping[str, float],
    actual: Mapping[str, float],
    mismatches: List[Dict[str, Any]],
    excerpt: str = "",
    *,
    path: Optional[str | Path] = None,
) -> bool:
    excerpt = excerpt or ""
    if len(excerpt) > EXCERPT_LIMIT:
        excerpt = excerpt[:EXCERPT_LIMIT] + "..."
    return log_qa_error(
        {
            "type": "intensity_mismatch",
            "session_id": session_id,
            "expected": dict(expected),
            "actual": dict(actual),
            "mismatches": mismatches,
            "context": describe_mismatches(mismatches),
            "excerpt": excerpt,
        },
        path=path,
    )


def get_recent_errors(limit: int = 50, *, path: Optional[str | Path] = None) -> List[Dict[str, Any]]:
    target = _log_path(path)
    try:
        lines = target.read_text(encoding="utf-8").splitlines()
    except FileNotFoundError:
        return []
    except OSError as exc:
        logger.error("qa_log_read_failed | path=%s | error=%s", target, exc)
        return []

    entries = []
    for line in lines[-limit:] if limit > 0 else []:
        if not line.strip():
            continue
        try:
            entries.append(json.loads(line))
        except json.JSONDecodeError:
            continue
    return entries


def get_stats(hours: float = 24, *, path: Optional[str | Path] = None) -> Dict[str, Any]:
    cutoff = datetime.now(timezone.utc) - timedelta(hours=hours)
    recent = []
    for entry in get_recent_errors(1000, path=path):
        try:
            stamp = datetime.fromisoformat(entry["timestamp"])
        except (KeyError, TypeError, ValueError):
            continue
        if stamp >= cutoff:
            recent.append(entry)

    by_type: Dict[str, int] = {}
    by_dimension: Dict[str, int] = {}
    for entry in recent:
        by_type[entry.get("type", "unknown")] = by_type.get(entry.get("type", "unknown"), 0) + 1
        for m in entry.get("mismatches") or []:
            dim = m.get("dimension", "unknown")
            by_dimension[dim] = by_dimension.get(dim, 0) + 1

    return {
        "total_errors": len(recent),
        "time_window_hours": hours,
        "by_type": by_type,
        "by_dimension": by_dimension,
        "oldest_error": recent[0]["timestamp"] if recent else None,
        "newest_error": recent[-1]["timestamp"] if recent else None,
    }
