"""Structured payload extraction from agent text."""

import json
import re
from typing import Any, Dict, Optional

from ..core.job import JobResult

JSON_BLOCK_RE = re.compile(r"```json\n?([\s\S]*?)\n?```")

GENERIC_SUMMARY = "Migration finished. See the job log for details."


def _parse_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def extract_structured_payload(text: str) -> Dict[str, Any]:
    """Pull the JSON object an agent was asked to finish with.

    Tries the first fenced ```json block, then the whole text, and falls
    back to ``{"rawOutput": text}``. Never raises.
    """
    match = JSON_BLOCK_RE.search(text)
    if match:
        payload = _parse_object(match.group(1))
        if payload is not None:
            return payload

    payload = _parse_object(text.strip())
    if payload is not None:
        return payload

    return {"rawOutput": text}


def _count(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, (list, tuple, dict)):
        return len(value)
    return 0


def _total(value: Any) -> int:
    if isinstance(value, dict):
        return sum(_total(v) for v in value.values())
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    return 0


def map_execution_result(payload: Dict[str, Any]) -> JobResult:
    """Map an execution payload onto the job result fields."""
    if set(payload) == {"rawOutput"}:
        return JobResult(summary=GENERIC_SUMMARY, raw_output=payload["rawOutput"])

    notes = payload.get("notes")
    if isinstance(notes, list) and notes:
        summary = ", ".join(str(note) for note in notes)
    else:
        summary = str(payload.get("summary") or GENERIC_SUMMARY)

    pr_number = payload.get("pr_number")
    return JobResult(
        summary=summary,
        pr_url=payload.get("pr_url"),
        pr_number=pr_number if isinstance(pr_number, int) else None,
        files_changed=_count(payload.get("files_changed")),
        collections_created=_count(payload.get("collections_created")),
        rows_migrated=_total(payload.get("rows_migrated")),
    )
