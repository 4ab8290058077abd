"""
serialization.py

Explicit conversion between the typed domain structures and their
JSON-shaped form.

The JSON form is what the storage layer writes into JSON columns and what
change-log entries record as old/new values: camelCase keys, ISO-8601
dates, enum values instead of enum members.
"""

from __future__ import annotations

import dataclasses
import json
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic.alias_generators import to_camel

from model import ChangeLogEntry, Comment, KeyResult, Objective, TeamMember


def to_json_value(value: Any) -> Any:
    """Convert a domain value (dataclass, enum, date, list ...) to plain JSON types."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            to_camel(f.name): to_json_value(getattr(value, f.name))
            for f in dataclasses.fields(value)
        }
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [to_json_value(item) for item in value]
    if isinstance(value, dict):
        return {key: to_json_value(item) for key, item in value.items()}
    return value


def canonical(value: Any) -> str:
    """Stable string form used for deep-equality comparisons."""
    return json.dumps(to_json_value(value), sort_keys=True, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------

def parse_date(raw: Optional[str]) -> Optional[date]:
    if not raw:
        return None
    return date.fromisoformat(raw[:10])


def parse_datetime(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def team_members_from_json(items: Optional[List[Dict[str, Any]]]) -> List[TeamMember]:
    return [
        TeamMember(
            user_id=item.get("userId", ""),
            start_date=parse_date(item.get("startDate")),
            end_date=parse_date(item.get("endDate")),
            use_shared_schedule=bool(item.get("useSharedSchedule", False)),
        )
        for item in items or []
    ]


def comments_from_json(items: Optional[List[Dict[str, Any]]]) -> List[Comment]:
    return [
        Comment(
            id=item["id"],
            user_id=item.get("userId", ""),
            text=item.get("text", ""),
            created_at=parse_datetime(item.get("createdAt")),
            mentions=list(item.get("mentions") or []),
        )
        for item in items or []
    ]


def change_log_from_json(items: Optional[List[Dict[str, Any]]]) -> List[ChangeLogEntry]:
    # old/new values are already JSON-shaped and are kept verbatim
    return [
        ChangeLogEntry(
            id=item["id"],
            user_id=item.get("userId", ""),
            field=item.get("field", ""),
            old_value=item.get("oldValue"),
            new_value=item.get("newValue"),
            changed_at=parse_datetime(item.get("changedAt")),
        )
        for item in items or []
    ]


def objectives_from_json(items: Optional[List[Dict[str, Any]]]) -> List[Objective]:
    return [
        Objective(
            id=item.get("id", ""),
            objective=item.get("objective", ""),
            key_results=[
                KeyResult(id=kr.get("id", ""), description=kr.get("description", ""))
                for kr in item.get("keyResults") or []
            ],
        )
        for item in items or []
    ]
