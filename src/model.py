"""
model.py

Domain models for the Project Tracker.

Entities
--------
- User
- TeamMember
- Comment
- ChangeLogEntry
- Project
- KeyResult
- Objective
- OkrSet

All models use Python dataclasses for clean, framework-agnostic definitions.
Identifiers are opaque strings: projects get a uuid4, users and OKR periods
keep whatever id the organisation assigned them.
Timestamps are always stored in UTC.
"""

from __future__ import annotations

import dataclasses
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, List, Optional


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ProjectPriority(str, Enum):
    """
    Why a project exists, in descending order of weight.

    DEPT_OKR_LINKED      – Delivers a department key result; must reference
                           at least one KR.
    PERSONAL_OKR_LINKED  – Supports an individual's OKRs.
    URGENT_AD_HOC        – Unplanned but important request.
    ROUTINE              – Day-to-day work.
    """
    DEPT_OKR_LINKED = "dept_okr_linked"
    PERSONAL_OKR_LINKED = "personal_okr_linked"
    URGENT_AD_HOC = "urgent_ad_hoc"
    ROUTINE = "routine"


# Ordered delivery stages. This is only the default: the deployed set comes
# from configuration (see config.Settings.project_statuses) because the
# stages have been relabeled before.
DEFAULT_PROJECT_STATUSES: tuple = (
    "not_started",
    "requirements_discussion",
    "requirements_done",
    "review_done",
    "in_development",
    "development_done",
    "testing",
    "testing_done",
    "launched",
)

# Actor recorded when no user identifies itself.
SYSTEM_ACTOR_ID = "system"


# ---------------------------------------------------------------------------
# People
# ---------------------------------------------------------------------------


@dataclass
class User:
    """A person known to the tracker. Read-mostly reference data."""
    id: str = ""
    name: str = ""
    avatar_url: str = ""


@dataclass
class TeamMember:
    """
    One user's assignment to a project role.

    `use_shared_schedule` means the member follows the role's common
    schedule instead of their own start/end dates.
    """
    user_id: str = ""
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    use_shared_schedule: bool = False


# ---------------------------------------------------------------------------
# Project
# ---------------------------------------------------------------------------


@dataclass
class Comment:
    id: str = field(default_factory=_new_id)
    user_id: str = ""
    text: str = ""
    created_at: Optional[datetime] = field(default_factory=_utcnow)
    mentions: List[str] = field(default_factory=list)


@dataclass
class ChangeLogEntry:
    """
    Immutable record of one field-level modification to a project.

    `old_value` / `new_value` hold the JSON-shaped form of the field
    (see serialization.to_json_value) so that entries survive storage
    round-trips unchanged.
    """
    id: str = field(default_factory=_new_id)
    user_id: str = SYSTEM_ACTOR_ID
    field: str = ""
    old_value: Any = None
    new_value: Any = None
    # `field` above shadows dataclasses.field inside this class body
    changed_at: datetime = dataclasses.field(default_factory=_utcnow)


@dataclass
class Project:
    """
    A tracked piece of work with its team, schedule and weekly progress.

    `change_log` is ordered newest first.
    """
    id: str = field(default_factory=_new_id)
    name: str = ""
    priority: ProjectPriority = ProjectPriority.ROUTINE
    business_problem: Optional[str] = None
    key_result_ids: List[str] = field(default_factory=list)
    status: str = DEFAULT_PROJECT_STATUSES[0]

    # Role assignments
    product_managers: List[TeamMember] = field(default_factory=list)
    backend_developers: List[TeamMember] = field(default_factory=list)
    frontend_developers: List[TeamMember] = field(default_factory=list)
    qa_testers: List[TeamMember] = field(default_factory=list)

    # Schedule
    proposal_date: Optional[date] = None
    launch_date: Optional[date] = None

    followers: List[str] = field(default_factory=list)

    # Weekly progress notes; the rollover job moves weekly → last week
    weekly_update: Optional[str] = None
    last_week_update: Optional[str] = None

    comments: List[Comment] = field(default_factory=list)
    change_log: List[ChangeLogEntry] = field(default_factory=list)

    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)


ROLE_FIELDS = (
    "product_managers",
    "backend_developers",
    "frontend_developers",
    "qa_testers",
)


# ---------------------------------------------------------------------------
# OKR
# ---------------------------------------------------------------------------


@dataclass
class KeyResult:
    id: str = ""
    description: str = ""


@dataclass
class Objective:
    id: str = ""
    objective: str = ""
    key_results: List[KeyResult] = field(default_factory=list)


@dataclass
class OkrSet:
    """
    The objectives for one planning period (e.g. "2025-H2").

    Updates replace the whole objective list; there is no audit trail.
    """
    period_id: str = ""
    period_name: str = ""
    okrs: List[Objective] = field(default_factory=list)
