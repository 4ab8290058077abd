"""
service.py

Service layer for the Project Tracker.

Responsibilities
----------------
Each service class encapsulates the business logic for its domain.
Services receive and return domain model instances (from model.py).
No persistence is handled here — callers are responsible for storing
and retrieving models via the repositories in infrastructure.py.

Services
--------
- ChangeLogService   – Field-level diffing of project updates into audit entries
- ProjectService     – Project creation, partial updates and invariant checks
- OkrService         – OKR period creation and whole-document replacement
- RolloverService    – Weekly progress rollover ("this week" → "last week")

Design notes
------------
- Every writable project field is declared once in PROJECT_FIELDS together
  with its change-log label and whether it is tracked or nullable.
- Change detection compares the serialized JSON form of old and new values,
  so role lists and other structured fields are compared by content.
- Business rule violations raise a ValueError with a descriptive message.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from model import (
    DEFAULT_PROJECT_STATUSES,
    SYSTEM_ACTOR_ID,
    ChangeLogEntry,
    Comment,
    Objective,
    OkrSet,
    Project,
    ProjectPriority,
    TeamMember,
    _utcnow,
)
from serialization import canonical, to_json_value


# ---------------------------------------------------------------------------
# Project field table
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProjectField:
    label: str
    trackable: bool = False
    nullable: bool = False


# Insertion order is the order in which change-log entries are emitted.
PROJECT_FIELDS: Dict[str, ProjectField] = {
    "name":                ProjectField("Project name", trackable=True),
    "priority":            ProjectField("Priority", trackable=True),
    "status":              ProjectField("Status", trackable=True),
    "weekly_update":       ProjectField("This week's progress", trackable=True, nullable=True),
    "product_managers":    ProjectField("Product managers", trackable=True),
    "backend_developers":  ProjectField("Backend developers", trackable=True),
    "frontend_developers": ProjectField("Frontend developers", trackable=True),
    "qa_testers":          ProjectField("QA testers", trackable=True),
    "launch_date":         ProjectField("Launch date", trackable=True, nullable=True),
    "business_problem":    ProjectField("Business problem", nullable=True),
    "key_result_ids":      ProjectField("Key results"),
    "proposal_date":       ProjectField("Proposal date", nullable=True),
    "followers":           ProjectField("Followers"),
    "last_week_update":    ProjectField("Last week's progress", nullable=True),
    "comments":            ProjectField("Comments"),
}

TRACKABLE_FIELDS = tuple(name for name, spec in PROJECT_FIELDS.items() if spec.trackable)

# Never writable through an update, even if a client sends them.
READ_ONLY_FIELDS = frozenset({"id", "user_id"})

CREATION_FIELD = "project"
CREATION_VALUE = "created"


def label_for(field_name: str) -> str:
    """Human-readable change-log label; unknown fields keep their raw name."""
    spec = PROJECT_FIELDS.get(field_name)
    return spec.label if spec else field_name


# ---------------------------------------------------------------------------
# ChangeLogService
# ---------------------------------------------------------------------------

class ChangeLogService:
    """
    Turns a partial project update into change-log entries.

    Only trackable fields produce entries; everything else is updated
    silently. Entries are built in PROJECT_FIELDS order and the whole batch
    is placed in front of the existing log, so the log reads newest first.
    """

    def build_entries(
        self,
        current: Project,
        changes: Mapping[str, Any],
        acting_user_id: str,
    ) -> List[ChangeLogEntry]:
        now = _utcnow()
        entries = []
        for field_name in TRACKABLE_FIELDS:
            if field_name not in changes:
                continue
            old_value = getattr(current, field_name)
            new_value = changes[field_name]
            if canonical(old_value) == canonical(new_value):
                continue
            entries.append(
                ChangeLogEntry(
                    user_id=acting_user_id,
                    field=label_for(field_name),
                    old_value=to_json_value(old_value),
                    new_value=to_json_value(new_value),
                    changed_at=now,
                )
            )
        return entries

    def creation_entry(self, project: Project, fallback_actor_id: str) -> ChangeLogEntry:
        """The synthetic first entry of every project, credited to its first PM."""
        actor = (
            project.product_managers[0].user_id
            if project.product_managers and project.product_managers[0].user_id
            else fallback_actor_id
        )
        return ChangeLogEntry(
            user_id=actor,
            field=CREATION_FIELD,
            old_value="",
            new_value=CREATION_VALUE,
            changed_at=project.created_at,
        )

    @staticmethod
    def prepend(
        new_entries: Iterable[ChangeLogEntry], existing: Iterable[ChangeLogEntry]
    ) -> List[ChangeLogEntry]:
        return [*new_entries, *existing]


# ---------------------------------------------------------------------------
# ProjectService
# ---------------------------------------------------------------------------

class ProjectService:
    """
    Creates projects and applies partial updates.

    The set of valid status values is injected so deployments can relabel
    their delivery stages without code changes.
    """

    def __init__(self, statuses: Sequence[str] = DEFAULT_PROJECT_STATUSES):
        if not statuses:
            raise ValueError("At least one project status must be configured.")
        self.statuses = tuple(statuses)
        self._change_log = ChangeLogService()

    def create_project(
        self,
        name: str,
        priority: ProjectPriority,
        status: Optional[str] = None,
        business_problem: Optional[str] = None,
        key_result_ids: Optional[List[str]] = None,
        product_managers: Optional[List[TeamMember]] = None,
        backend_developers: Optional[List[TeamMember]] = None,
        frontend_developers: Optional[List[TeamMember]] = None,
        qa_testers: Optional[List[TeamMember]] = None,
        proposal_date: Optional[date] = None,
        launch_date: Optional[date] = None,
        followers: Optional[List[str]] = None,
        weekly_update: Optional[str] = None,
        last_week_update: Optional[str] = None,
        comments: Optional[List[Comment]] = None,
        fallback_actor_id: str = SYSTEM_ACTOR_ID,
    ) -> Project:
        """Create and return a new Project instance (unsaved) with its creation log entry."""
        if not name or not name.strip():
            raise ValueError("Project name must not be empty.")
        now = _utcnow()
        project = Project(
            name=name,
            priority=priority,
            status=status if status is not None else self.statuses[0],
            business_problem=business_problem,
            key_result_ids=list(key_result_ids or []),
            product_managers=list(product_managers or []),
            backend_developers=list(backend_developers or []),
            frontend_developers=list(frontend_developers or []),
            qa_testers=list(qa_testers or []),
            proposal_date=proposal_date,
            launch_date=launch_date,
            followers=list(followers or []),
            weekly_update=weekly_update,
            last_week_update=last_week_update,
            comments=self.stamp_comments(comments or [], (), now),
            created_at=now,
            updated_at=now,
        )
        self.validate(project)
        project.change_log = [self._change_log.creation_entry(project, fallback_actor_id)]
        return project

    def apply_update(
        self,
        current: Project,
        changes: Mapping[str, Any],
        acting_user_id: str,
    ) -> Project:
        """
        Return a new Project with `changes` applied and the change log extended.

        `current` is left untouched, so a failed validation leaves nothing to
        undo.
        """
        writable = self._writable_changes(changes)
        if "comments" in writable:
            writable["comments"] = self.stamp_comments(
                writable["comments"], current.comments, _utcnow()
            )
        merged = dataclasses.replace(current, **writable)
        # A stored status may predate a relabel of the configured set
        self.validate(merged, check_status="status" in writable)
        entries = self._change_log.build_entries(current, writable, acting_user_id)
        merged.change_log = self._change_log.prepend(entries, current.change_log)
        merged.updated_at = _utcnow()
        return merged

    def validate(self, project: Project, check_status: bool = True) -> None:
        self.check_okr_link(project.priority, project.key_result_ids)
        if check_status and project.status not in self.statuses:
            raise ValueError(
                f"Unknown status '{project.status}'. Expected one of: {list(self.statuses)}."
            )
        if not project.name or not project.name.strip():
            raise ValueError("Project name must not be empty.")

    @staticmethod
    def check_okr_link(priority: ProjectPriority, key_result_ids: Optional[List[str]]) -> None:
        if priority == ProjectPriority.DEPT_OKR_LINKED and not key_result_ids:
            raise ValueError(
                "Projects linked to department OKRs must reference at least one key result."
            )

    @staticmethod
    def stamp_comments(
        comments: Iterable[Comment], existing: Iterable[Comment], now: datetime
    ) -> List[Comment]:
        """
        Fill in missing comment timestamps.

        A comment resent without `created_at` keeps the time stored for the
        same comment id; only comments not seen before are stamped with `now`.
        """
        known = {c.id: c.created_at for c in existing}
        return [
            c if c.created_at is not None
            else dataclasses.replace(c, created_at=known.get(c.id) or now)
            for c in comments
        ]

    @staticmethod
    def _writable_changes(changes: Mapping[str, Any]) -> Dict[str, Any]:
        writable = {}
        for field_name, value in changes.items():
            if field_name in READ_ONLY_FIELDS:
                continue
            spec = PROJECT_FIELDS.get(field_name)
            if spec is None:
                raise ValueError(f"Field '{field_name}' cannot be updated.")
            if value is None and not spec.nullable:
                raise ValueError(f"Field '{field_name}' must not be null.")
            if field_name == "priority":
                value = ProjectPriority(value)
            writable[field_name] = value
        return writable


# ---------------------------------------------------------------------------
# OkrService
# ---------------------------------------------------------------------------

class OkrService:
    """
    Manages OKR periods.

    OKR documents are replaced wholesale and are not audited, unlike
    projects.
    """

    def create_okr_set(
        self,
        period_id: str,
        period_name: str,
        okrs: Optional[List[Objective]] = None,
    ) -> OkrSet:
        if not period_id or not period_id.strip():
            raise ValueError("period_id is required.")
        if not period_name or not period_name.strip():
            raise ValueError("period_name is required.")
        return OkrSet(period_id=period_id, period_name=period_name, okrs=list(okrs or []))

    def replace_okrs(
        self,
        okr_set: OkrSet,
        period_name: str,
        okrs: List[Objective],
    ) -> OkrSet:
        if not period_name or not period_name.strip():
            raise ValueError("period_name is required.")
        okr_set.period_name = period_name
        okr_set.okrs = list(okrs)
        return okr_set


# ---------------------------------------------------------------------------
# RolloverService
# ---------------------------------------------------------------------------

class RolloverService:
    """Moves a project's weekly progress note into last week's slot."""

    @staticmethod
    def needs_rollover(project: Project) -> bool:
        return bool(project.weekly_update)

    def roll_over(self, project: Project) -> Project:
        if not self.needs_rollover(project):
            return project
        project.last_week_update = project.weekly_update
        project.weekly_update = None
        return project
