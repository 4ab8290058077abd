"""
application.py

Application layer for the Project Tracker.

Overview
--------
The application layer sits between the presentation layer (API / scheduler)
and the domain / service layer.  It is responsible for:

  1. Defining clean output DTOs (dataclasses) that carry only the data
     the presentation layer needs — no raw domain objects are leaked upward.
  2. Declaring abstract Repository interfaces so that the application layer
     remains fully persistence-agnostic (implementations live in
     infrastructure.py).
  3. Declaring the UnitOfWork abstraction so that the repository mutations
     of a single use case are committed atomically.
  4. Implementing Use Case handlers — one class per user-facing operation —
     that orchestrate service calls and repository reads/writes.

Structure
---------
DTOs
    UserDTO, TeamMemberDTO, CommentDTO, ChangeLogEntryDTO, ProjectDTO
    KeyResultDTO, ObjectiveDTO, OkrSetDTO, RolloverResultDTO

Repository interfaces
    AbstractUserRepository
    AbstractOkrSetRepository
    AbstractProjectRepository

Unit of Work
    AbstractUnitOfWork

Use Cases
    --- Users ---
    ListUsersUseCase
    LoginUseCase

    --- OKR periods ---
    ListOkrSetsUseCase
    CreateOkrSetUseCase
    UpdateOkrSetUseCase

    --- Projects ---
    ListProjectsUseCase
    GetProjectUseCase
    CreateProjectUseCase
    UpdateProjectUseCase
    DeleteProjectUseCase

    --- Jobs ---
    WeeklyRolloverUseCase

Design notes
------------
- Use cases receive commands and return DTOs; no domain objects cross the
  application boundary.
- Each use case accepts a UnitOfWork as its sole dependency.
- Validation happens before any write; a ValidationError never leaves a
  partial write behind.
- Errors bubble up as subclasses of ApplicationError; the API maps each to
  an HTTP status.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

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
    User,
)
from service import OkrService, ProjectService, RolloverService

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ApplicationError(Exception):
    """Raised when a use case cannot complete."""


class ValidationError(ApplicationError):
    """Raised when input breaks a business rule. Nothing has been written."""


class NotFoundError(ApplicationError):
    """Raised when a requested entity does not exist."""


class ConflictError(ApplicationError):
    """Raised when an entity with the same key already exists."""


class StorageError(ApplicationError):
    """Raised when the underlying data store fails."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _fmt(dt: Optional[datetime]) -> Optional[str]:
    """Convert a datetime to an ISO-8601 UTC string, or None."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def _fmt_date(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d else None


# ===========================================================================
# DTO DEFINITIONS
# ===========================================================================

@dataclass
class UserDTO:
    id: str
    name: str
    avatar_url: str


@dataclass
class TeamMemberDTO:
    user_id: str
    start_date: Optional[str]
    end_date: Optional[str]
    use_shared_schedule: bool


@dataclass
class CommentDTO:
    id: str
    user_id: str
    text: str
    created_at: Optional[str]
    mentions: List[str]


@dataclass
class ChangeLogEntryDTO:
    id: str
    user_id: str
    field: str
    old_value: Any
    new_value: Any
    changed_at: Optional[str]


@dataclass
class ProjectDTO:
    id: str
    name: str
    priority: str
    business_problem: Optional[str]
    key_result_ids: List[str]
    status: str
    product_managers: List[TeamMemberDTO]
    backend_developers: List[TeamMemberDTO]
    frontend_developers: List[TeamMemberDTO]
    qa_testers: List[TeamMemberDTO]
    proposal_date: Optional[str]
    launch_date: Optional[str]
    followers: List[str]
    weekly_update: Optional[str]
    last_week_update: Optional[str]
    comments: List[CommentDTO]
    change_log: List[ChangeLogEntryDTO]
    created_at: str
    updated_at: str


@dataclass
class KeyResultDTO:
    id: str
    description: str


@dataclass
class ObjectiveDTO:
    id: str
    objective: str
    key_results: List[KeyResultDTO]


@dataclass
class OkrSetDTO:
    period_id: str
    period_name: str
    okrs: List[ObjectiveDTO]


@dataclass
class DeleteResultDTO:
    success: bool
    id: str


@dataclass
class RolloverResultDTO:
    updated_project_ids: List[str] = field(default_factory=list)


# ===========================================================================
# DTO ASSEMBLERS
# ===========================================================================

class _Assembler:
    """Converts domain model instances into DTOs."""

    @staticmethod
    def user(u: User) -> UserDTO:
        return UserDTO(id=u.id, name=u.name, avatar_url=u.avatar_url)

    @staticmethod
    def team_member(m: TeamMember) -> TeamMemberDTO:
        return TeamMemberDTO(
            user_id=m.user_id,
            start_date=_fmt_date(m.start_date),
            end_date=_fmt_date(m.end_date),
            use_shared_schedule=m.use_shared_schedule,
        )

    @staticmethod
    def comment(c: Comment) -> CommentDTO:
        return CommentDTO(
            id=c.id,
            user_id=c.user_id,
            text=c.text,
            created_at=_fmt(c.created_at),
            mentions=list(c.mentions),
        )

    @staticmethod
    def change_log_entry(e: ChangeLogEntry) -> ChangeLogEntryDTO:
        return ChangeLogEntryDTO(
            id=e.id,
            user_id=e.user_id,
            field=e.field,
            old_value=e.old_value,
            new_value=e.new_value,
            changed_at=_fmt(e.changed_at),
        )

    @classmethod
    def project(cls, p: Project) -> ProjectDTO:
        return ProjectDTO(
            id=p.id,
            name=p.name,
            priority=p.priority.value,
            business_problem=p.business_problem,
            key_result_ids=list(p.key_result_ids),
            status=p.status,
            product_managers=[cls.team_member(m) for m in p.product_managers],
            backend_developers=[cls.team_member(m) for m in p.backend_developers],
            frontend_developers=[cls.team_member(m) for m in p.frontend_developers],
            qa_testers=[cls.team_member(m) for m in p.qa_testers],
            proposal_date=_fmt_date(p.proposal_date),
            launch_date=_fmt_date(p.launch_date),
            followers=list(p.followers),
            weekly_update=p.weekly_update,
            last_week_update=p.last_week_update,
            comments=[cls.comment(c) for c in p.comments],
            change_log=[cls.change_log_entry(e) for e in p.change_log],
            created_at=_fmt(p.created_at),
            updated_at=_fmt(p.updated_at),
        )

    @staticmethod
    def okr_set(s: OkrSet) -> OkrSetDTO:
        return OkrSetDTO(
            period_id=s.period_id,
            period_name=s.period_name,
            okrs=[
                ObjectiveDTO(
                    id=o.id,
                    objective=o.objective,
                    key_results=[
                        KeyResultDTO(id=kr.id, description=kr.description)
                        for kr in o.key_results
                    ],
                )
                for o in s.okrs
            ],
        )


# ===========================================================================
# REPOSITORY INTERFACES
# ===========================================================================

class AbstractUserRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, user_id: str) -> Optional[User]: ...
    @abc.abstractmethod
    def list_all(self) -> List[User]: ...
    @abc.abstractmethod
    def save(self, user: User) -> None: ...


class AbstractOkrSetRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, period_id: str) -> Optional[OkrSet]: ...
    @abc.abstractmethod
    def list_all(self) -> List[OkrSet]: ...
    @abc.abstractmethod
    def add(self, okr_set: OkrSet) -> None: ...
    @abc.abstractmethod
    def save(self, okr_set: OkrSet) -> None: ...


class AbstractProjectRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, project_id: str) -> Optional[Project]: ...
    @abc.abstractmethod
    def list_all(self) -> List[Project]: ...
    @abc.abstractmethod
    def list_with_weekly_update(self) -> List[Project]:
        """Projects whose weekly_update is neither null nor empty."""
    @abc.abstractmethod
    def add(self, project: Project) -> None: ...
    @abc.abstractmethod
    def save(self, project: Project) -> None: ...
    @abc.abstractmethod
    def delete(self, project_id: str) -> None: ...


# ===========================================================================
# UNIT OF WORK
# ===========================================================================

class AbstractUnitOfWork(abc.ABC):
    """
    Groups all repositories under a single transactional boundary.
    Use as a context manager:

        with uow:
            uow.projects.save(project)
            uow.commit()
    """
    users: AbstractUserRepository
    okr_sets: AbstractOkrSetRepository
    projects: AbstractProjectRepository

    def __enter__(self) -> "AbstractUnitOfWork":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type:
            self.rollback()
        else:
            self.commit()

    @abc.abstractmethod
    def commit(self) -> None: ...

    @abc.abstractmethod
    def rollback(self) -> None: ...


# ===========================================================================
# SERVICE SINGLETONS (shared across use cases)
# ===========================================================================

_okr_svc = OkrService()
_rollover_svc = RolloverService()


# ===========================================================================
# USE CASE HELPERS
# ===========================================================================

def _get_project_or_raise(uow: AbstractUnitOfWork, project_id: str) -> Project:
    project = uow.projects.get(project_id)
    if project is None:
        raise NotFoundError(f"Project {project_id} not found.")
    return project


def _get_okr_set_or_raise(uow: AbstractUnitOfWork, period_id: str) -> OkrSet:
    okr_set = uow.okr_sets.get(period_id)
    if okr_set is None:
        raise NotFoundError(f"OKR set {period_id} not found.")
    return okr_set


# ===========================================================================
# USE CASES — USERS
# ===========================================================================

class ListUsersUseCase:
    def execute(self, uow: AbstractUnitOfWork) -> List[UserDTO]:
        with uow:
            return [_Assembler.user(u) for u in uow.users.list_all()]


class LoginUseCase:
    """Resolve a user id to a user. There is no password: ids are trusted."""

    def execute(self, user_id: Optional[str], uow: AbstractUnitOfWork) -> UserDTO:
        if not user_id:
            raise ValidationError("userId is required.")
        with uow:
            user = uow.users.get(user_id)
            if user is None:
                raise NotFoundError(f"User {user_id} not found.")
            logger.info("User %s logged in", user_id)
            return _Assembler.user(user)


# ===========================================================================
# USE CASES — OKR PERIODS
# ===========================================================================

class ListOkrSetsUseCase:
    def execute(self, uow: AbstractUnitOfWork) -> List[OkrSetDTO]:
        with uow:
            okr_sets = sorted(uow.okr_sets.list_all(), key=lambda s: s.period_id, reverse=True)
            return [_Assembler.okr_set(s) for s in okr_sets]


@dataclass
class CreateOkrSetCommand:
    period_id: Optional[str]
    period_name: Optional[str]
    okrs: List[Objective] = field(default_factory=list)


class CreateOkrSetUseCase:
    def execute(self, cmd: CreateOkrSetCommand, uow: AbstractUnitOfWork) -> OkrSetDTO:
        try:
            okr_set = _okr_svc.create_okr_set(cmd.period_id, cmd.period_name, cmd.okrs)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        with uow:
            if uow.okr_sets.get(okr_set.period_id) is not None:
                raise ConflictError(f"OKR set {okr_set.period_id} already exists.")
            uow.okr_sets.add(okr_set)
            uow.commit()
            logger.info("Created OKR set %s", okr_set.period_id)
            return _Assembler.okr_set(okr_set)


@dataclass
class UpdateOkrSetCommand:
    period_id: str
    period_name: Optional[str]
    okrs: Optional[List[Objective]]


class UpdateOkrSetUseCase:
    """Replace the objectives and name of a period in one write."""

    def execute(self, cmd: UpdateOkrSetCommand, uow: AbstractUnitOfWork) -> OkrSetDTO:
        if cmd.okrs is None or not cmd.period_name:
            raise ValidationError("okrs and periodName are required.")
        with uow:
            okr_set = _get_okr_set_or_raise(uow, cmd.period_id)
            try:
                okr_set = _okr_svc.replace_okrs(okr_set, cmd.period_name, cmd.okrs)
            except ValueError as exc:
                raise ValidationError(str(exc)) from exc
            uow.okr_sets.save(okr_set)
            uow.commit()
            logger.info("Replaced OKR set %s (%d objectives)", okr_set.period_id, len(okr_set.okrs))
            return _Assembler.okr_set(okr_set)


# ===========================================================================
# USE CASES — PROJECTS
# ===========================================================================

class ListProjectsUseCase:
    def execute(self, uow: AbstractUnitOfWork) -> List[ProjectDTO]:
        with uow:
            projects = sorted(uow.projects.list_all(), key=lambda p: p.created_at, reverse=True)
            return [_Assembler.project(p) for p in projects]


class GetProjectUseCase:
    def execute(self, project_id: str, uow: AbstractUnitOfWork) -> ProjectDTO:
        with uow:
            return _Assembler.project(_get_project_or_raise(uow, project_id))


@dataclass
class CreateProjectCommand:
    name: str
    priority: ProjectPriority
    status: Optional[str] = None
    business_problem: Optional[str] = None
    key_result_ids: List[str] = field(default_factory=list)
    product_managers: List[TeamMember] = field(default_factory=list)
    backend_developers: List[TeamMember] = field(default_factory=list)
    frontend_developers: List[TeamMember] = field(default_factory=list)
    qa_testers: List[TeamMember] = field(default_factory=list)
    proposal_date: Optional[date] = None
    launch_date: Optional[date] = None
    followers: List[str] = field(default_factory=list)
    weekly_update: Optional[str] = None
    last_week_update: Optional[str] = None
    comments: List[Comment] = field(default_factory=list)


class CreateProjectUseCase:
    """
    Create a project. Its change log starts with a single "created" entry
    credited to the first product manager, or to the system actor.
    """

    def __init__(
        self,
        statuses: Sequence[str] = DEFAULT_PROJECT_STATUSES,
        system_actor_id: str = SYSTEM_ACTOR_ID,
    ):
        self._project_svc = ProjectService(statuses)
        self._system_actor_id = system_actor_id

    def execute(self, cmd: CreateProjectCommand, uow: AbstractUnitOfWork) -> ProjectDTO:
        try:
            project = self._project_svc.create_project(
                name=cmd.name,
                priority=cmd.priority,
                status=cmd.status,
                business_problem=cmd.business_problem,
                key_result_ids=cmd.key_result_ids,
                product_managers=cmd.product_managers,
                backend_developers=cmd.backend_developers,
                frontend_developers=cmd.frontend_developers,
                qa_testers=cmd.qa_testers,
                proposal_date=cmd.proposal_date,
                launch_date=cmd.launch_date,
                followers=cmd.followers,
                weekly_update=cmd.weekly_update,
                last_week_update=cmd.last_week_update,
                comments=cmd.comments,
                fallback_actor_id=self._system_actor_id,
            )
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        with uow:
            uow.projects.add(project)
            uow.commit()
            logger.info("Created project %s (%s)", project.id, project.name)
            return _Assembler.project(project)


@dataclass
class UpdateProjectCommand:
    project_id: str
    changes: Dict[str, Any]
    acting_user_id: Optional[str] = None


class UpdateProjectUseCase:
    """
    Apply a partial update to a project and record the audit trail.

    Steps: fetch → merge → validate → diff → one write. Concurrent updates
    to the same project are not coordinated; the later write wins.
    """

    def __init__(
        self,
        statuses: Sequence[str] = DEFAULT_PROJECT_STATUSES,
        system_actor_id: str = SYSTEM_ACTOR_ID,
    ):
        self._project_svc = ProjectService(statuses)
        self._system_actor_id = system_actor_id

    def execute(self, cmd: UpdateProjectCommand, uow: AbstractUnitOfWork) -> ProjectDTO:
        actor = cmd.acting_user_id or self._system_actor_id
        with uow:
            current = _get_project_or_raise(uow, cmd.project_id)
            try:
                updated = self._project_svc.apply_update(current, cmd.changes, actor)
            except ValueError as exc:
                raise ValidationError(str(exc)) from exc
            uow.projects.save(updated)
            uow.commit()
            logger.info(
                "Updated project %s by %s (%d change-log entries)",
                updated.id,
                actor,
                len(updated.change_log) - len(current.change_log),
            )
            return _Assembler.project(updated)


class DeleteProjectUseCase:
    def execute(self, project_id: str, uow: AbstractUnitOfWork) -> DeleteResultDTO:
        with uow:
            _get_project_or_raise(uow, project_id)
            uow.projects.delete(project_id)
            uow.commit()
            logger.info("Deleted project %s", project_id)
            return DeleteResultDTO(success=True, id=project_id)


# ===========================================================================
# USE CASES — JOBS
# ===========================================================================

class WeeklyRolloverUseCase:
    """
    Archive every project's weekly progress note into last week's slot.

    Each project is rolled over in its own unit of work. Projects are
    re-read before writing, so a rerun (or an overlapping run) skips those
    already cleared. A storage failure aborts the rest of the run; projects
    processed so far stay rolled over.
    """

    def execute(self, uow: AbstractUnitOfWork) -> RolloverResultDTO:
        with uow:
            candidate_ids = [p.id for p in uow.projects.list_with_weekly_update()]

        result = RolloverResultDTO()
        for project_id in candidate_ids:
            with uow:
                project = uow.projects.get(project_id)
                if project is None or not _rollover_svc.needs_rollover(project):
                    continue
                uow.projects.save(_rollover_svc.roll_over(project))
                uow.commit()
            result.updated_project_ids.append(project_id)
            logger.info("Rolled over weekly update for project %s", project_id)

        logger.info("Weekly rollover finished: %d project(s)", len(result.updated_project_ids))
        return result
