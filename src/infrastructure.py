"""
infrastructure.py

Implementations of all repository interfaces and the Unit of Work.

Two backends are provided:

  InMemoryDatabase   — plain Python dicts, suitable for local development,
                       demos and tests.  Records are deep-copied on the way in
                       and out so callers never alias stored state.
  SqlAlchemyDatabase — SQLAlchemy + PostgreSQL (any SQLAlchemy URL works;
                       the tests use SQLite).  Rows are defined in orm.py.

Both are constructed explicitly at process start and handed to the API and
the scheduler; neither is a module-level singleton.  Lifecycle:

    db = SqlAlchemyDatabase(url)
    db.open()                  # create engine / schema
    with db.unit_of_work() as uow:
        ...
    db.close()                 # dispose the connection pool
"""

from __future__ import annotations

import copy
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterable, Iterator, List, Optional

from sqlalchemy import create_engine, delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from application import (
    AbstractOkrSetRepository,
    AbstractProjectRepository,
    AbstractUnitOfWork,
    AbstractUserRepository,
    NotFoundError,
    StorageError,
)
from model import OkrSet, Project, ProjectPriority, User
from orm import Base, OkrSetRow, ProjectRow, UserRow
from serialization import (
    change_log_from_json,
    comments_from_json,
    objectives_from_json,
    team_members_from_json,
    to_json_value,
)

logger = logging.getLogger(__name__)


# ===========================================================================
# IN-MEMORY BACKEND
# ===========================================================================

class _Store(dict):
    """A plain dict with copying get/save/delete helpers."""

    def fetch(self, key: str):
        obj = self.get(key)
        return copy.deepcopy(obj) if obj is not None else None

    def put(self, key: str, obj) -> None:
        self[key] = copy.deepcopy(obj)

    def remove(self, key: str) -> None:
        self.pop(key, None)

    def all(self) -> list:
        return [copy.deepcopy(obj) for obj in self.values()]


class InMemoryDatabase:
    """
    Process-local storage. Lives as long as the instance does; restarting
    the process resets it.
    """

    def __init__(
        self,
        users: Iterable[User] = (),
        okr_sets: Iterable[OkrSet] = (),
        projects: Iterable[Project] = (),
    ):
        self.users: _Store = _Store()
        self.okr_sets: _Store = _Store()
        self.projects: _Store = _Store()
        for user in users:
            self.users.put(user.id, user)
        for okr_set in okr_sets:
            self.okr_sets.put(okr_set.period_id, okr_set)
        for project in projects:
            self.projects.put(project.id, project)

    def open(self) -> None:
        logger.info("Using in-memory storage")

    def close(self) -> None:
        pass

    def unit_of_work(self) -> "InMemoryUnitOfWork":
        return InMemoryUnitOfWork(self)


class InMemoryUserRepository(AbstractUserRepository):
    def __init__(self, store: _Store): self._s = store
    def get(self, user_id):           return self._s.fetch(user_id)
    def list_all(self):               return self._s.all()
    def save(self, user):             self._s.put(user.id, user)


class InMemoryOkrSetRepository(AbstractOkrSetRepository):
    def __init__(self, store: _Store): self._s = store
    def get(self, period_id):         return self._s.fetch(period_id)
    def list_all(self):               return self._s.all()
    def add(self, okr_set):           self._s.put(okr_set.period_id, okr_set)
    def save(self, okr_set):          self._s.put(okr_set.period_id, okr_set)


class InMemoryProjectRepository(AbstractProjectRepository):
    def __init__(self, store: _Store): self._s = store
    def get(self, project_id):        return self._s.fetch(project_id)
    def list_all(self):               return self._s.all()
    def list_with_weekly_update(self):
        return [p for p in self._s.all() if p.weekly_update]
    def add(self, project):           self._s.put(project.id, project)
    def save(self, project):          self._s.put(project.id, project)
    def delete(self, project_id):     self._s.remove(project_id)


class InMemoryUnitOfWork(AbstractUnitOfWork):
    """
    Wraps all in-memory repositories.  commit() and rollback() are no-ops
    because dict mutations are immediate — there is no transaction to manage.
    """

    def __init__(self, db: InMemoryDatabase):
        self.users    = InMemoryUserRepository(db.users)
        self.okr_sets = InMemoryOkrSetRepository(db.okr_sets)
        self.projects = InMemoryProjectRepository(db.projects)

    def commit(self)   -> None: pass   # no-op for in-memory
    def rollback(self) -> None: pass   # no-op for in-memory


# ===========================================================================
# SQLALCHEMY BACKEND
# ===========================================================================

@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    """Re-raise SQLAlchemy failures as StorageError."""
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Storage failure while %s: %s", action, exc)
        raise StorageError(f"Storage failure while {action}.") from exc


def _aware(dt: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo; every stored timestamp is UTC
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


# ---------------------------------------------------------------------------
# Row <-> domain conversion
# ---------------------------------------------------------------------------

def _user_from_row(row: UserRow) -> User:
    return User(id=row.id, name=row.name, avatar_url=row.avatar_url or "")


def _okr_set_from_row(row: OkrSetRow) -> OkrSet:
    return OkrSet(
        period_id=row.period_id,
        period_name=row.period_name,
        okrs=objectives_from_json(row.okrs),
    )


def _project_values(project: Project) -> Dict[str, object]:
    return {
        "name": project.name,
        "priority": project.priority.value,
        "business_problem": project.business_problem,
        "key_result_ids": list(project.key_result_ids),
        "status": project.status,
        "product_managers": to_json_value(project.product_managers),
        "backend_developers": to_json_value(project.backend_developers),
        "frontend_developers": to_json_value(project.frontend_developers),
        "qa_testers": to_json_value(project.qa_testers),
        "proposal_date": project.proposal_date,
        "launch_date": project.launch_date,
        "followers": list(project.followers),
        "weekly_update": project.weekly_update,
        "last_week_update": project.last_week_update,
        "comments": to_json_value(project.comments),
        "change_log": to_json_value(project.change_log),
        "created_at": project.created_at,
        "updated_at": project.updated_at,
    }


def _project_from_row(row: ProjectRow) -> Project:
    return Project(
        id=row.id,
        name=row.name,
        priority=ProjectPriority(row.priority),
        business_problem=row.business_problem,
        key_result_ids=list(row.key_result_ids or []),
        status=row.status,
        product_managers=team_members_from_json(row.product_managers),
        backend_developers=team_members_from_json(row.backend_developers),
        frontend_developers=team_members_from_json(row.frontend_developers),
        qa_testers=team_members_from_json(row.qa_testers),
        proposal_date=row.proposal_date,
        launch_date=row.launch_date,
        followers=list(row.followers or []),
        weekly_update=row.weekly_update,
        last_week_update=row.last_week_update,
        comments=comments_from_json(row.comments),
        change_log=change_log_from_json(row.change_log),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------

class SqlAlchemyUserRepository(AbstractUserRepository):
    def __init__(self, session: Session):
        self._session = session

    def get(self, user_id: str) -> Optional[User]:
        with _storage_errors("loading user"):
            row = self._session.get(UserRow, user_id)
        return _user_from_row(row) if row else None

    def list_all(self) -> List[User]:
        with _storage_errors("listing users"):
            rows = self._session.scalars(select(UserRow).order_by(UserRow.id)).all()
        return [_user_from_row(r) for r in rows]

    def save(self, user: User) -> None:
        with _storage_errors("saving user"):
            self._session.merge(UserRow(id=user.id, name=user.name, avatar_url=user.avatar_url))


class SqlAlchemyOkrSetRepository(AbstractOkrSetRepository):
    def __init__(self, session: Session):
        self._session = session

    def get(self, period_id: str) -> Optional[OkrSet]:
        with _storage_errors("loading OKR set"):
            row = self._session.get(OkrSetRow, period_id)
        return _okr_set_from_row(row) if row else None

    def list_all(self) -> List[OkrSet]:
        with _storage_errors("listing OKR sets"):
            rows = self._session.scalars(select(OkrSetRow)).all()
        return [_okr_set_from_row(r) for r in rows]

    def add(self, okr_set: OkrSet) -> None:
        with _storage_errors("creating OKR set"):
            self._session.add(
                OkrSetRow(
                    period_id=okr_set.period_id,
                    period_name=okr_set.period_name,
                    okrs=to_json_value(okr_set.okrs),
                )
            )

    def save(self, okr_set: OkrSet) -> None:
        with _storage_errors("saving OKR set"):
            row = self._session.get(OkrSetRow, okr_set.period_id)
            if row is None:
                raise NotFoundError(f"OKR set {okr_set.period_id} not found.")
            row.period_name = okr_set.period_name
            row.okrs = to_json_value(okr_set.okrs)


class SqlAlchemyProjectRepository(AbstractProjectRepository):
    def __init__(self, session: Session):
        self._session = session

    def get(self, project_id: str) -> Optional[Project]:
        with _storage_errors("loading project"):
            row = self._session.get(ProjectRow, project_id)
        return _project_from_row(row) if row else None

    def list_all(self) -> List[Project]:
        with _storage_errors("listing projects"):
            rows = self._session.scalars(select(ProjectRow)).all()
        return [_project_from_row(r) for r in rows]

    def list_with_weekly_update(self) -> List[Project]:
        stmt = select(ProjectRow).where(
            ProjectRow.weekly_update.is_not(None),
            ProjectRow.weekly_update != "",
        )
        with _storage_errors("selecting projects for rollover"):
            rows = self._session.scalars(stmt).all()
        return [_project_from_row(r) for r in rows]

    def add(self, project: Project) -> None:
        with _storage_errors("creating project"):
            self._session.add(ProjectRow(id=project.id, **_project_values(project)))

    def save(self, project: Project) -> None:
        with _storage_errors("saving project"):
            row = self._session.get(ProjectRow, project.id)
            if row is None:
                raise NotFoundError(f"Project {project.id} not found.")
            for column, value in _project_values(project).items():
                setattr(row, column, value)

    def delete(self, project_id: str) -> None:
        with _storage_errors("deleting project"):
            self._session.execute(delete(ProjectRow).where(ProjectRow.id == project_id))


# ---------------------------------------------------------------------------
# Database handle & Unit of Work
# ---------------------------------------------------------------------------

class SqlAlchemyDatabase:
    """
    Owns the SQLAlchemy engine (and therefore the connection pool).

    `create_schema` issues CREATE TABLE IF NOT EXISTS for every table on
    open; it is not a migration tool.
    """

    def __init__(self, url: str, create_schema: bool = True, echo: bool = False):
        self.url = url
        self.create_schema = create_schema
        self.echo = echo
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    def open(self) -> None:
        if self.is_open:
            return
        engine = create_engine(self.url, echo=self.echo, pool_pre_ping=True)
        if self.create_schema:
            with _storage_errors("creating schema"):
                Base.metadata.create_all(engine)
        self._engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)
        logger.info("Opened database %s", engine.url.render_as_string(hide_password=True))

    def close(self) -> None:
        if self._engine is None:
            return
        self._engine.dispose()
        self._engine = None
        self._session_factory = None
        logger.info("Closed database")

    def unit_of_work(self) -> "SqlAlchemyUnitOfWork":
        if self._session_factory is None:
            raise RuntimeError("Database is not open; call open() first.")
        return SqlAlchemyUnitOfWork(self._session_factory)


class SqlAlchemyUnitOfWork(AbstractUnitOfWork):
    """One session per `with` block; committed on clean exit, rolled back otherwise."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self.session: Optional[Session] = None

    def __enter__(self) -> "SqlAlchemyUnitOfWork":
        self.session = self._session_factory()
        self.users = SqlAlchemyUserRepository(self.session)
        self.okr_sets = SqlAlchemyOkrSetRepository(self.session)
        self.projects = SqlAlchemyProjectRepository(self.session)
        return super().__enter__()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        try:
            super().__exit__(exc_type, exc_val, exc_tb)
        finally:
            self.session.close()
            self.session = None

    def commit(self) -> None:
        with _storage_errors("committing"):
            self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()
