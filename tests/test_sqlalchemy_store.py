"""SQLAlchemy repositories against a file-backed SQLite database."""

from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from api import create_app
from application import (
    ConflictError,
    CreateOkrSetCommand,
    CreateOkrSetUseCase,
    CreateProjectCommand,
    CreateProjectUseCase,
    DeleteProjectUseCase,
    GetProjectUseCase,
    ListOkrSetsUseCase,
    ListProjectsUseCase,
    StorageError,
    UpdateOkrSetCommand,
    UpdateOkrSetUseCase,
    UpdateProjectCommand,
    UpdateProjectUseCase,
    ValidationError,
    WeeklyRolloverUseCase,
)
from config import Settings
from infrastructure import SqlAlchemyDatabase
from model import Comment, KeyResult, Objective, ProjectPriority, TeamMember, User


@pytest.fixture
def sql_database(tmp_path):
    database = SqlAlchemyDatabase(f"sqlite:///{tmp_path / 'tracker.db'}")
    database.open()
    with database.unit_of_work() as uow:
        uow.users.save(User(id="u-ada", name="Ada Lovelace", avatar_url=""))
    yield database
    database.close()


def _create(database, **overrides):
    fields = {
        "name": "Data platform",
        "priority": ProjectPriority.DEPT_OKR_LINKED,
        "key_result_ids": ["kr-1"],
        "product_managers": [TeamMember(user_id="u-ada", start_date=date(2025, 7, 1))],
        "launch_date": date(2025, 10, 1),
        "comments": [Comment(id="c-1", user_id="u-ada", text="Kickoff @grace", mentions=["u-grace"])],
    }
    fields.update(overrides)
    return CreateProjectUseCase().execute(CreateProjectCommand(**fields), database.unit_of_work())


def test_unit_of_work_requires_open_database(tmp_path):
    database = SqlAlchemyDatabase(f"sqlite:///{tmp_path / 'closed.db'}")
    with pytest.raises(RuntimeError):
        database.unit_of_work()


def test_users_round_trip(sql_database):
    with sql_database.unit_of_work() as uow:
        [user] = uow.users.list_all()
    assert user == User(id="u-ada", name="Ada Lovelace", avatar_url="")


def test_project_is_stored_with_typed_structures(sql_database):
    created = _create(sql_database)

    stored = GetProjectUseCase().execute(created.id, sql_database.unit_of_work())

    assert stored == created
    assert stored.key_result_ids == ["kr-1"]
    assert stored.product_managers[0].start_date == "2025-07-01"
    assert stored.comments[0].mentions == ["u-grace"]
    assert stored.launch_date == "2025-10-01"


def test_update_persists_change_log(sql_database):
    created = _create(sql_database)

    UpdateProjectUseCase().execute(
        UpdateProjectCommand(
            project_id=created.id,
            changes={"launch_date": date(2025, 11, 15), "business_problem": "Reports are slow"},
            acting_user_id="u-ada",
        ),
        sql_database.unit_of_work(),
    )

    stored = GetProjectUseCase().execute(created.id, sql_database.unit_of_work())
    assert stored.business_problem == "Reports are slow"
    assert len(stored.change_log) == 2
    entry = stored.change_log[0]
    assert entry.field == "Launch date"
    assert (entry.old_value, entry.new_value) == ("2025-10-01", "2025-11-15")
    assert stored.change_log[1] == created.change_log[0]


def test_rejected_update_leaves_row_unchanged(sql_database):
    created = _create(sql_database)

    with pytest.raises(ValidationError):
        UpdateProjectUseCase().execute(
            UpdateProjectCommand(project_id=created.id, changes={"key_result_ids": []}),
            sql_database.unit_of_work(),
        )

    assert GetProjectUseCase().execute(created.id, sql_database.unit_of_work()) == created


def test_rollover_selects_only_projects_with_weekly_update(sql_database):
    busy = _create(sql_database, name="Busy", weekly_update="Migrated tables")
    _create(sql_database, name="Idle", weekly_update="")

    result = WeeklyRolloverUseCase().execute(sql_database.unit_of_work())

    assert result.updated_project_ids == [busy.id]
    stored = GetProjectUseCase().execute(busy.id, sql_database.unit_of_work())
    assert stored.weekly_update is None
    assert stored.last_week_update == "Migrated tables"
    assert WeeklyRolloverUseCase().execute(sql_database.unit_of_work()).updated_project_ids == []


def test_delete(sql_database):
    created = _create(sql_database)

    DeleteProjectUseCase().execute(created.id, sql_database.unit_of_work())

    assert ListProjectsUseCase().execute(sql_database.unit_of_work()) == []


def test_okr_sets(sql_database):
    objective = Objective(id="o-1", objective="Scale", key_results=[KeyResult(id="kr-1", description="p99 < 1s")])
    CreateOkrSetUseCase().execute(
        CreateOkrSetCommand("2025-H2", "2025 H2", okrs=[objective]), sql_database.unit_of_work()
    )

    with pytest.raises(ConflictError):
        CreateOkrSetUseCase().execute(
            CreateOkrSetCommand("2025-H2", "Other"), sql_database.unit_of_work()
        )

    UpdateOkrSetUseCase().execute(
        UpdateOkrSetCommand("2025-H2", "Second half", okrs=[]), sql_database.unit_of_work()
    )
    [stored] = ListOkrSetsUseCase().execute(sql_database.unit_of_work())
    assert stored.period_name == "Second half"
    assert stored.okrs == []


def test_driver_errors_become_storage_errors(sql_database, monkeypatch):
    from sqlalchemy.orm import Session

    def failing_get(self, *args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(Session, "get", failing_get)

    with pytest.raises(StorageError):
        GetProjectUseCase().execute("any", sql_database.unit_of_work())


def test_app_lifespan_opens_and_closes_database(tmp_path):
    database = SqlAlchemyDatabase(f"sqlite:///{tmp_path / 'api.db'}")
    app = create_app(Settings(mcp_enabled=False), database)

    with TestClient(app) as client:
        assert database.is_open
        response = client.post("/api/projects", json={"name": "Via HTTP", "priority": "routine"})
        assert response.status_code == 201
        assert len(client.get("/api/projects").json()) == 1

    assert not database.is_open
