"""Project use cases against the in-memory store."""

from datetime import datetime, timezone

import pytest

from application import (
    DeleteProjectUseCase,
    GetProjectUseCase,
    ListProjectsUseCase,
    NotFoundError,
    UpdateProjectCommand,
    UpdateProjectUseCase,
    ValidationError,
)
from infrastructure import InMemoryDatabase
from model import Project, ProjectPriority, TeamMember


def _update(uow, project_id, acting_user_id=None, **changes):
    cmd = UpdateProjectCommand(project_id=project_id, changes=changes, acting_user_id=acting_user_id)
    return UpdateProjectUseCase().execute(cmd, uow)


class TestCreateProject:

    def test_starts_with_single_creation_entry(self, create_project):
        project = create_project()

        assert len(project.change_log) == 1
        entry = project.change_log[0]
        assert entry.field == "project"
        assert entry.old_value == ""
        assert entry.new_value == "created"
        assert entry.user_id == "u-ada"

    def test_without_product_manager_credits_system(self, create_project):
        project = create_project(product_managers=[])
        assert project.change_log[0].user_id == "system"

    def test_status_defaults_to_first_stage(self, create_project):
        assert create_project().status == "not_started"

    def test_dept_okr_project_requires_key_result(self, create_project, uow):
        with pytest.raises(ValidationError):
            create_project(priority=ProjectPriority.DEPT_OKR_LINKED, key_result_ids=[])

        with uow:
            assert uow.projects.list_all() == []

    def test_dept_okr_project_with_key_result_succeeds(self, create_project):
        project = create_project(priority=ProjectPriority.DEPT_OKR_LINKED, key_result_ids=["kr-1"])
        assert project.priority == "dept_okr_linked"
        assert project.key_result_ids == ["kr-1"]

    def test_unknown_status_is_rejected(self, create_project):
        with pytest.raises(ValidationError, match="Unknown status"):
            create_project(status="shipped")


class TestUpdateProject:

    def test_untracked_fields_leave_change_log_alone(self, create_project, uow):
        project = create_project()

        updated = _update(
            uow,
            project.id,
            business_problem="Cart abandonment is 40%",
            followers=["u-grace"],
            key_result_ids=["kr-9"],
        )

        assert updated.business_problem == "Cart abandonment is 40%"
        assert len(updated.change_log) == len(project.change_log)

    def test_tracked_change_prepends_exactly_one_entry(self, create_project, uow):
        project = create_project(weekly_update="Design review")

        updated = _update(uow, project.id, acting_user_id="u-grace", weekly_update="Build started")

        assert len(updated.change_log) == 2
        entry = updated.change_log[0]
        assert entry.field == "This week's progress"
        assert entry.old_value == "Design review"
        assert entry.new_value == "Build started"
        assert entry.user_id == "u-grace"
        assert updated.change_log[1] == project.change_log[0]

    def test_equal_value_adds_no_entry(self, create_project, uow):
        project = create_project()

        updated = _update(
            uow,
            project.id,
            name=project.name,
            product_managers=[TeamMember(user_id="u-ada")],
        )

        assert len(updated.change_log) == 1

    def test_actor_defaults_to_system(self, create_project, uow):
        project = create_project()
        updated = _update(uow, project.id, status="testing")
        assert updated.change_log[0].user_id == "system"

    def test_update_is_persisted(self, create_project, uow):
        project = create_project()
        _update(uow, project.id, status="in_development")

        stored = GetProjectUseCase().execute(project.id, uow)
        assert stored.status == "in_development"
        assert len(stored.change_log) == 2

    def test_switching_to_dept_okr_without_key_results_leaves_record_unchanged(
        self, create_project, uow
    ):
        project = create_project(key_result_ids=["kr-1"])

        with pytest.raises(ValidationError):
            _update(
                uow,
                project.id,
                priority=ProjectPriority.DEPT_OKR_LINKED,
                key_result_ids=[],
            )

        stored = GetProjectUseCase().execute(project.id, uow)
        assert stored == project

    def test_missing_project(self, uow):
        with pytest.raises(NotFoundError):
            _update(uow, "nope", status="testing")


class TestReadAndDelete:

    def test_list_is_newest_first(self):
        database = InMemoryDatabase(
            projects=[
                Project(id="old", name="Old", created_at=datetime(2025, 1, 1, tzinfo=timezone.utc)),
                Project(id="new", name="New", created_at=datetime(2025, 6, 1, tzinfo=timezone.utc)),
                Project(id="mid", name="Mid", created_at=datetime(2025, 3, 1, tzinfo=timezone.utc)),
            ]
        )
        projects = ListProjectsUseCase().execute(database.unit_of_work())
        assert [p.id for p in projects] == ["new", "mid", "old"]

    def test_get_missing_project(self, uow):
        with pytest.raises(NotFoundError):
            GetProjectUseCase().execute("nope", uow)

    def test_delete_missing_project(self, uow):
        with pytest.raises(NotFoundError):
            DeleteProjectUseCase().execute("nope", uow)

    def test_delete_removes_project_from_list(self, create_project, uow):
        keep = create_project(name="Keep")
        gone = create_project(name="Gone")

        result = DeleteProjectUseCase().execute(gone.id, uow)

        assert result.success is True
        assert result.id == gone.id
        assert [p.id for p in ListProjectsUseCase().execute(uow)] == [keep.id]
