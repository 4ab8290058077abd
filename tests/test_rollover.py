"""Weekly progress rollover: the use case and its scheduler wrapper."""

import logging

import pytest

from application import StorageError, WeeklyRolloverUseCase
from config import Settings
from infrastructure import InMemoryDatabase, InMemoryProjectRepository
from model import Project
from scheduler import ROLLOVER_JOB_ID, RolloverScheduler


@pytest.fixture
def database():
    return InMemoryDatabase(
        projects=[
            Project(id="p-1", name="Billing", weekly_update="X", last_week_update=""),
            Project(id="p-2", name="Search", weekly_update="Indexing", last_week_update="Design"),
            Project(id="p-3", name="Quiet", weekly_update=""),
            Project(id="p-4", name="Silent", weekly_update=None),
        ]
    )


def test_moves_weekly_update_into_last_week(database):
    result = WeeklyRolloverUseCase().execute(database.unit_of_work())

    assert sorted(result.updated_project_ids) == ["p-1", "p-2"]
    billing = database.projects.fetch("p-1")
    assert billing.weekly_update is None
    assert billing.last_week_update == "X"
    assert database.projects.fetch("p-2").last_week_update == "Indexing"


def test_projects_without_weekly_update_are_untouched(database):
    WeeklyRolloverUseCase().execute(database.unit_of_work())

    assert database.projects.fetch("p-3").weekly_update == ""
    assert database.projects.fetch("p-4").last_week_update is None


def test_second_run_is_a_no_op(database):
    WeeklyRolloverUseCase().execute(database.unit_of_work())
    snapshot = database.projects.all()

    result = WeeklyRolloverUseCase().execute(database.unit_of_work())

    assert result.updated_project_ids == []
    assert database.projects.all() == snapshot


def test_rollover_writes_no_change_log_entries(database):
    WeeklyRolloverUseCase().execute(database.unit_of_work())
    assert database.projects.fetch("p-1").change_log == []


def test_storage_failure_aborts_remaining_projects(database, monkeypatch):
    saved = []
    original_save = InMemoryProjectRepository.save

    def flaky_save(self, project):
        if saved:
            raise StorageError("Storage failure while saving project.")
        saved.append(project.id)
        original_save(self, project)

    monkeypatch.setattr(InMemoryProjectRepository, "save", flaky_save)

    with pytest.raises(StorageError):
        WeeklyRolloverUseCase().execute(database.unit_of_work())

    # the first project stays rolled over, the second was never written
    assert database.projects.fetch(saved[0]).weekly_update is None
    remaining = [p for p in database.projects.all() if p.weekly_update]
    assert len(remaining) == 1


class TestRolloverScheduler:

    def test_trigger_defaults_to_monday_one_am_utc(self, database):
        trigger = RolloverScheduler(database, Settings()).build_trigger()
        fields = {f.name: str(f) for f in trigger.fields}

        assert fields["day_of_week"] == "mon"
        assert fields["hour"] == "1"
        assert fields["minute"] == "0"
        assert str(trigger.timezone) == "UTC"

    def test_trigger_follows_settings(self, database):
        settings = Settings(rollover_day_of_week="fri", rollover_hour=17, rollover_minute=30)
        fields = {f.name: str(f) for f in RolloverScheduler(database, settings).build_trigger().fields}

        assert (fields["day_of_week"], fields["hour"], fields["minute"]) == ("fri", "17", "30")

    def test_run_once_returns_rolled_over_ids(self, database):
        result = RolloverScheduler(database, Settings()).run_once()
        assert sorted(result.updated_project_ids) == ["p-1", "p-2"]

    def test_run_once_logs_failures_instead_of_raising(self, caplog):
        class UnavailableDatabase:
            def unit_of_work(self):
                raise StorageError("database unavailable")

        with caplog.at_level(logging.ERROR, logger="scheduler"):
            result = RolloverScheduler(UnavailableDatabase(), Settings()).run_once()

        assert result is None
        assert "Weekly rollover failed" in caplog.text

    def test_start_registers_single_job(self, database):
        scheduler = RolloverScheduler(database, Settings())
        scheduler.start()
        try:
            jobs = scheduler.get_active_jobs()
        finally:
            scheduler.shutdown()

        assert [job["id"] for job in jobs] == [ROLLOVER_JOB_ID]
        assert jobs[0]["next_run"] is not None
        assert not scheduler.scheduler.running
