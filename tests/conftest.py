"""
Shared fixtures for the Project Tracker test suite.

    database        – in-memory store seeded with two users
    uow             – a unit of work on that store
    settings        – Settings with MCP and the scheduler switched off
    client          – FastAPI TestClient running the app on `database`
    create_project  – helper that creates a project through the use case
"""

import pytest
from fastapi.testclient import TestClient

from api import create_app
from application import CreateProjectCommand, CreateProjectUseCase
from config import Settings
from infrastructure import InMemoryDatabase
from model import ProjectPriority, TeamMember, User

USERS = (
    User(id="u-ada", name="Ada Lovelace", avatar_url="https://example.com/ada.png"),
    User(id="u-grace", name="Grace Hopper", avatar_url=""),
)


@pytest.fixture
def database():
    return InMemoryDatabase(users=USERS)


@pytest.fixture
def uow(database):
    return database.unit_of_work()


@pytest.fixture
def settings():
    return Settings(mcp_enabled=False, rollover_enabled=False)


@pytest.fixture
def client(settings, database):
    app = create_app(settings, database)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def create_project(uow):
    def _create(**overrides):
        fields = {
            "name": "Checkout revamp",
            "priority": ProjectPriority.ROUTINE,
            "product_managers": [TeamMember(user_id="u-ada")],
        }
        fields.update(overrides)
        return CreateProjectUseCase().execute(CreateProjectCommand(**fields), uow)

    return _create
