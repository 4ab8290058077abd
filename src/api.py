"""
api.py

REST API layer for the Project Tracker.

Framework : FastAPI
Auth      : None.  Login only resolves a user id to a user; requests that
            change a project may name the acting user in a `userId` body
            field, otherwise the configured system actor is recorded.

Structure
---------
  Routers (all prefixed with settings.api_prefix, default /api)
  ├── /users               — user directory
  ├── /login               — look up a user by id
  ├── /okr-sets            — OKR periods (create / replace)
  ├── /projects            — project CRUD with change log
  └── /weekly-rollover     — run the weekly rollover now
  /health                  — liveness check (unprefixed)

Error handling
--------------
  ValidationError        → 400
  RequestValidationError → 400
  NotFoundError          → 404
  ConflictError          → 409
  StorageError           → 500
  Unhandled              → 500 (logged with traceback)

Response bodies
---------------
  Success  : the record / array itself, camelCase keys
  Error    : { "error": "<message>" }

Running
-------
  uvicorn main:app --reload
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Annotated, Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Path, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi_mcp import FastApiMCP
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field
from pydantic.alias_generators import to_camel

from application import (
    # Exceptions
    ApplicationError,
    ConflictError,
    NotFoundError,
    StorageError,
    ValidationError,
    # Use-case commands
    CreateOkrSetCommand,
    CreateProjectCommand,
    UpdateOkrSetCommand,
    UpdateProjectCommand,
    # Use-case classes
    CreateOkrSetUseCase,
    CreateProjectUseCase,
    DeleteProjectUseCase,
    GetProjectUseCase,
    ListOkrSetsUseCase,
    ListProjectsUseCase,
    ListUsersUseCase,
    LoginUseCase,
    UpdateOkrSetUseCase,
    UpdateProjectUseCase,
    WeeklyRolloverUseCase,
    AbstractUnitOfWork,
)
from config import Settings
from infrastructure import InMemoryDatabase
from model import ROLE_FIELDS, Comment, KeyResult, Objective, ProjectPriority, TeamMember
from serialization import to_json_value

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_uow(request: Request) -> AbstractUnitOfWork:
    """A fresh Unit of Work on the database the app was built with."""
    return request.app.state.database.unit_of_work()


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


# ---------------------------------------------------------------------------
# Envelope helper
# ---------------------------------------------------------------------------

def _ok(data: Any) -> Any:
    """Render a DTO or list of DTOs as camelCase JSON."""
    return to_json_value(data)


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": str(exc)})


# ===========================================================================
# REQUEST BODY SCHEMAS  (Pydantic v2)
# ===========================================================================

class _CamelModel(BaseModel):
    """Accepts camelCase (wire) or snake_case field names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _blank_to_none(v: Any) -> Any:
    return None if v == "" else v


# Date inputs from the web client arrive as "" when a picker is cleared
OptionalDate = Annotated[Optional[date], BeforeValidator(_blank_to_none)]


# ---------------------------------------------------------------------------
# User schemas
# ---------------------------------------------------------------------------

class LoginRequest(_CamelModel):
    user_id: Optional[str] = None


# ---------------------------------------------------------------------------
# OKR schemas
# ---------------------------------------------------------------------------

class KeyResultSchema(_CamelModel):
    id: str = Field(..., min_length=1)
    description: str = Field(default="")


class ObjectiveSchema(_CamelModel):
    id: str = Field(..., min_length=1)
    objective: str = Field(default="")
    key_results: List[KeyResultSchema] = Field(default_factory=list)

    def to_domain(self) -> Objective:
        return Objective(
            id=self.id,
            objective=self.objective,
            key_results=[KeyResult(id=kr.id, description=kr.description) for kr in self.key_results],
        )


class CreateOkrSetRequest(_CamelModel):
    period_id: Optional[str] = None
    period_name: Optional[str] = None
    okrs: List[ObjectiveSchema] = Field(default_factory=list)


class UpdateOkrSetRequest(_CamelModel):
    period_name: Optional[str] = None
    okrs: Optional[List[ObjectiveSchema]] = None


# ---------------------------------------------------------------------------
# Project schemas
# ---------------------------------------------------------------------------

class TeamMemberSchema(_CamelModel):
    user_id: str = Field(..., min_length=1)
    start_date: OptionalDate = None
    end_date: OptionalDate = None
    use_shared_schedule: bool = False

    def to_domain(self) -> TeamMember:
        return TeamMember(
            user_id=self.user_id,
            start_date=self.start_date,
            end_date=self.end_date,
            use_shared_schedule=self.use_shared_schedule,
        )


class CommentSchema(_CamelModel):
    id: str = Field(..., min_length=1)
    user_id: str
    text: str = Field(default="")
    created_at: Optional[datetime] = None
    mentions: List[str] = Field(default_factory=list)

    def to_domain(self) -> Comment:
        return Comment(
            id=self.id,
            user_id=self.user_id,
            text=self.text,
            created_at=self.created_at,
            mentions=list(self.mentions),
        )


class CreateProjectRequest(_CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    priority: ProjectPriority
    status: Optional[str] = None
    business_problem: Optional[str] = None
    key_result_ids: List[str] = Field(default_factory=list)
    product_managers: List[TeamMemberSchema] = Field(default_factory=list)
    backend_developers: List[TeamMemberSchema] = Field(default_factory=list)
    frontend_developers: List[TeamMemberSchema] = Field(default_factory=list)
    qa_testers: List[TeamMemberSchema] = Field(default_factory=list)
    proposal_date: OptionalDate = None
    launch_date: OptionalDate = None
    followers: List[str] = Field(default_factory=list)
    weekly_update: Optional[str] = None
    last_week_update: Optional[str] = None
    comments: List[CommentSchema] = Field(default_factory=list)


class UpdateProjectRequest(_CamelModel):
    """
    Partial update: only the fields present in the body are applied.
    `id` is ignored; `userId` names the acting user.
    """
    id: Optional[str] = None
    user_id: Optional[str] = None
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    priority: Optional[ProjectPriority] = None
    status: Optional[str] = None
    business_problem: Optional[str] = None
    key_result_ids: Optional[List[str]] = None
    product_managers: Optional[List[TeamMemberSchema]] = None
    backend_developers: Optional[List[TeamMemberSchema]] = None
    frontend_developers: Optional[List[TeamMemberSchema]] = None
    qa_testers: Optional[List[TeamMemberSchema]] = None
    proposal_date: OptionalDate = None
    launch_date: OptionalDate = None
    followers: Optional[List[str]] = None
    weekly_update: Optional[str] = None
    last_week_update: Optional[str] = None
    comments: Optional[List[CommentSchema]] = None

    def changes(self) -> Dict[str, Any]:
        """The submitted fields as domain values, keyed by snake_case name."""
        changes = self.model_dump(exclude_unset=True, exclude={"id", "user_id"})
        for role in ROLE_FIELDS:
            members = getattr(self, role)
            if role in changes and members is not None:
                changes[role] = [m.to_domain() for m in members]
        if "comments" in changes and self.comments is not None:
            changes["comments"] = [c.to_domain() for c in self.comments]
        return changes


# ===========================================================================
# ROUTERS
# ===========================================================================

# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

user_router = APIRouter(tags=["Users"])


@user_router.get("/users", summary="List all users")
def list_users(uow: AbstractUnitOfWork = Depends(get_uow)):
    return _ok(ListUsersUseCase().execute(uow))


@user_router.post("/login", summary="Log in by user id")
def login(body: LoginRequest, uow: AbstractUnitOfWork = Depends(get_uow)):
    """Returns the user with the given id. No credentials are checked."""
    return _ok(LoginUseCase().execute(body.user_id, uow))


# ---------------------------------------------------------------------------
# OKR sets
# ---------------------------------------------------------------------------

okr_router = APIRouter(prefix="/okr-sets", tags=["OKR Sets"])


@okr_router.get("", summary="List OKR periods, newest period first")
def list_okr_sets(uow: AbstractUnitOfWork = Depends(get_uow)):
    return _ok(ListOkrSetsUseCase().execute(uow))


@okr_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Create an OKR period",
)
def create_okr_set(body: CreateOkrSetRequest, uow: AbstractUnitOfWork = Depends(get_uow)):
    cmd = CreateOkrSetCommand(
        period_id=body.period_id,
        period_name=body.period_name,
        okrs=[o.to_domain() for o in body.okrs],
    )
    return _ok(CreateOkrSetUseCase().execute(cmd, uow))


@okr_router.put("/{period_id}", summary="Replace the objectives and name of an OKR period")
def update_okr_set(
    body: UpdateOkrSetRequest,
    period_id: str = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = UpdateOkrSetCommand(
        period_id=period_id,
        period_name=body.period_name,
        okrs=[o.to_domain() for o in body.okrs] if body.okrs is not None else None,
    )
    return _ok(UpdateOkrSetUseCase().execute(cmd, uow))


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

project_router = APIRouter(prefix="/projects", tags=["Projects"])


@project_router.get("", summary="List all projects, newest first")
def list_projects(uow: AbstractUnitOfWork = Depends(get_uow)):
    return _ok(ListProjectsUseCase().execute(uow))


@project_router.get("/{project_id}", summary="Get a project by ID")
def get_project(
    project_id: str = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(GetProjectUseCase().execute(project_id, uow))


@project_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Create a project",
)
def create_project(
    body: CreateProjectRequest,
    uow: AbstractUnitOfWork = Depends(get_uow),
    settings: Settings = Depends(get_settings),
):
    """
    Projects prioritised as department-OKR work must reference at least one
    key result.  The change log starts with a single "created" entry.
    """
    cmd = CreateProjectCommand(
        name=body.name,
        priority=body.priority,
        status=body.status,
        business_problem=body.business_problem,
        key_result_ids=body.key_result_ids,
        product_managers=[m.to_domain() for m in body.product_managers],
        backend_developers=[m.to_domain() for m in body.backend_developers],
        frontend_developers=[m.to_domain() for m in body.frontend_developers],
        qa_testers=[m.to_domain() for m in body.qa_testers],
        proposal_date=body.proposal_date,
        launch_date=body.launch_date,
        followers=body.followers,
        weekly_update=body.weekly_update,
        last_week_update=body.last_week_update,
        comments=[c.to_domain() for c in body.comments],
    )
    use_case = CreateProjectUseCase(settings.project_statuses, settings.system_actor_id)
    return _ok(use_case.execute(cmd, uow))


@project_router.put("/{project_id}", summary="Partially update a project")
def update_project(
    body: UpdateProjectRequest,
    project_id: str = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
    settings: Settings = Depends(get_settings),
):
    """
    Applies only the submitted fields.  Changes to name, priority, status,
    weekly update, role lists and launch date are recorded in the change log.
    """
    cmd = UpdateProjectCommand(
        project_id=project_id,
        changes=body.changes(),
        acting_user_id=body.user_id,
    )
    use_case = UpdateProjectUseCase(settings.project_statuses, settings.system_actor_id)
    return _ok(use_case.execute(cmd, uow))


@project_router.delete("/{project_id}", summary="Delete a project")
def delete_project(
    project_id: str = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(DeleteProjectUseCase().execute(project_id, uow))


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------

job_router = APIRouter(tags=["Jobs"])


@job_router.post("/weekly-rollover", summary="Run the weekly progress rollover now")
def weekly_rollover(uow: AbstractUnitOfWork = Depends(get_uow)):
    return _ok(WeeklyRolloverUseCase().execute(uow))


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

health_router = APIRouter(tags=["Health"])


@health_router.get("/health", summary="Service health check")
def health():
    return {"status": "ok"}


# ===========================================================================
# OPENAPI CUSTOMISATION — tag order and descriptions
# ===========================================================================

tags_metadata = [
    {"name": "Health", "description": "Liveness probe."},
    {
        "name": "Users",
        "description": "The user directory and id-based login.",
    },
    {
        "name": "OKR Sets",
        "description": (
            "Objectives and key results per planning period.  Updates replace the "
            "whole period document and are not audited."
        ),
    },
    {
        "name": "Projects",
        "description": (
            "Project CRUD.  Every update of a tracked field is appended to the "
            "project's change log, newest first."
        ),
    },
    {
        "name": "Jobs",
        "description": "Manual trigger for the scheduled weekly progress rollover.",
    },
]


# ===========================================================================
# EXCEPTION HANDLERS
# ===========================================================================

def _register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request, exc: ValidationError):
        return _error(400, exc)

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request, exc: NotFoundError):
        return _error(404, exc)

    @app.exception_handler(ConflictError)
    async def conflict_handler(request, exc: ConflictError):
        return _error(409, exc)

    @app.exception_handler(StorageError)
    async def storage_error_handler(request, exc: StorageError):
        return _error(500, exc)

    @app.exception_handler(ApplicationError)
    async def application_error_handler(request, exc: ApplicationError):
        return _error(400, exc)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal server error."})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'][1:]) or 'body'}: {err['msg']}"
            for err in exc.errors()
        )
        return JSONResponse(status_code=400, content={"error": details})


# ===========================================================================
# APP FACTORY
# ===========================================================================

def create_app(
    settings: Optional[Settings] = None,
    database=None,
    scheduler=None,
) -> FastAPI:
    """
    Build the FastAPI app around an explicitly constructed database handle.

    The database is opened when the app starts and closed when it stops;
    the scheduler (if any) is started after the database and stopped
    before it.
    """
    settings = settings or Settings()
    database = database if database is not None else InMemoryDatabase()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database.open()
        if scheduler is not None:
            scheduler.start()
        try:
            yield
        finally:
            if scheduler is not None:
                scheduler.shutdown()
            database.close()

    app = FastAPI(
        title="Project Tracker API",
        version="1.0.0",
        description=(
            "Internal project tracking: projects with status, priority and team "
            "assignments, an audited change log, OKR periods and a weekly "
            "progress rollover."
        ),
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_tags=tags_metadata,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.database = database

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _register_exception_handlers(app)

    api = APIRouter(prefix=settings.api_prefix)
    api.include_router(user_router)
    api.include_router(okr_router)
    api.include_router(project_router)
    api.include_router(job_router)
    app.include_router(api)
    app.include_router(health_router)

    # -----------------------------------------------------------------------
    # MCP Server — exposes all API routes as MCP tools at /mcp
    # -----------------------------------------------------------------------
    if settings.mcp_enabled:
        mcp = FastApiMCP(app)
        mcp.mount_http()

    return app
