"""
config.py

Runtime configuration for the Project Tracker.

Values come from the environment (optionally a `.env` file next to the
working directory) via django-environ.  Every setting has a default that is
good enough for local development with the in-memory store.

Environment variables
---------------------
    DATABASE_URL          SQLAlchemy URL; empty → in-memory storage
    DB_CREATE_SCHEMA      create missing tables on startup (default true)
    HOST / PORT           listen address (default 127.0.0.1:3001)
    API_PREFIX            base path of every route (default /api)
    CORS_ORIGINS          comma-separated list (default *)
    LOG_LEVEL             default INFO
    LOG_FILE              optional path of a rotating log file
    PROJECT_STATUSES      comma-separated, ordered delivery stages
    SYSTEM_ACTOR_ID       actor recorded when a request names no user
    ROLLOVER_ENABLED      schedule the weekly rollover (default true)
    ROLLOVER_DAY_OF_WEEK  cron day-of-week (default mon)
    ROLLOVER_HOUR         UTC hour (default 1)
    ROLLOVER_MINUTE       UTC minute (default 0)
    MCP_ENABLED           mount the MCP endpoint (default true)
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import environ

from model import DEFAULT_PROJECT_STATUSES, SYSTEM_ACTOR_ID


@dataclass(frozen=True)
class Settings:
    database_url: str = ""
    db_create_schema: bool = True
    host: str = "127.0.0.1"
    port: int = 3001
    api_prefix: str = "/api"
    cors_origins: Tuple[str, ...] = ("*",)
    log_level: str = "INFO"
    log_file: Optional[str] = None
    project_statuses: Tuple[str, ...] = DEFAULT_PROJECT_STATUSES
    system_actor_id: str = SYSTEM_ACTOR_ID
    rollover_enabled: bool = True
    rollover_day_of_week: str = "mon"
    rollover_hour: int = 1
    rollover_minute: int = 0
    mcp_enabled: bool = True

    @property
    def uses_database(self) -> bool:
        return bool(self.database_url)


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """Build Settings from the process environment (and `env_file`, if it exists)."""
    env = environ.Env()
    env_file = env_file or Path.cwd() / ".env"
    if env_file.exists():
        environ.Env.read_env(str(env_file))

    defaults = Settings()
    return Settings(
        database_url=env.str("DATABASE_URL", default=defaults.database_url),
        db_create_schema=env.bool("DB_CREATE_SCHEMA", default=defaults.db_create_schema),
        host=env.str("HOST", default=defaults.host),
        port=env.int("PORT", default=defaults.port),
        api_prefix=env.str("API_PREFIX", default=defaults.api_prefix).rstrip("/"),
        cors_origins=tuple(env.list("CORS_ORIGINS", default=list(defaults.cors_origins))),
        log_level=env.str("LOG_LEVEL", default=defaults.log_level).upper(),
        log_file=env.str("LOG_FILE", default="") or None,
        project_statuses=tuple(
            env.list("PROJECT_STATUSES", default=list(defaults.project_statuses))
        ),
        system_actor_id=env.str("SYSTEM_ACTOR_ID", default=defaults.system_actor_id),
        rollover_enabled=env.bool("ROLLOVER_ENABLED", default=defaults.rollover_enabled),
        rollover_day_of_week=env.str("ROLLOVER_DAY_OF_WEEK", default=defaults.rollover_day_of_week),
        rollover_hour=env.int("ROLLOVER_HOUR", default=defaults.rollover_hour),
        rollover_minute=env.int("ROLLOVER_MINUTE", default=defaults.rollover_minute),
        mcp_enabled=env.bool("MCP_ENABLED", default=defaults.mcp_enabled),
    )
