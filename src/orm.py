"""
orm.py

SQLAlchemy table mappings for the Project Tracker.

Tables
------
- users
- okr_sets
- projects

Structured lists (role assignments, comments, change log, OKR objectives)
are stored as JSON columns holding the camelCase wire form produced by
serialization.py.  Key-result ids and followers use native text arrays on
PostgreSQL and fall back to JSON on other dialects (SQLite in tests).
Status and priority are plain strings: the valid values live in
configuration so stages can be relabeled without an enum-type migration.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, List, Optional

from sqlalchemy import JSON, Date, DateTime, String, Text
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

StringList = JSON().with_variant(ARRAY(Text), "postgresql")


class Base(DeclarativeBase):
    pass


class UserRow(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    avatar_url: Mapped[str] = mapped_column(Text, nullable=False, default="")


class OkrSetRow(Base):
    __tablename__ = "okr_sets"

    period_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    period_name: Mapped[str] = mapped_column(Text, nullable=False)
    okrs: Mapped[List[Any]] = mapped_column(JSON, nullable=False, default=list)


class ProjectRow(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[str] = mapped_column(String(32), nullable=False)
    business_problem: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    key_result_ids: Mapped[List[str]] = mapped_column(StringList, nullable=False, default=list)
    status: Mapped[str] = mapped_column(String(64), nullable=False)

    product_managers: Mapped[List[Any]] = mapped_column(JSON, nullable=False, default=list)
    backend_developers: Mapped[List[Any]] = mapped_column(JSON, nullable=False, default=list)
    frontend_developers: Mapped[List[Any]] = mapped_column(JSON, nullable=False, default=list)
    qa_testers: Mapped[List[Any]] = mapped_column(JSON, nullable=False, default=list)

    proposal_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    launch_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    followers: Mapped[List[str]] = mapped_column(StringList, nullable=False, default=list)

    weekly_update: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_week_update: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    comments: Mapped[List[Any]] = mapped_column(JSON, nullable=False, default=list)
    change_log: Mapped[List[Any]] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
