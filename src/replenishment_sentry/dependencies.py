"""Shared FastAPI dependencies."""

from __future__ import annotations

from typing import Generator

from fastapi import Request
from sqlalchemy.orm import Session

from .config import Settings
from .database import Database
from .orchestrator import LifecycleOrchestrator


def get_settings_dependency(request: Request) -> Settings:
    return request.app.state.settings


def get_orchestrator(request: Request) -> LifecycleOrchestrator:
    return request.app.state.orchestrator


def get_db(request: Request) -> Generator[Session, None, None]:
    """Provide a transactional database session for FastAPI routes."""

    database: Database = request.app.state.database
    with database.session_scope() as session:
        yield session


def get_read_db(request: Request) -> Generator[Session, None, None]:
    """Provide a query-only database session for FastAPI routes."""

    database: Database = request.app.state.database
    with database.read_scope() as session:
        yield session
