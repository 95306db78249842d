"""FastAPI dependencies resolving app-scoped services and the calling actor.

`create_app` stores one instance of each service on ``app.state`` so that a
settings override (tests, temp databases) reaches every router.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, Request

from budget_engine.core.config import Settings
from budget_engine.core.errors import Unauthorized
from budget_engine.db.dal import Database
from budget_engine.services.approval import ApprovalService
from budget_engine.services.notifications import NotificationTrigger
from budget_engine.services.reporting import ReportingService


@dataclass
class Actor:
    """Identity resolved upstream by the auth gateway and forwarded as headers."""

    id: Optional[str]
    role: Optional[str]


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_db(request: Request) -> Database:
    return request.app.state.db


def get_approval_service(request: Request) -> ApprovalService:
    return request.app.state.approval


def get_reporting_service(request: Request) -> ReportingService:
    return request.app.state.reporting


def get_trigger(request: Request) -> NotificationTrigger:
    return request.app.state.trigger


def get_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None),
) -> Actor:
    return Actor(id=x_actor_id, role=x_actor_role.lower() if x_actor_role else None)


def require_admin(
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_settings_dep),
) -> Actor:
    if actor.role != settings.admin_role:
        raise Unauthorized("administrator role required")
    return actor
