# cashpoint/api/deps.py
from __future__ import annotations

from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from cashpoint import crud, models
from cashpoint.core.config import settings
from cashpoint.database import get_db
from cashpoint.errors import Forbidden, NotFound, Unauthorized
from cashpoint.fees import FeeSettings, load_fee_settings
from cashpoint.security import verify_access_token


def _token_from(request: Request) -> Optional[str]:
    token = request.cookies.get(settings.COOKIE_NAME)
    if token:
        return token
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


def get_current_user(request: Request, db: Session = Depends(get_db)) -> models.User:
    token = _token_from(request)
    if not token:
        raise Unauthorized("Not authenticated")
    payload = verify_access_token(token)
    if not payload:
        raise Unauthorized("Invalid or expired token")

    user = crud.get_user(db, int(payload["sub"]))
    if user is None or not user.is_active:
        raise Unauthorized("User not found or disabled")
    return user


def require_admin(user: models.User = Depends(get_current_user)) -> models.User:
    if user.user_type != "ADMIN":
        raise Forbidden("Admin access required")
    return user


def require_agent(user: models.User = Depends(get_current_user)) -> models.User:
    if user.user_type != "AGENT":
        raise Forbidden("Agent access required")
    return user


def get_agent_profile(
    user: models.User = Depends(require_agent),
    db: Session = Depends(get_db),
) -> models.AgentProfile:
    agent = crud.get_agent_by_user(db, user.id)
    if agent is None or not agent.is_active:
        raise NotFound("Agent not found or not registered")
    return agent


def get_fee_settings(db: Session = Depends(get_db)) -> FeeSettings:
    return load_fee_settings(db)


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None
