# cashpoint/api/auth.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from cashpoint import crud, models
from cashpoint.api.deps import client_ip, get_current_user
from cashpoint.core.config import settings
from cashpoint.database import get_db
from cashpoint.errors import Unauthorized
from cashpoint.schemas import LoginIn, RegisterIn, UserOut
from cashpoint.security import check_secret, create_access_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _set_cookie(response: Response, user: models.User) -> str:
    token = create_access_token(user.id, user.user_type)
    response.set_cookie(
        settings.COOKIE_NAME,
        token,
        max_age=settings.ACCESS_TOKEN_MINUTES * 60,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
    )
    return token


@router.post("/register", status_code=201)
def register(body: RegisterIn, response: Response, request: Request, db: Session = Depends(get_db)):
    user = crud.create_user(
        db,
        phone=body.phone,
        full_name=body.full_name,
        password=body.password,
        telegram_chat_id=body.telegram_chat_id,
    )
    crud.audit(db, user_id=user.id, action="USER_REGISTERED", entity="User", entity_id=user.id,
               ip_address=client_ip(request))
    db.commit()
    token = _set_cookie(response, user)
    logger.info("User %s registered", user.id)
    return {"user": UserOut.model_validate(user).model_dump(by_alias=True), "token": token}


@router.post("/login")
def login(body: LoginIn, response: Response, request: Request, db: Session = Depends(get_db)):
    user = crud.get_user_by_phone(db, body.phone)
    if user is None or not check_secret(body.password, user.password_hash):
        raise Unauthorized("Invalid phone or password")
    if not user.is_active:
        raise Unauthorized("Account disabled")

    crud.audit(db, user_id=user.id, action="LOGIN", entity="User", entity_id=user.id,
               ip_address=client_ip(request), user_agent=request.headers.get("user-agent"))
    db.commit()
    token = _set_cookie(response, user)
    return {"user": UserOut.model_validate(user).model_dump(by_alias=True), "token": token}


@router.post("/logout")
def logout(response: Response, user: models.User = Depends(get_current_user)):
    response.delete_cookie(settings.COOKIE_NAME)
    return {"success": True}
