# cashpoint/notifications.py
from __future__ import annotations

import asyncio
import json
import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import event
from sqlalchemy.orm import Session
from telegram import Bot
from telegram.error import TelegramError

from cashpoint.core.config import settings
from cashpoint import models

logger = logging.getLogger(__name__)

_OUTBOX_KEY = "push_outbox"


def notify(
    db: Session,
    user: models.User,
    *,
    title: str,
    message: str,
    ntype: str = "SYSTEM",
    meta: Optional[Dict[str, Any]] = None,
    push: bool = True,
) -> models.Notification:
    """Store an in-app notification; queue a push for users with a linked chat.

    Pushes leave only after the surrounding unit of work commits.
    """
    row = models.Notification(
        user_id=user.id,
        ntype=ntype,
        title=title,
        message=message,
        meta=(json.dumps(meta, sort_keys=True, default=str) if meta else None),
    )
    db.add(row)

    if push:
        queue_push(db, user, f"{title}\n{message}")
    return row


def queue_push(db: Session, user: models.User, text: str) -> bool:
    """Queue a push without an in-app copy (one-time codes). Returns False when there is no channel."""
    if not user.telegram_chat_id:
        return False
    if not settings.BOT_TOKEN:
        logger.warning("BOT_TOKEN missing, push to user %s skipped", user.id)
        return False
    db.info.setdefault(_OUTBOX_KEY, []).append((user.telegram_chat_id, text))
    return True


def notify_admins(db: Session, *, title: str, message: str, meta: Optional[Dict[str, Any]] = None) -> int:
    admins = db.query(models.User).filter(models.User.user_type == "ADMIN", models.User.is_active.is_(True)).all()
    for admin in admins:
        notify(db, admin, title=title, message=message, meta=meta)
    return len(admins)


async def _send_all(messages: List[Tuple[int, str]]) -> None:
    bot = Bot(settings.BOT_TOKEN)
    async with bot:
        for chat_id, text in messages:
            try:
                await bot.send_message(chat_id=chat_id, text=text)
            except TelegramError:
                logger.exception("Push to chat %s failed", chat_id)


def _deliver(messages: List[Tuple[int, str]]) -> None:
    try:
        asyncio.run(_send_all(messages))
    except Exception:
        logger.exception("Push delivery crashed (%d messages dropped)", len(messages))


@event.listens_for(Session, "after_commit")
def _flush_outbox(session: Session) -> None:
    messages = session.info.pop(_OUTBOX_KEY, None)
    if messages:
        threading.Thread(target=_deliver, args=(messages,), daemon=True).start()


@event.listens_for(Session, "after_rollback")
def _drop_outbox(session: Session) -> None:
    session.info.pop(_OUTBOX_KEY, None)
