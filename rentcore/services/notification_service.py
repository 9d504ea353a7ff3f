"""Best-effort tenant notifications."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from sqlalchemy.orm import Session, sessionmaker

from rentcore.core.config import get_config
from rentcore.database.db import session_scope
from rentcore.models.notification import Notification

logger = logging.getLogger(__name__)


class NotificationSender(Protocol):
    def notify_user(
        self,
        user_id: int,
        title: str,
        message: str,
        action_url: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> None: ...


class DatabaseNotificationSender:
    """Persists in-app notifications in their own transaction."""

    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self._session_factory = session_factory

    def notify_user(
        self,
        user_id: int,
        title: str,
        message: str,
        action_url: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> None:
        with session_scope(self._session_factory) as db:
            db.add(
                Notification(
                    user_id=user_id,
                    title=title,
                    message=message,
                    action_url=action_url,
                    meta=dict(meta or {}),
                )
            )


def contract_url(contract_id: int) -> str:
    return f"{get_config().APP_BASE_URL}/tenant/contracts/{contract_id}"


def payment_url(payment_id: int) -> str:
    return f"{get_config().APP_BASE_URL}/tenant/invoices/payments/{payment_id}"


def safe_notify(
    sender: NotificationSender | None,
    user_id: int | None,
    title: str,
    message: str,
    action_url: str | None = None,
    meta: dict[str, Any] | None = None,
) -> bool:
    """Send a notification, swallowing failures. Returns True when delivered."""
    if sender is None or not user_id:
        return False
    try:
        sender.notify_user(user_id, title, message, action_url, meta)
        return True
    except Exception:
        logger.exception(
            "notification.send_failed",
            extra={"event": "notification.send_failed", "user_id": user_id, "title": title},
        )
        return False
