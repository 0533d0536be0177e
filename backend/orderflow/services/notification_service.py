# Overview: Role notifications and the order-changed event; delivered only after commit.

"""
Notification collaborator seam.

WHY: Entering SENT_TO_STOREKEEPER, SENT_TO_CHECKER, COMPLETED, etc. tells a
role pool that there is work. Delivery (push, SMS, whatever) is not the
engine's business, and a failed delivery must never undo or block the
transition that caused it.

DESIGN:
- Services call queue()/mark_changed() while they mutate. Both write into
  the SQLAlchemy session's ``info`` dict, so a rolled-back operation leaves
  nothing behind (discard()).
- concurrency.run_action calls flush() after a successful commit. Each
  delivery is attempted independently; failures are logged and dropped.
- order_changed is a blinker signal, the same mechanism Flask uses for its
  own signals. Subscribers get the order id and re-read whatever they need.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from blinker import Namespace
from flask import current_app, has_app_context

from ..extensions import db
from ..flags import Role


logger = logging.getLogger(__name__)

_signals = Namespace()
order_changed = _signals.signal("order-changed")

NOTIFIER_EXTENSION_KEY = "orderflow.notifier"
_PENDING_KEY = "orderflow.pending_notifications"
_CHANGED_KEY = "orderflow.changed_orders"


class Notifier(Protocol):
    def notify_role(self, role: Role, order_id: int, message: str) -> None:
        ...


class LoggingNotifier:
    """Default notifier: writes one log line per notification."""

    def notify_role(self, role: Role, order_id: int, message: str) -> None:
        logger.info("notify %s about order %s: %s", role.value, order_id, message)


@dataclass(frozen=True)
class PendingNotification:
    role: Role
    order_id: int
    message: str
    actor_id: Optional[int] = None


def install_notifier(app, notifier: Notifier) -> None:
    app.extensions[NOTIFIER_EXTENSION_KEY] = notifier


def get_notifier() -> Notifier:
    if has_app_context():
        notifier = current_app.extensions.get(NOTIFIER_EXTENSION_KEY)
        if notifier is not None:
            return notifier
    return LoggingNotifier()


def queue(role: Role, order_id: int, message: str, *, actor_id: Optional[int] = None) -> None:
    """Queue a role notification for delivery after the current operation commits."""
    pending = db.session.info.setdefault(_PENDING_KEY, [])
    pending.append(PendingNotification(role=role, order_id=order_id, message=message, actor_id=actor_id))
    mark_changed(order_id)


def mark_changed(order_id: int) -> None:
    changed = db.session.info.setdefault(_CHANGED_KEY, [])
    if order_id not in changed:
        changed.append(order_id)


def discard() -> None:
    db.session.info.pop(_PENDING_KEY, None)
    db.session.info.pop(_CHANGED_KEY, None)


def flush() -> int:
    """
    Deliver queued notifications and emit order_changed.

    Returns:
        Number of notifications delivered successfully
    """
    pending = db.session.info.pop(_PENDING_KEY, [])
    changed = db.session.info.pop(_CHANGED_KEY, [])

    notifier = get_notifier()
    delivered = 0
    for item in pending:
        try:
            if item.actor_id is not None and hasattr(notifier, "notify_actor"):
                notifier.notify_actor(item.actor_id, item.role, item.order_id, item.message)
            else:
                notifier.notify_role(item.role, item.order_id, item.message)
            delivered += 1
        except Exception:
            logger.exception("Failed to notify %s about order %s", item.role.value, item.order_id)

    for order_id in changed:
        try:
            order_changed.send(current_app._get_current_object() if has_app_context() else None, order_id=order_id)
        except Exception:
            logger.exception("order_changed subscriber failed for order %s", order_id)

    return delivered
