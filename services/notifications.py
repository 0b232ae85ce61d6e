import logging
import os
from typing import Any, Dict, Iterable, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape
from sqlalchemy import event
from sqlalchemy.orm import Session

from core.errors import NotFoundError
from models.notification import Notification
from models.store import Store
from models.user import User

logger = logging.getLogger(__name__)

# Jinja2 environment for notification templates
_templates_env = Environment(
    loader=FileSystemLoader(searchpath=os.path.join(os.path.dirname(os.path.dirname(__file__)), "templates")),
    autoescape=select_autoescape(["html", "xml"]),
)

TITLES = {
    "store_expiring": "Your store expires soon",
    "store_grace_period": "Your store is in its grace period",
    "store_deactivated": "Your store has been deactivated",
    "store_renewed": "Store renewed",
    "store_deleted": "A store you follow was closed",
    "new_listing": "New listing from a store you follow",
    "new_follower": "You have a new follower",
}


def render_template(template_path: str, context: Dict[str, Any]) -> str:
    """Render a text template from templates/ directory with provided context."""
    template = _templates_env.get_template(template_path)
    return template.render(**context)


PENDING_PUSHES = "pending_pushes"


def queue_push(push_token: Optional[str], title: str, message: str, data: Optional[Dict[str, Any]] = None) -> None:
    """Hand a push notification to Celery; delivery problems never reach the caller."""
    if not push_token:
        return
    try:
        from tasks.notification_tasks import deliver_push_task

        deliver_push_task.delay(push_token, title, message, data or {})
    except Exception:
        logger.exception("Could not queue push notification to %s", push_token)


@event.listens_for(Session, "after_commit")
def _send_pending_pushes(session: Session) -> None:
    # Pushes queued by notify() leave only after their rows are committed
    for push in session.info.pop(PENDING_PUSHES, []):
        queue_push(*push)


@event.listens_for(Session, "after_soft_rollback")
def _drop_pending_pushes(session: Session, previous_transaction) -> None:
    if previous_transaction.nested:
        return
    dropped = session.info.pop(PENDING_PUSHES, [])
    if dropped:
        logger.info("Discarded %s push notifications after rollback", len(dropped))


class NotificationService:
    """In-app notifications plus push delivery, fire-and-forget.

    Rows are added to the caller's session and committed with the caller's
    unit of work. Pushes wait in ``session.info`` until that commit and are
    dropped if it rolls back.
    """

    def __init__(self, db: Session):
        self.db = db

    def notify(
        self,
        recipients: Iterable[User],
        kind: str,
        context: Dict[str, Any],
        store: Optional[Store] = None,
        listing_id: Optional[int] = None,
    ) -> int:
        try:
            message = render_template(f"notifications/{kind}.txt", context).strip()
        except Exception:
            logger.exception("Could not render %s notification", kind)
            return 0

        title = TITLES.get(kind, kind.replace("_", " ").capitalize())
        sent = 0
        for user in recipients:
            self.db.add(
                Notification(
                    user_id=user.id,
                    store_id=store.id if store is not None else None,
                    listing_id=listing_id,
                    kind=kind,
                    title=title,
                    message=message,
                )
            )
            if user.push_token:
                self.db.info.setdefault(PENDING_PUSHES, []).append(
                    (user.push_token, title, message, {"kind": kind, "store_id": store.id if store is not None else None})
                )
            sent += 1

        logger.info("Dispatched %s notification to %s recipients", kind, sent)
        return sent

    def notify_owner(self, store: Store, kind: str, context: Optional[Dict[str, Any]] = None) -> int:
        return self.notify([store.owner], kind, {"store": store, **(context or {})}, store=store)

    def notify_followers(
        self,
        store: Store,
        kind: str,
        context: Optional[Dict[str, Any]] = None,
        listing_id: Optional[int] = None,
    ) -> int:
        followers = [user for user in store.followers if user.id != store.user_id]
        return self.notify(followers, kind, {"store": store, **(context or {})}, store=store, listing_id=listing_id)

    def unread(self, user_id: int):
        return (
            self.db.query(Notification)
            .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
            .order_by(Notification.created_at.desc())
            .all()
        )

    def mark_read(self, user_id: int, notification_id: int) -> Notification:
        notification = self.db.get(Notification, notification_id)
        if notification is None or notification.user_id != user_id:
            raise NotFoundError("Notification not found", notification_id=notification_id)
        notification.is_read = True
        self.db.commit()
        return notification

    def mark_all_read(self, user_id: int) -> int:
        updated = (
            self.db.query(Notification)
            .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
            .update({Notification.is_read: True}, synchronize_session=False)
        )
        self.db.commit()
        return updated
