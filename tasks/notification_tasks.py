import logging

import requests

from core.celery import celery_app
from core.config import settings

logger = logging.getLogger(__name__)

EXPO_PUSH_URL = "https://exp.host/--/api/v2/push/send"


@celery_app.task(bind=True, max_retries=3)
def deliver_push_task(self, push_token: str, title: str, body: str, data: dict | None = None):
    """
    Deliver a push notification through Expo.
    Retries up to 3 times with exponential backoff, then gives up.
    """
    if settings.TESTING:
        logger.debug("Push to %s skipped while testing: %s", push_token, title)
        return {"status": "skipped"}

    try:
        resp = requests.post(
            EXPO_PUSH_URL,
            json={"to": push_token, "title": title[:100], "body": body[:500], "data": data or {}, "sound": "default"},
            headers={"Accept": "application/json", "Content-Type": "application/json"},
            timeout=15,
        )
        resp.raise_for_status()
        result = resp.json().get("data") or {}
        if isinstance(result, list):
            result = result[0] if result else {}
        if result.get("status") != "ok":
            # Rejected tokens will not start working on retry
            logger.warning("Push rejected for %s: %s", push_token, result.get("message"))
            return {"status": "rejected", "detail": result}
        return {"status": "sent"}

    except requests.RequestException as exc:
        if self.request.retries >= self.max_retries:
            logger.error("Giving up on push to %s after %s retries: %s", push_token, self.request.retries, exc)
            return {"status": "failed", "error": str(exc)}

        # Retry with exponential backoff
        countdown = min(2 ** self.request.retries, 60)  # Max 60 seconds
        raise self.retry(exc=exc, countdown=countdown)


@celery_app.task
def send_expiration_notices_task():
    """Hourly sweep warning store owners about expiry, grace period and deactivation."""
    from core.db import db_session
    from services.lifecycle import StoreLifecycleManager

    with db_session() as db:
        sent = StoreLifecycleManager(db).send_expiration_notices()
    return {"sent": sent}
