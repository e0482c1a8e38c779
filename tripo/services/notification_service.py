import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable

import requests
from sqlalchemy.orm import Session, sessionmaker

from tripo.core.config import settings
from tripo.db.session import SessionLocal
from tripo.models.notification_log import NotificationLog

logger = logging.getLogger(__name__)


def _celery_dispatch(notification_id: str) -> None:
    from tripo.tasks.jobs import deliver_notification
    deliver_notification.delay(notification_id)


class NotificationService:
    """Fire-and-forget push notifications backed by the notification_logs outbox.

    ``notify`` never raises: a booking that has committed stays committed no
    matter what happens to its notification. Rows that could not be delivered
    are retried by the ``process_notification_queue`` beat job.
    """

    def __init__(self, session_factory: sessionmaker | None = None, dispatch: Callable[[str], None] | None = None):
        self.session_factory = session_factory or SessionLocal
        self.dispatch = dispatch or _celery_dispatch

    def notify(self, user_id: str, event_type: str, payload: dict | None = None) -> str | None:
        try:
            db = self.session_factory()
            try:
                nid = queue_notification(db, user_id, event_type, payload)
            finally:
                db.close()
        except Exception:
            logger.exception("Could not queue %s notification for %s", event_type, user_id)
            return None

        try:
            self.dispatch(nid)
        except Exception:
            # Row stays queued; the beat job picks it up.
            logger.exception("Could not dispatch notification %s", nid)
        return nid


def queue_notification(db: Session, user_id: str, event_type: str, payload: dict | None = None) -> str:
    nid = str(uuid.uuid4())
    db.add(
        NotificationLog(
            id=nid,
            user_id=user_id,
            event_type=event_type,
            payload_json=json.dumps(payload or {}, ensure_ascii=False, default=str),
            status="queued",
            attempts=0,
        )
    )
    db.commit()
    return nid


def send_push(user_id: str, event_type: str, payload: dict):
    """POST one notification to the push gateway."""
    headers = {}
    if settings.PUSH_GATEWAY_TOKEN:
        headers["Authorization"] = f"Bearer {settings.PUSH_GATEWAY_TOKEN}"
    r = requests.post(
        settings.PUSH_GATEWAY_URL,
        json={"userId": user_id, "type": event_type, "data": payload},
        headers=headers,
        timeout=10,
    )
    if r.status_code >= 400:
        raise RuntimeError(f"Push gateway error {r.status_code}: {r.text}")


def _deliver(log: NotificationLog) -> bool:
    if not settings.PUSH_GATEWAY_URL:
        log.status = "skipped"
        return False

    log.attempts = (log.attempts or 0) + 1
    try:
        send_push(log.user_id, log.event_type, json.loads(log.payload_json or "{}"))
    except Exception as e:
        logger.warning("Push delivery failed for notification %s (attempt %d): %s", log.id, log.attempts, e)
        log.status = "failed"
        log.last_error = str(e)[:1000]
        return False

    log.status = "sent"
    log.sent_at = datetime.now(timezone.utc)
    log.last_error = None
    return True


def deliver_notification(db: Session, notification_id: str) -> dict:
    log = db.get(NotificationLog, notification_id)
    if not log:
        return {"ok": False, "reason": "not_found"}
    if log.status in ("sent", "skipped"):
        return {"ok": True, "status": log.status}
    _deliver(log)
    db.commit()
    return {"ok": log.status == "sent", "status": log.status}


def process_pending_notifications(db: Session, limit: int = 50, max_attempts: int | None = None) -> dict:
    """Retry up to `limit` queued or failed notifications that still have attempts left."""
    max_attempts = max_attempts or settings.NOTIFY_MAX_ATTEMPTS
    pending = (
        db.query(NotificationLog)
        .filter(NotificationLog.status.in_(["queued", "failed"]), NotificationLog.attempts < max_attempts)
        .order_by(NotificationLog.created_at.asc())
        .limit(limit)
        .all()
    )
    sent, failed, skipped = 0, 0, 0
    for log in pending:
        if _deliver(log):
            sent += 1
        elif log.status == "skipped":
            skipped += 1
        else:
            failed += 1
    if pending:
        db.commit()
    return {"processed": len(pending), "sent": sent, "failed": failed, "skipped": skipped}
