from sqlalchemy.orm import Session
from sqlalchemy.exc import ProgrammingError
from tripo.db.session import SessionLocal
from tripo.services import notification_service


def deliver_notification(notification_id: str, session_factory=SessionLocal) -> dict:
    db: Session = session_factory()
    try:
        return notification_service.deliver_notification(db, notification_id)
    finally:
        db.close()


def process_notification_queue(limit: int = 50, session_factory=SessionLocal) -> dict:
    """Retry queued/failed notifications. Run periodically via Celery beat."""
    db: Session = session_factory()
    try:
        try:
            return notification_service.process_pending_notifications(db, limit=limit)
        except ProgrammingError:
            # DB not migrated yet; don't crash the worker.
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
    finally:
        db.close()
