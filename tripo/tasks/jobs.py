from tripo.tasks.celery_app import celery
from tripo.tasks import worker_jobs


@celery.task(name="tripo.tasks.jobs.deliver_notification")
def deliver_notification(notification_id: str):
    return worker_jobs.deliver_notification(notification_id)


@celery.task(name="tripo.tasks.jobs.process_notification_queue")
def process_notification_queue(limit: int = 50):
    return worker_jobs.process_notification_queue(limit=limit)
