# leasesign/notifications/services.py

from kombu.exceptions import OperationalError

from leasesign.notifications.tasks import send_lease_executed_emails, send_signing_link_email
from leasesign.utils.logger import get_logger

logger = get_logger(__name__)


class NotificationDispatcher:
    """
    Hands signing notifications to the Celery worker.

    Every method returns False instead of raising when the broker is
    unreachable; signing must not fail because an email could not be queued.
    """

    def _enqueue(self, task, *args, **kwargs) -> bool:
        try:
            task.delay(*args, **kwargs)
            return True
        except OperationalError as e:
            logger.error("Could not enqueue notification", task=task.name, error_message=str(e))
            return False

    def signing_link_created(self, request_id: int) -> bool:
        return self._enqueue(send_signing_link_email, request_id)

    def signing_reminder(self, request_id: int) -> bool:
        return self._enqueue(send_signing_link_email, request_id, reminder=True)

    def lease_fully_executed(self, lease_id: int) -> bool:
        return self._enqueue(send_lease_executed_emails, lease_id)


notification_dispatcher = NotificationDispatcher()
