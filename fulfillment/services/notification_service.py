# fulfillment/services/notification_service.py
from fulfillment.celery_worker import celery_app
from fulfillment.utils.settings import NOTIFICATIONS_DISPATCH_ENABLED
from fulfillment.utils.logging import get_logger

logger = get_logger(__name__)


class NotificationService:
    """
    Wysylka powiadomien przez Celery (asynchronicznie).
    - nowe zamowienie -> panel admina
    - zmiana statusu -> klient (tracker zamowienia)
    """

    def __init__(self, dispatch_enabled: bool = NOTIFICATIONS_DISPATCH_ENABLED):
        self.dispatch_enabled = dispatch_enabled

    def send_new_order_notification(self, snapshot):
        """Subscriber for the ChangeDetector; `snapshot` is a NewOrderSnapshot."""
        payload = snapshot.as_payload()
        if not self.dispatch_enabled:
            logger.info(f"[NOTIFICATION disabled] new order {payload['order_number']}")
            return
        send_new_order_notification_task.delay(payload)

    def send_status_notification(self, user_id: str, order_id: str, order_number: str, status: str):
        if not self.dispatch_enabled:
            logger.info(f"[NOTIFICATION disabled] order {order_number} is now {status}")
            return
        send_status_notification_task.delay(user_id, order_id, order_number, status)


@celery_app.task(name="fulfillment.services.notification_service.send_new_order_notification_task")
def send_new_order_notification_task(payload: dict):
    """
    Celery task - w prawdziwym systemie dzwiek w panelu / push / email.
    Teraz tylko loguje.
    """
    items = ", ".join(f"{i['quantity']}x {i['name']}" for i in payload.get("items", []))
    logger.info(
        f"[NOTIFICATION] New order #{payload['order_number']} - {payload['customer_name']} "
        f"({items}) total {payload['total']}"
    )
    return {"order_id": payload["order_id"], "status": "sent"}


@celery_app.task(name="fulfillment.services.notification_service.send_status_notification_task")
def send_status_notification_task(user_id: str, order_id: str, order_number: str, status: str):
    logger.info(f"[NOTIFICATION] User {user_id}: order #{order_number} is now {status}")
    return {"user_id": user_id, "order_id": order_id, "status": "sent"}
