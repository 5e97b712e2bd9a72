"""
Notification push path.

Post, comment and follow handling live outside this service and call
``NotificationService.notify`` after the triggering action; the record is
persisted and pushed live to the recipient if they are connected.
"""
import logging
from typing import List, Optional, Union
from api.metrics import notifications_created_total, notifications_suppressed_total
from api.schemas import NotificationEvent, NotificationOut
from api.websocket_manager import ConnectionRegistry, EventDispatcher
from core.config import settings
from core.exceptions import NotFound
from db.models import NotificationType
from db.repository import Repository
from services.serializers import notification_out

logger = logging.getLogger(__name__)


class NotificationService:
    """Create, list and acknowledge notifications."""

    def __init__(
        self,
        repository: Repository,
        dispatcher: EventDispatcher,
        registry: Optional[ConnectionRegistry] = None
    ):
        self.repository = repository
        self.dispatcher = dispatcher
        self.registry = registry if registry is not None else dispatcher.registry

    async def notify(
        self,
        recipient_id: int,
        actor_id: int,
        kind: Union[NotificationType, str],
        target_id: Optional[str] = None
    ) -> Optional[NotificationOut]:
        """
        Record a notification and push it to the recipient.

        Self-notifications (actor == recipient) are dropped entirely:
        nothing is stored and nothing is pushed.

        Args:
            recipient_id: User being notified
            actor_id: User who caused the notification
            kind: like, comment or follow
            target_id: Optional target, e.g. the liked post

        Returns:
            The stored notification, or None when suppressed

        Raises:
            ValueError: unknown notification kind
        """
        kind = NotificationType(kind)

        if recipient_id == actor_id:
            notifications_suppressed_total.labels(type=kind.value, instance="api").inc()
            logger.debug(f"Suppressed self-notification {kind.value} for user {actor_id}")
            return None

        notification = self.repository.create_notification(
            user_id=recipient_id,
            actor_id=actor_id,
            notification_type=kind,
            target_id=target_id
        )
        notifications_created_total.labels(type=kind.value, instance="api").inc()
        logger.info(
            f"Notification {notification.id} ({kind.value}) for user {recipient_id} from user {actor_id}"
        )

        payload = notification_out(notification, notification.actor, self.registry)
        await self.dispatcher.push(recipient_id, NotificationEvent(data=payload))
        return payload

    def list_notifications(
        self,
        user_id: int,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[NotificationOut]:
        """A page of the user's notifications, most recent first."""
        limit = min(limit or settings.notification_page_size, settings.notification_max_page_size)
        notifications = self.repository.get_user_notifications(user_id, limit=limit, offset=offset)
        return [
            notification_out(notification, notification.actor, self.registry)
            for notification in notifications
        ]

    def mark_read(self, notification_id: int, user_id: int) -> NotificationOut:
        """
        Mark one of the user's notifications as read.

        Raises:
            NotFound: no such notification, or it belongs to another user
        """
        notification = self.repository.get_notification_by_id(notification_id)
        if notification is None or notification.user_id != user_id:
            raise NotFound("Notification not found")

        notification = self.repository.mark_notification_as_read(notification)
        logger.info(f"User {user_id} marked notification {notification_id} as read")
        return notification_out(notification, notification.actor, self.registry)
