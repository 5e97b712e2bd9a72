"""Services package initialization."""
from services.conversation_service import ConversationService
from services.notification_service import NotificationService

__all__ = ["ConversationService", "NotificationService"]
