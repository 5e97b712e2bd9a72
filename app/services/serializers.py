"""
Builders that turn ORM rows into the API/WebSocket DTOs, adding the
denormalized display data (sender, actor, online hint).
"""
from datetime import datetime
from typing import Iterable, List, Optional
from api.schemas import (
    ConversationOut, LastMessage, MessageOut, NotificationOut, UserSummary
)
from api.websocket_manager import ConnectionRegistry
from db.models import Conversation, Message, Notification, User


def user_summary(user: User, registry: Optional[ConnectionRegistry] = None) -> UserSummary:
    """Public display data of a user, with the online hint when a registry is given."""
    return UserSummary(
        id=user.id,
        username=user.username,
        display_name=user.display_name,
        avatar_url=user.avatar_url,
        verified=bool(user.verified),
        is_online=registry.is_online(user.id) if registry is not None else False
    )


def visible_read_by(message: Message, viewer_id: Optional[int], read_receipts_enabled: bool) -> List[int]:
    """
    Read-set as shown to a viewer.

    With read receipts disabled a participant only sees the sender's marker
    and their own.
    """
    read_by = message.read_by
    if read_receipts_enabled or viewer_id is None:
        return read_by
    return [user_id for user_id in read_by if user_id in (message.sender_id, viewer_id)]


def message_out(
    message: Message,
    sender: User,
    registry: Optional[ConnectionRegistry] = None,
    viewer_id: Optional[int] = None,
    read_receipts_enabled: bool = True
) -> MessageOut:
    """Message DTO with sender display data."""
    return MessageOut(
        id=message.id,
        conversation_id=message.conversation_id,
        sender_id=message.sender_id,
        content=message.content,
        created_at=message.created_at,
        read_by=visible_read_by(message, viewer_id, read_receipts_enabled),
        sender=user_summary(sender, registry)
    )


def last_message_out(message: Optional[Message]) -> Optional[LastMessage]:
    if message is None:
        return None
    return LastMessage(
        id=message.id,
        sender_id=message.sender_id,
        content=message.content,
        created_at=message.created_at
    )


def conversation_fields(conversation: Conversation, now: Optional[datetime] = None) -> dict:
    """
    Conversation columns as DTO keyword arguments.

    The mute is reported as in effect at ``now`` (default: current UTC time),
    so an expired timed mute shows as unmuted.
    """
    is_muted = conversation.is_muted_at(now or datetime.utcnow())
    return dict(
        id=conversation.id,
        is_group=conversation.is_group,
        title=conversation.title,
        participant_ids=conversation.participant_ids,
        created_at=conversation.created_at,
        last_message_at=conversation.last_message_at,
        is_muted=is_muted,
        muted_until=conversation.muted_until if is_muted else None,
        read_receipt_enabled=conversation.read_receipt_enabled
    )


def conversation_out(conversation: Conversation) -> ConversationOut:
    return ConversationOut(**conversation_fields(conversation))


def notification_out(
    notification: Notification,
    actor: User,
    registry: Optional[ConnectionRegistry] = None
) -> NotificationOut:
    """Notification DTO with actor display data."""
    return NotificationOut(
        id=notification.id,
        user_id=notification.user_id,
        actor_id=notification.actor_id,
        type=notification.type.value,
        target_id=notification.target_id,
        read=notification.read,
        created_at=notification.created_at,
        actor=user_summary(actor, registry)
    )


def user_summaries(users: Iterable[User], registry: Optional[ConnectionRegistry] = None) -> List[UserSummary]:
    return [user_summary(user, registry) for user in users]
