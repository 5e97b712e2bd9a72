"""
Repository layer for database operations.
Provides high-level methods for the conversation, message, read-receipt
and notification queries used by the services.
"""
from datetime import datetime
from typing import Dict, List, Optional
from sqlalchemy import exists, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, selectinload
from db.models import (
    User, Conversation, ConversationMember, Message, MessageRead,
    Notification, NotificationType
)


class Repository:
    """Repository class for database operations."""

    def __init__(self, db: Session):
        """
        Initialize repository with database session.

        Args:
            db: SQLAlchemy database session
        """
        self.db = db

    # User operations
    def create_user(
        self,
        username: str,
        password_hash: str,
        display_name: Optional[str] = None,
        avatar_url: Optional[str] = None
    ) -> User:
        """Create a new user."""
        user = User(
            username=username,
            password=password_hash,
            display_name=display_name,
            avatar_url=avatar_url
        )
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user

    def get_user_by_username(self, username: str) -> Optional[User]:
        """Get user by username."""
        return self.db.query(User).filter(User.username == username).first()

    def get_user_by_id(self, user_id: int) -> Optional[User]:
        """Get user by ID."""
        return self.db.query(User).filter(User.id == user_id).first()

    def get_users_by_ids(self, user_ids: List[int]) -> Dict[int, User]:
        """Get users keyed by ID; unknown IDs are simply absent."""
        if not user_ids:
            return {}
        users = self.db.query(User).filter(User.id.in_(user_ids)).all()
        return {user.id: user for user in users}

    # Conversation operations
    def create_conversation(
        self,
        participant_ids: List[int],
        title: Optional[str] = None,
        is_group: bool = False
    ) -> Conversation:
        """
        Create a conversation and its participant rows in one transaction.

        Args:
            participant_ids: Ordered, duplicate-free participant IDs
            title: Optional title (group conversations)
            is_group: Group flag
        """
        conversation = Conversation(title=title, is_group=is_group)
        conversation.members = [ConversationMember(user_id=user_id) for user_id in participant_ids]
        self.db.add(conversation)
        self.db.commit()
        self.db.refresh(conversation)
        return conversation

    def get_conversation_by_id(self, conversation_id: int) -> Optional[Conversation]:
        """Get conversation by ID."""
        return self.db.query(Conversation).filter(Conversation.id == conversation_id).first()

    def is_conversation_member(self, conversation_id: int, user_id: int) -> bool:
        """Check if user is a member of conversation."""
        member = self.db.query(ConversationMember).filter(
            ConversationMember.conversation_id == conversation_id,
            ConversationMember.user_id == user_id
        ).first()
        return member is not None

    def get_user_conversations(self, user_id: int) -> List[Conversation]:
        """
        Get conversations containing the user, most recently active first.

        Conversations without messages fall back to their creation time.
        """
        activity = func.coalesce(Conversation.last_message_at, Conversation.created_at)
        return self.db.query(Conversation).join(ConversationMember).filter(
            ConversationMember.user_id == user_id
        ).options(
            selectinload(Conversation.members).selectinload(ConversationMember.user)
        ).order_by(activity.desc(), Conversation.id.desc()).all()

    def set_conversation_mute(
        self,
        conversation: Conversation,
        is_muted: bool,
        muted_until: Optional[datetime]
    ) -> Conversation:
        """Update the mute state of a conversation."""
        conversation.is_muted = is_muted
        conversation.muted_until = muted_until if is_muted else None
        self.db.commit()
        self.db.refresh(conversation)
        return conversation

    def toggle_read_receipts(self, conversation: Conversation) -> Conversation:
        """Flip the read-receipt flag of a conversation."""
        conversation.read_receipt_enabled = not conversation.read_receipt_enabled
        self.db.commit()
        self.db.refresh(conversation)
        return conversation

    # Message operations
    def create_message(self, conversation_id: int, sender_id: int, content: str) -> Message:
        """
        Create a message, credit the sender with having read it and bump
        the conversation's last-activity timestamp.
        """
        now = datetime.utcnow()
        message = Message(
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=content,
            created_at=now
        )
        message.reads = [MessageRead(user_id=sender_id, read_at=now)]
        self.db.add(message)
        self.db.query(Conversation).filter(Conversation.id == conversation_id).update(
            {"last_message_at": now},
            synchronize_session=False
        )
        self.db.commit()
        self.db.refresh(message)
        return message

    def get_conversation_messages(self, conversation_id: int) -> List[Message]:
        """Get all messages of a conversation in chronological order."""
        return self.db.query(Message).filter(
            Message.conversation_id == conversation_id
        ).options(
            selectinload(Message.reads),
            selectinload(Message.sender)
        ).order_by(Message.created_at.asc(), Message.id.asc()).all()

    def get_last_messages(self, conversation_ids: List[int]) -> Dict[int, Message]:
        """Most recent message per conversation, keyed by conversation ID."""
        if not conversation_ids:
            return {}
        position = func.row_number().over(
            partition_by=Message.conversation_id,
            order_by=(Message.created_at.desc(), Message.id.desc())
        ).label("position")
        ranked = self.db.query(Message.id.label("message_id"), position).filter(
            Message.conversation_id.in_(conversation_ids)
        ).subquery()
        messages = self.db.query(Message).join(
            ranked, Message.id == ranked.c.message_id
        ).filter(ranked.c.position == 1).all()
        return {message.conversation_id: message for message in messages}

    def count_unread_by_conversation(self, conversation_ids: List[int], user_id: int) -> Dict[int, int]:
        """
        Count, per conversation, the messages whose read-set excludes the user.

        Conversations with nothing unread are absent from the result.
        """
        if not conversation_ids:
            return {}
        already_read = exists().where(
            MessageRead.message_id == Message.id,
            MessageRead.user_id == user_id
        )
        rows = self.db.query(Message.conversation_id, func.count(Message.id)).filter(
            Message.conversation_id.in_(conversation_ids),
            ~already_read
        ).group_by(Message.conversation_id).all()
        return {conversation_id: count for conversation_id, count in rows}

    def _unread_message_ids(self, conversation_id: int, user_id: int) -> List[int]:
        already_read = exists().where(
            MessageRead.message_id == Message.id,
            MessageRead.user_id == user_id
        )
        return [
            row[0] for row in self.db.query(Message.id).filter(
                Message.conversation_id == conversation_id,
                ~already_read
            ).all()
        ]

    def _insert_reads(self, rows: List[dict]) -> int:
        """
        Insert read markers, skipping (message, user) pairs that already exist.

        Another session may mark the same messages between our SELECT and
        this INSERT; those rows are ignored instead of violating
        uq_message_read.
        """
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            statement = postgresql.insert(MessageRead)
        elif dialect == "sqlite":
            statement = sqlite.insert(MessageRead)
        else:
            raise NotImplementedError(f"Unsupported database dialect: {dialect}")

        statement = statement.values(rows).on_conflict_do_nothing(
            index_elements=["message_id", "user_id"]
        )
        result = self.db.execute(statement)
        return result.rowcount

    def mark_conversation_as_read(self, conversation_id: int, user_id: int) -> int:
        """
        Add the user to the read-set of every message in the conversation
        that does not already include them.

        Safe to run concurrently for the same user; each message ends up
        with a single marker per reader.

        Args:
            conversation_id: Conversation ID
            user_id: User ID marking messages as read

        Returns:
            Number of messages newly marked as read
        """
        unread_ids = self._unread_message_ids(conversation_id, user_id)
        if not unread_ids:
            return 0

        now = datetime.utcnow()
        marked = self._insert_reads([
            {"message_id": message_id, "user_id": user_id, "read_at": now}
            for message_id in unread_ids
        ])
        self.db.commit()
        return marked

    # Notification operations
    def create_notification(
        self,
        user_id: int,
        actor_id: int,
        notification_type: NotificationType,
        target_id: Optional[str] = None
    ) -> Notification:
        """Create a notification record."""
        notification = Notification(
            user_id=user_id,
            actor_id=actor_id,
            type=notification_type,
            target_id=target_id,
            read=False
        )
        self.db.add(notification)
        self.db.commit()
        self.db.refresh(notification)
        return notification

    def get_notification_by_id(self, notification_id: int) -> Optional[Notification]:
        """Get notification by ID."""
        return self.db.query(Notification).filter(Notification.id == notification_id).first()

    def get_user_notifications(self, user_id: int, limit: int = 50, offset: int = 0) -> List[Notification]:
        """Get a page of the user's notifications, most recent first."""
        return self.db.query(Notification).filter(
            Notification.user_id == user_id
        ).options(
            selectinload(Notification.actor)
        ).order_by(
            Notification.created_at.desc(), Notification.id.desc()
        ).limit(limit).offset(offset).all()

    def mark_notification_as_read(self, notification: Notification) -> Notification:
        """Flip the read flag of a notification."""
        if not notification.read:
            notification.read = True
            self.db.commit()
            self.db.refresh(notification)
        return notification
