"""
SQLAlchemy ORM models for the messaging core.
Defines: User, Conversation, ConversationMember, Message, MessageRead,
Notification.
"""
import enum
from datetime import datetime
from typing import List
from sqlalchemy import (
    Column, String, Integer, DateTime, ForeignKey, Text,
    Boolean, Enum as SQLEnum, UniqueConstraint
)
from sqlalchemy.orm import relationship
from db.database import Base


# ENUM Types
class NotificationType(str, enum.Enum):
    """Kind of action that produced a notification."""
    LIKE = "like"
    COMMENT = "comment"
    FOLLOW = "follow"


# Models
class User(Base):
    """User entity - owned by user management, read here for identity and display data."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(30), unique=True, nullable=False, index=True)
    password = Column(String(100), nullable=False)
    display_name = Column(String(100), nullable=True)
    avatar_url = Column(Text, nullable=True)
    verified = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    conversation_memberships = relationship("ConversationMember", back_populates="user")
    messages = relationship("Message", back_populates="sender")


class Conversation(Base):
    """Conversation entity - a message thread shared by two or more participants."""
    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    is_group = Column(Boolean, default=False, nullable=False)
    title = Column(String(100), nullable=True)  # For group conversations
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_message_at = Column(DateTime, nullable=True, index=True)
    is_muted = Column(Boolean, default=False, nullable=False)
    muted_until = Column(DateTime, nullable=True)  # None with is_muted=True means indefinitely
    read_receipt_enabled = Column(Boolean, default=True, nullable=False)

    # Relationships
    members = relationship(
        "ConversationMember",
        back_populates="conversation",
        order_by="ConversationMember.id",
        cascade="all, delete-orphan"
    )
    messages = relationship("Message", back_populates="conversation")

    @property
    def participant_ids(self) -> List[int]:
        """Participant identities in the order they were added."""
        return [member.user_id for member in self.members]

    def is_muted_at(self, moment: datetime) -> bool:
        """Whether the mute is in effect at the given instant."""
        if not self.is_muted:
            return False
        return self.muted_until is None or self.muted_until > moment


class ConversationMember(Base):
    """Participant set of a conversation; one row per (conversation, user)."""
    __tablename__ = "conversation_members"
    __table_args__ = (
        UniqueConstraint("conversation_id", "user_id", name="uq_conversation_member"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    joined_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    conversation = relationship("Conversation", back_populates="members")
    user = relationship("User", back_populates="conversation_memberships")


class Message(Base):
    """Message entity - immutable text content sent into a conversation."""
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False, index=True)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    # Relationships
    conversation = relationship("Conversation", back_populates="messages")
    sender = relationship("User", back_populates="messages")
    reads = relationship(
        "MessageRead",
        back_populates="message",
        order_by="MessageRead.id",
        cascade="all, delete-orphan"
    )

    @property
    def read_by(self) -> List[int]:
        """Read-set: participants credited with having seen this message."""
        return [read.user_id for read in self.reads]


class MessageRead(Base):
    """Read receipt - one row per (message, reader). Rows are only ever added."""
    __tablename__ = "message_reads"
    __table_args__ = (
        UniqueConstraint("message_id", "user_id", name="uq_message_read"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(Integer, ForeignKey("messages.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    read_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    message = relationship("Message", back_populates="reads")


class Notification(Base):
    """Notification entity - like/comment/follow addressed to a recipient."""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)  # recipient
    actor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    type = Column(SQLEnum(NotificationType), nullable=False)
    target_id = Column(String(64), nullable=True)  # e.g. the liked post
    read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    # Relationships
    actor = relationship("User", foreign_keys=[actor_id])

    def __repr__(self) -> str:
        return f"<Notification id={self.id} user_id={self.user_id} type={self.type}>"
