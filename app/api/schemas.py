"""
Pydantic schemas for request/response validation.
Defines all data transfer objects (DTOs) for the API and the WebSocket
event frames.

JSON keys are camelCase on the wire; request bodies also accept the
snake_case field names.
"""
from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class APIModel(BaseModel):
    """Base model: camelCase aliases, populated from ORM attributes or by field name."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True
    )


# Authentication Schemas
class LoginRequest(APIModel):
    """
    Login request.

    Example:
        ```json
        {"username": "alice", "password": "password123"}
        ```
    """
    username: str = Field(..., min_length=1, max_length=30, description="Username")
    password: str = Field(..., min_length=1, description="Password")


class LoginResponse(APIModel):
    """
    Login response carrying a bearer token.

    Example:
        ```json
        {"token": "eyJhbGciOiJIUzI1NiIs...", "userId": 1, "expiresAt": "2026-10-19T12:00:00"}
        ```
    """
    token: str = Field(..., description="JWT access token")
    user_id: int = Field(..., description="Authenticated user ID")
    expires_at: datetime = Field(..., description="Token expiry (UTC)")


# User display data
class UserSummary(APIModel):
    """
    Public display data of a user (no credentials).

    Attributes:
        id: User identifier
        username: Unique handle
        display_name: Optional display name
        avatar_url: Optional avatar URL
        verified: Verified badge
        is_online: Whether the user currently holds a live socket
    """
    id: int
    username: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    verified: bool = False
    is_online: bool = False


# Conversation Schemas
class ConversationCreate(APIModel):
    """
    Request schema for creating a conversation.

    The caller is always added as a participant; duplicates are dropped.

    Example:
        ```json
        {"participantIds": [2, 3], "title": "trip"}
        ```
    """
    participant_ids: List[int] = Field(..., description="Other participants' user IDs")
    title: Optional[str] = Field(None, max_length=100, description="Conversation title (group conversations)")


class ConversationOut(APIModel):
    """
    Conversation as stored.

    Attributes:
        id: Conversation identifier
        is_group: More than two participants
        title: Optional title
        participant_ids: Participant IDs in the order they were added
        created_at: Creation timestamp (UTC)
        last_message_at: Timestamp of the latest message (null if none)
        is_muted: Mute flag
        muted_until: End of the mute (null = indefinitely)
        read_receipt_enabled: Read receipts visible to participants
    """
    id: int
    is_group: bool
    title: Optional[str] = None
    participant_ids: List[int]
    created_at: datetime
    last_message_at: Optional[datetime] = None
    is_muted: bool = False
    muted_until: Optional[datetime] = None
    read_receipt_enabled: bool = True


class MessageOut(APIModel):
    """
    Message with denormalized sender display data.

    Attributes:
        id: Message identifier
        conversation_id: Owning conversation
        sender_id: Sender's user ID
        content: Text content
        created_at: Creation timestamp (UTC)
        read_by: Read-set (user IDs)
        sender: Sender display data
    """
    id: int
    conversation_id: int
    sender_id: int
    content: str
    created_at: datetime
    read_by: List[int] = Field(default_factory=list)
    sender: UserSummary


class LastMessage(APIModel):
    """Preview of the latest message in a conversation."""
    id: int
    sender_id: int
    content: str
    created_at: datetime


class ConversationSummary(ConversationOut):
    """
    Conversation list entry.

    Attributes:
        participants: Participant display data
        last_message: Latest message (null if none)
        unread_count: Messages whose read-set excludes the caller
    """
    participants: List[UserSummary] = Field(default_factory=list)
    last_message: Optional[LastMessage] = None
    unread_count: int = 0


class MuteRequest(APIModel):
    """
    Mute or unmute a conversation.

    Example:
        ```json
        {"conversationId": 1, "durationMinutes": 60}
        ```
    A null duration mutes indefinitely; ``"muted": false`` unmutes.
    """
    conversation_id: int
    duration_minutes: Optional[int] = Field(None, gt=0, description="Mute duration; null = indefinitely")
    muted: bool = True


class ReadReceiptToggleRequest(APIModel):
    """Flip read receipts for a conversation."""
    conversation_id: int


# Message Schemas
class MessageCreate(APIModel):
    """
    Request schema for sending a message.

    Content bounds are checked by the service so that violations map to
    InvalidContent (400).

    Example:
        ```json
        {"conversationId": 1, "content": "hi"}
        ```
    """
    conversation_id: int = Field(..., description="Target conversation ID")
    content: str = Field(..., description="Message text")


# Notification Schemas
class NotificationOut(APIModel):
    """
    Notification with denormalized actor display data.

    Attributes:
        id: Notification identifier
        user_id: Recipient
        actor_id: Who caused it
        type: like | comment | follow
        target_id: Optional target (e.g. post ID)
        read: Read flag
        created_at: Creation timestamp (UTC)
        actor: Actor display data
    """
    id: int
    user_id: int
    actor_id: int
    type: Literal["like", "comment", "follow"]
    target_id: Optional[str] = None
    read: bool = False
    created_at: datetime
    actor: UserSummary


class NotificationReadResponse(APIModel):
    """Acknowledgement for marking a notification read."""
    status: str = "success"
    notification_id: int


# WebSocket event frames (server -> client)
class MessageEvent(APIModel):
    """WebSocket event: new message in one of the user's conversations."""
    type: Literal["message"] = "message"
    data: MessageOut


class NotificationEvent(APIModel):
    """WebSocket event: new like/comment/follow notification."""
    type: Literal["notification"] = "notification"
    data: NotificationOut


ServerEvent = Annotated[Union[MessageEvent, NotificationEvent], Field(discriminator="type")]


# Error Schemas
class ErrorResponse(BaseModel):
    """Standard error response schema."""
    detail: str
    error_code: Optional[str] = None
