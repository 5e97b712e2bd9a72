"""
API endpoint implementations.
Defines the REST endpoints for login, conversations, messages and
notifications, plus the WebSocket endpoint for live events.
"""
import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Request, WebSocket, WebSocketDisconnect, status
from api.dependencies import (
    authenticate_websocket, get_conversation_service, get_current_user,
    get_notification_service, get_repository
)
from api.metrics import websocket_disconnections_total, websocket_rejections_total
from api.schemas import (
    ConversationCreate, ConversationOut, ConversationSummary, LoginRequest, LoginResponse,
    MessageCreate, MessageOut, MuteRequest, NotificationOut, NotificationReadResponse,
    ReadReceiptToggleRequest
)
from api.websocket_manager import ConnectionRegistry, get_connection_registry
from core.audit_logger import audit_logger
from core.exceptions import Unauthenticated
from core.security import create_access_token, verify_password
from db.models import User
from db.repository import Repository
from services.conversation_service import ConversationService
from services.notification_service import NotificationService

logger = logging.getLogger(__name__)

# Close code for a rejected socket credential
WS_CLOSE_UNAUTHENTICATED = 4001

# Create routers
auth_router = APIRouter()
conversations_router = APIRouter()
messages_router = APIRouter()
notifications_router = APIRouter()
websocket_router = APIRouter()


# Authentication Endpoints
@auth_router.post("/login", response_model=LoginResponse, status_code=status.HTTP_200_OK)
def login(
    request: LoginRequest,
    http_request: Request,
    repository: Repository = Depends(get_repository)
):
    """
    Exchange username/password for a bearer token.

    Raises:
        Unauthenticated: 401 if the credentials are wrong

    Example Request:
        ```json
        POST /api/auth/login
        {"username": "alice", "password": "password123"}
        ```
    """
    ip_address = http_request.client.host if http_request.client else None
    request_id = getattr(http_request.state, "request_id", None)

    user = repository.get_user_by_username(request.username)
    if not user or not verify_password(request.password, user.password):
        audit_logger.log_auth_failure(
            username=request.username,
            ip_address=ip_address,
            request_id=request_id,
            reason="invalid credentials"
        )
        raise Unauthenticated("Invalid credentials")

    token_data = create_access_token(user.id)
    audit_logger.log_auth_success(user_id=user.id, ip_address=ip_address, request_id=request_id)
    logger.info(f"User {user.username} logged in")

    return LoginResponse(
        token=token_data["token"],
        user_id=user.id,
        expires_at=token_data["expires_at"]
    )


# Conversation Endpoints
@conversations_router.post("", response_model=ConversationOut, status_code=status.HTTP_201_CREATED)
def create_conversation(
    request: ConversationCreate,
    current_user: User = Depends(get_current_user),
    service: ConversationService = Depends(get_conversation_service)
):
    """
    Create a conversation between the caller and the named users.

    Raises:
        InvalidParticipants: 400 if fewer than two distinct existing participants

    Example Request:
        ```json
        POST /api/conversations
        Authorization: Bearer <token>
        {"participantIds": [2, 3], "title": "trip"}
        ```
    """
    return service.create_conversation(current_user.id, request.participant_ids, request.title)


@conversations_router.get("", response_model=List[ConversationSummary], status_code=status.HTTP_200_OK)
def list_conversations(
    current_user: User = Depends(get_current_user),
    service: ConversationService = Depends(get_conversation_service)
):
    """
    List the caller's conversations, most recently active first, with
    participants, last message and unread count.
    """
    return service.list_conversations(current_user.id)


@conversations_router.post("/mute", response_model=ConversationOut, status_code=status.HTTP_200_OK)
def mute_conversation(
    request: MuteRequest,
    current_user: User = Depends(get_current_user),
    service: ConversationService = Depends(get_conversation_service)
):
    """
    Mute a conversation for ``durationMinutes`` (null = indefinitely), or
    unmute it with ``"muted": false``.

    Raises:
        NotParticipant: 403 if the caller is not a participant
        NotFound: 404 if the conversation does not exist
    """
    return service.mute_conversation(
        current_user.id,
        request.conversation_id,
        duration_minutes=request.duration_minutes,
        muted=request.muted
    )


@conversations_router.post("/read-receipt-toggle", response_model=ConversationOut, status_code=status.HTTP_200_OK)
def toggle_read_receipts(
    request: ReadReceiptToggleRequest,
    current_user: User = Depends(get_current_user),
    service: ConversationService = Depends(get_conversation_service)
):
    """
    Flip read receipts for a conversation.

    Raises:
        NotParticipant: 403 if the caller is not a participant
        NotFound: 404 if the conversation does not exist
    """
    return service.toggle_read_receipts(current_user.id, request.conversation_id)


# Message Endpoints
@messages_router.post("", response_model=MessageOut, status_code=status.HTTP_200_OK)
async def send_message(
    request: MessageCreate,
    current_user: User = Depends(get_current_user),
    service: ConversationService = Depends(get_conversation_service)
):
    """
    Send a text message to a conversation.

    The message is stored first; connected participants then receive a
    ``message`` frame on their socket. Offline participants pick it up on
    their next fetch.

    Raises:
        InvalidContent: 400 if the content is empty or too long
        NotParticipant: 403 if the caller is not a participant
        NotFound: 404 if the conversation does not exist

    Example Request:
        ```json
        POST /api/messages
        Authorization: Bearer <token>
        {"conversationId": 1, "content": "hi"}
        ```
    """
    return await service.send_message(current_user.id, request.conversation_id, request.content)


@messages_router.get("/{conversation_id}", response_model=List[MessageOut], status_code=status.HTTP_200_OK)
def get_messages(
    conversation_id: int,
    current_user: User = Depends(get_current_user),
    service: ConversationService = Depends(get_conversation_service)
):
    """
    Messages of a conversation, oldest first.

    Side effect: every message in the conversation is marked read for
    the caller.

    Raises:
        NotParticipant: 403 if the caller is not a participant
        NotFound: 404 if the conversation does not exist
    """
    return service.get_messages(conversation_id, current_user.id)


# Notification Endpoints
@notifications_router.get("", response_model=List[NotificationOut], status_code=status.HTTP_200_OK)
def list_notifications(
    limit: Optional[int] = Query(None, ge=1, le=100, description="Page size (default 50)"),
    offset: int = Query(0, ge=0, description="Number of notifications to skip"),
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service)
):
    """Most recent notifications first, with actor display data."""
    return service.list_notifications(current_user.id, limit=limit, offset=offset)


@notifications_router.post("/{notification_id}/read", response_model=NotificationReadResponse, status_code=status.HTTP_200_OK)
def mark_notification_read(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service)
):
    """
    Mark one of the caller's notifications as read.

    Raises:
        NotFound: 404 if the notification does not exist or is not the caller's
    """
    service.mark_read(notification_id, current_user.id)
    return NotificationReadResponse(notification_id=notification_id)


# WebSocket Endpoint
@websocket_router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None, description="JWT access token for authentication"),
    registry: ConnectionRegistry = Depends(get_connection_registry)
):
    """
    WebSocket endpoint for live ``message`` and ``notification`` events.

    Connection Flow:
        1. Client connects with token: ws://api/ws?token={jwt}
        2. Invalid or missing token: the handshake completes and the socket
           is closed immediately with code 4001, no frames are sent
        3. Valid token: the socket becomes the user's live connection,
           replacing any earlier one
        4. Server pushes ``{"type": "message" | "notification", "data": {...}}``
        5. Frames sent by the client are ignored; all writes go through REST

    Example Connection:
        ```javascript
        const ws = new WebSocket(`ws://localhost:8000/ws?token=${token}`);
        ws.onmessage = (event) => {
            const frame = JSON.parse(event.data);
            if (frame.type === "message") console.log(frame.data.content);
        };
        ```
    """
    user_id = authenticate_websocket(websocket, token)
    if user_id is None:
        websocket_rejections_total.labels(instance="api").inc()
        await websocket.accept()
        await websocket.close(code=WS_CLOSE_UNAUTHENTICATED)
        return

    # Registered before the handshake completes so a client that has seen
    # the accept is already reachable; pushes skip the handle until it is open.
    registry.register(user_id, websocket)
    reason = "normal"
    try:
        await websocket.accept()
        logger.info(f"WebSocket connection established for user {user_id}")

        while True:
            await websocket.receive_text()
            logger.debug(f"Ignoring client frame from user {user_id}")

    except WebSocketDisconnect:
        logger.info(f"User {user_id} disconnected from WebSocket")
    except Exception as e:
        reason = "error"
        logger.error(f"WebSocket error for user {user_id}: {e}")
    finally:
        if registry.unregister(user_id, websocket):
            websocket_disconnections_total.labels(instance="api", reason=reason).inc()
