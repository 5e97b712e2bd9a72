"""
Dependency injection functions for FastAPI.
Provides database sessions, bearer-token authentication and the
messaging services.
"""
from typing import Generator, Optional
from fastapi import Depends, Request, WebSocket
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from api.metrics import auth_token_validations_total
from api.websocket_manager import (
    ConnectionRegistry, EventDispatcher, get_connection_registry, get_event_dispatcher
)
from core.audit_logger import audit_logger
from core.exceptions import Unauthenticated
from core.security import verify_access_token
from db.database import SessionLocal
from db.models import User
from db.repository import Repository
from services.conversation_service import ConversationService
from services.notification_service import NotificationService

security = HTTPBearer(auto_error=False)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency that provides a database session.
    Automatically closes the session when request completes.

    Yields:
        Database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_repository(db: Session = Depends(get_db)) -> Repository:
    return Repository(db)


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    repository: Repository = Depends(get_repository)
) -> User:
    """
    Bearer JWT authentication dependency.

    Args:
        request: Incoming request (for audit context)
        credentials: HTTP Bearer token from the Authorization header
        repository: Repository bound to the request session

    Returns:
        Authenticated User object

    Raises:
        Unauthenticated: missing, invalid or expired token, or unknown user
    """
    token = credentials.credentials if credentials else None
    try:
        user_id = verify_access_token(token)
    except Unauthenticated as e:
        auth_token_validations_total.labels(type="rest", status="invalid", instance="api").inc()
        audit_logger.log_token_invalid(
            ip_address=request.client.host if request.client else None,
            request_id=getattr(request.state, "request_id", None),
            reason=e.detail,
            endpoint=request.url.path
        )
        raise

    user = repository.get_user_by_id(user_id)
    if user is None:
        auth_token_validations_total.labels(type="rest", status="unknown_user", instance="api").inc()
        raise Unauthenticated("User not found")

    auth_token_validations_total.labels(type="rest", status="valid", instance="api").inc()
    return user


def authenticate_websocket(websocket: WebSocket, token: Optional[str]) -> Optional[int]:
    """
    Verify the token passed on a socket upgrade.

    Browsers cannot set headers on a WebSocket handshake, so the credential
    arrives as a query parameter. Verification is pure (no database access)
    so the socket does not hold a session for its lifetime.

    Returns:
        The user ID, or None if the upgrade must be rejected
    """
    try:
        user_id = verify_access_token(token)
    except Unauthenticated as e:
        auth_token_validations_total.labels(type="websocket", status="invalid", instance="api").inc()
        audit_logger.log_websocket_rejected(
            ip_address=websocket.client.host if websocket.client else None,
            reason=e.detail
        )
        return None

    auth_token_validations_total.labels(type="websocket", status="valid", instance="api").inc()
    return user_id


def get_conversation_service(
    repository: Repository = Depends(get_repository),
    dispatcher: EventDispatcher = Depends(get_event_dispatcher),
    registry: ConnectionRegistry = Depends(get_connection_registry)
) -> ConversationService:
    return ConversationService(repository, dispatcher, registry)


def get_notification_service(
    repository: Repository = Depends(get_repository),
    dispatcher: EventDispatcher = Depends(get_event_dispatcher),
    registry: ConnectionRegistry = Depends(get_connection_registry)
) -> NotificationService:
    return NotificationService(repository, dispatcher, registry)
