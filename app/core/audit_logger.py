"""
Audit logging for security events.
Logs authentication failures, rejected socket upgrades and conversation
authorization denials for forensics.
"""
import logging
from typing import Dict, Any, Optional
from enum import Enum

logger = logging.getLogger(__name__)


class AuditEventType(str, Enum):
    """Types of security audit events."""
    AUTH_SUCCESS = "auth_success"
    AUTH_FAILURE = "auth_failure"
    TOKEN_INVALID = "token_invalid"
    WEBSOCKET_REJECTED = "websocket_rejected"
    AUTHZ_DENIED = "authorization_denied"


class AuditLogger:
    """
    Security audit logger.

    Entries go to the "core.audit_logger" logger. With JSON logging enabled
    the event type, user, source IP, request ID and metadata become
    top-level keys of the log record.
    """

    @staticmethod
    def log_event(
        event_type: AuditEventType,
        user_id: Optional[int] = None,
        ip_address: Optional[str] = None,
        request_id: Optional[str] = None,
        success: bool = True,
        metadata: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None
    ) -> None:
        """
        Log a security audit event.

        Args:
            event_type: Type of security event
            user_id: User identifier (if known)
            ip_address: Source IP address
            request_id: Request correlation ID
            success: Whether the operation succeeded
            metadata: Additional context (endpoint, resource, action)
            error_message: Reason for failed operations
        """
        extra = {
            "audit_event": event_type.value,
            "audit_success": success,
            "user_id": user_id,
            "ip_address": ip_address,
            "audit_metadata": metadata or {},
        }
        if request_id is not None:
            extra["request_id"] = request_id
        if error_message:
            extra["error_message"] = error_message

        logger.log(
            logging.INFO if success else logging.WARNING,
            f"AUDIT: {event_type.value} user={user_id} ip={ip_address}"
            + (f" reason={error_message}" if error_message else ""),
            extra=extra
        )

    @staticmethod
    def log_auth_success(user_id: int, ip_address: Optional[str], request_id: Optional[str]) -> None:
        """Log successful login."""
        AuditLogger.log_event(
            event_type=AuditEventType.AUTH_SUCCESS,
            user_id=user_id,
            ip_address=ip_address,
            request_id=request_id,
            success=True
        )

    @staticmethod
    def log_auth_failure(
        username: Optional[str],
        ip_address: Optional[str],
        request_id: Optional[str],
        reason: str
    ) -> None:
        """Log failed login attempt."""
        AuditLogger.log_event(
            event_type=AuditEventType.AUTH_FAILURE,
            ip_address=ip_address,
            request_id=request_id,
            success=False,
            metadata={"username": username},
            error_message=reason
        )

    @staticmethod
    def log_token_invalid(
        ip_address: Optional[str],
        request_id: Optional[str],
        reason: str,
        endpoint: Optional[str] = None
    ) -> None:
        """Log a REST request carrying a bad bearer token."""
        AuditLogger.log_event(
            event_type=AuditEventType.TOKEN_INVALID,
            ip_address=ip_address,
            request_id=request_id,
            success=False,
            metadata={"endpoint": endpoint},
            error_message=reason
        )

    @staticmethod
    def log_websocket_rejected(ip_address: Optional[str], reason: str) -> None:
        """Log a socket upgrade closed for a bad credential."""
        AuditLogger.log_event(
            event_type=AuditEventType.WEBSOCKET_REJECTED,
            ip_address=ip_address,
            success=False,
            error_message=reason
        )

    @staticmethod
    def log_authorization_denied(
        user_id: int,
        resource: str,
        action: str,
        reason: str
    ) -> None:
        """Log authorization denial."""
        AuditLogger.log_event(
            event_type=AuditEventType.AUTHZ_DENIED,
            user_id=user_id,
            success=False,
            metadata={"resource": resource, "action": action},
            error_message=reason
        )


# Global audit logger instance
audit_logger = AuditLogger()
