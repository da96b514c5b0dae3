from fastapi import BackgroundTasks, Depends, HTTPException, status, Request
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import List

from ..core.config import settings
from ..core.database import get_db, get_redis
from ..core.security import (
    security, verify_token, AuthenticationError,
    AuthorizationError, UserRole, TokenPayload, Actor
)
from ..models.user import User
from ..services.booking_service import BookingCoordinator
from ..services.notification_service import NotificationDispatcher, email_dispatcher
from ..services.status_service import StatusTransitionEngine

async def get_current_user_token(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> TokenPayload:
    """Extract and verify JWT token from Authorization header."""
    token = credentials.credentials

    # Verify token
    token_payload = verify_token(token)
    if not token_payload:
        raise AuthenticationError("Invalid or expired token")

    # Check if token is access token
    if token_payload.token_type != "access":
        raise AuthenticationError("Invalid token type")

    return token_payload

async def get_current_actor(
    token_payload: TokenPayload = Depends(get_current_user_token),
    db: Session = Depends(get_db)
) -> Actor:
    """Resolve the caller from the directory and return it as a booking actor."""
    if not token_payload.sub:
        raise AuthenticationError("Invalid token payload")

    user = db.get(User, token_payload.sub)
    if not user:
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise AuthenticationError("User account is deactivated")

    return Actor(id=user.id, role=user.role)

# Role-based access control dependencies
def require_role(allowed_roles: List[UserRole]):
    """Create a dependency that requires specific user roles."""
    async def role_checker(
        actor: Actor = Depends(get_current_actor)
    ) -> Actor:
        if actor.role not in allowed_roles:
            raise AuthorizationError(
                f"Access denied. Required roles: {[role.value for role in allowed_roles]}"
            )
        return actor

    return role_checker

# Specific role dependencies
async def get_admin_actor(
    actor: Actor = Depends(require_role([UserRole.ADMIN]))
) -> Actor:
    """Require admin role."""
    return actor

async def get_doctor_actor(
    actor: Actor = Depends(require_role([UserRole.DOCTOR, UserRole.ADMIN]))
) -> Actor:
    """Require doctor or admin role."""
    return actor

async def get_patient_actor(
    actor: Actor = Depends(require_role([UserRole.PATIENT]))
) -> Actor:
    """Require patient role."""
    return actor

# Notifications
def get_notification_dispatcher() -> NotificationDispatcher:
    """Dispatcher used for booking emails; overridden in tests."""
    return email_dispatcher

def get_booking_coordinator(
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher)
) -> BookingCoordinator:
    return BookingCoordinator(db, dispatcher=dispatcher, background_tasks=background_tasks)

def get_status_engine(
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher)
) -> StatusTransitionEngine:
    return StatusTransitionEngine(db, dispatcher=dispatcher, background_tasks=background_tasks)

# Rate limiting dependency
async def rate_limit_check(
    request: Request,
    redis_client = Depends(get_redis)
) -> None:
    """Per-client rate limiting for booking-mutating endpoints."""
    client_ip = request.client.host if request.client else "unknown"
    key = f"rate_limit:booking:{client_ip}"

    current_requests = redis_client.get(key)
    if current_requests is None:
        redis_client.setex(key, settings.RATE_LIMIT_WINDOW_SECONDS, 1)
    else:
        if int(current_requests) >= settings.RATE_LIMIT_REQUESTS:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests. Please try again later."
            )
        redis_client.incr(key)
