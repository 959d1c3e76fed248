from typing import Optional

from fastapi import BackgroundTasks, Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from armory.database import get_db, get_session_factory
from armory.exceptions import AuthenticationError, ForbiddenError
from armory.models import Role, User
from armory.services.audit import AuditTrail
from armory.utils.rate_limiter import get_client_ip
from armory.utils.security import decode_access_token

security = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """Get the current authenticated user"""
    if credentials is None:
        raise AuthenticationError("Access token required")

    user_id = decode_access_token(credentials.credentials)
    if user_id is None:
        raise AuthenticationError("Invalid or expired token")

    user = db.get(User, user_id)
    if not user or not user.is_active:
        raise AuthenticationError("Invalid token or user inactive")

    return user


def require_roles(*roles: Role):
    """Dependency to check the current user holds one of ``roles``"""
    def role_checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise ForbiddenError(
                "Insufficient permissions",
                required=[role.value for role in roles],
                current=current_user.role.value,
            )
        return current_user
    return role_checker


require_admin = require_roles(Role.ADMIN)
require_commander = require_roles(Role.ADMIN, Role.BASE_COMMANDER)


def build_audit_trail(
    request: Request,
    background_tasks: BackgroundTasks,
    session_factory,
    user_id: Optional[int],
) -> AuditTrail:
    trail = AuditTrail(
        user_id=user_id,
        session_factory=session_factory,
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    background_tasks.add_task(trail.flush)
    return trail


def get_audit_trail(
    request: Request,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    session_factory=Depends(get_session_factory),
) -> AuditTrail:
    """Audit trail for the request, flushed after the response is sent"""
    return build_audit_trail(request, background_tasks, session_factory, current_user.id)
