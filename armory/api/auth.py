import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from sqlalchemy.orm import Session

from armory.config import settings
from armory.database import get_db, get_session_factory
from armory.exceptions import ForbiddenError
from armory.models import Role, User
from armory.schemas import LoginRequest, MessageResponse, Token, UserCreate, UserResponse
from armory.services.audit import snapshot
from armory.services.auth import authenticate_user, issue_token
from armory.services.dependency import build_audit_trail, get_current_user
from armory.services.users import create_user
from armory.utils.rate_limiter import RateLimits, limiter

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/login", response_model=Token)
@limiter.limit(RateLimits.LOGIN)
def login(
    request: Request,
    credentials: LoginRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
):
    """Exchange email and password for a bearer token"""
    user = authenticate_user(db, credentials.email, credentials.password)

    trail = build_audit_trail(request, background_tasks, session_factory, user.id)
    trail.add("LOGIN", "User", user.id, after={"email": user.email, "role": user.role.value})
    logger.info(f"User logged in: {user.username} ({user.role.value})")

    return issue_token(user)


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def register(
    request: Request,
    user_in: UserCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
):
    """Open registration; disabled unless ALLOW_REGISTRATION is set"""
    if not settings.allow_registration:
        raise ForbiddenError("Registration is disabled")
    if user_in.role == Role.ADMIN:
        raise ForbiddenError("Administrators cannot self-register")

    user = create_user(db, user_in)
    trail = build_audit_trail(request, background_tasks, session_factory, user.id)
    trail.add("CREATE", "User", user.id, after=snapshot(user))
    return user


@router.get("/me", response_model=UserResponse)
def read_users_me(current_user: User = Depends(get_current_user)):
    return current_user


@router.post("/logout", response_model=MessageResponse)
def logout(current_user: User = Depends(get_current_user)):
    # Tokens are stateless; the client discards its copy
    logger.info(f"User logged out: {current_user.username}")
    return {"message": "Logged out successfully"}
