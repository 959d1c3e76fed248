import logging
from datetime import timedelta

from sqlalchemy.orm import Session, joinedload

from armory.config import settings
from armory.exceptions import AuthenticationError
from armory.models import User
from armory.utils.security import create_access_token, verify_password

logger = logging.getLogger(__name__)


def authenticate_user(db: Session, email: str, password: str) -> User:
    user = db.query(User).options(joinedload(User.base)).filter(User.email == email).first()
    if not user or not verify_password(password, user.hashed_password):
        logger.warning(f"Failed login attempt for {email}")
        raise AuthenticationError("Invalid email or password")
    if not user.is_active:
        logger.warning(f"Login attempt for deactivated user {user.id}")
        raise AuthenticationError("Account is deactivated")
    return user


def issue_token(user: User) -> dict:
    expires = timedelta(minutes=settings.access_token_expire_minutes)
    access_token = create_access_token(data={"sub": str(user.id), "role": user.role.value}, expires_delta=expires)
    return {
        "access_token": access_token,
        "token_type": "bearer",
        "expires_in": int(expires.total_seconds()),
        "user": user,
    }
