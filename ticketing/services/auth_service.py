"""
User directory: registration, login and the role rules the rest of the
service asks about (who may create, manage and check in events).
"""

from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.core.errors import Conflict, Unauthorized
from ticketing.core.logging import get_logger
from ticketing.core.security import create_access_token, hash_password, verify_password
from ticketing.models.user import ROLE_ATTENDEE, User
from ticketing.schemas.user import UserCreate, UserLogin

logger = get_logger(__name__)


def _normalize_email(email: str) -> str:
    return email.strip().lower()


async def register_user(db: AsyncSession, user_data: UserCreate) -> User:
    """
    Create an attendee or organizer account.

    Email is matched case-insensitively; both email and username must be
    unused. Admin accounts are never created here.
    """
    email = _normalize_email(user_data.email)

    result = await db.execute(
        select(User.email, User.username).where(
            or_(User.email == email, User.username == user_data.username)
        )
    )
    for taken_email, taken_username in result.all():
        if taken_email == email:
            logger.warning("registration_failed", reason="email_exists", email=email)
            raise Conflict("Email already registered")
        if taken_username == user_data.username:
            logger.warning("registration_failed", reason="username_exists", username=user_data.username)
            raise Conflict("Username already taken")

    user = User(
        email=email,
        username=user_data.username,
        hashed_password=hash_password(user_data.password),
        role=user_data.role,
        is_active=True,
    )
    db.add(user)
    await db.flush()
    await db.refresh(user)

    logger.info("user_registered", user_id=user.id, role=user.role)
    return user


async def authenticate_user(db: AsyncSession, login_data: UserLogin) -> str:
    """Check credentials and return a bearer token carrying the user's role."""
    email = _normalize_email(login_data.email)
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()

    if not user or not verify_password(login_data.password, user.hashed_password):
        logger.warning("login_failed", email=email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is deactivated",
        )

    logger.info("user_logged_in", user_id=user.id, role=user.role)
    return create_access_token(data={"sub": str(user.id), "role": user.role})


def ensure_can_create_events(user: User) -> None:
    if user.role == ROLE_ATTENDEE:
        raise Unauthorized("Only organizers can create events")


def can_manage_event(user: Optional[User], organizer_id: Optional[int]) -> bool:
    """Admins manage every event; organizers only their own."""
    if user is None:
        return False
    return user.is_admin or (organizer_id is not None and user.id == organizer_id)


def ensure_can_manage_event(user: Optional[User], organizer_id: Optional[int], action: str) -> None:
    if not can_manage_event(user, organizer_id):
        raise Unauthorized(f"Only the organizer or an admin can {action}")
