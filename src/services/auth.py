"""Authentication service for JWT and password handling."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import lru_cache

from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from src.config import get_settings
from src.models.mixins import utcnow
from src.models.user import User
from src.schemas.auth import StatusUpdate, UserSignup
from src.services.errors import Conflict, Internal, NotFound, Unauthenticated, ValidationFailed

logger = logging.getLogger(__name__)
settings = get_settings()

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

INVALID_CREDENTIALS = "Invalid email or password"


@dataclass(frozen=True)
class TokenClaims:
    """Identity carried by a verified session token."""

    user_id: int
    email: str


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash a password."""
    return pwd_context.hash(password)


@lru_cache
def _dummy_hash() -> str:
    return get_password_hash("dummy-password-for-timing")


def create_access_token(user_id: int, email: str, issued_at: datetime | None = None) -> str:
    """Create a JWT access token valid for ``jwt_expiration_minutes``."""
    issued_at = issued_at or utcnow()
    expire = issued_at + timedelta(minutes=settings.jwt_expiration_minutes)
    to_encode = {
        "sub": str(user_id),
        "email": email,
        "iat": issued_at,
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_access_token(token: str) -> TokenClaims:
    """Check signature and expiry of a token and return its claims.

    Raises:
        Unauthenticated: bad signature, malformed claims or expired token.
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"verify_exp": False},
        )
    except JWTError as e:
        raise Unauthenticated("Invalid or expired token") from e

    user_id = payload.get("sub")
    email = payload.get("email")
    expires_at = payload.get("exp")
    if user_id is None or not isinstance(email, str):
        raise Unauthenticated("Invalid or expired token")
    # A token is still valid at the exact second of its expiry
    if not isinstance(expires_at, int | float) or utcnow().timestamp() > expires_at:
        raise Unauthenticated("Invalid or expired token")
    try:
        return TokenClaims(user_id=int(user_id), email=email)
    except ValueError as e:
        raise Unauthenticated("Invalid or expired token") from e


def get_user_by_email(db: Session, email: str) -> User | None:
    """Get a user by email."""
    return db.query(User).filter(User.email == email).first()


def get_user(db: Session, user_id: int) -> User:
    """Get a user by id or raise NotFound."""
    user = db.get(User, user_id)
    if user is None:
        raise NotFound("User does not exist")
    return user


def signup(db: Session, email: str, name: str, password: str) -> User:
    """Create a new user with a bcrypt-hashed password."""
    try:
        data = UserSignup(email=email, name=name, password=password)
    except ValidationError as e:
        raise ValidationFailed.from_pydantic(e) from e

    if get_user_by_email(db, data.email):
        raise Conflict("Email already registered")

    user = User(email=data.email, name=data.name, password_hash=get_password_hash(data.password))
    db.add(user)
    try:
        db.commit()
    except IntegrityError as e:
        # Lost a race against a concurrent signup for the same address
        db.rollback()
        raise Conflict("Email already registered") from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to create user: {e}")
        raise Internal() from e
    db.refresh(user)
    logger.info(f"Created user {user.id}")
    return user


def authenticate_user(db: Session, email: str, password: str) -> User | None:
    """Authenticate a user by email and password.

    Unknown emails still pay for one hash verification so both failure
    paths take the same time.
    """
    user = get_user_by_email(db, email)
    if not user:
        verify_password(password, _dummy_hash())
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


def login(db: Session, email: str, password: str) -> tuple[str, User]:
    """Check credentials and issue a session token."""
    user = authenticate_user(db, email, password)
    if user is None:
        logger.info("Rejected login attempt")
        raise Unauthenticated(INVALID_CREDENTIALS)
    return create_access_token(user.id, user.email), user


def get_status(db: Session, user_id: int) -> str:
    """Return the user's free-text status."""
    return get_user(db, user_id).status


def set_status(db: Session, user_id: int, status: str) -> User:
    """Replace the user's free-text status."""
    try:
        data = StatusUpdate(status=status)
    except ValidationError as e:
        raise ValidationFailed.from_pydantic(e) from e

    user = get_user(db, user_id)
    user.status = data.status
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to update status for user {user_id}: {e}")
        raise Internal() from e
    db.refresh(user)
    return user
