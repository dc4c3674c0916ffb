"""
Token issue/verification and the register, login and recovery flows.

Tokens are stateless HS256 JWTs carrying the user's id (``sub``) and email.
There is no revocation list: logging out is the client discarding its token.
"""
import logging
from datetime import timedelta
from typing import Any, Dict, Optional, Tuple

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from taskminder import crud
from taskminder.config import Settings
from taskminder.database import get_session
from taskminder.errors import ForbiddenError, NotFoundError, NotificationError, UnauthorizedError
from taskminder.models import User, utcnow
from taskminder.security import verify_password

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(user: User, settings: Settings, expires_delta: Optional[timedelta] = None) -> str:
    issued_at = utcnow()
    expire = issued_at + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    payload = {
        "sub": user.id,
        "email": user.email,
        "iat": issued_at,
        "exp": expire,
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)


def verify_token(token: str, settings: Settings) -> Dict[str, Any]:
    """
    Checks the signature and expiry of a token and returns its claims.
    Raises ForbiddenError for anything that does not verify.
    """
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise ForbiddenError("Token has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise ForbiddenError("Invalid or expired token") from exc
    return payload


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    settings: Settings = Depends(get_app_settings),
    db: Session = Depends(get_session),
) -> User:
    if credentials is None:
        raise UnauthorizedError("Access token required")
    payload = verify_token(credentials.credentials, settings)
    user = db.get(User, payload["sub"])
    if user is None:
        logger.warning("Token for unknown user %s", payload["sub"])
        raise UnauthorizedError("Invalid token")
    return user


def register_user(db: Session, settings: Settings, email: str, name: str, password: str) -> Tuple[str, User]:
    user = crud.create_user(db, email=email, name=name, password=password)
    logger.info("Registered user %s", user.id)
    return create_access_token(user, settings), user


def authenticate_user(db: Session, settings: Settings, email: str, password: str) -> Tuple[str, User]:
    user = crud.get_user_by_email(db, email)
    if user is None or not verify_password(password, user.hashed_password):
        logger.info("Failed login attempt")
        raise UnauthorizedError("Invalid email or password")
    return create_access_token(user, settings), user


class RecoveryNotifier:
    """
    Delivers password recovery messages. This implementation only logs;
    a real mailer subclasses it and raises NotificationError when sending fails.
    """

    def send_recovery(self, email: str) -> str:
        logger.info("Recovery email requested for %s", email)
        return f"Recovery email sent to {email}"


def get_notifier(request: Request) -> RecoveryNotifier:
    return request.app.state.notifier


def recover_account(db: Session, notifier: RecoveryNotifier, email: str) -> str:
    user = crud.get_user_by_email(db, email)
    if user is None:
        raise NotFoundError("User not found")
    try:
        return notifier.send_recovery(user.email)
    except NotificationError:
        logger.exception("Recovery email to user %s failed", user.id)
        raise
