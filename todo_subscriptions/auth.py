"""Bearer-token authentication and the paid-access gate.

Tokens are HS256 JWTs signed with JWT_SECRET carrying ``sub`` (user id) and
``email``. ``require_active_subscription`` guards the todo, comment and
reaction endpoints: only users whose record is active get through.
"""

from datetime import timedelta
from typing import Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from todo_subscriptions.config import ConfigurationError, Settings
from todo_subscriptions.dependencies import get_app_settings, get_store
from todo_subscriptions.logging_config import bind_context, get_logger
from todo_subscriptions.models.subscription import SubscriptionRecord
from todo_subscriptions.repositories.subscription_store import SubscriptionRepository
from todo_subscriptions.services.reconciler import Reconciler
from todo_subscriptions.utils.clock import utc_now

logger = get_logger(__name__)

JWT_ALGORITHM = "HS256"
DEFAULT_TOKEN_LIFETIME = timedelta(days=7)

bearer_scheme = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    """Authenticated caller."""

    user_id: str
    email: Optional[str] = None

    class Config:
        frozen = True


def create_access_token(
    user_id: str,
    secret: str,
    email: Optional[str] = None,
    expires_in: timedelta = DEFAULT_TOKEN_LIFETIME,
) -> str:
    payload = {"sub": user_id, "exp": utc_now() + expires_in}
    if email:
        payload["email"] = email
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"error": "Unauthorized", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    settings: Settings = Depends(get_app_settings),
) -> CurrentUser:
    """Resolve the caller from the Authorization header.

    Raises:
        HTTPException: 401 for a missing, expired or invalid token; 400 when
                       no JWT secret is configured
    """
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Missing bearer token")

    try:
        secret = settings.require_jwt_secret()
    except ConfigurationError as e:
        logger.error("jwt_secret_missing")
        raise HTTPException(status_code=400, detail={"error": "Configuration error", "message": str(e)})

    try:
        payload = jwt.decode(credentials.credentials, secret, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token has expired")
    except jwt.PyJWTError as e:
        logger.info("invalid_bearer_token", error_type=type(e).__name__)
        raise _unauthorized("Invalid token")

    user_id = payload.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise _unauthorized("Token has no subject")

    email = payload.get("email")
    bind_context(user_id=user_id)
    return CurrentUser(user_id=user_id, email=email if isinstance(email, str) else None)


def require_active_subscription(
    user: CurrentUser = Depends(get_current_user),
    store: SubscriptionRepository = Depends(get_store),
) -> CurrentUser:
    """Gate for paid endpoints. Missing or inactive records get a 403."""
    if not store.is_subscription_active(user.user_id):
        logger.info("access_denied_inactive_subscription", user_id=user.user_id)
        raise HTTPException(
            status_code=403,
            detail={"error": "Forbidden", "message": "Active subscription required"},
        )
    return user


def register_user(user_id: str, reconciler: Optional[Reconciler] = None) -> SubscriptionRecord:
    """Create the inactive subscription record for a newly created user."""
    if reconciler is None:
        from todo_subscriptions.services.reconciler import get_reconciler

        reconciler = get_reconciler()
    return reconciler.register_user(user_id)
