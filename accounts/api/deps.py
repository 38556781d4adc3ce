from fastapi import Depends, Header
from sqlalchemy.orm import Session

from accounts.core.errors import AccountNotFound, InvalidSession, MissingCredentials, NotVerified
from accounts.core.security import now_utc
from accounts.db.session import get_db
from accounts.models.client import Client
from accounts.models.user import User
from accounts.services import sessions


def get_user_agent(user_agent: str | None = Header(default=None, alias="user-agent")) -> str:
    if not user_agent or not user_agent.strip():
        raise MissingCredentials("Missing user-agent header")
    return user_agent.strip()


def get_device_id(device_id: str | None = Header(default=None, alias="device-id")) -> str | None:
    # optional before sign-in: a known device id is rotated instead of duplicated
    return device_id.strip() if device_id else None


def get_current_client(
    device_id: str | None = Header(default=None, alias="device-id"),
    access_token: str | None = Header(default=None, alias="access-token"),
    db: Session = Depends(get_db),
) -> Client:
    if not device_id or not access_token:
        raise MissingCredentials("Missing device-id or access-token header")
    client = sessions.find_by_token(db, device_id, access_token)
    if client is None:
        raise InvalidSession()
    client.last_used_at = now_utc()
    return client


def get_current_user(client: Client = Depends(get_current_client)) -> User:
    user = client.user
    if user is None or user.deleted:
        raise AccountNotFound()
    return user


def require_verification(phone: bool = False, email: bool = False):
    """Dependency factory: the caller's account must have these contacts verified."""

    def _guard(user: User = Depends(get_current_user)) -> User:
        if phone and not user.phone_verified:
            raise NotVerified("Phone number is not verified")
        if email and not user.email_verified:
            raise NotVerified("Email address is not verified")
        return user

    return _guard
