import sqlalchemy as sa
import structlog
from sqlalchemy.orm import Session

from accounts.core.config import settings
from accounts.core.errors import LookupFailed, SaveFailed, SessionCreationFailed
from accounts.core.security import hash_session_token, new_session_token, now_utc, parse_id
from accounts.db.session import db_errors
from accounts.models.client import Client
from accounts.models.user import User

logger = structlog.get_logger(__name__)


def create_session(db: Session, user: User, user_agent: str, error_cls=SessionCreationFailed) -> tuple[Client, str]:
    """Mint a session for ``user``. The raw token is only ever returned here."""
    token = new_session_token()
    client = Client(user_agent=user_agent, token_hash=hash_session_token(token), last_used_at=now_utc())
    with db_errors(error_cls, "session_create_failed", db=db, user_id=str(user.id)):
        # Appending through the owned collection fills in the user_id foreign key
        # in the same flush, so both sides of the link land together.
        user.sessions.append(client)
        db.flush()
    logger.info("session_created", session_id=str(client.id), user_id=str(user.id))
    return client, token


def get_session(db: Session, session_id) -> Client | None:
    sid = parse_id(session_id)
    if sid is None:
        return None
    with db_errors(LookupFailed, "session_lookup_failed", session_id=str(sid)):
        return db.execute(
            sa.select(Client).where(Client.id == sid, Client.deleted.is_(False))
        ).scalar_one_or_none()


def find_by_token(db: Session, session_id, token: str | None) -> Client | None:
    if not token:
        return None
    sid = parse_id(session_id)
    if sid is None:
        return None
    with db_errors(LookupFailed, "session_lookup_failed", session_id=str(sid)):
        return db.execute(
            sa.select(Client).where(
                Client.id == sid,
                Client.token_hash == hash_session_token(token),
                Client.deleted.is_(False),
            )
        ).scalar_one_or_none()


def revoke(db: Session, client: Client, reason: str = "signout", mode: str | None = None) -> None:
    """Revoke one session. Already revoked sessions are left alone."""
    mode = mode or settings.SESSION_REVOKE_MODE
    state = sa.inspect(client)
    if state.deleted or state.was_deleted or client.deleted:
        return

    with db_errors(SaveFailed, "session_revoke_failed", db=db, session_id=str(client.id)):
        if mode == "hard":
            owner = client.user
            if owner is not None and client in owner.sessions:
                owner.sessions.remove(client)
            else:
                db.delete(client)
        else:
            client.deleted = True
            client.revoked_at = now_utc()
            client.revoked_reason = reason
        db.flush()
    logger.info("session_revoked", session_id=str(client.id), mode=mode, reason=reason)


def revoke_all(db: Session, user: User, reason: str, keep: Client | None = None) -> int:
    count = 0
    for client in list(user.active_sessions):
        if keep is not None and client.id == keep.id:
            continue
        revoke(db, client, reason=reason)
        count += 1
    return count


def login_session(db: Session, user: User, device_id, user_agent: str) -> tuple[Client, str]:
    """Sign a device in, leaving exactly one live session answering for it.

    A device id naming one of ``user``'s live sessions is either rotated out
    (revoked and replaced) or, under the ``reuse`` policy, kept with a fresh
    token. A session of another account is never touched: only its own
    (id, token) pair can sign it out, so ``user`` just gets a new session.
    """
    existing = get_session(db, device_id) if device_id else None
    if existing is not None and existing.user_id != user.id:
        logger.info("session_device_foreign", session_id=str(existing.id), user_id=str(user.id))
        existing = None

    if existing is not None:
        if settings.LOGIN_SESSION_POLICY == "reuse":
            token = new_session_token()
            with db_errors(SessionCreationFailed, "session_refresh_failed", db=db, session_id=str(existing.id)):
                existing.token_hash = hash_session_token(token)
                existing.user_agent = user_agent
                existing.last_used_at = now_utc()
                db.flush()
            logger.info("session_reused", session_id=str(existing.id), user_id=str(user.id))
            return existing, token
        revoke(db, existing, reason="relogin")

    return create_session(db, user, user_agent)
