from datetime import datetime, timedelta

import sqlalchemy as sa
import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from accounts.core.config import settings
from accounts.core.errors import GenerationFailed, InvalidCode, LookupFailed, SaveFailed, UnavailableChallenge
from accounts.core.security import as_utc, now_utc, parse_id
from accounts.db.session import commit_or_raise, db_errors
from accounts.models.otp_challenge import PURPOSES, OtpChallenge
from accounts.models.user import User
from accounts.services.codes import CodeGenerator, new_secret

logger = structlog.get_logger(__name__)


def is_usable(challenge: OtpChallenge, now: datetime | None = None) -> bool:
    if challenge.consumed_at is not None:
        return False
    now = now or now_utc()
    expires_at = as_utc(challenge.expires_at)
    if expires_at is not None and now >= expires_at:
        return False
    if settings.OTP_MAX_ATTEMPTS and challenge.attempts >= settings.OTP_MAX_ATTEMPTS:
        return False
    return True


def create_challenge(db: Session, user: User, purpose: str) -> OtpChallenge:
    if purpose not in PURPOSES:
        raise ValueError(f"unknown challenge purpose {purpose!r}")
    expires_at = None
    if settings.OTP_TTL_MINUTES:
        expires_at = now_utc() + timedelta(minutes=settings.OTP_TTL_MINUTES)

    challenge = OtpChallenge(user_id=user.id, purpose=purpose, secret=new_secret(), expires_at=expires_at)
    with db_errors(GenerationFailed, "otp_create_failed", db=db, user_id=str(user.id), purpose=purpose):
        db.add(challenge)
        db.flush()
    logger.info("otp_created", challenge_id=str(challenge.id), user_id=str(user.id), purpose=purpose)
    return challenge


def find_challenge(db: Session, challenge_id, purpose: str, user_id=None) -> OtpChallenge | None:
    cid = parse_id(challenge_id)
    if cid is None:
        return None
    q = sa.select(OtpChallenge).where(OtpChallenge.id == cid, OtpChallenge.purpose == purpose)
    if user_id is not None:
        q = q.where(OtpChallenge.user_id == user_id)
    with db_errors(LookupFailed, "otp_lookup_failed", challenge_id=str(cid)):
        challenge = db.execute(q.execution_options(populate_existing=True)).scalar_one_or_none()
    if challenge is None or not is_usable(challenge):
        return None
    return challenge


def verify_challenge(
    db: Session,
    challenge_id,
    code,
    purpose: str,
    user_id=None,
    generator: CodeGenerator | None = None,
) -> OtpChallenge:
    """Load a challenge and check the submitted code against it.

    A wrong code bumps the attempt counter (committed right away) and leaves
    the challenge in place so the caller can try again with the same id.
    """
    challenge = find_challenge(db, challenge_id, purpose, user_id=user_id)
    if challenge is None:
        raise UnavailableChallenge()

    generator = generator or CodeGenerator.from_settings()
    if not generator.verify(challenge.secret, code):
        record_miss(db, challenge)
        raise InvalidCode()
    return challenge


def record_miss(db: Session, challenge: OtpChallenge) -> None:
    """Count a wrong guess. The increment happens in the database so racing guesses all land."""
    with db_errors(SaveFailed, "otp_attempt_save_failed", db=db, challenge_id=str(challenge.id)):
        db.execute(
            sa.update(OtpChallenge)
            .where(OtpChallenge.id == challenge.id)
            .values(attempts=OtpChallenge.attempts + 1)
            .execution_options(synchronize_session=False)
        )
    commit_or_raise(db, SaveFailed, "otp_attempt_save_failed", challenge_id=str(challenge.id))
    logger.info("otp_mismatch", challenge_id=str(challenge.id))


def claim_challenge(db: Session, challenge: OtpChallenge) -> None:
    """Mark the challenge consumed inside the caller's transaction.

    Only one request can win: a racing request that already claimed it leaves
    zero matching rows and this one fails as unavailable.
    """
    now = now_utc()
    with db_errors(SaveFailed, "otp_claim_failed", db=db, challenge_id=str(challenge.id)):
        result = db.execute(
            sa.update(OtpChallenge)
            .where(OtpChallenge.id == challenge.id, OtpChallenge.consumed_at.is_(None))
            .values(consumed_at=now)
            .execution_options(synchronize_session=False)
        )
    if result.rowcount != 1:
        db.rollback()
        raise UnavailableChallenge()
    challenge.consumed_at = now


def discard_challenge(db: Session, challenge: OtpChallenge) -> None:
    """Best-effort removal of a consumed challenge; never fails the request."""
    try:
        db.execute(sa.delete(OtpChallenge).where(OtpChallenge.id == challenge.id))
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("otp_discard_failed", challenge_id=str(challenge.id), error=str(exc))


def sweep_challenges(db: Session, now: datetime | None = None) -> int:
    now = now or now_utc()
    cutoff = now - timedelta(days=settings.OTP_RETENTION_DAYS)
    deleted = db.execute(
        sa.delete(OtpChallenge).where(
            sa.or_(
                OtpChallenge.consumed_at.is_not(None),
                OtpChallenge.expires_at < cutoff,
                sa.and_(OtpChallenge.expires_at.is_(None), OtpChallenge.created_at < cutoff),
            )
        )
    ).rowcount
    return deleted
