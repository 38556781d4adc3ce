"""
Account use-case flows.

Each flow runs its steps in order, stops at the first failure and commits
once at the end. Challenge clean-up after a successful commit is the only
step allowed to fail quietly.
"""

import structlog
from sqlalchemy.orm import Session

from accounts.core.config import settings
from accounts.core.errors import (
    AccountNotFound,
    AlreadyVerified,
    ClientCreationFailed,
    DeliveryError,
    OtpSendFailed,
    SaveFailed,
    SessionCreationFailed,
)
from accounts.db.session import commit_or_raise
from accounts.models.client import Client
from accounts.models.otp_challenge import OtpChallenge
from accounts.models.user import User
from accounts.schemas.account import AccountOut, MessageOut, ProfileUpdate, RegisterIn, SessionOut
from accounts.schemas.auth import ChallengeOut
from accounts.services import otp, sessions, users
from accounts.services.audit import audit
from accounts.services.codes import CodeGenerator
from accounts.services.delivery import (
    EMAIL_TEMPLATE_VERIFICATION,
    SMS_TEMPLATE_VERIFICATION,
    EmailSender,
    SmsSender,
)

logger = structlog.get_logger(__name__)

EMAIL_VERIFY_SUBJECT = "SkinMate Email Verification"
EMAIL_VERIFY_MESSAGE = "Please use the OTP below to verify and confirm your email address."
PHONE_VERIFY_MESSAGE = "Verify and confirm your contact number."
OTP_SIGNIN_SUBJECT = "SkinMate Password Reset OTP"
OTP_SIGNIN_EMAIL_MESSAGE = (
    "Please use the OTP below to confirm and proceed with your password reset. "
    "This OTP allows you to login and update your password."
)
OTP_SIGNIN_SMS_MESSAGE = "Use this OTP to login and change your password."


def _session_out(client: Client, token: str) -> SessionOut:
    return SessionOut(
        id=client.id,
        token=token,
        user_id=client.user_id,
        user_agent=client.user_agent,
        created_at=client.created_at,
    )


def _challenge_out(challenge: OtpChallenge, code: str) -> ChallengeOut:
    out = ChallengeOut(
        id=challenge.id,
        purpose=challenge.purpose,
        created_at=challenge.created_at,
        expires_at=challenge.expires_at,
    )
    if settings.ENV == "dev":
        out.dev_code = code
    return out


def _issue_challenge(db: Session, user: User, purpose: str) -> tuple[OtpChallenge, str]:
    challenge = otp.create_challenge(db, user, purpose)
    code = CodeGenerator.from_settings().generate(challenge.secret)
    audit(db, user.id, "otp_challenge", challenge.id, "requested", {"purpose": purpose})
    # The challenge is committed before delivery; a failed send leaves it in place.
    commit_or_raise(db, SaveFailed, "otp_commit_failed", user_id=str(user.id), purpose=purpose)
    return challenge, code


def _deliver(send, challenge: OtpChallenge, channel: str) -> None:
    try:
        send()
    except DeliveryError as exc:
        logger.error("otp_send_failed", challenge_id=str(challenge.id), channel=channel, error=str(exc))
        raise OtpSendFailed() from exc


# --- accounts ---

def register(db: Session, payload: RegisterIn, user_agent: str) -> SessionOut:
    profile = ProfileUpdate.model_validate(
        payload.model_dump(include={"first_name", "last_name"}, exclude_none=True)
    )
    user = users.register_account(db, payload.email, payload.phone, payload.password, profile)
    # Nothing is committed yet, so a failed session leaves no account behind.
    client, token = sessions.create_session(db, user, user_agent, error_cls=ClientCreationFailed)
    audit(db, user.id, "user", user.id, "registered", {"session_id": str(client.id)})
    commit_or_raise(db, ClientCreationFailed, "register_commit_failed", user_id=str(user.id))
    logger.info("account_registered", user_id=str(user.id), session_id=str(client.id))
    return _session_out(client, token)


def fetch_account(db: Session, user: User) -> AccountOut:
    current = users.find_active_user(db, user.id)
    if current is None:
        raise AccountNotFound()
    return AccountOut.model_validate(current)


def update_profile(db: Session, user: User, fields: dict) -> AccountOut:
    update = users.build_update(fields)
    users.apply_update(db, user, update)
    audit(db, user.id, "user", user.id, "profile_updated", {"fields": sorted(update.model_fields_set)})
    commit_or_raise(db, SaveFailed, "profile_commit_failed", user_id=str(user.id))
    return AccountOut.model_validate(user)


def delete_account(db: Session, user: User) -> MessageOut:
    users.soft_delete(db, user)
    audit(db, user.id, "user", user.id, "deleted", {})
    commit_or_raise(db, SaveFailed, "delete_commit_failed", user_id=str(user.id))
    return MessageOut(detail="Account deleted")


def upload_avatar(db: Session, user: User, blob: bytes, content_type: str | None) -> MessageOut:
    users.attach_avatar(db, user, blob, content_type)
    audit(db, user.id, "user", user.id, "avatar_uploaded", {"bytes": len(blob)})
    commit_or_raise(db, SaveFailed, "avatar_commit_failed", user_id=str(user.id))
    return MessageOut(detail="avatar uploaded")


# --- sessions ---

def password_login(
    db: Session,
    email: str | None,
    phone: str | None,
    password: str,
    device_id,
    user_agent: str,
) -> SessionOut:
    user = users.authenticate(db, email, phone, password)
    client, token = sessions.login_session(db, user, device_id, user_agent)
    audit(db, user.id, "session", client.id, "login", {"method": "password"})
    commit_or_raise(db, SessionCreationFailed, "login_commit_failed", user_id=str(user.id))
    return _session_out(client, token)


def sign_out(db: Session, client: Client) -> MessageOut:
    sessions.revoke(db, client, reason="signout")
    audit(db, client.user_id, "session", client.id, "signout", {})
    commit_or_raise(db, SaveFailed, "signout_commit_failed", session_id=str(client.id))
    return MessageOut(detail="You're signed out")


# --- verification ---

def request_phone_verification(db: Session, user: User, sms: SmsSender) -> ChallengeOut:
    if user.phone_verified:
        raise AlreadyVerified("Phone number is already verified")
    challenge, code = _issue_challenge(db, user, "phone_verify")
    _deliver(
        lambda: sms.send(
            user.phone,
            SMS_TEMPLATE_VERIFICATION,
            {"MESSAGE": PHONE_VERIFY_MESSAGE, "VERIFICATION_CODE": code},
        ),
        challenge,
        "sms",
    )
    return _challenge_out(challenge, code)


def request_email_verification(db: Session, user: User, mailer: EmailSender) -> ChallengeOut:
    if user.email_verified:
        raise AlreadyVerified("Email address is already verified")
    challenge, code = _issue_challenge(db, user, "email_verify")
    _deliver(
        lambda: mailer.send(
            user.email,
            EMAIL_VERIFY_SUBJECT,
            EMAIL_TEMPLATE_VERIFICATION,
            {"MESSAGE": EMAIL_VERIFY_MESSAGE, "VERIFICATION_CODE": code},
        ),
        challenge,
        "email",
    )
    return _challenge_out(challenge, code)


def _confirm_verification(db: Session, user: User, request_id, code, channel: str) -> None:
    purpose = f"{channel}_verify"
    challenge = otp.verify_challenge(db, request_id, code, purpose, user_id=user.id)
    users.mark_verified(db, user, channel)
    otp.claim_challenge(db, challenge)
    audit(db, user.id, "user", user.id, f"{channel}_verified", {"challenge_id": str(challenge.id)})
    commit_or_raise(db, SaveFailed, "verify_commit_failed", user_id=str(user.id), channel=channel)
    otp.discard_challenge(db, challenge)


def confirm_phone_verification(db: Session, user: User, request_id, code) -> MessageOut:
    _confirm_verification(db, user, request_id, code, "phone")
    return MessageOut(detail=f"{user.phone} is now verified")


def confirm_email_verification(db: Session, user: User, request_id, code) -> MessageOut:
    _confirm_verification(db, user, request_id, code, "email")
    return MessageOut(detail=f"{user.email} is now verified")


# --- one-time code sign-in ---

def request_otp_signin(
    db: Session,
    email: str | None,
    phone: str | None,
    purpose: str,
    mailer: EmailSender,
    sms: SmsSender,
) -> ChallengeOut:
    user = users.find_by_identifier(db, email=email, phone=phone)
    if user is None:
        raise AccountNotFound()
    challenge, code = _issue_challenge(db, user, purpose)

    # The code goes to whichever contact the caller supplied, both if both were.
    if email:
        _deliver(
            lambda: mailer.send(
                user.email,
                OTP_SIGNIN_SUBJECT,
                EMAIL_TEMPLATE_VERIFICATION,
                {"MESSAGE": OTP_SIGNIN_EMAIL_MESSAGE, "VERIFICATION_CODE": code},
            ),
            challenge,
            "email",
        )
    if phone:
        _deliver(
            lambda: sms.send(
                user.phone,
                SMS_TEMPLATE_VERIFICATION,
                {"MESSAGE": OTP_SIGNIN_SMS_MESSAGE, "VERIFICATION_CODE": code},
            ),
            challenge,
            "sms",
        )
    return _challenge_out(challenge, code)


def _owner_of(db: Session, challenge: OtpChallenge) -> User:
    user = users.find_active_user(db, challenge.user_id)
    if user is None:
        raise AccountNotFound()
    return user


def confirm_otp_signin(db: Session, request_id, code, user_agent: str, device_id=None) -> SessionOut:
    challenge = otp.verify_challenge(db, request_id, code, "login")
    user = _owner_of(db, challenge)
    client, token = sessions.login_session(db, user, device_id, user_agent)
    otp.claim_challenge(db, challenge)
    audit(db, user.id, "session", client.id, "login", {"method": "otp"})
    commit_or_raise(db, SessionCreationFailed, "otp_login_commit_failed", user_id=str(user.id))
    otp.discard_challenge(db, challenge)
    return _session_out(client, token)


def reset_password(
    db: Session,
    request_id,
    code,
    new_password: str,
    user_agent: str,
    device_id=None,
) -> SessionOut:
    """Finish a password reset: new password, every other device signed out."""
    challenge = otp.verify_challenge(db, request_id, code, "password_reset")
    user = _owner_of(db, challenge)
    users.set_password(db, user, new_password)
    client, token = sessions.login_session(db, user, device_id, user_agent)
    revoked = sessions.revoke_all(db, user, reason="password_reset", keep=client)
    otp.claim_challenge(db, challenge)
    audit(db, user.id, "user", user.id, "password_reset", {"revoked_sessions": revoked})
    commit_or_raise(db, SaveFailed, "password_reset_commit_failed", user_id=str(user.id))
    otp.discard_challenge(db, challenge)
    logger.info("password_reset", user_id=str(user.id), revoked_sessions=revoked)
    return _session_out(client, token)
