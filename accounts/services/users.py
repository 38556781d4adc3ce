import sqlalchemy as sa
import structlog
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from accounts.core.config import settings
from accounts.core.errors import (
    AccountExists,
    AccountNotFound,
    ForbiddenFields,
    IncorrectPassword,
    LookupFailed,
    PasswordCompareFailed,
    SaveFailed,
    ValidationFailed,
)
from accounts.core.security import (
    PASSWORD_MAX_LENGTH,
    check_password,
    hash_password,
    looks_like_email,
    looks_like_phone,
    normalize_email,
    normalize_phone,
    now_utc,
    parse_id,
    password_problem,
)
from accounts.db.session import db_errors
from accounts.models.user import User
from accounts.schemas.account import ALLOWED_UPDATE_FIELDS, ProfileUpdate
from accounts.services import sessions

logger = structlog.get_logger(__name__)

AVATAR_CONTENT_TYPES = ("image/png", "image/jpeg")


def validate_registration(email: str, phone: str, password: str) -> dict[str, str]:
    problems = {}
    if not looks_like_email(email):
        problems["email"] = "Invalid email address"
    if not looks_like_phone(phone):
        problems["phone"] = "Invalid phone number, expected + followed by 4 to 15 digits"
    password_error = password_problem(password)
    if password_error:
        problems["password"] = password_error
    return problems


def _validation_fields(exc: ValidationError) -> dict[str, str]:
    fields = {}
    for err in exc.errors():
        name = ".".join(str(part) for part in err["loc"]) or "__root__"
        fields.setdefault(name, err["msg"])
    return fields


def find_active_user(db: Session, user_id) -> User | None:
    uid = parse_id(user_id)
    if uid is None:
        return None
    with db_errors(LookupFailed, "user_lookup_failed", user_id=str(uid)):
        return db.execute(
            sa.select(User).where(User.id == uid, User.deleted.is_(False))
        ).scalar_one_or_none()


def find_by_identifier(db: Session, email: str | None = None, phone: str | None = None) -> User | None:
    clauses = []
    if email:
        clauses.append(User.email == normalize_email(email))
    if phone:
        clauses.append(User.phone == normalize_phone(phone))
    if not clauses:
        return None
    with db_errors(LookupFailed, "user_lookup_failed"):
        return db.execute(
            sa.select(User)
            .where(sa.or_(*clauses), User.deleted.is_(False))
            .order_by(User.created_at)
            .limit(1)
        ).scalars().first()


def _live_owner_exists(db: Session, email: str, phone: str) -> bool:
    with db_errors(LookupFailed, "user_lookup_failed"):
        row = db.execute(
            sa.select(User.id)
            .where(sa.or_(User.email == email, User.phone == phone), User.deleted.is_(False))
            .limit(1)
        ).first()
    return row is not None


def register_account(db: Session, email: str, phone: str, password: str, profile: ProfileUpdate | None = None) -> User:
    """Validate and stage a new account. The caller owns the commit."""
    email = normalize_email(email)
    phone = normalize_phone(phone)
    if _live_owner_exists(db, email, phone):
        raise AccountExists()

    problems = validate_registration(email, phone, password)
    if problems:
        raise ValidationFailed(fields=problems)

    user = User(email=email, phone=phone, password_hash=hash_password(password))
    if profile is not None:
        for field, value in profile.model_dump(exclude_unset=True, exclude={"password"}).items():
            setattr(user, field, value)

    try:
        db.add(user)
        db.flush()
    except IntegrityError as exc:
        # lost a race against a concurrent registration for the same email/phone
        db.rollback()
        raise AccountExists() from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("user_save_failed", error=str(exc))
        raise SaveFailed() from exc
    logger.info("user_registered", user_id=str(user.id))
    return user


def authenticate(db: Session, email: str | None, phone: str | None, password: str) -> User:
    user = find_by_identifier(db, email=email, phone=phone)
    if user is None:
        raise AccountNotFound()
    if len((password or "").encode("utf-8")) > PASSWORD_MAX_LENGTH:
        # stored passwords never exceed the bcrypt limit, so this can only be wrong
        logger.info("password_incorrect", user_id=str(user.id))
        raise IncorrectPassword()
    try:
        valid = check_password(password or "", user.password_hash)
    except ValueError as exc:
        logger.error("password_compare_failed", user_id=str(user.id), error=str(exc))
        raise PasswordCompareFailed() from exc
    if not valid:
        logger.info("password_incorrect", user_id=str(user.id))
        raise IncorrectPassword()
    return user


def build_update(fields: dict) -> ProfileUpdate:
    """Check an incoming update against the allow-list, all or nothing."""
    if not isinstance(fields, dict):
        raise ValidationFailed("Update must be an object")
    forbidden = set(fields) - ALLOWED_UPDATE_FIELDS
    if forbidden:
        raise ForbiddenFields(forbidden)
    try:
        return ProfileUpdate.model_validate(fields)
    except ValidationError as exc:
        raise ValidationFailed(fields=_validation_fields(exc)) from exc


def apply_update(db: Session, user: User, update: ProfileUpdate) -> User:
    changes = update.model_dump(exclude_unset=True)
    password = changes.pop("password", None)
    for field, value in changes.items():
        setattr(user, field, value)
    if password is not None:
        user.password_hash = hash_password(password)
    with db_errors(SaveFailed, "user_update_failed", db=db, user_id=str(user.id)):
        db.flush()
    return user


def set_password(db: Session, user: User, password: str) -> None:
    problem = password_problem(password)
    if problem:
        raise ValidationFailed(fields={"new_password": problem})
    user.password_hash = hash_password(password)
    with db_errors(SaveFailed, "user_update_failed", db=db, user_id=str(user.id)):
        db.flush()


def soft_delete(db: Session, user: User) -> None:
    user.deleted = True
    user.deleted_at = now_utc()
    if settings.ACCOUNT_DELETE_REVOKES_SESSIONS:
        sessions.revoke_all(db, user, reason="account_deleted")
    with db_errors(SaveFailed, "user_delete_failed", db=db, user_id=str(user.id)):
        db.flush()
    logger.info("user_soft_deleted", user_id=str(user.id))


def mark_verified(db: Session, user: User, channel: str) -> None:
    if channel == "phone":
        user.phone_verified = True
    elif channel == "email":
        user.email_verified = True
    else:
        raise ValueError(f"unknown verification channel {channel!r}")
    with db_errors(SaveFailed, "user_verify_failed", db=db, user_id=str(user.id)):
        db.flush()


def attach_avatar(db: Session, user: User, blob: bytes, content_type: str | None) -> None:
    content_type = (content_type or "").split(";")[0].strip().lower()
    if content_type not in AVATAR_CONTENT_TYPES:
        raise ValidationFailed(fields={"file": "Not a JPEG/PNG image"})
    if not blob:
        raise ValidationFailed(fields={"file": "Empty upload"})
    if len(blob) > settings.AVATAR_MAX_BYTES:
        raise ValidationFailed(fields={"file": f"File exceeds {settings.AVATAR_MAX_BYTES} bytes"})
    user.avatar = blob
    user.avatar_content_type = content_type
    with db_errors(SaveFailed, "avatar_save_failed", db=db, user_id=str(user.id)):
        db.flush()
