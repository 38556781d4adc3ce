import hashlib
import re
import secrets
import uuid
from datetime import datetime, timezone

import bcrypt

from accounts.core.config import settings

PHONE_RE = re.compile(r"^\+\d{4,15}$")
PASSWORD_MAX_LENGTH = 72  # bcrypt only reads the first 72 bytes

def now_utc() -> datetime:
    return datetime.now(timezone.utc)

def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)

def new_session_token() -> str:
    return secrets.token_urlsafe(settings.SESSION_TOKEN_BYTES)

def hash_session_token(token: str) -> str:
    raw = (settings.TOKEN_PEPPER + ":" + token).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()

def hash_password(password: str) -> str:
    raw = password.encode("utf-8")
    return bcrypt.hashpw(raw, bcrypt.gensalt()).decode("utf-8")

def check_password(password: str, password_hash: str) -> bool:
    # Raises ValueError on a corrupt hash; callers tell that apart from a mismatch.
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))

def normalize_email(email: str) -> str:
    return (email or "").strip().lower()

def normalize_phone(phone: str) -> str:
    raw = (phone or "").strip().replace(" ", "").replace("-", "")
    if raw and not raw.startswith("+"):
        raw = "+" + raw
    return raw

def looks_like_email(value: str) -> bool:
    v = (value or "").strip()
    if v.count("@") != 1:
        return False
    local, domain = v.split("@")
    return bool(local) and "." in domain and not domain.startswith(".") and not domain.endswith(".")

def looks_like_phone(value: str) -> bool:
    return bool(PHONE_RE.match(value or ""))

def password_problem(password: str) -> str | None:
    if not password or len(password) < settings.PASSWORD_MIN_LENGTH:
        return f"Password must be at least {settings.PASSWORD_MIN_LENGTH} characters"
    if len(password.encode("utf-8")) > PASSWORD_MAX_LENGTH:
        return f"Password must be at most {PASSWORD_MAX_LENGTH} bytes"
    if not any(ch.isalpha() for ch in password) or not any(ch.isdigit() for ch in password):
        return "Password must contain a letter and a digit"
    return None

def parse_id(value) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None
