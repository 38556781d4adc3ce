from datetime import timedelta

import pytest

from accounts.core.config import settings
from accounts.core.errors import InvalidCode, UnavailableChallenge
from accounts.db.session import SessionLocal
from accounts.models.otp_challenge import OtpChallenge
from accounts.services import otp, users
from accounts.services.codes import CodeGenerator


@pytest.fixture
def user(db):
    u = users.register_account(db, "otp@example.com", "+573001110000", "Secret1")
    db.commit()
    return u


def _code(challenge):
    return CodeGenerator.from_settings().generate(challenge.secret)


def test_create_challenge_has_secret_and_expiry(db, user):
    challenge = otp.create_challenge(db, user, "phone_verify")
    db.commit()
    assert challenge.id is not None
    assert challenge.secret
    assert challenge.attempts == 0
    assert challenge.expires_at is not None


def test_unknown_purpose_is_rejected(db, user):
    with pytest.raises(ValueError):
        otp.create_challenge(db, user, "anything")


def test_wrong_code_counts_attempt_and_keeps_challenge(db, user):
    challenge = otp.create_challenge(db, user, "phone_verify")
    db.commit()
    good = _code(challenge)
    wrong = "000000" if good != "000000" else "111111"

    with pytest.raises(InvalidCode):
        otp.verify_challenge(db, challenge.id, wrong, "phone_verify", user_id=user.id)

    db.refresh(challenge)
    assert challenge.attempts == 1
    assert otp.verify_challenge(db, challenge.id, good, "phone_verify", user_id=user.id).id == challenge.id


def test_purpose_and_owner_scope_lookup(db, user):
    other = users.register_account(db, "other@example.com", "+573001110001", "Secret1")
    challenge = otp.create_challenge(db, user, "email_verify")
    db.commit()

    assert otp.find_challenge(db, challenge.id, "email_verify") is not None
    assert otp.find_challenge(db, challenge.id, "phone_verify") is None
    assert otp.find_challenge(db, challenge.id, "email_verify", user_id=other.id) is None
    assert otp.find_challenge(db, "not-a-uuid", "email_verify") is None


def test_claimed_challenge_cannot_be_claimed_again(db, user):
    challenge = otp.create_challenge(db, user, "login")
    db.commit()

    otp.claim_challenge(db, challenge)
    db.commit()
    assert otp.find_challenge(db, challenge.id, "login") is None

    stale = OtpChallenge(id=challenge.id)
    with pytest.raises(UnavailableChallenge):
        otp.claim_challenge(db, stale)


def test_discard_removes_the_row(db, user):
    challenge = otp.create_challenge(db, user, "login")
    db.commit()
    otp.claim_challenge(db, challenge)
    db.commit()
    otp.discard_challenge(db, challenge)

    db.expire_all()
    assert db.get(OtpChallenge, challenge.id) is None


def test_expired_challenge_is_unavailable(db, user):
    challenge = otp.create_challenge(db, user, "phone_verify")
    challenge.expires_at = challenge.created_at - timedelta(seconds=1)
    db.commit()

    with pytest.raises(UnavailableChallenge):
        otp.verify_challenge(db, challenge.id, _code(challenge), "phone_verify")


def test_exhausted_attempts_make_challenge_unavailable(db, user, monkeypatch):
    monkeypatch.setattr(settings, "OTP_MAX_ATTEMPTS", 2)
    challenge = otp.create_challenge(db, user, "phone_verify")
    db.commit()
    good = _code(challenge)
    wrong = "000000" if good != "000000" else "111111"

    for _ in range(2):
        with pytest.raises(InvalidCode):
            otp.verify_challenge(db, challenge.id, wrong, "phone_verify")
    with pytest.raises(UnavailableChallenge):
        otp.verify_challenge(db, challenge.id, good, "phone_verify")


def test_zero_limits_disable_expiry_and_attempt_cap(db, user, monkeypatch):
    monkeypatch.setattr(settings, "OTP_TTL_MINUTES", 0)
    monkeypatch.setattr(settings, "OTP_MAX_ATTEMPTS", 0)
    challenge = otp.create_challenge(db, user, "phone_verify")
    challenge.attempts = 1000
    db.commit()

    assert challenge.expires_at is None
    assert otp.find_challenge(db, challenge.id, "phone_verify") is not None


def test_sweep_deletes_consumed_and_long_expired(db, user):
    live = otp.create_challenge(db, user, "phone_verify")
    consumed = otp.create_challenge(db, user, "email_verify")
    stale = otp.create_challenge(db, user, "login")
    stale.expires_at = stale.created_at - timedelta(days=settings.OTP_RETENTION_DAYS + 1)
    db.commit()
    otp.claim_challenge(db, consumed)
    db.commit()

    assert otp.sweep_challenges(db) == 2
    db.commit()
    db.expire_all()
    assert db.get(OtpChallenge, live.id) is not None
    assert db.get(OtpChallenge, consumed.id) is None
    assert db.get(OtpChallenge, stale.id) is None


def test_misses_from_stale_copies_all_count(db, user):
    challenge = otp.create_challenge(db, user, "phone_verify")
    db.commit()

    # a second request holding its own, already-loaded copy of the challenge
    other = SessionLocal()
    try:
        stale = other.get(OtpChallenge, challenge.id)
        otp.record_miss(db, challenge)
        otp.record_miss(other, stale)
    finally:
        other.close()

    db.expire_all()
    assert db.get(OtpChallenge, challenge.id).attempts == 2
