from __future__ import annotations

import uuid

import pytest
import sqlalchemy as sa

from accounts.core.config import settings
from accounts.db.session import SessionLocal
from accounts.models.client import Client
from accounts.models.otp_challenge import OtpChallenge
from accounts.models.user import User
from tests.testkit import (
    DEFAULT_PASSWORD,
    ApiError,
    create_verified_account,
    register_account,
    verify_phone,
)


def _wrong(code: str) -> str:
    return "000000" if code != "000000" else "111111"


def _live_clients(user_id: str) -> list[Client]:
    with SessionLocal() as db:
        return db.execute(
            sa.select(Client).where(Client.user_id == uuid.UUID(user_id), Client.deleted.is_(False))
        ).scalars().all()


def _challenge_exists(challenge_id: str) -> bool:
    with SessionLocal() as db:
        return db.get(OtpChallenge, uuid.UUID(challenge_id)) is not None


# --- phone / email verification ---

def test_phone_verification_scenario(api, sms):
    session = api.call(
        "POST",
        "/accounts",
        agent="test-agent",
        body={"email": "a@x.com", "phone": "+1000", "password": "Secret1"},
    )

    challenge = api.call("GET", "/accounts/verify/phone", session=session)
    assert "secret" not in challenge
    assert challenge["dev_code"] is None
    assert sms.sent[-1]["to"] == "+1000"
    assert sms.sent[-1]["vars"]["MESSAGE"] == "Verify and confirm your contact number."

    code = sms.last_code
    with pytest.raises(ApiError) as exc:
        api.call("POST", "/accounts/verify/phone", session=session, body={"request_id": challenge["id"], "code": _wrong(code)})
    assert exc.value.status_code == 401
    assert exc.value.code == "invalid_otp"

    out = api.call("POST", "/accounts/verify/phone", session=session, body={"request_id": challenge["id"], "code": code})
    assert out["detail"] == "+1000 is now verified"
    assert not _challenge_exists(challenge["id"])

    with SessionLocal() as db:
        assert db.execute(sa.select(User.phone_verified).where(User.email == "a@x.com")).scalar_one() is True

    with pytest.raises(ApiError) as exc:
        api.call("POST", "/accounts/verify/phone", session=session, body={"request_id": challenge["id"], "code": code})
    assert exc.value.status_code == 404
    assert exc.value.code == "otp_unavailable"


def test_phone_already_verified_conflicts(api, identity_factory, sms):
    account = register_account(api, identity_factory)
    verify_phone(api, sms, account["session"])

    with pytest.raises(ApiError) as exc:
        api.call("GET", "/accounts/verify/phone", session=account["session"])
    assert exc.value.status_code == 409
    assert exc.value.code == "already_verified"


def test_challenge_of_another_account_is_unavailable(api, identity_factory, sms):
    mine = register_account(api, identity_factory)
    theirs = register_account(api, identity_factory)

    challenge = api.call("GET", "/accounts/verify/phone", session=theirs["session"])
    code = sms.last_code
    with pytest.raises(ApiError) as exc:
        api.call("POST", "/accounts/verify/phone", session=mine["session"], body={"request_id": challenge["id"], "code": code})
    assert exc.value.code == "otp_unavailable"


def test_email_verification_needs_verified_phone(api, identity_factory, mailer, sms):
    account = register_account(api, identity_factory)
    session = account["session"]

    with pytest.raises(ApiError) as exc:
        api.call("GET", "/accounts/verify/email", session=session)
    assert exc.value.status_code == 403

    verify_phone(api, sms, session)
    challenge = api.call("GET", "/accounts/verify/email", session=session)
    sent = mailer.sent[-1]
    assert sent["to"] == account["email"]
    assert sent["subject"] == "SkinMate Email Verification"

    out = api.call("POST", "/accounts/verify/email", session=session, body={"request_id": challenge["id"], "code": mailer.last_code})
    assert out["detail"] == f"{account['email']} is now verified"


def test_login_challenge_cannot_confirm_email(api, identity_factory, mailer, sms):
    account = register_account(api, identity_factory)
    session = account["session"]
    verify_phone(api, sms, session)

    login_challenge = api.call("POST", "/accounts/auth/request-otp-signin", body={"email": account["email"]})
    with pytest.raises(ApiError) as exc:
        api.call("POST", "/accounts/verify/email", session=session, body={"request_id": login_challenge["id"], "code": mailer.last_code})
    assert exc.value.code == "otp_unavailable"


def test_failed_delivery_keeps_challenge(api, identity_factory, sms):
    account = register_account(api, identity_factory)
    sms.fail = True

    with pytest.raises(ApiError) as exc:
        api.call("GET", "/accounts/verify/phone", session=account["session"])
    assert exc.value.status_code == 502
    assert exc.value.code == "otp_send_failed"

    with SessionLocal() as db:
        assert db.scalar(sa.select(sa.func.count()).select_from(OtpChallenge)) == 1


def test_dev_env_echoes_code(api, identity_factory, sms, monkeypatch):
    monkeypatch.setattr(settings, "ENV", "dev")
    account = register_account(api, identity_factory)
    challenge = api.call("GET", "/accounts/verify/phone", session=account["session"])
    assert challenge["dev_code"] == sms.last_code


# --- password login / sign out ---

def test_password_login_with_same_device_keeps_one_live_session(api, identity_factory):
    account = register_account(api, identity_factory)
    user_id = account["session"]["user_id"]
    device_id = str(uuid.uuid4())

    first = api.call("POST", "/accounts/auth", device_id=device_id, body={"email": account["email"], "password": DEFAULT_PASSWORD})
    assert first["user_id"] == user_id

    second = api.call("POST", "/accounts/auth", device_id=first["id"], body={"phone": account["phone"], "password": DEFAULT_PASSWORD})
    live = {str(c.id) for c in _live_clients(user_id)}
    assert second["id"] in live
    assert first["id"] not in live

    with pytest.raises(ApiError) as exc:
        api.call("GET", "/accounts/verify/phone", session=first)
    assert exc.value.code == "invalid_session"


def test_password_login_errors(api, identity_factory):
    account = register_account(api, identity_factory)

    with pytest.raises(ApiError) as exc:
        api.call("POST", "/accounts/auth", body={"email": account["email"], "password": "Wrong999"})
    assert exc.value.status_code == 401
    assert exc.value.code == "incorrect_password"

    with pytest.raises(ApiError) as exc:
        api.call("POST", "/accounts/auth", body={"email": "nobody@example.com", "password": "Wrong999"})
    assert exc.value.status_code == 404

    with pytest.raises(ApiError) as exc:
        api.call("POST", "/accounts/auth", body={"password": DEFAULT_PASSWORD})
    assert exc.value.status_code == 422


def test_password_login_with_overlong_password_is_rejected(api, identity_factory):
    account = register_account(api, identity_factory)

    with pytest.raises(ApiError) as exc:
        api.call("POST", "/accounts/auth", body={"email": account["email"], "password": "x1" * 40})
    assert exc.value.status_code == 401
    assert exc.value.code == "incorrect_password"


def test_login_naming_another_accounts_device_keeps_it_signed_in(api, identity_factory):
    owner = register_account(api, identity_factory)
    other = register_account(api, identity_factory)

    session = api.call(
        "POST",
        "/accounts/auth",
        device_id=owner["session"]["id"],
        body={"email": other["email"], "password": DEFAULT_PASSWORD},
    )
    assert session["id"] != owner["session"]["id"]
    assert session["user_id"] == other["session"]["user_id"]

    assert api.call("DELETE", "/accounts/auth", session=owner["session"])["detail"] == "You're signed out"


@pytest.mark.parametrize("method", ["DELETE", "PURGE"])
def test_sign_out(api, identity_factory, method):
    account = register_account(api, identity_factory)
    session = account["session"]

    assert api.call(method, "/accounts/auth", session=session)["detail"] == "You're signed out"
    with pytest.raises(ApiError) as exc:
        api.call(method, "/accounts/auth", session=session)
    assert exc.value.code == "invalid_session"


# --- one-time code sign-in / password reset ---

def test_otp_signin_by_email(api, identity_factory, mailer, sms):
    account = register_account(api, identity_factory)

    challenge = api.call("POST", "/accounts/auth/request-otp-signin", body={"email": account["email"]})
    assert challenge["purpose"] == "login"
    assert mailer.sent[-1]["subject"] == "SkinMate Password Reset OTP"
    assert sms.sent == []

    session = api.call("POST", "/accounts/auth/otp-signin", agent="other-agent", body={"request_id": challenge["id"], "code": mailer.last_code})
    assert session["user_id"] == account["session"]["user_id"]
    assert session["user_agent"] == "other-agent"
    assert not _challenge_exists(challenge["id"])

    with pytest.raises(ApiError) as exc:
        api.call("POST", "/accounts/auth/otp-signin", body={"request_id": challenge["id"], "code": mailer.last_code})
    assert exc.value.status_code == 404


def test_otp_signin_by_phone_uses_sms(api, identity_factory, mailer, sms):
    account = register_account(api, identity_factory)
    api.call("POST", "/accounts/auth/request-otp-signin", body={"phone": account["phone"]})
    assert mailer.sent == []
    assert sms.sent[-1]["vars"]["MESSAGE"] == "Use this OTP to login and change your password."


def test_otp_signin_wrong_code_then_right(api, identity_factory, mailer):
    account = register_account(api, identity_factory)
    challenge = api.call("POST", "/accounts/auth/request-otp-signin", body={"email": account["email"]})
    code = mailer.last_code

    with pytest.raises(ApiError) as exc:
        api.call("POST", "/accounts/auth/otp-signin", body={"request_id": challenge["id"], "code": _wrong(code)})
    assert exc.value.code == "invalid_otp"

    assert api.call("POST", "/accounts/auth/otp-signin", body={"request_id": challenge["id"], "code": code})["token"]


def test_otp_signin_unknown_account(api):
    with pytest.raises(ApiError) as exc:
        api.call("POST", "/accounts/auth/request-otp-signin", body={"email": "ghost@example.com"})
    assert exc.value.status_code == 404
    assert exc.value.code == "account_not_found"


def test_password_reset_signs_other_devices_out(api, identity_factory, mailer, sms):
    account = create_verified_account(api, identity_factory, mailer, sms)
    old_session = account["session"]

    challenge = api.call(
        "POST",
        "/accounts/auth/request-otp-signin",
        body={"email": account["email"], "purpose": "password_reset"},
    )
    assert challenge["purpose"] == "password_reset"

    # a reset code is not a login code
    with pytest.raises(ApiError) as exc:
        api.call("POST", "/accounts/auth/otp-signin", body={"request_id": challenge["id"], "code": mailer.last_code})
    assert exc.value.code == "otp_unavailable"

    new_session = api.call(
        "POST",
        "/accounts/auth/password-reset",
        body={"request_id": challenge["id"], "code": mailer.last_code, "new_password": "Brandnew7"},
    )
    live = {str(c.id) for c in _live_clients(old_session["user_id"])}
    assert live == {new_session["id"]}

    login = api.call("POST", "/accounts/auth", body={"email": account["email"], "password": "Brandnew7"})
    assert login["user_id"] == old_session["user_id"]


def test_password_reset_rejects_weak_password_and_keeps_challenge(api, identity_factory, mailer):
    account = register_account(api, identity_factory)
    challenge = api.call(
        "POST",
        "/accounts/auth/request-otp-signin",
        body={"email": account["email"], "purpose": "password_reset"},
    )

    with pytest.raises(ApiError) as exc:
        api.call("POST", "/accounts/auth/password-reset", body={"request_id": challenge["id"], "code": mailer.last_code, "new_password": "weak"})
    assert exc.value.status_code == 422
    assert "new_password" in exc.value.payload["fields"]
    assert _challenge_exists(challenge["id"])
