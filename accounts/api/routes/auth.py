from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from accounts.api.deps import get_current_client, get_device_id, get_user_agent
from accounts.db.session import get_db
from accounts.models.client import Client
from accounts.schemas.account import MessageOut, SessionOut
from accounts.schemas.auth import ChallengeOut, LoginIn, OtpConfirmIn, OtpSigninRequestIn, PasswordResetIn
from accounts.services import flows
from accounts.services.delivery import EmailSender, SmsSender, get_email_sender, get_sms_sender

router = APIRouter()


@router.post("", response_model=SessionOut)
def login(
    payload: LoginIn,
    user_agent: str = Depends(get_user_agent),
    device_id: str | None = Depends(get_device_id),
    db: Session = Depends(get_db),
):
    return flows.password_login(db, payload.email, payload.phone, payload.password, device_id, user_agent)


@router.api_route("", methods=["DELETE", "PURGE"], response_model=MessageOut)
def sign_out(client: Client = Depends(get_current_client), db: Session = Depends(get_db)):
    return flows.sign_out(db, client)


@router.post("/request-otp-signin", response_model=ChallengeOut)
def request_otp_signin(
    payload: OtpSigninRequestIn,
    user_agent: str = Depends(get_user_agent),
    mailer: EmailSender = Depends(get_email_sender),
    sms: SmsSender = Depends(get_sms_sender),
    db: Session = Depends(get_db),
):
    return flows.request_otp_signin(db, payload.email, payload.phone, payload.purpose, mailer, sms)


@router.post("/otp-signin", response_model=SessionOut)
def otp_signin(
    payload: OtpConfirmIn,
    user_agent: str = Depends(get_user_agent),
    device_id: str | None = Depends(get_device_id),
    db: Session = Depends(get_db),
):
    return flows.confirm_otp_signin(db, payload.request_id, payload.code, user_agent, device_id=device_id)


@router.post("/password-reset", response_model=SessionOut)
def password_reset(
    payload: PasswordResetIn,
    user_agent: str = Depends(get_user_agent),
    device_id: str | None = Depends(get_device_id),
    db: Session = Depends(get_db),
):
    return flows.reset_password(
        db, payload.request_id, payload.code, payload.new_password, user_agent, device_id=device_id
    )
