from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from accounts.api.deps import get_current_user, require_verification
from accounts.db.session import get_db
from accounts.models.user import User
from accounts.schemas.account import MessageOut
from accounts.schemas.auth import ChallengeOut, OtpConfirmIn
from accounts.services import flows
from accounts.services.delivery import EmailSender, SmsSender, get_email_sender, get_sms_sender

router = APIRouter()


@router.get("/phone", response_model=ChallengeOut)
def request_phone_verification(
    user: User = Depends(get_current_user),
    sms: SmsSender = Depends(get_sms_sender),
    db: Session = Depends(get_db),
):
    return flows.request_phone_verification(db, user, sms)


@router.post("/phone", response_model=MessageOut)
def confirm_phone_verification(
    payload: OtpConfirmIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return flows.confirm_phone_verification(db, user, payload.request_id, payload.code)


@router.get("/email", response_model=ChallengeOut)
def request_email_verification(
    user: User = Depends(require_verification(phone=True)),
    mailer: EmailSender = Depends(get_email_sender),
    db: Session = Depends(get_db),
):
    return flows.request_email_verification(db, user, mailer)


@router.post("/email", response_model=MessageOut)
def confirm_email_verification(
    payload: OtpConfirmIn,
    user: User = Depends(require_verification(phone=True)),
    db: Session = Depends(get_db),
):
    return flows.confirm_email_verification(db, user, payload.request_id, payload.code)
