from fastapi import APIRouter, Body, Depends, Header
from sqlalchemy.orm import Session

from accounts.api.deps import get_user_agent, require_verification
from accounts.db.session import get_db
from accounts.models.user import User
from accounts.schemas.account import AccountOut, MessageOut, RegisterIn, SessionOut
from accounts.services import flows

router = APIRouter()


@router.post("", response_model=SessionOut, status_code=201)
def register(payload: RegisterIn, user_agent: str = Depends(get_user_agent), db: Session = Depends(get_db)):
    return flows.register(db, payload, user_agent)


@router.get("", response_model=AccountOut)
def get_account(
    user: User = Depends(require_verification(phone=True, email=True)),
    db: Session = Depends(get_db),
):
    return flows.fetch_account(db, user)


@router.patch("", response_model=AccountOut)
def update_account(
    fields: dict = Body(...),
    user: User = Depends(require_verification(phone=True)),
    db: Session = Depends(get_db),
):
    return flows.update_profile(db, user, fields)


@router.delete("", response_model=MessageOut)
def delete_account(
    user: User = Depends(require_verification(phone=True)),
    db: Session = Depends(get_db),
):
    return flows.delete_account(db, user)


@router.post("/avatar", response_model=MessageOut)
def upload_avatar(
    blob: bytes = Body(..., media_type="application/octet-stream"),
    content_type: str | None = Header(default=None, alias="content-type"),
    user: User = Depends(require_verification(phone=True, email=True)),
    db: Session = Depends(get_db),
):
    return flows.upload_avatar(db, user, blob, content_type)
