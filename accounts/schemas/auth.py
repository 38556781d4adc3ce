from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class ContactIn(BaseModel):
    email: str | None = Field(default=None, max_length=254, examples=["user@example.com"])
    phone: str | None = Field(default=None, max_length=32, examples=["+573001112233"])

    @model_validator(mode="after")
    def validate_contact(self):
        if not self.email and not self.phone:
            raise ValueError("Provide email or phone")
        return self


class LoginIn(ContactIn):
    password: str = Field(..., min_length=1, max_length=128)


class OtpSigninRequestIn(ContactIn):
    purpose: Literal["login", "password_reset"] = "login"


class OtpConfirmIn(BaseModel):
    request_id: str = Field(..., max_length=64)
    code: str = Field(..., max_length=16)


class PasswordResetIn(OtpConfirmIn):
    new_password: str = Field(..., max_length=128)


class ChallengeOut(BaseModel):
    """What the caller gets back for a challenge: never the secret."""

    id: UUID
    purpose: str
    created_at: datetime
    expires_at: datetime | None = None
    dev_code: str | None = None
