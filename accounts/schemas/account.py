from datetime import date, datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from accounts.core.security import looks_like_phone, normalize_phone, now_utc, password_problem

Gender = Literal["male", "female", "other"]
BloodGroup = Literal["A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-"]


class ProfileUpdate(BaseModel):
    """Partial account update. Only these attributes may ever change through it."""

    model_config = ConfigDict(extra="forbid")

    first_name: str | None = Field(default=None, max_length=80)
    last_name: str | None = Field(default=None, max_length=80)
    password: str | None = None
    gender: Gender | None = None
    date_of_birth: date | None = None
    blood_group: BloodGroup | None = None
    address: str | None = Field(default=None, max_length=500)
    insurance: str | None = Field(default=None, max_length=200)
    emergency_name: str | None = Field(default=None, max_length=120)
    emergency_number: str | None = None

    @field_validator("password")
    @classmethod
    def check_password(cls, value):
        if value is None:
            raise ValueError("Password cannot be empty")
        problem = password_problem(value)
        if problem:
            raise ValueError(problem)
        return value

    @field_validator("date_of_birth")
    @classmethod
    def check_date_of_birth(cls, value):
        if value is not None and value > now_utc().date():
            raise ValueError("Date of birth cannot be in the future")
        return value

    @field_validator("emergency_number")
    @classmethod
    def check_emergency_number(cls, value):
        if value is None:
            return value
        phone = normalize_phone(value)
        if not looks_like_phone(phone):
            raise ValueError("Invalid phone number")
        return phone


ALLOWED_UPDATE_FIELDS = frozenset(ProfileUpdate.model_fields)


class RegisterIn(BaseModel):
    email: str = Field(..., max_length=254, examples=["user@example.com"])
    phone: str = Field(..., max_length=32, examples=["+573001112233"])
    password: str = Field(..., max_length=128)
    first_name: str | None = Field(default=None, max_length=80)
    last_name: str | None = Field(default=None, max_length=80)


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    phone: str
    phone_verified: bool
    email_verified: bool
    first_name: str | None = None
    last_name: str | None = None
    gender: str | None = None
    date_of_birth: date | None = None
    blood_group: str | None = None
    address: str | None = None
    insurance: str | None = None
    emergency_name: str | None = None
    emergency_number: str | None = None
    has_avatar: bool = False
    created_at: datetime
    updated_at: datetime


class SessionOut(BaseModel):
    id: UUID
    token: str
    user_id: UUID
    user_agent: str
    created_at: datetime
    token_type: str = "device"


class MessageOut(BaseModel):
    ok: bool = True
    detail: str
