import uuid
from datetime import date, datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from accounts.core.security import now_utc
from accounts.db.base import Base

class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(sa.Text, nullable=False)
    phone: Mapped[str] = mapped_column(sa.Text, nullable=False)
    password_hash: Mapped[str] = mapped_column(sa.Text, nullable=False)

    phone_verified: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    email_verified: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)

    first_name: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    last_name: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    gender: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column(sa.Date, nullable=True)
    blood_group: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    address: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    insurance: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    emergency_name: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    emergency_number: Mapped[str | None] = mapped_column(sa.Text, nullable=True)

    avatar: Mapped[bytes | None] = mapped_column(sa.LargeBinary, nullable=True, deferred=True)
    avatar_content_type: Mapped[str | None] = mapped_column(sa.Text, nullable=True)

    deleted: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False, default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False, default=now_utc, onupdate=now_utc)

    __table_args__ = (
        # one live account per email / phone; soft-deleted rows keep theirs
        sa.Index("uq_users_email_live", "email", unique=True,
                 postgresql_where=sa.text("NOT deleted"), sqlite_where=sa.text("NOT deleted")),
        sa.Index("uq_users_phone_live", "phone", unique=True,
                 postgresql_where=sa.text("NOT deleted"), sqlite_where=sa.text("NOT deleted")),
    )

    sessions = relationship(
        "Client",
        back_populates="user",
        order_by="Client.created_at",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def has_avatar(self) -> bool:
        return self.avatar_content_type is not None

    @property
    def active_sessions(self) -> list:
        return [client for client in self.sessions if not client.deleted]
