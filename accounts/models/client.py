import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from accounts.core.security import now_utc
from accounts.db.base import Base

class Client(Base):
    """One signed-in device. ``id`` doubles as the device id the caller presents."""

    __tablename__ = "clients"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token_hash: Mapped[str] = mapped_column(sa.Text, nullable=False)
    user_agent: Mapped[str] = mapped_column(sa.Text, nullable=False)
    deleted: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    revoked_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    revoked_reason: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False, default=now_utc)
    last_used_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)

    __table_args__ = (
        sa.Index("ix_clients_user_live", "user_id", "deleted", "created_at"),
    )

    user = relationship("User", back_populates="sessions")
