from datetime import datetime

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class AdminRole(Base):
    """Single source of truth for back-office privileges, keyed by token subject."""

    __tablename__ = "admin_roles"

    subject_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    granted_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    granted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
