from __future__ import annotations

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.db import Base


class UserStatus(Base):
    __tablename__ = "user_status"

    user_id: Mapped[str] = mapped_column(String, primary_key=True)
    online: Mapped[bool] = mapped_column(Boolean, default=False)
    updated_at: Mapped[str | None] = mapped_column(String, nullable=True)
