"""ORM models for Kalkyl (SQLAlchemy 2.0)."""
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import JSON, Date, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from kalkyl.config import STATUS_ACTIVE
from kalkyl.db import Base


# ── CALCULATIONS ─────────────────────────────────────────────────────────────
class CalculationRecord(Base):
    __tablename__ = "calculations"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    project: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(50), nullable=False, default=STATUS_ACTIVE)
    # Display string ("1 234 567 kr"); never parsed back into a number
    amount: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    created: Mapped[date] = mapped_column(Date, nullable=False, default=date.today)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    revision: Mapped[Optional[str]] = mapped_column(String(50))
    content: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
