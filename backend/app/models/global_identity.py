from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base


class GlobalPersonMixin:
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id"), unique=True, index=True, nullable=True
    )
    # Normalized hints the identity was created from; matched before any profile exists.
    match_phone: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    match_email: Mapped[str | None] = mapped_column(String(320), nullable=True, index=True)
    match_date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class GlobalDoctor(GlobalPersonMixin, Base):
    __tablename__ = "global_doctors"

    user = relationship("User", lazy="joined")
    clinic_profiles = relationship("ClinicDoctor", back_populates="global_person")


class GlobalPatient(GlobalPersonMixin, Base):
    __tablename__ = "global_patients"

    user = relationship("User", lazy="joined")
    clinic_profiles = relationship("ClinicPatient", back_populates="global_person")
