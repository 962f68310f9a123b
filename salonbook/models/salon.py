"""
Salon read models.

Salons, their service catalog and their staff are managed elsewhere; the
booking core only reads them to compute durations and prices and to decide
which actors act on behalf of a salon.
"""

from datetime import datetime
from decimal import Decimal
from typing import List

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
import ulid

from ..core.enums import StaffRole
from ..database import Base


class Salon(Base):
    """A salon that accepts bookings."""

    __tablename__ = "salons"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    owner_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    offers_home_service: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    services: Mapped[List["SalonService"]] = relationship(
        "SalonService", back_populates="salon", cascade="all, delete-orphan"
    )
    staff: Mapped[List["SalonStaff"]] = relationship(
        "SalonStaff", back_populates="salon", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Salon(id={self.id}, name={self.name}, active={self.is_active})>"


class SalonService(Base):
    """A bookable service offered by a salon."""

    __tablename__ = "salon_services"
    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_salon_services_price_non_negative"),
        CheckConstraint("duration_minutes >= 15", name="ck_salon_services_min_duration"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    salon_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("salons.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    salon: Mapped["Salon"] = relationship("Salon", back_populates="services")

    def __repr__(self) -> str:
        return (
            f"<SalonService(id={self.id}, salon_id={self.salon_id}, "
            f"price={self.price}, duration={self.duration_minutes})>"
        )


class SalonStaff(Base):
    """Membership of a user in a salon (barber or receptionist)."""

    __tablename__ = "salon_staff"
    __table_args__ = (UniqueConstraint("salon_id", "user_id", name="uq_salon_staff_member"),)

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    salon_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("salons.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=StaffRole.BARBER.value)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    salon: Mapped["Salon"] = relationship("Salon", back_populates="staff")

    def __repr__(self) -> str:
        return f"<SalonStaff(salon_id={self.salon_id}, user_id={self.user_id}, role={self.role})>"
