"""
Database Models

SQLAlchemy ORM models for the multi-tenant dental scheduling system.

Scheduling tables carry a plain cabinet_id column rather than a foreign key:
a cabinet may keep its scheduling data in a dedicated database that has no
cabinets table of its own.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, JSON,
    Numeric, String, Text, UniqueConstraint, Enum as SQLEnum, text
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=text("CURRENT_TIMESTAMP"),
        nullable=False
    )


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


# Statuses that occupy a practitioner's time
ACTIVE_STATUSES = (
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.IN_PROGRESS,
)

# Statuses from which an appointment may be cancelled or moved
MODIFIABLE_STATUSES = (
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.CONFIRMED,
)


class Cabinet(Base, TimestampMixin):
    """
    Cabinet model (Tenant).

    Each cabinet is an isolated clinic. Its scheduling data lives either in
    the shared database (scoped by cabinet_id) or in the database named by
    database_url.
    """

    __tablename__ = "cabinets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timezone: Mapped[str] = mapped_column(String(50), default="Europe/Paris")
    business_hours: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    database_url: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
        doc="Dedicated scheduling database; NULL means the shared database"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Cabinet(id={self.id}, name='{self.name}', active={self.is_active})>"


class Practitioner(Base, TimestampMixin):
    """
    Practitioner model (dentists, hygienists, orthodontists...).

    schedule maps lowercase weekday names to {"open": "HH:MM", "close": "HH:MM"};
    a weekday mapped to null marks a day off.
    """

    __tablename__ = "practitioners"
    __table_args__ = (
        Index("idx_practitioner_cabinet", "cabinet_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    cabinet_id: Mapped[str] = mapped_column(String(36), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    specialization: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    schedule: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @property
    def full_name(self) -> str:
        """Return full name with title if exists."""
        if self.title:
            return f"{self.title} {self.first_name} {self.last_name}"
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<Practitioner(id={self.id}, name='{self.full_name}')>"


class Service(Base, TimestampMixin):
    """Service model (cleaning, filling, consultation...)."""

    __tablename__ = "services"
    __table_args__ = (
        Index("idx_service_cabinet", "cabinet_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    cabinet_id: Mapped[str] = mapped_column(String(36), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Service(id={self.id}, name='{self.name}', duration={self.duration_minutes})>"


class Patient(Base, TimestampMixin):
    """
    Patient model.

    Email is the natural key for conversational lookups, unique per cabinet.
    """

    __tablename__ = "patients"
    __table_args__ = (
        UniqueConstraint("cabinet_id", "email", name="uq_patient_cabinet_email"),
        Index("idx_patient_cabinet", "cabinet_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    cabinet_id: Mapped[str] = mapped_column(String(36), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    @property
    def full_name(self) -> str:
        """Return full name."""
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<Patient(id={self.id}, email='{self.email}')>"


class Appointment(Base, TimestampMixin):
    """
    Appointment model.

    start_utc/end_utc are stored as naive UTC. scheduled_at is the naive
    wall-clock time in the appointment's timezone. Rows are never deleted,
    only moved to a terminal status.
    """

    __tablename__ = "appointments"
    __table_args__ = (
        CheckConstraint("end_utc > start_utc", name="ck_appointment_interval"),
        CheckConstraint(
            "duration_minutes BETWEEN 15 AND 480",
            name="ck_appointment_duration",
        ),
        Index("idx_appointment_practitioner_start", "practitioner_id", "start_utc"),
        Index("idx_appointment_patient", "patient_id"),
        Index("idx_appointment_status", "cabinet_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    cabinet_id: Mapped[str] = mapped_column(String(36), nullable=False)
    patient_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("patients.id", ondelete="RESTRICT"),
        nullable=False
    )
    practitioner_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("practitioners.id", ondelete="RESTRICT"),
        nullable=False
    )
    service_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("services.id", ondelete="SET NULL"),
        nullable=True
    )
    service_type: Mapped[str] = mapped_column(String(100), nullable=False)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    start_utc: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_utc: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    timezone: Mapped[str] = mapped_column(String(50), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[AppointmentStatus] = mapped_column(
        SQLEnum(
            AppointmentStatus,
            name="appointment_status",
            native_enum=False,
            length=20,
            values_callable=lambda enum: [member.value for member in enum],
        ),
        default=AppointmentStatus.SCHEDULED,
        nullable=False
    )
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    updated_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Appointment(id={self.id}, practitioner_id={self.practitioner_id}, "
            f"start={self.start_utc}, status={self.status.value}, v={self.version})>"
        )
