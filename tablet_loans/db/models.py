import enum
from datetime import date, datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    String,
    Text,
    Integer,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Enum,
    Index,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ──────────────────────────── Enums ────────────────────────────


class DeviceStatus(str, enum.Enum):
    SERVICEABLE = "Serviceable"
    UNSERVICEABLE = "Unserviceable"
    LOST = "Lost"


class DeviceCondition(str, enum.Enum):
    EXCELLENT = "Excellent"
    GOOD = "Good"
    FAIR = "Fair"
    POOR = "Poor"
    DEFECTIVE = "Defective"


class HistoryEventType(str, enum.Enum):
    CREATED = "created"
    BORROWED = "borrowed"
    RETURNED = "returned"
    LOST = "lost"
    STATUS_CHANGE = "status_change"
    CONDITION_CHANGE = "condition_change"


# One shared type so PostgreSQL creates the enum once
condition_enum = Enum(DeviceCondition, name="device_condition")


# ──────────────────────────── Models ────────────────────────────


class Admin(Base):
    __tablename__ = "admins"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4())
    )
    username: Mapped[str] = mapped_column(String(150), unique=True, nullable=False, index=True)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    is_built_in: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )


class Borrower(Base):
    __tablename__ = "borrowers"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4())
    )
    student_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    middle_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    suffix_name: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Academic
    college_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    program_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    program_name: Mapped[str] = mapped_column(String(255), nullable=False)
    major_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    year_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Enrollment
    academic_year: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    campus: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    student_status: Mapped[str] = mapped_column(String(50), nullable=False, default="Regular")

    # Personal / contact, used for agreement documents
    gender: Mapped[str] = mapped_column(String(50), nullable=False, default="Undisclosed")
    date_of_birth: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    mobile_no: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    residence_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Guardian
    guardian_full_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    guardian_mobile_no: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    guardian_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    guardian_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )


class Device(Base):
    __tablename__ = "devices"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4())
    )
    brand: Mapped[str] = mapped_column(String(100), nullable=False)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    color: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    serial_number: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    imei: Mapped[Optional[str]] = mapped_column(String(50), unique=True, nullable=True)
    status: Mapped[DeviceStatus] = mapped_column(
        Enum(DeviceStatus, name="device_status"),
        nullable=False,
        default=DeviceStatus.SERVICEABLE,
        index=True,
    )
    condition: Mapped[DeviceCondition] = mapped_column(
        condition_enum,
        nullable=False,
        default=DeviceCondition.GOOD,
    )
    has_charger: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    has_cable: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    has_box: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )


class Loan(Base):
    __tablename__ = "loans"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4())
    )
    device_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("devices.id"), nullable=False, index=True
    )
    borrower_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("borrowers.id"), nullable=False, index=True
    )
    date_borrowed: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    expected_return_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Accessories handed over with the device
    with_charger: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    with_cable: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    with_box: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    condition: Mapped[DeviceCondition] = mapped_column(
        condition_enum, nullable=False
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Closure fields, written once by return or loss
    is_returned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    return_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    return_condition: Mapped[Optional[DeviceCondition]] = mapped_column(
        condition_enum, nullable=True
    )
    return_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    device: Mapped["Device"] = relationship("Device", lazy="selectin")
    borrower: Mapped["Borrower"] = relationship("Borrower", lazy="selectin")

    __table_args__ = (
        # At most one open loan per device
        Index(
            "uq_loans_open_per_device",
            "device_id",
            unique=True,
            postgresql_where=text("NOT is_returned"),
            sqlite_where=text("NOT is_returned"),
        ),
        Index("ix_loans_borrower_returned", "borrower_id", "is_returned"),
    )

    @property
    def accessories(self) -> dict:
        return {
            "charger": self.with_charger,
            "cable": self.with_cable,
            "box": self.with_box,
        }


class LossReport(Base):
    __tablename__ = "loss_reports"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4())
    )
    device_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("devices.id"), nullable=False, index=True
    )
    borrower_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("borrowers.id"), nullable=False
    )
    loan_id: Mapped[Optional[str]] = mapped_column(
        UUID(as_uuid=False), ForeignKey("loans.id"), nullable=True
    )
    date_reported: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    document_path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )


class HistoryEvent(Base):
    __tablename__ = "device_history"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4())
    )
    device_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("devices.id"), nullable=False, index=True
    )
    borrower_id: Mapped[Optional[str]] = mapped_column(
        UUID(as_uuid=False), ForeignKey("borrowers.id"), nullable=True
    )
    loan_id: Mapped[Optional[str]] = mapped_column(
        UUID(as_uuid=False), ForeignKey("loans.id"), nullable=True
    )
    event_type: Mapped[HistoryEventType] = mapped_column(
        Enum(HistoryEventType, name="history_event_type"), nullable=False
    )
    date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    condition: Mapped[Optional[DeviceCondition]] = mapped_column(
        condition_enum, nullable=True
    )
    with_charger: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    with_cable: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    with_box: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_device_history_device_date", "device_id", "date"),
    )

    @property
    def accessories(self) -> Optional[dict]:
        if self.with_charger is None:
            return None
        return {
            "charger": self.with_charger,
            "cable": self.with_cable,
            "box": self.with_box,
        }


class BlacklistedToken(Base):
    __tablename__ = "blacklisted_tokens"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4())
    )
    jti: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
