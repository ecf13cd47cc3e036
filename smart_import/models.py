from __future__ import annotations

import enum
import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import JSON, Date, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


def new_uuid() -> str:
    return str(uuid.uuid4())


class Role(enum.Enum):
    PATIENT = "patient"
    PRACTITIONER = "practitioner"


class AppointmentStatus(enum.Enum):
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    PENDING = "pending"


class Urgency(enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ImportType(enum.Enum):
    PATIENTS = "patients"
    APPOINTMENTS = "appointments"
    TREATMENTS = "treatments"


class JobStatus(enum.Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ItemStatus(enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"


class Profile(Base):
    __tablename__ = "profiles"
    __table_args__ = (
        # chiave di deduplica per l'import: stessa email + stesso ruolo = stessa persona
        UniqueConstraint("email", "role", name="uq_profile_email_role"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    # i pazienti importati non hanno (ancora) un utente di login
    user_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    role: Mapped[Role] = mapped_column(Enum(Role), nullable=False)

    first_name: Mapped[str] = mapped_column(String(80), nullable=False)
    last_name: Mapped[str | None] = mapped_column(String(80), nullable=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    insurance_provider: Mapped[str | None] = mapped_column(String(120), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"Profile({self.first_name} {self.last_name or ''}, {self.role.value})"


class Practitioner(Base):
    __tablename__ = "practitioners"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    profile_id: Mapped[str] = mapped_column(ForeignKey("profiles.id"), nullable=False, unique=True)
    specialty: Mapped[str | None] = mapped_column(String(120), nullable=True)

    profile: Mapped["Profile"] = relationship()


class Appointment(Base):
    __tablename__ = "appointments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)

    patient_id: Mapped[str] = mapped_column(ForeignKey("profiles.id"), nullable=False)
    practitioner_id: Mapped[str] = mapped_column(ForeignKey("practitioners.id"), nullable=False)

    appointment_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    urgency: Mapped[Urgency] = mapped_column(Enum(Urgency), default=Urgency.MEDIUM, nullable=False)
    status: Mapped[AppointmentStatus] = mapped_column(
        Enum(AppointmentStatus), default=AppointmentStatus.CONFIRMED, nullable=False
    )

    reason: Mapped[str] = mapped_column(String(255), nullable=False, default="Consultation")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    # nome così come compare nel file sorgente
    patient_name: Mapped[str | None] = mapped_column(String(160), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class Treatment(Base):
    __tablename__ = "treatments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)

    patient_id: Mapped[str] = mapped_column(ForeignKey("profiles.id"), nullable=False)
    practitioner_id: Mapped[str] = mapped_column(ForeignKey("practitioners.id"), nullable=False)

    procedure: Mapped[str] = mapped_column(String(255), nullable=False)
    cost: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    treatment_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    tooth: Mapped[str | None] = mapped_column(String(20), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class ImportJob(Base):
    __tablename__ = "import_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    practitioner_id: Mapped[str] = mapped_column(ForeignKey("practitioners.id"), nullable=False)

    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    import_type: Mapped[ImportType] = mapped_column(Enum(ImportType), nullable=False)
    field_mapping: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    # contatori: scritti solo a fine job, derivati dagli item
    total_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    successful_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[JobStatus] = mapped_column(Enum(JobStatus), default=JobStatus.PROCESSING, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    practitioner: Mapped["Practitioner"] = relationship()
    items: Mapped[list["ImportJobItem"]] = relationship(
        back_populates="job", cascade="all, delete-orphan", order_by="ImportJobItem.row_number"
    )


class ImportJobItem(Base):
    """Audit append-only: un item per ogni riga del file sorgente."""
    __tablename__ = "import_job_items"
    __table_args__ = (
        UniqueConstraint("job_id", "row_number", name="uq_item_job_row"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(ForeignKey("import_jobs.id"), nullable=False)
    row_number: Mapped[int] = mapped_column(Integer, nullable=False)  # 1-based, header escluso

    raw_data: Mapped[dict] = mapped_column(JSON, nullable=False)
    status: Mapped[ItemStatus] = mapped_column(Enum(ItemStatus), nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_record_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_record_type: Mapped[str | None] = mapped_column(String(40), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    job: Mapped["ImportJob"] = relationship(back_populates="items")
