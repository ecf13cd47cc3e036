from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterator, Protocol

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .db import SessionLocal, db_session
from .errors import PersistenceError
from .logging_config import get_logger
from .models import (
    Appointment,
    ImportJob,
    ImportJobItem,
    ImportType,
    ItemStatus,
    JobStatus,
    Practitioner,
    Profile,
    Role,
    Treatment,
    new_uuid,
)

logger = get_logger(__name__)

# colonne del profilo sovrascritte da un import paziente (last-write-wins)
PATIENT_COLUMNS = (
    "first_name",
    "last_name",
    "phone",
    "date_of_birth",
    "address",
    "insurance_provider",
)


# =========================
# Helper / DTO
# =========================
@dataclass(frozen=True)
class ProfileRef:
    id: str
    role: Role


@dataclass(frozen=True)
class UpsertResult:
    id: str
    created: bool


class ImportGateway(Protocol):
    """Tutto ciò che la pipeline di import legge o scrive sullo store."""

    def find_profile_by_user_id(self, user_id: str) -> ProfileRef | None: ...
    def find_practitioner_id(self, profile_id: str) -> str | None: ...
    def find_patient_id_by_email(self, email: str) -> str | None: ...
    def upsert_patient(self, values: dict[str, Any]) -> UpsertResult: ...
    def ensure_patient(self, values: dict[str, Any]) -> UpsertResult: ...
    def create_appointment(self, values: dict[str, Any]) -> str: ...
    def create_treatment(self, values: dict[str, Any]) -> str: ...
    def create_job(
        self,
        practitioner_id: str,
        filename: str,
        file_size: int,
        import_type: ImportType,
        total_rows: int,
        field_mapping: dict[str, str],
    ) -> str: ...
    def add_job_item(
        self,
        job_id: str,
        row_number: int,
        raw_data: dict[str, str],
        status: ItemStatus,
        error_message: str | None = None,
        created_record_id: str | None = None,
        created_record_type: str | None = None,
    ) -> None: ...
    def finish_job(self, job_id: str, status: JobStatus, successful: int, failed: int, processed: int) -> None: ...
    def get_job(self, job_id: str) -> dict | None: ...


def _insert_for(session: Session):
    # upsert "ON CONFLICT" disponibile su SQLite e PostgreSQL
    if session.get_bind().dialect.name == "postgresql":
        return postgresql.insert
    return sqlite.insert


class SqlGateway:
    """
    Implementazione SQLAlchemy del gateway.
    Ogni metodo è una transazione a sé (un round-trip logico verso il DB).
    """

    def __init__(self, session_factory: sessionmaker | None = None) -> None:
        self.session_factory = session_factory or SessionLocal

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with db_session(self.session_factory) as s:
                yield s
        except SQLAlchemyError as e:
            logger.error("Database error", error=str(e))
            raise PersistenceError(f"Database error: {e.__class__.__name__}") from e

    # =========================
    # Auth
    # =========================
    def find_profile_by_user_id(self, user_id: str) -> ProfileRef | None:
        with self._session() as s:
            row = s.execute(select(Profile.id, Profile.role).where(Profile.user_id == user_id)).first()
            return ProfileRef(id=row.id, role=row.role) if row else None

    def find_practitioner_id(self, profile_id: str) -> str | None:
        with self._session() as s:
            return s.scalar(select(Practitioner.id).where(Practitioner.profile_id == profile_id))

    # =========================
    # Pazienti
    # =========================
    def find_patient_id_by_email(self, email: str) -> str | None:
        with self._session() as s:
            return s.scalar(select(Profile.id).where(Profile.email == email, Profile.role == Role.PATIENT))

    def _upsert_patient(self, values: dict[str, Any], update_columns: tuple[str, ...]) -> UpsertResult:
        now = datetime.utcnow()
        with self._session() as s:
            existing_id = s.scalar(
                select(Profile.id).where(Profile.email == values["email"], Profile.role == Role.PATIENT)
            )

            insert = _insert_for(s)
            stmt = insert(Profile).values(
                id=new_uuid(),
                role=Role.PATIENT,
                created_at=now,
                updated_at=now,
                **values,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[Profile.email, Profile.role],
                set_={**{c: stmt.excluded[c] for c in update_columns}, "updated_at": now},
            ).returning(Profile.id)

            profile_id = s.execute(stmt).scalar_one()
            return UpsertResult(id=profile_id, created=existing_id is None)

    def upsert_patient(self, values: dict[str, Any]) -> UpsertResult:
        """Crea o sovrascrive il paziente con la stessa email (niente merge)."""
        return self._upsert_patient(values, PATIENT_COLUMNS)

    def ensure_patient(self, values: dict[str, Any]) -> UpsertResult:
        """Crea il paziente se manca; se esiste già aggiorna solo updated_at (nessun campo anagrafico)."""
        return self._upsert_patient(values, ())

    # =========================
    # Appuntamenti / trattamenti
    # =========================
    def create_appointment(self, values: dict[str, Any]) -> str:
        with self._session() as s:
            app = Appointment(**values)
            s.add(app)
            s.flush()
            return app.id

    def create_treatment(self, values: dict[str, Any]) -> str:
        with self._session() as s:
            t = Treatment(**values)
            s.add(t)
            s.flush()
            return t.id

    # =========================
    # Job / audit
    # =========================
    def create_job(
        self,
        practitioner_id: str,
        filename: str,
        file_size: int,
        import_type: ImportType,
        total_rows: int,
        field_mapping: dict[str, str],
    ) -> str:
        with self._session() as s:
            job = ImportJob(
                practitioner_id=practitioner_id,
                filename=filename,
                file_size=file_size,
                import_type=import_type,
                total_rows=total_rows,
                field_mapping=field_mapping,
                status=JobStatus.PROCESSING,
            )
            s.add(job)
            s.flush()
            return job.id

    def add_job_item(
        self,
        job_id: str,
        row_number: int,
        raw_data: dict[str, str],
        status: ItemStatus,
        error_message: str | None = None,
        created_record_id: str | None = None,
        created_record_type: str | None = None,
    ) -> None:
        with self._session() as s:
            s.add(
                ImportJobItem(
                    job_id=job_id,
                    row_number=row_number,
                    raw_data=raw_data,
                    status=status,
                    error_message=error_message,
                    created_record_id=created_record_id,
                    created_record_type=created_record_type,
                )
            )

    def finish_job(self, job_id: str, status: JobStatus, successful: int, failed: int, processed: int) -> None:
        with self._session() as s:
            job = s.get(ImportJob, job_id)
            if job is None:
                raise PersistenceError(f"Import job {job_id} not found")
            job.status = status
            job.successful_rows = successful
            job.failed_rows = failed
            job.processed_rows = processed
            job.completed_at = datetime.utcnow()

    def get_job(self, job_id: str) -> dict | None:
        """Versione 'flat' del job con i suoi item (dict serializzabili)."""
        with self._session() as s:
            job = s.get(ImportJob, job_id)
            if job is None:
                return None
            return {
                "id": job.id,
                "practitioner_id": job.practitioner_id,
                "filename": job.filename,
                "file_size": job.file_size,
                "import_type": job.import_type.value,
                "field_mapping": job.field_mapping,
                "status": job.status.value,
                "total_rows": job.total_rows,
                "processed_rows": job.processed_rows,
                "successful_rows": job.successful_rows,
                "failed_rows": job.failed_rows,
                "created_at": job.created_at.isoformat(),
                "completed_at": job.completed_at.isoformat() if job.completed_at else None,
                "items": [
                    {
                        "row_number": it.row_number,
                        "status": it.status.value,
                        "raw_data": it.raw_data,
                        "error_message": it.error_message,
                        "created_record_id": it.created_record_id,
                        "created_record_type": it.created_record_type,
                    }
                    for it in job.items
                ],
            }
