from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from dateutil.parser import parse as dateutil_parse

from .errors import RowValidationError
from .field_mapper import APPOINTMENT_FIELDS, PATIENT_FIELDS, TREATMENT_FIELDS, CanonicalRecord
from .gateway import ImportGateway
from .logging_config import get_logger
from .models import AppointmentStatus, ImportType, Urgency

logger = get_logger(__name__)

PLACEHOLDER_EMAIL_DOMAIN = "imported.local"
DEFAULT_APPOINTMENT_TIME = "09:00"
DEFAULT_REASON = "Consultation"
# non sovrascrivibili dal file sorgente
APPOINTMENT_DURATION_MINUTES = 60
APPOINTMENT_URGENCY = Urgency.MEDIUM

STATUS_KEYWORDS: dict[AppointmentStatus, frozenset[str]] = {
    AppointmentStatus.CONFIRMED: frozenset({"confirmed", "scheduled", "booked"}),
    AppointmentStatus.COMPLETED: frozenset({"completed", "done", "finished"}),
    AppointmentStatus.CANCELLED: frozenset({"cancelled", "canceled"}),
    AppointmentStatus.PENDING: frozenset({"pending", "waiting", "tentative"}),
}


# =========================
# Helper
# =========================
@dataclass(frozen=True)
class Resolution:
    """Esito di una riga persistita: quale record e quale contatore incrementare."""
    record_type: str
    record_id: str
    counter: str


def split_name(full_name: str) -> tuple[str, str]:
    parts = full_name.split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def synthesize_email(first_name: str, last_name: str | None) -> str:
    """Email segnaposto come chiave di deduplica: nome.cognome@imported.local"""
    slug = f"{first_name}.{last_name or 'patient'}".lower()
    slug = re.sub(r"[^a-z.]", "", slug)
    return f"{slug}@{PLACEHOLDER_EMAIL_DOMAIN}"


def normalize_email(email: str | None) -> str | None:
    if not email:
        return None
    return email.strip().lower() or None


def normalize_status(status: str | None) -> AppointmentStatus:
    if not status:
        return AppointmentStatus.CONFIRMED
    key = status.strip().lower()
    for normalized, keywords in STATUS_KEYWORDS.items():
        if key in keywords:
            return normalized
    return AppointmentStatus.CONFIRMED


# due default diversi in ogni componente: ciò che il testo non contiene non coincide
_DEFAULT_A = datetime(2000, 1, 1, 0, 0)
_DEFAULT_B = datetime(2001, 2, 2, 1, 0)


def _parse_complete(value: str) -> tuple[datetime, bool]:
    """
    Parse con anno, mese e giorno obbligatori ("March" o "5" non sono date).
    Ritorna (datetime, ha_orario). Solleva ValueError/OverflowError.
    """
    a = dateutil_parse(value, default=_DEFAULT_A)
    b = dateutil_parse(value, default=_DEFAULT_B)
    if a.date() != b.date():
        raise ValueError(f"incomplete date: {value!r}")
    return a, a.hour == b.hour


def parse_timestamp(date_str: str, time_str: str | None) -> datetime:
    try:
        parsed, has_time = _parse_complete(date_str)
        if has_time:
            # orario già nella colonna data: non si aggiunge quello di default
            return parsed
        clock = dateutil_parse(time_str or DEFAULT_APPOINTMENT_TIME, default=_DEFAULT_A)
        return datetime.combine(parsed.date(), clock.time(), tzinfo=parsed.tzinfo)
    except (ValueError, OverflowError) as e:
        raise RowValidationError("Invalid date/time format") from e


def parse_date(value: str | None) -> date | None:
    """Data tollerante; None se vuota. Solleva ValueError/OverflowError se illeggibile o incompleta."""
    if not value:
        return None
    return _parse_complete(value)[0].date()


def parse_cost(value: str | None) -> Decimal | None:
    if not value:
        return None
    cleaned = re.sub(r"[^0-9.\-]", "", value)
    try:
        return Decimal(cleaned)
    except InvalidOperation as e:
        raise RowValidationError("Invalid cost") from e


def resolve_patient_reference(patient_name: str, patient_email: str | None, gateway: ImportGateway) -> str:
    """
    Paziente per appuntamenti/trattamenti:
    - lookup per email se presente
    - altrimenti creazione implicita (stesse regole di nome/email del resolver pazienti)
    """
    email = normalize_email(patient_email)
    if email:
        patient_id = gateway.find_patient_id_by_email(email)
        if patient_id:
            return patient_id

    first_name, last_name = split_name(patient_name)
    if not first_name:
        raise RowValidationError("Patient name is required")

    result = gateway.ensure_patient(
        {
            "first_name": first_name,
            "last_name": last_name or None,
            "email": email or synthesize_email(first_name, last_name),
        }
    )
    if result.created:
        logger.info("Patient created implicitly", patient_id=result.id)
    return result.id


# =========================
# Resolver
# =========================
class PatientResolver:
    import_type = ImportType.PATIENTS
    fields = PATIENT_FIELDS
    record_type = "profile"

    def build(self, record: CanonicalRecord) -> dict[str, Any]:
        first_name = record.get("first_name")
        last_name = record.get("last_name")

        # nome unico "Mario Rossi" solo se mancano entrambi i campi separati
        if not first_name and not last_name and record.get("name"):
            first_name, last_name = split_name(record["name"])

        if not first_name:
            raise RowValidationError("Patient name is required")

        email = normalize_email(record.get("email")) or synthesize_email(first_name, last_name)

        date_of_birth = None
        if record.get("date_of_birth"):
            try:
                date_of_birth = parse_date(record["date_of_birth"])
            except (ValueError, OverflowError):
                logger.warning("Unparsable date of birth dropped", value=record["date_of_birth"])

        return {
            "first_name": first_name,
            "last_name": last_name or None,
            "email": email,
            "phone": record.get("phone"),
            "date_of_birth": date_of_birth,
            "address": record.get("address"),
            "insurance_provider": record.get("insurance_provider"),
        }

    def persist(self, draft: dict[str, Any], practitioner_id: str, gateway: ImportGateway) -> Resolution:
        result = gateway.upsert_patient(draft)
        counter = "patients_created" if result.created else "profiles_updated"
        return Resolution(self.record_type, result.id, counter)


class AppointmentResolver:
    import_type = ImportType.APPOINTMENTS
    fields = APPOINTMENT_FIELDS
    record_type = "appointment"

    def build(self, record: CanonicalRecord) -> dict[str, Any]:
        if not record.get("patient_name") or not record.get("date"):
            raise RowValidationError("Patient name and date are required")

        return {
            "patient_name": record["patient_name"],
            "patient_email": normalize_email(record.get("patient_email")),
            "appointment_date": parse_timestamp(record["date"], record.get("time")),
            "reason": record.get("reason") or DEFAULT_REASON,
            "status": normalize_status(record.get("status")),
            "notes": record.get("notes"),
        }

    def persist(self, draft: dict[str, Any], practitioner_id: str, gateway: ImportGateway) -> Resolution:
        patient_id = resolve_patient_reference(draft["patient_name"], draft["patient_email"], gateway)
        appointment_id = gateway.create_appointment(
            {
                "patient_id": patient_id,
                "practitioner_id": practitioner_id,
                "appointment_date": draft["appointment_date"],
                "duration_minutes": APPOINTMENT_DURATION_MINUTES,
                "urgency": APPOINTMENT_URGENCY,
                "status": draft["status"],
                "reason": draft["reason"],
                "notes": draft["notes"],
                "patient_name": draft["patient_name"],
            }
        )
        return Resolution(self.record_type, appointment_id, "appointments_created")


class TreatmentResolver:
    import_type = ImportType.TREATMENTS
    fields = TREATMENT_FIELDS
    record_type = "treatment"

    def build(self, record: CanonicalRecord) -> dict[str, Any]:
        if not record.get("patient_name") or not record.get("procedure"):
            raise RowValidationError("Patient name and procedure are required")

        try:
            treatment_date = parse_date(record.get("date"))
        except (ValueError, OverflowError) as e:
            raise RowValidationError("Invalid treatment date") from e

        return {
            "patient_name": record["patient_name"],
            "patient_email": normalize_email(record.get("patient_email")),
            "procedure": record["procedure"],
            "cost": parse_cost(record.get("cost")),
            "treatment_date": treatment_date,
            "tooth": record.get("tooth"),
            "notes": record.get("notes"),
        }

    def persist(self, draft: dict[str, Any], practitioner_id: str, gateway: ImportGateway) -> Resolution:
        patient_id = resolve_patient_reference(draft["patient_name"], draft["patient_email"], gateway)
        treatment_id = gateway.create_treatment(
            {
                "patient_id": patient_id,
                "practitioner_id": practitioner_id,
                "procedure": draft["procedure"],
                "cost": draft["cost"],
                "treatment_date": draft["treatment_date"],
                "tooth": draft["tooth"],
                "notes": draft["notes"],
            }
        )
        return Resolution(self.record_type, treatment_id, "treatments_created")


RESOLVERS = {
    r.import_type: r for r in (PatientResolver(), AppointmentResolver(), TreatmentResolver())
}
