from __future__ import annotations

from datetime import datetime

import pytest
from sqlalchemy import func, select

from smart_import.db import db_session
from smart_import.errors import PersistenceError, RequestValidationError
from smart_import.gateway import SqlGateway
from smart_import.models import Appointment, AppointmentStatus, ImportJob, Profile, Role, Treatment, Urgency
from smart_import.orchestrator import ImportOrchestrator, RowOutcome, summarize

PATIENTS_CSV = "name,email,dob\nJohn Doe,,2025-03-01\nJane Smith,jane@x.com,\n"


def _count(session_factory, model, *where) -> int:
    with db_session(session_factory) as s:
        stmt = select(func.count()).select_from(model)
        if where:
            stmt = stmt.where(*where)
        return s.scalar(stmt)


class TestPatientImport:

    def test_end_to_end_example(self, orchestrator, gateway, practitioner_id):
        summary = orchestrator.run(practitioner_id, PATIENTS_CSV, "patients", {}, "export.csv")
        result = summary.to_dict()

        assert result["imported"] == 2
        assert result["patients_created"] == 2
        assert result["errors"] == []
        assert result["status"] == "completed"
        assert gateway.find_patient_id_by_email("john.doe@imported.local") is not None
        assert gateway.find_patient_id_by_email("jane@x.com") is not None

    def test_resubmission_updates_instead_of_duplicating(self, orchestrator, session_factory, practitioner_id):
        orchestrator.run(practitioner_id, "name,phone\nJohn Doe,111\n", "patients")
        second = orchestrator.run(practitioner_id, "name,phone\nJohn Doe,222\n", "patients").to_dict()

        assert second["imported"] == 1
        assert second["patients_created"] == 0
        assert second["profiles_updated"] == 1
        assert _count(session_factory, Profile, Profile.role == Role.PATIENT) == 1
        with db_session(session_factory) as s:
            phone = s.scalar(select(Profile.phone).where(Profile.email == "john.doe@imported.local"))
        assert phone == "222"

    def test_bad_row_does_not_abort_batch(self, orchestrator, gateway, practitioner_id):
        lines = ["name,email"]
        for i in range(1, 11):
            lines.append(f",p{i}@x.com" if i == 5 else f"Patient{i} Test,p{i}@x.com")
        summary = orchestrator.run(practitioner_id, "\n".join(lines), "patients")

        assert summary.imported == 9
        assert summary.errors == ["Row 5: Patient name is required"]

        job = gateway.get_job(summary.job_id)
        assert len(job["items"]) == 10
        assert [it["status"] for it in job["items"]].count("success") == 9
        failed = [it for it in job["items"] if it["status"] == "failed"]
        assert failed[0]["row_number"] == 5
        assert failed[0]["raw_data"] == {"name": "", "email": "p5@x.com"}
        assert job["successful_rows"] == 9
        assert job["failed_rows"] == 1
        assert job["processed_rows"] == job["successful_rows"] + job["failed_rows"] == 10
        assert job["status"] == "completed"

    def test_last_name_without_first_name_fails_the_row(self, orchestrator, gateway, practitioner_id):
        summary = orchestrator.run(practitioner_id, "Last Name,First Name,Email\nRossi,,r@x.com\n", "patients")
        assert summary.imported == 0
        assert summary.errors == ["Row 1: Patient name is required"]
        assert gateway.find_patient_id_by_email("r@x.com") is None

    def test_success_items_reference_created_record(self, orchestrator, gateway, practitioner_id):
        summary = orchestrator.run(practitioner_id, PATIENTS_CSV, "patients")
        items = gateway.get_job(summary.job_id)["items"]
        assert all(it["created_record_type"] == "profile" for it in items)
        assert items[1]["created_record_id"] == gateway.find_patient_id_by_email("jane@x.com")


class TestAppointmentImport:

    def test_invalid_date_fails_only_that_row(self, orchestrator, session_factory, practitioner_id):
        csv = (
            "Patient Name,Email,Date,Time,Status\n"
            "John Doe,john@x.com,2025-03-01,10:00,Scheduled\n"
            "Jane Smith,jane@x.com,garbage,,booked\n"
            "Bob Brown,,2025-03-02,,Done\n"
        )
        summary = orchestrator.run(practitioner_id, csv, "appointments")

        assert summary.imported == 2
        assert summary.to_dict()["appointments_created"] == 2
        assert len(summary.errors) == 1
        assert summary.errors[0].startswith("Row 2:")
        assert "Invalid date/time format" in summary.errors[0]
        assert _count(session_factory, Appointment) == 2

    def test_fixed_duration_urgency_and_normalized_status(self, orchestrator, session_factory, practitioner_id):
        orchestrator.run(practitioner_id, "name,date,status\nBob Brown,2025-03-02,Done\n", "appointments")
        with db_session(session_factory) as s:
            app = s.scalars(select(Appointment)).one()
            assert app.duration_minutes == 60
            assert app.urgency is Urgency.MEDIUM
            assert app.status is AppointmentStatus.COMPLETED
            assert app.reason == "Consultation"
            assert app.practitioner_id == practitioner_id
            assert app.appointment_date.hour == 9

    def test_existing_patient_is_reused_by_email(self, orchestrator, gateway, session_factory, practitioner_id):
        orchestrator.run(practitioner_id, "name,email\nJane Smith,jane@x.com\n", "patients")
        patient_id = gateway.find_patient_id_by_email("jane@x.com")

        orchestrator.run(practitioner_id, "name,email,date\nJ. Smith,JANE@x.com,2025-04-01\n", "appointments")

        with db_session(session_factory) as s:
            assert s.scalar(select(Appointment.patient_id)) == patient_id
        assert _count(session_factory, Profile, Profile.role == Role.PATIENT) == 1

    def test_time_in_date_column_is_kept(self, orchestrator, session_factory, practitioner_id):
        orchestrator.run(practitioner_id, "name,date\nBob Brown,2025-03-02 16:45\n", "appointments")
        with db_session(session_factory) as s:
            assert s.scalar(select(Appointment.appointment_date)) == datetime(2025, 3, 2, 16, 45)

    def test_patient_created_implicitly(self, orchestrator, gateway, practitioner_id):
        orchestrator.run(practitioner_id, "name,date\nBob Brown,2025-03-02\nBob Brown,2025-03-09\n", "appointments")
        assert gateway.find_patient_id_by_email("bob.brown@imported.local") is not None


class TestTreatmentImport:

    def test_treatments_are_persisted(self, orchestrator, session_factory, practitioner_id):
        csv = "Patient Name,Procedure,Fee,Treatment Date,Tooth\nJohn Doe,Filling,$80.00,2025-02-10,14\n"
        result = orchestrator.run(practitioner_id, csv, "treatments").to_dict()

        assert result["imported"] == 1
        assert result["treatments_created"] == 1
        with db_session(session_factory) as s:
            t = s.scalars(select(Treatment)).one()
            assert t.procedure == "Filling"
            assert t.tooth == "14"
            assert str(t.cost) == "80.00"


class TestJobLifecycle:

    def test_all_rows_failed_marks_job_failed(self, orchestrator, gateway, practitioner_id):
        summary = orchestrator.run(practitioner_id, "name,email\n,a@x.com\n,b@x.com\n", "patients")
        assert summary.imported == 0
        assert len(summary.errors) == 2
        assert gateway.get_job(summary.job_id)["status"] == "failed"

    def test_header_only_file_completes_empty(self, orchestrator, gateway, practitioner_id):
        summary = orchestrator.run(practitioner_id, "name,email\n", "patients")
        job = gateway.get_job(summary.job_id)
        assert job["status"] == "completed"
        assert job["total_rows"] == 0
        assert job["items"] == []

    def test_job_records_request_metadata(self, orchestrator, gateway, practitioner_id):
        summary = orchestrator.run(practitioner_id, PATIENTS_CSV, "patients", {"name": "name"}, "export.csv")
        job = gateway.get_job(summary.job_id)
        assert job["filename"] == "export.csv"
        assert job["file_size"] == len(PATIENTS_CSV.encode("utf-8"))
        assert job["import_type"] == "patients"
        assert job["field_mapping"] == {"name": "name"}
        assert job["total_rows"] == 2
        assert job["completed_at"] is not None

    def test_default_filename(self, orchestrator, gateway, practitioner_id):
        summary = orchestrator.run(practitioner_id, PATIENTS_CSV, "patients")
        assert gateway.get_job(summary.job_id)["filename"] == "unknown.csv"

    def test_unsupported_type(self, orchestrator, practitioner_id, session_factory):
        with pytest.raises(RequestValidationError, match="Unsupported import type"):
            orchestrator.run(practitioner_id, PATIENTS_CSV, "inventory")
        assert _count(session_factory, ImportJob) == 0

    def test_unexpected_row_error_is_isolated(self, session_factory, practitioner_id):
        class FlakyGateway(SqlGateway):
            def create_appointment(self, values):
                if values["patient_name"] == "Bad Row":
                    raise RuntimeError("boom")
                return super().create_appointment(values)

        csv = "name,date\nBad Row,2025-03-01\nGood Row,2025-03-02\n"
        summary = ImportOrchestrator(FlakyGateway(session_factory)).run(practitioner_id, csv, "appointments")
        assert summary.imported == 1
        assert summary.errors == ["Row 1: boom"]

    def test_audit_write_failure_aborts_and_marks_job_failed(self, session_factory, practitioner_id):
        class BrokenAuditGateway(SqlGateway):
            def add_job_item(self, job_id, row_number, *args, **kwargs):
                if row_number == 2:
                    raise PersistenceError("Database error: OperationalError")
                return super().add_job_item(job_id, row_number, *args, **kwargs)

        gw = BrokenAuditGateway(session_factory)
        with pytest.raises(PersistenceError):
            ImportOrchestrator(gw).run(practitioner_id, PATIENTS_CSV, "patients")

        with db_session(session_factory) as s:
            job = s.scalars(select(ImportJob)).one()
            assert job.status.value == "failed"
            assert job.successful_rows == 1


def test_summarize_derives_counts_from_outcomes():
    outcomes = [
        RowOutcome(1, {}, "profile", "a", "patients_created"),
        RowOutcome(2, {}, error="Patient name is required"),
        RowOutcome(3, {}, "profile", "b", "profiles_updated"),
    ]
    summary = summarize("job-1", 3, outcomes)
    assert summary.imported == 2
    assert summary.failed == 1
    assert summary.processed == 3
    assert summary.to_dict() == {
        "imported": 2,
        "patients_created": 1,
        "appointments_created": 0,
        "treatments_created": 0,
        "profiles_updated": 1,
        "errors": ["Row 2: Patient name is required"],
        "job_id": "job-1",
        "status": "completed",
    }


class TestPreview:

    def test_preview_validates_without_writing(self, orchestrator, session_factory, practitioner_id):
        result = orchestrator.preview("name,date\nJohn Doe,2025-03-01\nJane,garbage\n", "appointments")

        assert result["counts"] == {"total": 2, "valid": 1, "errors": 1}
        assert result["preview"][0]["status"] == "success"
        assert result["preview"][0]["data"]["appointment_date"] == "2025-03-01T09:00:00"
        assert result["preview"][0]["data"]["status"] == "confirmed"
        assert result["preview"][1]["messages"] == ["Invalid date/time format"]
        assert _count(session_factory, ImportJob) == 0
        assert _count(session_factory, Appointment) == 0

    def test_preview_limits(self, orchestrator):
        csv = "name\n" + "\n".join(f"P{i} X" for i in range(30))
        result = orchestrator.preview(csv, "patients", limit=25, sample_size=5)
        assert result["counts"] == {"total": 30, "valid": 25, "errors": 0}
        assert len(result["preview"]) == 5
