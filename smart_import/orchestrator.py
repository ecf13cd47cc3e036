"""
Orchestrazione del job di import.

Ogni riga passa per parser -> mapper -> resolver -> gateway e produce un
RowOutcome (successo o fallimento): un errore su una riga non interrompe
mai il batch. Il riepilogo del job è la riduzione della sequenza di esiti.
"""
from __future__ import annotations

import enum
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Mapping

from .config import DEFAULT_IMPORT_FILENAME, PREVIEW_ROW_LIMIT, PREVIEW_SAMPLE_SIZE
from .errors import ImportPipelineError, PersistenceError, RequestValidationError
from .field_mapper import FieldMapper
from .gateway import ImportGateway
from .logging_config import get_logger
from .models import ImportType, ItemStatus, JobStatus
from .parser import parse_records
from .resolvers import RESOLVERS

logger = get_logger(__name__)

COUNTERS = ("patients_created", "appointments_created", "treatments_created", "profiles_updated")


@dataclass(frozen=True)
class RowOutcome:
    row_number: int
    raw: dict[str, str]
    record_type: str | None = None
    record_id: str | None = None
    counter: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ImportSummary:
    job_id: str
    status: JobStatus
    total_rows: int
    imported: int = 0
    failed: int = 0
    counts: Counter = field(default_factory=Counter)
    errors: list[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.imported + self.failed

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"imported": self.imported}
        out.update({c: self.counts[c] for c in COUNTERS})
        out.update({"errors": self.errors, "job_id": self.job_id, "status": self.status.value})
        return out


def summarize(job_id: str, total_rows: int, outcomes: list[RowOutcome]) -> ImportSummary:
    """Riduce gli esiti di riga nel riepilogo (nessun contatore inventato)."""
    summary = ImportSummary(job_id=job_id, status=JobStatus.COMPLETED, total_rows=total_rows)
    for o in outcomes:
        if o.ok:
            summary.imported += 1
            summary.counts[o.counter] += 1
        else:
            summary.failed += 1
            summary.errors.append(f"Row {o.row_number}: {o.error}")

    if total_rows and summary.imported == 0:
        summary.status = JobStatus.FAILED
    return summary


def parse_import_type(detected_type: str) -> ImportType:
    try:
        return ImportType(detected_type)
    except ValueError:
        raise RequestValidationError(f"Unsupported import type: {detected_type}") from None


def _jsonable(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


class ImportOrchestrator:
    def __init__(self, gateway: ImportGateway, mapper: FieldMapper | None = None) -> None:
        self.gateway = gateway
        self.mapper = mapper or FieldMapper()

    def process_row(
        self,
        row_number: int,
        row: dict[str, str],
        import_type: ImportType,
        field_mapping: Mapping[str, str],
        practitioner_id: str,
    ) -> RowOutcome:
        resolver = RESOLVERS[import_type]
        try:
            record = self.mapper.resolve(row, field_mapping, resolver.fields)
            draft = resolver.build(record)
            res = resolver.persist(draft, practitioner_id, self.gateway)
        except ImportPipelineError as e:
            return RowOutcome(row_number, row, error=e.message)
        except Exception as e:
            # una riga malformata non deve mai far cadere il batch
            logger.exception("Unexpected row error", row_number=row_number)
            return RowOutcome(row_number, row, error=str(e) or e.__class__.__name__)
        return RowOutcome(row_number, row, res.record_type, res.record_id, res.counter)

    def run(
        self,
        practitioner_id: str,
        file_content: str,
        detected_type: str,
        field_mapping: Mapping[str, str] | None = None,
        filename: str | None = None,
    ) -> ImportSummary:
        """
        Use case: import di un file.
        - crea il job (processing)
        - elabora le righe in sequenza, un item di audit per riga
        - chiude il job (completed / failed) con i contatori derivati dagli esiti
        """
        import_type = parse_import_type(detected_type)
        field_mapping = dict(field_mapping or {})
        parsed = parse_records(file_content)

        job_id = self.gateway.create_job(
            practitioner_id=practitioner_id,
            filename=filename or DEFAULT_IMPORT_FILENAME,
            file_size=len(file_content.encode("utf-8")),
            import_type=import_type,
            total_rows=parsed.total_rows,
            field_mapping=field_mapping,
        )
        log = logger.bind(job_id=job_id, import_type=import_type.value)
        log.info("Import job created", total_rows=parsed.total_rows, filename=filename)

        outcomes: list[RowOutcome] = []
        try:
            for i, row in enumerate(parsed.rows, start=1):
                outcome = self.process_row(i, row, import_type, field_mapping, practitioner_id)
                if not outcome.ok:
                    log.warning("Row failed", row_number=i, error=outcome.error)
                self.gateway.add_job_item(
                    job_id=job_id,
                    row_number=i,
                    raw_data=row,
                    status=ItemStatus.SUCCESS if outcome.ok else ItemStatus.FAILED,
                    error_message=outcome.error,
                    created_record_id=outcome.record_id,
                    created_record_type=outcome.record_type,
                )
                outcomes.append(outcome)

            summary = summarize(job_id, parsed.total_rows, outcomes)
            self.gateway.finish_job(
                job_id,
                summary.status,
                successful=summary.imported,
                failed=summary.failed,
                processed=summary.processed,
            )
        except PersistenceError:
            log.error("Import job aborted", processed_rows=len(outcomes))
            partial = summarize(job_id, parsed.total_rows, outcomes)
            try:
                self.gateway.finish_job(
                    job_id, JobStatus.FAILED, partial.imported, partial.failed, partial.processed
                )
            except PersistenceError:
                log.error("Could not mark import job as failed")
            raise

        log.info(
            "Import job finished",
            status=summary.status.value,
            imported=summary.imported,
            failed=summary.failed,
        )
        return summary

    def preview(
        self,
        file_content: str,
        detected_type: str,
        field_mapping: Mapping[str, str] | None = None,
        limit: int = PREVIEW_ROW_LIMIT,
        sample_size: int = PREVIEW_SAMPLE_SIZE,
    ) -> dict[str, Any]:
        """Dry-run: mapping + validazione delle prime righe, nessuna scrittura."""
        import_type = parse_import_type(detected_type)
        resolver = RESOLVERS[import_type]
        parsed = parse_records(file_content)

        valid = errors = 0
        preview: list[dict[str, Any]] = []
        for i, row in enumerate(parsed.rows[:limit], start=1):
            record = self.mapper.resolve(row, field_mapping, resolver.fields)
            try:
                draft = resolver.build(record)
            except ImportPipelineError as e:
                errors += 1
                entry = {"row": i, "data": record, "status": "failed", "messages": [e.message]}
            else:
                valid += 1
                data = {k: _jsonable(v) for k, v in draft.items()}
                entry = {"row": i, "data": data, "status": "success", "messages": []}
            if len(preview) < sample_size:
                preview.append(entry)

        return {
            "counts": {"total": parsed.total_rows, "valid": valid, "errors": errors},
            "preview": preview,
        }
