"""
Mapping colonne sorgente -> campi canonici.

Per ogni campo canonico si applica una lista ordinata di strategie; vince
la prima che produce un valore non vuoto. Default:
1. mapping esplicito fornito dal chiamante (colonna -> campo canonico)
2. fallback fuzzy: sottostringa case-insensitive sul nome colonna

Un campo che nessuna strategia risolve è semplicemente assente dal record.
"""
from __future__ import annotations

from typing import Mapping, Protocol, Sequence

# campo canonico -> alias accettati
TargetSchema = Mapping[str, Sequence[str]]
CanonicalRecord = dict[str, str]


class ResolutionStrategy(Protocol):
    def resolve(self, row: Mapping[str, str], mapping: Mapping[str, str], aliases: Sequence[str]) -> str | None:
        ...


class ExplicitMappingStrategy:
    """Colonna dichiarata dal chiamante, se punta a uno degli alias del campo."""

    def resolve(self, row, mapping, aliases):
        for source_column, canonical in mapping.items():
            if canonical in aliases and row.get(source_column):
                return row[source_column]
        return None


class SubstringFallbackStrategy:
    """Primo nome colonna che contiene un alias (case-insensitive). Nessuno scoring."""

    def resolve(self, row, mapping, aliases):
        for alias in aliases:
            needle = alias.lower()
            for column, value in row.items():
                if needle in column.lower() and value:
                    return value
        return None


DEFAULT_STRATEGIES: tuple[ResolutionStrategy, ...] = (
    ExplicitMappingStrategy(),
    SubstringFallbackStrategy(),
)


class FieldMapper:
    def __init__(self, strategies: Sequence[ResolutionStrategy] | None = None) -> None:
        self.strategies = tuple(strategies) if strategies is not None else DEFAULT_STRATEGIES

    def resolve(
        self,
        row: Mapping[str, str],
        mapping: Mapping[str, str] | None,
        schema: TargetSchema,
    ) -> CanonicalRecord:
        mapping = mapping or {}
        record: CanonicalRecord = {}
        for target, aliases in schema.items():
            for strategy in self.strategies:
                value = strategy.resolve(row, mapping, aliases)
                if value:
                    record[target] = value
                    break
        return record


# =========================
# Schemi per tipo di import
# =========================
PATIENT_FIELDS: dict[str, tuple[str, ...]] = {
    "first_name": ("first_name", "firstname", "first name", "given_name"),
    "last_name": ("last_name", "lastname", "last name", "surname", "family_name"),
    "name": ("name", "full_name", "patient_name"),
    "email": ("email", "e-mail"),
    "phone": ("phone", "mobile", "telephone"),
    "date_of_birth": ("dob", "date_of_birth", "birth"),
    "address": ("address",),
    "insurance_provider": ("insurance",),
}

APPOINTMENT_FIELDS: dict[str, tuple[str, ...]] = {
    "patient_name": ("name", "patient_name", "patient"),
    "patient_email": ("email", "patient_email"),
    "date": ("date", "appointment_date"),
    "time": ("time", "appointment_time"),
    "reason": ("reason", "service", "procedure"),
    "status": ("status",),
    "notes": ("notes", "comments"),
}

TREATMENT_FIELDS: dict[str, tuple[str, ...]] = {
    "patient_name": ("name", "patient_name"),
    "patient_email": ("email", "patient_email"),
    "procedure": ("procedure", "treatment", "service"),
    "cost": ("cost", "price", "fee", "amount"),
    "date": ("date", "treatment_date"),
    "tooth": ("tooth", "tooth_number"),
    "notes": ("notes", "description"),
}
