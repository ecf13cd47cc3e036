from __future__ import annotations

from dataclasses import dataclass, field

DELIMITER = ","


@dataclass(frozen=True)
class ParsedFile:
    headers: list[str]
    rows: list[dict[str, str]] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return len(self.rows)


def _clean(value: str) -> str:
    return value.strip().replace('"', "")


def split_line(line: str) -> list[str]:
    # NB: un delimitatore dentro un valore tra virgolette NON viene gestito,
    # la riga risulterà disallineata (limite noto degli export supportati)
    return [_clean(v) for v in line.split(DELIMITER)]


def parse_records(text: str) -> ParsedFile:
    """
    Testo delimitato -> header + righe.

    - prima riga non vuota = header
    - ogni riga non vuota successiva viene associata per posizione agli header
    - i campi finali mancanti valgono stringa vuota
    """
    # solo \n e \r\n separano le righe (splitlines() spezzerebbe anche su \x0c, \u2028, ...)
    lines = [line for line in text.replace("\r\n", "\n").split("\n") if line.strip()]
    if not lines:
        return ParsedFile(headers=[])

    headers = split_line(lines[0])
    rows: list[dict[str, str]] = []
    for line in lines[1:]:
        values = split_line(line)
        rows.append({h: (values[i] if i < len(values) else "") for i, h in enumerate(headers)})

    return ParsedFile(headers=headers, rows=rows)
