from __future__ import annotations

import argparse
import json
from pathlib import Path

from .auth_security import create_access_token
from .db import init_db
from .errors import ImportPipelineError
from .gateway import SqlGateway
from .logging_config import configure_logging
from .orchestrator import ImportOrchestrator
from .seed import DEMO_USER_ID, seed_base


def _parse_mapping(pairs: list[str] | None) -> dict[str, str]:
    mapping: dict[str, str] = {}
    for pair in pairs or []:
        source, sep, target = pair.partition("=")
        if not sep or not source.strip() or not target.strip():
            raise argparse.ArgumentTypeError(f"Mapping non valido: {pair!r} (atteso COLONNA=campo)")
        mapping[source.strip()] = target.strip()
    return mapping


def _print_json(data: object) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def cmd_init(args: argparse.Namespace) -> None:
    practitioner_id = seed_base(user_id=args.user_id)
    print("DB inizializzato e seed completato.")
    print(f"Practitioner ID: {practitioner_id}")


def cmd_token(args: argparse.Namespace) -> None:
    print(create_access_token(subject=args.user_id, expires_minutes=args.minutes))


def cmd_import(args: argparse.Namespace) -> None:
    content = Path(args.file).read_text(encoding="utf-8")
    summary = ImportOrchestrator(SqlGateway()).run(
        practitioner_id=args.practitioner_id,
        file_content=content,
        detected_type=args.type,
        field_mapping=_parse_mapping(args.map),
        filename=Path(args.file).name,
    )
    _print_json(summary.to_dict())


def cmd_preview(args: argparse.Namespace) -> None:
    content = Path(args.file).read_text(encoding="utf-8")
    _print_json(
        ImportOrchestrator(SqlGateway()).preview(
            file_content=content,
            detected_type=args.type,
            field_mapping=_parse_mapping(args.map),
        )
    )


def cmd_job(args: argparse.Namespace) -> None:
    job = SqlGateway().get_job(args.job_id)
    if job is None:
        print("Job non trovato.")
        return
    if args.failed_only:
        job["items"] = [it for it in job["items"] if it["status"] == "failed"]
    _print_json(job)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="smart-import", description="Import massivo da export CSV di terzi")
    sub = p.add_subparsers(required=True)

    p_init = sub.add_parser("init", help="Crea DB e professionista demo")
    p_init.add_argument("--user-id", default=DEMO_USER_ID)
    p_init.set_defaults(func=cmd_init)

    p_tok = sub.add_parser("token", help="Emette un JWT di sviluppo")
    p_tok.add_argument("--user-id", default=DEMO_USER_ID)
    p_tok.add_argument("--minutes", type=int, default=None)
    p_tok.set_defaults(func=cmd_token)

    types = ["patients", "appointments", "treatments"]

    p_imp = sub.add_parser("import", help="Importa un file")
    p_imp.add_argument("file")
    p_imp.add_argument("--type", required=True, choices=types)
    p_imp.add_argument("--practitioner-id", required=True)
    p_imp.add_argument("--map", action="append", metavar="COLONNA=campo", help="Mapping esplicito (ripetibile)")
    p_imp.set_defaults(func=cmd_import)

    p_prev = sub.add_parser("preview", help="Anteprima senza scritture")
    p_prev.add_argument("file")
    p_prev.add_argument("--type", required=True, choices=types)
    p_prev.add_argument("--map", action="append", metavar="COLONNA=campo")
    p_prev.set_defaults(func=cmd_preview)

    p_job = sub.add_parser("job", help="Mostra un job con i suoi item")
    p_job.add_argument("job_id")
    p_job.add_argument("--failed-only", action="store_true", help="Solo le righe fallite")
    p_job.set_defaults(func=cmd_job)

    return p


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    configure_logging()
    init_db()  # garantisce tabelle
    try:
        args.func(args)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))
    except ImportPipelineError as e:
        parser.exit(1, f"Errore: {e.message}\n")


if __name__ == "__main__":
    main()
