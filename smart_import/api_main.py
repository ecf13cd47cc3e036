from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Any
from uuid import uuid4

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError as BodyValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth_service import resolve_practitioner
from .db import init_db
from .errors import ImportPipelineError, NotFoundError, RequestValidationError
from .gateway import ImportGateway, SqlGateway
from .logging_config import bind_request_context, configure_logging, get_logger
from .orchestrator import ImportOrchestrator

configure_logging()
logger = get_logger(__name__)

# Authorization: Bearer <token>; l'assenza è gestita da resolve_practitioner (401)
bearer_scheme = HTTPBearer(auto_error=False)

_default_gateway = SqlGateway()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Crea tabelle se non esistono
    init_db()
    logger.info("Application starting")
    yield
    logger.info("Application shutting down")


app = FastAPI(title="Smart Import API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    request_id = str(uuid4())
    start = time.perf_counter()
    bind_request_context(request_id=request_id, method=request.method, path=request.url.path)

    response = await call_next(request)

    elapsed_ms = int((time.perf_counter() - start) * 1000)
    response.headers["X-Request-ID"] = request_id
    logger.info("Request completed", status_code=response.status_code, processing_time_ms=elapsed_ms)
    return response



# Gestione errori: sempre {"error": "..."}

@app.exception_handler(ImportPipelineError)
async def pipeline_error_handler(request: Request, exc: ImportPipelineError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Import request failed", error=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(BodyValidationError)
async def body_error_handler(request: Request, exc: BodyValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "Invalid request body"})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception", error=str(exc))
    return JSONResponse(status_code=500, content={"error": "Import failed"})



# Schemi

class ImportRequestIn(BaseModel):
    # tutti opzionali: la validazione dell'envelope restituisce 400, non 422
    file_content: str | None = None
    detected_type: str | None = None
    field_mapping: dict[str, str] | None = None
    filename: str | None = None

    def require_content(self) -> None:
        if not self.file_content or not self.detected_type:
            raise RequestValidationError("Missing file content or detected type")



# Dipendenze

def get_gateway() -> ImportGateway:
    return _default_gateway


def get_current_practitioner(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    gateway: ImportGateway = Depends(get_gateway),
) -> str:
    return resolve_practitioner(credentials.credentials if credentials else None, gateway)



# Endpoint

@app.post("/api/import")
def smart_import(
    payload: ImportRequestIn,
    practitioner_id: str = Depends(get_current_practitioner),
    gateway: ImportGateway = Depends(get_gateway),
) -> dict[str, Any]:
    payload.require_content()
    logger.info("Processing smart import", detected_type=payload.detected_type, filename=payload.filename)

    summary = ImportOrchestrator(gateway).run(
        practitioner_id=practitioner_id,
        file_content=payload.file_content,
        detected_type=payload.detected_type,
        field_mapping=payload.field_mapping,
        filename=payload.filename,
    )
    return summary.to_dict()


@app.post("/api/import/preview")
def smart_import_preview(
    payload: ImportRequestIn,
    practitioner_id: str = Depends(get_current_practitioner),
    gateway: ImportGateway = Depends(get_gateway),
) -> dict[str, Any]:
    """Anteprima (dry-run): nessun job creato, nessuna scrittura."""
    payload.require_content()
    result = ImportOrchestrator(gateway).preview(
        file_content=payload.file_content,
        detected_type=payload.detected_type,
        field_mapping=payload.field_mapping,
    )
    return jsonable_encoder(result)


@app.get("/api/import/jobs/{job_id}")
def import_job_detail(
    job_id: str,
    practitioner_id: str = Depends(get_current_practitioner),
    gateway: ImportGateway = Depends(get_gateway),
) -> dict[str, Any]:
    job = gateway.get_job(job_id)
    # i job di altri professionisti non sono visibili
    if job is None or job["practitioner_id"] != practitioner_id:
        raise NotFoundError("Import job not found")
    return job
