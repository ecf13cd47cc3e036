"""
Tassonomia degli errori della pipeline di import.

Gli errori di richiesta (auth, envelope) interrompono subito la richiesta;
quelli di riga vengono catturati dall'orchestratore e finiscono nel riepilogo.
"""
from __future__ import annotations


class ImportPipelineError(Exception):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AuthenticationError(ImportPipelineError):
    status_code = 401


class AuthorizationError(ImportPipelineError):
    status_code = 403


class NotFoundError(ImportPipelineError):
    status_code = 404


class RequestValidationError(ImportPipelineError):
    status_code = 400


class RowValidationError(ImportPipelineError):
    # solo a livello di riga, mai restituito come risposta HTTP
    status_code = 422


class PersistenceError(ImportPipelineError):
    status_code = 500
