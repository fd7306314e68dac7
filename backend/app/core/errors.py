"""
Taxonomie d'erreurs applicative.

Les services lèvent ces erreurs ; la couche HTTP les traduit en réponses JSON
(voir backend.app.main). Aucun service ne lève d'HTTPException.
"""
from __future__ import annotations

from typing import Any


class AppError(Exception):
    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code, "details": self.details}


class ValidationError(AppError):
    """Entrée invalide ou transition d'état interdite (y compris état périmé)."""

    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} {identifier} not found" if identifier is not None else f"{resource} not found"
        super().__init__(message, {"resource": resource, "id": identifier})


class DatabaseError(AppError):
    code = "DATABASE_ERROR"

    def __init__(self, operation: str, message: str, cause: BaseException | None = None):
        super().__init__(f"Database {operation} failed: {message}", {"operation": operation})
        self.operation = operation
        self.__cause__ = cause


class ExternalApiError(AppError):
    """
    Erreur de la plateforme d'inventaire.

    retryable=True : erreur transitoire (transport, 429, 5xx) que l'appelant
    peut rejouer. Le gateway lui-même ne rejoue jamais.
    """

    status_code = 502
    code = "EXTERNAL_API_ERROR"

    def __init__(self, message: str, status: int | None = None, retryable: bool = False):
        super().__init__(message, {"status": status, "retryable": retryable})
        self.status = status
        self.retryable = retryable


class SyncInProgressError(AppError):
    status_code = 409
    code = "SYNC_IN_PROGRESS"


class DispatchError(AppError):
    """La remise du PO au fournisseur a échoué ; le PO n'a pas changé d'état."""

    status_code = 502
    code = "DISPATCH_FAILED"


class StuckSyncError(AppError):
    """Marqueur interne du sweep, jamais remonté aux appelants."""

    code = "SYNC_STUCK"

    def __init__(self, sync_log_id: int, timeout_minutes: int):
        super().__init__(
            f"Sync {sync_log_id} still running after {timeout_minutes} minutes, marked as failed",
            {"sync_log_id": sync_log_id, "timeout_minutes": timeout_minutes},
        )
        self.sync_log_id = sync_log_id
