"""
Erreurs métier levées par les services.

La couche API les traduit en réponses JSON structurées
(voir backend.app.api.errors) ; les services ne connaissent pas HTTP.
"""

from __future__ import annotations

from typing import Any


class ServiceError(Exception):
    kind = "error"

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind, "detail": self.message, **self.extra}


class InputError(ServiceError):
    """Entrée invalide, corrigeable par l'appelant."""

    kind = "validation"


class StateConflict(ServiceError):
    """Transition illégale depuis le statut courant."""

    kind = "state_conflict"

    def __init__(self, message: str, *, current_status: str, **extra: Any) -> None:
        super().__init__(message, current_status=current_status, **extra)
        self.current_status = current_status


class NotFound(ServiceError):
    kind = "not_found"
