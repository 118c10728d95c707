"""
Erreurs métier.

Les services lèvent ces exceptions ; la couche HTTP (apothecary.app.main)
les traduit en codes de statut. Aucun service ne dépend de FastAPI.
"""

from __future__ import annotations


class DomainError(Exception):
    status_code = 500

    def __init__(self, message: str, errors: list[dict] | None = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []


class ValidationError(DomainError):
    """Entrée refusée : l'opération entière est bloquée, rien n'est écrit."""

    status_code = 400


class AuthenticationError(DomainError):
    status_code = 401


class PermissionDeniedError(DomainError):
    status_code = 403


class NotFoundError(DomainError):
    status_code = 404


class ConflictError(DomainError):
    status_code = 409


class ExternalServiceError(DomainError):
    status_code = 502
