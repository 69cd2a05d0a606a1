"""
Gestion centralisée des erreurs pour les outils de maintenance InmoDash
Standardisation des codes d'erreur et traduction des erreurs de base de données
"""
from typing import Dict, Any, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from constants import ERROR_MESSAGES
from enums import ErrorCode


class MaintenanceError(Exception):
    """Erreur de base de toutes les opérations de maintenance"""

    error_code = ErrorCode.STORE_ERROR

    def __init__(self, message: str = None, details: Dict[str, Any] = None):
        self.message = message or ERROR_MESSAGES[self.error_code.value]
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convertit en dictionnaire pour les rapports"""
        response = {
            "error": True,
            "error_code": self.error_code.value,
            "message": self.message
        }

        if self.details:
            response["details"] = self.details

        return response


class NotFoundError(MaintenanceError):
    error_code = ErrorCode.NOT_FOUND


class DuplicateIdentityError(MaintenanceError):
    error_code = ErrorCode.DUPLICATE_IDENTITY


class ForeignKeyViolationError(MaintenanceError):
    error_code = ErrorCode.FOREIGN_KEY_VIOLATION


class StoreError(MaintenanceError):
    error_code = ErrorCode.STORE_ERROR


class HashFailureError(MaintenanceError):
    error_code = ErrorCode.HASH_FAILURE


class ConfigurationError(MaintenanceError):
    error_code = ErrorCode.CONFIGURATION_ERROR


class InvalidTransitionError(MaintenanceError):
    error_code = ErrorCode.INVALID_TRANSITION


class SubscriptionConflictError(MaintenanceError):
    error_code = ErrorCode.SUBSCRIPTION_CONFLICT


# Fragments de messages des pilotes SQLite, MySQL/MariaDB et PostgreSQL
FOREIGN_KEY_MARKERS = (
    "foreign key constraint failed",
    "foreign key constraint fails",
    "cannot delete or update a parent row",
    "violates foreign key constraint",
)

UNIQUE_MARKERS = (
    "unique constraint failed",
    "duplicate entry",
    "duplicate key value",
)


class DatabaseErrorHandler:
    """Gestionnaire pour les erreurs de base de données"""

    @staticmethod
    def classify(
        error: SQLAlchemyError,
        context: Optional[Dict[str, Any]] = None
    ) -> MaintenanceError:
        """
        Traduit une erreur SQLAlchemy en erreur de maintenance typée

        Args:
            error: Erreur levée par SQLAlchemy
            context: Contexte de l'opération (table, enregistrement, action)
        """
        details = dict(context or {})

        if isinstance(error, IntegrityError):
            return DatabaseErrorHandler.handle_integrity_error(error, details)

        details["technical_message"] = str(getattr(error, "orig", None) or error)
        return StoreError(details=details)

    @staticmethod
    def handle_integrity_error(
        error: IntegrityError,
        details: Dict[str, Any]
    ) -> MaintenanceError:
        """
        Gère les erreurs d'intégrité de la base de données
        """
        error_message = str(error.orig)
        lowered = error_message.lower()
        details["technical_message"] = error_message

        # PostgreSQL expose le SQLSTATE directement
        pgcode = getattr(error.orig, "pgcode", None) or getattr(error.orig, "sqlstate", None)

        if pgcode == "23503" or any(marker in lowered for marker in FOREIGN_KEY_MARKERS):
            return ForeignKeyViolationError(details=details)

        if pgcode == "23505" or any(marker in lowered for marker in UNIQUE_MARKERS):
            return DuplicateIdentityError(details=details)

        return StoreError(
            message="Erreur de contrainte de base de données",
            details=details
        )
