"""Tests de la hiérarchie d'erreurs et de la traduction des erreurs SQLAlchemy."""

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from constants import ERROR_MESSAGES
from enums import ErrorCode
from error_handlers import (
    ConfigurationError,
    DatabaseErrorHandler,
    DuplicateIdentityError,
    ForeignKeyViolationError,
    HashFailureError,
    InvalidTransitionError,
    MaintenanceError,
    NotFoundError,
    StoreError,
    SubscriptionConflictError,
)


class PgDriverError(Exception):
    pgcode = "23503"


class TestMaintenanceError:

    @pytest.mark.parametrize("error_class, code", [
        (NotFoundError, ErrorCode.NOT_FOUND),
        (DuplicateIdentityError, ErrorCode.DUPLICATE_IDENTITY),
        (ForeignKeyViolationError, ErrorCode.FOREIGN_KEY_VIOLATION),
        (StoreError, ErrorCode.STORE_ERROR),
        (HashFailureError, ErrorCode.HASH_FAILURE),
        (ConfigurationError, ErrorCode.CONFIGURATION_ERROR),
        (InvalidTransitionError, ErrorCode.INVALID_TRANSITION),
        (SubscriptionConflictError, ErrorCode.SUBSCRIPTION_CONFLICT),
    ])
    def test_codes_and_default_messages(self, error_class, code) -> None:
        error = error_class()
        assert isinstance(error, MaintenanceError)
        assert error.error_code == code
        assert error.message == ERROR_MESSAGES[code.value]
        assert str(error) == error.message

    def test_to_dict_includes_details_only_when_present(self) -> None:
        bare = NotFoundError("Compte non trouvé").to_dict()
        assert bare == {"error": True, "error_code": "NOT_FOUND", "message": "Compte non trouvé"}

        detailed = NotFoundError(details={"record_id": 3}).to_dict()
        assert detailed["details"] == {"record_id": 3}


class TestDatabaseErrorHandler:

    def test_sqlite_foreign_key_failure(self) -> None:
        error = IntegrityError("DELETE FROM users", {}, Exception("FOREIGN KEY constraint failed"))
        classified = DatabaseErrorHandler.classify(error, {"table": "users", "record_id": 1})
        assert isinstance(classified, ForeignKeyViolationError)
        assert classified.details["table"] == "users"
        assert classified.details["record_id"] == 1

    def test_mysql_foreign_key_failure(self) -> None:
        message = "(1451, 'Cannot delete or update a parent row: a foreign key constraint fails')"
        error = IntegrityError("DELETE FROM apartments", {}, Exception(message))
        assert isinstance(DatabaseErrorHandler.classify(error), ForeignKeyViolationError)

    def test_postgres_sqlstate(self) -> None:
        error = IntegrityError("DELETE FROM users", {}, PgDriverError("update or delete on table"))
        assert isinstance(DatabaseErrorHandler.classify(error), ForeignKeyViolationError)

    def test_unique_failure(self) -> None:
        error = IntegrityError("INSERT INTO users", {}, Exception("UNIQUE constraint failed: users.email"))
        assert isinstance(DatabaseErrorHandler.classify(error), DuplicateIdentityError)

    def test_other_integrity_failure_is_store_error(self) -> None:
        error = IntegrityError("INSERT INTO documents", {}, Exception("NOT NULL constraint failed: documents.file_url"))
        classified = DatabaseErrorHandler.classify(error)
        assert isinstance(classified, StoreError)
        assert "NOT NULL" in classified.details["technical_message"]

    def test_operational_error_is_store_error(self) -> None:
        error = OperationalError("SELECT 1", {}, Exception("database is locked"))
        classified = DatabaseErrorHandler.classify(error, {"operation": "find_many"})
        assert isinstance(classified, StoreError)
        assert classified.details["operation"] == "find_many"
        assert classified.details["technical_message"] == "database is locked"
