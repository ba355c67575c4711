"""Typed workflow errors.

Every business failure raised by the engine is a ``WorkflowError``. They are
deterministic and caller-facing: nothing here is retried internally. Each
carries a machine-readable ``code`` and a ``details`` dict with the figures
the caller needs to act (amounts, counts, rule names).

    WorkflowError (ValueError)
    +-- NotFoundError            404
    +-- ForbiddenError           403
    +-- InvalidTransitionError   409
    +-- ConflictError            409
    +-- ValidationFailedError    422
    +-- ConfigurationError       500

``TransactionFailedError`` is deliberately outside the hierarchy: it reports
a storage failure after rollback, not a business rule.
"""
from typing import Any


class WorkflowError(ValueError):
    code = "WORKFLOW_ERROR"
    status_code = 400

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code, "details": self.details}


class NotFoundError(WorkflowError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id: Any) -> None:
        super().__init__(f"{entity} {entity_id} not found.", entity=entity, entity_id=str(entity_id))


class ForbiddenError(WorkflowError):
    code = "FORBIDDEN"
    status_code = 403


class InvalidTransitionError(WorkflowError):
    code = "INVALID_TRANSITION"
    status_code = 409

    def __init__(self, entity: str, current: str, action: str, message: str | None = None) -> None:
        super().__init__(
            message or f"Cannot {action} {entity} in status {current}.",
            entity=entity,
            current_status=current,
            action=action,
        )


class ConflictError(WorkflowError):
    code = "CONFLICT"
    status_code = 409


class ValidationFailedError(WorkflowError):
    code = "VALIDATION_FAILED"
    status_code = 422

    def __init__(self, message: str, rule: str, **details: Any) -> None:
        super().__init__(message, rule=rule, **details)
        self.rule = rule


class ConfigurationError(WorkflowError):
    code = "CONFIGURATION_ERROR"
    status_code = 500


class TransactionFailedError(Exception):
    """Storage failed mid-transition; the session was rolled back."""

    code = "TRANSACTION_FAILED"
    status_code = 503
