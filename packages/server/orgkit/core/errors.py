"""
Domain error taxonomy.

Every failure a use case reports is one of the classes below. Each carries a
stable ``code`` that API clients can rely on; the HTTP status is assigned by
the API layer.
"""

from __future__ import annotations

from typing import Any, Optional


def describe_exception(error: BaseException) -> dict:
    """Normalize an arbitrary exception into JSON-safe details."""
    if isinstance(error, DomainError):
        return error.to_dict()
    return {"type": type(error).__name__, "message": str(error)}


class DomainError(Exception):
    code = "DOMAIN_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = _normalize_details(details or {})

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "details": self.details}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class ValidationError(DomainError):
    code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        merged = dict(details or {})
        if field:
            merged["field"] = field
        super().__init__(message, merged)
        self.field = field


class NotFoundError(DomainError):
    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: str, details: Optional[dict[str, Any]] = None):
        super().__init__(
            f"{resource} with identifier '{identifier}' not found",
            {"resource": resource, "identifier": identifier, **(details or {})},
        )
        self.resource = resource
        self.identifier = identifier


class ConflictError(DomainError):
    code = "CONFLICT"

    def __init__(self, resource: str, identifier: str, details: Optional[dict[str, Any]] = None):
        super().__init__(
            f"{resource} with identifier '{identifier}' already exists",
            {"resource": resource, "identifier": identifier, **(details or {})},
        )


class UnauthorizedError(DomainError):
    code = "UNAUTHORIZED"

    def __init__(
        self,
        action: str,
        resource: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        message = f"Not authorized to {action}"
        if resource:
            message += f" on {resource}"
        super().__init__(message, {"action": action, **(details or {})})


class BusinessRuleError(DomainError):
    code = "BUSINESS_RULE_VIOLATION"


class InfrastructureError(DomainError):
    code = "INFRASTRUCTURE_ERROR"


class AbortedError(DomainError):
    code = "ABORTED"

    def __init__(self, reason: str):
        super().__init__(f"Operation aborted: {reason}", {"reason": reason})
        self.reason = reason


def _normalize_details(details: dict[str, Any]) -> dict[str, Any]:
    normalized = {}
    for key, value in details.items():
        if isinstance(value, BaseException):
            normalized[key] = describe_exception(value)
        else:
            normalized[key] = value
    return normalized
