# errors.py
"""Failures surfaced to the user as a short message plus optional details."""


class NLQError(Exception):
    kind = "unknown"

    def __init__(self, message: str, details: str = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"error": self.message, "details": self.details}


class ConfigError(NLQError):
    kind = "config"


class TransportFailure(NLQError):
    """Network or auth failure talking to an upstream service."""
    kind = "transport_failure"


class ValidationFailure(NLQError):
    kind = "validation_failure"


class QuerySyntaxError(NLQError):
    kind = "syntax_error"


class TableNotFound(NLQError):
    kind = "not_found"


class PermissionDenied(NLQError):
    kind = "permission_denied"


class ResourceExceeded(NLQError):
    kind = "resource_exceeded"


class UnknownQueryError(NLQError):
    kind = "unknown"
