"""
Deployer Errors

Every failure the controller distinguishes:
- NotFoundError: document, ref or workflow absent (often a legitimate empty state)
- ConflictError: stale compare-and-swap version token
- ProviderError: any other GitHub/git failure
- ValidationError: malformed identifier rejected at the boundary

Components raise these and never swallow them. The controller is the only
place that turns a phase failure into a log record.
"""

from typing import Any, Dict, List, Optional


class DeployerError(Exception):
    """Base deployer error with structured details."""
    def __init__(self, code: str, message: str, details: Dict[str, Any] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": True,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(DeployerError):
    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(code="NOT_FOUND", message=message, details=details)


class ConflictError(DeployerError):
    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(code="CONFLICT", message=message, details=details)


class ProviderError(DeployerError):
    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Dict[str, Any] = None,
    ):
        self.status_code = status_code
        details = dict(details or {})
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(code="PROVIDER_ERROR", message=message, details=details)


class ValidationError(DeployerError):
    def __init__(self, errors: List[str]):
        super().__init__(
            code="VALIDATION_FAILED",
            message="; ".join(errors) or "Validation failed",
            details={"errors": errors}
        )
