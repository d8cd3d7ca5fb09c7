from typing import Any, Dict, Optional


class JusbillException(Exception):
    """Base exception for all Jusbill errors."""

    def __init__(
        self,
        message: str,
        code: str = "internal_error",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}


class ValidationError(JusbillException):
    """Raised when caller input is malformed."""

    def __init__(
        self,
        message: str,
        code: str = "validation_error",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, code=code, status_code=400, details=details)


class ChargeConflictError(JusbillException):
    """Raised when a financial flow already has a gateway charge."""

    def __init__(
        self,
        message: str,
        code: str = "charge_conflict",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, code=code, status_code=409, details=details)


class IntegrationNotConfiguredError(JusbillException):
    """Raised when no usable gateway credential can be resolved."""

    def __init__(
        self,
        message: str = "Asaas integration is not configured",
        code: str = "integration_not_configured",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, code=code, status_code=503, details=details)


class ResourceNotFoundError(JusbillException):
    """Raised when a requested resource is not found."""

    def __init__(
        self,
        message: str,
        code: str = "not_found",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, code=code, status_code=404, details=details)


class AsaasApiError(JusbillException):
    """
    Raised when the Asaas API answers with a non-2xx status.

    Upstream 4xx statuses are relayed to internal callers; anything else is
    reported as a bad gateway.
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        response_body: Any = None,
        error_code: Optional[str] = None,
    ):
        relayed = status_code if 400 <= status_code < 500 else 502
        super().__init__(
            message,
            code="asaas_api_error",
            status_code=relayed,
            details={"upstream_status": status_code, "error_code": error_code},
        )
        self.upstream_status = status_code
        self.response_body = response_body
        self.error_code = error_code
