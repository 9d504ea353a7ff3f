"""Custom exceptions for the rentcore package."""


class RentCoreException(Exception):
    """Base exception for rentcore."""

    pass


class ValidationError(RentCoreException):
    """Raised when job input or domain validation fails."""

    pass


class NotFoundError(RentCoreException):
    """Raised when a resource is not found."""

    pass


class ServiceError(RentCoreException):
    """Raised when a service operation fails."""

    pass


class InvoiceGenerationError(ServiceError):
    """Raised when an invoice cannot be produced for the requested period."""

    pass


class GatewayError(ServiceError):
    """Raised when the payment gateway cannot be reached or answers with an error."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConfigurationError(RentCoreException):
    """Raised when configuration is invalid."""

    pass
