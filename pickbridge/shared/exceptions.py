# pickbridge/shared/exceptions.py
from typing import Optional

from fastapi import HTTPException, status


class BaseHTTPException(HTTPException):
    """HTTPException with a class-level default status code and message."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(
            status_code=self.__class__.status_code,
            detail=message or self.__class__.message,
        )

    def __str__(self) -> str:
        return str(self.detail)


# Resource Not Found Exceptions
class CompanyNotFoundError(BaseHTTPException):
    status_code = status.HTTP_404_NOT_FOUND
    message = "Company not found"


# Integration Exceptions
class IntegrationConnectionError(BaseHTTPException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "Integration connection failed"


class IntegrationAuthenticationError(BaseHTTPException):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Integration authentication failed"


class TransientIntegrationError(BaseHTTPException):
    """
    Network, rate-limit or server-side failure talking to a provider.

    Retryable. Never affects stored credentials.
    """

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    message = "Accounting provider is temporarily unavailable"

    def __init__(
        self, message: Optional[str] = None, retry_after: Optional[float] = None
    ) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ReAuthRequiredError(BaseHTTPException):
    """
    Stored credentials are no longer usable for this company.

    Further provider calls must stop until the user repeats the OAuth flow.
    """

    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Accounting connection must be re-authorised"

    def __init__(
        self,
        provider: Optional[str],
        company_id: str,
        message: Optional[str] = None,
    ) -> None:
        self.provider = provider
        self.company_id = company_id
        provider_label = provider or "accounting provider"
        super().__init__(
            message
            or f"Reconnect your {provider_label} account: "
            "the stored authorisation is no longer valid"
        )


class IntegrationValidationError(BaseHTTPException):
    """Caller-supplied data is insufficient; rejected before any network call."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    message = "Invalid data for accounting provider"


class RemoteDocumentFaultError(BaseHTTPException):
    """The provider accepted the request but rejected the business document."""

    status_code = status.HTTP_502_BAD_GATEWAY
    message = "Accounting provider rejected the document"

    def __init__(self, code: Optional[str], message: str) -> None:
        self.code = code
        self.provider_message = message
        super().__init__(f"Provider error ({code or 'unknown'}): {message}")
