from typing import Optional


class ValidationError(Exception):
    """Creation request is malformed or incomplete."""


class ProviderError(Exception):
    """Provider call did not return a success status.

    Carries the provider's status code (None when no HTTP response was received)
    and the raw response body for diagnosis.
    """

    def __init__(self, status_code: Optional[int], body: str = "", message: str = "Provider request failed") -> None:
        super().__init__(f"{message} (status={status_code})")
        self.status_code = status_code
        self.body = body


class EmptyResultError(Exception):
    """Provider answered successfully but returned nothing usable."""


class CredentialExchangeError(Exception):
    """Authorization code could not be exchanged for an access token."""
