"""Custom exceptions for the InvestorBase research service."""
from typing import Optional


class InvestorBaseError(Exception):
    """Base class for domain errors. Carries the underlying cause when there is one."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class ResearchValidationError(InvestorBaseError):
    """Raised before any provider call when a research request is malformed."""


class CompanyNotFoundError(InvestorBaseError):
    """Raised when the company a research request points at does not exist."""


class ProviderError(InvestorBaseError):
    """The research provider produced no usable text."""


class ProviderTransportError(ProviderError):
    """Network failure, non-2xx response or timeout talking to the provider."""


class ProviderShapeError(ProviderError):
    """A 2xx provider response without choices[0].message.content."""


class ResearchStateError(InvestorBaseError):
    """Raised on an attempt to move a research record out of a terminal status."""
