"""Failure taxonomy for interop test-case runs."""

from typing import Optional

# Text quic-go reports when version negotiation finds no overlap. The interop
# runner checks for this exact wording.
VERSION_NEGOTIATION_FAILURE = "No compatible QUIC version found"


class InteropError(Exception):
    """Base class for all test-case failures."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


class UnsupportedTestCase(InteropError):
    """The requested test case is not implemented by this client."""


class InvalidInput(InteropError):
    """The URL list does not satisfy the test case's preconditions."""


class RequestConstructionError(InteropError):
    """A URL could not be turned into a request."""


class TransportError(InteropError):
    """The transport failed to complete an exchange or to close."""

    @classmethod
    def wrap(cls, exc: BaseException) -> "TransportError":
        if isinstance(exc, TransportError):
            return exc
        return cls(str(exc) or exc.__class__.__name__, cause=exc)


class StorageError(InteropError):
    """The response body could not be written to disk."""


class ExpectationViolation(InteropError):
    """A protocol probe observed an outcome other than the expected one."""
