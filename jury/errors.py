"""Error taxonomy shared by the core, the API and the MCP server."""
from __future__ import annotations


class JuryError(Exception):
    """Base class for errors raised by the jury core."""


class EmptyInput(JuryError):
    """Neither pitch text nor an image was supplied."""


class RemoteCallFailed(JuryError):
    """A remote model or speech call failed (network, timeout, non-2xx)."""
    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class MalformedResponse(JuryError):
    """The remote model returned something that is not a valid verdict."""


class SessionNotPrimed(JuryError):
    """Chat was attempted before any analysis or restoration."""


class NotFound(JuryError):
    """A case id does not exist in the history."""


class StorageQuotaExceeded(JuryError):
    """The backing store refused a write because it is over capacity."""


class StorageFailed(JuryError):
    """Persisting the history failed even after dropping the image payload."""


class CallInFlight(JuryError):
    """A second trigger arrived while the same kind of call was outstanding."""
