"""
Exceptions raised by the Portal layer and the sync service.

    PortalError
    ├── NotAuthenticated          no usable Portal session
    │   └── UpstreamAuthError     Portal rejected the login or was unreachable
    ├── UpstreamUnavailable       transport failure / non-2xx on a data call
    │   └── NotFound              Portal has no record for the student
    └── EmptyResult               class roster came back empty

    LocalStoreError               local database write failed
"""


class PortalError(RuntimeError):
    """Base class for failures talking to the Portal."""


class NotAuthenticated(PortalError):
    """Raised when no valid Portal session can be obtained."""


class UpstreamAuthError(NotAuthenticated):
    """Raised when the Portal rejects credentials or cannot be reached to log in."""


class UpstreamUnavailable(PortalError):
    """Raised on a network failure or non-2xx response from a Portal data endpoint."""


class NotFound(UpstreamUnavailable):
    """Raised when the Portal returns no record for a requested student."""


class EmptyResult(PortalError):
    """Raised when a class roster request succeeds but lists no students."""


class LocalStoreError(RuntimeError):
    """Raised when an upsert or sync-log insert fails in the local database."""
