"""
Domain exceptions shared across connectors, notifier and API layer.

Hierarchy:
- CovrilyError
  - UpstreamError (carries the HTTP status when there was one)
    - SendError (notifier transport rejected the message)
  - ReauthorizeNeeded (never retried; user must re-grant consent)
  - DeadlineNotFound, DeadlineStateConflict (decision endpoint)
  - CredentialConflict (credential kept changing under a read-modify-write)
"""
from typing import Optional


class CovrilyError(Exception):
    """Base class for application errors"""
    pass


class UpstreamError(CovrilyError):
    """An external HTTP call failed or returned a malformed payload"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SendError(UpstreamError):
    """The notifier transport rejected (or could not attempt) a message"""
    pass


class ReauthorizeNeeded(CovrilyError):
    """Stored credentials are missing, revoked or flagged for reauthorization"""

    def __init__(self, message: str = "reauthorization required", provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider


class DeadlineNotFound(CovrilyError):
    """No deadline with that id belongs to the user"""
    pass


class DeadlineStateConflict(CovrilyError):
    """The requested decision does not apply to the deadline's current status"""

    def __init__(self, message: str, status: Optional[str] = None):
        super().__init__(message)
        self.status = status


class CredentialConflict(CovrilyError):
    """Concurrent writers kept replacing the credential between read and write"""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider
