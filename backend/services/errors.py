"""
Error taxonomy for the HubSpot client sync.

How each error is handled:
- WebhookValidationError: the whole batch is rejected with HTTP 400.
- UnresolvedTenantError: the event is dropped and logged, never retried.
- TransientStoreError: the batch is aborted with HTTP 500 so HubSpot redelivers.
- UnsupportedDialectError: the client store is bound to a database it cannot upsert into.
- MergeConsistencyError: the merge transaction is rolled back and the event
  is reported as failed.
- HubSpotAPIError: an outbound HubSpot call failed.
"""
from __future__ import annotations

from typing import Any, Optional


class ClientSyncError(Exception):
    """Base class for all sync errors."""


class WebhookValidationError(ClientSyncError):
    """Raised when a webhook batch fails signature or shape validation."""


class UnresolvedTenantError(ClientSyncError):
    """Raised when a HubSpot portal has no installation record."""

    def __init__(self, portal_id: str) -> None:
        self.portal_id = portal_id
        super().__init__(f"No organization linked to HubSpot portal {portal_id}")


class TransientStoreError(ClientSyncError):
    """Raised when the database is unreachable and the batch should be redelivered."""


class UnsupportedDialectError(ClientSyncError):
    """Raised when the client store is bound to a database without ON CONFLICT upserts."""

    def __init__(self, dialect_name: str) -> None:
        self.dialect_name = dialect_name
        super().__init__(f"Client upsert is not supported on {dialect_name}")


class MergeConsistencyError(ClientSyncError):
    """Raised when a contact merge could not be applied atomically."""

    def __init__(
        self,
        portal_id: str,
        old_contact_id: str,
        new_contact_id: str,
        reason: str,
    ) -> None:
        self.portal_id = portal_id
        self.old_contact_id = old_contact_id
        self.new_contact_id = new_contact_id
        super().__init__(
            f"Merge {old_contact_id} -> {new_contact_id} in portal {portal_id} "
            f"rolled back: {reason}"
        )


class HubSpotAPIError(ClientSyncError):
    """Raised when a HubSpot API call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message)


def is_transient_store_error(exc: BaseException) -> bool:
    """True when ``exc`` means the database was unreachable rather than the data being wrong."""
    from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

    if isinstance(exc, TransientStoreError):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return isinstance(exc, (OperationalError, InterfaceError, ConnectionError, TimeoutError))
