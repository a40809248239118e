"""
Sync error taxonomy.

Every failure the engine expects from a provider call is expressed as a
SyncError subclass. The orchestrator absorbs these and encodes the outcome
in persisted state; anything classify_error() cannot place is a programming
error and is left to propagate.

    QuotaExceededError         no budget left; retried next quota period
    TransientNetworkError      timeout / 5xx / reset; retried with backoff
    AuthorizationRevokedError  provider rejected our access; needs re-consent
    MalformedItemError         one item failed to map; rest of page continues
    ProviderFatalError         account deleted, channel missing; needs an operator
"""
import asyncio
from typing import Optional

import httpx


# ── Exceptions ────────────────────────────────────────────────────────────────

class SyncError(RuntimeError):
    """Base class for expected sync failures."""

    retryable = False


class QuotaExceededError(SyncError):
    """Raised when the quota budget (ours or the provider's) is exhausted."""

    retryable = True


class TransientNetworkError(SyncError):
    """Raised for timeouts, connection resets, 429 and 5xx responses."""

    retryable = True


class AuthorizationRevokedError(SyncError):
    """Raised when the provider rejects a call because access was revoked."""


class ProviderFatalError(SyncError):
    """Raised for non-retryable provider failures (e.g. channel not found)."""


class MalformedItemError(SyncError):
    """Raised when a single provider item cannot be mapped to content."""

    def __init__(self, reason: str, provider_item_id: Optional[str] = None):
        super().__init__(reason)
        self.provider_item_id = provider_item_id


class InvalidTransitionError(RuntimeError):
    """Raised on an illegal sync state transition. Always a programming error."""


# ── Classification ────────────────────────────────────────────────────────────

def classify_error(exc: BaseException) -> Optional[SyncError]:
    """
    Map an exception raised by a provider call onto the sync taxonomy.

    Returns:
        A SyncError describing the failure, or None if the exception is not
        an expected provider failure (the caller should re-raise it).
    """
    if isinstance(exc, SyncError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return TransientNetworkError(f"Provider call timed out: {exc!r}")
    if isinstance(exc, (httpx.TransportError, ConnectionError)):
        return TransientNetworkError(f"Provider connection failed: {exc!r}")
    return None
