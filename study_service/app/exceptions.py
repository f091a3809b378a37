from __future__ import annotations


class StudyServiceError(Exception):
    """Base exception for all study-service errors."""


class CreditStoreUnavailableError(StudyServiceError):
    """A credit store (remote or local) could not be reached within the timeout."""


class CorruptLedgerDataError(StudyServiceError):
    """Stored ledger data violates an invariant (negative balance, empty grant, bad document)."""


class IdentityRequiredError(StudyServiceError):
    """A remote-only operation was attempted without an authenticated identity."""


class IdentityMismatchError(StudyServiceError):
    """A transaction or record belongs to a different identity."""


class ConcurrentSpendError(StudyServiceError):
    """Conditional updates kept conflicting with other writers on the same account."""


class GenerationError(StudyServiceError):
    """Failures calling the hosted generation functions (network, auth, empty payload)."""


class RecordNotFoundError(StudyServiceError):
    """A study record does not exist for the current identity."""


class ServiceTokenRequiredError(StudyServiceError):
    """An internal-only endpoint was called without a valid service token."""
