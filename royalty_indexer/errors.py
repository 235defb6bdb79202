"""
Error taxonomy for the Royalty Indexer.
"""

from typing import Any, Dict, Optional


class RoyaltyIndexerError(Exception):
    """Base class for all indexer errors."""

    code = "ROYALTY_INDEXER_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message}


class DuplicateEvent(RoyaltyIndexerError):
    """Raised when an event id has already been applied."""

    code = "DUPLICATE_EVENT"

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Event {event_id} has already been processed")


class UpstreamUnavailable(RoyaltyIndexerError):
    """Raised when the artifact source fails or times out."""

    code = "UPSTREAM_UNAVAILABLE"

    def __init__(self, operation: str, artifact: str, cause: Optional[str] = None):
        self.operation = operation
        self.artifact = artifact
        self.cause = cause
        message = f"Artifact source call {operation} failed for {artifact}"
        if cause:
            message = f"{message}: {cause}"
        super().__init__(message)


class MissingPublicationRecord(RoyaltyIndexerError):
    """Raised when a sale references an artifact with no publication row."""

    code = "MISSING_PUBLICATION"

    def __init__(self, artifact: str):
        self.artifact = artifact
        super().__init__(f"No publication recorded for {artifact}")


class SaleNotFound(RoyaltyIndexerError):
    """Raised when a sale id does not exist."""

    code = "SALE_NOT_FOUND"

    def __init__(self, sale_id: str):
        self.sale_id = sale_id
        super().__init__(f"Sale {sale_id} not found")


class NothingToWithdraw(RoyaltyIndexerError):
    """Raised when a beneficiary withdraws with a zero balance."""

    code = "NOTHING_TO_WITHDRAW"

    def __init__(self, beneficiary: str):
        self.beneficiary = beneficiary
        super().__init__(f"No pending royalties for {beneficiary}")


class StorageFailure(RoyaltyIndexerError):
    """Raised when a transaction fails to commit."""

    code = "STORAGE_FAILURE"

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Storage failure during {operation}: {cause}")
