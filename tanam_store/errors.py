class StoreError(Exception):
    """Base exception for all document store errors."""


class StoreUnavailable(StoreError):
    """Raised when the underlying database cannot be reached."""


class NotFound(StoreError):
    """Raised when a referenced document does not exist."""

    def __init__(self, collection: str, document_id: str):
        self.collection = collection
        self.document_id = document_id
        super().__init__(f"Document '{document_id}' not found in '{collection}'")


class TransactionConflict(StoreError):
    """Raised when a transaction keeps conflicting after every retry attempt."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Transaction aborted after {attempts} conflicting attempts")


class ValidationError(StoreError):
    """Reserved for payload shape checks."""


class MultipleMatches(StoreError):
    """Raised when a lookup that must be unique matches more than one document."""

    def __init__(self, collection: str, criteria: dict[str, str]):
        self.collection = collection
        self.criteria = criteria
        super().__init__(f"More than one document in '{collection}' matches {criteria}")
