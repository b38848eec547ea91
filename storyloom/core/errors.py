"""Exception taxonomy for the book-context engine."""


class StoryloomError(Exception):
    """Base class for errors raised by storyloom."""


class EmbeddingError(StoryloomError):
    """Raised when text cannot be embedded.

    Covers empty input, a missing provider configuration, and the case where
    every configured provider failed.
    """

    def __init__(self, message: str, provider: str | None = None):
        super().__init__(message)
        self.provider = provider


class ProviderNotConfiguredError(EmbeddingError):
    """No alternate config was given and no default provider exists."""

    def __init__(self, message: str = "no provider configured"):
        super().__init__(message)


class ChunkStoreError(StoryloomError):
    """Raised when the chunk store is unavailable or rejects a write."""

    def __init__(self, message: str, book_id: str | None = None):
        super().__init__(message)
        self.book_id = book_id


class BudgetEstimationError(StoryloomError):
    """Planning budget configured with an unusable chars-per-token ratio.

    Estimation itself never raises; bad lengths are clamped to zero.
    """
