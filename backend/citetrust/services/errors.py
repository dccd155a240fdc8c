"""
Error taxonomy for the verification core.

RECOVERED LOCALLY (never reach the API caller):
- FetchFailure: source unreachable/unparseable → degraded record
- EmbeddingUnavailable: model failed to load → similarity left empty

SURFACED:
- InvalidInputError: malformed URL or empty claim, raised before any I/O
- PersistenceError: the store rejected a write (one item only)
- BatchUnavailableError: the store rejected every item of a batch
"""


class CitationTrustError(Exception):
    """Base class for all verification core errors."""


class InvalidInputError(CitationTrustError, ValueError):
    """The (url, claim) pair is malformed and was rejected before any I/O."""


class FetchFailure(CitationTrustError):
    """The source content could not be retrieved or extracted."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class EmbeddingUnavailable(CitationTrustError):
    """The embedding model could not be initialized for this process."""


class PersistenceError(CitationTrustError):
    """A verification record could not be written to the store."""


class BatchUnavailableError(CitationTrustError):
    """Every item in a batch failed to persist."""

    def __init__(self, message: str, failures: list | None = None):
        super().__init__(message)
        self.failures = failures or []
