"""Exception types shared across ingestion, embedding and retrieval.

There is no duplicate-key error: stores treat conflicts as a
successful no-op and never raise.
"""


class ChatloreError(Exception):
    """Base class for chatlore errors."""


class ParseFailure(ChatloreError):
    """A raw line or record could not be decoded (bad JSON, bad header)."""


class ValidationFailure(ChatloreError):
    """A decoded record is missing a required field or has an invalid value."""


class BackendUnavailable(ChatloreError):
    """An external service (bridge, embedding backend) could not be reached."""


class BridgeUnavailableError(BackendUnavailable):
    """The chat bridge sidecar refused the connection or returned an error.

    ``connection_refused`` distinguishes "bridge not running" (expected, logged
    at DEBUG) from other transport or HTTP failures.
    """

    def __init__(self, message: str, *, connection_refused: bool = False) -> None:
        super().__init__(message)
        self.connection_refused = connection_refused


class EmbeddingBackendError(BackendUnavailable):
    """The embedding backend failed or returned an unusable response."""


class MissingEmbeddingError(ChatloreError):
    """A record has no embedding yet, so it cannot anchor a similarity search."""
