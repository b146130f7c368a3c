"""
Custom exception hierarchy for batch reconciliation.

Each exception type maps to one category of failure in the import
pipeline. The engine decides per category whether it ends an item,
becomes a warning, or is only logged.
"""

from __future__ import annotations


class ReconciliationError(Exception):
    """Base exception for all reconciliation failures."""

    def __init__(self, code: str, message: str, details: dict | None = None):
        self.code = code
        self.details = details or {}
        super().__init__(message)


class ReadFailure(ReconciliationError):
    """The source document could not be read from disk."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("READ_FAILED", message, details)


class ExtractionFailure(ReconciliationError):
    """The extraction service was unreachable, refused, or returned garbage."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("EXTRACTION_FAILED", message, details)


class NoIdentifierFailure(ReconciliationError):
    """Extraction succeeded but produced no usable parcel number."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("NO_IDENTIFIER", message, details)


class PlacementFailure(ReconciliationError):
    """Copying a document into a parcel folder failed."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("PLACEMENT_FAILED", message, details)


class PersistenceFailure(ReconciliationError):
    """A write to the local mirror or the remote store did not complete."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("PERSISTENCE_FAILED", message, details)


class InvalidTransitionError(ReconciliationError):
    """A batch item was moved through its lifecycle out of order."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("INVALID_TRANSITION", message, details)


class ConfigurationError(ReconciliationError):
    """Environment configuration is missing or malformed."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("CONFIGURATION_INVALID", message, details)
