"""Exceptions raised inside the narrative engine."""


class NarrativeEngineError(Exception):
    """Base class for engine errors."""
    pass


class StoreError(NarrativeEngineError):
    """Raised when the entity store rejects a read or write."""
    pass


class RecordNotFoundError(StoreError):
    """Raised when a record id does not resolve in the store."""
    pass


class ExtractionError(NarrativeEngineError):
    """Raised when the LLM collaborator cannot produce a response."""
    pass


class ActionExecutionError(NarrativeEngineError):
    """Raised when a single plan action cannot be executed."""
    pass
