"""Errors raised by the chat services.

Managers raise these; the conversation orchestrator and the API routes turn
them into user-visible state. None of them should escape as a crash.
"""


class ChatError(Exception):
    """Base error for the chat backend."""
    pass


class NotFoundError(ChatError):
    """Requested record or file does not exist."""
    pass


class ModelNotFoundError(NotFoundError):
    """Model is not in the catalog or has not been downloaded."""
    pass


class AlreadyInProgressError(ChatError):
    """The same operation is already running."""
    pass


class AlreadyDownloadingError(AlreadyInProgressError):
    """A transfer for this model is already in flight."""
    pass


class GenerationInProgressError(AlreadyInProgressError):
    """A response is already being generated."""
    pass


class TransferFailedError(ChatError):
    """Network or disk failure while downloading a model."""
    pass


class DownloadCancelledError(ChatError):
    """The download was cancelled before it completed."""
    pass


class ModelNotReadyError(ChatError):
    """No model is loaded into the inference engine."""
    pass


class ModelInitializationError(ChatError):
    """The inference engine failed to load a model."""
    pass


class EmptyGenerationError(ChatError):
    """The model produced only whitespace."""
    pass


class GenerationFailedError(ChatError):
    """The inference engine raised during generation."""
    pass


class RateLimitedError(ChatError):
    """A generation was requested too soon after the previous one."""
    pass
