"""
shared/errors.py

Error taxonomy shared by the gateway, dispatcher, session store and API layer.

Every public operation in the assistant either returns a well-typed value or raises one of the
exceptions below, so callers can decide per class whether to surface the error, substitute a
fallback, or log and continue:

- InvalidInput: caller supplied malformed or missing data (session id, empty code, no aspects).
  Always surfaced immediately and never retried.
- ModelUnavailable / ModelError: raised by the model gateway. The analysis dispatcher absorbs
  them into sentinel findings; the chat path replaces them with a user-facing fallback message.
- StorageFailure: the session snapshot could not be written. Surfaced to direct `save_analysis`
  callers, logged and swallowed on the analysis write-through path.
"""


class AssistantError(Exception):
    """Base class for all errors raised by the assistant core."""


class InvalidInput(AssistantError, ValueError):
    """Raised when a caller passes missing or malformed input."""


class ModelFailure(AssistantError):
    """Base class for failures coming from the model gateway."""


class ModelUnavailable(ModelFailure):
    """Raised when no model client binding is configured for a gateway."""


class ModelError(ModelFailure):
    """Raised when the remote model call errors, times out, or returns no usable payload."""


class StorageFailure(AssistantError):
    """Raised when the durable session snapshot cannot be persisted."""
