"""
Error taxonomy for the adaptive content & progression engine.

Generation errors (transient, malformed, validation) are recovered inside
ContentGenerationPipeline and never reach a caller. PersistenceError is
surfaced to the API layer as a degraded-mode signal. ConfigurationError is
fatal and raised at startup.
"""


class AtlasError(Exception):
    """Base class for engine errors."""


class TransientGenerationError(AtlasError):
    """Timeout, network failure, or non-2xx response from the generative call."""


class MalformedResponseError(AtlasError):
    """Response body is not JSON or lacks a required field."""


class QuestionValidationError(AtlasError):
    """A present field is out of range. Repaired in place, never escalated."""


class PersistenceError(AtlasError):
    """The session / progress store is unreachable or rejected a write."""


class ConfigurationError(AtlasError):
    """The fallback bank is empty or invalid (deployment defect)."""


class SessionNotFoundError(AtlasError):
    pass


class RegionLockedError(AtlasError):
    pass
