"""
Exception types for the dictation pipeline.

Only CaptureUnavailable and StreamingConnectionLost ever reach the session as
an ERROR status. The rest are raised by collaborators and absorbed locally.
"""


class DictationError(Exception):
    """Base class for all pipeline errors."""


class CaptureUnavailable(DictationError):
    """Audio input device could not be opened (permission denied, missing, unsupported)."""


class StreamingConnectionLost(DictationError):
    """A live audio stream dropped while the session was recording."""


class PrimaryUnreachable(DictationError):
    """Primary transcription backend failed or returned a non-success response."""


class FallbackFailure(DictationError):
    """Secondary transcription provider failed."""


class RefinementFailure(DictationError):
    """Refinement transform failed."""
