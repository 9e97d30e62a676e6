"""Exception hierarchy shared by every pipeline stage.

Stages raise these; only the batch orchestrator catches them, turning each one
into a per-call failure entry.
"""
from typing import Any, List, Optional, Tuple


class PipelineError(Exception):
    """Base class for failures of a single call's processing."""


class ConfigurationError(PipelineError):
    """A required setting is missing or malformed."""


class RecordingNotFoundError(PipelineError):
    """No candidate path produced a usable recording."""

    def __init__(self, recording_location: str, attempts: List[Tuple[str, str]]):
        self.recording_location = recording_location
        self.attempts = attempts
        tried = "; ".join(f"{path} ({reason})" for path, reason in attempts) or "no candidates"
        super().__init__(f"Recording not found for '{recording_location}'. Tried: {tried}")


class RemoteTransportError(PipelineError):
    """The remote file store failed while connecting, stating or reading."""


class TransportTimeoutError(PipelineError):
    """An external call exceeded its deadline."""


class AudioValidationError(PipelineError):
    """Downloaded bytes are not a recognisable audio container."""

    def __init__(self, message: str, verdict: Optional[Any] = None):
        self.verdict = verdict
        super().__init__(message)


class EngineError(PipelineError):
    """An external engine rejected a request or reported a failed job."""
