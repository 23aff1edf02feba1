"""
Live Dictation

Real-time speech-to-text that streams microphone audio in fixed-length segments
to a transcription backend, stitches the returned fragments into a running
transcript, and optionally refines it into a cleaned or standardized view.
"""

__version__ = "1.0.0"
__description__ = "Boundary-aware real-time dictation with fallback transcription and refinement"

from .audio_capture import AudioSegment, AudioSegmenter
from .config import PipelineConfig
from .models import Fragment, SessionStatus, TranscriptionMode
from .pipeline import DictationPipeline
from .session import SessionState
from .transcription_client import HttpTranscriptionBackend, TranscriptionClient

__all__ = [
    "AudioSegment",
    "AudioSegmenter",
    "DictationPipeline",
    "Fragment",
    "HttpTranscriptionBackend",
    "PipelineConfig",
    "SessionState",
    "SessionStatus",
    "TranscriptionClient",
    "TranscriptionMode",
]
