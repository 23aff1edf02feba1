"""
Configuration defaults for live dictation.
Values can be overridden from the environment or the command line.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

# -------------------------
# AUDIO
# -------------------------
SAMPLE_RATE = 16000
CHANNELS = 1
SEGMENT_SECONDS = 4.0  # balance between latency and whole words per segment
BLOCK_SECONDS = 0.1

# -------------------------
# STITCHING
# -------------------------
CONTEXT_CHARS = 150

# -------------------------
# CONFIDENCE
# -------------------------
LOW_CONFIDENCE_THRESHOLD = 0.70
DEFAULT_PRIMARY_CONFIDENCE = 0.8
FALLBACK_CONFIDENCE = 0.95

# -------------------------
# NETWORK
# -------------------------
BACKEND_URL = "http://localhost:8000"
CONNECT_TIMEOUT = 3.0
CALL_TIMEOUT = 15.0  # per backend call: primary read, then fallback
MAX_CONCURRENT_REQUESTS = 4

# -------------------------
# GEMINI
# -------------------------
GEMINI_MODEL = "gemini-2.0-flash"

# -------------------------
# REFINEMENT
# -------------------------
REFINEMENT_DEBOUNCE_SECONDS = 0.8

LANGUAGE_PLACEHOLDER = "Detecting..."


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Invalid {name}: expected a number (got '{value}')")


@dataclass
class PipelineConfig:
    """Tunable settings for one dictation pipeline."""

    sample_rate: int = SAMPLE_RATE
    segment_seconds: float = SEGMENT_SECONDS
    block_seconds: float = BLOCK_SECONDS
    device: Optional[int] = None

    context_chars: int = CONTEXT_CHARS

    backend_url: str = BACKEND_URL
    connect_timeout: float = CONNECT_TIMEOUT
    call_timeout: float = CALL_TIMEOUT
    drain_timeout: float = CALL_TIMEOUT
    max_concurrent_requests: int = MAX_CONCURRENT_REQUESTS

    gemini_api_key: Optional[str] = field(default=None, repr=False)
    gemini_model: str = GEMINI_MODEL

    refinement_debounce: float = REFINEMENT_DEBOUNCE_SECONDS

    @property
    def segment_timeout(self) -> float:
        """Watchdog budget for one segment: primary connect and read plus one fallback call."""
        return self.connect_timeout + 2 * self.call_timeout

    @classmethod
    def from_env(cls, **overrides) -> "PipelineConfig":
        """Build a config from DICTATION_* / GEMINI_API_KEY environment variables."""
        call_timeout = _env_float("DICTATION_CALL_TIMEOUT", CALL_TIMEOUT)
        values = dict(
            backend_url=os.environ.get("DICTATION_BACKEND_URL", BACKEND_URL).rstrip("/"),
            segment_seconds=_env_float("DICTATION_SEGMENT_SECONDS", SEGMENT_SECONDS),
            call_timeout=call_timeout,
            drain_timeout=call_timeout,
            gemini_api_key=os.environ.get("GEMINI_API_KEY") or os.environ.get("API_KEY"),
            gemini_model=os.environ.get("DICTATION_GEMINI_MODEL", GEMINI_MODEL),
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
