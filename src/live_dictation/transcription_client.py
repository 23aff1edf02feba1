"""
Transcription Client

Resolves one audio segment into a Fragment. Tries the primary backend first and
falls back to the secondary provider (Gemini) only if the primary is unreachable
or answers with a non-success response. Never raises: a segment that neither
path can transcribe becomes an empty zero-confidence fragment.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import urlparse

import requests

from . import config
from .audio_capture import AudioSegment
from .errors import FallbackFailure, PrimaryUnreachable
from .models import Fragment

logger = logging.getLogger(__name__)


@dataclass
class PrimaryResult:
    """Well-formed primary response. confidence is None when the backend omits it."""

    text: str
    confidence: Optional[float] = None


def _validate_backend_url(url: str) -> str:
    """Validate backend URL has valid scheme and netloc.

    Raises:
        ValueError: If URL is malformed
    """
    parsed = urlparse(url)

    if parsed.scheme not in ("http", "https"):
        raise ValueError(
            f"Invalid backend URL: must start with http:// or https:// (got '{url}')"
        )
    if not parsed.netloc or not parsed.hostname:
        raise ValueError(f"Invalid backend URL: missing host (got '{url}')")

    return url.rstrip("/")


def _clamp_confidence(value) -> Optional[float]:
    if value is None:
        return None
    try:
        value = float(value)
    except (TypeError, ValueError):
        return None
    return min(1.0, max(0.0, value))


class HttpTranscriptionBackend:
    """Primary path: POST the segment to a transcription server's /chunk endpoint."""

    def __init__(
        self,
        backend_url: str = config.BACKEND_URL,
        timeout: float = config.CALL_TIMEOUT,
        connect_timeout: float = config.CONNECT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.backend_url = _validate_backend_url(backend_url)
        self.timeout = timeout  # Read timeout
        self.connect_timeout = connect_timeout  # Fail fast if server unreachable
        self.http = session or requests.Session()

    def transcribe(self, segment: AudioSegment, context: str) -> PrimaryResult:
        """Submit segment + context. Raises PrimaryUnreachable on any non-success."""
        files = {"audio": (f"segment_{segment.sequence}.wav", segment.to_wav_bytes(), "audio/wav")}
        data = {"initial_prompt": context}

        try:
            response = self.http.post(
                f"{self.backend_url}/chunk",
                files=files,
                data=data,
                timeout=(self.connect_timeout, self.timeout),
            )
        except requests.RequestException as e:
            raise PrimaryUnreachable(f"Backend unreachable: {e}") from e

        if response.status_code != 200:
            raise PrimaryUnreachable(f"Backend error: {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise PrimaryUnreachable(f"Malformed backend response: {e}") from e
        if not isinstance(payload, dict):
            raise PrimaryUnreachable("Malformed backend response: expected an object")

        text = payload.get("text") or ""
        return PrimaryResult(text=str(text).strip(), confidence=_clamp_confidence(payload.get("confidence")))

    def get_status(self) -> Dict:
        """Best-effort health check of the server's /status endpoint, run at CLI startup."""
        try:
            response = self.http.get(f"{self.backend_url}/status", timeout=2.0)
            if response.status_code == 200:
                payload = response.json()
                if isinstance(payload, dict):
                    return payload
        except (requests.RequestException, ValueError):
            pass
        return {"status": "unavailable", "ready": False}


class TranscriptionClient:
    """Turns (segment, boundary context) into a Fragment via primary then fallback."""

    def __init__(
        self,
        primary,
        fallback=None,
        context_chars: int = config.CONTEXT_CHARS,
        default_confidence: float = config.DEFAULT_PRIMARY_CONFIDENCE,
        fallback_confidence: float = config.FALLBACK_CONFIDENCE,
    ):
        """
        Args:
            primary: Object with transcribe(segment, context) -> PrimaryResult,
                raising PrimaryUnreachable on failure.
            fallback: Object with transcribe(wav_bytes, context) -> str, raising
                FallbackFailure on failure. None disables the fallback path.
        """
        self.primary = primary
        self.fallback = fallback
        self.context_chars = context_chars
        self.default_confidence = default_confidence
        self.fallback_confidence = fallback_confidence

    def transcribe(self, segment: AudioSegment, context: str = "") -> Fragment:
        context = context[-self.context_chars:] if self.context_chars > 0 else ""

        try:
            result = self.primary.transcribe(segment, context)
        except PrimaryUnreachable as e:
            logger.info(f"Primary failed for segment {segment.sequence}, using fallback: {e}")
        except Exception as e:
            logger.warning(f"Primary raised {type(e).__name__} for segment {segment.sequence}: {e}")
        else:
            confidence = result.confidence
            if confidence is None:
                confidence = self.default_confidence
            return Fragment(text=result.text.strip(), confidence=confidence, source="primary")

        if self.fallback is None:
            logger.warning(f"No fallback configured, segment {segment.sequence} lost")
            return Fragment.failed()

        try:
            text = self.fallback.transcribe(segment.to_wav_bytes(), context)
        except FallbackFailure as e:
            logger.warning(f"Both transcription paths failed for segment {segment.sequence}: {e}")
            return Fragment.failed()
        except Exception as e:
            logger.warning(f"Fallback raised {type(e).__name__} for segment {segment.sequence}: {e}")
            return Fragment.failed()

        return Fragment(text=text.strip(), confidence=self.fallback_confidence, source="fallback")
