"""
Gemini collaborators: fallback transcription and transcript refinement.
"""

import logging
from typing import Dict, Optional

import google.generativeai as genai

from . import config
from .errors import FallbackFailure, RefinementFailure
from .models import TranscriptionMode

logger = logging.getLogger(__name__)


VERBATIM_DIRECTIVE = """TASK: VERBATIM TRANSCRIPTION.

DIRECTIONS:
1. Transcribe EXACTLY what is spoken.
2. If a word at the very beginning or end sounds slightly clipped (e.g., "workin-" or "-ing"), use the audio context to complete that SPECIFIC word correctly (e.g., "working").
3. DO NOT add punctuation.
4. DO NOT generate new sentences or "complete" the user's thoughts.
5. Return ONLY the text. No conversational filler.

PREVIOUS WORDS (for flow): "{context}\""""

REFINEMENT_DIRECTIVES = {
    TranscriptionMode.CLEAN: (
        "You are a transcription editor. Add correct punctuation and capitalization "
        "to the text. DO NOT change words, DO NOT fix grammar, DO NOT 'standardize' "
        "regional English (Nigerian, Indian, etc.), and DO NOT remove any slang or "
        "idioms. Output ONLY the original text with punctuation."
    ),
    TranscriptionMode.STANDARDIZED: (
        "You are a professional scribe. Standardize the following speech-to-text into "
        "formal English prose. Fix syntax errors and remove disfluencies (ums, ahs). "
        "Ensure the core meaning remains identical. Output ONLY the rewritten text."
    ),
}


def _response_text(response) -> str:
    # .text raises ValueError when the response has no usable candidate
    try:
        return (response.text or "").strip()
    except ValueError:
        return ""


class GeminiTranscriber:
    """Secondary transcription provider with a fixed verbatim directive."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = config.GEMINI_MODEL,
        timeout: float = config.CALL_TIMEOUT,
    ):
        self.model_name = model
        self.timeout = timeout
        self.model = None

        if api_key:
            genai.configure(api_key=api_key)
            self.model = genai.GenerativeModel(self.model_name)
            logger.info(f"Gemini fallback initialized with model: {model}")
        else:
            logger.warning("No Gemini API key - fallback transcription disabled")

    def is_configured(self) -> bool:
        return self.model is not None

    def transcribe(self, wav_bytes: bytes, context: str) -> str:
        """Transcribe WAV audio verbatim. Raises FallbackFailure on any error."""
        if self.model is None:
            raise FallbackFailure("Gemini fallback is not configured")

        prompt = VERBATIM_DIRECTIVE.format(context=context)
        try:
            response = self.model.generate_content(
                [{"mime_type": "audio/wav", "data": wav_bytes}, prompt],
                generation_config={"temperature": 0.0},
                request_options={"timeout": self.timeout},
            )
        except Exception as e:
            raise FallbackFailure(f"Gemini transcription failed: {e}") from e

        return _response_text(response)


class GeminiRefiner:
    """Refinement transform: punctuation-only (CLEAN) or full standardization."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = config.GEMINI_MODEL,
        timeout: float = config.CALL_TIMEOUT,
    ):
        self.model_name = model
        self.timeout = timeout
        self.enabled = bool(api_key)
        self._models: Dict[TranscriptionMode, "genai.GenerativeModel"] = {}

        if api_key:
            genai.configure(api_key=api_key)
        else:
            logger.warning("No Gemini API key - refinement disabled")

    def _model_for(self, mode: TranscriptionMode):
        if mode not in self._models:
            self._models[mode] = genai.GenerativeModel(
                self.model_name,
                system_instruction=REFINEMENT_DIRECTIVES[mode],
            )
        return self._models[mode]

    def __call__(self, text: str, mode: TranscriptionMode) -> str:
        return self.refine(text, mode)

    def refine(self, text: str, mode: TranscriptionMode) -> str:
        """Return the refined text. Raises RefinementFailure on any error."""
        mode = TranscriptionMode(mode)
        if mode == TranscriptionMode.RAW or not text.strip():
            return text
        if not self.enabled:
            raise RefinementFailure("Gemini refinement is not configured")

        try:
            response = self._model_for(mode).generate_content(
                f"Input Transcription: {text}",
                generation_config={"temperature": 0.1},
                request_options={"timeout": self.timeout},
            )
        except Exception as e:
            raise RefinementFailure(f"Gemini refinement failed: {e}") from e

        return _response_text(response) or text
