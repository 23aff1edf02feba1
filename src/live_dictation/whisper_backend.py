"""
In-process primary backend using faster-whisper.
Use instead of the HTTP backend when no transcription server is running.
"""

import logging
import math
import threading
from typing import List

import numpy as np

from .audio_capture import AudioSegment
from .errors import PrimaryUnreachable
from .transcription_client import PrimaryResult

logger = logging.getLogger(__name__)


def _segment_confidence(avg_logprobs: List[float]) -> float:
    """Mean per-segment probability, clipped to [0, 1]."""
    if not avg_logprobs:
        return 0.0
    probs = [math.exp(lp) for lp in avg_logprobs]
    return min(1.0, max(0.0, sum(probs) / len(probs)))


class WhisperBackend:
    """Primary transcription path backed by a local faster-whisper model."""

    def __init__(
        self,
        model_name: str = "small",
        language: str = "en",
        device: str = "auto",
        compute_type: str = "int8",
    ):
        self.model_name = model_name
        self.language = language
        self.device = device
        self.compute_type = compute_type

        self.model = None
        self._load_lock = threading.Lock()
        # WhisperModel is not safe for concurrent transcribe() calls
        self._infer_lock = threading.Lock()

    def _initialize_model(self):
        """Load the faster-whisper model on first use."""
        with self._load_lock:
            if self.model is not None:
                return
            from faster_whisper import WhisperModel

            logger.info(f"Loading faster-whisper model: {self.model_name}")
            self.model = WhisperModel(
                self.model_name,
                device=self.device,
                compute_type=self.compute_type,
            )
            logger.info("Model loaded successfully")

    def transcribe(self, segment: AudioSegment, context: str) -> PrimaryResult:
        try:
            self._initialize_model()
            audio_data = segment.samples.astype(np.float32)

            with self._infer_lock:
                segments, _info = self.model.transcribe(
                    audio_data,
                    language=self.language,
                    initial_prompt=context or None,
                    beam_size=1,  # Faster inference
                    best_of=1,
                    vad_filter=True,
                    condition_on_previous_text=False,
                )
                segments = list(segments)
        except Exception as e:
            raise PrimaryUnreachable(f"Local whisper failed: {e}") from e

        text = " ".join(s.text.strip() for s in segments if s.text.strip())
        confidence = _segment_confidence([s.avg_logprob for s in segments])
        return PrimaryResult(text=text, confidence=confidence if segments else None)
