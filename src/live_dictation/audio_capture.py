"""
Microphone capture and fixed-window segmentation.
Turns a continuous input stream into numbered audio segments ready for transcription.
"""

import io
import logging
import queue
import threading
import time
import wave
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import numpy as np

from . import config
from .errors import CaptureUnavailable, StreamingConnectionLost

logger = logging.getLogger(__name__)


@dataclass
class AudioSegment:
    """One fixed-duration slice of captured audio."""

    sequence: int
    samples: np.ndarray
    sample_rate: int
    started_at: float

    @property
    def duration(self) -> float:
        return len(self.samples) / self.sample_rate

    def to_wav_bytes(self) -> bytes:
        """Encode as 16-bit PCM mono WAV."""
        audio = self.samples
        if audio.dtype != np.int16:
            audio = (np.clip(audio, -1.0, 1.0) * 32767).astype(np.int16)

        buffer = io.BytesIO()
        with wave.open(buffer, "wb") as wf:
            wf.setnchannels(1)
            wf.setsampwidth(2)  # 16-bit
            wf.setframerate(self.sample_rate)
            wf.writeframes(audio.tobytes())
        return buffer.getvalue()


class AudioSegmenter:
    """Microphone capture that emits one AudioSegment per elapsed window."""

    def __init__(
        self,
        on_segment: Callable[[AudioSegment], None],
        sample_rate: int = config.SAMPLE_RATE,
        segment_duration: float = config.SEGMENT_SECONDS,
        device: Optional[int] = None,
        block_duration: float = config.BLOCK_SECONDS,
        on_error: Optional[Callable[[Exception], None]] = None,
    ):
        """
        Initialize the segmenter.

        Args:
            on_segment: Called with each closed segment, in emission order, on a
                dispatcher thread (never the audio callback thread).
            sample_rate: Capture sample rate in Hz.
            segment_duration: Window length in seconds.
            device: sounddevice input device id (None for the system default).
            block_duration: Size of each capture callback block in seconds.
            on_error: Called once if the stream fails after it has started.
        """
        if segment_duration <= 0:
            raise ValueError("segment_duration must be positive")

        self.on_segment = on_segment
        self.on_error = on_error
        self.sample_rate = sample_rate
        self.segment_duration = segment_duration
        self.segment_samples = int(sample_rate * segment_duration)
        self.block_size = max(1, int(sample_rate * block_duration))
        self.device = device

        self.stream = None
        self.is_running = False
        self.lock = threading.Lock()

        self._blocks: List[np.ndarray] = []
        self._buffered = 0
        self._segment_started: Optional[float] = None
        self._next_sequence = 0

        # Closed segments wait here so on_segment never runs on the audio thread
        self._segments: "queue.Queue[Optional[AudioSegment]]" = queue.Queue()
        self._dispatch_thread: Optional[threading.Thread] = None

        # Error tracking
        self.errors = 0
        self.max_errors = 5

    @staticmethod
    def list_audio_devices() -> List[Dict]:
        """List available input devices."""
        try:
            import sounddevice as sd
            devices = sd.query_devices()
        except Exception as e:
            logger.error(f"Failed to list audio devices: {e}")
            return []

        return [
            {
                "id": i,
                "name": device["name"],
                "channels": device["max_input_channels"],
                "sample_rate": device["default_samplerate"],
            }
            for i, device in enumerate(devices)
            if device["max_input_channels"] > 0
        ]

    def _create_stream(self):
        """Create the input stream, mapping any failure to CaptureUnavailable."""
        try:
            import sounddevice as sd
            stream = sd.InputStream(
                device=self.device,
                channels=config.CHANNELS,
                samplerate=self.sample_rate,
                blocksize=self.block_size,
                callback=self._audio_callback,
                dtype=np.float32,
            )
            logger.info(f"Created microphone stream (device: {self.device})")
            return stream
        except Exception as e:
            raise CaptureUnavailable(f"Microphone unavailable: {e}") from e

    def _audio_callback(self, indata, frames, time_info, status):
        """sounddevice callback; runs on the audio thread."""
        if status:
            logger.warning(f"Mic audio status: {status}")

        try:
            if len(indata.shape) > 1:
                audio_data = np.mean(indata, axis=1)
            else:
                audio_data = indata.flatten()
            self.feed(audio_data.copy())
        except Exception as e:
            self.errors += 1
            logger.error(f"Mic callback error ({self.errors}/{self.max_errors}): {e}")
            if self.errors >= self.max_errors:
                threading.Thread(
                    target=self._abort,
                    args=(StreamingConnectionLost(f"Audio stream lost: {e}"),),
                    daemon=True,
                ).start()
                import sounddevice as sd
                raise sd.CallbackAbort

    def _abort(self, error: Exception):
        # The stream cannot be stopped from inside its own callback
        self.stop(flush=False)
        if self.on_error:
            self.on_error(error)

    def feed(self, audio_data: np.ndarray):
        """Append captured samples and emit every segment whose window has filled."""
        with self.lock:
            if not self.is_running:
                return
            if self._segment_started is None:
                self._segment_started = time.time()

            self._blocks.append(np.asarray(audio_data, dtype=np.float32))
            self._buffered += len(audio_data)

            while self._buffered >= self.segment_samples:
                buffered = np.concatenate(self._blocks)
                segment_audio = buffered[:self.segment_samples]
                rest = buffered[self.segment_samples:]

                self._emit_locked(segment_audio)

                self._blocks = [rest] if len(rest) else []
                self._buffered = len(rest)
                self._segment_started = time.time() if len(rest) else None

    def _emit_locked(self, samples: np.ndarray):
        segment = AudioSegment(
            sequence=self._next_sequence,
            samples=samples,
            sample_rate=self.sample_rate,
            started_at=self._segment_started or time.time(),
        )
        self._next_sequence += 1
        logger.debug(f"Segment {segment.sequence} closed ({segment.duration:.2f}s)")
        self._segments.put(segment)

    def _dispatch_worker(self, segments: "queue.Queue[Optional[AudioSegment]]"):
        """Hand closed segments to on_segment, in order, until the stop sentinel."""
        while True:
            segment = segments.get()
            if segment is None:
                break
            try:
                self.on_segment(segment)
            except Exception:
                logger.exception(f"Segment handler failed for segment {segment.sequence}")
        logger.debug("Segment dispatcher stopped")

    def start(self):
        """Acquire the microphone and start emitting segments."""
        if self.is_running:
            logger.warning("Audio segmenter already running")
            return

        with self.lock:
            self._blocks = []
            self._buffered = 0
            self._segment_started = None
            self._next_sequence = 0
            self.errors = 0
            self.is_running = True
            self._segments = queue.Queue()
            self._dispatch_thread = threading.Thread(
                target=self._dispatch_worker,
                args=(self._segments,),
                name="segment-dispatch",
                daemon=True,
            )
            self._dispatch_thread.start()

        try:
            self.stream = self._create_stream()
            self.stream.start()
        except Exception as e:
            logger.error(f"Failed to start audio capture: {e}")
            self.stop(flush=False)
            if isinstance(e, CaptureUnavailable):
                raise
            raise CaptureUnavailable(f"Microphone unavailable: {e}") from e

        logger.info(f"Audio capture started ({self.segment_duration:.1f}s segments)")

    def stop(self, flush: bool = True):
        """
        Stop emitting, release the microphone and emit the final partial segment.

        Returns once every emitted segment has been handed to on_segment.
        """
        with self.lock:
            was_running = self.is_running
            self.is_running = False
            remainder = np.concatenate(self._blocks) if self._blocks else None
            self._blocks = []
            self._buffered = 0

        if self.stream is not None:
            try:
                self.stream.stop()
                self.stream.close()
            except Exception as e:
                logger.error(f"Error stopping mic stream: {e}")
            finally:
                self.stream = None

        if flush and was_running and remainder is not None and len(remainder):
            with self.lock:
                self._emit_locked(remainder)
                self._segment_started = None

        self._stop_dispatcher()

        if was_running:
            logger.info("Audio capture stopped")

    def _stop_dispatcher(self):
        """Let queued segments through, then end the dispatcher thread."""
        with self.lock:
            thread, self._dispatch_thread = self._dispatch_thread, None
            segments = self._segments
        if thread is None:
            return

        segments.put(None)
        # stop() may be reached from inside on_segment
        if thread is not threading.current_thread():
            thread.join(timeout=5.0)

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
