"""
Dictation pipeline - wires capture -> transcription -> stitching -> refinement.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Dict, Optional, Set

from .audio_capture import AudioSegment, AudioSegmenter
from .config import PipelineConfig
from .errors import CaptureUnavailable
from .models import Fragment, TranscriptionMode
from .refinement import RefinementCoordinator, Refiner
from .session import SessionState, Ticket
from .transcription_client import TranscriptionClient

logger = logging.getLogger(__name__)

SegmenterFactory = Callable[..., AudioSegmenter]


class DictationPipeline:
    """Owns one recording session end to end."""

    def __init__(
        self,
        client: TranscriptionClient,
        session: Optional[SessionState] = None,
        refiner: Optional[Refiner] = None,
        config: Optional[PipelineConfig] = None,
        segmenter_factory: SegmenterFactory = AudioSegmenter,
    ):
        self.client = client
        self.config = config or PipelineConfig()
        self.session = session or SessionState(context_chars=self.config.context_chars)
        self.segmenter_factory = segmenter_factory

        self.refinement: Optional[RefinementCoordinator] = None
        if refiner is not None:
            self.refinement = RefinementCoordinator(
                self.session, refiner, delay=self.config.refinement_debounce
            )
            self.refinement.attach()

        self.segmenter: Optional[AudioSegmenter] = None
        self.executor: Optional[ThreadPoolExecutor] = None
        self.lock = threading.Lock()
        self._drained = threading.Condition(self.lock)
        self._pending: Set[Ticket] = set()
        self._watchdogs: Dict[Ticket, threading.Timer] = {}

        # Stats
        self.segments_submitted = 0
        self.timeouts = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        """Start a fresh recording. Raises CaptureUnavailable if the mic cannot be opened."""
        if self.session.is_recording:
            logger.warning("Pipeline already recording")
            return

        logger.info("Starting dictation pipeline...")
        segmenter = self.segmenter_factory(
            on_segment=self.submit_segment,
            sample_rate=self.config.sample_rate,
            segment_duration=self.config.segment_seconds,
            device=self.config.device,
            block_duration=self.config.block_seconds,
            on_error=self.handle_fatal,
        )
        try:
            # The transcript is only reset once the microphone is ours. Holding the
            # lock keeps early segments waiting until begin() has issued tickets.
            with self.lock:
                segmenter.start()
                self.segmenter = segmenter
                self.executor = ThreadPoolExecutor(
                    max_workers=self.config.max_concurrent_requests,
                    thread_name_prefix="transcribe",
                )
                self.session.begin()
        except CaptureUnavailable as e:
            self.handle_fatal(e)
            raise

    def stop(self, drain: bool = True):
        """
        Stop recording.

        Segment emission stops at once and the final partial segment is
        submitted. With drain, in-flight calls get up to drain_timeout seconds
        to land; anything arriving later is discarded.
        """
        with self.lock:
            segmenter, self.segmenter = self.segmenter, None
        if segmenter is not None:
            segmenter.stop()

        if drain:
            with self._drained:
                if self._pending:
                    logger.info(f"Waiting for {len(self._pending)} in-flight segment(s)...")
                if not self._drained.wait_for(lambda: not self._pending, timeout=self.config.drain_timeout):
                    logger.warning(f"Abandoning {len(self._pending)} unfinished segment(s)")

        self.session.end()
        self._shutdown_workers()

    def handle_fatal(self, error: Exception):
        """Move the session to ERROR and release capture (capture loss, stream drop)."""
        logger.error(f"Unrecoverable pipeline error: {error}")
        self.session.fail(error)

        with self.lock:
            segmenter, self.segmenter = self.segmenter, None
        if segmenter is not None:
            segmenter.stop(flush=False)
        self._shutdown_workers()

    def close(self):
        """Stop everything including refinement. The pipeline can't be reused."""
        if self.session.is_recording:
            self.stop(drain=False)
        else:
            self._shutdown_workers()
        if self.refinement is not None:
            self.refinement.detach()

    def _shutdown_workers(self):
        with self.lock:
            watchdogs = list(self._watchdogs.values())
            self._watchdogs.clear()
            self._pending.clear()
            self._drained.notify_all()
            executor, self.executor = self.executor, None

        for timer in watchdogs:
            timer.cancel()
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Segment flow
    # ------------------------------------------------------------------

    def submit_segment(self, segment: AudioSegment):
        """Segmenter callback: send a closed segment for transcription."""
        with self.lock:
            executor = self.executor
            if executor is None:
                return
            ticket = self.session.submit()
            if ticket is None:
                return

            try:
                future = executor.submit(self.client.transcribe, segment, ticket.context)
            except RuntimeError:
                # Executor shut down between the check and the submit
                self.session.resolve(ticket, Fragment.failed())
                return

            watchdog = threading.Timer(self.config.segment_timeout, self._on_timeout, args=(ticket,))
            watchdog.daemon = True
            self._watchdogs[ticket] = watchdog
            self._pending.add(ticket)
            self.segments_submitted += 1

        watchdog.start()
        logger.debug(f"Submitted segment {segment.sequence} as ticket {ticket.sequence}")
        future.add_done_callback(lambda f: self._on_done(ticket, f))

    def _on_done(self, ticket: Ticket, future: Future):
        with self.lock:
            watchdog = self._watchdogs.pop(ticket, None)
        if watchdog is not None:
            watchdog.cancel()

        if future.cancelled():
            self._settle(ticket)
            return
        try:
            fragment = future.result()
        except Exception as e:
            # TranscriptionClient never raises; treat a bug there as a lost segment
            logger.error(f"Transcription task crashed: {e}")
            fragment = Fragment.failed()

        self.session.resolve(ticket, fragment)
        self._settle(ticket)

    def _on_timeout(self, ticket: Ticket):
        with self.lock:
            if self._watchdogs.pop(ticket, None) is None:
                return
            self.timeouts += 1

        logger.warning(f"Segment {ticket.sequence} timed out after {self.config.segment_timeout:.1f}s")
        self.session.resolve(ticket, Fragment.failed())
        self._settle(ticket)

    def _settle(self, ticket: Ticket):
        with self._drained:
            self._pending.discard(ticket)
            if not self._pending:
                self._drained.notify_all()

    # ------------------------------------------------------------------
    # User commands
    # ------------------------------------------------------------------

    def clear(self):
        self.session.clear()

    def set_mode(self, mode: TranscriptionMode):
        self.session.set_mode(mode)

    def get_stats(self) -> Dict:
        """Get pipeline statistics."""
        stats = self.session.get_statistics()
        stats.update({
            "segments_submitted": self.segments_submitted,
            "timeouts": self.timeouts,
        })
        if self.refinement is not None:
            stats.update({
                "refinement_calls": self.refinement.calls,
                "refinement_failures": self.refinement.failures,
            })
        return stats

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
