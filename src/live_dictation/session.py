"""
Session state for a dictation run.

SessionState is the single writer for the transcript. Audio callbacks,
transcription completions, refinement results and user commands all go
through its methods, which serialize on one lock. Listeners are notified
after the lock is released.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from . import config
from .models import Fragment, SessionStatus, TranscriptionMode
from .stitching import SequenceBuffer, join_fragments, rolling_context, stitch_fragment

logger = logging.getLogger(__name__)

# Event kinds
EVENT_STARTED = "started"
EVENT_STOPPED = "stopped"
EVENT_FAILED = "failed"
EVENT_CLEARED = "cleared"
EVENT_FRAGMENT = "fragment"
EVENT_STATUS = "status"
EVENT_MODE = "mode"
EVENT_REFINED = "refined"
EVENT_DISPLAY = "display"

# Events after which raw_text or mode may differ
TEXT_EVENTS = (EVENT_STARTED, EVENT_CLEARED, EVENT_FRAGMENT, EVENT_MODE)


@dataclass(frozen=True)
class Ticket:
    """Issued when a segment is submitted; identifies where its result belongs."""

    generation: int
    sequence: int
    context: str


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only copy of the session taken under the lock."""

    fragments: Tuple[Fragment, ...]
    raw_text: str
    refined_text: str
    rolling_context: str
    mode: TranscriptionMode
    status: SessionStatus
    last_error: Optional[str]
    show_confidence: bool
    language: str
    epoch: int

    @property
    def displayed_text(self) -> str:
        """Text selected by the current mode, used for display and export."""
        if self.mode == TranscriptionMode.RAW:
            return self.raw_text
        return self.refined_text


@dataclass(frozen=True)
class SessionEvent:
    kind: str
    snapshot: SessionSnapshot
    fragment: Optional[Fragment] = None


SessionListener = Callable[[SessionEvent], None]


class SessionState:
    """Aggregate root: fragments, raw and refined text, mode, status, last error."""

    def __init__(
        self,
        mode: TranscriptionMode = TranscriptionMode.RAW,
        show_confidence: bool = True,
        context_chars: int = config.CONTEXT_CHARS,
    ):
        self.context_chars = context_chars
        self._lock = threading.RLock()
        self._listeners: List[SessionListener] = []

        self._fragments: List[Fragment] = []
        self._raw_text = ""
        self._refined_text = ""
        self._rolling_context = ""
        self._mode = TranscriptionMode(mode)
        self._status = SessionStatus.IDLE
        self._last_error: Optional[str] = None
        self._show_confidence = show_confidence

        # Bumped whenever in-flight transcription results must stop landing
        self._generation = 0
        # Bumped whenever the transcript content is reset
        self._epoch = 0

        self._next_ticket = 0
        self._in_flight = 0
        self._order = SequenceBuffer[Fragment]()

        # Stats
        self._segments_resolved = 0
        self._empty_fragments = 0
        self._confidence_total = 0.0

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, callback: SessionListener) -> None:
        with self._lock:
            self._listeners.append(callback)

    def remove_listener(self, callback: SessionListener) -> None:
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    def _notify(self, events: List[Tuple[str, Optional[Fragment]]]):
        if not events:
            return
        with self._lock:
            listeners = list(self._listeners)
            snapshot = self._snapshot_locked()

        for kind, fragment in events:
            event = SessionEvent(kind, snapshot, fragment)
            for listener in listeners:
                try:
                    listener(event)
                except Exception:
                    logger.exception(f"Session listener failed on '{kind}' event")

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    def _snapshot_locked(self) -> SessionSnapshot:
        return SessionSnapshot(
            fragments=tuple(self._fragments),
            raw_text=self._raw_text,
            refined_text=self._refined_text,
            rolling_context=self._rolling_context,
            mode=self._mode,
            status=self._status,
            last_error=self._last_error,
            show_confidence=self._show_confidence,
            language=config.LANGUAGE_PLACEHOLDER,
            epoch=self._epoch,
        )

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return self._snapshot_locked()

    @property
    def status(self) -> SessionStatus:
        with self._lock:
            return self._status

    @property
    def mode(self) -> TranscriptionMode:
        with self._lock:
            return self._mode

    @property
    def raw_text(self) -> str:
        with self._lock:
            return self._raw_text

    @property
    def refined_text(self) -> str:
        with self._lock:
            return self._refined_text

    @property
    def rolling_context(self) -> str:
        with self._lock:
            return self._rolling_context

    @property
    def fragments(self) -> Tuple[Fragment, ...]:
        with self._lock:
            return tuple(self._fragments)

    @property
    def last_error(self) -> Optional[str]:
        with self._lock:
            return self._last_error

    @property
    def is_recording(self) -> bool:
        with self._lock:
            return self._status in (SessionStatus.LISTENING, SessionStatus.PROCESSING)

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _reset_content_locked(self):
        self._fragments = []
        self._raw_text = ""
        self._refined_text = ""
        self._rolling_context = ""
        self._epoch += 1

    def _reset_tickets_locked(self):
        self._generation += 1
        self._next_ticket = 0
        self._in_flight = 0
        self._order.reset()

    def begin(self) -> int:
        """Enter LISTENING with an empty transcript. Returns the new generation."""
        with self._lock:
            self._reset_content_locked()
            self._reset_tickets_locked()
            self._status = SessionStatus.LISTENING
            self._last_error = None
            self._segments_resolved = 0
            self._empty_fragments = 0
            self._confidence_total = 0.0
            generation = self._generation

        logger.info("Session started")
        self._notify([(EVENT_STARTED, None), (EVENT_STATUS, None)])
        return generation

    def end(self) -> None:
        """Return to IDLE. Results still in flight are discarded when they land."""
        with self._lock:
            if self._status not in (SessionStatus.LISTENING, SessionStatus.PROCESSING):
                return
            self._reset_tickets_locked()
            self._status = SessionStatus.IDLE

        logger.info("Session stopped")
        self._notify([(EVENT_STOPPED, None), (EVENT_STATUS, None)])

    def fail(self, error) -> None:
        """Enter ERROR with a user-facing message. Only a new begin() leaves ERROR."""
        message = str(error) or error.__class__.__name__
        with self._lock:
            self._reset_tickets_locked()
            self._status = SessionStatus.ERROR
            self._last_error = message

        logger.error(f"Session failed: {message}")
        self._notify([(EVENT_FAILED, None), (EVENT_STATUS, None)])

    def clear(self) -> None:
        """Drop the transcript. Recording, if active, continues from an empty state."""
        events = [(EVENT_CLEARED, None)]
        with self._lock:
            self._reset_content_locked()
            if self._status in (SessionStatus.LISTENING, SessionStatus.PROCESSING):
                self._reset_tickets_locked()
                if self._status == SessionStatus.PROCESSING:
                    self._status = SessionStatus.LISTENING
                    events.append((EVENT_STATUS, None))

        logger.debug("Transcript cleared")
        self._notify(events)

    def set_mode(self, mode: TranscriptionMode) -> None:
        mode = TranscriptionMode(mode)
        with self._lock:
            if mode == self._mode:
                return
            self._mode = mode

        logger.info(f"Mode set to {mode.value}")
        self._notify([(EVENT_MODE, None)])

    def toggle_show_confidence(self) -> bool:
        with self._lock:
            self._show_confidence = not self._show_confidence
            value = self._show_confidence
        self._notify([(EVENT_DISPLAY, None)])
        return value

    # ------------------------------------------------------------------
    # Transcription results
    # ------------------------------------------------------------------

    def submit(self) -> Optional[Ticket]:
        """Reserve the next sequence slot for a segment. None when not recording."""
        events = []
        with self._lock:
            if self._status not in (SessionStatus.LISTENING, SessionStatus.PROCESSING):
                return None

            ticket = Ticket(self._generation, self._next_ticket, self._rolling_context)
            self._next_ticket += 1
            self._in_flight += 1
            if self._status == SessionStatus.LISTENING:
                self._status = SessionStatus.PROCESSING
                events.append((EVENT_STATUS, None))

        self._notify(events)
        return ticket

    def resolve(self, ticket: Ticket, fragment: Fragment) -> bool:
        """
        Deliver the result for a ticket.

        Results are applied strictly in ticket order; a result that arrives
        early waits until every earlier ticket has resolved. The first result
        for a ticket wins. Results for a closed generation are discarded.

        Returns:
            True if the result was accepted.
        """
        events = []
        with self._lock:
            if ticket.generation != self._generation:
                logger.debug(f"Discarding stale result for segment {ticket.sequence}")
                return False
            if ticket.sequence in self._order or ticket.sequence >= self._next_ticket:
                logger.debug(f"Ignoring repeated result for segment {ticket.sequence}")
                return False

            self._in_flight -= 1
            self._segments_resolved += 1
            self._confidence_total += fragment.confidence

            for ready in self._order.push(ticket.sequence, fragment):
                stitched = stitch_fragment(self._rolling_context, ready)
                if not stitched.text:
                    self._empty_fragments += 1
                    continue
                self._fragments.append(stitched)
                self._raw_text = join_fragments(self._fragments)
                self._rolling_context = rolling_context(self._raw_text, self.context_chars)
                events.append((EVENT_FRAGMENT, stitched))

            if self._in_flight == 0 and self._status == SessionStatus.PROCESSING:
                self._status = SessionStatus.LISTENING
                events.append((EVENT_STATUS, None))

        self._notify(events)
        return True

    # ------------------------------------------------------------------
    # Refinement
    # ------------------------------------------------------------------

    def refinement_input(self) -> Tuple[str, TranscriptionMode, int]:
        """Raw text, mode and content epoch for a refinement call."""
        with self._lock:
            return self._raw_text, self._mode, self._epoch

    def set_refined_text(self, text: str, epoch: int) -> bool:
        """Store a refinement result unless the transcript was reset since it was issued."""
        with self._lock:
            if epoch != self._epoch:
                logger.debug("Discarding refinement for a cleared transcript")
                return False
            self._refined_text = text

        self._notify([(EVENT_REFINED, None)])
        return True

    def get_statistics(self) -> Dict:
        """Get session statistics."""
        with self._lock:
            low = sum(1 for f in self._fragments if f.is_low_confidence)
            mean = (
                self._confidence_total / self._segments_resolved
                if self._segments_resolved else 0.0
            )
            return {
                "status": self._status.value,
                "fragments": len(self._fragments),
                "low_confidence_fragments": low,
                "segments_resolved": self._segments_resolved,
                "empty_fragments": self._empty_fragments,
                "mean_confidence": mean,
                "in_flight": self._in_flight,
                "waiting_for_order": len(self._order),
                "characters": len(self._raw_text),
            }
