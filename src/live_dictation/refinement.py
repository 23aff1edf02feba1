"""
Debounced refinement of the raw transcript.
"""

import logging
import threading
from typing import Callable, Optional

from . import config
from .models import TranscriptionMode
from .session import TEXT_EVENTS, SessionEvent, SessionState

logger = logging.getLogger(__name__)

Refiner = Callable[[str, TranscriptionMode], str]


class RefinementCoordinator:
    """
    Refreshes the session's refined text once the raw transcript settles.

    Every raw-text or mode change restarts a single debounce timer. When it
    fires, the current raw text is passed to the refiner on the timer thread,
    so transcription is never blocked. Calls are numbered as they are issued;
    a result is dropped if a later-issued call's result has already been
    applied or if the transcript was reset in the meantime.
    """

    def __init__(
        self,
        session: SessionState,
        refiner: Refiner,
        delay: float = config.REFINEMENT_DEBOUNCE_SECONDS,
    ):
        self.session = session
        self.refiner = refiner
        self.delay = delay

        self.lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._issued = 0
        self._applied = 0
        self._attached = False

        # Stats
        self.calls = 0
        self.failures = 0
        self.stale_results = 0

    def attach(self):
        """Start listening to session changes."""
        if not self._attached:
            self.session.add_listener(self._on_session_event)
            self._attached = True

    def detach(self):
        """Stop listening and cancel any pending attempt."""
        if self._attached:
            self.session.remove_listener(self._on_session_event)
            self._attached = False
        self.cancel()

    def _on_session_event(self, event: SessionEvent):
        if event.kind in TEXT_EVENTS:
            self.schedule()

    def schedule(self):
        """(Re)start the debounce timer."""
        with self.lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.delay, self.run_once)
            self._timer.daemon = True
            self._timer.start()

    def cancel(self):
        with self.lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    @property
    def pending(self) -> bool:
        with self.lock:
            return self._timer is not None and self._timer.is_alive()

    def run_once(self) -> bool:
        """Refine the current raw text now. Returns True if a result was applied."""
        text, mode, epoch = self.session.refinement_input()
        if mode == TranscriptionMode.RAW or not text.strip():
            return False

        with self.lock:
            self._issued += 1
            request_id = self._issued
            self.calls += 1

        try:
            refined = self.refiner(text, mode)
        except Exception as e:
            logger.warning(f"Refinement failed, showing raw text: {e}")
            with self.lock:
                self.failures += 1
            refined = text

        with self.lock:
            if request_id < self._applied:
                logger.debug(f"Dropping refinement #{request_id}, #{self._applied} already shown")
                self.stale_results += 1
                return False
            self._applied = request_id

            # Holding our lock keeps a concurrent older result from overwriting this one
            return self.session.set_refined_text(refined, epoch)
