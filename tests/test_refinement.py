"""
Tests for refinement module.
"""

import threading
import time

import pytest
from unittest.mock import MagicMock

from live_dictation.errors import RefinementFailure
from live_dictation.models import Fragment, TranscriptionMode
from live_dictation.refinement import RefinementCoordinator
from live_dictation.session import SessionState


@pytest.fixture
def clean_session():
    """Recording session in CLEAN mode holding one fragment."""
    session = SessionState(mode=TranscriptionMode.CLEAN)
    session.begin()
    ticket = session.submit()
    session.resolve(ticket, Fragment("um so hello there", 0.9))
    return session


class TestRunOnce:
    """Test cases for a single refinement attempt."""

    def test_refined_text_applied(self, clean_session):
        refiner = MagicMock(return_value="So, hello there.")
        coordinator = RefinementCoordinator(clean_session, refiner)

        assert coordinator.run_once() is True

        refiner.assert_called_once_with("um so hello there", TranscriptionMode.CLEAN)
        assert clean_session.refined_text == "So, hello there."
        assert coordinator.calls == 1

    def test_raw_mode_skipped(self, clean_session):
        """Test that RAW mode leaves refined text untouched."""
        clean_session.set_mode(TranscriptionMode.RAW)
        refiner = MagicMock()
        coordinator = RefinementCoordinator(clean_session, refiner)

        assert coordinator.run_once() is False

        refiner.assert_not_called()
        assert clean_session.refined_text == ""

    def test_empty_text_skipped(self):
        session = SessionState(mode=TranscriptionMode.CLEAN)
        refiner = MagicMock()
        coordinator = RefinementCoordinator(session, refiner)

        assert coordinator.run_once() is False
        refiner.assert_not_called()

    def test_failure_shows_raw_text(self, clean_session):
        """Test that a failed refinement falls back to the raw text."""
        refiner = MagicMock(side_effect=RefinementFailure("quota"))
        coordinator = RefinementCoordinator(clean_session, refiner)

        assert coordinator.run_once() is True

        assert clean_session.refined_text == "um so hello there"
        assert coordinator.failures == 1

    def test_reset_during_call_discarded(self, clean_session):
        """Test that a result for a cleared transcript is not applied."""
        def refiner(text, mode):
            clean_session.clear()
            return "Stale."

        coordinator = RefinementCoordinator(clean_session, refiner)

        assert coordinator.run_once() is False
        assert clean_session.refined_text == ""

    def test_older_result_dropped(self, clean_session):
        """Test that an earlier-issued call cannot overwrite a later one."""
        entered = threading.Event()
        release = threading.Event()
        outputs = iter(["First.", "Second."])

        def refiner(text, mode):
            output = next(outputs)
            if output == "First.":
                entered.set()
                release.wait(timeout=5)
            return output

        coordinator = RefinementCoordinator(clean_session, refiner)
        results = []
        slow = threading.Thread(target=lambda: results.append(coordinator.run_once()))
        slow.start()
        assert entered.wait(timeout=5)

        assert coordinator.run_once() is True
        release.set()
        slow.join(timeout=5)

        assert results == [False]
        assert clean_session.refined_text == "Second."
        assert coordinator.stale_results == 1


class TestDebounce:
    """Test cases for the debounce timer."""

    def test_burst_produces_one_call(self):
        """Test that rapid changes collapse into a single refinement."""
        done = threading.Event()
        refiner = MagicMock(side_effect=lambda text, mode: done.set() or text.upper())

        session = SessionState(mode=TranscriptionMode.CLEAN)
        coordinator = RefinementCoordinator(session, refiner, delay=0.2)
        coordinator.attach()

        session.begin()
        for text in ["one", "two", "three"]:
            session.resolve(session.submit(), Fragment(text, 0.9))

        assert done.wait(timeout=5)
        time.sleep(0.3)

        refiner.assert_called_once_with("one two three", TranscriptionMode.CLEAN)
        assert session.refined_text == "ONE TWO THREE"
        coordinator.detach()

    def test_mode_change_schedules(self):
        done = threading.Event()
        refiner = MagicMock(side_effect=lambda text, mode: done.set() or "Hello.")

        session = SessionState()
        session.begin()
        session.resolve(session.submit(), Fragment("hello", 0.9))

        coordinator = RefinementCoordinator(session, refiner, delay=0.05)
        coordinator.attach()
        session.set_mode(TranscriptionMode.STANDARDIZED)

        assert done.wait(timeout=5)
        refiner.assert_called_once_with("hello", TranscriptionMode.STANDARDIZED)
        coordinator.detach()

    def test_refined_event_does_not_reschedule(self, clean_session):
        refiner = MagicMock(return_value="Hello.")
        coordinator = RefinementCoordinator(clean_session, refiner, delay=10)
        coordinator.attach()

        clean_session.set_refined_text("Hello.", clean_session.snapshot().epoch)

        assert coordinator.pending is False
        coordinator.detach()

    def test_cancel(self, clean_session):
        refiner = MagicMock()
        coordinator = RefinementCoordinator(clean_session, refiner, delay=10)

        coordinator.schedule()
        assert coordinator.pending is True

        coordinator.cancel()
        assert coordinator.pending is False
        refiner.assert_not_called()

    def test_detach_stops_listening(self, clean_session):
        refiner = MagicMock()
        coordinator = RefinementCoordinator(clean_session, refiner, delay=10)
        coordinator.attach()
        coordinator.detach()

        clean_session.set_mode(TranscriptionMode.STANDARDIZED)

        assert coordinator.pending is False

    def test_switch_to_clean_and_back(self):
        """Test that leaving CLEAN keeps the refined text but shows raw text again."""
        done = threading.Event()
        refiner = MagicMock(side_effect=lambda text, mode: done.set() or "Um, hello.")

        session = SessionState()
        session.begin()
        session.resolve(session.submit(), Fragment("um hello", 0.9))
        coordinator = RefinementCoordinator(session, refiner, delay=0.05)
        coordinator.attach()

        session.set_mode(TranscriptionMode.CLEAN)
        assert done.wait(timeout=5)
        deadline = time.time() + 5
        while session.refined_text != "Um, hello." and time.time() < deadline:
            time.sleep(0.01)
        assert session.snapshot().displayed_text == "Um, hello."

        session.set_mode(TranscriptionMode.RAW)
        time.sleep(0.2)

        assert refiner.call_count == 1
        assert session.refined_text == "Um, hello."
        assert session.snapshot().displayed_text == "um hello"
        coordinator.detach()
