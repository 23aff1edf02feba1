"""
Pytest configuration and fixtures for Live Dictation tests.
"""

import pytest
import tempfile
import os
import sys
import numpy as np

# Add src to Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from live_dictation.audio_capture import AudioSegment
from live_dictation.models import Fragment
from live_dictation.session import SessionState


@pytest.fixture
def temp_dir():
    """Provide a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def sample_audio_data():
    """Generate sample audio data for testing."""
    sample_rate = 16000
    duration = 1.0  # 1 second
    frequency = 440  # A4 note

    t = np.linspace(0, duration, int(sample_rate * duration), False)
    audio_data = (0.5 * np.sin(2 * np.pi * frequency * t)).astype(np.float32)

    return audio_data, sample_rate


@pytest.fixture
def make_segment():
    """Factory for short AudioSegments."""
    def _make(sequence=0, seconds=0.1, sample_rate=16000):
        samples = np.zeros(int(sample_rate * seconds), dtype=np.float32)
        return AudioSegment(sequence=sequence, samples=samples, sample_rate=sample_rate, started_at=0.0)
    return _make


@pytest.fixture
def recording_session():
    """A session that has already begun recording."""
    session = SessionState()
    session.begin()
    return session


@pytest.fixture
def sample_fragments():
    """Fragments for the boundary scenario: a word cut across two segments."""
    return [
        Fragment("I am work", 0.9),
        Fragment("ing on the proposal", 0.6),
    ]


class RecordingListener:
    """Collects session events for assertions."""

    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)

    @property
    def kinds(self):
        return [e.kind for e in self.events]


@pytest.fixture
def listener():
    return RecordingListener()
