"""
Boundary stitching for consecutive segment transcriptions.

A segment boundary can cut a word in half. The transcription model sees the
trailing context and will sometimes re-emit the last word of the previous
segment; stitching removes that echo before the fragment joins the transcript.
"""

import dataclasses
import logging
from typing import Dict, Generic, List, TypeVar

from . import config
from .models import Fragment

logger = logging.getLogger(__name__)

T = TypeVar("T")


def rolling_context(raw_text: str, limit: int = config.CONTEXT_CHARS) -> str:
    """Trailing window of the transcript handed to the next transcription call."""
    if limit <= 0:
        return ""
    return raw_text[-limit:]


def strip_boundary_echo(context: str, text: str) -> str:
    """Drop the first word of text when it repeats the last word of context."""
    text = text.strip()
    context_words = context.split()
    words = text.split()
    if not context_words or not words:
        return text

    if context_words[-1].lower() == words[0].lower():
        logger.debug(f"Boundary echo removed: '{words[0]}'")
        return " ".join(words[1:])
    return text


def stitch_fragment(context: str, fragment: Fragment) -> Fragment:
    """Return the fragment with any boundary echo removed (id and confidence kept)."""
    stitched = strip_boundary_echo(context, fragment.text)
    if stitched == fragment.text:
        return fragment
    return dataclasses.replace(fragment, text=stitched)


def join_fragments(fragments: List[Fragment]) -> str:
    return " ".join(f.text for f in fragments)


class SequenceBuffer(Generic[T]):
    """Holds results that completed early until every earlier sequence number is in."""

    def __init__(self, start: int = 0):
        self.next_sequence = start
        self._pending: Dict[int, T] = {}

    def push(self, sequence: int, item: T) -> List[T]:
        """Add a result and return every item now ready, in sequence order."""
        if sequence < self.next_sequence or sequence in self._pending:
            logger.debug(f"Ignoring duplicate result for sequence {sequence}")
            return []

        self._pending[sequence] = item
        ready = []
        while self.next_sequence in self._pending:
            ready.append(self._pending.pop(self.next_sequence))
            self.next_sequence += 1
        return ready

    def __contains__(self, sequence: int) -> bool:
        """True once a result for this sequence number has been pushed."""
        return sequence < self.next_sequence or sequence in self._pending

    def reset(self, start: int = 0):
        self.next_sequence = start
        self._pending.clear()

    def __len__(self) -> int:
        return len(self._pending)
