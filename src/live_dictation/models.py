"""
Core data types shared across the dictation pipeline.
"""

import json
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List

from . import config


class TranscriptionMode(str, Enum):
    """Which text view is authoritative for display and export."""

    RAW = "raw"
    CLEAN = "clean"
    STANDARDIZED = "standardized"


class SessionStatus(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    PROCESSING = "processing"
    ERROR = "error"


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Fragment:
    """Transcription result for one audio segment."""

    text: str
    confidence: float
    source: str = "primary"
    id: str = field(default_factory=_new_id)
    timestamp: float = field(default_factory=time.time)

    @property
    def is_low_confidence(self) -> bool:
        return self.confidence < config.LOW_CONFIDENCE_THRESHOLD

    @classmethod
    def failed(cls) -> "Fragment":
        """Placeholder fragment for a segment neither path could transcribe."""
        return cls(text="", confidence=0.0, source="none")

    def to_dict(self) -> Dict:
        """Convert to dictionary format."""
        return {
            "id": self.id,
            "time": datetime.fromtimestamp(self.timestamp).strftime("%H:%M:%S.%f")[:-3],
            "timestamp": self.timestamp,
            "source": self.source,
            "confidence": round(self.confidence, 3),
            "low_confidence": self.is_low_confidence,
            "text": self.text,
        }

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), ensure_ascii=False)

    def to_csv_row(self) -> List[str]:
        """Convert to CSV row format."""
        data = self.to_dict()
        return [
            data["time"],
            str(self.timestamp),
            self.source,
            f"{self.confidence:.3f}",
            self.text,
        ]

    def __str__(self) -> str:
        return f"[{self.confidence:.0%}] {self.text}"
