"""
Fragment audit log and live console display.
The audit log records every applied fragment as JSONL and/or CSV; the display
redraws the transcript the way the current mode selects it.
"""

import csv
import logging
import os
import queue
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, TextIO

from .models import Fragment, SessionStatus, TranscriptionMode
from .session import EVENT_FRAGMENT, SessionEvent, SessionSnapshot

logger = logging.getLogger(__name__)

CSV_HEADER = ["Time", "Timestamp", "Source", "Confidence", "Text"]


class FragmentLogger:
    """Writes applied fragments to disk from a background thread."""

    def __init__(self, output_file: Optional[str] = None, format_type: str = "json", auto_flush: bool = True):
        """
        Args:
            output_file: Base path for output. If None, creates timestamped filename.
            format_type: Output format ("json", "csv", or "both").
            auto_flush: Whether to flush after each write.
        """
        if format_type not in ("json", "csv", "both"):
            raise ValueError(f"Unknown log format: {format_type}")

        self.format_type = format_type
        self.auto_flush = auto_flush
        self.entry_count = 0

        self.json_path: Optional[str] = None
        self.csv_path: Optional[str] = None
        self.json_file: Optional[TextIO] = None
        self.csv_file: Optional[TextIO] = None
        self.csv_writer = None

        self.write_queue: "queue.Queue[Fragment]" = queue.Queue()
        self.is_running = False
        self.write_thread: Optional[threading.Thread] = None
        self.lock = threading.Lock()

        self._setup_output_files(output_file)

    def _setup_output_files(self, output_file: Optional[str]):
        if output_file is None:
            base_name = f"fragments_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
        else:
            path = Path(output_file)
            base_name = str(path.with_suffix("")) if path.suffix in (".jsonl", ".csv") else str(path)

        if self.format_type in ("json", "both"):
            self.json_path = f"{base_name}.jsonl"
            logger.info(f"Fragment JSON log: {self.json_path}")
        if self.format_type in ("csv", "both"):
            self.csv_path = f"{base_name}.csv"
            logger.info(f"Fragment CSV log: {self.csv_path}")

    def _open_files(self):
        try:
            if self.json_path:
                self.json_file = open(self.json_path, "w", encoding="utf-8")
            if self.csv_path:
                self.csv_file = open(self.csv_path, "w", newline="", encoding="utf-8")
                self.csv_writer = csv.writer(self.csv_file)
                self.csv_writer.writerow(CSV_HEADER)
                if self.auto_flush:
                    self.csv_file.flush()
        except OSError as e:
            logger.error(f"Failed to open fragment log: {e}")
            self._close_files()
            raise

    def _close_files(self):
        if self.json_file:
            self.json_file.close()
            self.json_file = None
        if self.csv_file:
            self.csv_file.close()
            self.csv_file = None
            self.csv_writer = None

    def _write_worker(self):
        while self.is_running or not self.write_queue.empty():
            try:
                fragment = self.write_queue.get(timeout=0.5)
            except queue.Empty:
                continue
            self._write_fragment(fragment)

    def _write_fragment(self, fragment: Fragment):
        try:
            if self.json_file:
                self.json_file.write(fragment.to_json() + "\n")
                if self.auto_flush:
                    self.json_file.flush()
            if self.csv_writer:
                self.csv_writer.writerow(fragment.to_csv_row())
                if self.auto_flush:
                    self.csv_file.flush()
        except OSError as e:
            logger.error(f"Failed to write fragment {fragment.id}: {e}")

    def start(self):
        if self.is_running:
            return
        self._open_files()
        self.is_running = True
        self.write_thread = threading.Thread(target=self._write_worker, daemon=True)
        self.write_thread.start()
        logger.info("Fragment logger started")

    def stop(self):
        """Stop the logger and ensure all queued fragments are written."""
        if not self.is_running:
            return
        self.is_running = False
        if self.write_thread:
            self.write_thread.join(timeout=5.0)
            self.write_thread = None
        self._close_files()
        logger.info(f"Fragment logger stopped ({self.entry_count} fragments)")

    def log_fragment(self, fragment: Fragment):
        if not self.is_running:
            logger.warning("Fragment logger not started, ignoring fragment")
            return
        with self.lock:
            self.entry_count += 1
        self.write_queue.put(fragment)

    def on_session_event(self, event: SessionEvent):
        """Session listener: log each applied fragment."""
        if event.kind == EVENT_FRAGMENT and event.fragment is not None:
            self.log_fragment(event.fragment)

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()


STATUS_LABELS = {
    SessionStatus.IDLE: "Idle - press Enter to start",
    SessionStatus.LISTENING: "Listening...",
    SessionStatus.PROCESSING: "Processing audio...",
    SessionStatus.ERROR: "Error",
}


def render_transcript(snapshot: SessionSnapshot) -> str:
    """Text body for the console: per-fragment in RAW mode, refined view otherwise."""
    if snapshot.mode != TranscriptionMode.RAW:
        if snapshot.refined_text:
            return snapshot.refined_text
        return "Processing refined transcript..." if snapshot.raw_text else ""

    parts = []
    for fragment in snapshot.fragments:
        if snapshot.show_confidence and fragment.is_low_confidence:
            parts.append(f"[{fragment.text} ~{fragment.confidence:.0%}]")
        else:
            parts.append(fragment.text)
    return " ".join(parts)


class LiveDisplay:
    """Real-time console display of the session."""

    def __init__(self, clear_screen: bool = True):
        self.clear_screen = clear_screen
        self.lock = threading.Lock()
        self.last_render = ""

    def on_session_event(self, event: SessionEvent):
        self.update(event.snapshot)

    def update(self, snapshot: SessionSnapshot):
        with self.lock:
            self.last_render = self.render(snapshot)
            self._redraw()

    def render(self, snapshot: SessionSnapshot) -> str:
        status = STATUS_LABELS[snapshot.status]
        if snapshot.status == SessionStatus.ERROR and snapshot.last_error:
            status = f"Error: {snapshot.last_error}"

        lines = [
            "=" * 80,
            f"LIVE DICTATION  |  {status}",
            f"Mode: {snapshot.mode.value}  |  Language: {snapshot.language}  |  "
            f"Confidence marks: {'on' if snapshot.show_confidence else 'off'}",
            "=" * 80,
            "",
            render_transcript(snapshot) or "Your transcript will appear here...",
            "",
            "[r]aw [c]lean [s]tandardized  [t]oggle confidence  [x] clear  "
            "[p] copy  [w] save  [Enter] start/stop  [q]uit",
        ]
        return "\n".join(lines)

    def _redraw(self):
        if self.clear_screen:
            os.system("cls" if os.name == "nt" else "clear")
        print(self.last_render, flush=True)


def format_stats(stats: Dict) -> str:
    return ", ".join(f"{key}={value}" for key, value in stats.items())
