"""
Export of the displayed transcript: clipboard copy and timestamped text file.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

import pyperclip

from .session import SessionSnapshot

logger = logging.getLogger(__name__)


def transcript_filename(now: Optional[datetime] = None) -> str:
    """transcript_<YYYYmmddTHHMMSS>.txt"""
    now = now or datetime.now()
    return f"transcript_{now.strftime('%Y%m%dT%H%M%S')}.txt"


def copy_to_clipboard(snapshot: SessionSnapshot) -> bool:
    """Copy the text selected by the current mode. Returns False if nothing was copied."""
    text = snapshot.displayed_text
    if not text:
        logger.info("Nothing to copy")
        return False

    try:
        pyperclip.copy(text)
    except pyperclip.PyperclipException as e:
        logger.error(f"Clipboard unavailable: {e}")
        return False

    logger.info(f"Copied {len(text)} characters to clipboard")
    return True


def save_transcript(
    snapshot: SessionSnapshot,
    directory: Union[str, Path] = ".",
    now: Optional[datetime] = None,
) -> Optional[Path]:
    """Write the displayed text to a timestamped .txt file. Returns the path, or None if empty."""
    text = snapshot.displayed_text
    if not text:
        logger.info("Nothing to save")
        return None

    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / transcript_filename(now)
    path.write_text(text + "\n", encoding="utf-8")

    logger.info(f"Transcript saved to {path}")
    return path
