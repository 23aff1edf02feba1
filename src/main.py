"""
Live Dictation
Command-line front end for the boundary-aware dictation pipeline.
"""

import argparse
import logging
import signal
import sys
import threading
from typing import Optional

from dotenv import load_dotenv

from live_dictation.audio_capture import AudioSegmenter
from live_dictation.config import PipelineConfig
from live_dictation.errors import CaptureUnavailable
from live_dictation.exporter import copy_to_clipboard, save_transcript
from live_dictation.gemini import GeminiRefiner, GeminiTranscriber
from live_dictation.logger import FragmentLogger, LiveDisplay, format_stats
from live_dictation.models import SessionStatus, TranscriptionMode
from live_dictation.pipeline import DictationPipeline
from live_dictation.session import SessionState
from live_dictation.transcription_client import HttpTranscriptionBackend, TranscriptionClient

logger = logging.getLogger(__name__)

MODE_COMMANDS = {
    "r": TranscriptionMode.RAW,
    "c": TranscriptionMode.CLEAN,
    "s": TranscriptionMode.STANDARDIZED,
}


class LiveDictation:
    """Interactive dictation session driven from the terminal."""

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        primary: str = "http",
        model_name: str = "small",
        language: str = "en",
        mode: TranscriptionMode = TranscriptionMode.RAW,
        show_confidence: bool = True,
        fragment_log: Optional[str] = None,
        log_format: str = "json",
        save_dir: str = ".",
        clear_screen: bool = True,
    ):
        self.config = config or PipelineConfig()
        self.primary = primary
        self.model_name = model_name
        self.language = language
        self.mode = TranscriptionMode(mode)
        self.show_confidence = show_confidence
        self.fragment_log = fragment_log
        self.log_format = log_format
        self.save_dir = save_dir
        self.clear_screen = clear_screen

        # Components
        self.session: Optional[SessionState] = None
        self.pipeline: Optional[DictationPipeline] = None
        self.display: Optional[LiveDisplay] = None
        self.fragment_logger: Optional[FragmentLogger] = None

        self.shutdown_event = threading.Event()

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}, shutting down...")
        self.shutdown_event.set()

    def _build_primary(self):
        if self.primary == "local":
            from live_dictation.whisper_backend import WhisperBackend
            return WhisperBackend(model_name=self.model_name, language=self.language)
        return HttpTranscriptionBackend(
            backend_url=self.config.backend_url,
            timeout=self.config.call_timeout,
            connect_timeout=self.config.connect_timeout,
        )

    def _check_backend(self, backend: HttpTranscriptionBackend, has_fallback: bool):
        status = backend.get_status()
        if status.get("status") != "unavailable":
            logger.info(f"Transcription server at {backend.backend_url}: {status}")
            return
        if has_fallback:
            logger.warning(f"Transcription server at {backend.backend_url} is not responding, segments will use Gemini")
        else:
            logger.warning(
                f"Transcription server at {backend.backend_url} is not responding and no Gemini key is set, "
                "segments will come back empty"
            )

    def setup(self):
        """Create the session, pipeline and listeners."""
        fallback = None
        if self.config.gemini_api_key:
            fallback = GeminiTranscriber(
                api_key=self.config.gemini_api_key,
                model=self.config.gemini_model,
                timeout=self.config.call_timeout,
            )
        primary = self._build_primary()
        if isinstance(primary, HttpTranscriptionBackend):
            self._check_backend(primary, has_fallback=fallback is not None)
        client = TranscriptionClient(primary, fallback, context_chars=self.config.context_chars)
        refiner = GeminiRefiner(
            api_key=self.config.gemini_api_key,
            model=self.config.gemini_model,
            timeout=self.config.call_timeout,
        )

        self.session = SessionState(
            mode=self.mode,
            show_confidence=self.show_confidence,
            context_chars=self.config.context_chars,
        )
        self.pipeline = DictationPipeline(client, session=self.session, refiner=refiner, config=self.config)

        self.display = LiveDisplay(clear_screen=self.clear_screen)
        self.session.add_listener(self.display.on_session_event)

        if self.fragment_log is not None:
            self.fragment_logger = FragmentLogger(self.fragment_log, format_type=self.log_format)
            self.fragment_logger.start()
            self.session.add_listener(self.fragment_logger.on_session_event)

    def toggle_recording(self):
        if self.session.is_recording:
            self.pipeline.stop()
            logger.info(f"Stats: {format_stats(self.pipeline.get_stats())}")
            return
        try:
            self.pipeline.start()
        except CaptureUnavailable as e:
            logger.error(f"Cannot start recording: {e}")

    def handle_command(self, command: str) -> bool:
        """Apply one line of user input. Returns False when the user quits."""
        command = command.strip().lower()

        if command == "q":
            return False
        if command == "":
            self.toggle_recording()
        elif command in MODE_COMMANDS:
            self.pipeline.set_mode(MODE_COMMANDS[command])
        elif command == "t":
            self.session.toggle_show_confidence()
        elif command == "x":
            self.pipeline.clear()
        elif command == "p":
            copy_to_clipboard(self.session.snapshot())
        elif command == "w":
            path = save_transcript(self.session.snapshot(), self.save_dir)
            if path:
                print(f"Saved {path}")
        else:
            print(f"Unknown command: {command!r}")
        return True

    def _read_commands(self):
        while not self.shutdown_event.is_set():
            try:
                line = input()
            except EOFError:
                break
            if not self.handle_command(line):
                break
        self.shutdown_event.set()

    def run(self):
        """Start recording immediately and process commands until quit."""
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        self.toggle_recording()
        self.display.update(self.session.snapshot())

        reader = threading.Thread(target=self._read_commands, daemon=True)
        reader.start()
        try:
            while not self.shutdown_event.wait(0.5):
                pass
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            self.shutdown()

    def shutdown(self):
        """Shut down gracefully."""
        self.shutdown_event.set()
        if self.pipeline:
            if self.session.status in (SessionStatus.LISTENING, SessionStatus.PROCESSING):
                self.pipeline.stop()
            logger.info(f"Final stats: {format_stats(self.pipeline.get_stats())}")
            self.pipeline.close()
        if self.fragment_logger:
            self.fragment_logger.stop()

    def __enter__(self):
        self.setup()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()


def list_audio_devices():
    """List available audio input devices."""
    print("Scanning audio devices...")
    devices = AudioSegmenter.list_audio_devices()

    print("\nMICROPHONE DEVICES (Input):")
    if not devices:
        print("  No input devices found")
    for device in devices:
        print(f"  [{device['id']:2d}] {device['name']}")
        print(f"       {device['channels']} channels, {device['sample_rate']:.0f} Hz")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Boundary-aware live dictation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List microphones
  live-dictation --list-devices

  # Dictate against a local transcription server
  live-dictation --backend-url http://localhost:8000

  # No server: run faster-whisper in-process
  live-dictation --primary local --model base

  # Show the punctuated view and keep an audit log of fragments
  live-dictation --mode clean --fragment-log session --log-format both
        """,
    )

    parser.add_argument("--list-devices", "-l", action="store_true",
                        help="List available audio input devices and exit")
    parser.add_argument("--device", "-d", type=int,
                        help="Microphone device ID (use --list-devices to see options)")
    parser.add_argument("--segment-seconds", type=float,
                        help="Length of each audio segment in seconds (default: 4.0)")

    parser.add_argument("--primary", choices=["http", "local"], default="http",
                        help="Primary transcription path (default: http)")
    parser.add_argument("--backend-url", type=str,
                        help="Transcription server URL (default: $DICTATION_BACKEND_URL or http://localhost:8000)")
    parser.add_argument("--model", type=str, default="small",
                        help="faster-whisper model for --primary local (default: small)")
    parser.add_argument("--lang", type=str, default="en",
                        help="Language code for --primary local (default: en)")

    parser.add_argument("--mode", choices=[m.value for m in TranscriptionMode], default="raw",
                        help="Initial view: raw, clean or standardized (default: raw)")
    parser.add_argument("--hide-confidence", action="store_true",
                        help="Do not mark low-confidence fragments")

    parser.add_argument("--fragment-log", type=str,
                        help="Base file name for a fragment audit log")
    parser.add_argument("--log-format", choices=["json", "csv", "both"], default="json",
                        help="Fragment log format (default: json)")
    parser.add_argument("--save-dir", type=str, default=".",
                        help="Directory for saved transcripts (default: current directory)")

    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Enable verbose logging")
    return parser


def main(argv=None):
    """Main entry point."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.list_devices:
        list_audio_devices()
        return 0

    load_dotenv()

    try:
        config = PipelineConfig.from_env(
            backend_url=args.backend_url,
            segment_seconds=args.segment_seconds,
            device=args.device,
        )
        with LiveDictation(
            config=config,
            primary=args.primary,
            model_name=args.model,
            language=args.lang,
            mode=TranscriptionMode(args.mode),
            show_confidence=not args.hide_confidence,
            fragment_log=args.fragment_log,
            log_format=args.log_format,
            save_dir=args.save_dir,
        ) as app:
            app.run()
        return 0

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except Exception as e:
        logger.error(f"Application failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
