"""
Tests for transcription_client module.
"""

import pytest
import requests
from unittest.mock import MagicMock

from live_dictation.errors import FallbackFailure, PrimaryUnreachable
from live_dictation.transcription_client import (
    HttpTranscriptionBackend,
    PrimaryResult,
    TranscriptionClient,
    _validate_backend_url,
)


def mock_response(status_code=200, payload=None, json_error=None):
    response = MagicMock()
    response.status_code = status_code
    if json_error is not None:
        response.json.side_effect = json_error
    else:
        response.json.return_value = payload
    return response


class TestTranscriptionClient:
    """Test cases for the primary/fallback resolution."""

    def test_primary_success(self, make_segment):
        primary = MagicMock()
        primary.transcribe.return_value = PrimaryResult("hello world", 0.92)
        fallback = MagicMock()
        client = TranscriptionClient(primary, fallback)

        fragment = client.transcribe(make_segment(), "previous words")

        assert fragment.text == "hello world"
        assert fragment.confidence == 0.92
        assert fragment.source == "primary"
        fallback.transcribe.assert_not_called()

    def test_primary_default_confidence(self, make_segment):
        """Test that a missing confidence defaults to 0.8."""
        primary = MagicMock()
        primary.transcribe.return_value = PrimaryResult("hello")
        client = TranscriptionClient(primary)

        fragment = client.transcribe(make_segment())

        assert fragment.confidence == 0.8
        assert fragment.is_low_confidence is False

    def test_empty_primary_text_does_not_fall_back(self, make_segment):
        """Test that silence from a healthy primary is accepted as is."""
        primary = MagicMock()
        primary.transcribe.return_value = PrimaryResult("", 0.9)
        fallback = MagicMock()
        client = TranscriptionClient(primary, fallback)

        fragment = client.transcribe(make_segment())

        assert fragment.text == ""
        assert fragment.source == "primary"
        fallback.transcribe.assert_not_called()

    def test_fallback_on_primary_failure(self, make_segment):
        """Test that the fallback result is used with confidence 0.95."""
        primary = MagicMock()
        primary.transcribe.side_effect = PrimaryUnreachable("Backend error: 500")
        fallback = MagicMock()
        fallback.transcribe.return_value = " hello from gemini "
        client = TranscriptionClient(primary, fallback)
        segment = make_segment()

        fragment = client.transcribe(segment, "context")

        assert fragment.text == "hello from gemini"
        assert fragment.confidence == 0.95
        assert fragment.is_low_confidence is False
        assert fragment.source == "fallback"
        fallback.transcribe.assert_called_once_with(segment.to_wav_bytes(), "context")

    def test_fallback_on_unexpected_primary_error(self, make_segment):
        primary = MagicMock()
        primary.transcribe.side_effect = RuntimeError("bug")
        fallback = MagicMock()
        fallback.transcribe.return_value = "rescued"
        client = TranscriptionClient(primary, fallback)

        assert client.transcribe(make_segment()).text == "rescued"

    def test_both_paths_fail(self, make_segment):
        """Test that total failure yields an empty zero-confidence fragment."""
        primary = MagicMock()
        primary.transcribe.side_effect = PrimaryUnreachable("down")
        fallback = MagicMock()
        fallback.transcribe.side_effect = FallbackFailure("also down")
        client = TranscriptionClient(primary, fallback)

        fragment = client.transcribe(make_segment())

        assert fragment.text == ""
        assert fragment.confidence == 0.0
        assert fragment.is_low_confidence is True

    def test_fallback_unexpected_error(self, make_segment):
        primary = MagicMock()
        primary.transcribe.side_effect = PrimaryUnreachable("down")
        fallback = MagicMock()
        fallback.transcribe.side_effect = ValueError("odd")
        client = TranscriptionClient(primary, fallback)

        assert client.transcribe(make_segment()).confidence == 0.0

    def test_no_fallback_configured(self, make_segment):
        primary = MagicMock()
        primary.transcribe.side_effect = PrimaryUnreachable("down")
        client = TranscriptionClient(primary, None)

        fragment = client.transcribe(make_segment())

        assert fragment.text == ""
        assert fragment.confidence == 0.0

    def test_context_truncated(self, make_segment):
        """Test that at most 150 trailing characters are sent as context."""
        primary = MagicMock()
        primary.transcribe.return_value = PrimaryResult("ok")
        client = TranscriptionClient(primary)
        segment = make_segment()

        client.transcribe(segment, "a" * 50 + "b" * 150)

        primary.transcribe.assert_called_once_with(segment, "b" * 150)


class TestHttpTranscriptionBackend:
    """Test cases for the HTTP primary backend."""

    def test_url_validation(self):
        assert _validate_backend_url("http://localhost:8000/") == "http://localhost:8000"
        with pytest.raises(ValueError):
            _validate_backend_url("localhost:8000")
        with pytest.raises(ValueError):
            _validate_backend_url("http://")

    def test_post_request(self, make_segment):
        """Test the /chunk request shape."""
        http = MagicMock()
        http.post.return_value = mock_response(payload={"text": " hello ", "confidence": 0.77})
        backend = HttpTranscriptionBackend("http://localhost:8000", timeout=10.0, connect_timeout=2.0, session=http)

        result = backend.transcribe(make_segment(sequence=3), "earlier words")

        assert result.text == "hello"
        assert result.confidence == 0.77

        args, kwargs = http.post.call_args
        assert args[0] == "http://localhost:8000/chunk"
        assert kwargs["data"] == {"initial_prompt": "earlier words"}
        assert kwargs["timeout"] == (2.0, 10.0)
        name, wav, mime = kwargs["files"]["audio"]
        assert name == "segment_3.wav"
        assert wav[:4] == b"RIFF"
        assert mime == "audio/wav"

    def test_missing_confidence(self, make_segment):
        http = MagicMock()
        http.post.return_value = mock_response(payload={"text": "hello"})
        backend = HttpTranscriptionBackend(session=http)

        assert backend.transcribe(make_segment(), "").confidence is None

    def test_confidence_clamped(self, make_segment):
        http = MagicMock()
        http.post.return_value = mock_response(payload={"text": "hi", "confidence": 1.7})
        backend = HttpTranscriptionBackend(session=http)

        assert backend.transcribe(make_segment(), "").confidence == 1.0

    @pytest.mark.parametrize("status_code", [400, 404, 500, 503])
    def test_non_success_status(self, make_segment, status_code):
        http = MagicMock()
        http.post.return_value = mock_response(status_code=status_code)
        backend = HttpTranscriptionBackend(session=http)

        with pytest.raises(PrimaryUnreachable):
            backend.transcribe(make_segment(), "")

    def test_connection_error(self, make_segment):
        http = MagicMock()
        http.post.side_effect = requests.ConnectionError("refused")
        backend = HttpTranscriptionBackend(session=http)

        with pytest.raises(PrimaryUnreachable):
            backend.transcribe(make_segment(), "")

    def test_timeout(self, make_segment):
        http = MagicMock()
        http.post.side_effect = requests.Timeout("slow")
        backend = HttpTranscriptionBackend(session=http)

        with pytest.raises(PrimaryUnreachable):
            backend.transcribe(make_segment(), "")

    def test_malformed_json(self, make_segment):
        http = MagicMock()
        http.post.return_value = mock_response(json_error=ValueError("not json"))
        backend = HttpTranscriptionBackend(session=http)

        with pytest.raises(PrimaryUnreachable):
            backend.transcribe(make_segment(), "")

    def test_non_object_json(self, make_segment):
        http = MagicMock()
        http.post.return_value = mock_response(payload=["hello"])
        backend = HttpTranscriptionBackend(session=http)

        with pytest.raises(PrimaryUnreachable):
            backend.transcribe(make_segment(), "")

    def test_get_status_unavailable(self):
        http = MagicMock()
        http.get.side_effect = requests.ConnectionError("refused")
        backend = HttpTranscriptionBackend(session=http)

        assert backend.get_status() == {"status": "unavailable", "ready": False}

    def test_get_status(self):
        http = MagicMock()
        http.get.return_value = mock_response(payload={"status": "ok", "ready": True})
        backend = HttpTranscriptionBackend("http://localhost:8000", session=http)

        assert backend.get_status() == {"status": "ok", "ready": True}
        http.get.assert_called_once_with("http://localhost:8000/status", timeout=2.0)

    def test_get_status_non_object(self):
        http = MagicMock()
        http.get.return_value = mock_response(payload=["ok"])
        backend = HttpTranscriptionBackend(session=http)

        assert backend.get_status()["status"] == "unavailable"

    def test_falls_back_end_to_end(self, make_segment):
        """Test a server error routed through the client to the fallback."""
        http = MagicMock()
        http.post.return_value = mock_response(status_code=500)
        fallback = MagicMock()
        fallback.transcribe.return_value = "from fallback"
        client = TranscriptionClient(HttpTranscriptionBackend(session=http), fallback)

        fragment = client.transcribe(make_segment())

        assert fragment.text == "from fallback"
        assert fragment.confidence == 0.95
