"""
Tests for the speech providers: AssemblyAI message handling and websocket
session, and Whisper chunked transcription. The microphone is replaced by
the capture queue only.
"""

import asyncio
import json
import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock

import numpy as np
import pytest
from aiohttp import web, WSMsgType
from aiohttp import test_utils

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from dash_voice.models.data_models import SpeechStartConfig
from dash_voice.providers.speech.assemblyai_streaming import AssemblyAIStreamingProvider
from dash_voice.providers.speech.whisper_chunked import WhisperChunkedProvider

from conftest import eventually


class Transcripts:
    """Collects provider results."""

    def __init__(self):
        self.partials = []
        self.finals = []
        self.levels = []
        self.errors = []

    def start_config(self, language: str = "en-ZA") -> SpeechStartConfig:
        return SpeechStartConfig(
            language=language,
            on_partial=self.partials.append,
            on_final=self.finals.append,
            on_audio_level=self.levels.append,
            on_error=self.errors.append
        )


def capture_queue_only(provider, monkeypatch):
    """Replace the sounddevice stream; tests feed provider._audio_queue directly."""
    def open_microphone():
        provider._event_loop = asyncio.get_running_loop()
        provider._audio_queue = asyncio.Queue(maxsize=50)
        provider._audio_stream = SimpleNamespace(active=False, close=lambda: None)

    monkeypatch.setattr(provider, "_open_microphone", open_microphone)


def turn(transcript: str, formatted: bool = False, end_of_turn: bool = False) -> str:
    return json.dumps({
        'type': "Turn",
        'transcript': transcript,
        'turn_is_formatted': formatted,
        'end_of_turn': end_of_turn
    })


class TestAssemblyAIMessages:
    """Server message mapping onto the speech callbacks."""

    @pytest.fixture
    def provider(self):
        return AssemblyAIStreamingProvider({'api_key': "aai-test"})

    @pytest.fixture
    def results(self, provider):
        results = Transcripts()
        provider._start_config = results.start_config()
        return results

    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            AssemblyAIStreamingProvider({})

    def test_begin_confirms_connection(self, provider, results):
        provider._ws = SimpleNamespace(closed=False)
        assert not provider.is_connected()

        assert provider._handle_message(json.dumps({'type': "Begin", 'id': "sess-1"}))

        assert provider.is_connected()
        assert provider.session_id == "sess-1"

    def test_turns_become_partials_then_final(self, provider, results):
        provider._handle_message(turn("hello"))
        provider._handle_message(turn("hello there"))
        provider._handle_message(turn("hello there", end_of_turn=True))
        provider._handle_message(turn("Hello there.", formatted=True, end_of_turn=True))

        assert results.partials == ["hello", "hello there", "hello there"]
        assert results.finals == ["Hello there."]

    def test_unformatted_turns_end_on_end_of_turn(self, results):
        provider = AssemblyAIStreamingProvider({'api_key': "aai-test", 'format_turns': False})
        provider._start_config = results.start_config()

        provider._handle_message(turn("hello there"))
        provider._handle_message(turn("hello there dash", end_of_turn=True))

        assert results.partials == ["hello there"]
        assert results.finals == ["hello there dash"]

    def test_empty_and_muted_turns_are_dropped(self, provider, results):
        provider._handle_message(turn("   "))
        provider.set_muted(True)
        provider._handle_message(turn("my own voice"))
        provider.set_muted(False)
        provider._handle_message(turn("back again"))

        assert results.partials == ["back again"]

    def test_session_end_and_errors(self, provider, results):
        assert provider._handle_message("{not json") is True
        assert provider._handle_message(json.dumps({'type': "Termination"})) is False
        assert results.errors == []

        assert provider._handle_message(json.dumps({'type': "Error", 'error': "invalid key"})) is False
        assert "invalid key" in str(results.errors[0])


class TestAssemblyAISession:
    """Full session against a local websocket server."""

    @pytest.mark.asyncio
    async def test_streams_audio_and_terminates(self, monkeypatch):
        received = {'auth': None, 'audio': [], 'text': []}

        async def handler(request):
            received['auth'] = request.headers.get('Authorization')
            ws = web.WebSocketResponse()
            await ws.prepare(request)
            await ws.send_json({'type': "Begin", 'id': "sess-7"})
            async for msg in ws:
                if msg.type == WSMsgType.BINARY:
                    received['audio'].append(msg.data)
                    if len(received['audio']) == 1:
                        await ws.send_str(turn("sawubona"))
                        await ws.send_str(turn("Sawubona.", formatted=True, end_of_turn=True))
                elif msg.type == WSMsgType.TEXT:
                    received['text'].append(json.loads(msg.data))
                    break
            return ws

        app = web.Application()
        app.router.add_get('/ws', handler)
        server = test_utils.TestServer(app)
        await server.start_server()
        try:
            provider = AssemblyAIStreamingProvider({
                'api_key': "aai-test",
                'endpoint': str(server.make_url('/ws'))
            })
            capture_queue_only(provider, monkeypatch)
            results = Transcripts()

            assert await provider.start(results.start_config())
            await eventually(provider.is_connected)
            assert provider.session_id == "sess-7"

            block = np.full(1024, 8000, dtype=np.int16)
            provider._audio_queue.put_nowait(block)
            await eventually(lambda: results.finals == ["Sawubona."])

            assert results.partials == ["sawubona"]
            assert results.levels and results.levels[0] > 0
            assert received['auth'] == "aai-test"
            assert received['audio'][0] == block.tobytes()

            await provider.stop()
            await eventually(lambda: received['text'] == [{'type': "Terminate"}])
            assert not provider.is_active
            assert not provider.is_connected()
            assert results.errors == []
        finally:
            await server.close()

    @pytest.mark.asyncio
    async def test_unreachable_endpoint_fails_start(self, monkeypatch):
        app = web.Application()
        server = test_utils.TestServer(app)
        await server.start_server()
        try:
            provider = AssemblyAIStreamingProvider({
                'api_key': "aai-test",
                'endpoint': str(server.make_url('/missing'))
            })
            capture_queue_only(provider, monkeypatch)

            assert await provider.start(Transcripts().start_config()) is False
            assert not provider.is_active
            await provider.stop()
        finally:
            await server.close()


class TestWhisperChunked:
    """Chunked transcription flow."""

    @pytest.mark.asyncio
    async def test_speech_then_silence_yields_partial_and_final(self, monkeypatch):
        provider = WhisperChunkedProvider({
            'api_key': "sk-test",
            'chunk_duration': 0.1,
            'silence_duration': 0.0
        })
        capture_queue_only(provider, monkeypatch)
        create = AsyncMock(return_value="Hello there Dash\n")
        provider._client = SimpleNamespace(audio=SimpleNamespace(transcriptions=SimpleNamespace(create=create)))
        results = Transcripts()

        assert await provider.start(results.start_config(language="zu-ZA"))
        assert provider.is_connected()

        provider._audio_queue.put_nowait(np.full(3200, 10000, dtype=np.int16))
        await eventually(lambda: results.partials == ["Hello there Dash"])
        provider._audio_queue.put_nowait(np.zeros(3200, dtype=np.int16))
        await eventually(lambda: results.finals == ["Hello there Dash"])

        kwargs = create.call_args.kwargs
        assert kwargs['language'] == "zu"
        assert kwargs['model'] == "whisper-1"
        assert kwargs['file'].name == "audio.wav"
        assert kwargs['file'].getvalue()[:4] == b"RIFF"
        assert len(results.levels) == 2

        await provider.stop()
        assert not provider.is_active
        assert not provider.is_connected()

    @pytest.mark.asyncio
    async def test_silence_alone_is_not_transcribed(self, monkeypatch):
        provider = WhisperChunkedProvider({'api_key': "sk-test", 'silence_duration': 0.0})
        capture_queue_only(provider, monkeypatch)
        create = AsyncMock(return_value="phantom")
        provider._client = SimpleNamespace(audio=SimpleNamespace(transcriptions=SimpleNamespace(create=create)))
        results = Transcripts()

        await provider.start(results.start_config())
        provider._audio_queue.put_nowait(np.zeros(3200, dtype=np.int16))
        await eventually(lambda: len(results.levels) == 1)
        await asyncio.sleep(0.05)
        await provider.stop()

        create.assert_not_awaited()
        assert results.partials == [] and results.finals == []
