"""
Tests for the synthesis providers with a stubbed OpenAI client, fake
player processes and a fake pyttsx3 engine.
"""

import asyncio
import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from dash_voice.models.data_models import SpeechCallbacks, VoiceParams
from dash_voice.providers.synthesis import local_tts, openai_tts
from dash_voice.providers.synthesis.local_tts import LocalTTSProvider
from dash_voice.providers.synthesis.openai_tts import OpenAITTSProvider

from conftest import eventually


class FakeStdin:
    def __init__(self):
        self.data = b""
        self.closed = False

    def write(self, chunk: bytes):
        self.data += chunk

    async def drain(self):
        await asyncio.sleep(0)

    def close(self):
        self.closed = True

    def is_closing(self) -> bool:
        return self.closed


class FakeProcess:
    """Player process; exits on its own unless hold_until_terminated."""

    def __init__(self, args, exit_code: int = 0, hold_until_terminated: bool = False):
        self.args = args
        self.stdin = FakeStdin()
        self.returncode = None
        self.exit_code = exit_code
        self.hold = hold_until_terminated
        self.terminated = False
        self._exited = asyncio.Event()

    async def wait(self):
        if not self.hold and self.returncode is None:
            self.returncode = self.exit_code
        if self.hold and not self.terminated:
            await self._exited.wait()
        return self.returncode

    def terminate(self):
        self.terminated = True
        self.returncode = -15
        self._exited.set()

    def kill(self):
        self.terminate()


class FakeSpeechResponse:
    def __init__(self, chunks):
        self.chunks = chunks

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def iter_bytes(self, chunk_size=None):
        for chunk in self.chunks:
            await asyncio.sleep(0)
            yield chunk


class Recorder:
    """Collects playback callbacks in order."""

    def __init__(self):
        self.events = []
        self.errors = []

    def callbacks(self) -> SpeechCallbacks:
        return SpeechCallbacks(
            on_start=lambda: self.events.append('start'),
            on_done=lambda: self.events.append('done'),
            on_stopped=lambda: self.events.append('stopped'),
            on_error=self._error
        )

    def _error(self, error):
        self.events.append('error')
        self.errors.append(error)


@pytest.fixture
def processes(monkeypatch):
    """Replace subprocess creation with fake player processes."""
    created = []
    options = {'exit_code': 0, 'hold_until_terminated': False}

    async def fake_exec(*args, **kwargs):
        process = FakeProcess(args, **options)
        created.append(process)
        return process

    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_exec)
    return SimpleNamespace(created=created, options=options)


def openai_provider(chunks=(b"abc", b"def"), error=None, **config):
    provider = OpenAITTSProvider({'api_key': "sk-test", **config})
    requests = []

    def create(**kwargs):
        requests.append(kwargs)
        if error is not None:
            raise error
        return FakeSpeechResponse(list(chunks))

    provider._client = SimpleNamespace(
        audio=SimpleNamespace(speech=SimpleNamespace(
            with_streaming_response=SimpleNamespace(create=create)
        )),
        close=AsyncMock()
    )
    return provider, requests


class TestOpenAITTSProvider:
    """Callback mapping and playback paths."""

    @pytest.fixture(autouse=True)
    def ffplay_available(self, monkeypatch):
        monkeypatch.setattr(openai_tts, "find_player", lambda *names: "ffplay" if "ffplay" in names else None)

    def test_config_validation(self):
        with pytest.raises(ValueError, match="Invalid voice"):
            OpenAITTSProvider({'api_key': "sk-test", 'voice': "robot"})
        with pytest.raises(ValueError, match="Speed"):
            OpenAITTSProvider({'api_key': "sk-test", 'speed': 9.0})

    @pytest.mark.asyncio
    async def test_streams_into_player_and_reports_done(self, processes):
        provider, requests = openai_provider()
        recorder = Recorder()

        await provider.speak(
            "Sawubona!",
            VoiceParams(language="zu-ZA", voice="zu-ZA-ThandoNeural", rate=1.5),
            recorder.callbacks()
        )

        assert recorder.events == ['start', 'done']
        process = processes.created[0]
        assert process.args[0] == "ffplay"
        assert process.stdin.data == b"abcdef"
        assert process.stdin.closed

        request = requests[0]
        assert request['input'] == "Sawubona!"
        assert request['voice'] == "nova"
        assert request['speed'] == 1.5

    @pytest.mark.asyncio
    async def test_stop_during_playback_reports_stopped(self, processes):
        processes.options['hold_until_terminated'] = True
        provider, _ = openai_provider()
        recorder = Recorder()

        task = asyncio.create_task(provider.speak("A long answer.", VoiceParams(), recorder.callbacks()))
        await eventually(lambda: recorder.events == ['start'] and processes.created[0].stdin.closed)
        await provider.stop()
        await asyncio.wait_for(task, 1.0)

        assert recorder.events == ['start', 'stopped']
        assert processes.created[0].terminated

    @pytest.mark.asyncio
    async def test_api_error_reports_error(self, processes):
        provider, _ = openai_provider(error=RuntimeError("quota exceeded"))
        recorder = Recorder()

        await provider.speak("Hello there.", VoiceParams(), recorder.callbacks())

        assert recorder.events == ['error']
        assert "quota exceeded" in str(recorder.errors[0])

    @pytest.mark.asyncio
    async def test_player_failure_reports_error(self, processes):
        processes.options['exit_code'] = 1
        provider, _ = openai_provider()
        recorder = Recorder()

        await provider.speak("Hello there.", VoiceParams(), recorder.callbacks())

        assert recorder.events == ['start', 'error']
        assert "ffplay exited with code 1" in str(recorder.errors[0])

    @pytest.mark.asyncio
    async def test_buffered_playback_without_ffplay(self, processes, monkeypatch):
        monkeypatch.setattr(openai_tts, "find_player", lambda *names: "afplay" if "afplay" in names else None)
        provider, _ = openai_provider()
        recorder = Recorder()

        await provider.speak("Hello there.", VoiceParams(), recorder.callbacks())

        assert recorder.events == ['start', 'done']
        player, path = processes.created[0].args
        assert player == "afplay"
        assert path.endswith(".mp3")
        assert not Path(path).exists()

    @pytest.mark.asyncio
    async def test_cleanup_closes_client(self, processes):
        provider, _ = openai_provider()
        client = provider._client

        await provider.cleanup()

        client.close.assert_awaited_once()
        assert provider._client is None


class FakeEngine:
    def __init__(self, voices):
        self.voices = voices
        self.properties = {}
        self.said = []

    def getProperty(self, name):
        return self.voices if name == 'voices' else self.properties.get(name)

    def setProperty(self, name, value):
        self.properties[name] = value

    def say(self, text):
        self.said.append(text)

    def runAndWait(self):
        pass

    def stop(self):
        pass


def _voice(voice_id, name, languages=()):
    return SimpleNamespace(id=voice_id, name=name, languages=list(languages))


VOICES = [
    _voice("gmw/en", "English", [b"\x05en-gb"]),
    _voice("gmw/af", "Afrikaans", [b"\x05af"]),
    _voice("bnt/zu", "Zulu", [b"\x05zu"]),
]


class TestLocalTTSProvider:
    """Voice selection and callback mapping for the on-device fallback."""

    def test_selects_voice_for_language(self):
        provider = LocalTTSProvider({'use_macos_say': False})

        assert provider.select_voice(VOICES, VoiceParams(language="zu-ZA")).name == "Zulu"
        assert provider.select_voice(VOICES, VoiceParams(language="af-ZA")).name == "Afrikaans"
        assert provider.select_voice(VOICES, VoiceParams(language="en-ZA")).name == "English"

    def test_named_voice_wins_and_unknown_language_uses_voice_id(self):
        provider = LocalTTSProvider({'use_macos_say': False, 'voice_id': 1})

        assert provider.select_voice(VOICES, VoiceParams(language="zu-ZA", voice="Afrikaans")).name == "Afrikaans"
        assert provider.select_voice(VOICES, VoiceParams(language="xh-ZA")).name == "Afrikaans"
        assert provider.select_voice([], VoiceParams()) is None

    @pytest.mark.asyncio
    async def test_engine_playback(self, monkeypatch):
        engine = FakeEngine(VOICES)
        monkeypatch.setattr(local_tts.pyttsx3, "init", lambda: engine)
        provider = LocalTTSProvider({'use_macos_say': False, 'rate': 200, 'volume': 0.5})
        recorder = Recorder()

        await provider.speak("Sawubona", VoiceParams(language="zu-ZA", rate=0.5), recorder.callbacks())

        assert recorder.events == ['start', 'done']
        assert engine.said == ["Sawubona"]
        assert engine.properties['voice'] == "bnt/zu"
        assert engine.properties['rate'] == 100
        assert engine.properties['volume'] == 0.5

    @pytest.mark.asyncio
    async def test_say_uses_language_voice(self, processes):
        provider = LocalTTSProvider({'use_macos_say': True, 'say_voices': {'af-ZA': "Tessa"}})
        recorder = Recorder()

        await provider.speak("Goeie more", VoiceParams(language="af-ZA"), recorder.callbacks())

        assert recorder.events == ['start', 'done']
        assert processes.created[0].args == ('say', '-r', '175', '-v', "Tessa", "Goeie more")

    @pytest.mark.asyncio
    async def test_say_failure_reports_error(self, processes):
        processes.options['exit_code'] = 1
        provider = LocalTTSProvider({'use_macos_say': True})
        recorder = Recorder()

        await provider.speak("Hello there", VoiceParams(), recorder.callbacks())

        assert recorder.events == ['start', 'error']

    @pytest.mark.asyncio
    async def test_stop_reports_stopped(self, processes):
        processes.options['hold_until_terminated'] = True
        provider = LocalTTSProvider({'use_macos_say': True})
        recorder = Recorder()

        task = asyncio.create_task(provider.speak("A long sentence", VoiceParams(), recorder.callbacks()))
        await eventually(lambda: processes.created and provider._say_process is not None)
        await provider.stop()
        await asyncio.wait_for(task, 1.0)

        assert recorder.events == ['start', 'stopped']
        assert processes.created[0].terminated
