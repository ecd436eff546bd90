"""
Pytest configuration and shared fixtures for Dash voice tests.
"""

import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from dash_voice.config_models import VoiceConfig
from dash_voice.interfaces import (
    SpeechProviderInterface,
    SynthesisProviderInterface,
    LanguageModelDispatcherInterface
)
from dash_voice.models.data_models import (
    DispatchResponse,
    SpeechCallbacks,
    SpeechStartConfig,
    VoiceParams
)
from dash_voice.orchestrator import ConversationOrchestrator
from dash_voice.response_cache import ResponseCache, InMemoryResponseStore


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeSpeechProvider(SpeechProviderInterface):
    """Speech provider driven by the test instead of a microphone."""

    def __init__(self, name: str = "fake_speech", start_ok: bool = True, connected: bool = True):
        self.name = name
        self.start_ok = start_ok
        self.connected = connected
        self.config: Optional[SpeechStartConfig] = None
        self.started = False
        self.start_count = 0
        self.stop_count = 0
        self.muted = False
        self.mute_history: List[bool] = []

    async def start(self, config: SpeechStartConfig) -> bool:
        self.start_count += 1
        if not self.start_ok:
            return False
        self.config = config
        self.started = True
        return True

    async def stop(self) -> None:
        self.stop_count += 1
        self.started = False

    def set_muted(self, muted: bool) -> None:
        self.muted = muted
        self.mute_history.append(muted)

    def is_connected(self) -> bool:
        return self.started and self.connected

    def partial(self, text: str):
        self.config.on_partial(text)

    def final(self, text: str):
        self.config.on_final(text)

    def level(self, value: float):
        self.config.on_audio_level(value)

    def error(self, error: Any):
        self.config.on_error(error)


class FakeSynthesisProvider(SynthesisProviderInterface):
    """
    Synthesis provider that records what it was asked to say.

    With auto_complete the utterance finishes immediately; otherwise the
    test calls finish() to end the active playback.
    """

    def __init__(self, name: str = "fake_tts", auto_complete: bool = True, fail: bool = False):
        self.name = name
        self.auto_complete = auto_complete
        self.fail = fail
        self.spoken: List[str] = []
        self.started: List[str] = []
        self.stop_count = 0
        self._active: Optional[SpeechCallbacks] = None

    async def speak(self, text: str, params: VoiceParams, callbacks: SpeechCallbacks) -> None:
        self.started.append(text)
        if self.fail:
            callbacks.on_error(RuntimeError(f"{self.name} failed"))
            return
        callbacks.on_start()
        if self.auto_complete:
            self.spoken.append(text)
            callbacks.on_done()
        else:
            self._active = callbacks

    def finish(self) -> bool:
        callbacks, self._active = self._active, None
        if callbacks is None:
            return False
        self.spoken.append(self.started[-1])
        callbacks.on_done()
        return True

    @property
    def is_playing(self) -> bool:
        return self._active is not None

    async def stop(self) -> None:
        self.stop_count += 1
        callbacks, self._active = self._active, None
        if callbacks is not None:
            callbacks.on_stopped()


class FakeDispatcher(LanguageModelDispatcherInterface):
    """Dispatcher with scripted stream chunks and responses."""

    name = "fake_dispatcher"

    def __init__(self, content: str = "", chunks: Optional[List[str]] = None,
                 metadata: Optional[Dict[str, Any]] = None, error: Optional[Exception] = None):
        self.content = content
        self.chunks = chunks or []
        self.metadata = metadata or {}
        self.error = error
        self.hold: Optional[asyncio.Event] = None
        self.calls: List[Dict[str, Any]] = []
        self.preflights: List[str] = []
        self.cancelled = 0

    async def send_message(self, text, conversation_id=None, on_stream_chunk=None, context=None):
        self.calls.append({'text': text, 'conversation_id': conversation_id, 'context': context})
        try:
            if self.hold is not None:
                await self.hold.wait()
            if self.error is not None:
                raise self.error
            for chunk in self.chunks:
                if on_stream_chunk:
                    on_stream_chunk(chunk)
                await asyncio.sleep(0)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        content = self.content or ''.join(self.chunks)
        return DispatchResponse(content=content, metadata=dict(self.metadata))

    def get_current_conversation_id(self):
        return None

    async def start_new_conversation(self, title: str = "Voice session"):
        return "conv-test"

    async def preflight_lookup(self, text: str):
        self.preflights.append(text)
        return None


def fast_voice_config(**overrides) -> VoiceConfig:
    """Voice configuration with short timers for tests."""
    data = {
        'timing': {
            'silence_timeout': 0.05,
            'unmute_grace_delay': 0.01,
            'error_unmute_delay': 0.0,
            'connection_timeout': 0.05,
            'connection_poll_interval': 0.01,
            'no_audio_timeout': 30.0,
            'level_decay_interval': 0.5,
        },
        'queue': {'completion_timeout': 5.0},
    }
    for section, values in overrides.items():
        data.setdefault(section, {}).update(values)
    return VoiceConfig.from_dict(data)


class Harness:
    """Orchestrator wired to fake providers."""

    def __init__(self, dispatcher: Optional[FakeDispatcher] = None,
                 synthesis: Optional[FakeSynthesisProvider] = None,
                 fallback_synthesis: Optional[FakeSynthesisProvider] = None,
                 speech: Optional[FakeSpeechProvider] = None,
                 fallback_speech: Optional[FakeSpeechProvider] = None,
                 cache: Optional[ResponseCache] = None,
                 **config_overrides):
        self.clock = FakeClock()
        self.speech = speech or FakeSpeechProvider()
        self.fallback_speech = fallback_speech
        self.synthesis = synthesis or FakeSynthesisProvider()
        self.fallback_synthesis = fallback_synthesis
        self.dispatcher = dispatcher or FakeDispatcher(content="Hello from Dash.")
        self.cache = cache or ResponseCache(InMemoryResponseStore())
        self.config = fast_voice_config(**config_overrides)
        self.orchestrator = ConversationOrchestrator(
            speech_provider=self.speech,
            synthesis_provider=self.synthesis,
            dispatcher=self.dispatcher,
            fallback_speech_provider=self.fallback_speech,
            fallback_synthesis_provider=self.fallback_synthesis,
            response_cache=self.cache,
            config=self.config,
            clock=self.clock
        )

    @property
    def state(self):
        return self.orchestrator.state

    async def open(self, language: Optional[str] = None) -> bool:
        return await self.orchestrator.open_session(language)

    async def close(self):
        await self.orchestrator.close_session()

    async def settle(self, rounds: int = 20):
        """Let posted mailbox messages and queued playback run."""
        for _ in range(rounds):
            await asyncio.sleep(0)

    async def wait_for_state(self, state, timeout: float = 2.0):
        return await self.orchestrator.wait_for_state(state, timeout)

    async def say(self, text: str):
        """Speak a complete utterance as an explicit final."""
        self.speech.partial(text)
        await self.settle()
        self.speech.final(text)
        await self.settle()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_harness():
    """Factory for orchestrator harnesses."""
    return Harness


async def eventually(condition, timeout: float = 2.0, interval: float = 0.005):
    """Poll until condition() is truthy; fail the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() >= deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)
