"""
OpenAI Text-to-Speech provider with streaming playback.

Audio is streamed from the API straight into ffplay so playback begins as
soon as the first chunks arrive. Without ffplay the audio is buffered and
played with afplay.
"""

import asyncio
import os
import tempfile
import time
from pathlib import Path
from typing import Optional, Dict, Any

from openai import AsyncOpenAI

from ...interfaces.synthesis import SynthesisProviderInterface
from ...models.data_models import VoiceParams, SpeechCallbacks
from .playback import notify, find_player, terminate_process


class OpenAITTSProvider(SynthesisProviderInterface):
    """
    OpenAI TTS provider.

    Supports tts-1, tts-1-hd and gpt-4o-mini-tts. Playback is interruptible:
    stop() terminates the player process and the pending speak() call reports
    on_stopped.
    """

    name = "openai_tts"

    AVAILABLE_VOICES = ['alloy', 'echo', 'fable', 'onyx', 'nova', 'shimmer']
    AVAILABLE_MODELS = ['tts-1', 'tts-1-hd', 'gpt-4o-mini-tts']
    AVAILABLE_FORMATS = ['mp3', 'opus', 'aac', 'flac', 'wav', 'pcm']

    STREAM_CHUNK_SIZE = 4096

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize OpenAI TTS provider.

        Args:
            config: Configuration dictionary containing:
                - api_key: OpenAI API key (optional, can use env var)
                - model: Model to use (default: 'gpt-4o-mini-tts')
                - voice: Voice name (default: 'nova')
                - speed: Base speed 0.25-4.0, scaled by VoiceParams.rate
                - response_format: Output format (default: 'mp3')
                - instructions: Delivery instructions (gpt-4o-mini-tts only)
        """
        self.api_key = config.get('api_key') or os.getenv('OPENAI_API_KEY')
        if not self.api_key:
            raise ValueError("OpenAI API key is required. Set OPENAI_API_KEY env var or pass in config.")

        self.model = config.get('model', 'gpt-4o-mini-tts')
        if self.model not in self.AVAILABLE_MODELS:
            raise ValueError(f"Invalid model: {self.model}. Available: {self.AVAILABLE_MODELS}")

        self.voice = config.get('voice', 'nova')
        if self.voice not in self.AVAILABLE_VOICES:
            raise ValueError(f"Invalid voice: {self.voice}. Available: {self.AVAILABLE_VOICES}")

        self.speed = config.get('speed', 1.0)
        if not (0.25 <= self.speed <= 4.0):
            raise ValueError("Speed must be between 0.25 and 4.0")

        self.response_format = config.get('response_format', 'mp3')
        if self.response_format not in self.AVAILABLE_FORMATS:
            raise ValueError(f"Invalid format: {self.response_format}. Available: {self.AVAILABLE_FORMATS}")

        self.instructions = config.get('instructions')
        self.stream_chunk_size = config.get('stream_chunk_size', self.STREAM_CHUNK_SIZE)

        self._client: Optional[AsyncOpenAI] = None
        self._stop_playback = False
        self._playback_process: Optional[asyncio.subprocess.Process] = None
        self._playback_lock = asyncio.Lock()

    def _ensure_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client

    def _request_args(self, text: str, params: VoiceParams) -> Dict[str, Any]:
        voice = params.voice if params.voice in self.AVAILABLE_VOICES else self.voice
        speed = max(0.25, min(4.0, self.speed * (params.rate or 1.0)))
        args = {
            'model': self.model,
            'voice': voice,
            'input': text,
            'speed': speed,
            'response_format': self.response_format,
        }
        if self.instructions and self.model == 'gpt-4o-mini-tts':
            args['instructions'] = self.instructions
        return args

    def _get_file_suffix(self) -> str:
        return '.opus' if self.response_format == 'opus' else f".{self.response_format}"

    def _get_ffplay_format_args(self) -> list:
        if self.response_format == 'pcm':
            # Raw PCM needs an explicit format
            return ["-f", "s16le", "-ar", "24000", "-ac", "1"]
        return []

    async def speak(self, text: str, params: VoiceParams, callbacks: SpeechCallbacks) -> None:
        async with self._playback_lock:
            self._stop_playback = False
            self._ensure_client()
            request = self._request_args(text, params)
            try:
                if find_player("ffplay"):
                    await self._streaming_playback(request, callbacks)
                else:
                    await self._buffered_playback(request, callbacks)
            except Exception as e:
                if self._stop_playback:
                    notify(callbacks.on_stopped)
                else:
                    print(f"❌ OpenAI TTS error: {e}")
                    notify(callbacks.on_error, e)
                return
            finally:
                self._playback_process = None

            if self._stop_playback:
                notify(callbacks.on_stopped)
            else:
                notify(callbacks.on_done)

    async def _streaming_playback(self, request: Dict[str, Any], callbacks: SpeechCallbacks):
        """Stream API audio into ffplay's stdin."""
        self._playback_process = await asyncio.create_subprocess_exec(
            "ffplay",
            "-nodisp",
            "-autoexit",
            "-loglevel", "quiet",
            *self._get_ffplay_format_args(),
            "-i", "pipe:0",
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL
        )
        process = self._playback_process
        start_time = time.time()
        started = False

        async with self._client.audio.speech.with_streaming_response.create(**request) as response:
            async for chunk in response.iter_bytes(self.stream_chunk_size):
                if self._stop_playback:
                    break
                if not started:
                    started = True
                    latency_ms = (time.time() - start_time) * 1000
                    print(f"🎵 TTS streaming started (latency: {latency_ms:.0f}ms)")
                    notify(callbacks.on_start)
                try:
                    process.stdin.write(chunk)
                    await process.stdin.drain()
                except (BrokenPipeError, ConnectionResetError):
                    break

        if process.stdin and not process.stdin.is_closing():
            process.stdin.close()
        if self._stop_playback:
            return
        await process.wait()
        if process.returncode not in (0, None) and not self._stop_playback:
            raise RuntimeError(f"ffplay exited with code {process.returncode}")

    async def _buffered_playback(self, request: Dict[str, Any], callbacks: SpeechCallbacks):
        """Buffer the whole clip, then play it from a temporary file."""
        player = find_player("afplay")
        if player is None:
            raise RuntimeError("No audio player available (install ffmpeg or use macOS afplay)")
        print("⚠️  ffplay not found, using buffered playback (higher latency)")

        chunks = []
        async with self._client.audio.speech.with_streaming_response.create(**request) as response:
            async for chunk in response.iter_bytes(self.stream_chunk_size):
                if self._stop_playback:
                    return
                chunks.append(chunk)
        if not chunks or self._stop_playback:
            return

        tmp_path = None
        try:
            with tempfile.NamedTemporaryFile(suffix=self._get_file_suffix(), delete=False) as tmp:
                tmp.write(b''.join(chunks))
                tmp_path = tmp.name
            self._playback_process = await asyncio.create_subprocess_exec(
                player, tmp_path,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL
            )
            notify(callbacks.on_start)
            await self._playback_process.wait()
        finally:
            if tmp_path:
                Path(tmp_path).unlink(missing_ok=True)

    async def stop(self) -> None:
        """Stop audio playback immediately."""
        self._stop_playback = True
        process = self._playback_process
        if process is not None:
            await terminate_process(process)
            print("🛑 Stopped audio playback")

    async def cleanup(self) -> None:
        await self.stop()
        if self._client:
            await self._client.close()
            self._client = None

    @property
    def capabilities(self) -> dict:
        return {
            'streaming': True,
            'voices': self.AVAILABLE_VOICES,
            'languages': ['auto-detect'],
            'audio_formats': self.AVAILABLE_FORMATS,
            'rate_range': (0.25, 4.0),
            'models': self.AVAILABLE_MODELS,
            'features': ['streaming_playback', 'interruptible']
        }
