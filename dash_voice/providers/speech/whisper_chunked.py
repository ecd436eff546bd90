"""
OpenAI Whisper speech provider.

Chunked transcription that behaves like a streaming recognizer:
- Audio is captured with the same callback stream as the streaming provider
- While the user speaks, the growing utterance is transcribed every few
  seconds and reported as a partial
- After a run of silence the utterance is transcribed once more and
  reported as a final
"""

import asyncio
import io
import wave
from typing import Dict, Any, Optional

import numpy as np
from openai import AsyncOpenAI

from ..base import StreamingSpeechProviderBase


class WhisperChunkedProvider(StreamingSpeechProviderBase):
    """
    Whisper-backed recognizer used as the secondary speech provider.

    Configuration options:
    - api_key: OpenAI API key
    - model: Whisper model (default: "whisper-1")
    - chunk_duration: Seconds of speech between partial transcriptions
    - silence_threshold: RMS energy (0-1) below which a block is silence
    - silence_duration: Seconds of silence that end an utterance
    """

    name = "whisper"

    def __init__(self, config: Dict[str, Any]):
        config = {'frames_per_buffer': 3200, **config}
        super().__init__(config)
        self.api_key = config.get('api_key')
        if not self.api_key:
            raise ValueError("OpenAI API key is required")

        self.model = config.get('model', 'whisper-1')
        self.chunk_duration = config.get('chunk_duration', 3.0)
        self.silence_threshold = config.get('silence_threshold', 0.01)
        self.silence_duration = config.get('silence_duration', 1.2)

        self._client: Optional[AsyncOpenAI] = None
        self._process_task: Optional[asyncio.Task] = None
        self._language = 'en'
        self._audio_buffer = b""
        self._last_partial_at = 0

    async def is_available(self) -> bool:
        return bool(self.api_key)

    def is_connected(self) -> bool:
        # No remote stream to establish; live once the microphone is open
        return self._audio_stream is not None and self._client is not None

    async def _initialize_stream(self):
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key)
        self._language = (self._start_config.language or 'en').split('-')[0]
        self._audio_buffer = b""
        self._last_partial_at = 0
        self._open_microphone()
        self._process_task = asyncio.create_task(self._process_audio())

    def _detect_speech(self, block: np.ndarray) -> bool:
        energy = np.sqrt(np.mean(block.astype(np.float32) ** 2)) / 32768.0
        return energy > self.silence_threshold

    def _audio_to_wav_bytes(self, audio_bytes: bytes) -> bytes:
        """Wrap raw PCM16 in a WAV container for the API."""
        wav_buffer = io.BytesIO()
        with wave.open(wav_buffer, 'wb') as wav_file:
            wav_file.setnchannels(self.channels)
            wav_file.setsampwidth(2)
            wav_file.setframerate(self.sample_rate)
            wav_file.writeframes(audio_bytes)
        return wav_buffer.getvalue()

    async def _transcribe(self, audio_bytes: bytes) -> Optional[str]:
        if len(audio_bytes) < 1000:
            return None
        audio_file = io.BytesIO(self._audio_to_wav_bytes(audio_bytes))
        audio_file.name = "audio.wav"
        try:
            response = await self._client.audio.transcriptions.create(
                model=self.model,
                file=audio_file,
                language=self._language,
                response_format="text"
            )
        except Exception as e:
            print(f"⚠️  Whisper API error: {e}")
            return None
        text = response.strip() if isinstance(response, str) else getattr(response, 'text', '').strip()
        return text or None

    async def _process_audio(self):
        chunk_bytes = int(self.chunk_duration * self.sample_rate * 2)
        loop = asyncio.get_running_loop()
        silence_started: Optional[float] = None
        heard_speech = False
        try:
            while not self._shutdown_flag.is_set():
                queue = self._audio_queue
                if queue is None:
                    break
                try:
                    block = await asyncio.wait_for(queue.get(), timeout=0.3)
                except asyncio.TimeoutError:
                    continue

                self._emit_level(block)
                now = loop.time()
                if self._detect_speech(block):
                    heard_speech = True
                    silence_started = None
                elif silence_started is None:
                    silence_started = now

                if not heard_speech:
                    continue
                self._audio_buffer += block.tobytes()

                if silence_started is not None and now - silence_started >= self.silence_duration:
                    text = await self._transcribe(self._audio_buffer)
                    if text:
                        self._emit_final(text)
                    self._audio_buffer = b""
                    self._last_partial_at = 0
                    heard_speech = False
                    silence_started = None
                elif len(self._audio_buffer) - self._last_partial_at >= chunk_bytes:
                    self._last_partial_at = len(self._audio_buffer)
                    text = await self._transcribe(self._audio_buffer)
                    if text:
                        self._emit_partial(text)
        except asyncio.CancelledError:
            pass
        except Exception as e:
            if not self._shutdown_flag.is_set():
                print(f"❌ Whisper processing error: {e}")
                self._emit_error(e)

    async def _cleanup_stream(self):
        if self._process_task is None and self._audio_stream is None:
            return
        await self._close_microphone()
        if self._process_task is not None and not self._process_task.done():
            self._process_task.cancel()
            await asyncio.gather(self._process_task, return_exceptions=True)
        self._process_task = None
        self._audio_buffer = b""

    @property
    def capabilities(self) -> dict:
        return {
            'streaming': False,
            'partials': True,
            'languages': ['en-ZA', 'af-ZA', 'zu-ZA', 'xh-ZA', 'nso-ZA'],
            'audio_formats': ['pcm16'],
            'sample_rates': [self.sample_rate],
            'features': ['chunked', 'energy_silence_detection']
        }
