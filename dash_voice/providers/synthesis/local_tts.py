"""
Local Text-to-Speech provider.
Offline TTS with interruption support, used as the fallback synthesizer.
"""

import asyncio
import platform
import threading
from typing import Optional, Dict, Any, List

import pyttsx3

from ...interfaces.synthesis import SynthesisProviderInterface
from ...models.data_models import VoiceParams, SpeechCallbacks
from .playback import notify, terminate_process


def _voice_languages(voice) -> List[str]:
    """Normalized language tags for a pyttsx3 voice ("zu-za", "zu", ...)."""
    tags = []
    for language in list(getattr(voice, 'languages', None) or []) + [getattr(voice, 'id', '')]:
        if isinstance(language, bytes):
            # espeak reports b'\x05en-us': a priority byte then the tag
            language = language[1:].decode('utf-8', errors='ignore')
        tag = str(language).lower().replace('_', '-').strip()
        if not tag:
            continue
        tags.append(tag)
        tags.append(tag.rsplit('/', 1)[-1])
        tags.append(tag.rsplit('/', 1)[-1].split('-')[0])
    return tags


class LocalTTSProvider(SynthesisProviderInterface):
    """
    Local TTS using the macOS 'say' command or pyttsx3 elsewhere.

    Features:
    - No network round trip
    - Offline operation
    - stop() interrupts the current utterance
    """

    name = "local_tts"

    def __init__(self, config: Dict[str, Any]):
        """
        Args:
            config: Configuration dictionary containing:
                - rate: Words per minute (default: 175)
                - volume: Volume 0.0-1.0 (default: 0.9, pyttsx3 only)
                - voice_id: pyttsx3 voice index when no voice matches the language (default: 0)
                - say_voice: macOS voice name (optional)
                - say_voices: macOS voice name per BCP-47 tag, e.g. {"af-ZA": "..."}
        """
        # Prefer 'say' on macOS; pyttsx3 conflicts with other audio users there
        self.use_macos_say = config.get('use_macos_say', platform.system() == 'Darwin')
        self.rate = config.get('rate', 175)
        self.volume = config.get('volume', 0.9)
        self.voice_id = config.get('voice_id', 0)
        self.say_voice = config.get('say_voice')
        self.say_voices: Dict[str, str] = dict(config.get('say_voices') or {})

        self._say_process: Optional[asyncio.subprocess.Process] = None
        self._engine = None
        self._engine_lock = threading.Lock()
        self._stop_playback = False
        self._playback_lock = asyncio.Lock()

    async def speak(self, text: str, params: VoiceParams, callbacks: SpeechCallbacks) -> None:
        async with self._playback_lock:
            self._stop_playback = False
            rate = int(self.rate * (params.rate or 1.0))
            try:
                notify(callbacks.on_start)
                if self.use_macos_say:
                    await self._speak_with_say(text, rate, self._say_voice_for(params))
                else:
                    await asyncio.to_thread(self._speak_with_engine, text, rate, params)
            except Exception as e:
                if self._stop_playback:
                    notify(callbacks.on_stopped)
                else:
                    print(f"❌ Local TTS error: {e}")
                    notify(callbacks.on_error, e)
                return

            if self._stop_playback:
                notify(callbacks.on_stopped)
            else:
                notify(callbacks.on_done)

    def _say_voice_for(self, params: VoiceParams) -> Optional[str]:
        language = params.language or ''
        return (
            self.say_voices.get(language)
            or self.say_voices.get(language.split('-')[0])
            or self.say_voice
        )

    def select_voice(self, voices: list, params: VoiceParams):
        """
        Pick a pyttsx3 voice for the requested language.

        Matches the profile voice name first, then the language in the
        voice's language list or id, then falls back to voice_id.
        """
        if not voices:
            return None
        if params.voice:
            for voice in voices:
                if params.voice in (voice.id, getattr(voice, 'name', None)):
                    return voice

        tag = (params.language or '').lower().replace('_', '-')
        base = tag.split('-')[0]
        for wanted in (tag, base):
            if not wanted:
                continue
            for voice in voices:
                if wanted in _voice_languages(voice):
                    return voice

        if 0 <= self.voice_id < len(voices):
            return voices[self.voice_id]
        return voices[0]

    async def _speak_with_say(self, text: str, rate: int, voice: Optional[str] = None):
        args = ['say', '-r', str(rate)]
        if voice:
            args += ['-v', voice]
        self._say_process = await asyncio.create_subprocess_exec(
            *args, text,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL
        )
        try:
            returncode = await self._say_process.wait()
        finally:
            self._say_process = None
        if returncode != 0 and not self._stop_playback:
            raise RuntimeError(f"'say' exited with code {returncode}")

    def _speak_with_engine(self, text: str, rate: int, params: VoiceParams):
        """Blocking pyttsx3 playback; runs in a worker thread."""
        # A fresh engine per utterance; engines are not reusable across threads
        engine = pyttsx3.init()
        voice = self.select_voice(engine.getProperty('voices'), params)
        if voice is not None:
            engine.setProperty('voice', voice.id)
        engine.setProperty('rate', rate)
        engine.setProperty('volume', max(0.0, min(1.0, self.volume * params.volume)))

        with self._engine_lock:
            if self._stop_playback:
                return
            self._engine = engine
        try:
            engine.say(text)
            engine.runAndWait()
        finally:
            with self._engine_lock:
                self._engine = None

    async def stop(self) -> None:
        """Stop audio playback immediately."""
        self._stop_playback = True
        if self._say_process is not None:
            await terminate_process(self._say_process)
            print("🛑 Stopped macOS 'say' command")
        with self._engine_lock:
            if self._engine is not None:
                try:
                    self._engine.stop()
                except Exception as e:
                    print(f"⚠️  Error stopping pyttsx3: {e}")

    @property
    def capabilities(self) -> dict:
        return {
            'streaming': False,
            'languages': ['en-ZA', 'af-ZA', 'zu-ZA', 'xh-ZA', 'nso-ZA'],
            'rate_range': (0.5, 2.0),
            'features': ['offline', 'interruptible']
        }
