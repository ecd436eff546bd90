"""
Base class for microphone-driven speech providers.
"""

import asyncio
import threading
from abc import abstractmethod
from typing import Dict, Any, Optional

import numpy as np

from ..interfaces.speech import SpeechProviderInterface
from ..models.data_models import SpeechStartConfig
from ..utils.audio_level import rms_level
from ..utils.error_handling import ErrorHandler, ComponentError, ErrorSeverity


class StreamingSpeechProviderBase(SpeechProviderInterface):
    """
    Base class for streaming speech providers.

    Provides:
    - start/stop lifecycle with cleanup on failed start
    - Callback-based microphone capture feeding an asyncio queue
    - Mute handling that suppresses result delivery but keeps the stream
    - Audio level reporting from captured blocks
    """

    def __init__(self, config: Dict[str, Any], error_handler: Optional[ErrorHandler] = None):
        self.config = config
        self.error_handler = error_handler or ErrorHandler()

        self.sample_rate = config.get('sample_rate', 16000)
        self.frames_per_buffer = config.get('frames_per_buffer', 1024)
        self.channels = 1
        self._device_index = config.get('device_index')
        self._latency = config.get('latency', 'high')

        self._is_active = False
        self._lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._muted = threading.Event()
        self._shutdown_flag = threading.Event()
        self._start_config: Optional[SpeechStartConfig] = None

        self._event_loop: Optional[asyncio.AbstractEventLoop] = None
        self._audio_queue: Optional[asyncio.Queue] = None
        self._audio_stream = None

    @property
    def is_active(self) -> bool:
        return self._is_active

    @property
    def is_muted(self) -> bool:
        return self._muted.is_set()

    async def start(self, config: SpeechStartConfig) -> bool:
        """Start capture and recognition. Returns False instead of raising."""
        async with self._lock:
            if self._is_active:
                return True
            if not await self.is_available():
                print(f"❌ {self.name} unavailable")
                return False

            self._start_config = config
            self._stop_event.clear()
            self._shutdown_flag.clear()
            try:
                print(f"🚀 Starting {self.name}...")
                await self._initialize_stream()
                self._is_active = True
                print(f"✅ {self.name} started")
                return True
            except Exception as e:
                print(f"❌ Failed to start {self.name}: {e}")
                await self.error_handler.handle_error(ComponentError(
                    component=self.name,
                    severity=ErrorSeverity.FATAL,
                    message="Initialization failed",
                    exception=e
                ))
                await self._cleanup_stream()
                return False

    async def stop(self) -> None:
        """Stop capture. Safe to call multiple times."""
        async with self._lock:
            self._stop_event.set()
            self._shutdown_flag.set()
            was_active, self._is_active = self._is_active, False
            try:
                await self._cleanup_stream()
            except Exception as e:
                await self.error_handler.handle_error(ComponentError(
                    component=self.name,
                    severity=ErrorSeverity.WARNING,
                    message="Cleanup error",
                    exception=e
                ))
            if was_active:
                print(f"✅ {self.name} stopped")

    def set_muted(self, muted: bool) -> None:
        if muted:
            self._muted.set()
        else:
            self._muted.clear()

    # ===== Result delivery =====

    def _emit_partial(self, text: str):
        if self._start_config and not self._muted.is_set() and text:
            self._start_config.on_partial(text)

    def _emit_final(self, text: str):
        if self._start_config and not self._muted.is_set() and text:
            self._start_config.on_final(text)

    def _emit_error(self, error: Any):
        if self._start_config and self._start_config.on_error and not self._shutdown_flag.is_set():
            self._start_config.on_error(error)

    def _emit_level(self, block: np.ndarray):
        if self._start_config and self._start_config.on_audio_level and not self._muted.is_set():
            samples = block.astype(np.float32)
            if block.dtype == np.int16:
                samples = samples / 32768.0
            self._start_config.on_audio_level(rms_level(samples))

    # ===== Microphone capture =====

    def _audio_callback(self, indata: np.ndarray, frames: int, time_info, status):
        """
        Audio callback; runs in the sounddevice audio thread.

        Only copies the block and hands it to the event loop.
        """
        if self._shutdown_flag.is_set():
            return
        if status and status.input_overflow:
            print("⚠️  Audio OVERFLOW - try increasing frames_per_buffer or check device sample rate")

        audio_copy = indata.copy()
        if self._event_loop and self._audio_queue is not None:
            try:
                self._event_loop.call_soon_threadsafe(self._queue_audio_threadsafe, audio_copy)
            except RuntimeError:
                # Event loop closed or shutting down
                pass

    def _queue_audio_threadsafe(self, audio_data: np.ndarray):
        if self._audio_queue is None or self._shutdown_flag.is_set():
            return
        try:
            self._audio_queue.put_nowait(audio_data)
        except asyncio.QueueFull:
            # Drop the oldest block rather than stall capture
            self._audio_queue.get_nowait()
            self._audio_queue.put_nowait(audio_data)

    def _open_microphone(self):
        """Open a callback-mode input stream."""
        import sounddevice as sd

        self._event_loop = asyncio.get_running_loop()
        self._audio_queue = asyncio.Queue(maxsize=50)
        self._audio_stream = sd.InputStream(
            device=self._device_index,
            samplerate=self.sample_rate,
            channels=self.channels,
            dtype='int16',
            blocksize=self.frames_per_buffer,
            latency=self._latency,
            callback=self._audio_callback
        )
        self._audio_stream.start()
        print(f"🎙️  Microphone open ({self._device_index or 'default'}, {self.sample_rate}Hz)")

    async def _close_microphone(self):
        stream, self._audio_stream = self._audio_stream, None
        if stream is not None:
            try:
                if stream.active:
                    stream.stop()
                # Let in-flight callbacks finish
                await asyncio.sleep(0.05)
                stream.close()
            except Exception as e:
                print(f"⚠️  Audio stream close error: {e}")
        self._audio_queue = None
        self._event_loop = None

    @abstractmethod
    async def _initialize_stream(self):
        """Provider-specific start. Raise on failure."""
        pass

    @abstractmethod
    async def _cleanup_stream(self):
        """Provider-specific cleanup. Must be safe to call multiple times."""
        pass
