"""
Serialized text-to-speech playback.

Items play strictly in enqueue order with a single active playback. Each
item gets one fallback attempt when the primary provider fails.
"""

import asyncio
import itertools
from collections import deque
from typing import Callable, Deque, Dict, Any, Optional, Set, Tuple

from .interfaces.synthesis import SynthesisProviderInterface
from .models.data_models import SpeechQueueItem, SpeechCallbacks, VoiceParams, PlaybackOutcome
from .utils.text import is_raw_streaming_json, normalize_text_for_speech
from .utils.logging_config import get_logger


logger = get_logger("speech_queue")

ItemStartedCallback = Callable[[SpeechQueueItem], None]
ItemFinishedCallback = Callable[[SpeechQueueItem, PlaybackOutcome], None]


class SpeechSynthesisQueue:
    """
    FIFO queue in front of a synthesis provider.

    Features:
    - Drain loop starts on the first enqueue into an idle queue
    - Callback-style providers are awaited through a future, so callbacks
      may arrive from any thread
    - Raw transport framing and empty text never reach the provider
    - stop() clears pending items and aborts active playback
    """

    def __init__(
        self,
        primary: SynthesisProviderInterface,
        fallback: Optional[SynthesisProviderInterface] = None,
        on_item_started: Optional[ItemStartedCallback] = None,
        on_item_finished: Optional[ItemFinishedCallback] = None,
        completion_timeout: float = 120.0
    ):
        self.primary = primary
        self.fallback = fallback
        self.on_item_started = on_item_started
        self.on_item_finished = on_item_finished
        self.completion_timeout = completion_timeout

        self._pending: Deque[SpeechQueueItem] = deque()
        self._seq = itertools.count(1)
        self._drain_task: Optional[asyncio.Task] = None
        self._active_item: Optional[SpeechQueueItem] = None
        self._active_provider: Optional[SynthesisProviderInterface] = None
        self._started: Set[int] = set()
        self._generation = 0
        self._stats = {
            'enqueued': 0,
            'spoken': 0,
            'failed': 0,
            'fallback_used': 0,
            'leaks_dropped': 0,
            'empty_dropped': 0,
            'stopped': 0,
        }

    @property
    def is_busy(self) -> bool:
        return bool(self._pending) or self._active_item is not None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def active_item(self) -> Optional[SpeechQueueItem]:
        return self._active_item

    def enqueue(
        self,
        text: str,
        voice_params: Optional[VoiceParams] = None,
        turn_id: Optional[int] = None
    ) -> Optional[SpeechQueueItem]:
        """
        Queue text for speaking.

        Args:
            text: Text to speak
            voice_params: Voice parameters for this item
            turn_id: Conversation turn the item belongs to

        Returns:
            The queued item, or None if the text was dropped
        """
        if is_raw_streaming_json(text):
            self._stats['leaks_dropped'] += 1
            logger.warning(f"Dropped transport framing instead of speaking it: {text[:60]!r}")
            return None

        cleaned = normalize_text_for_speech(text)
        if not cleaned:
            self._stats['empty_dropped'] += 1
            return None

        item = SpeechQueueItem(
            text=cleaned,
            seq=next(self._seq),
            voice_params=voice_params or VoiceParams(),
            turn_id=turn_id
        )
        self._pending.append(item)
        self._stats['enqueued'] += 1
        logger.debug(f"Queued #{item.seq}: {cleaned[:60]}")

        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.get_running_loop().create_task(self._drain())
        return item

    async def stop(self) -> int:
        """
        Clear pending items and abort active playback. Idempotent.

        Returns:
            Number of pending items that were discarded
        """
        self._generation += 1
        dropped = len(self._pending)
        self._pending.clear()

        active_item, provider = self._active_item, self._active_provider
        self._active_item = None
        self._active_provider = None
        task, self._drain_task = self._drain_task, None

        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

        if provider is not None:
            try:
                await provider.stop()
            except Exception as e:
                logger.warning(f"Synthesis stop failed ({provider.name}): {e}")

        if active_item is not None:
            self._stats['stopped'] += 1
            self._notify_finished(active_item, PlaybackOutcome.STOPPED)

        if task is not None and task is not asyncio.current_task():
            await asyncio.gather(task, return_exceptions=True)

        if dropped or active_item is not None:
            print(f"🛑 Speech queue stopped ({dropped} pending dropped)")
        return dropped

    async def _drain(self):
        while self._pending:
            item = self._pending.popleft()
            generation = self._generation
            outcome = await self._play(item, generation)
            if generation != self._generation:
                return
            self._active_item = None
            self._active_provider = None
            self._notify_finished(item, outcome)

    async def _play(self, item: SpeechQueueItem, generation: int) -> PlaybackOutcome:
        outcome, error = await self._speak_with(self.primary, item, generation)
        if outcome != PlaybackOutcome.FAILED:
            return outcome

        logger.warning(f"Synthesis failed ({self.primary.name}) for #{item.seq}: {error}")
        if self.fallback is None or generation != self._generation:
            self._stats['failed'] += 1
            return PlaybackOutcome.FAILED

        print(f"⚠️  Primary synthesis failed, retrying with {self.fallback.name}")
        self._stats['fallback_used'] += 1
        outcome, error = await self._speak_with(self.fallback, item, generation)
        if outcome == PlaybackOutcome.FAILED:
            self._stats['failed'] += 1
            print(f"❌ Fallback synthesis failed, skipping chunk: {error}")
        return outcome

    async def _speak_with(
        self,
        provider: SynthesisProviderInterface,
        item: SpeechQueueItem,
        generation: int
    ) -> Tuple[PlaybackOutcome, Any]:
        loop = asyncio.get_running_loop()
        done: asyncio.Future = loop.create_future()

        def settle(outcome: PlaybackOutcome, error: Any = None):
            if not done.done():
                done.set_result((outcome, error))

        def from_any_thread(func, *args):
            try:
                loop.call_soon_threadsafe(func, *args)
            except RuntimeError:
                # Loop already closed; nobody is waiting for this playback
                pass

        callbacks = SpeechCallbacks(
            on_start=lambda: from_any_thread(self._notify_started, item, generation),
            on_done=lambda: from_any_thread(settle, PlaybackOutcome.DONE),
            on_stopped=lambda: from_any_thread(settle, PlaybackOutcome.STOPPED),
            on_error=lambda error=None: from_any_thread(settle, PlaybackOutcome.FAILED, error),
        )

        self._active_item = item
        self._active_provider = provider
        try:
            await provider.speak(item.text, item.voice_params, callbacks)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            settle(PlaybackOutcome.FAILED, e)

        try:
            outcome, error = await asyncio.wait_for(done, timeout=self.completion_timeout)
        except asyncio.TimeoutError:
            return PlaybackOutcome.FAILED, "playback completion timed out"

        if outcome == PlaybackOutcome.DONE and generation == self._generation:
            self._stats['spoken'] += 1
        return outcome, error

    def _notify_started(self, item: SpeechQueueItem, generation: int):
        if generation != self._generation or item.seq in self._started:
            return
        self._started.add(item.seq)
        if self.on_item_started:
            self.on_item_started(item)

    def _notify_finished(self, item: SpeechQueueItem, outcome: PlaybackOutcome):
        self._started.discard(item.seq)
        if self.on_item_finished:
            self.on_item_finished(item, outcome)

    def get_stats(self) -> Dict[str, Any]:
        """Get queue statistics."""
        return {
            **self._stats,
            'pending': len(self._pending),
            'active': self._active_item.seq if self._active_item else None,
        }
