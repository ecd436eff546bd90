"""
Utterance finalization: turns a stream of partial transcripts into one
final utterance, using the provider's explicit final when it sends one and
a silence timeout when it does not.
"""

import asyncio
import re
import time
from typing import Awaitable, Callable, Optional

from .models.data_models import Utterance, FinalizationReason
from .utils.text import count_words, ensure_terminal_punctuation
from .utils.timers import OneShotTimer
from .utils.logging_config import get_logger


logger = get_logger("finalizer")

_NON_WORD = re.compile(r'[^\w\s]')


def _comparable(text: str) -> str:
    return ' '.join(_NON_WORD.sub('', text or '').casefold().split())


class UtteranceFinalizer:
    """
    Buffers partial transcripts and finalizes each utterance exactly once.

    Must be driven from the event loop thread. The silence timer runs on the
    same loop, so partials, finals and expiry never interleave.
    """

    def __init__(
        self,
        on_utterance: Callable[[Utterance], None],
        silence_timeout: float = 2.0,
        preflight: Optional[Callable[[str], Awaitable[object]]] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self._on_utterance = on_utterance
        self.silence_timeout = silence_timeout
        self._preflight = preflight
        self._clock = clock
        self._timer = OneShotTimer("silence", self._on_silence_expired)
        self._current: Optional[Utterance] = None
        # Text of the last silence-finalized utterance, until a new partial arrives
        self._awaiting_final_for: Optional[str] = None
        self._preflight_tasks = set()
        self.finalized_count = 0

    @property
    def has_pending(self) -> bool:
        return self._current is not None

    @property
    def current_text(self) -> str:
        return self._current.text if self._current else ""

    def on_partial(self, text: str) -> Optional[Utterance]:
        """
        Buffer a partial transcript and restart the silence timer.

        Args:
            text: Latest partial transcript (replaces earlier partials)

        Returns:
            The open utterance, or None if the partial was empty
        """
        text = (text or "").strip()
        if not text:
            return self._current

        self._awaiting_final_for = None
        if self._current is None:
            self._current = Utterance()
        self._current.text = text
        self._current.word_count = count_words(text)
        self._current.partial_timestamps.append(self._clock())
        self._timer.start(self.silence_timeout)
        return self._current

    def on_final(self, text: str) -> Optional[Utterance]:
        """
        Finalize immediately with the provider's explicit final.

        An explicit final that repeats an utterance already finalized by the
        silence timer (no partial in between) is dropped.
        """
        text = (text or "").strip()

        if self._current is None:
            if self._awaiting_final_for is not None and (
                not text or _comparable(text) == self._awaiting_final_for
            ):
                logger.debug("Dropping explicit final already finalized by silence")
                self._awaiting_final_for = None
                return None
            if not text:
                return None
            self._current = Utterance(text=text, word_count=count_words(text))

        if text:
            self._current.text = text
            self._current.word_count = count_words(text)
        self._awaiting_final_for = None
        return self._finalize(FinalizationReason.EXPLICIT_FINAL)

    def reset(self):
        """Discard the open utterance and cancel the silence timer."""
        self._timer.cancel()
        self._current = None
        self._awaiting_final_for = None

    def close(self):
        self.reset()
        for task in list(self._preflight_tasks):
            task.cancel()
        self._preflight_tasks.clear()

    def _on_silence_expired(self):
        if self._current is None:
            return
        utterance = self._finalize(FinalizationReason.SILENCE_TIMEOUT)
        if utterance is not None:
            self._awaiting_final_for = _comparable(utterance.text)

    def _finalize(self, reason: FinalizationReason) -> Optional[Utterance]:
        self._timer.cancel()
        utterance, self._current = self._current, None
        if utterance is None or utterance.finalized:
            return None

        utterance.text = ensure_terminal_punctuation(utterance.text)
        if not utterance.text:
            return None
        utterance.word_count = count_words(utterance.text)
        utterance.reason = reason
        utterance.finalized = True
        self.finalized_count += 1
        logger.debug(f"Finalized ({reason.value}): {utterance.text}")

        self._start_preflight(utterance.text)
        self._on_utterance(utterance)
        return utterance

    def _start_preflight(self, text: str):
        if self._preflight is None:
            return
        try:
            task = asyncio.get_running_loop().create_task(self._run_preflight(text))
        except RuntimeError:
            return
        self._preflight_tasks.add(task)
        task.add_done_callback(self._preflight_tasks.discard)

    async def _run_preflight(self, text: str):
        try:
            result = await self._preflight(text)
            if result:
                logger.debug(f"Preflight context: {result}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Preflight lookup failed: {e}")
