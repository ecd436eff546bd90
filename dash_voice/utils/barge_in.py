"""
Barge-in detection for voice interruption during assistant playback.

The user interrupts by speaking: partial transcripts that arrive while the
assistant is talking are checked against a grace period (so the assistant
hearing its own voice right after playback starts does not count) and a
minimum length (so single-syllable noise does not count).
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional


class BargeInMode(Enum):
    """Barge-in detection modes."""
    TRANSCRIPT = "transcript"  # Interrupt on recognized speech
    DISABLED = "disabled"      # No barge-in, input stays gated while speaking


@dataclass
class BargeInConfig:
    """Configuration for barge-in detection."""
    mode: BargeInMode = BargeInMode.TRANSCRIPT
    grace_period: float = 0.4  # Ignore speech for the first N seconds of playback
    min_chars: int = 4         # Minimum transcript length that counts as speech


class InterruptionDetector:
    """
    Decides whether a partial transcript heard during playback is a genuine
    interruption.

    The detector is armed when the turn's first speech item starts playing
    and disarmed when the turn ends. Before playback has actually started every partial
    is treated as inside the grace period.
    """

    def __init__(self, config: Optional[BargeInConfig] = None, clock: Callable[[], float] = time.monotonic):
        self.config = config or BargeInConfig()
        self._clock = clock
        self._playback_started_at: Optional[float] = None
        self._active = False
        self.triggered_count = 0

    @property
    def enabled(self) -> bool:
        return self.config.mode != BargeInMode.DISABLED

    @property
    def is_armed(self) -> bool:
        return self._active

    def activate(self):
        """Playback is pending for a turn; speech is now evaluated as interruption."""
        self._active = True

    def mark_playback_started(self, at: Optional[float] = None):
        """Record the start of a speech item. Only the turn's first item opens the grace window."""
        self._active = True
        if self._playback_started_at is None:
            self._playback_started_at = self._clock() if at is None else at

    def reset(self):
        self._active = False
        self._playback_started_at = None

    def in_grace_period(self, now: Optional[float] = None) -> bool:
        if self._playback_started_at is None:
            return True
        now = self._clock() if now is None else now
        return (now - self._playback_started_at) < self.config.grace_period

    def should_interrupt(self, text: str, now: Optional[float] = None) -> bool:
        """
        Evaluate a partial transcript heard while speaking.

        Args:
            text: Partial transcript
            now: Clock reading for the partial (defaults to the detector clock)

        Returns:
            True when the partial is past the grace period and long enough
        """
        if not self.enabled or not self._active:
            return False
        if len((text or "").strip()) < self.config.min_chars:
            return False
        if self.in_grace_period(now):
            return False
        self.triggered_count += 1
        return True
