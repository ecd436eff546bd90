"""
Audio level indicator for visualization.
"""

import numpy as np


def rms_level(frames: np.ndarray, full_scale: float = 0.1) -> float:
    """
    Convert a block of float32 samples to a 0-1 level.

    Args:
        frames: Audio samples in [-1, 1]
        full_scale: RMS value that maps to a level of 1.0

    Returns:
        Level clamped to [0, 1]
    """
    if frames is None or frames.size == 0:
        return 0.0
    rms = float(np.sqrt(np.mean(np.square(frames.astype(np.float32)))))
    return float(np.clip(rms / full_scale, 0.0, 1.0))


class AudioLevelMeter:
    """
    Smoothed 0-1 level.

    Raw levels come from the speech provider when it reports them; partial
    transcripts bump the level so providers without level reporting still
    animate. The level decays on every tick.
    """

    def __init__(self, decay_step: float = 0.05):
        self.decay_step = decay_step
        self._level = 0.0

    @property
    def level(self) -> float:
        return self._level

    def update(self, level: float):
        self._level = float(np.clip(level, 0.0, 1.0))

    def bump_from_text(self, text: str):
        """Partial transcript activity: 0.3 base plus length, capped at 1."""
        self._level = max(self._level, min(1.0, 0.3 + len(text or "") / 40.0))

    def decay(self) -> bool:
        """Decay one step. Returns True when the level changed."""
        if self._level <= 0.0:
            return False
        self._level = max(0.0, round(self._level - self.decay_step, 4))
        return True

    def reset(self):
        self._level = 0.0
