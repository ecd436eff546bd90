"""
Abstract interface for text-to-speech providers.
"""

from abc import ABC, abstractmethod
from ..models.data_models import VoiceParams, SpeechCallbacks


class SynthesisProviderInterface(ABC):
    """Abstract base class for all speech synthesis providers."""

    name: str = "synthesis"

    @abstractmethod
    async def speak(self, text: str, params: VoiceParams, callbacks: SpeechCallbacks) -> None:
        """
        Speak text aloud.

        Completion is reported through the callbacks: exactly one of
        on_done, on_stopped or on_error fires per call. Raising is treated
        like on_error.

        Args:
            text: Text to speak
            params: Voice parameters
            callbacks: Playback lifecycle callbacks
        """
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Abort any in-progress playback."""
        pass

    async def cleanup(self) -> None:
        """Clean up resources used by the provider."""
        await self.stop()

    @property
    def capabilities(self) -> dict:
        """
        Get provider capabilities.

        Returns:
            dict: Dictionary of provider capabilities
        """
        return {
            'streaming': False,
            'languages': ['en-ZA'],
            'rate_range': (0.5, 2.0)
        }
