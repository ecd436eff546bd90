"""
Abstract interface for streaming speech recognition providers.
"""

from abc import ABC, abstractmethod
from ..models.data_models import SpeechStartConfig


class SpeechProviderInterface(ABC):
    """
    Abstract base class for all speech recognition providers.

    Providers own microphone capture and report recognized text through the
    callbacks in SpeechStartConfig. Callbacks may be invoked from any thread.
    """

    name: str = "speech"

    async def is_available(self) -> bool:
        """
        Check whether the provider can run in this environment.

        Returns:
            bool: True if the provider has what it needs (keys, devices)
        """
        return True

    @abstractmethod
    async def start(self, config: SpeechStartConfig) -> bool:
        """
        Start capturing and recognizing speech.

        Args:
            config: Language and result callbacks

        Returns:
            bool: True if recognition started, False otherwise
        """
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop recognition and release the microphone. Safe to call twice."""
        pass

    @abstractmethod
    def set_muted(self, muted: bool) -> None:
        """
        Suppress or resume result delivery without tearing down the stream.

        Args:
            muted: True to stop delivering callbacks
        """
        pass

    @abstractmethod
    def is_connected(self) -> bool:
        """
        Check whether the recognition stream is live.

        Returns:
            bool: True once the backend has accepted the stream
        """
        pass

    @property
    def capabilities(self) -> dict:
        """
        Get provider capabilities.

        Returns:
            dict: Dictionary of provider capabilities
        """
        return {
            'streaming': True,
            'partials': True,
            'languages': ['en-ZA'],
            'sample_rates': [16000]
        }
