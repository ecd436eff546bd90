"""
Abstract interfaces for the voice session components.
"""

from .speech import SpeechProviderInterface
from .synthesis import SynthesisProviderInterface
from .dispatcher import LanguageModelDispatcherInterface
from .response_store import ResponseStoreInterface

__all__ = [
    'SpeechProviderInterface',
    'SynthesisProviderInterface',
    'LanguageModelDispatcherInterface',
    'ResponseStoreInterface'
]
