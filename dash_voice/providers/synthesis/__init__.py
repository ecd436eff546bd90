"""Speech synthesis providers."""

from .openai_tts import OpenAITTSProvider
from .local_tts import LocalTTSProvider

__all__ = ['OpenAITTSProvider', 'LocalTTSProvider']
