"""Concrete speech, synthesis and dispatcher providers."""

from .base import StreamingSpeechProviderBase

__all__ = ['StreamingSpeechProviderBase']
