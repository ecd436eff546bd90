"""Speech recognition providers."""

from .assemblyai_streaming import AssemblyAIStreamingProvider
from .whisper_chunked import WhisperChunkedProvider

__all__ = ['AssemblyAIStreamingProvider', 'WhisperChunkedProvider']
