"""
Dash Voice - hands-free voice conversation with the Dash assistant.

This package provides:
- Streaming speech recognition (AssemblyAI) with a Whisper fallback
- Silence-based utterance finalization and wake-word filtering
- Response cache in front of the assistant backend
- Sentence-level progressive speech (OpenAI TTS, local fallback)
- Barge-in interruption while the assistant is speaking

Usage:
    from dash_voice import ProviderFactory, get_voice_config

    orchestrator = ProviderFactory.create_orchestrator(get_voice_config())
    await orchestrator.open_session("zu")
    ...
    await orchestrator.shutdown()
"""

from .orchestrator import ConversationOrchestrator
from .factory import ProviderFactory
from .config import get_voice_config
from .config_models import VoiceConfig
from . import interfaces
from . import models
from . import providers

__version__ = "1.0.0"

__all__ = [
    'ConversationOrchestrator',
    'ProviderFactory',
    'get_voice_config',
    'VoiceConfig',
    'interfaces',
    'models',
    'providers'
]
