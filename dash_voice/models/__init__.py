"""
Data models for the Dash voice session.
"""

from .data_models import (
    ConversationState,
    ConnectionStatus,
    FinalizationReason,
    PlaybackOutcome,
    LanguageProfile,
    VoiceParams,
    SpeechCallbacks,
    SpeechStartConfig,
    Utterance,
    SpeechQueueItem,
    DispatchResponse,
    ConversationTurn,
    VoiceSession,
    SessionSnapshot
)

__all__ = [
    'ConversationState',
    'ConnectionStatus',
    'FinalizationReason',
    'PlaybackOutcome',
    'LanguageProfile',
    'VoiceParams',
    'SpeechCallbacks',
    'SpeechStartConfig',
    'Utterance',
    'SpeechQueueItem',
    'DispatchResponse',
    'ConversationTurn',
    'VoiceSession',
    'SessionSnapshot'
]
