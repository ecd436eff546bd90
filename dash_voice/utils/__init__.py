# Utils package

from .error_handling import (
    ErrorSeverity,
    ComponentError,
    ErrorHandler,
    InvalidTransitionError,
    format_error,
    safe_cleanup,
)
from .logging_config import setup_logging, get_logger
from .state_machine import ConversationStateMachine, SessionEvent
from .text import (
    SentenceChunker,
    count_words,
    ensure_terminal_punctuation,
    is_raw_streaming_json,
    is_wake_word_only,
    normalize_for_cache,
    normalize_text_for_speech,
)

__all__ = [
    "ErrorSeverity",
    "ComponentError",
    "ErrorHandler",
    "InvalidTransitionError",
    "format_error",
    "safe_cleanup",
    "setup_logging",
    "get_logger",
    "ConversationStateMachine",
    "SessionEvent",
    "SentenceChunker",
    "count_words",
    "ensure_terminal_punctuation",
    "is_raw_streaming_json",
    "is_wake_word_only",
    "normalize_for_cache",
    "normalize_text_for_speech",
]
