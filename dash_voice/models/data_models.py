"""
Common data structures for the Dash voice session.
"""

from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Callable
from datetime import datetime
from enum import Enum


class ConversationState(str, Enum):
    """Observable conversation states."""
    IDLE = "idle"
    LISTENING = "listening"
    TRANSCRIBING = "transcribing"
    THINKING = "thinking"
    SPEAKING = "speaking"
    WAITING = "waiting"
    ERROR = "error"


class ConnectionStatus(str, Enum):
    """Speech provider connection status."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class FinalizationReason(str, Enum):
    """Why an utterance was finalized."""
    EXPLICIT_FINAL = "explicit_final"
    SILENCE_TIMEOUT = "silence_timeout"


class PlaybackOutcome(str, Enum):
    """How a queued speech item ended."""
    DONE = "done"
    STOPPED = "stopped"
    FAILED = "failed"
    DROPPED = "dropped"


@dataclass
class LanguageProfile:
    """A supported conversation language."""
    code: str
    bcp47: str
    name: str
    default_voice: Optional[str] = None


@dataclass
class VoiceParams:
    """Parameters handed to a synthesis provider."""
    language: str = "en-ZA"
    voice: Optional[str] = None
    rate: float = 1.0
    pitch: float = 1.0
    volume: float = 1.0


@dataclass
class SpeechCallbacks:
    """
    Playback lifecycle callbacks.

    Providers may invoke these from any thread.
    """
    on_start: Optional[Callable[[], None]] = None
    on_done: Optional[Callable[[], None]] = None
    on_stopped: Optional[Callable[[], None]] = None
    on_error: Optional[Callable[[Any], None]] = None


@dataclass
class SpeechStartConfig:
    """Configuration for starting a speech provider."""
    language: str
    on_partial: Callable[[str], None]
    on_final: Callable[[str], None]
    on_audio_level: Optional[Callable[[float], None]] = None
    on_error: Optional[Callable[[Any], None]] = None


@dataclass
class Utterance:
    """One user utterance, assembled from partial transcripts."""
    text: str = ""
    word_count: int = 0
    partial_timestamps: List[float] = field(default_factory=list)
    reason: Optional[FinalizationReason] = None
    finalized: bool = False
    discarded: bool = False
    discard_reason: Optional[str] = None
    timestamp: float = field(default_factory=lambda: datetime.now().timestamp())

    def __str__(self) -> str:
        status = "[DISCARDED]" if self.discarded else f"[{self.reason.value if self.reason else 'open'}]"
        return f"{status} {self.text}"


@dataclass
class SpeechQueueItem:
    """A sentence waiting for synthesis."""
    text: str
    seq: int
    voice_params: VoiceParams = field(default_factory=VoiceParams)
    turn_id: Optional[int] = None


@dataclass
class DispatchResponse:
    """Complete response returned by a language model dispatcher."""
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def do_not_speak(self) -> bool:
        """True when the backend asked for the response to stay silent."""
        return bool(self.metadata.get('doNotSpeak') or self.metadata.get('do_not_speak'))


@dataclass
class ConversationTurn:
    """One request/response exchange."""
    turn_id: int
    utterance: Utterance
    response_text: str = ""
    from_cache: bool = False
    response_complete: bool = False
    aborted: bool = False
    do_not_speak: bool = False
    queued_items: int = 0
    finished_items: int = 0
    spoken_items: int = 0
    failed_items: int = 0
    timestamp: float = field(default_factory=lambda: datetime.now().timestamp())

    @property
    def playback_pending(self) -> bool:
        return self.finished_items < self.queued_items

    @property
    def is_closed(self) -> bool:
        return self.aborted or (self.response_complete and not self.playback_pending)


@dataclass
class VoiceSession:
    """Live session bookkeeping owned by the orchestrator."""
    session_id: str
    language: LanguageProfile
    conversation_id: Optional[str] = None
    connection_status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    muted: bool = False
    input_gate: bool = False
    processing: bool = False
    abort_speech: bool = False
    warnings: List[str] = field(default_factory=list)
    started_at: float = field(default_factory=lambda: datetime.now().timestamp())


@dataclass(frozen=True)
class SessionSnapshot:
    """Immutable view of the session published to observers."""
    state: ConversationState = ConversationState.IDLE
    connection_status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    muted: bool = False
    input_gate: bool = False
    partial_transcript: str = ""
    assistant_text: str = ""
    audio_level: float = 0.0
    error_message: Optional[str] = None
    error_retryable: bool = False
    session_id: Optional[str] = None
    language: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        return {
            'state': self.state.value,
            'connection_status': self.connection_status.value,
            'muted': self.muted,
            'input_gate': self.input_gate,
            'partial_transcript': self.partial_transcript,
            'assistant_text': self.assistant_text,
            'audio_level': self.audio_level,
            'error_message': self.error_message,
            'error_retryable': self.error_retryable,
            'session_id': self.session_id,
            'language': self.language,
        }
