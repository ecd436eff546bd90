"""
Pydantic configuration models with validation.
"""

from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, Dict, Any, List
import os


class TimingConfig(BaseModel):
    """Timers that shape turn-taking. All values in seconds."""
    silence_timeout: float = Field(2.0, gt=0.0, le=30.0, description="Silence before a partial is finalized")
    interruption_grace_period: float = Field(0.4, ge=0.0, le=5.0, description="Ignore barge-in for N seconds after playback starts")
    min_interruption_chars: int = Field(4, ge=1, le=100, description="Minimum partial length that counts as an interruption")
    unmute_grace_delay: float = Field(0.4, ge=0.0, le=5.0, description="Keep input gated N seconds after playback ends")
    error_unmute_delay: float = Field(0.2, ge=0.0, le=5.0, description="Gate release delay after a failed turn")
    connection_timeout: float = Field(2.0, gt=0.0, le=30.0, description="Wait for the speech stream to connect")
    connection_poll_interval: float = Field(0.1, gt=0.0, le=1.0, description="Connection poll interval")
    no_audio_timeout: float = Field(3.0, gt=0.0, le=60.0, description="Switch speech provider if nothing is heard")
    level_decay_interval: float = Field(0.12, gt=0.0, le=1.0, description="Audio level decay tick")
    level_decay_step: float = Field(0.05, gt=0.0, le=1.0, description="Audio level decay per tick")

    @model_validator(mode='after')
    def validate_poll_interval(self):
        if self.connection_poll_interval > self.connection_timeout:
            raise ValueError('connection_poll_interval must not exceed connection_timeout')
        return self


class FilterConfig(BaseModel):
    """Utterance admission filter."""
    min_words: int = Field(3, ge=1, le=20, description="Utterances with fewer words are discarded")
    wake_words: List[str] = Field(default_factory=lambda: ["dash"], description="Activation words")

    @field_validator('wake_words')
    @classmethod
    def validate_wake_words(cls, v):
        cleaned = [w.strip().lower() for w in v if w and w.strip()]
        if not cleaned:
            raise ValueError('At least one wake word is required')
        return cleaned


class QueueConfig(BaseModel):
    """Progressive speech chunking."""
    min_sentence_chars: int = Field(30, ge=1, le=500, description="Minimum length before a sentence is spoken early")
    max_unterminated_chars: int = Field(220, ge=20, le=2000, description="Force a break in unterminated text")
    completion_timeout: float = Field(120.0, gt=0.0, description="Give up waiting for one item's playback")

    @model_validator(mode='after')
    def validate_lengths(self):
        if self.max_unterminated_chars < self.min_sentence_chars:
            raise ValueError('max_unterminated_chars must be >= min_sentence_chars')
        return self


class CacheConfig(BaseModel):
    """Response cache configuration."""
    enabled: bool = Field(True, description="Enable the response cache")
    max_entries: int = Field(256, ge=1, le=100000, description="Maximum cached responses")
    ttl: float = Field(3600.0, gt=0.0, description="Entry time to live in seconds")
    store_model_responses: bool = Field(True, description="Cache completed model responses")
    per_language: bool = Field(True, description="Namespace entries by session language")


class SessionConfig(BaseModel):
    """Session behavior."""
    default_language: str = Field("en", description="Language code used when none is given")
    auto_resume_listening: bool = Field(True, description="Return to listening after the assistant speaks")
    barge_in_enabled: bool = Field(True, description="Allow interrupting the assistant by speaking")
    conversation_title: str = Field("Voice session", description="Title for new conversations")
    speech_rate: float = Field(1.0, ge=0.25, le=4.0, description="Synthesis rate")
    speech_pitch: float = Field(1.0, ge=0.25, le=4.0, description="Synthesis pitch")


class VoiceConfig(BaseModel):
    """Complete voice session configuration."""
    timing: TimingConfig = Field(default_factory=TimingConfig)
    filter: FilterConfig = Field(default_factory=FilterConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'VoiceConfig':
        """Build from a nested dictionary such as get_voice_config()['voice']."""
        return cls.model_validate(data or {})

    @classmethod
    def from_env(cls) -> 'VoiceConfig':
        """Load overrides from environment variables."""
        timing: Dict[str, Any] = {}
        if os.getenv('DASH_SILENCE_TIMEOUT'):
            timing['silence_timeout'] = float(os.environ['DASH_SILENCE_TIMEOUT'])
        if os.getenv('DASH_INTERRUPTION_GRACE'):
            timing['interruption_grace_period'] = float(os.environ['DASH_INTERRUPTION_GRACE'])

        session: Dict[str, Any] = {}
        if os.getenv('DASH_LANGUAGE'):
            session['default_language'] = os.environ['DASH_LANGUAGE']
        if os.getenv('DASH_AUTO_RESUME'):
            session['auto_resume_listening'] = os.environ['DASH_AUTO_RESUME'].lower() in ('1', 'true', 'yes')
        if os.getenv('DASH_BARGE_IN'):
            session['barge_in_enabled'] = os.environ['DASH_BARGE_IN'].lower() in ('1', 'true', 'yes')

        cache: Dict[str, Any] = {}
        if os.getenv('DASH_CACHE_ENABLED'):
            cache['enabled'] = os.environ['DASH_CACHE_ENABLED'].lower() in ('1', 'true', 'yes')

        return cls(
            timing=TimingConfig(**timing),
            session=SessionConfig(**session),
            cache=CacheConfig(**cache)
        )
