"""
Conversation state machine for a voice session.
"""

from enum import Enum, auto
from typing import Optional, Dict, Any, List, Tuple, FrozenSet
from dataclasses import dataclass, field
from datetime import datetime

from ..models.data_models import ConversationState
from .error_handling import InvalidTransitionError


class SessionEvent(Enum):
    """Named events that drive conversation transitions."""
    SESSION_OPENED = auto()
    PARTIAL = auto()
    UTTERANCE_FINALIZED = auto()
    UTTERANCE_DISCARDED = auto()
    CACHE_HIT = auto()
    CACHE_MISS = auto()
    SENTENCE_READY = auto()
    FULL_RESPONSE = auto()
    TURN_COMPLETED = auto()
    BARGE_IN = auto()
    RESUME = auto()
    DISPATCH_FAILED = auto()
    PROVIDER_ERROR = auto()
    CLOSE = auto()


@dataclass
class StateTransition:
    """Record of a state transition."""
    from_state: ConversationState
    to_state: ConversationState
    event: SessionEvent
    timestamp: float = field(default_factory=lambda: datetime.now().timestamp())
    metadata: Dict[str, Any] = field(default_factory=dict)


S = ConversationState
E = SessionEvent

# (state, event) -> allowed target states. The first entry is the default target.
TRANSITIONS: Dict[Tuple[ConversationState, SessionEvent], Tuple[ConversationState, ...]] = {
    (S.IDLE, E.SESSION_OPENED): (S.LISTENING,),

    (S.LISTENING, E.PARTIAL): (S.TRANSCRIBING,),
    (S.LISTENING, E.UTTERANCE_FINALIZED): (S.THINKING,),
    (S.LISTENING, E.UTTERANCE_DISCARDED): (S.LISTENING,),
    (S.LISTENING, E.RESUME): (S.LISTENING,),

    (S.TRANSCRIBING, E.PARTIAL): (S.TRANSCRIBING,),
    (S.TRANSCRIBING, E.UTTERANCE_FINALIZED): (S.THINKING,),
    (S.TRANSCRIBING, E.UTTERANCE_DISCARDED): (S.LISTENING,),
    (S.TRANSCRIBING, E.RESUME): (S.TRANSCRIBING,),

    (S.THINKING, E.CACHE_HIT): (S.SPEAKING,),
    (S.THINKING, E.CACHE_MISS): (S.THINKING,),
    (S.THINKING, E.SENTENCE_READY): (S.SPEAKING,),
    (S.THINKING, E.FULL_RESPONSE): (S.SPEAKING,),
    (S.THINKING, E.TURN_COMPLETED): (S.LISTENING, S.WAITING),
    (S.THINKING, E.DISPATCH_FAILED): (S.ERROR,),

    (S.SPEAKING, E.SENTENCE_READY): (S.SPEAKING,),
    (S.SPEAKING, E.FULL_RESPONSE): (S.SPEAKING,),
    (S.SPEAKING, E.TURN_COMPLETED): (S.LISTENING, S.WAITING),
    (S.SPEAKING, E.BARGE_IN): (S.LISTENING,),
    (S.SPEAKING, E.DISPATCH_FAILED): (S.ERROR,),

    (S.WAITING, E.RESUME): (S.LISTENING,),
    (S.WAITING, E.UTTERANCE_DISCARDED): (S.WAITING,),

    (S.ERROR, E.RESUME): (S.LISTENING,),
}

# Events accepted from every state
GLOBAL_TRANSITIONS: Dict[SessionEvent, ConversationState] = {
    E.CLOSE: S.IDLE,
    E.PROVIDER_ERROR: S.ERROR,
}


class ConversationStateMachine:
    """
    Table-driven conversation state machine.

    Features:
    - Validates transitions against a (state, event) table
    - State history tracking
    - Never performs side effects; the orchestrator acts on the result
    """

    def __init__(self, initial: ConversationState = ConversationState.IDLE, history_size: int = 200):
        self._state = initial
        self._history: List[StateTransition] = []
        self._history_size = history_size

    @property
    def current_state(self) -> ConversationState:
        return self._state

    def allowed_targets(self, event: SessionEvent) -> FrozenSet[ConversationState]:
        if event in GLOBAL_TRANSITIONS:
            return frozenset({GLOBAL_TRANSITIONS[event]})
        return frozenset(TRANSITIONS.get((self._state, event), ()))

    def can_fire(self, event: SessionEvent, target: Optional[ConversationState] = None) -> bool:
        """Check whether an event (optionally to a given target) is valid now."""
        allowed = self.allowed_targets(event)
        if target is None:
            return bool(allowed)
        return target in allowed

    def fire(
        self,
        event: SessionEvent,
        target: Optional[ConversationState] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ConversationState:
        """
        Apply an event.

        Args:
            event: Event that occurred
            target: Explicit target when the event allows more than one
            metadata: Optional metadata about the transition

        Returns:
            The new state

        Raises:
            InvalidTransitionError: If the event is not valid in the current state
        """
        if event in GLOBAL_TRANSITIONS:
            allowed: Tuple[ConversationState, ...] = (GLOBAL_TRANSITIONS[event],)
        else:
            allowed = TRANSITIONS.get((self._state, event), ())

        if not allowed or (target is not None and target not in allowed):
            raise InvalidTransitionError(self._state, event)

        new_state = target if target is not None else allowed[0]
        self._history.append(StateTransition(
            from_state=self._state,
            to_state=new_state,
            event=event,
            metadata=metadata or {}
        ))
        if len(self._history) > self._history_size:
            self._history.pop(0)

        if new_state != self._state:
            print(f"🔄 State transition: {self._state.name} → {new_state.name} ({event.name.lower()})")
        self._state = new_state
        return new_state

    def reset(self):
        """Force the machine back to IDLE without validation."""
        self._state = ConversationState.IDLE

    def get_transition_history(self, last_n: int = 10) -> List[StateTransition]:
        """
        Get recent transition history.

        Args:
            last_n: Number of recent transitions to return

        Returns:
            List of recent transitions
        """
        return self._history[-last_n:]

    def get_status(self) -> Dict[str, Any]:
        """Get current status."""
        return {
            'state': self._state.value,
            'history_size': len(self._history),
            'last_transition': self._history[-1] if self._history else None
        }
