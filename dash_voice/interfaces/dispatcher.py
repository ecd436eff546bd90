"""
Abstract interface for language model dispatchers.
"""

from abc import ABC, abstractmethod
from typing import Optional, Callable, Dict, Any
from ..models.data_models import DispatchResponse


StreamChunkCallback = Callable[[str], None]


class LanguageModelDispatcherInterface(ABC):
    """Abstract base class for sending a user turn to the assistant backend."""

    name: str = "dispatcher"

    @abstractmethod
    async def send_message(self,
                           text: str,
                           conversation_id: Optional[str] = None,
                           on_stream_chunk: Optional[StreamChunkCallback] = None,
                           context: Optional[Dict[str, Any]] = None) -> DispatchResponse:
        """
        Send a user message and wait for the complete response.

        Args:
            text: User utterance text
            conversation_id: Active conversation, if any
            on_stream_chunk: Called with incremental response text while streaming
            context: Extra request context (language, voice prompt)

        Returns:
            DispatchResponse: Full response content and metadata
        """
        pass

    def get_current_conversation_id(self) -> Optional[str]:
        """Return the active conversation id, if the backend tracks one."""
        return None

    async def start_new_conversation(self, title: str = "Voice session") -> Optional[str]:
        """
        Start a new conversation on the backend.

        Args:
            title: Conversation title

        Returns:
            New conversation id, or None if the backend does not track conversations
        """
        return None

    async def preflight_lookup(self, text: str) -> Optional[Dict[str, Any]]:
        """Optional best-effort lookup that runs while an utterance finalizes."""
        return None

    async def cleanup(self) -> None:
        """Clean up resources used by the dispatcher."""
        pass
