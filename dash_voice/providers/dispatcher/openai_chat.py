"""
Dispatcher that talks to OpenAI chat completions directly.

Used when no assistant backend is configured. Keeps a short message history
per conversation so follow-up questions have context.
"""

import uuid
from typing import Optional, Dict, Any, List

from openai import AsyncOpenAI

from ...interfaces.dispatcher import LanguageModelDispatcherInterface, StreamChunkCallback
from ...models.data_models import DispatchResponse
from ...utils.logging_config import get_logger

logger = get_logger("dispatcher")

DEFAULT_SYSTEM_PROMPT = (
    "You are Dash, a friendly voice assistant for South African schools. "
    "Answer in short, natural spoken sentences without markdown."
)


class OpenAIChatDispatcher(LanguageModelDispatcherInterface):
    """
    Streaming chat completions dispatcher.

    Configuration options:
    - api_key: OpenAI API key
    - model: Chat model (default: "gpt-4o-mini")
    - max_tokens: Response token limit (default: 400)
    - temperature: Sampling temperature (default: 0.7)
    - max_history_messages: Messages kept per conversation (default: 20)
    """

    name = "openai_chat"

    def __init__(self, config: Dict[str, Any]):
        self.api_key = config.get('api_key')
        if not self.api_key:
            raise ValueError("OpenAI API key is required")
        self.model = config.get('model', 'gpt-4o-mini')
        self.max_tokens = config.get('max_tokens', 400)
        self.temperature = config.get('temperature', 0.7)
        self.max_history_messages = config.get('max_history_messages', 20)

        self._client: Optional[AsyncOpenAI] = None
        self._conversation_id: Optional[str] = None
        self._histories: Dict[str, List[Dict[str, str]]] = {}

    def _ensure_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client

    def _build_messages(self, text: str, history: List[Dict[str, str]],
                        context: Dict[str, Any]) -> List[Dict[str, str]]:
        system_prompt = context.get('system_prompt') or DEFAULT_SYSTEM_PROMPT
        return [{'role': 'system', 'content': system_prompt}, *history, {'role': 'user', 'content': text}]

    async def send_message(self,
                           text: str,
                           conversation_id: Optional[str] = None,
                           on_stream_chunk: Optional[StreamChunkCallback] = None,
                           context: Optional[Dict[str, Any]] = None) -> DispatchResponse:
        client = self._ensure_client()
        conversation_id = conversation_id or self._conversation_id or await self.start_new_conversation()
        history = self._histories.setdefault(conversation_id, [])
        messages = self._build_messages(text, history, context or {})

        parts = []
        finish_reason = None
        stream = await client.chat.completions.create(
            model=self.model,
            messages=messages,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            stream=True
        )
        async for chunk in stream:
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            delta = choice.delta.content if choice.delta else None
            if delta:
                parts.append(delta)
                if on_stream_chunk:
                    on_stream_chunk(delta)
            if choice.finish_reason:
                finish_reason = choice.finish_reason

        content = ''.join(parts)
        history.append({'role': 'user', 'content': text})
        history.append({'role': 'assistant', 'content': content})
        del history[:-self.max_history_messages]

        return DispatchResponse(
            content=content,
            metadata={'model': self.model, 'finish_reason': finish_reason, 'conversation_id': conversation_id}
        )

    def get_current_conversation_id(self) -> Optional[str]:
        return self._conversation_id

    async def start_new_conversation(self, title: str = "Voice session") -> Optional[str]:
        self._conversation_id = f"local-{uuid.uuid4().hex[:12]}"
        self._histories[self._conversation_id] = []
        logger.info(f"Started conversation {self._conversation_id} ({title})")
        return self._conversation_id

    def get_history(self, conversation_id: Optional[str] = None) -> List[Dict[str, str]]:
        return list(self._histories.get(conversation_id or self._conversation_id, []))

    async def cleanup(self) -> None:
        if self._client:
            await self._client.close()
            self._client = None
