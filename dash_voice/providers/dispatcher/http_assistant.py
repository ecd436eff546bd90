"""
Dispatcher for the Dash assistant HTTP backend.

The backend answers either with a JSON body or with a text/event-stream of
content deltas. Only the text inside the deltas is forwarded to the stream
callback; the SSE framing itself never is.
"""

import asyncio
import json
import uuid
from typing import Optional, Dict, Any, AsyncIterator

import aiohttp

from ...interfaces.dispatcher import LanguageModelDispatcherInterface, StreamChunkCallback
from ...models.data_models import DispatchResponse
from ...utils.logging_config import get_logger

logger = get_logger("dispatcher")

SSE_DONE = "[DONE]"


def parse_sse_line(line: str) -> Optional[Dict[str, Any]]:
    """
    Parse one line of a text/event-stream body.

    Args:
        line: Raw line without the trailing newline

    Returns:
        None for blank, comment and non-data lines; {'done': True} for the
        terminating [DONE] marker; otherwise the decoded JSON payload, or
        {'text': payload} when the payload is not JSON.
    """
    line = line.strip()
    if not line or line.startswith(':') or not line.startswith('data:'):
        return None
    payload = line[len('data:'):].strip()
    if not payload:
        return None
    if payload == SSE_DONE:
        return {'done': True}
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        return {'text': payload}
    return data if isinstance(data, dict) else {'text': str(data)}


def extract_delta_text(event: Dict[str, Any]) -> Optional[str]:
    """Pull the incremental text out of a decoded stream event."""
    if event.get('type') == 'content_block_delta':
        delta = event.get('delta') or {}
        return delta.get('text')

    delta = event.get('delta')
    if isinstance(delta, dict):
        return delta.get('text') or delta.get('content')
    if isinstance(delta, str):
        return delta

    choices = event.get('choices')
    if isinstance(choices, list) and choices:
        return (choices[0].get('delta') or {}).get('content')

    if event.get('type') in (None, 'text') and isinstance(event.get('text'), str):
        return event['text']
    return None


class HttpAssistantDispatcher(LanguageModelDispatcherInterface):
    """
    Sends voice turns to the assistant backend over HTTP.

    Configuration options:
    - url: Chat endpoint
    - token: Bearer token (optional)
    - conversations_url: Endpoint that creates conversations (optional)
    - preflight_url: Knowledge lookup endpoint (optional)
    - timeout: Request timeout in seconds (default: 60)
    - stream: Ask the backend for an event stream (default: True)
    """

    name = "http_assistant"

    def __init__(self, config: Dict[str, Any]):
        self.url = config.get('url')
        if not self.url:
            raise ValueError("Assistant URL is required")
        self.token = config.get('token')
        self.conversations_url = config.get('conversations_url')
        self.preflight_url = config.get('preflight_url')
        self.timeout = config.get('timeout', 60)
        self.stream = config.get('stream', True)

        self._session: Optional[aiohttp.ClientSession] = None
        self._conversation_id: Optional[str] = None

    def _headers(self, streaming: bool) -> Dict[str, str]:
        headers = {'Content-Type': 'application/json'}
        if self.token:
            headers['Authorization'] = f"Bearer {self.token}"
        headers['Accept'] = 'text/event-stream' if streaming else 'application/json'
        return headers

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    async def send_message(self,
                           text: str,
                           conversation_id: Optional[str] = None,
                           on_stream_chunk: Optional[StreamChunkCallback] = None,
                           context: Optional[Dict[str, Any]] = None) -> DispatchResponse:
        streaming = self.stream and on_stream_chunk is not None
        payload = {
            'message': text,
            'conversation_id': conversation_id or self._conversation_id,
            'stream': streaming,
            'context': context or {},
        }
        session = self._ensure_session()
        async with session.post(self.url, json=payload, headers=self._headers(streaming)) as response:
            if response.status >= 400:
                body = await response.text()
                raise RuntimeError(f"Assistant request failed ({response.status}): {body[:200]}")

            content_type = response.headers.get('Content-Type', '')
            if 'text/event-stream' in content_type:
                return await self._read_event_stream(response, on_stream_chunk)

            data = await response.json(content_type=None)
            return self._parse_json_response(data)

    async def _iter_lines(self, response: aiohttp.ClientResponse) -> AsyncIterator[str]:
        async for raw_line in response.content:
            yield raw_line.decode('utf-8', errors='replace').rstrip('\r\n')

    async def _read_event_stream(self,
                                 response: aiohttp.ClientResponse,
                                 on_stream_chunk: Optional[StreamChunkCallback]) -> DispatchResponse:
        parts = []
        metadata: Dict[str, Any] = {}
        async for line in self._iter_lines(response):
            event = parse_sse_line(line)
            if event is None:
                continue
            if event.get('done'):
                break
            if isinstance(event.get('metadata'), dict):
                metadata.update(event['metadata'])
            if event.get('conversation_id'):
                self._conversation_id = event['conversation_id']
            delta = extract_delta_text(event)
            if delta:
                parts.append(delta)
                if on_stream_chunk:
                    on_stream_chunk(delta)
        return DispatchResponse(content=''.join(parts), metadata=metadata)

    def _parse_json_response(self, data: Any) -> DispatchResponse:
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected assistant response: {str(data)[:200]}")
        if data.get('error'):
            raise RuntimeError(f"Assistant error: {data['error']}")
        if data.get('conversation_id'):
            self._conversation_id = data['conversation_id']

        content = data.get('content') or data.get('response') or data.get('message') or ''
        if not isinstance(content, str):
            content = json.dumps(content)
        metadata = dict(data.get('metadata') or {})
        for key in ('doNotSpeak', 'do_not_speak'):
            if key in data:
                metadata[key] = data[key]
        return DispatchResponse(content=content, metadata=metadata)

    def get_current_conversation_id(self) -> Optional[str]:
        return self._conversation_id

    async def start_new_conversation(self, title: str = "Voice session") -> Optional[str]:
        if not self.conversations_url:
            self._conversation_id = f"voice-{uuid.uuid4().hex[:12]}"
            return self._conversation_id

        session = self._ensure_session()
        async with session.post(self.conversations_url, json={'title': title},
                                headers=self._headers(False)) as response:
            if response.status >= 400:
                raise RuntimeError(f"Could not create conversation ({response.status})")
            data = await response.json(content_type=None)
        self._conversation_id = data.get('conversation_id') or data.get('id')
        logger.info(f"Started conversation {self._conversation_id}")
        return self._conversation_id

    async def preflight_lookup(self, text: str) -> Optional[Dict[str, Any]]:
        if not self.preflight_url:
            return None
        session = self._ensure_session()
        try:
            async with session.post(self.preflight_url, json={'query': text},
                                    headers=self._headers(False)) as response:
                if response.status >= 400:
                    return None
                return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.debug(f"Preflight lookup failed: {e}")
            return None

    async def cleanup(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
