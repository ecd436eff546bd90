"""Language model dispatchers."""

from .http_assistant import HttpAssistantDispatcher, parse_sse_line, extract_delta_text
from .openai_chat import OpenAIChatDispatcher

__all__ = ['HttpAssistantDispatcher', 'OpenAIChatDispatcher', 'parse_sse_line', 'extract_delta_text']
