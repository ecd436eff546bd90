"""
Text helpers shared by the finalizer, speech queue and response cache.
"""

import re
from typing import List, Optional, Sequence


TERMINAL_PUNCTUATION = re.compile(r'[.!?…]$')
TRAILING_PUNCTUATION = re.compile(r'[\s.!?…]+$')
WHITESPACE = re.compile(r'\s+')
SENTENCE_BOUNDARY = re.compile(r'[.!?…]+["\')\]]*(?=\s)')

# Markers of raw streaming transport leaking into assistant text
_LEAK_MARKERS = ('"content_block_delta"', '"type":"', '"type": "')
_LEAK_PREFIXES = ('data:', '{"delta":', 'event:')

_EMOJI = re.compile(
    '['
    '\U0001F600-\U0001F64F'
    '\U0001F300-\U0001F5FF'
    '\U0001F680-\U0001F6FF'
    '\U0001F900-\U0001F9FF'
    '\U00002600-\U000026FF'
    '\U00002700-\U000027BF'
    '\U0000FE0F'
    ']'
)


def count_words(text: str) -> int:
    """Count whitespace-separated words."""
    return len(text.split()) if text else 0


def ensure_terminal_punctuation(text: str) -> str:
    """Strip text and append a full stop when it has no sentence terminator."""
    text = (text or "").strip()
    if text and not TERMINAL_PUNCTUATION.search(text):
        text += "."
    return text


def normalize_for_cache(text: str) -> str:
    """
    Normalize an utterance into a cache key.

    Trims, collapses whitespace, case-folds and drops trailing sentence
    punctuation so "What is your name?" and "what is your name" match.
    """
    text = WHITESPACE.sub(' ', (text or "").strip()).casefold()
    return TRAILING_PUNCTUATION.sub('', text)


def build_wake_word_pattern(wake_words: Sequence[str]) -> re.Pattern:
    names = '|'.join(re.escape(w.lower()) for w in wake_words)
    return re.compile(rf'^(?:(?:hey|hi|ok|okay)\s+)?(?:{names})[.!?,]*$', re.IGNORECASE)


def is_wake_word_only(text: str, wake_words: Sequence[str] = ("dash",)) -> bool:
    """True for utterances such as "dash", "hey dash" or "ok dash."."""
    cleaned = (text or "").strip()
    if not cleaned or count_words(cleaned) > 2:
        return False
    return bool(build_wake_word_pattern(wake_words).match(cleaned))


def is_raw_streaming_json(text: str) -> bool:
    """Detect transport framing (SSE lines, event envelopes) that must never be spoken."""
    if not text:
        return False
    stripped = text.strip()
    if stripped.startswith(_LEAK_PREFIXES):
        return True
    return any(marker in stripped for marker in _LEAK_MARKERS)


def normalize_text_for_speech(text: str) -> str:
    """Remove markdown, code and emoji so the text reads naturally aloud."""
    if not text:
        return ""

    # Code blocks go first so their contents are never spoken
    text = re.sub(r'```[\s\S]*?```', ' ', text)
    text = re.sub(r'`([^`]+)`', r'\1', text)
    text = re.sub(r'\*\*([^*]+)\*\*', r'\1', text)
    text = re.sub(r'\*([^*]+)\*', r'\1', text)
    text = re.sub(r'__([^_]+)__', r'\1', text)
    text = re.sub(r'(?<!\w)_([^_]+)_(?!\w)', r'\1', text)
    text = re.sub(r'^#{1,6}\s+', '', text, flags=re.MULTILINE)
    text = re.sub(r'^\s*[-*+]\s+', '', text, flags=re.MULTILINE)
    text = re.sub(r'\[([^\]]+)\]\([^)]+\)', r'\1', text)
    text = _EMOJI.sub('', text)
    return WHITESPACE.sub(' ', text).strip()


class SentenceChunker:
    """
    Segments a streamed response into speakable chunks.

    A chunk is released once it ends at a sentence terminator and holds at
    least min_sentence_chars characters (shorter sentences are merged with
    the next one). Text without a terminator is released at a word break
    once it grows past max_unterminated_chars.
    """

    def __init__(self, min_sentence_chars: int = 30, max_unterminated_chars: int = 220):
        self.min_sentence_chars = min_sentence_chars
        self.max_unterminated_chars = max_unterminated_chars
        self._buffer = ""

    @property
    def pending(self) -> str:
        return self._buffer

    def feed(self, chunk: str) -> List[str]:
        """
        Add streamed text.

        Args:
            chunk: Incremental response text

        Returns:
            Chunks that are ready to be spoken, in order
        """
        if chunk:
            self._buffer += chunk
        ready = []
        while True:
            piece = self._take_ready()
            if piece is None:
                return ready
            ready.append(piece)

    def flush(self) -> Optional[str]:
        """Release whatever is left at end of stream."""
        rest = self._buffer.strip()
        self._buffer = ""
        return rest or None

    def reset(self):
        self._buffer = ""

    def _take_ready(self) -> Optional[str]:
        for match in SENTENCE_BOUNDARY.finditer(self._buffer):
            candidate = self._buffer[:match.end()].strip()
            if len(candidate) >= self.min_sentence_chars:
                self._buffer = self._buffer[match.end():].lstrip()
                return candidate

        if len(self._buffer) > self.max_unterminated_chars:
            cut = self._buffer.rfind(' ', 0, self.max_unterminated_chars)
            if cut <= 0:
                cut = self.max_unterminated_chars
            candidate = self._buffer[:cut].strip()
            self._buffer = self._buffer[cut:].lstrip()
            return candidate or None
        return None
