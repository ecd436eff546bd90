"""
Conversation orchestrator for a Dash voice session.

One orchestrator drives one session at a time as a single-consumer actor:
provider callbacks (from any thread), timers and the dispatch task only
post messages into the mailbox, and every state mutation happens in the
mailbox loop.
"""

import asyncio
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional

from .config_models import VoiceConfig
from .finalizer import UtteranceFinalizer
from .interfaces.dispatcher import LanguageModelDispatcherInterface
from .interfaces.speech import SpeechProviderInterface
from .interfaces.synthesis import SynthesisProviderInterface
from .models.data_models import (
    ConnectionStatus,
    ConversationState,
    ConversationTurn,
    DispatchResponse,
    PlaybackOutcome,
    SessionSnapshot,
    SpeechQueueItem,
    SpeechStartConfig,
    Utterance,
    VoiceSession,
)
from .response_cache import ResponseCache, InMemoryResponseStore
from .speech_queue import SpeechSynthesisQueue
from .utils.audio_level import AudioLevelMeter
from .utils.barge_in import BargeInConfig, BargeInMode, InterruptionDetector
from .utils.error_handling import (
    ComponentError,
    ErrorHandler,
    ErrorSeverity,
    format_error,
    safe_cleanup,
)
from .utils.language import generate_language_prompt, get_language_profile, voice_params_for
from .utils.logging_config import get_logger
from .utils.state_machine import ConversationStateMachine, SessionEvent
from .utils.text import SentenceChunker, count_words, is_raw_streaming_json, is_wake_word_only
from .utils.timers import OneShotTimer, PeriodicTimer


logger = get_logger("orchestrator")

START_FAILED_MESSAGE = "Failed to start voice recognition"
NO_AUDIO_MESSAGE = "No audio detected. Check mic permissions and speak clearly close to the mic."

State = ConversationState


@dataclass
class MailboxMessage:
    """One event for the session actor."""
    kind: str
    payload: Dict[str, Any] = field(default_factory=dict)
    reply: Optional[asyncio.Future] = None


class ConversationOrchestrator:
    """
    Voice conversation orchestrator.

    Features:
    - Table-driven state machine (idle, listening, transcribing, thinking,
      speaking, waiting, error)
    - Silence-based utterance finalization with noise and wake-word filtering
    - Response cache short-circuit before model dispatch
    - Sentence-level progressive speech with barge-in interruption
    - One-shot fallback for speech recognition and per-chunk fallback for synthesis
    """

    def __init__(
        self,
        speech_provider: SpeechProviderInterface,
        synthesis_provider: SynthesisProviderInterface,
        dispatcher: LanguageModelDispatcherInterface,
        fallback_speech_provider: Optional[SpeechProviderInterface] = None,
        fallback_synthesis_provider: Optional[SynthesisProviderInterface] = None,
        response_cache: Optional[ResponseCache] = None,
        config: Optional[VoiceConfig] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.config = config or VoiceConfig()
        self._clock = clock
        self._log = logger

        self._speech_primary = speech_provider
        self._speech_fallback = fallback_speech_provider
        self._dispatcher = dispatcher

        if response_cache is None:
            response_cache = ResponseCache(
                InMemoryResponseStore(self.config.cache.max_entries, self.config.cache.ttl),
                enabled=self.config.cache.enabled
            )
        self._cache = response_cache

        self._queue = SpeechSynthesisQueue(
            synthesis_provider,
            fallback=fallback_synthesis_provider,
            on_item_started=self._on_item_started,
            on_item_finished=self._on_item_finished,
            completion_timeout=self.config.queue.completion_timeout
        )
        self._finalizer = UtteranceFinalizer(
            on_utterance=lambda utterance: self._post('utterance', utterance=utterance),
            silence_timeout=self.config.timing.silence_timeout,
            preflight=dispatcher.preflight_lookup,
            clock=clock
        )
        self._chunker = SentenceChunker(
            min_sentence_chars=self.config.queue.min_sentence_chars,
            max_unterminated_chars=self.config.queue.max_unterminated_chars
        )
        self._detector = InterruptionDetector(
            BargeInConfig(
                mode=BargeInMode.TRANSCRIPT if self.config.session.barge_in_enabled else BargeInMode.DISABLED,
                grace_period=self.config.timing.interruption_grace_period,
                min_chars=self.config.timing.min_interruption_chars
            ),
            clock=clock
        )
        self._level = AudioLevelMeter(decay_step=self.config.timing.level_decay_step)
        self._machine = ConversationStateMachine()
        self._errors = ErrorHandler()
        self._errors.register_recovery("speech", self._recover_speech)

        self._no_audio_timer = OneShotTimer("no_audio", lambda: self._post('no_audio'))
        self._gate_timer = OneShotTimer("gate_release", self._on_gate_timer)
        self._level_timer = PeriodicTimer("level_decay", lambda: self._post('level_tick'))

        self._handlers: Dict[str, Callable] = {
            'open': self._handle_open,
            'close': self._handle_close,
            'partial': self._handle_partial,
            'final': self._handle_final,
            'level': self._handle_level,
            'level_tick': self._handle_level_tick,
            'speech_error': self._handle_speech_error,
            'no_audio': self._handle_no_audio,
            'utterance': self._handle_utterance,
            'stream_chunk': self._handle_stream_chunk,
            'response': self._handle_response,
            'dispatch_failed': self._handle_dispatch_failed,
            'item_started': self._handle_item_started,
            'item_finished': self._handle_item_finished,
            'gate_release': self._handle_gate_release,
            'connection': self._handle_connection,
            'toggle_mute': self._handle_toggle_mute,
            'resume': self._handle_resume,
        }

        # Actor plumbing
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._mailbox: Optional[asyncio.Queue] = None
        self._mailbox_task: Optional[asyncio.Task] = None
        self._stopping = False

        # Session state, written only by the mailbox loop
        self._session: Optional[VoiceSession] = None
        self._active_speech: Optional[SpeechProviderInterface] = None
        self._speech_token = 0
        self._provider_muted: Optional[bool] = None
        self._heard_audio = False
        self._fallback_attempted = False
        self._turn: Optional[ConversationTurn] = None
        self._turn_seq = 0
        self._pending_utterances: Deque[Utterance] = deque()
        self._dispatch_task: Optional[asyncio.Task] = None
        self._connection_task: Optional[asyncio.Task] = None
        self._partial_text = ""
        self._assistant_text = ""
        self._error_message: Optional[str] = None
        self._error_retryable = False
        self._resume_not_before = 0.0

        # Observers
        self._snapshot = SessionSnapshot()
        self._subscribers: List[asyncio.Queue] = []
        self._listeners: List[Callable[[SessionSnapshot], None]] = []

    # ===== Public API =====

    @property
    def state(self) -> ConversationState:
        return self._machine.current_state

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    @property
    def session(self) -> Optional[VoiceSession]:
        return self._session

    @property
    def is_running(self) -> bool:
        return self._mailbox_task is not None and not self._mailbox_task.done() and not self._stopping

    async def open_session(self, language: Optional[str] = None) -> bool:
        """
        Open a voice session and start listening.

        Args:
            language: Short code ("zu") or BCP-47 tag; defaults to configuration

        Returns:
            True if the session reached listening
        """
        if not self.is_running:
            if self._mailbox_task is not None:
                await asyncio.gather(self._mailbox_task, return_exceptions=True)
            self._loop = asyncio.get_running_loop()
            self._mailbox = asyncio.Queue()
            self._stopping = False
            self._mailbox_task = self._loop.create_task(self._run_mailbox())
        return bool(await self._call('open', language=language))

    async def close_session(self):
        """Stop everything and return to idle. Safe to call any number of times."""
        if self.is_running:
            await self._call('close')
        task = self._mailbox_task
        if task is not None and task is not asyncio.current_task():
            await asyncio.gather(task, return_exceptions=True)
        if self._machine.current_state != State.IDLE:
            # Loop already gone (crashed); report idle
            self._machine.fire(SessionEvent.CLOSE)
            self._publish()

    async def toggle_mute(self) -> bool:
        """Toggle the user mute. Returns the new muted value."""
        result = await self._call('toggle_mute')
        return bool(result)

    async def resume_listening(self) -> bool:
        """Leave waiting (or a retryable error) and listen again."""
        return bool(await self._call('resume'))

    async def shutdown(self):
        """Close the session and release provider resources."""
        await self.close_session()
        providers = [self._speech_primary, self._speech_fallback]
        cleanups = [p.stop for p in providers if p is not None]
        cleanups += [self._queue.primary.cleanup]
        if self._queue.fallback is not None:
            cleanups.append(self._queue.fallback.cleanup)
        cleanups.append(self._dispatcher.cleanup)
        await safe_cleanup(*cleanups)

    def subscribe(self, maxsize: int = 100) -> asyncio.Queue:
        """Get a queue that receives every published SessionSnapshot."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def add_listener(self, listener: Callable[[SessionSnapshot], None]):
        """Register a callback invoked on the loop thread for every published snapshot."""
        self._listeners.append(listener)

    async def wait_for(self, predicate: Callable[[SessionSnapshot], bool], timeout: float = 5.0) -> SessionSnapshot:
        """Wait until a published snapshot satisfies predicate."""
        if predicate(self._snapshot):
            return self._snapshot
        queue = self.subscribe()
        try:
            async def _wait():
                while True:
                    snap = await queue.get()
                    if predicate(snap):
                        return snap
            return await asyncio.wait_for(_wait(), timeout)
        finally:
            self.unsubscribe(queue)

    async def wait_for_state(self, state: ConversationState, timeout: float = 5.0) -> SessionSnapshot:
        return await self.wait_for(lambda snap: snap.state == state, timeout)

    def get_status(self) -> Dict[str, Any]:
        """Get current status."""
        return {
            'state': self.state.value,
            'session_id': self._session.session_id if self._session else None,
            'conversation_id': self._session.conversation_id if self._session else None,
            'speech_provider': self._active_speech.name if self._active_speech else None,
            'turn': self._turn.turn_id if self._turn else None,
            'pending_utterances': len(self._pending_utterances),
            'warnings': list(self._session.warnings) if self._session else [],
            'queue': self._queue.get_stats(),
            'cache': self._cache.get_metrics(),
            'errors': self._errors.get_error_summary(),
            'state_machine': self._machine.get_status(),
        }

    # ===== Mailbox =====

    def _post(self, kind: str, reply: Optional[asyncio.Future] = None, **payload):
        """Post a message from any thread."""
        loop = self._loop
        if loop is None or self._mailbox is None or not self.is_running:
            if reply is not None and not reply.done():
                reply.set_result(None)
            return
        message = MailboxMessage(kind, payload, reply)
        try:
            loop.call_soon_threadsafe(self._mailbox.put_nowait, message)
        except RuntimeError:
            # Loop closed while a provider thread was still reporting
            pass

    async def _call(self, kind: str, **payload) -> Any:
        if not self.is_running:
            return None
        reply = asyncio.get_running_loop().create_future()
        self._post(kind, reply=reply, **payload)
        return await reply

    async def _run_mailbox(self):
        mailbox = self._mailbox
        try:
            while not self._stopping:
                message = await mailbox.get()
                try:
                    result = await self._handlers[message.kind](**message.payload)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    if message.reply is not None and not message.reply.done():
                        message.reply.set_result(None)
                    await self._handle_crash(e, message)
                    return
                if message.reply is not None and not message.reply.done():
                    message.reply.set_result(result)
                self._publish()
        finally:
            self._stopping = True
            while not mailbox.empty():
                leftover = mailbox.get_nowait()
                if leftover.reply is not None and not leftover.reply.done():
                    leftover.reply.set_result(None)

    async def _handle_crash(self, error: Exception, message: MailboxMessage):
        await self._errors.handle_error(ComponentError(
            component="orchestrator",
            severity=ErrorSeverity.FATAL,
            message=f"Session loop crashed while handling '{message.kind}'",
            exception=error
        ))
        self._stopping = True
        await self._teardown()
        self._machine.fire(SessionEvent.PROVIDER_ERROR, metadata={'crash': message.kind})
        self._error_message = f"Voice session stopped unexpectedly: {format_error(error)}"
        self._error_retryable = False
        self._session = None
        self._publish()

    def _publish(self):
        session = self._session
        snapshot = SessionSnapshot(
            state=self._machine.current_state,
            connection_status=session.connection_status if session else ConnectionStatus.DISCONNECTED,
            muted=session.muted if session else False,
            input_gate=session.input_gate if session else False,
            partial_transcript=self._partial_text,
            assistant_text=self._assistant_text,
            audio_level=self._level.level,
            error_message=self._error_message,
            error_retryable=self._error_retryable,
            session_id=session.session_id if session else None,
            language=session.language.bcp47 if session else None
        )
        if snapshot == self._snapshot:
            return
        self._snapshot = snapshot
        for queue in list(self._subscribers):
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(snapshot)
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                self._log.warning(f"Snapshot listener failed: {e}")

    # ===== Session lifecycle =====

    async def _handle_open(self, language: Optional[str] = None) -> bool:
        if self._session is not None:
            return self.state not in (State.IDLE, State.ERROR)

        profile = get_language_profile(language or self.config.session.default_language)
        self._session = VoiceSession(session_id=uuid.uuid4().hex, language=profile)
        self._log = logger.bind(self._session.session_id)
        self._reset_turn_state()
        self._heard_audio = False
        self._fallback_attempted = False
        self._error_message = None
        self._error_retryable = False
        self._session.connection_status = ConnectionStatus.CONNECTING
        self._publish()

        print(f"🎤 Opening voice session ({profile.name}, {profile.bcp47})")
        if not await self._start_speech(self._speech_primary):
            self._session.connection_status = ConnectionStatus.ERROR
            await self._errors.handle_error(ComponentError(
                component="speech",
                severity=ErrorSeverity.FATAL,
                message=START_FAILED_MESSAGE,
                context={'provider': self._speech_primary.name}
            ))
            self._machine.fire(SessionEvent.PROVIDER_ERROR)
            self._error_message = START_FAILED_MESSAGE
            self._error_retryable = False
            return False

        # The no-audio window counts from start(), not from connection confirmation
        self._no_audio_timer.start(self.config.timing.no_audio_timeout)
        self._watch_connection(self._active_speech)
        self._machine.fire(SessionEvent.SESSION_OPENED)
        self._publish()
        self._level_timer.start(self.config.timing.level_decay_interval)
        await self._ensure_conversation()
        print(f"✅ Listening (session {self._session.session_id[:8]})")
        return True

    async def _handle_close(self):
        if self._session is None:
            if self._machine.current_state != State.IDLE:
                self._machine.fire(SessionEvent.CLOSE)
            self._stopping = True
            return
        print("🧹 Closing voice session")
        await self._teardown()
        self._machine.fire(SessionEvent.CLOSE)
        self._session = None
        self._error_message = None
        self._error_retryable = False
        self._stopping = True
        print("✅ Voice session closed")

    async def _teardown(self):
        self._cancel_connection_watch()
        self._no_audio_timer.cancel()
        self._gate_timer.cancel()
        self._level_timer.cancel()
        self._finalizer.close()
        self._cancel_dispatch()
        await safe_cleanup(self._queue.stop, self._stop_active_speech)
        self._reset_turn_state()
        self._level.reset()
        if self._session is not None:
            self._session.connection_status = ConnectionStatus.DISCONNECTED
            self._session.input_gate = False
            self._session.processing = False
            self._session.abort_speech = False

    def _reset_turn_state(self):
        self._turn = None
        self._pending_utterances.clear()
        self._chunker.reset()
        self._detector.reset()
        self._partial_text = ""
        self._assistant_text = ""

    async def _ensure_conversation(self):
        try:
            conversation_id = self._dispatcher.get_current_conversation_id()
            if not conversation_id:
                conversation_id = await self._dispatcher.start_new_conversation(
                    self.config.session.conversation_title
                )
            self._session.conversation_id = conversation_id
        except Exception as e:
            await self._errors.handle_error(ComponentError(
                component="dispatcher",
                severity=ErrorSeverity.WARNING,
                message=f"Could not start a conversation: {format_error(e)}",
                exception=e
            ))

    # ===== Speech provider =====

    async def _start_speech(self, provider: SpeechProviderInterface) -> bool:
        self._speech_token += 1
        token = self._speech_token
        config = SpeechStartConfig(
            language=self._session.language.bcp47,
            on_partial=lambda text: self._post('partial', text=text, token=token),
            on_final=lambda text: self._post('final', text=text, token=token),
            on_audio_level=lambda level: self._post('level', level=level, token=token),
            on_error=lambda error: self._post('speech_error', error=error, token=token)
        )
        try:
            started = await provider.start(config)
        except Exception as e:
            self._log.error(f"Speech provider {provider.name} failed to start: {e}")
            started = False

        if not started:
            print(f"❌ Speech provider failed to start: {provider.name}")
            try:
                await provider.stop()
            except Exception as e:
                self._log.warning(f"Speech provider {provider.name} stop after failed start: {e}")
            return False

        self._active_speech = provider
        self._provider_muted = None
        self._update_provider_mute()
        print(f"✅ Speech provider started: {provider.name}")
        return True

    async def _stop_active_speech(self):
        provider, self._active_speech = self._active_speech, None
        self._speech_token += 1
        if provider is not None:
            await provider.stop()

    def _check_connected(self, provider: SpeechProviderInterface) -> bool:
        try:
            return bool(provider.is_connected())
        except Exception as e:
            self._log.warning(f"is_connected failed: {e}")
            return False

    def _watch_connection(self, provider: SpeechProviderInterface):
        """Confirm the connection now, or poll for it off the mailbox loop."""
        self._cancel_connection_watch()
        if self._check_connected(provider):
            self._session.connection_status = ConnectionStatus.CONNECTED
            return
        self._session.connection_status = ConnectionStatus.CONNECTING
        self._connection_task = asyncio.get_running_loop().create_task(
            self._poll_connection(provider, self._speech_token)
        )

    def _cancel_connection_watch(self):
        task, self._connection_task = self._connection_task, None
        if task is not None and not task.done():
            task.cancel()

    async def _poll_connection(self, provider: SpeechProviderInterface, token: int):
        timing = self.config.timing
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timing.connection_timeout
        while loop.time() < deadline:
            await asyncio.sleep(timing.connection_poll_interval)
            if self._check_connected(provider):
                self._post('connection', token=token, confirmed=True)
                return
        self._post('connection', token=token, confirmed=False)

    async def _handle_connection(self, token: int, confirmed: bool):
        if not self._accepts(token) or self._active_speech is None:
            return
        self._connection_task = None
        if not confirmed:
            timeout = self.config.timing.connection_timeout
            warning = f"Speech connection not confirmed within {timeout}s; continuing"
            self._session.warnings.append(warning)
            await self._errors.handle_error(ComponentError(
                component="speech_connection",
                severity=ErrorSeverity.WARNING,
                message=warning,
                context={'provider': self._active_speech.name}
            ))
        # Unconfirmed connections proceed optimistically
        self._session.connection_status = ConnectionStatus.CONNECTED

    def _accepts(self, token: int) -> bool:
        return self._session is not None and token == self._speech_token

    def _update_provider_mute(self):
        provider = self._active_speech
        if provider is None or self._session is None:
            return
        session = self._session
        muted = (
            session.muted
            or self.state == State.WAITING
            or (session.input_gate and not self._detector.enabled)
        )
        if muted == self._provider_muted:
            return
        try:
            provider.set_muted(muted)
            self._provider_muted = muted
        except Exception as e:
            self._log.warning(f"set_muted({muted}) failed on {provider.name}: {e}")

    def _mark_heard(self):
        if self._heard_audio:
            return
        self._heard_audio = True
        self._no_audio_timer.cancel()
        if self._error_message == NO_AUDIO_MESSAGE:
            self._error_message = None
            self._error_retryable = False

    async def _handle_no_audio(self):
        if self._session is None or self._heard_audio:
            return
        if not self._fallback_attempted and self._speech_fallback is not None:
            self._fallback_attempted = True
            recovered = await self._errors.handle_error(ComponentError(
                component="speech",
                severity=ErrorSeverity.RECOVERABLE,
                message="No audio detected, switching speech provider",
                context={'provider': self._active_speech.name if self._active_speech else None}
            ))
            if recovered:
                self._no_audio_timer.start(self.config.timing.no_audio_timeout)
                return

        await self._errors.handle_error(ComponentError(
            component="speech_audio",
            severity=ErrorSeverity.WARNING,
            message=NO_AUDIO_MESSAGE
        ))
        self._error_message = NO_AUDIO_MESSAGE
        self._error_retryable = True

    async def _recover_speech(self, error: ComponentError) -> bool:
        """Swap the active speech provider for the fallback."""
        self._cancel_connection_watch()
        await self._stop_active_speech()
        if await self._start_speech(self._speech_fallback):
            self._watch_connection(self._active_speech)
            return True
        # Keep the session usable on the primary
        if await self._start_speech(self._speech_primary):
            self._watch_connection(self._active_speech)
        return False

    async def _handle_speech_error(self, error: Any, token: int):
        if not self._accepts(token):
            return
        message = f"Voice recognition error: {format_error(error)}"
        await self._errors.handle_error(ComponentError(
            component="speech",
            severity=ErrorSeverity.FATAL,
            message=message,
            exception=error if isinstance(error, BaseException) else None
        ))
        self._no_audio_timer.cancel()
        self._cancel_connection_watch()
        self._finalizer.reset()
        self._cancel_dispatch()
        await safe_cleanup(self._queue.stop, self._stop_active_speech)
        self._turn = None
        self._session.processing = False
        self._session.input_gate = False
        self._session.connection_status = ConnectionStatus.ERROR
        self._machine.fire(SessionEvent.PROVIDER_ERROR)
        self._error_message = message
        self._error_retryable = False

    async def _handle_level(self, level: float, token: int):
        if self._accepts(token):
            self._level.update(level)

    async def _handle_level_tick(self):
        self._level.decay()

    # ===== Transcripts =====

    def _input_ready(self) -> bool:
        """Check user-facing gates shared by partials and finals; may leave a retryable error."""
        state = self.state
        if self._session.muted or state in (State.IDLE, State.WAITING):
            return False
        if state == State.ERROR:
            if not self._error_retryable or self._clock() < self._resume_not_before:
                return False
            self._resume_from_error()
        return True

    async def _handle_partial(self, text: str, token: int):
        if not self._accepts(token):
            return
        text = (text or "").strip()
        if not text:
            return
        self._mark_heard()
        self._level.bump_from_text(text)
        if not self._input_ready():
            return

        if self._session.input_gate:
            if self.state == State.SPEAKING and self._detector.should_interrupt(text, self._clock()):
                await self._barge_in(text, is_final=False)
            return

        self._finalizer.on_partial(text)
        self._partial_text = text
        if self.state in (State.LISTENING, State.TRANSCRIBING):
            self._machine.fire(SessionEvent.PARTIAL)

    async def _handle_final(self, text: str, token: int):
        if not self._accepts(token):
            return
        text = (text or "").strip()
        if text:
            self._mark_heard()
        if not self._input_ready():
            return

        if self._session.input_gate:
            if text and self.state == State.SPEAKING and self._detector.should_interrupt(text, self._clock()):
                await self._barge_in(text, is_final=True)
            return

        if text:
            self._partial_text = text
        self._finalizer.on_final(text)

    def _discard_reason(self, utterance: Utterance) -> Optional[str]:
        if is_wake_word_only(utterance.text, self.config.filter.wake_words):
            return "wake word only"
        if count_words(utterance.text) < self.config.filter.min_words:
            return "too short"
        return None

    async def _handle_utterance(self, utterance: Utterance):
        if self._session is None:
            return
        reason = self._discard_reason(utterance)
        if reason:
            utterance.discarded = True
            utterance.discard_reason = reason
            self._log.debug(f"Discarded utterance ({reason}): {utterance.text}")
            if self.state in (State.LISTENING, State.TRANSCRIBING):
                self._partial_text = ""
                self._machine.fire(SessionEvent.UTTERANCE_DISCARDED)
            return

        self._pending_utterances.append(utterance)
        if self._turn is not None or self._session.processing or self.state not in (State.LISTENING, State.TRANSCRIBING):
            print(f"⏳ Utterance queued until the current turn finishes: {utterance.text}")
            return
        await self._dispatch_pending()

    async def _dispatch_pending(self):
        while self._pending_utterances and self._turn is None and self.state in (State.LISTENING, State.TRANSCRIBING):
            await self._start_turn(self._pending_utterances.popleft())

    # ===== Turns =====

    async def _start_turn(self, utterance: Utterance):
        session = self._session
        self._turn_seq += 1
        turn = ConversationTurn(turn_id=self._turn_seq, utterance=utterance)
        self._turn = turn
        session.processing = True
        session.abort_speech = False
        self._partial_text = utterance.text
        self._assistant_text = ""
        self._chunker.reset()
        self._machine.fire(SessionEvent.UTTERANCE_FINALIZED, metadata={'turn_id': turn.turn_id})
        print(f"👤 User: {utterance.text}")

        cached = self._cache.lookup(utterance.text, self._cache_language())
        if cached:
            print("⚡ Cached response")
            turn.from_cache = True
            turn.response_text = cached
            turn.response_complete = True
            self._assistant_text = cached
            if self._enqueue(turn, cached):
                self._machine.fire(SessionEvent.CACHE_HIT)
                self._enter_speaking()
            await self._maybe_finish_turn()
            return

        self._machine.fire(SessionEvent.CACHE_MISS)
        self._dispatch_task = asyncio.get_running_loop().create_task(self._run_dispatch(turn))

    async def _run_dispatch(self, turn: ConversationTurn):
        turn_id = turn.turn_id
        profile = self._session.language
        try:
            response = await self._dispatcher.send_message(
                turn.utterance.text,
                self._session.conversation_id,
                on_stream_chunk=lambda chunk: self._post('stream_chunk', turn_id=turn_id, chunk=chunk),
                context={
                    'language': profile.bcp47,
                    'system_prompt': generate_language_prompt(profile),
                    'voice_mode': True,
                }
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._post('dispatch_failed', turn_id=turn_id, error=e)
            return
        self._post('response', turn_id=turn_id, response=response)

    def _current_turn(self, turn_id: int) -> Optional[ConversationTurn]:
        turn = self._turn
        if turn is None or turn.turn_id != turn_id or turn.aborted or self._session.abort_speech:
            return None
        return turn

    async def _handle_stream_chunk(self, turn_id: int, chunk: str):
        turn = self._current_turn(turn_id)
        if turn is None or turn.do_not_speak or not chunk:
            return
        if is_raw_streaming_json(chunk):
            self._log.warning(f"Ignoring transport framing in stream: {chunk[:60]!r}")
            return
        turn.response_text += chunk
        self._assistant_text = turn.response_text
        for sentence in self._chunker.feed(chunk):
            self._speak_now(turn, sentence)

    def _speak_now(self, turn: ConversationTurn, text: str):
        if not self._enqueue(turn, text):
            return
        self._machine.fire(SessionEvent.SENTENCE_READY)
        self._enter_speaking()

    async def _handle_response(self, turn_id: int, response: DispatchResponse):
        turn = self._current_turn(turn_id)
        if turn is None:
            return
        self._dispatch_task = None
        turn.response_complete = True

        if response.do_not_speak:
            print("🔇 Response marked do-not-speak")
            turn.do_not_speak = True
            self._chunker.reset()
            await self._queue.stop()
            turn.finished_items = turn.queued_items
            await self._maybe_finish_turn()
            return

        content = (response.content or "").strip()
        if is_raw_streaming_json(content):
            self._log.warning(f"Ignoring transport framing in response: {content[:60]!r}")
        elif content:
            turn.response_text = content
        self._assistant_text = turn.response_text

        if turn.queued_items == 0:
            # Nothing spoken early: speak the whole response
            self._chunker.reset()
            if self._enqueue(turn, turn.response_text):
                self._machine.fire(SessionEvent.FULL_RESPONSE)
                self._enter_speaking()
        else:
            rest = self._chunker.flush()
            if rest:
                self._speak_now(turn, rest)

        if turn.response_text:
            print(f"🤖 Dash: {turn.response_text}")
        await self._maybe_finish_turn()

    async def _handle_dispatch_failed(self, turn_id: int, error: Any):
        turn = self._current_turn(turn_id)
        if turn is None:
            return
        self._dispatch_task = None
        await self._errors.handle_error(ComponentError(
            component="dispatcher",
            severity=ErrorSeverity.WARNING,
            message=f"Language model request failed: {format_error(error)}",
            exception=error if isinstance(error, BaseException) else None,
            retryable=True
        ))
        turn.aborted = True
        self._chunker.reset()
        await self._queue.stop()
        self._gate_timer.cancel()
        if self._pending_utterances:
            self._log.info(f"Dropping {len(self._pending_utterances)} queued utterance(s) after failed request")
            self._pending_utterances.clear()
        self._turn = None
        self._session.processing = False
        self._session.input_gate = False
        self._detector.reset()
        self._machine.fire(SessionEvent.DISPATCH_FAILED)
        self._resume_not_before = self._clock() + self.config.timing.error_unmute_delay
        self._error_message = f"Dash couldn't respond: {format_error(error)}"
        self._error_retryable = True
        self._update_provider_mute()

    def _enqueue(self, turn: ConversationTurn, text: str) -> Optional[SpeechQueueItem]:
        session = self._session
        params = voice_params_for(
            session.language,
            rate=self.config.session.speech_rate,
            pitch=self.config.session.speech_pitch
        )
        item = self._queue.enqueue(text, params, turn_id=turn.turn_id)
        if item is not None:
            turn.queued_items += 1
        return item

    def _enter_speaking(self):
        self._session.input_gate = True
        self._detector.activate()
        self._update_provider_mute()

    def _on_item_started(self, item: SpeechQueueItem):
        self._post('item_started', item=item, at=self._clock())

    def _on_item_finished(self, item: SpeechQueueItem, outcome: PlaybackOutcome):
        self._post('item_finished', item=item, outcome=outcome)

    async def _handle_item_started(self, item: SpeechQueueItem, at: float):
        turn = self._turn
        if turn is None or item.turn_id != turn.turn_id or turn.aborted:
            return
        self._detector.mark_playback_started(at)

    async def _handle_item_finished(self, item: SpeechQueueItem, outcome: PlaybackOutcome):
        turn = self._turn
        if turn is None or item.turn_id != turn.turn_id or turn.aborted:
            return
        turn.finished_items += 1
        if outcome == PlaybackOutcome.DONE:
            turn.spoken_items += 1
        elif outcome == PlaybackOutcome.FAILED:
            turn.failed_items += 1
        await self._maybe_finish_turn()

    async def _maybe_finish_turn(self):
        turn = self._turn
        if turn is None or not turn.response_complete or turn.playback_pending:
            return
        if turn.queued_items == 0:
            await self._close_turn(turn)
            return
        if self._gate_timer.active:
            return
        # Playback drained; keep the gate shut for the echo tail
        self._detector.reset()
        self._gate_timer.start(self.config.timing.unmute_grace_delay)

    def _on_gate_timer(self):
        turn = self._turn
        if turn is not None:
            self._post('gate_release', turn_id=turn.turn_id)

    async def _handle_gate_release(self, turn_id: int):
        turn = self._turn
        if turn is None or turn.turn_id != turn_id:
            return
        await self._close_turn(turn)

    async def _close_turn(self, turn: ConversationTurn):
        session = self._session
        if (
            not turn.from_cache
            and not turn.aborted
            and not turn.do_not_speak
            and turn.response_complete
            and self.config.cache.store_model_responses
        ):
            self._cache.store_response(turn.utterance.text, turn.response_text, self._cache_language())

        self._gate_timer.cancel()
        self._turn = None
        self._chunker.reset()
        self._detector.reset()
        session.processing = False
        session.input_gate = False
        self._partial_text = ""

        target = State.LISTENING if self.config.session.auto_resume_listening else State.WAITING
        self._machine.fire(SessionEvent.TURN_COMPLETED, target=target, metadata={
            'turn_id': turn.turn_id,
            'spoken': turn.spoken_items,
            'failed': turn.failed_items,
        })
        self._update_provider_mute()
        if target == State.WAITING:
            print("⏸️  Waiting for resume")
        await self._dispatch_pending()

    def _cache_language(self) -> Optional[str]:
        if not self.config.cache.per_language or self._session is None:
            return None
        return self._session.language.bcp47

    def _cancel_dispatch(self):
        task, self._dispatch_task = self._dispatch_task, None
        if task is not None and not task.done():
            task.cancel()

    async def _barge_in(self, text: str, is_final: bool):
        print("🛑 Barge-in detected, stopping playback")
        session = self._session
        session.abort_speech = True
        turn = self._turn
        if turn is not None:
            turn.aborted = True
        self._gate_timer.cancel()
        self._cancel_dispatch()
        await self._queue.stop()
        self._chunker.reset()
        self._pending_utterances.clear()
        self._turn = None
        session.processing = False
        session.input_gate = False
        self._detector.reset()
        self._machine.fire(SessionEvent.BARGE_IN)
        session.abort_speech = False
        self._assistant_text = ""
        self._update_provider_mute()

        # The interrupting speech starts the next utterance
        self._finalizer.reset()
        self._partial_text = text
        if is_final:
            self._finalizer.on_final(text)
        else:
            self._finalizer.on_partial(text)
            self._machine.fire(SessionEvent.PARTIAL)

    # ===== User controls =====

    async def _handle_toggle_mute(self) -> bool:
        session = self._session
        if session is None:
            return False
        session.muted = not session.muted
        if session.muted:
            self._finalizer.reset()
            self._partial_text = ""
            if self.state == State.TRANSCRIBING:
                self._machine.fire(SessionEvent.UTTERANCE_DISCARDED)
        self._update_provider_mute()
        print(f"{'🔇 Muted' if session.muted else '🎤 Unmuted'}")
        return session.muted

    async def _handle_resume(self) -> bool:
        if self._session is None:
            return False
        state = self.state
        if state == State.WAITING:
            self._machine.fire(SessionEvent.RESUME)
        elif state == State.ERROR and self._error_retryable:
            self._resume_from_error()
        elif state not in (State.LISTENING, State.TRANSCRIBING):
            return False
        self._update_provider_mute()
        await self._dispatch_pending()
        return True

    def _resume_from_error(self):
        self._machine.fire(SessionEvent.RESUME)
        self._error_message = None
        self._error_retryable = False
        self._update_provider_mute()
