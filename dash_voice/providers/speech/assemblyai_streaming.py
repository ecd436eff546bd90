"""
Streaming speech recognition over the AssemblyAI v3 websocket.

Audio is captured with a sounddevice callback stream (no blocking reads in
executor threads), queued on the event loop and sent as PCM16 frames.
"""

import asyncio
import json
from typing import Dict, Any, Optional
from urllib.parse import urlencode

import aiohttp

from ..base import StreamingSpeechProviderBase


class AssemblyAIStreamingProvider(StreamingSpeechProviderBase):
    """
    AssemblyAI streaming recognizer.

    - "Begin" confirms the connection
    - "Turn" messages become partials; formatted end-of-turn messages become finals
    - "Terminate" is sent on stop so the backend closes the session cleanly
    """

    name = "assemblyai"

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.api_key = config.get('api_key')
        if not self.api_key:
            raise ValueError("AssemblyAI API key is required")

        self.format_turns = config.get('format_turns', True)
        connection_params = {
            "sample_rate": self.sample_rate,
            "format_turns": str(self.format_turns).lower(),
        }
        self.api_endpoint = config.get(
            'endpoint',
            f"wss://streaming.assemblyai.com/v3/ws?{urlencode(connection_params)}"
        )

        self._session: Optional[aiohttp.ClientSession] = None
        self._ws = None
        self._send_task: Optional[asyncio.Task] = None
        self._receive_task: Optional[asyncio.Task] = None
        self._connected = False
        self.session_id: Optional[str] = None

    async def is_available(self) -> bool:
        return bool(self.api_key)

    def is_connected(self) -> bool:
        return self._connected and self._ws is not None and not self._ws.closed

    async def _initialize_stream(self):
        self._connected = False
        if not self._session or self._session.closed:
            self._session = aiohttp.ClientSession()

        print("🌐 Connecting to AssemblyAI...")
        self._ws = await self._session.ws_connect(
            self.api_endpoint,
            headers={"Authorization": self.api_key},
            heartbeat=30
        )
        self._open_microphone()
        self._receive_task = asyncio.create_task(self._receive_messages())
        self._send_task = asyncio.create_task(self._send_audio())

    async def _send_audio(self):
        """Send audio from the capture queue to the websocket."""
        try:
            while not self._shutdown_flag.is_set():
                queue = self._audio_queue
                if queue is None:
                    break
                try:
                    block = await asyncio.wait_for(queue.get(), timeout=0.3)
                except asyncio.TimeoutError:
                    continue
                if self._ws is None or self._ws.closed:
                    break
                self._emit_level(block)
                await self._ws.send_bytes(block.tobytes())
        except asyncio.CancelledError:
            pass
        except Exception as e:
            if not self._shutdown_flag.is_set():
                print(f"⚠️  Audio send error: {e}")
                self._emit_error(e)

    async def _receive_messages(self):
        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    if not self._handle_message(msg.data):
                        break
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    print(f"❌ WebSocket error: {msg.data}")
                    self._emit_error(RuntimeError(f"AssemblyAI websocket error: {msg.data}"))
                    break
                elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED):
                    break
        except asyncio.CancelledError:
            pass
        except Exception as e:
            if not self._shutdown_flag.is_set():
                print(f"❌ Transcription streaming error: {e}")
                self._emit_error(e)
        finally:
            self._connected = False

    def _handle_message(self, raw: str) -> bool:
        """Handle one server message. Returns False when the session ended."""
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            print(f"⚠️  JSON decode error: {e}")
            return True

        msg_type = data.get('type')
        if msg_type == "Begin":
            self.session_id = data.get('id')
            self._connected = True
            print(f"📝 Session started: {self.session_id}")
        elif msg_type == "Turn":
            transcript = (data.get('transcript') or '').strip()
            if not transcript:
                return True
            if self.format_turns:
                is_final = bool(data.get('turn_is_formatted'))
            else:
                is_final = bool(data.get('end_of_turn'))
            if is_final:
                self._emit_final(transcript)
            else:
                self._emit_partial(transcript)
        elif msg_type == "Termination":
            print("📝 Session terminated")
            return False
        elif msg_type == "Error" or 'error' in data:
            error = data.get('error') or data
            print(f"❌ AssemblyAI error: {error}")
            self._emit_error(RuntimeError(str(error)))
            return False
        return True

    async def _cleanup_stream(self):
        if self._send_task is None and self._receive_task is None and self._ws is None and self._audio_stream is None:
            return

        await self._close_microphone()

        for task in (self._send_task, self._receive_task):
            if task is not None and not task.done():
                task.cancel()
        await asyncio.gather(
            *(t for t in (self._send_task, self._receive_task) if t is not None),
            return_exceptions=True
        )
        self._send_task = None
        self._receive_task = None

        if self._ws is not None and not self._ws.closed:
            try:
                await self._ws.send_json({"type": "Terminate"})
                await self._ws.close()
            except Exception as e:
                print(f"⚠️  WebSocket close error: {e}")
        self._ws = None
        self._connected = False
        self.session_id = None

    async def stop(self) -> None:
        await super().stop()
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    @property
    def capabilities(self) -> dict:
        return {
            'streaming': True,
            'partials': True,
            'languages': ['en-ZA', 'en-US'],
            'audio_formats': ['pcm16'],
            'sample_rates': [self.sample_rate],
            'features': ['turn_formatting', 'real_time']
        }
