"""
Session coordinator.

Owns one browser client's pipeline from end to end: audio source, upstream transcription link,
translation and the client connection. Three parts fail independently (the client socket, the
upstream socket and the audio capture), and this class is the single place that reacts to each.

State machine::

  IDLE -> CONNECTING_UPSTREAM -> STREAMING -> DISCONNECTED -> CONNECTING_UPSTREAM ...
  any state -> CLOSED (terminal)
"""

import asyncio
import secrets
import time

from babelcast.audio.client_stream import ClientAudioSource
from babelcast.audio.recording import DebugAudioWriter
from babelcast.config import SessionConfig
from babelcast.constants import MICROPHONE_ERROR, STATUS_CONNECTED, STATUS_DISCONNECTED
from babelcast.errors import AudioCaptureError, TranslationError, UpstreamConnectError
from babelcast.logs import get_logger
from babelcast.session.interfaces import (
  AudioSource,
  AudioSourceFactory,
  ClientSink,
  TranscriptionLink,
  TranscriptionLinkFactory,
  TranslationStep,
)
from babelcast.session.state import Session, SessionState
from babelcast.wire import (
  DebugMessage,
  ErrorMessage,
  InboundMessage,
  MuteMessage,
  SetAudioDeviceMessage,
  SetLanguageMessage,
  StatusMessage,
  TranscriptEvent,
  TranscriptMessage,
  UnmuteMessage,
)

DROP_MUTED = "client is muted"
DROP_NO_UPSTREAM = "transcription connection is not open"


class SessionCoordinator:
  """Single authority for one client's end-to-end pipeline state."""

  def __init__(
    self,
    client: ClientSink,
    link_factory: TranscriptionLinkFactory,
    translator: TranslationStep,
    audio_factory: AudioSourceFactory,
    config: SessionConfig,
    audio_device: str | None = None,
    recorder: DebugAudioWriter | None = None,
    session_id: str | None = None,
  ) -> None:
    self.client = client
    self.link_factory = link_factory
    self.translator = translator
    self.audio_factory = audio_factory
    self.config = config
    self.recorder = recorder

    self.session = Session(
      session_id=session_id or secrets.token_hex(2),
      current_language=config.default_language,
      audio_device=audio_device,
    )
    self.audio: AudioSource | None = None
    self.logger = get_logger("session").bind(session=self.session.session_id)

  @property
  def session_id(self) -> str:
    return self.session.session_id

  # Client events

  async def on_client_connect(self) -> None:
    """Start the pipeline. Returns once the first upstream attempt has resolved."""
    if self.session.state is not SessionState.IDLE:
      return

    self.logger.info("Client connected")
    await self._debug("New WebSocket connection established")
    await self._connect_upstream()

  async def on_client_disconnect(self) -> None:
    """Release everything the session holds. Idempotent."""
    session = self.session
    if session.is_closed:
      return

    self.logger.info("Client disconnected", bytes_sent=session.total_audio_bytes_sent)
    session.is_client_closed = True
    session.state = SessionState.CLOSED

    task = session.reconnect_task
    session.reconnect_task = None
    if task is not None and not task.done() and task is not asyncio.current_task():
      task.cancel()

    if self.audio is not None:
      audio, self.audio = self.audio, None
      await audio.stop()
      self.logger.debug("Audio source stopped")

    link = session.upstream
    session.upstream = None
    session.is_upstream_connected = False
    if link is not None:
      await link.finish()
      self.logger.debug("Transcription link finished")

    if self.recorder is not None:
      self.recorder.close()

  async def handle_command(self, message: InboundMessage) -> None:
    """Apply one decoded control message from the client."""
    match message:
      case SetLanguageMessage(language=language):
        await self.set_language(language)
      case SetAudioDeviceMessage(device_id=device_id):
        await self.set_audio_device(device_id)
      case MuteMessage():
        await self.set_muted(True)
      case UnmuteMessage():
        await self.set_muted(False)

  async def set_language(self, code: str) -> None:
    """Change the translation target. Takes effect with the next transcript."""
    self.session.current_language = code
    self.logger.info("Language changed", language=code)
    await self._debug(f"Language set to: {self.config.language_label(code)}")

  async def set_muted(self, muted: bool) -> None:
    """Gate audio forwarding. Capture keeps running either way."""
    self.session.is_muted = muted
    self.logger.info("Mute changed", muted=muted)
    if muted:
      await self._debug("Client is muted, stopping audio data transmission.")
    else:
      await self._debug("Client is unmuted, resuming audio data transmission.")

  async def set_audio_device(self, device_id: str) -> None:
    """Select the capture device; a running server-side capture moves to it."""
    session = self.session
    previous = session.audio_device
    session.audio_device = device_id or None
    self.logger.info("Audio device changed", device=device_id)

    if self.audio is None or session.is_client_closed:
      await self._debug(f"Audio device set to {device_id}")
      return

    if isinstance(self.audio, ClientAudioSource):
      await self._debug(f"Audio device set to {device_id} (selected by the browser)")
      return

    # Resolve the new device before letting go of the current one
    try:
      replacement = self.audio_factory(session.audio_device)
    except AudioCaptureError as e:
      session.audio_device = previous
      self.logger.warning("Audio device unavailable", device=device_id, error=str(e))
      await self._debug(f"Cannot use audio device {device_id}: {e}")
      return

    current, self.audio = self.audio, None
    await current.stop()
    await self._debug(f"Switching audio device to {device_id}")
    await self._start_audio(replacement)

  async def on_client_audio(self, frame: bytes) -> None:
    """Binary audio frame from the browser."""
    if isinstance(self.audio, ClientAudioSource):
      await self.audio.feed(frame)
    elif self.audio is None and not self.session.is_client_closed:
      await self._drop(DROP_NO_UPSTREAM)
    else:
      await self._drop("audio is captured on the server, ignoring client audio frames")

  # Audio path

  async def on_audio_chunk(self, chunk: bytes) -> None:
    """Forward a captured chunk upstream unless muted or not connected."""
    session = self.session
    if session.is_muted:
      await self._drop(DROP_MUTED)
      return

    link = session.upstream
    if not session.is_upstream_connected or link is None:
      await self._drop(DROP_NO_UPSTREAM)
      return

    if not await link.send(chunk):
      await self._drop(DROP_NO_UPSTREAM)
      return

    session.last_drop_reason = None
    session.total_audio_bytes_sent += len(chunk)
    if self.recorder is not None:
      self.recorder.write(chunk)

    now = time.monotonic()
    if now - session.last_log_timestamp >= self.config.progress_log_interval:
      session.last_log_timestamp = now
      await self._debug(
        f"Sent {session.total_audio_bytes_sent} total bytes of audio data to transcription"
      )

  async def _drop(self, reason: str) -> None:
    """Drop a chunk, reporting only when the reason changes."""
    if self.session.last_drop_reason == reason:
      return
    self.session.last_drop_reason = reason
    self.logger.debug("Dropping audio", reason=reason)
    await self._debug(f"Audio chunk dropped: {reason}")

  async def _start_audio(self, audio: AudioSource | None = None) -> None:
    """Start capture once the pipeline can accept audio. Capture failure ends the session."""
    if self.audio is not None or self.session.is_client_closed:
      return

    try:
      if audio is None:
        audio = self.audio_factory(self.session.audio_device)
      await audio.start(self.on_audio_chunk, self.on_audio_failure)
    except AudioCaptureError as e:
      await self.on_audio_failure(e)
      return

    self.audio = audio
    self.logger.info("Audio source started", device=self.session.audio_device)
    await self._debug("Microphone started")

  async def on_audio_failure(self, error: AudioCaptureError) -> None:
    """Capture broke down. Surfaced to the client; the session does not recover."""
    if self.session.is_closed:
      return
    self.logger.error("Audio capture failed", error=str(error))
    await self._debug(f"Microphone input stream error: {error}")
    await self._send(ErrorMessage(data=MICROPHONE_ERROR))
    await self.on_client_disconnect()
    await self.client.close(code=1011, reason=MICROPHONE_ERROR)

  # Upstream path

  async def _connect_upstream(self) -> None:
    session = self.session
    if session.is_client_closed or session.upstream is not None:
      return

    session.state = SessionState.CONNECTING_UPSTREAM
    link = self.link_factory(self)
    session.upstream = link

    self.logger.info("Creating transcription connection", attempt=session.reconnect_attempts)
    await self._debug("Creating transcription connection...")

    try:
      await link.open()
    except UpstreamConnectError as e:
      self.logger.warning("Transcription connection failed", error=str(e))
      await self._debug(f"Transcription connection failed: {e}")
      await self.on_upstream_closed(link)
      return

    if session.is_client_closed or session.upstream is not link:
      self.logger.debug("Session ended while connecting, closing transcription link")
      await link.close()
      return

    session.is_upstream_connected = True
    session.state = SessionState.STREAMING
    self.logger.info("Transcription connection opened")
    await self._debug("Transcription connection opened")
    await self._send(StatusMessage(data=STATUS_CONNECTED))

    await self._start_audio()

  async def on_upstream_transcript(self, text: str) -> None:
    """Translate a transcript and deliver the pair to the client."""
    session = self.session
    if session.is_client_closed:
      return
    if not text or not text.strip():
      self.logger.debug("Received empty transcript")
      return

    language = session.current_language
    await self._debug(f"Received non-empty transcript: {text}")

    try:
      translated = await self.translator.translate(text, language)
    except TranslationError as e:
      self.logger.warning("Translation failed", error=str(e), language=language)
      await self._debug(f"Translation error: {e}")
      return

    if session.is_client_closed:
      self.logger.debug("Discarding translation for closed session")
      return

    event = TranscriptEvent(
      original=text,
      translated=translated,
      language=self.config.language_label(language),
    )
    self.logger.info("Transcript", original=text, translated=translated, language=language)
    await self._send(TranscriptMessage(data=event))

  async def on_upstream_error(self, link: TranscriptionLink, reason: str) -> None:
    if link is not self.session.upstream:
      return
    self.logger.error("Transcription error", error=reason)
    await self._debug(f"Transcription error: {reason}")

  async def on_upstream_closed(self, link: TranscriptionLink) -> None:
    """The upstream link went away. Schedule one reconnect unless the client left."""
    session = self.session
    if link is not session.upstream:
      self.logger.debug("Ignoring close of a retired transcription link")
      return

    session.upstream = None
    session.is_upstream_connected = False
    if session.is_client_closed:
      return

    session.state = SessionState.DISCONNECTED
    self.logger.info("Transcription connection closed")
    await self._debug("Transcription connection closed")
    await self._send(StatusMessage(data=STATUS_DISCONNECTED))
    self._schedule_reconnect()

  def _schedule_reconnect(self) -> None:
    session = self.session
    if session.reconnect_task is not None and not session.reconnect_task.done():
      return
    session.reconnect_task = asyncio.create_task(
      self._reconnect_after_delay(), name=f"reconnect-{session.session_id}"
    )

  async def _reconnect_after_delay(self) -> None:
    # TODO: cap attempts or back off under a persistent outage; retries are unbounded for now
    await asyncio.sleep(self.config.reconnect_delay)

    session = self.session
    session.reconnect_task = None
    if session.is_client_closed:
      return

    session.reconnect_attempts += 1
    self.logger.info("Reconnecting to transcription", attempt=session.reconnect_attempts)
    await self._debug("Attempting to reconnect to transcription...")
    await self._connect_upstream()

  # Client output

  async def _send(self, message: StatusMessage | ErrorMessage | TranscriptMessage) -> None:
    await self.client.send(message)

  async def _debug(self, text: str) -> None:
    await self.client.send(DebugMessage(data=text))
