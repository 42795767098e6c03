import asyncio
import secrets
from typing import Any

import structlog
from websockets.asyncio.server import ServerConnection
from websockets.exceptions import ConnectionClosed, InvalidMessage

from babelcast.audio import ClientAudioSource, DebugAudioWriter, MicrophoneAudioSource
from babelcast.config import RelayConfig
from babelcast.logs import get_logger
from babelcast.session import SessionCoordinator, WebSocketClientLink
from babelcast.session.interfaces import AudioSource, TranscriptionListener, TranslationStep
from babelcast.transcription import DeepgramTranscriptionLink
from babelcast.translation import DeepLTranslator
from babelcast.websocket import SessionRegistry, WebSocketServer


class RelayServer:
  """
  Hosts the client-facing WebSocket endpoint.

  Every connection gets its own SessionCoordinator; the translator is shared.
  """

  def __init__(self, config: RelayConfig, translator: TranslationStep | None = None):
    self.config = config
    self.registry = SessionRegistry()
    self.translator = translator
    self.debug_audio_path: str | None = None
    self.logger = get_logger("server")

  def _make_audio_source(self, device_id: str | None) -> AudioSource:
    if self.config.audio.capture == "client":
      return ClientAudioSource()
    return MicrophoneAudioSource(self.config.audio, device_id)

  def _make_link(self, listener: TranscriptionListener) -> DeepgramTranscriptionLink:
    return DeepgramTranscriptionLink(self.config.transcription, listener)

  def create_session(
    self, websocket: ServerConnection
  ) -> tuple[WebSocketClientLink, SessionCoordinator]:
    """Builds the client link and coordinator for a new connection."""
    assert self.translator is not None
    session_id = secrets.token_hex(2)

    recorder = None
    if self.debug_audio_path:
      recorder = DebugAudioWriter(
        self.debug_audio_path,
        session_id,
        sample_rate=self.config.audio.sample_rate,
        channels=self.config.audio.channels,
      )

    link = WebSocketClientLink(websocket, session_id=session_id)
    coordinator = SessionCoordinator(
      client=link,
      link_factory=self._make_link,
      translator=self.translator,
      audio_factory=self._make_audio_source,
      config=self.config.session,
      audio_device=self.config.audio.device,
      recorder=recorder,
      session_id=session_id,
    )
    return link, coordinator

  async def _start_session(
    self, link: WebSocketClientLink, coordinator: SessionCoordinator
  ) -> None:
    """Runs the first upstream attempt. An unexpected failure ends the connection."""
    try:
      await coordinator.on_client_connect()
    except Exception:
      self.logger.exception("Session failed to start")
      await link.close(code=1011, reason="Internal server error")

  async def handle_connection(self, websocket: ServerConnection) -> None:
    """
    Runs one client session from connect to disconnect.
    """
    link, coordinator = self.create_session(websocket)
    self.registry.add(websocket, coordinator)

    with structlog.contextvars.bound_contextvars(session=coordinator.session_id):
      connect_task = asyncio.create_task(
        self._start_session(link, coordinator), name=f"connect-{coordinator.session_id}"
      )
      try:
        await link.run(coordinator)
      except (ConnectionClosed, InvalidMessage):
        self.logger.info("Connection closed by client")
      finally:
        self.logger.debug("Entering cleanup phase")
        if not connect_task.done():
          connect_task.cancel()
          try:
            await connect_task
          except asyncio.CancelledError:
            pass
        await coordinator.on_client_disconnect()
        self.registry.remove(websocket)
        await link.close()

  def _handle_loop_exception(
    self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]
  ) -> None:
    exception = context.get("exception")
    self.logger.error(
      "Unhandled exception in event loop",
      message=context.get("message"),
      error=repr(exception) if exception else None,
      task=str(context.get("task") or context.get("future") or ""),
    )

  async def run(self, debug_audio_path: str | None = None, ready: asyncio.Event | None = None):
    """
    Run the relay server until cancelled.
    """
    self.debug_audio_path = debug_audio_path
    asyncio.get_running_loop().set_exception_handler(self._handle_loop_exception)

    owned_translator = None
    if self.translator is None:
      owned_translator = DeepLTranslator(self.config.translation)
      self.translator = owned_translator

    websocket_server = WebSocketServer(
      self.handle_connection, self.config.server.host, self.config.server.port
    )
    self.websocket_server = websocket_server

    try:
      await websocket_server.start(ready=ready)
    finally:
      self.logger.info("Shutting down", live_sessions=len(self.registry))
      if owned_translator is not None:
        await owned_translator.aclose()
        self.translator = None
