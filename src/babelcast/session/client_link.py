"""
WebSocket implementation of the browser-facing ClientLink.

Decodes inbound frames into coordinator calls and encodes coordinator events as JSON text
frames.

Message Flow:
  Browser -> WebSocketClientLink.run() -> SessionCoordinator
  SessionCoordinator -> WebSocketClientLink.send() -> Browser

Framing:
  - Control messages and events: one JSON object per text frame
  - Audio (client-side capture only): one raw binary frame per chunk

Error Handling:
  - Malformed text frames are logged, answered with a debug event and skipped
  - Sending after the socket closed is a silent no-op
"""

from typing import TYPE_CHECKING

from websockets.asyncio.server import ServerConnection
from websockets.exceptions import ConnectionClosed

from babelcast.errors import ClientProtocolError
from babelcast.logs import get_logger
from babelcast.wire import DebugMessage, OutboundMessage, deserialize_message, serialize_message

if TYPE_CHECKING:
  from babelcast.session.coordinator import SessionCoordinator


class WebSocketClientLink:
  def __init__(self, websocket: ServerConnection, session_id: str | None = None) -> None:
    self.websocket = websocket
    self.logger = get_logger("ws/client").bind(session=session_id)
    self._closed = False
    self.messages_sent = 0

  @property
  def closed(self) -> bool:
    return self._closed

  async def send(self, message: OutboundMessage) -> None:
    if self._closed:
      return

    try:
      await self.websocket.send(serialize_message(message))
      self.messages_sent += 1
    except ConnectionClosed:
      self._closed = True
      self.logger.debug("Client went away before message could be sent", type=message.type)

  async def close(self, code: int = 1000, reason: str = "") -> None:
    if self._closed:
      return
    self._closed = True
    await self.websocket.close(code=code, reason=reason)

  async def run(self, coordinator: "SessionCoordinator") -> None:
    """Dispatch inbound frames until the browser disconnects."""
    try:
      async for frame in self.websocket:
        if isinstance(frame, bytes):
          await coordinator.on_client_audio(frame)
          continue

        try:
          message = deserialize_message(frame)
        except ClientProtocolError as e:
          self.logger.warning("Ignoring malformed client message", error=str(e), frame=frame[:100])
          await self.send(DebugMessage(data=f"Ignoring malformed message: {e}"))
          continue

        await coordinator.handle_command(message)
    finally:
      self._closed = True
