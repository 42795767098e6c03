"""
Deepgram live transcription over a raw WebSocket.

Audio goes up as binary linear16 frames; results come back as JSON text frames. Connection
options travel in the query string and the credential in the Authorization header.

Control messages:
  - KeepAlive: sent periodically so a muted session is not timed out for silence
  - CloseStream: sent by finish() so the service flushes before closing
"""

import asyncio
import json
from typing import Any
from urllib.parse import urlencode

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.protocol import State

from babelcast.config import TranscriptionConfig
from babelcast.errors import UpstreamConnectError, UpstreamStreamError
from babelcast.logs import get_logger
from babelcast.session.interfaces import TranscriptionListener


def extract_transcript(payload: dict[str, Any]) -> str | None:
  """Transcript text of a Results message, or None when the message has none."""
  try:
    transcript = payload["channel"]["alternatives"][0]["transcript"]
  except (KeyError, IndexError, TypeError):
    return None
  return transcript if isinstance(transcript, str) else None


class DeepgramTranscriptionLink:
  """
  One streaming connection to Deepgram.

  A link is single-use: once closed it cannot be reopened, and the coordinator creates a new
  one to reconnect. The listener hears about closures the link did not initiate itself.
  """

  def __init__(self, config: TranscriptionConfig, listener: TranscriptionListener) -> None:
    self.config = config
    self.listener = listener
    self.logger = get_logger("upstream/dg")

    self._ws: ClientConnection | None = None
    self._reader: asyncio.Task | None = None
    self._keepalive: asyncio.Task | None = None
    self._closing = False

    self.chunks_sent = 0
    self.bytes_sent = 0
    self.dropped_chunks = 0

  @property
  def url(self) -> str:
    return f"{self.config.url}?{urlencode(self.config.query_params())}"

  @property
  def is_open(self) -> bool:
    return self._ws is not None and not self._closing and self._ws.state is State.OPEN

  async def open(self) -> None:
    if self._closing:
      raise UpstreamConnectError("Transcription link was already closed")
    if self._ws is not None:
      return

    headers = {}
    if self.config.api_key:
      headers["Authorization"] = f"Token {self.config.api_key}"

    self.logger.debug("Connecting", url=self.config.url, model=self.config.model)
    try:
      ws = await connect(
        self.url,
        additional_headers=headers,
        open_timeout=self.config.open_timeout,
      )
    except (OSError, TimeoutError, WebSocketException) as e:
      raise UpstreamConnectError(f"Could not connect to {self.config.url}: {e}") from e

    if self._closing:
      # close() ran while the handshake was in flight
      await ws.close()
      return

    self._ws = ws
    self._reader = asyncio.create_task(self._read_loop(ws), name="deepgram-reader")
    if self.config.keepalive_interval > 0:
      self._keepalive = asyncio.create_task(self._keepalive_loop(ws), name="deepgram-keepalive")
    request_id = ws.response.headers.get("dg-request-id") if ws.response else None
    self.logger.info("Connected", request_id=request_id)

  async def send(self, chunk: bytes) -> bool:
    ws = self._ws
    if ws is None or self._closing or ws.state is not State.OPEN:
      self.dropped_chunks += 1
      self.logger.warning(
        "Transcription channel not writable, dropping audio",
        bytes=len(chunk),
        dropped=self.dropped_chunks,
      )
      return False

    try:
      await ws.send(chunk)
    except ConnectionClosed as e:
      self.dropped_chunks += 1
      self.logger.warning("Transcription channel closed while sending", error=str(e))
      return False

    self.chunks_sent += 1
    self.bytes_sent += len(chunk)
    return True

  async def finish(self) -> None:
    ws = self._ws
    if ws is not None and not self._closing and ws.state is State.OPEN:
      try:
        await ws.send(json.dumps({"type": "CloseStream"}))
      except ConnectionClosed:
        pass
    await self.close()

  async def close(self) -> None:
    self._closing = True

    for task in (self._keepalive, self._reader):
      if task is not None and task is not asyncio.current_task() and not task.done():
        task.cancel()
        try:
          await task
        except asyncio.CancelledError:
          pass
    self._keepalive = None
    self._reader = None

    ws, self._ws = self._ws, None
    if ws is not None:
      await ws.close()
      self.logger.info(
        "Transcription link closed", chunks_sent=self.chunks_sent, bytes_sent=self.bytes_sent
      )

  async def _read_loop(self, ws: ClientConnection) -> None:
    try:
      async for message in ws:
        if isinstance(message, bytes):
          self.logger.debug("Ignoring binary frame from transcription service", bytes=len(message))
          continue
        await self._handle_message(message)
    except ConnectionClosed as e:
      if not self._closing:
        await self.listener.on_upstream_error(self, f"Connection lost: {e}")
    except UpstreamStreamError as e:
      if not self._closing:
        await self.listener.on_upstream_error(self, str(e))
    finally:
      if self._keepalive is not None and not self._keepalive.done():
        self._keepalive.cancel()
      if not self._closing:
        self._closing = True
        self._ws = None
        await ws.close()
        self.logger.info(
          "Transcription service closed the connection",
          code=ws.close_code,
          reason=ws.close_reason,
        )
        await self.listener.on_upstream_closed(self)

  async def _handle_message(self, raw: str) -> None:
    try:
      payload = json.loads(raw)
    except json.JSONDecodeError:
      self.logger.warning("Unparseable message from transcription service", message=raw[:200])
      return
    if not isinstance(payload, dict):
      self.logger.warning("Unexpected message from transcription service", message=raw[:200])
      return

    match payload.get("type"):
      case "Results":
        transcript = extract_transcript(payload)
        if transcript is None:
          self.logger.warning("Results message without transcript", message=raw[:200])
          return
        self.logger.debug("Transcript received", transcript=transcript)
        await self.listener.on_upstream_transcript(transcript)

      case "Metadata":
        self.logger.debug("Metadata", request_id=payload.get("request_id"))

      case "SpeechStarted" | "UtteranceEnd":
        self.logger.debug("Speech event", type=payload["type"])

      case "Error":
        description = payload.get("description") or payload.get("message") or raw[:200]
        raise UpstreamStreamError(str(description))

      case other:
        self.logger.debug("Unhandled message type", type=other)

  async def _keepalive_loop(self, ws: ClientConnection) -> None:
    message = json.dumps({"type": "KeepAlive"})
    while True:
      await asyncio.sleep(self.config.keepalive_interval)
      if ws.state is not State.OPEN:
        return
      try:
        await ws.send(message)
      except ConnectionClosed:
        return
