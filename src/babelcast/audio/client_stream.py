from collections.abc import Awaitable, Callable

from babelcast.errors import AudioCaptureError
from babelcast.logs import get_logger


class ClientAudioSource:
  """
  Audio captured in the browser and forwarded as binary WebSocket frames.

  There is no device to open: the source only decides whether frames handed to feed() reach
  the session. Frames arriving before start() or after stop() are discarded.
  """

  def __init__(self) -> None:
    self._sink: Callable[[bytes], Awaitable[None]] | None = None
    self.frames_received = 0
    self.logger = get_logger("audio/client")

  async def start(
    self,
    sink: Callable[[bytes], Awaitable[None]],
    on_failure: Callable[[AudioCaptureError], Awaitable[None]],
  ) -> None:
    self._sink = sink
    self.logger.debug("Accepting client audio frames")

  async def feed(self, frame: bytes) -> None:
    if self._sink is None:
      return
    self.frames_received += 1
    await self._sink(frame)

  async def stop(self) -> None:
    if self._sink is not None:
      self.logger.debug("Client audio stopped", frames_received=self.frames_received)
    self._sink = None
