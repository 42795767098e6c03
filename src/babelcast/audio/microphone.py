"""
Audio capture from a local input device.

PortAudio (through sounddevice) calls back on its own thread; chunks are handed to the event
loop with call_soon_threadsafe and delivered to the session sink in capture order by a pump
task.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

import numpy as np

from babelcast.config import AudioConfig
from babelcast.errors import AudioCaptureError
from babelcast.logs import get_logger

DTYPE = np.int16


@dataclass(frozen=True)
class InputDevice:
  """An input-capable audio device as reported by PortAudio."""

  index: int
  name: str
  channels: int
  default_samplerate: float = 0.0

  def __str__(self) -> str:
    return f"{self.index}: {self.name}"


def input_devices_from(devices: Iterable[Mapping[str, Any]]) -> list[InputDevice]:
  """Keep the entries of a device query that can record."""
  result = []
  for position, device in enumerate(devices):
    channels = int(device.get("max_input_channels", 0))
    if channels <= 0:
      continue
    result.append(
      InputDevice(
        index=int(device.get("index", position)),
        name=str(device.get("name", f"device {position}")),
        channels=channels,
        default_samplerate=float(device.get("default_samplerate", 0.0)),
      )
    )
  return result


def _import_sounddevice():
  """Import sounddevice lazily; a missing PortAudio library is a capture error."""
  try:
    import sounddevice as sd
  except (ImportError, OSError) as e:
    raise AudioCaptureError(f"Audio capture is unavailable: {e}") from e
  return sd


def list_input_devices() -> list[InputDevice]:
  """Enumerate input devices on this host."""
  sd = _import_sounddevice()

  try:
    return input_devices_from(sd.query_devices())
  except (sd.PortAudioError, OSError) as e:
    raise AudioCaptureError(f"Error querying audio devices: {e}") from e


def resolve_input_device(devices: list[InputDevice], device_id: str | None) -> InputDevice:
  """
  Pick the device a client or config asked for.

  :param devices: Candidates, in enumeration order.
  :param device_id: A device index, an exact name or a name fragment. Empty or None selects
    the first device.
  :raises AudioCaptureError: Nothing matches, or there are no input devices at all.
  """
  if not devices:
    raise AudioCaptureError("No audio input devices available")

  if not device_id:
    return devices[0]

  device_id = device_id.strip()
  if device_id.isdigit():
    for device in devices:
      if device.index == int(device_id):
        return device

  for device in devices:
    if device.name == device_id:
      return device

  needle = device_id.lower()
  for device in devices:
    if needle in device.name.lower():
      return device

  available = [str(device) for device in devices]
  raise AudioCaptureError(f"Audio device '{device_id}' not found. Available devices: {available}")


class MicrophoneAudioSource:
  """Captures 16-bit PCM from a local input device and delivers it chunk by chunk."""

  def __init__(
    self,
    config: AudioConfig,
    device_id: str | None = None,
    devices: list[InputDevice] | None = None,
  ):
    self.config = config
    candidates = devices if devices is not None else list_input_devices()
    self.device = resolve_input_device(candidates, device_id or config.device)
    self.logger = get_logger("audio/mic").bind(device=self.device.name)

    self._stream = None
    self._queue: asyncio.Queue[bytes | None] = asyncio.Queue()
    self._loop: asyncio.AbstractEventLoop | None = None
    self._pump: asyncio.Task | None = None
    self._stopping = False
    self.dropped_chunks = 0

  async def start(
    self,
    sink: Callable[[bytes], Awaitable[None]],
    on_failure: Callable[[AudioCaptureError], Awaitable[None]],
  ) -> None:
    """Open the device and start delivering chunks to sink."""
    if self._stream is not None:
      return

    sd = _import_sounddevice()

    self._loop = asyncio.get_running_loop()
    self._stopping = False

    try:
      stream = sd.InputStream(
        device=self.device.index,
        channels=self.config.channels,
        samplerate=self.config.sample_rate,
        dtype=DTYPE,
        latency="low",
        blocksize=self.config.blocksize,
        callback=self._audio_callback,
        finished_callback=self._stream_finished,
      )
      stream.start()
    except (sd.PortAudioError, ValueError) as e:
      raise AudioCaptureError(f"Error starting audio on {self.device}: {e}") from e

    self._stream = stream
    self._pump = asyncio.create_task(self._pump_chunks(sink, on_failure), name="audio-pump")
    self.logger.info("Microphone capture started", samplerate=self.config.sample_rate)

  def _audio_callback(self, indata: np.ndarray, frames: int, time_info, status) -> None:
    """Sounddevice audio callback. Runs on the PortAudio thread."""
    if status:
      self.logger.warning("Audio status", status=str(status))

    if self._loop is None or self._stopping:
      return
    chunk = indata.copy().astype(DTYPE).tobytes()
    self._loop.call_soon_threadsafe(self._enqueue, chunk)

  def _stream_finished(self) -> None:
    """PortAudio finished the stream. Unexpected unless stop() asked for it."""
    if self._loop is None or self._stopping:
      return
    self._loop.call_soon_threadsafe(self._queue.put_nowait, None)

  def _enqueue(self, chunk: bytes) -> None:
    if self._queue.qsize() >= self.config.queue_size:
      self.dropped_chunks += 1
      self.logger.warning("Audio queue full, dropping chunk", dropped=self.dropped_chunks)
      return
    self._queue.put_nowait(chunk)

  async def _pump_chunks(
    self,
    sink: Callable[[bytes], Awaitable[None]],
    on_failure: Callable[[AudioCaptureError], Awaitable[None]],
  ) -> None:
    while True:
      chunk = await self._queue.get()
      if chunk is None:
        self.logger.error("Microphone stream ended unexpectedly")
        await on_failure(AudioCaptureError(f"Audio stream from {self.device} ended unexpectedly"))
        return
      await sink(chunk)

  async def stop(self) -> None:
    """Stop capture and release the device. Safe to call repeatedly or before start()."""
    self._stopping = True

    stream, self._stream = self._stream, None
    if stream is not None:
      sd = _import_sounddevice()

      try:
        stream.stop()
        stream.close()
      except sd.PortAudioError as e:
        self.logger.warning("Error stopping audio", error=str(e))
      self.logger.info("Microphone capture stopped", dropped_chunks=self.dropped_chunks)

    pump, self._pump = self._pump, None
    if pump is not None and pump is not asyncio.current_task() and not pump.done():
      pump.cancel()
      try:
        await pump
      except asyncio.CancelledError:
        pass
