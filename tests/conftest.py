"""Mock collaborators and fixtures for session pipeline tests."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import pytest

from babelcast.config import SessionConfig
from babelcast.errors import AudioCaptureError, TranslationError, UpstreamConnectError
from babelcast.session import SessionCoordinator
from babelcast.session.interfaces import TranscriptionListener
from babelcast.wire import DebugMessage, ErrorMessage, OutboundMessage, StatusMessage


class MockClientSink:
  """Records every event the coordinator sends to the browser."""

  def __init__(self):
    self.messages: list[OutboundMessage] = []
    self._closed = False
    self.close_code: int | None = None
    self.close_reason: str | None = None

  @property
  def closed(self) -> bool:
    return self._closed

  async def send(self, message: OutboundMessage) -> None:
    if not self._closed:
      self.messages.append(message)

  async def close(self, code: int = 1000, reason: str = "") -> None:
    self._closed = True
    self.close_code = code
    self.close_reason = reason

  def of_type(self, message_type: str) -> list[OutboundMessage]:
    return [m for m in self.messages if m.type == message_type]

  @property
  def statuses(self) -> list[str]:
    return [m.data for m in self.messages if isinstance(m, StatusMessage)]

  @property
  def debug_texts(self) -> list[str]:
    return [m.data for m in self.messages if isinstance(m, DebugMessage)]

  @property
  def errors(self) -> list[str]:
    return [m.data for m in self.messages if isinstance(m, ErrorMessage)]


class MockTranscriptionLink:
  """In-memory transcription link driven by the test."""

  def __init__(
    self,
    listener: TranscriptionListener,
    open_error: bool = False,
    gate: asyncio.Event | None = None,
  ):
    self.listener = listener
    self.open_error = open_error
    self.gate = gate
    self.opened = False
    self.closed = False
    self.finish_calls = 0
    self.close_calls = 0
    self.sent: list[bytes] = []

  @property
  def is_open(self) -> bool:
    return self.opened and not self.closed

  async def open(self) -> None:
    if self.gate is not None:
      await self.gate.wait()
    if self.open_error:
      raise UpstreamConnectError("Mock connection refused")
    self.opened = True

  async def send(self, chunk: bytes) -> bool:
    if not self.is_open:
      return False
    self.sent.append(chunk)
    return True

  async def finish(self) -> None:
    self.finish_calls += 1
    await self.close()

  async def close(self) -> None:
    self.close_calls += 1
    self.closed = True

  async def emit_transcript(self, text: str) -> None:
    await self.listener.on_upstream_transcript(text)

  async def drop(self) -> None:
    """Simulate the service closing the connection."""
    self.closed = True
    await self.listener.on_upstream_closed(self)


class MockLinkFactory:
  """Creates MockTranscriptionLinks and remembers every one of them."""

  def __init__(self):
    self.links: list[MockTranscriptionLink] = []
    self.failures_remaining = 0
    self.gate: asyncio.Event | None = None

  def __call__(self, listener: TranscriptionListener) -> MockTranscriptionLink:
    fail = self.failures_remaining > 0
    if fail:
      self.failures_remaining -= 1
    link = MockTranscriptionLink(listener, open_error=fail, gate=self.gate)
    self.links.append(link)
    return link

  @property
  def latest(self) -> MockTranscriptionLink:
    return self.links[-1]

  @property
  def open_links(self) -> list[MockTranscriptionLink]:
    return [link for link in self.links if link.is_open]


class MockTranslator:
  """Translates by lookup, falling back to a tagged echo."""

  def __init__(self):
    self.calls: list[tuple[str, str]] = []
    self.responses: dict[tuple[str, str], str] = {}
    self.fail_next = 0
    self.gate: asyncio.Event | None = None

  async def translate(self, text: str, target_language: str) -> str:
    self.calls.append((text, target_language))
    if self.gate is not None:
      await self.gate.wait()
    if self.fail_next > 0:
      self.fail_next -= 1
      raise TranslationError("Translation rejected with status 456: quota exceeded")
    return self.responses.get((text, target_language), f"[{target_language}] {text}")


class MockAudioSource:
  """Audio source whose chunks and failures are pushed by the test."""

  def __init__(self, device_id: str | None = None, start_error: bool = False):
    self.device_id = device_id
    self.start_error = start_error
    self.sink: Callable[[bytes], Awaitable[None]] | None = None
    self.on_failure: Callable[[AudioCaptureError], Awaitable[None]] | None = None
    self.start_calls = 0
    self.stop_calls = 0

  @property
  def running(self) -> bool:
    return self.sink is not None

  async def start(self, sink, on_failure) -> None:
    self.start_calls += 1
    if self.start_error:
      raise AudioCaptureError("Error starting audio: device busy")
    self.sink = sink
    self.on_failure = on_failure

  async def stop(self) -> None:
    self.stop_calls += 1
    self.sink = None

  async def push(self, chunk: bytes) -> None:
    assert self.sink is not None, "audio source was not started"
    await self.sink(chunk)

  async def fail(self, message: str = "Input overflow") -> None:
    assert self.on_failure is not None, "audio source was not started"
    await self.on_failure(AudioCaptureError(message))


class MockAudioFactory:
  """Builds MockAudioSources; device ids listed in unknown_devices cannot be opened."""

  def __init__(self):
    self.sources: list[MockAudioSource] = []
    self.unknown_devices: set[str] = set()
    self.start_error = False

  def __call__(self, device_id: str | None) -> MockAudioSource:
    if device_id in self.unknown_devices:
      raise AudioCaptureError(f"Audio device '{device_id}' not found")
    source = MockAudioSource(device_id, start_error=self.start_error)
    self.sources.append(source)
    return source

  @property
  def latest(self) -> MockAudioSource:
    return self.sources[-1]


@dataclass
class Pipeline:
  """A coordinator wired to mock collaborators."""

  client: MockClientSink = field(default_factory=MockClientSink)
  links: MockLinkFactory = field(default_factory=MockLinkFactory)
  translator: MockTranslator = field(default_factory=MockTranslator)
  audio: MockAudioFactory = field(default_factory=MockAudioFactory)
  config: SessionConfig = field(
    default_factory=lambda: SessionConfig(reconnect_delay=0.01, progress_log_interval=3600.0)
  )
  coordinator: SessionCoordinator | None = None

  def build(self, **kwargs) -> SessionCoordinator:
    self.coordinator = SessionCoordinator(
      client=self.client,
      link_factory=self.links,
      translator=self.translator,
      audio_factory=self.audio,
      config=self.config,
      session_id="test",
      **kwargs,
    )
    return self.coordinator


@pytest.fixture
def pipeline() -> Pipeline:
  """Fresh mock pipeline; call pipeline.build() inside the test's event loop."""
  return Pipeline()
