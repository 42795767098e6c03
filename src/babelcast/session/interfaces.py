"""
Protocol interfaces for the session pipeline collaborators.

Defines the contracts between the SessionCoordinator and the audio source, the upstream
transcription link, the translation step and the client connection, using Python's Protocol
system for structural typing. Any speech or translation provider that satisfies these can be
substituted without touching the coordinator.
"""

from collections.abc import Awaitable, Callable
from typing import Protocol

from babelcast.errors import AudioCaptureError
from babelcast.wire import OutboundMessage

AudioChunkSink = Callable[[bytes], Awaitable[None]]
"""Receives captured audio chunks, in capture order."""

AudioFailureHandler = Callable[[AudioCaptureError], Awaitable[None]]
"""Told when capture breaks down after it started."""


class AudioSource(Protocol):
  """
  Protocol for audio input sources.

  Implementations deliver 16-bit mono PCM chunks to a sink until stopped.
  """

  async def start(self, sink: AudioChunkSink, on_failure: AudioFailureHandler) -> None:
    """
    Begin delivering audio chunks.

    :param sink: Coroutine function awaited once per chunk.
    :param on_failure: Awaited once if capture stops on its own.
    :raises AudioCaptureError: The device or stream could not be opened.
    """
    ...

  async def stop(self) -> None:
    """Stop delivery and release the device. Safe without a prior start()."""
    ...


class TranscriptionListener(Protocol):
  """Receives events from a TranscriptionLink."""

  async def on_upstream_transcript(self, text: str) -> None: ...

  async def on_upstream_error(self, link: "TranscriptionLink", reason: str) -> None: ...

  async def on_upstream_closed(self, link: "TranscriptionLink") -> None:
    """The link closed without being asked to. Fires at most once per link."""
    ...


class TranscriptionLink(Protocol):
  """
  Protocol for a duplex streaming speech-to-text connection.

  Audio goes in through send(); transcripts come back through the listener the link was
  created with.
  """

  @property
  def is_open(self) -> bool: ...

  async def open(self) -> None:
    """
    Connect to the service.

    :raises UpstreamConnectError: The connection could not be established.
    """
    ...

  async def send(self, chunk: bytes) -> bool:
    """
    Forward one audio chunk.

    :returns: False when the channel was not writable and the chunk was dropped.
    """
    ...

  async def finish(self) -> None:
    """Ask the service to flush pending results, then close. Idempotent."""
    ...

  async def close(self) -> None:
    """Close immediately. Idempotent, and safe before open() or after a close event."""
    ...


TranscriptionLinkFactory = Callable[[TranscriptionListener], TranscriptionLink]
AudioSourceFactory = Callable[[str | None], AudioSource]


class TranslationStep(Protocol):
  """Stateless text translation."""

  async def translate(self, text: str, target_language: str) -> str:
    """
    Translate text into the target language.

    :raises TranslationError: The request failed, was rejected or timed out.
    """
    ...


class ClientSink(Protocol):
  """Outbound half of a ClientLink."""

  @property
  def closed(self) -> bool: ...

  async def send(self, message: OutboundMessage) -> None:
    """Deliver one event. A no-op once the connection is closed."""
    ...

  async def close(self, code: int = 1000, reason: str = "") -> None: ...
