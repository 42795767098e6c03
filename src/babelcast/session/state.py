"""Per-client session state."""

import asyncio
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
  from babelcast.session.interfaces import TranscriptionLink


class SessionState(StrEnum):
  """Lifecycle of one client session."""

  IDLE = "idle"
  CONNECTING_UPSTREAM = "connecting_upstream"
  STREAMING = "streaming"
  DISCONNECTED = "disconnected"
  """Upstream lost, a reconnect is pending."""
  CLOSED = "closed"
  """Terminal. The client left and every resource was released."""


@dataclass
class Session:
  """
  Mutable state of one client's pipeline.

  Owned by a single SessionCoordinator and only touched from its event handlers, which all
  run on the same event loop.
  """

  session_id: str
  current_language: str
  audio_device: str | None = None

  state: SessionState = SessionState.IDLE
  is_muted: bool = False
  is_upstream_connected: bool = False
  is_client_closed: bool = False

  total_audio_bytes_sent: int = 0
  last_log_timestamp: float = 0.0
  last_drop_reason: str | None = None
  """Why the previous chunk was dropped; None once a chunk goes through."""

  upstream: "TranscriptionLink | None" = None
  """The one live (or opening) upstream link."""

  reconnect_task: asyncio.Task | None = field(default=None, repr=False)
  reconnect_attempts: int = 0

  @property
  def is_closed(self) -> bool:
    return self.state is SessionState.CLOSED
