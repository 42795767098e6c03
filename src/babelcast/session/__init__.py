"""
Per-client session pipeline.

The SessionCoordinator owns one browser connection and bridges it to the audio source, the
upstream transcription link and the translation step.
"""

from babelcast.session.client_link import WebSocketClientLink
from babelcast.session.coordinator import SessionCoordinator
from babelcast.session.interfaces import (
  AudioSource,
  ClientSink,
  TranscriptionLink,
  TranscriptionListener,
  TranslationStep,
)
from babelcast.session.state import Session, SessionState

__all__ = [
  "AudioSource",
  "ClientSink",
  "Session",
  "SessionCoordinator",
  "SessionState",
  "TranscriptionLink",
  "TranscriptionListener",
  "TranslationStep",
  "WebSocketClientLink",
]
