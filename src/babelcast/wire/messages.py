"""
Pydantic message models for the browser WebSocket protocol.

Every control message and event is one JSON object per text frame, tagged by ``type``.
Audio travels separately as raw binary frames.
"""

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field


class TranscriptEvent(BaseModel):
  """One transcript and its translation, as shown to the user."""

  model_config = ConfigDict(frozen=True)

  original: str
  """Text as recognized by the transcription service."""

  translated: str
  """Text as returned by the translation service."""

  language: str
  """Display label of the target language (e.g. 'Japanese')."""


# Client -> server


class SetLanguageMessage(BaseModel):
  """Switch the translation target language."""

  type: Literal["setLanguage"] = "setLanguage"
  language: str = Field(min_length=1)


class SetAudioDeviceMessage(BaseModel):
  """Select the input device to capture from."""

  model_config = ConfigDict(populate_by_name=True)

  type: Literal["setAudioDevice"] = "setAudioDevice"
  device_id: str = Field(alias="deviceId")


class MuteMessage(BaseModel):
  """Stop forwarding audio upstream. Capture keeps running."""

  type: Literal["mute"] = "mute"


class UnmuteMessage(BaseModel):
  """Resume forwarding audio upstream."""

  type: Literal["unmute"] = "unmute"


# Server -> client


class TranscriptMessage(BaseModel):
  type: Literal["transcript"] = "transcript"
  data: TranscriptEvent


class StatusMessage(BaseModel):
  """Upstream connection status, e.g. 'Connected' or 'Disconnected'."""

  type: Literal["status"] = "status"
  data: str


class ErrorMessage(BaseModel):
  """A failure the user should know about."""

  type: Literal["error"] = "error"
  data: str


class DebugMessage(BaseModel):
  """Diagnostic breadcrumb for the client's debug log."""

  type: Literal["debug"] = "debug"
  data: str


# Discriminated union for all inbound message types
InboundMessage = Annotated[
  SetLanguageMessage | SetAudioDeviceMessage | MuteMessage | UnmuteMessage,
  Field(discriminator="type"),
]

OutboundMessage = TranscriptMessage | StatusMessage | ErrorMessage | DebugMessage
