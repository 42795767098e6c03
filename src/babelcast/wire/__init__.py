"""
babelcast wire protocol package.

Message types exchanged with browser clients and the codec that frames them.
"""

from .codec import deserialize_message, serialize_message
from .messages import (
  DebugMessage,
  ErrorMessage,
  InboundMessage,
  MuteMessage,
  OutboundMessage,
  SetAudioDeviceMessage,
  SetLanguageMessage,
  StatusMessage,
  TranscriptEvent,
  TranscriptMessage,
  UnmuteMessage,
)

__all__ = [
  "DebugMessage",
  "ErrorMessage",
  "InboundMessage",
  "MuteMessage",
  "OutboundMessage",
  "SetAudioDeviceMessage",
  "SetLanguageMessage",
  "StatusMessage",
  "TranscriptEvent",
  "TranscriptMessage",
  "UnmuteMessage",
  "deserialize_message",
  "serialize_message",
]
