"""
Audio capture sources.

Audio reaches a session either from a local input device or as binary frames sent by the
browser. Both deliver 16-bit mono PCM chunks through the same start/stop contract.
"""

from babelcast.audio.client_stream import ClientAudioSource
from babelcast.audio.microphone import (
  InputDevice,
  MicrophoneAudioSource,
  input_devices_from,
  list_input_devices,
  resolve_input_device,
)
from babelcast.audio.recording import DebugAudioWriter

__all__ = [
  "ClientAudioSource",
  "DebugAudioWriter",
  "InputDevice",
  "MicrophoneAudioSource",
  "input_devices_from",
  "list_input_devices",
  "resolve_input_device",
]
