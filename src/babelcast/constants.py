"""
Constants for the babelcast relay.

These values are hardcoded defaults. Most of them can be overridden through the config file.
"""

SAMPLE_RATE = 16000
"""Audio sample rate in Hz expected by the transcription service."""

CHANNELS = 1
"""Mono audio."""

DEFAULT_LANGUAGE = "ja"
"""Target language used until the client picks one."""

SUPPORTED_LANGUAGES: dict[str, str] = {
  "ja": "Japanese",
  "ko": "Korean",
  "ZH-HANT": "Chinese (Traditional)",
  "es": "Spanish",
}
"""Target language codes offered to clients, mapped to their display labels."""

RECONNECT_DELAY = 5.0
"""Seconds to wait before reopening a dropped transcription connection."""

PROGRESS_LOG_INTERVAL = 5.0
"""Seconds between 'bytes sent' debug reports."""

STATUS_CONNECTED = "Connected"
STATUS_DISCONNECTED = "Disconnected"

MICROPHONE_ERROR = "Microphone error occurred"
"""Client-facing message for fatal capture failures."""
