"""Error taxonomy for the relay pipeline."""


class RelayError(Exception):
  """Base class for all babelcast errors."""


class UpstreamConnectError(RelayError):
  """The transcription link could not be opened."""


class UpstreamStreamError(RelayError):
  """The transcription link failed after it was opened."""


class TranslationError(RelayError):
  """A translation request failed or timed out."""


class AudioCaptureError(RelayError):
  """Audio capture could not start or broke down. Fatal to the session."""


class ClientProtocolError(RelayError):
  """An inbound client frame could not be decoded."""
