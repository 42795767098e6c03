import os
from typing import Literal

import yaml
from pydantic import BaseModel, Field, model_validator, validate_call
from pydantic.types import FilePath

from babelcast.constants import (
  CHANNELS,
  DEFAULT_LANGUAGE,
  PROGRESS_LOG_INTERVAL,
  RECONNECT_DELAY,
  SAMPLE_RATE,
  SUPPORTED_LANGUAGES,
)
from babelcast.logs import get_logger

logger = get_logger("cfg")

DEEPGRAM_KEY_ENV = "DEEPGRAM_API_KEY"
DEEPL_KEY_ENV = "DEEPL_AUTH_KEY"


def _mask(secret: str | None) -> str:
  if not secret:
    return "<unset>"
  return f"{secret[:4]}…" if len(secret) > 8 else "****"


class ServerConfig(BaseModel):
  """Where the client-facing WebSocket endpoint listens."""

  host: str = "0.0.0.0"
  """Interface to bind."""

  port: int = Field(default=3001, ge=0, le=65535)
  """TCP port for browser connections."""


class TranscriptionConfig(BaseModel):
  """Configuration for the streaming speech-to-text connection."""

  url: str = "wss://api.deepgram.com/v1/listen"
  """Live transcription endpoint."""

  api_key: str | None = None
  """Service credential. Falls back to the DEEPGRAM_API_KEY environment variable."""

  model: str = "nova-2"
  language: str = "en-US"
  """Spoken language of the captured audio."""

  smart_format: bool = True
  punctuate: bool = True
  interim_results: bool = False
  encoding: str = "linear16"
  channels: int = Field(default=CHANNELS, gt=0)
  sample_rate: int = Field(default=SAMPLE_RATE, gt=0)

  endpointing: int = Field(default=300, ge=0)
  """Milliseconds of silence that end an utterance."""

  open_timeout: float = Field(default=10.0, gt=0.0)
  """Seconds allowed for the upstream handshake."""

  keepalive_interval: float = Field(default=8.0, ge=0.0)
  """Seconds between KeepAlive control messages. 0 disables them."""

  @model_validator(mode="after")
  def resolve_api_key(self) -> "TranscriptionConfig":
    if not self.api_key:
      self.api_key = os.getenv(DEEPGRAM_KEY_ENV) or None
    return self

  def query_params(self) -> dict[str, str]:
    """Connection options as they appear in the upstream URL."""
    params = {
      "model": self.model,
      "language": self.language,
      "smart_format": self.smart_format,
      "punctuate": self.punctuate,
      "interim_results": self.interim_results,
      "encoding": self.encoding,
      "channels": self.channels,
      "sample_rate": self.sample_rate,
      "endpointing": self.endpointing,
    }
    return {k: str(v).lower() if isinstance(v, bool) else str(v) for k, v in params.items()}


class TranslationConfig(BaseModel):
  """Configuration for the translation service."""

  url: str = "https://api-free.deepl.com/v2/translate"
  """Translate endpoint. Use https://api.deepl.com/v2/translate for paid plans."""

  api_key: str | None = None
  """Service credential. Falls back to the DEEPL_AUTH_KEY environment variable."""

  timeout: float = Field(default=10.0, gt=0.0)
  """Seconds allowed for a single translation request."""

  @model_validator(mode="after")
  def resolve_api_key(self) -> "TranslationConfig":
    if not self.api_key:
      self.api_key = os.getenv(DEEPL_KEY_ENV) or None
    return self


class AudioConfig(BaseModel):
  """Configuration for audio capture."""

  capture: Literal["server", "client"] = "server"
  """Where audio is captured: a local input device, or binary frames sent by the browser."""

  device: str | None = None
  """Input device index or name fragment. None selects the first input device."""

  sample_rate: int = Field(default=SAMPLE_RATE, gt=0)
  channels: int = Field(default=CHANNELS, gt=0)

  blocksize: int = Field(default=4096, gt=0)
  """Frames per captured chunk."""

  queue_size: int = Field(default=100, gt=0)
  """Captured chunks held while the event loop catches up."""


class SessionConfig(BaseModel):
  """Per-client session behavior."""

  default_language: str = DEFAULT_LANGUAGE
  """Translation target until the client sends setLanguage."""

  reconnect_delay: float = Field(default=RECONNECT_DELAY, ge=0.0)
  """Seconds between losing the transcription connection and reopening it."""

  progress_log_interval: float = Field(default=PROGRESS_LOG_INTERVAL, gt=0.0)
  """Seconds between 'bytes sent' debug events."""

  languages: dict[str, str] = Field(default_factory=lambda: dict(SUPPORTED_LANGUAGES))
  """Target language codes mapped to display labels."""

  def language_label(self, code: str) -> str:
    return self.languages.get(code, code)


class RelayConfig(BaseModel):
  """Top-level babelcast configuration."""

  server: ServerConfig = Field(default_factory=ServerConfig)
  transcription: TranscriptionConfig = Field(default_factory=TranscriptionConfig)
  translation: TranslationConfig = Field(default_factory=TranslationConfig)
  audio: AudioConfig = Field(default_factory=AudioConfig)
  session: SessionConfig = Field(default_factory=SessionConfig)

  @model_validator(mode="after")
  def validate_audio_format(self) -> "RelayConfig":
    """Captured audio must match what the transcription service is told to expect."""
    if self.audio.sample_rate != self.transcription.sample_rate:
      raise ValueError(
        f"audio.sample_rate ({self.audio.sample_rate}) must match "
        f"transcription.sample_rate ({self.transcription.sample_rate})"
      )
    if self.audio.channels != self.transcription.channels:
      raise ValueError(
        f"audio.channels ({self.audio.channels}) must match "
        f"transcription.channels ({self.transcription.channels})"
      )
    return self

  def missing_credentials(self) -> list[str]:
    """Names of the environment variables whose credentials are still unset."""
    missing = []
    if not self.transcription.api_key:
      missing.append(DEEPGRAM_KEY_ENV)
    if not self.translation.api_key:
      missing.append(DEEPL_KEY_ENV)
    return missing

  def pretty_print(self) -> None:
    """Log the effective configuration at INFO level, credentials masked."""
    logger.info("=" * 60)
    logger.info("BABELCAST CONFIGURATION")
    logger.info("=" * 60)

    logger.info("SERVER:")
    logger.info(f"  Listen: {self.server.host}:{self.server.port}")

    logger.info("TRANSCRIPTION:")
    logger.info(f"  URL: {self.transcription.url}")
    logger.info(f"  API Key: {_mask(self.transcription.api_key)}")
    logger.info(f"  Model: {self.transcription.model}")
    logger.info(f"  Language: {self.transcription.language}")
    logger.info(f"  Encoding: {self.transcription.encoding}")
    logger.info(f"  Sample Rate: {self.transcription.sample_rate}")
    logger.info(f"  Endpointing: {self.transcription.endpointing}ms")
    logger.info(f"  KeepAlive Interval: {self.transcription.keepalive_interval}s")

    logger.info("TRANSLATION:")
    logger.info(f"  URL: {self.translation.url}")
    logger.info(f"  API Key: {_mask(self.translation.api_key)}")
    logger.info(f"  Timeout: {self.translation.timeout}s")

    logger.info("AUDIO:")
    logger.info(f"  Capture: {self.audio.capture}")
    logger.info(f"  Device: {self.audio.device or '<first available>'}")
    logger.info(f"  Blocksize: {self.audio.blocksize}")

    logger.info("SESSION:")
    logger.info(f"  Default Language: {self.session.default_language}")
    logger.info(f"  Reconnect Delay: {self.session.reconnect_delay}s")
    logger.info(f"  Languages: {', '.join(self.session.languages)}")

    logger.info("=" * 60)


@validate_call
def load_config_from_file(config_path: FilePath) -> RelayConfig:
  """Load and validate babelcast configuration from a YAML file."""

  logger.info("Loading babelcast configuration", path=str(config_path))

  try:
    with open(config_path, encoding="utf-8") as file:
      config_data = yaml.safe_load(file)

  except yaml.YAMLError as e:
    raise ValueError(f"Invalid YAML in configuration file: {e}") from e
  except OSError as e:
    raise ValueError(f"Error reading configuration file: {e}") from e

  if config_data is None:
    raise ValueError("Configuration file is empty")

  if not isinstance(config_data, dict):
    raise ValueError("Configuration file must contain a YAML dictionary")

  return RelayConfig.model_validate(config_data)
