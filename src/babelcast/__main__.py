import argparse
import asyncio
import os

from dotenv import load_dotenv

from babelcast.logs import get_logger, setup_logging


def get_env_or_default(env_var, default, var_type: type = str):
  """Get environment variable with type conversion and default fallback."""
  value = os.getenv(env_var)
  if value is None:
    return default

  if var_type is bool:
    return value.lower() in ("true", "1", "yes", "on")
  elif var_type is int:
    try:
      return int(value)
    except ValueError:
      return default
  else:
    return value


def build_parser() -> argparse.ArgumentParser:
  parser = argparse.ArgumentParser(
    prog="babelcast",
    description="Relay live speech transcripts and their translations to browser clients.",
  )
  parser.add_argument(
    "--port",
    "-p",
    type=int,
    default=get_env_or_default("BABELCAST_PORT", None, int),
    help="Websocket port to run the server on. (Env: BABELCAST_PORT)",
  )
  parser.add_argument(
    "--host",
    type=str,
    default=None,
    help="Interface to bind. Overrides server.host from the configuration file.",
  )
  parser.add_argument(
    "--config",
    type=str,
    default=get_env_or_default("BABELCAST_CONFIG", None),
    help="Path to an optional YAML configuration file. (Env: BABELCAST_CONFIG)",
  )
  parser.add_argument(
    "--debug_audio_path",
    type=str,
    default=None,
    help="Path prefix for debug audio files. When set, audio forwarded to transcription is "
    "saved as .wav files for debugging.",
  )
  parser.add_argument(
    "--json_logs",
    action="store_true",
    default=get_env_or_default("JSON_LOGS", False, bool),
    help="Output logs in JSON format. (Env: JSON_LOGS)",
  )
  parser.add_argument(
    "--correlation_id",
    type=str,
    default=get_env_or_default("CORRELATION_ID", None),
    help="Correlation ID for log tracing. (Env: CORRELATION_ID)",
  )
  parser.add_argument(
    "--list_devices",
    action="store_true",
    help="List audio input devices and exit.",
  )
  return parser


async def main(argv: list[str] | None = None):
  load_dotenv()

  parser = build_parser()
  args = parser.parse_args(argv)

  log_level = os.getenv("LOG_LEVEL", "INFO").upper()
  setup_logging(level=log_level, json_output=args.json_logs, correlation_id=args.correlation_id)
  logger = get_logger("main")

  if args.list_devices:
    from babelcast.audio import list_input_devices
    from babelcast.errors import AudioCaptureError

    try:
      devices = list_input_devices()
    except AudioCaptureError as e:
      logger.error("Could not list audio devices", error=str(e))
      raise SystemExit(1) from e

    for device in devices:
      print(f"{device}  ({device.channels} ch, {device.default_samplerate:g} Hz)")
    return

  from babelcast.config import RelayConfig, load_config_from_file

  try:
    config = load_config_from_file(args.config) if args.config else RelayConfig()
  except ValueError as e:
    logger.error("Configuration validation failed", error=str(e), config_path=args.config)
    logger.error(
      "Please check your configuration file format and values. "
      "See config.example.yaml for the valid configuration structure."
    )
    raise SystemExit(2) from e

  if args.port is not None:
    config.server.port = args.port
  if args.host is not None:
    config.server.host = args.host

  config.pretty_print()

  missing = config.missing_credentials()
  if missing:
    names = " and ".join(missing)
    parser.error(f"Missing API credentials. Set {names} in the environment or .env.")

  logger.info(
    "Starting babelcast relay",
    host=config.server.host,
    port=config.server.port,
    config_path=args.config,
    debug_audio_enabled=bool(args.debug_audio_path),
  )

  from babelcast.server import RelayServer

  server = RelayServer(config)
  await server.run(debug_audio_path=args.debug_audio_path)


def run():
  try:
    asyncio.run(main())
  except KeyboardInterrupt:
    pass


if __name__ == "__main__":
  run()
