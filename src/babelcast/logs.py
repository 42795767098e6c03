"""Centralized logging configuration for babelcast using structlog."""

import logging
import os
import time
from typing import Any

import structlog
from structlog.dev import DIM, RESET_ALL, Column, ConsoleRenderer, KeyValueColumnFormatter
from structlog.typing import EventDict, Processor

# Relative timestamps are measured from import time
_PROGRAM_START_TIME = time.time()

_GRAY = "\x1b[2m"
_DARK_GRAY = "\x1b[90m"
_RESET = "\x1b[0m"


def hex_to_ansi_fg(hex_color: int) -> str:
  """Convert a hex color (e.g. 0x9ccfd8) to an ANSI 24-bit foreground escape code."""
  r = (hex_color >> 16) & 0xFF
  g = (hex_color >> 8) & 0xFF
  b = hex_color & 0xFF
  return f"\x1b[38;2;{r};{g};{b}m"


# level -> (tag, tag color, bracket color)
_LEVEL_TAGS: dict[str, tuple[str, int, int]] = {
  "debug": ("dbug", 0x908CAA, 0x827E99),
  "info": ("info", 0x9CCFD8, 0x8CBAC2),
  "warning": ("warn", 0xF6C177, 0xDDAE6B),
  "error": ("eror", 0xEB6F92, 0xD46483),
  "exception": ("exc!", 0xEB6F92, 0xD46483),
  "critical": ("crit", 0xEB6F92, 0xD46483),
}


def _relative_time_processor(_logger: Any, _method_name: str, event_dict: EventDict) -> EventDict:
  """Stamp the event with the time elapsed since start, as [h:][m:]ss.mmm."""
  elapsed = time.time() - _PROGRAM_START_TIME
  hours = int(elapsed // 3600)
  minutes = int((elapsed % 3600) // 60)
  seconds = elapsed % 60

  separator = f"{_GRAY}:{_RESET}"
  hours_str = f"{_GRAY}{hours:02d}{_RESET}{separator}" if hours else ""
  minutes_str = f"{_GRAY}{minutes:02d}{_RESET}{separator}" if minutes or hours else ""
  seconds_str = f"{_GRAY}{seconds:06.3f}{_RESET}"

  event_dict["timestamp"] = f"{_DARK_GRAY}+{_RESET}{hours_str}{minutes_str}{seconds_str}"
  return event_dict


def _compact_level_processor(_logger: Any, _method_name: str, event_dict: EventDict) -> EventDict:
  """Replace the level name with a colored four character tag."""
  level = event_dict.get("level")
  if level in _LEVEL_TAGS:
    tag, color, bracket_color = _LEVEL_TAGS[level]
    bracket = hex_to_ansi_fg(bracket_color)
    event_dict["level"] = (
      f"{bracket}[{_RESET}{hex_to_ansi_fg(color)}{tag}{_RESET}{bracket}]{_RESET}"
    )
  return event_dict


def _console_renderer() -> ConsoleRenderer:
  logger_name_formatter = KeyValueColumnFormatter(
    key_style=None,
    value_style=hex_to_ansi_fg(0x7D6B95),
    reset_style=RESET_ALL,
    value_repr=str,
    prefix="[",
    postfix="]",
  )
  plain = KeyValueColumnFormatter(
    key_style=None, value_style="", reset_style=RESET_ALL, value_repr=str
  )

  return ConsoleRenderer(
    colors=True,
    columns=[
      Column(
        "",
        KeyValueColumnFormatter(
          key_style=hex_to_ansi_fg(0x6E6A86),
          value_style=hex_to_ansi_fg(0xF6C177),
          reset_style=RESET_ALL,
          value_repr=str,
        ),
      ),
      Column(
        "timestamp",
        KeyValueColumnFormatter(
          key_style=None, value_style=DIM, reset_style=RESET_ALL, value_repr=str
        ),
      ),
      Column("level", plain),
      Column("logger", logger_name_formatter),
      Column(
        "event",
        KeyValueColumnFormatter(
          key_style=None, value_style="", reset_style=RESET_ALL, value_repr=str, width=30
        ),
      ),
    ],
  )


def setup_logging(
  level: str = "INFO", json_output: bool = False, correlation_id: str | None = None
) -> None:
  """Configure structured logging for the relay."""

  shared_processors: list[Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.stdlib.ExtraAdder(),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
  ]

  if correlation_id:
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

  if json_output:
    shared_processors.append(structlog.processors.TimeStamper(fmt="iso"))
    log_renderer: Processor = structlog.processors.JSONRenderer()
  else:
    shared_processors += [_compact_level_processor, _relative_time_processor]
    log_renderer = _console_renderer()

  structlog.configure(
    processors=[structlog.stdlib.filter_by_level]
    + shared_processors
    + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
  )

  formatter = structlog.stdlib.ProcessorFormatter(
    foreign_pre_chain=shared_processors,
    processors=[
      structlog.stdlib.ProcessorFormatter.remove_processors_meta,
      log_renderer,
    ],
  )

  handler = logging.StreamHandler()
  handler.setFormatter(formatter)
  root_logger = logging.getLogger()
  root_logger.handlers.clear()
  root_logger.addHandler(handler)
  root_logger.setLevel(level)

  # Library chatter only above WARNING
  for name in ("websockets", "httpx", "httpcore"):
    liblog = logging.getLogger(name)
    liblog.handlers.clear()
    liblog.setLevel(logging.WARNING)
    liblog.propagate = True


def get_logger(name: str | None = None, **initial_values: Any) -> structlog.stdlib.BoundLogger:
  """Get a structured logger instance."""
  return structlog.get_logger(name, **initial_values)


def setup_logging_from_env() -> None:
  """Setup logging using environment variables."""
  log_level = os.getenv("LOG_LEVEL", "INFO").upper()
  json_output = os.getenv("JSON_LOGS", "false").lower() in ("true", "1", "yes", "on")
  correlation_id = os.getenv("CORRELATION_ID")

  setup_logging(level=log_level, json_output=json_output, correlation_id=correlation_id)
