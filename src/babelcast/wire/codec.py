"""
Message codec for the browser wire protocol.

Converts between message objects and JSON text frames, hiding the Pydantic details.
"""

from pydantic import TypeAdapter, ValidationError

from babelcast.errors import ClientProtocolError

from .messages import InboundMessage, OutboundMessage


_inbound_adapter: TypeAdapter[InboundMessage] = TypeAdapter(InboundMessage)
"""Validates a whole frame against the discriminated union of inbound messages."""


def serialize_message(message: OutboundMessage) -> str:
  """
  Serialize an outbound message to a JSON string.

  Args:
      message: Any outbound message instance

  Returns:
      JSON text, field aliases applied
  """
  return message.model_dump_json(by_alias=True)


def deserialize_message(json_str: str | bytes) -> InboundMessage:
  """
  Deserialize a JSON text frame into an inbound message.

  Raises:
      ClientProtocolError: the frame is not JSON, is not an object, or matches no known type
  """
  if isinstance(json_str, bytes):
    try:
      json_str = json_str.decode("utf-8")
    except UnicodeDecodeError as e:
      raise ClientProtocolError(f"Frame is not valid UTF-8: {e}") from e

  try:
    return _inbound_adapter.validate_json(json_str)
  except ValidationError as e:
    raise ClientProtocolError(_describe(e)) from e


def _describe(error: ValidationError) -> str:
  """First validation problem as 'location: reason'."""
  first = error.errors()[0]
  location = ".".join(str(part) for part in first["loc"])
  return f"{location}: {first['msg']}" if location else first["msg"]
