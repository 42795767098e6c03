import asyncio
import time
from collections.abc import Awaitable, Callable
from http import HTTPStatus

from websockets.asyncio.server import ServerConnection, serve
from websockets.exceptions import ConnectionClosed, InvalidMessage
from websockets.http11 import Request, Response

from babelcast.logs import get_logger
from babelcast.session.coordinator import SessionCoordinator


class SessionRegistry:
  def __init__(self):
    """
    Initializes the SessionRegistry for tracking live client sessions.
    """
    self.sessions: dict[ServerConnection, SessionCoordinator] = {}
    self.start_times: dict[ServerConnection, float] = {}
    self.logger = get_logger("ws/sessions")

  def __len__(self) -> int:
    return len(self.sessions)

  def add(self, websocket: ServerConnection, coordinator: SessionCoordinator) -> None:
    """
    Tracks a session and the time its connection started.

    Args:
        websocket: The websocket the session serves.
        coordinator: The session's coordinator.
    """
    self.sessions[websocket] = coordinator
    self.start_times[websocket] = time.time()
    self.logger.debug(
      "Session added", session=coordinator.session_id, total_sessions=len(self.sessions)
    )

  def remove(self, websocket: ServerConnection) -> SessionCoordinator | None:
    """
    Stops tracking the session for a websocket. Releasing its resources is the caller's job.

    Args:
        websocket: The websocket whose session ended.

    Returns:
        The removed coordinator, or None if the websocket was not tracked.
    """
    coordinator = self.sessions.pop(websocket, None)
    started = self.start_times.pop(websocket, None)
    if coordinator is None:
      self.logger.debug("No session found for websocket during removal")
      return None

    duration = round(time.time() - started, 1) if started is not None else None
    self.logger.debug(
      "Session removed",
      session=coordinator.session_id,
      duration_s=duration,
      remaining_sessions=len(self.sessions),
    )
    return coordinator


def health_check(connection: ServerConnection, request: Request) -> Response | None:
  """Answers plain HTTP requests so load balancers can probe the WebSocket port."""
  if request.headers.get("Upgrade", "").lower() == "websocket":
    return None
  return connection.respond(HTTPStatus.OK, "Server is running\n")


class WebSocketServer:
  """Wrapper around WebSocket server that handles connection errors gracefully"""

  def __init__(
    self,
    handler: Callable[[ServerConnection], Awaitable[None]],
    host,
    port,
    **kwargs,
  ):
    self.handler = handler
    self.host = host
    self.port = port
    self.kwargs = kwargs
    self.sockets = []
    self.logger = get_logger("ws/server")

  async def start(self, ready: asyncio.Event | None = None):
    self.logger.info(f"Starting WebSocket server on {self.host}:{self.port}")
    async with serve(
      self.error_handling_wrapper,
      self.host,
      self.port,
      process_request=health_check,
      **self.kwargs,
    ) as server:
      self.sockets = server.sockets
      if ready is not None:
        ready.set()
      await asyncio.Future()  # run forever

  async def error_handling_wrapper(self, websocket: ServerConnection):
    """Wrapper that catches and logs connection errors without crashing"""
    addr = websocket.remote_address

    try:
      self.logger.info("Connection begin", address=addr, websocket_id=websocket.id)
      await self.handler(websocket)
    except (EOFError, InvalidMessage):
      self.logger.debug("Connection from failed handshake", websocket_id=websocket.id)
    except ConnectionClosed as e:
      self.logger.debug("Connection closed", error=e, websocket_id=websocket.id)
    except (KeyboardInterrupt, SystemExit):
      raise
    except Exception:
      self.logger.exception("Connection unexpected error", websocket_id=websocket.id)
    finally:
      self.logger.info("Connection end", address=addr, websocket_id=websocket.id)
