"""End-to-end tests for the relay server over a real local socket."""

import asyncio
import json

import httpx
import pytest
from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed

from babelcast.config import RelayConfig
from babelcast.server import RelayServer


def relay_config() -> RelayConfig:
  return RelayConfig.model_validate(
    {
      "server": {"host": "127.0.0.1", "port": 0},
      "transcription": {"api_key": "dg-key"},
      "translation": {"api_key": "deepl-key"},
      "audio": {"capture": "client"},
      "session": {"reconnect_delay": 0.01},
    }
  )


async def start(server: RelayServer) -> tuple[asyncio.Task, int]:
  ready = asyncio.Event()
  task = asyncio.create_task(server.run(ready=ready))
  await asyncio.wait_for(ready.wait(), 2)
  port = server.websocket_server.sockets[0].getsockname()[1]
  return task, port


async def stop(task: asyncio.Task) -> None:
  task.cancel()
  try:
    await task
  except asyncio.CancelledError:
    pass


async def next_of_type(websocket, message_type: str, data: str | None = None) -> dict:
  while True:
    message = json.loads(await asyncio.wait_for(websocket.recv(), 2))
    if message["type"] == message_type and data in (None, message["data"]):
      return message


class TestRelayServer:
  """Test hosting, health checks and a full session."""

  def test_health_check(self, pipeline):
    """Test that a plain HTTP request is answered without a WebSocket upgrade."""

    async def scenario():
      server = RelayServer(relay_config(), translator=pipeline.translator)
      task, port = await start(server)
      try:
        async with httpx.AsyncClient() as client:
          return await client.get(f"http://127.0.0.1:{port}/")
      finally:
        await stop(task)

    response = asyncio.run(scenario())
    assert response.status_code == 200
    assert response.text == "Server is running\n"

  def test_session_round_trip(self, pipeline):
    """Test connect -> Connected -> audio upstream -> translated transcript -> cleanup."""
    pipeline.translator.responses[("hello", "es")] = "hola"

    async def scenario():
      server = RelayServer(relay_config(), translator=pipeline.translator)
      server._make_link = pipeline.links
      task, port = await start(server)
      try:
        async with connect(f"ws://127.0.0.1:{port}") as websocket:
          status = await next_of_type(websocket, "status")
          assert status["data"] == "Connected"
          assert len(server.registry) == 1

          await next_of_type(websocket, "debug", "Microphone started")

          await websocket.send(json.dumps({"type": "setLanguage", "language": "es"}))
          await websocket.send(b"\x01\x00" * 64)
          while not pipeline.links.latest.sent:
            await asyncio.sleep(0.01)

          await pipeline.links.latest.emit_transcript("hello")
          transcript = await next_of_type(websocket, "transcript")

        while len(server.registry):
          await asyncio.sleep(0.01)
        return transcript
      finally:
        await stop(task)

    transcript = asyncio.run(scenario())
    assert transcript["data"] == {"original": "hello", "translated": "hola", "language": "Spanish"}
    assert pipeline.links.latest.sent == [b"\x01\x00" * 64]
    assert pipeline.links.latest.finish_calls == 1

  def test_unexpected_start_failure_closes_connection(self, pipeline):
    """Test that a session whose start-up blows up is closed with 1011 and cleaned up."""

    def broken_audio_source(device_id):
      raise RuntimeError("capture backend exploded")

    async def scenario():
      server = RelayServer(relay_config(), translator=pipeline.translator)
      server._make_link = pipeline.links
      server._make_audio_source = broken_audio_source
      task, port = await start(server)
      try:
        async with connect(f"ws://127.0.0.1:{port}") as websocket:
          with pytest.raises(ConnectionClosed):
            while True:
              await asyncio.wait_for(websocket.recv(), 2)
          close_code = websocket.close_code

        while len(server.registry):
          await asyncio.sleep(0.01)
        return close_code
      finally:
        await stop(task)

    assert asyncio.run(scenario()) == 1011
    assert pipeline.links.latest.finish_calls == 1
