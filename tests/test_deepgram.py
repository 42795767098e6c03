"""Tests for the Deepgram transcription link."""

import asyncio
import json

import pytest
from websockets.asyncio.server import ServerConnection, serve

from babelcast.config import TranscriptionConfig
from babelcast.errors import UpstreamConnectError
from babelcast.transcription import DeepgramTranscriptionLink, extract_transcript


def results(text: str) -> str:
  return json.dumps(
    {
      "type": "Results",
      "is_final": True,
      "channel": {"alternatives": [{"transcript": text, "confidence": 0.98}]},
    }
  )


class RecordingListener:
  def __init__(self):
    self.transcripts: list[str] = []
    self.errors: list[str] = []
    self.closed: list[DeepgramTranscriptionLink] = []
    self.closed_event = asyncio.Event()

  async def on_upstream_transcript(self, text):
    self.transcripts.append(text)

  async def on_upstream_error(self, link, reason):
    self.errors.append(reason)

  async def on_upstream_closed(self, link):
    self.closed.append(link)
    self.closed_event.set()


class FakeDeepgram:
  """Local WebSocket server speaking enough of the live transcription protocol."""

  def __init__(self, script=None):
    self.script = script or []
    self.audio: list[bytes] = []
    self.control: list[dict] = []
    self.request_path = None
    self.auth = None
    self.stream_closed = asyncio.Event()

  async def handler(self, websocket: ServerConnection):
    self.request_path = websocket.request.path
    self.auth = websocket.request.headers.get("Authorization")
    for step in self.script:
      if step == "close":
        await websocket.close(1011, "net0001")
        return
      await websocket.send(step)

    async for message in websocket:
      if isinstance(message, bytes):
        self.audio.append(message)
        continue
      control = json.loads(message)
      self.control.append(control)
      if control["type"] == "CloseStream":
        self.stream_closed.set()
        await websocket.close()
        return


async def run_against(fake: FakeDeepgram, body, **config):
  async with serve(fake.handler, "127.0.0.1", 0) as server:
    port = server.sockets[0].getsockname()[1]
    cfg = TranscriptionConfig(url=f"ws://127.0.0.1:{port}/v1/listen", api_key="dg-key", **config)
    listener = RecordingListener()
    link = DeepgramTranscriptionLink(cfg, listener)
    try:
      return await body(link, listener)
    finally:
      await link.close()


class TestExtractTranscript:
  """Test pulling the transcript out of a Results payload."""

  def test_results(self):
    assert extract_transcript(json.loads(results("hello there"))) == "hello there"

  @pytest.mark.parametrize(
    "payload",
    [
      {},
      {"channel": {}},
      {"channel": {"alternatives": []}},
      {"channel": {"alternatives": [{"transcript": 3}]}},
      {"channel": "nope"},
    ],
  )
  def test_missing_transcript(self, payload):
    assert extract_transcript(payload) is None


class TestDeepgramLink:
  """Test the link against a local fake service."""

  def test_url_carries_query_options(self):
    link = DeepgramTranscriptionLink(TranscriptionConfig(api_key="k"), RecordingListener())
    assert link.url.startswith("wss://api.deepgram.com/v1/listen?model=nova-2&language=en-US")
    assert "interim_results=false" in link.url
    assert "sample_rate=16000" in link.url

  def test_send_before_open_drops(self):
    """Test that audio is refused, not raised, while the link is not open."""

    async def scenario():
      link = DeepgramTranscriptionLink(TranscriptionConfig(api_key="k"), RecordingListener())
      assert not link.is_open
      assert await link.send(b"\x00\x00") is False
      await link.close()
      await link.close()
      assert link.dropped_chunks == 1

    asyncio.run(scenario())

  def test_open_after_close_is_refused(self):
    async def scenario():
      link = DeepgramTranscriptionLink(TranscriptionConfig(api_key="k"), RecordingListener())
      await link.close()
      with pytest.raises(UpstreamConnectError):
        await link.open()

    asyncio.run(scenario())

  def test_connection_refused(self):
    """Test that an unreachable service raises UpstreamConnectError."""

    async def scenario():
      config = TranscriptionConfig(url="ws://127.0.0.1:1/v1/listen", api_key="k", open_timeout=2)
      link = DeepgramTranscriptionLink(config, RecordingListener())
      with pytest.raises(UpstreamConnectError):
        await link.open()

    asyncio.run(scenario())

  def test_streams_audio_and_receives_transcripts(self):
    """Test the full exchange: auth, audio up, transcripts down, CloseStream on finish."""
    fake = FakeDeepgram(
      script=[
        json.dumps({"type": "Metadata", "request_id": "abc"}),
        results("hello"),
        results(""),
        json.dumps({"type": "SpeechStarted"}),
        results("world"),
      ]
    )

    async def body(link, listener):
      await link.open()
      assert link.is_open
      assert await link.send(b"\x01\x00" * 10)
      assert await link.send(b"\x02\x00" * 10)
      while len(listener.transcripts) < 3:
        await asyncio.sleep(0.01)
      await link.finish()
      await asyncio.wait_for(fake.stream_closed.wait(), 2)
      return listener

    listener = asyncio.run(run_against(fake, body))

    assert fake.auth == "Token dg-key"
    assert "encoding=linear16" in fake.request_path
    assert fake.audio == [b"\x01\x00" * 10, b"\x02\x00" * 10]
    assert {"type": "CloseStream"} in fake.control
    assert listener.transcripts == ["hello", "", "world"]
    assert listener.closed == []

  def test_service_close_notifies_listener_once(self):
    """Test that a closure the link did not ask for is reported, then sends are refused."""
    fake = FakeDeepgram(script=["close"])

    async def body(link, listener):
      await link.open()
      await asyncio.wait_for(listener.closed_event.wait(), 2)
      assert not link.is_open
      assert await link.send(b"\x00\x00") is False
      await link.close()
      return listener

    listener = asyncio.run(run_against(fake, body))

    assert len(listener.closed) == 1
    assert len(listener.errors) == 1
    assert listener.errors[0].startswith("Connection lost")

  def test_error_message_is_reported(self):
    """Test that an Error message surfaces as an upstream error followed by a close."""
    fake = FakeDeepgram(script=[json.dumps({"type": "Error", "description": "bad audio"})])

    async def body(link, listener):
      await link.open()
      await asyncio.wait_for(listener.closed_event.wait(), 2)
      return listener

    listener = asyncio.run(run_against(fake, body))

    assert listener.errors == ["bad audio"]
    assert len(listener.closed) == 1

  def test_keepalive_is_sent(self):
    """Test that KeepAlive messages flow while no audio is sent."""
    fake = FakeDeepgram()

    async def body(link, listener):
      await link.open()
      while not fake.control:
        await asyncio.sleep(0.01)
      return fake.control[0]

    control = asyncio.run(run_against(fake, body, keepalive_interval=0.05))
    assert control == {"type": "KeepAlive"}
