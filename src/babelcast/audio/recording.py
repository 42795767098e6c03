import os
import time

import numpy as np

from babelcast.logs import get_logger


class DebugAudioWriter:
  """
  Captures the audio a session forwards upstream into a .wav file for analysis.

  The file is created lazily on the first chunk. Write failures are logged and never
  propagate into the session.
  """

  def __init__(self, path_prefix: str, session_id: str, sample_rate: int, channels: int = 1):
    self.filename = f"{path_prefix}_{session_id}_{int(time.time())}.wav"
    self.sample_rate = sample_rate
    self.channels = channels
    self.logger = get_logger("audio/debug").bind(session=session_id)
    self._file = None
    self._failed = False

  def write(self, chunk: bytes) -> None:
    if self._failed:
      return

    import soundfile as sf

    try:
      if self._file is None:
        directory = os.path.dirname(self.filename)
        os.makedirs(directory or ".", exist_ok=True)
        self._file = sf.SoundFile(
          self.filename,
          mode="w",
          samplerate=self.sample_rate,
          channels=self.channels,
          format="WAV",
          subtype="PCM_16",
        )
        self.logger.info("Debug audio capture started", filename=self.filename)

      samples = np.frombuffer(chunk, dtype=np.int16)
      if self.channels > 1:
        samples = samples.reshape(-1, self.channels)
      self._file.write(samples)
    except Exception:
      self._failed = True
      self.logger.exception(f"Error writing debug audio to {self.filename}")

  def close(self) -> None:
    if self._file is None:
      return
    file, self._file = self._file, None
    try:
      file.close()
      self.logger.info(f"Debug audio capture finished: {self.filename}")
    except Exception:
      self.logger.exception(f"Error closing debug audio file {self.filename}")
