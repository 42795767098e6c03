"""
Upstream streaming transcription.

Links that carry session audio to a hosted speech-to-text service and report transcripts back.
"""

from babelcast.transcription.deepgram import DeepgramTranscriptionLink, extract_transcript

__all__ = [
  "DeepgramTranscriptionLink",
  "extract_transcript",
]
