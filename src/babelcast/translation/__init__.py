"""Text translation for transcripts."""

from babelcast.translation.deepl import DeepLTranslator

__all__ = ["DeepLTranslator"]
