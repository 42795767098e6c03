"""
DeepL text translation over HTTP.

One POST per transcript. Source language is left to DeepL's detection; the target code is sent
upper-cased as the API expects (e.g. "ja" -> "JA", "ZH-HANT" unchanged).
"""

import httpx

from babelcast.config import TranslationConfig
from babelcast.errors import TranslationError
from babelcast.logs import get_logger


class DeepLTranslator:
  """
  Stateless translator shared by every session.

  Holds a pooled httpx.AsyncClient; call aclose() on shutdown when the translator created it.
  """

  def __init__(self, config: TranslationConfig, client: httpx.AsyncClient | None = None) -> None:
    self.config = config
    self.logger = get_logger("translate/deepl")
    self._owns_client = client is None
    self.client = client or httpx.AsyncClient(timeout=config.timeout)
    self.requests_made = 0

  async def translate(self, text: str, target_language: str) -> str:
    target = target_language.upper()
    headers = {}
    if self.config.api_key:
      headers["Authorization"] = f"DeepL-Auth-Key {self.config.api_key}"

    self.requests_made += 1
    try:
      response = await self.client.post(
        self.config.url,
        json={"text": [text], "target_lang": target},
        headers=headers,
        timeout=self.config.timeout,
      )
      response.raise_for_status()
      payload = response.json()
    except httpx.TimeoutException as e:
      raise TranslationError(f"Translation timed out after {self.config.timeout}s") from e
    except httpx.HTTPStatusError as e:
      raise TranslationError(
        f"Translation rejected with status {e.response.status_code}: {e.response.text[:200]}"
      ) from e
    except httpx.HTTPError as e:
      raise TranslationError(f"Translation request failed: {e}") from e
    except ValueError as e:
      raise TranslationError(f"Translation response was not JSON: {e}") from e

    try:
      translated = payload["translations"][0]["text"]
    except (KeyError, IndexError, TypeError) as e:
      raise TranslationError(f"Unexpected translation response: {str(payload)[:200]}") from e
    if not isinstance(translated, str):
      raise TranslationError(f"Unexpected translation response: {str(payload)[:200]}")

    self.logger.debug(
      "Translated",
      target=target,
      detected_source=payload["translations"][0].get("detected_source_language"),
    )
    return translated

  async def aclose(self) -> None:
    if self._owns_client:
      await self.client.aclose()
