"""Text generation over an OpenAI-compatible chat completions endpoint.

Provider failures are classified into the advisor's error taxonomy here; the raw
provider message is logged and never returned to callers.
"""

import logging
from typing import Dict, List, Optional

from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    OpenAIError,
    RateLimitError,
)

from .config import LLM_API_KEY, LLM_BASE_URL, LLM_TIMEOUT_S, MODEL_NAME
from .errors import TransientIOError, UpstreamQuotaExhaustedError, UpstreamRateLimitError

logger = logging.getLogger(__name__)

QUOTA_MARKERS = ("insufficient_quota", "quota", "credits")


class AbstractTextGenerator:
    """Interface for text generators."""

    async def complete(self, messages: List[Dict[str, str]]) -> str:
        raise NotImplementedError


def _is_quota_error(e: APIStatusError) -> bool:
    if e.status_code == 402:
        return True
    code = str(getattr(e, "code", "") or "").lower()
    text = str(getattr(e, "message", "") or e).lower()
    return code == "insufficient_quota" or any(marker in text for marker in QUOTA_MARKERS)


def classify_error(e: Exception) -> Exception:
    """Map an openai exception to the advisor error that should reach the caller."""
    if isinstance(e, RateLimitError):
        if _is_quota_error(e):
            return UpstreamQuotaExhaustedError()
        return UpstreamRateLimitError()
    if isinstance(e, APIStatusError):
        if e.status_code == 402:
            return UpstreamQuotaExhaustedError()
        if e.status_code == 429:
            return UpstreamRateLimitError()
        return TransientIOError()
    return TransientIOError()


class OpenAITextGenerator(AbstractTextGenerator):
    """Chat completions client. Automatic retries are disabled."""

    def __init__(
        self,
        api_key: str = LLM_API_KEY,
        base_url: Optional[str] = LLM_BASE_URL,
        model: str = MODEL_NAME,
        timeout: float = LLM_TIMEOUT_S,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.model = model
        self._api_key = api_key
        self._base_url = base_url
        self._timeout = timeout
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        # Created lazily so the module imports without credentials
        if self._client is None:
            if not self._api_key:
                raise RuntimeError("LLM_API_KEY (or OPENAI_API_KEY) is not set")
            self._client = AsyncOpenAI(
                api_key=self._api_key,
                base_url=self._base_url,
                timeout=self._timeout,
                max_retries=0,
            )
        return self._client

    async def complete(self, messages: List[Dict[str, str]]) -> str:
        try:
            response = await self.client.chat.completions.create(model=self.model, messages=messages)
        except (APITimeoutError, APIConnectionError) as e:
            logger.warning("Text generation unreachable: %s", e)
            raise TransientIOError() from e
        except OpenAIError as e:
            mapped = classify_error(e)
            logger.error("Text generation failed (%s): %s", mapped.category, e)
            raise mapped from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            logger.warning("Text generation returned an empty reply")
            return ""
        return content.strip()
