"""Ollama backend over HTTP via litellm.

No subprocess is spawned, so neither the shell guard nor environment
scrubbing applies here.
"""

import asyncio
import logging

import litellm

from ..core.config import DEFAULT_AGENT_TIMEOUT_SECONDS
from .base import InvocationRequest, ProviderBackend, ProviderError, ProviderTimeoutError

logger = logging.getLogger(__name__)

EMPTY_RESPONSE = "Sorry, I could not generate a response from Ollama."


class OllamaBackend(ProviderBackend):
    """Single-turn chat completion against a local Ollama server."""

    provider = "ollama"
    spawns_subprocess = False

    def __init__(
        self,
        api_base: str = "http://localhost:11434",
        timeout: int = DEFAULT_AGENT_TIMEOUT_SECONDS,
    ):
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout

    async def complete(self, request: InvocationRequest) -> str:
        kwargs = {
            "model": f"ollama_chat/{request.model_id}",
            "messages": [{"role": "user", "content": request.message}],
            "api_base": self.api_base,
            "stream": False,
        }

        try:
            response = await asyncio.wait_for(
                litellm.acompletion(**kwargs),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            raise ProviderTimeoutError(
                f"Ollama call timed out after {self.timeout} seconds", self.provider
            )
        except Exception as e:
            logger.error(f"Ollama invocation failed: {e}")
            raise ProviderError(
                str(e), self.provider, status_code=getattr(e, "status_code", None)
            ) from e

        content = response.choices[0].message.content if response.choices else None
        return content or EMPTY_RESPONSE
