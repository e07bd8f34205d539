"""Provider backend implementations."""

from .base import InvocationRequest, ProviderBackend, ProviderError, ProviderTimeoutError
from .claude_cli_backend import ClaudeCLIBackend
from .codex_cli_backend import CodexCLIBackend
from .ollama_backend import OllamaBackend

__all__ = [
    "InvocationRequest",
    "ProviderBackend",
    "ProviderError",
    "ProviderTimeoutError",
    "ClaudeCLIBackend",
    "CodexCLIBackend",
    "OllamaBackend",
]
