"""Base provider backend interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional


class ProviderError(Exception):
    """A provider call failed. ``status_code`` feeds the failure classifier."""

    def __init__(self, message: str, provider: str, status_code: Optional[int] = None):
        self.provider = provider
        self.status_code = status_code
        super().__init__(message)


class ProviderTimeoutError(ProviderError):
    """The call exceeded its wall-clock timeout and was cancelled or killed."""

    def __init__(self, message: str, provider: str):
        super().__init__(message, provider, status_code=408)


@dataclass
class InvocationRequest:
    """One call to a provider on behalf of an agent."""
    agent_id: str
    message: str
    model_id: str = ""
    working_dir: Optional[str] = None
    env: Optional[Dict[str, str]] = None  # Already scrubbed; None = inherit
    continue_conversation: bool = True


class ProviderBackend(ABC):
    """Abstract base class for provider backends."""

    provider: str = ""
    spawns_subprocess: bool = False

    @abstractmethod
    async def complete(self, request: InvocationRequest) -> str:
        """
        Run the request and return the agent's reply text.

        Raises:
            ProviderError: On any provider failure.
            ProviderTimeoutError: When the call exceeded its timeout.
        """
        pass

    def build_args(self, request: InvocationRequest) -> List[str]:
        """CLI arguments (without the executable) for subprocess backends."""
        return []
