"""Claude CLI subprocess backend implementation."""

import logging
from typing import List

from ..core.config import DEFAULT_AGENT_TIMEOUT_SECONDS
from ..safeguards.shell_guard import truncate_output
from ..utils.subprocess_utils import CommandTimeoutError, run_command
from .base import InvocationRequest, ProviderBackend, ProviderError, ProviderTimeoutError

logger = logging.getLogger(__name__)


class ClaudeCLIBackend(ProviderBackend):
    """Runs ``claude -p`` in the agent's working directory.

    Conversation continuity comes from the CLI itself (``-c``), which resumes
    the most recent session in the working directory.
    """

    provider = "anthropic"
    spawns_subprocess = True

    def __init__(self, executable: str = "claude", timeout: int = DEFAULT_AGENT_TIMEOUT_SECONDS):
        self.executable = executable
        self.timeout = timeout

    def build_args(self, request: InvocationRequest) -> List[str]:
        args = ["--dangerously-skip-permissions"]
        if request.model_id:
            args.extend(["--model", request.model_id])
        if request.continue_conversation:
            args.append("-c")
        args.extend(["-p", request.message])
        return args

    async def complete(self, request: InvocationRequest) -> str:
        if not request.continue_conversation:
            logger.info(f"Resetting Claude conversation for agent: {request.agent_id}")

        cmd = [self.executable] + self.build_args(request)
        try:
            result = await run_command(
                cmd,
                cwd=request.working_dir,
                env=request.env,
                timeout=self.timeout,
            )
        except CommandTimeoutError:
            raise ProviderTimeoutError(
                f"Agent timed out after {self.timeout}s", self.provider
            )
        except OSError as e:
            raise ProviderError(f"Failed to start {self.executable}: {e}", self.provider) from e

        if not result.ok:
            error_msg = result.stderr.strip() or f"Command exited with code {result.returncode}"
            raise ProviderError(truncate_output(error_msg), self.provider)

        return result.stdout
