"""Codex CLI subprocess backend implementation."""

import json
import logging
from typing import List

from ..core.config import DEFAULT_AGENT_TIMEOUT_SECONDS
from ..safeguards.shell_guard import truncate_output
from ..utils.subprocess_utils import CommandTimeoutError, run_command
from .base import InvocationRequest, ProviderBackend, ProviderError, ProviderTimeoutError

logger = logging.getLogger(__name__)

EMPTY_RESPONSE = "Sorry, I could not generate a response from Codex."


def parse_codex_output(raw_output: str) -> str:
    """Extract the last ``agent_message`` from ``codex exec --json`` output.

    Lines that are not JSON (progress noise) are skipped.
    """
    response = ""
    for line in raw_output.strip().splitlines():
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(event, dict):
            continue
        item = event.get("item") or {}
        if event.get("type") == "item.completed" and item.get("type") == "agent_message":
            response = item.get("text", "")
    return response


class CodexCLIBackend(ProviderBackend):
    """Runs ``codex exec --json`` in the agent's working directory."""

    provider = "openai"
    spawns_subprocess = True

    def __init__(self, executable: str = "codex", timeout: int = DEFAULT_AGENT_TIMEOUT_SECONDS):
        self.executable = executable
        self.timeout = timeout

    def build_args(self, request: InvocationRequest) -> List[str]:
        args = ["exec"]
        if request.model_id:
            args.extend(["--model", request.model_id])
        args.extend([
            "--skip-git-repo-check",
            "--dangerously-bypass-approvals-and-sandbox",
            "--json",
            request.message,
        ])
        return args

    async def complete(self, request: InvocationRequest) -> str:
        if not request.continue_conversation:
            logger.info(f"Resetting Codex conversation for agent: {request.agent_id}")

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

        return parse_codex_output(result.stdout) or EMPTY_RESPONSE
