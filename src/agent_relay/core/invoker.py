"""Agent invocation: execution context, security checks and retry policy."""

import logging
from pathlib import Path
from typing import Dict, Optional

from ..errors.failover import (
    FORMAT_MAX_RETRIES,
    InvocationError,
    build_profile_key,
    classify_error,
    should_fallback,
    should_retry,
)
from ..llm.base import InvocationRequest, ProviderBackend
from ..llm.claude_cli_backend import ClaudeCLIBackend
from ..llm.codex_cli_backend import CodexCLIBackend
from ..llm.ollama_backend import OllamaBackend
from ..safeguards.security_gate import SecurityGate
from .config import AgentConfig, Settings, expand_tilde, resolve_model_id
from .events import EventStream
from .routing import reset_flag_path
from .teammates import update_teammates_file

logger = logging.getLogger(__name__)

SYSTEM_CONTEXT_FILENAME = "SYSTEM_CONTEXT.md"
BLOCKED_PREFIX = "[blocked]"


def _is_within(path: Path, base: Path) -> bool:
    return path == base or base in path.parents


def validate_path(resolved: Path, *allowed_bases: Path) -> Optional[Path]:
    """Return ``resolved`` if it lies inside one of ``allowed_bases``."""
    for base in allowed_bases:
        if _is_within(resolved, base.resolve()):
            return resolved
    return None


def _resolve_against(raw: str, workspace: Path) -> Path:
    candidate = Path(expand_tilde(raw))
    if not candidate.is_absolute():
        candidate = workspace / candidate
    return candidate.resolve()


def blocked_response(reason: str) -> str:
    return f"{BLOCKED_PREFIX} {reason}"


class AgentInvoker:
    """Resolves an agent's context and drives one provider call.

    Backends can be injected per provider (tests); otherwise they are built
    from ``settings.providers`` on every call so edits take effect.
    """

    def __init__(
        self,
        gate: SecurityGate,
        events: Optional[EventStream] = None,
        backends: Optional[Dict[str, ProviderBackend]] = None,
    ):
        self.gate = gate
        self.events = events
        self._backends = backends or {}

    def backend_for(self, provider: str, settings: Settings) -> ProviderBackend:
        if provider in self._backends:
            return self._backends[provider]

        providers = settings.providers
        if provider == "ollama":
            return OllamaBackend(providers.resolved_ollama_url(), providers.timeout_seconds)
        if provider == "openai":
            return CodexCLIBackend(providers.codex_executable, providers.timeout_seconds)
        return ClaudeCLIBackend(providers.claude_executable, providers.timeout_seconds)

    def resolve_working_dir(
        self, agent: AgentConfig, agent_id: str, settings: Settings
    ) -> Optional[Path]:
        """Effective working directory, or None if it escapes workspace and home.

        An active shared project wins over the agent's own directory; with
        neither configured the agent gets ``<workspace>/<agent_id>``.
        """
        workspace = settings.workspace_path
        agent_dir = workspace / agent_id
        agent_dir.mkdir(parents=True, exist_ok=True)

        project = settings.get_active_project()
        if project:
            raw = project.path
        else:
            raw = agent.working_directory

        if not raw:
            return agent_dir.resolve()

        resolved = validate_path(_resolve_against(raw, workspace), workspace, Path.home())
        if resolved is None:
            logger.error(f"[SEC] working_directory blocked, path escapes allowed boundary: {raw}")
        return resolved

    def _write_system_context(self, agent: AgentConfig, working_dir: Path) -> None:
        content = agent.system_prompt
        if content is None and agent.prompt_file:
            prompt_path = Path(expand_tilde(agent.prompt_file))
            if not prompt_path.is_absolute():
                prompt_path = working_dir / prompt_path
            if prompt_path.exists():
                content = prompt_path.read_text(encoding="utf-8")

        if content:
            (working_dir / SYSTEM_CONTEXT_FILENAME).write_text(content, encoding="utf-8")

    def _project_banner(self, agent: AgentConfig, workspace: Path) -> Optional[str]:
        if not agent.project_directory:
            return None

        resolved = validate_path(
            _resolve_against(agent.project_directory, workspace), workspace, Path.home()
        )
        if resolved is None:
            logger.warning(
                f"[SEC] project_directory blocked, path escapes allowed boundary: "
                f"{agent.project_directory}"
            )
            return None
        if not resolved.exists():
            return None
        return f"[Project Directory: {resolved}]\n\n"

    def _consume_reset_flag(self, agent_id: str, workspace: Path) -> bool:
        flag = reset_flag_path(agent_id, workspace)
        if not flag.exists():
            return False
        flag.unlink(missing_ok=True)
        logger.info(f"Resetting conversation for agent: {agent_id}")
        return True

    def _security_block(self, agent_id: str, reason: str) -> str:
        if self.events:
            self.events.emit("security_block", agent_id=agent_id, reason=reason)
        return blocked_response(reason)

    async def invoke(
        self,
        agent: AgentConfig,
        agent_id: str,
        message: str,
        settings: Settings,
    ) -> str:
        """
        Run ``message`` through the agent's provider and return the reply.

        Security blocks do not raise; they come back as a ``[blocked] ...``
        reply for the user.

        Raises:
            InvocationError: When the provider fails and the retry policy is exhausted.
        """
        workspace = settings.workspace_path
        working_dir = self.resolve_working_dir(agent, agent_id, settings)
        if working_dir is None:
            return self._security_block(
                agent_id, f"Agent {agent_id}: working directory is outside the allowed path boundary."
            )

        self._write_system_context(agent, working_dir)
        update_teammates_file(working_dir, agent_id, settings.get_agents(), settings.get_teams())
        should_reset = self._consume_reset_flag(agent_id, workspace)

        backend = self.backend_for(agent.provider, settings)
        request = InvocationRequest(
            agent_id=agent_id,
            message=message,
            model_id=resolve_model_id(agent.provider, agent.model),
            working_dir=str(working_dir),
            continue_conversation=not should_reset,
        )

        if backend.spawns_subprocess:
            # Guard the arguments as built from the raw message, before the banner
            guard = self.gate.check_command(
                agent_id, agent, backend.build_args(request), str(working_dir)
            )
            if not guard.allowed:
                return self._security_block(agent_id, f"Request blocked by shell guard. {guard.reason}")
            request.env = self.gate.subprocess_env()

        banner = self._project_banner(agent, workspace)
        if banner:
            request.message = banner + request.message

        logger.info(f"Invoking {backend.provider} for agent {agent_id} (model: {request.model_id or 'default'})")
        return await self._complete_with_policy(backend, request, agent)

    async def _complete_with_policy(
        self, backend: ProviderBackend, request: InvocationRequest, agent: AgentConfig
    ) -> str:
        retries = 0
        while True:
            try:
                return await backend.complete(request)
            except Exception as e:
                failure = classify_error(e, backend.provider)

                if should_retry(failure) and retries < FORMAT_MAX_RETRIES:
                    retries += 1
                    logger.warning(
                        f"[FAILOVER] {failure.reason.value} error from {backend.provider} "
                        f"(agent: {request.agent_id}), retrying once"
                    )
                    continue

                if should_fallback(failure):
                    profiles = [
                        build_profile_key(provider, agent.model) for provider in agent.fallback_providers
                    ]
                    logger.warning(
                        f"[FAILOVER] {failure.reason.value} error from {backend.provider} "
                        f"(agent: {request.agent_id}) is fallback-eligible; "
                        f"candidates: {', '.join(profiles) or 'none configured'}"
                    )

                logger.error(
                    f"{backend.provider} error (agent: {request.agent_id}): "
                    f"reason={failure.reason.value} status={failure.status_code} {failure.message}"
                )
                raise InvocationError(failure, request.agent_id) from e
