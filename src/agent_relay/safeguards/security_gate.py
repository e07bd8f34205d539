"""Ordered security gate applied around agent invocations.

Stage order is fixed: injection stripping, then credential scrubbing for
inbound text; shell guard and environment scrubbing right before a
provider subprocess is spawned.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from ..core.config import AgentConfig, SecurityConfig
from .credential_scrubber import scrub_credentials
from .env_scrubber import scrub_env
from .input_sanitizer import sanitize
from .shell_guard import GuardResult, full_guard

logger = logging.getLogger(__name__)

# Stripped so the Claude CLI does not think it is nested inside another session
_NESTED_SESSION_VARS = ("CLAUDECODE",)


@dataclass
class GateResult:
    """Outcome of the inbound stages for one message."""
    content: str
    patterns_matched: List[str] = field(default_factory=list)
    credentials_found: List[str] = field(default_factory=list)

    @property
    def modified(self) -> bool:
        return bool(self.patterns_matched or self.credentials_found)


class SecurityGate:
    """Applies the four filters according to the security toggles."""

    def __init__(self, security: Optional[SecurityConfig] = None):
        self.security = security or SecurityConfig()

    def filter_inbound(self, content: str, message_id: str = "") -> GateResult:
        """Run injection stripping then credential scrubbing on external text."""
        result = GateResult(content=content)

        if self.security.input_sanitization_enabled:
            sanitized = sanitize(result.content)
            if sanitized.modified:
                logger.warning(
                    f"[SANITIZE] Stripped injection patterns from {message_id}: "
                    f"{', '.join(sanitized.patterns_matched)}"
                )
                result.content = sanitized.content
                result.patterns_matched = sanitized.patterns_matched

        if self.security.credential_scrubbing_enabled:
            scrubbed = scrub_credentials(result.content)
            if scrubbed.modified:
                logger.warning(
                    f"[CRED-SCRUB] Redacted credentials in {message_id}: "
                    f"{', '.join(scrubbed.credentials_found)}"
                )
                result.content = scrubbed.content
                result.credentials_found = scrubbed.credentials_found

        return result

    def shell_guard_active(self, agent: AgentConfig) -> bool:
        return self.security.shell_guard_enabled and agent.shell_guard_enabled

    def check_command(
        self,
        agent_id: str,
        agent: AgentConfig,
        args: Sequence[str],
        workspace_root: str,
    ) -> GuardResult:
        """Guard a CLI argument vector (without the executable) before spawning."""
        if not self.shell_guard_active(agent):
            return GuardResult(allowed=True)

        result = full_guard(" ".join(args), workspace_root)
        if not result.allowed:
            logger.warning(f"[SHELL-GUARD] Blocked invocation for @{agent_id}: {result.reason}")
        return result

    def subprocess_env(self, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """Scrubbed copy of ``base`` (default: the process environment)."""
        scrubbed = scrub_env(os.environ if base is None else base)
        if scrubbed.removed_keys:
            logger.debug(
                f"[ENV-SCRUB] Removed {len(scrubbed.removed_keys)} sensitive variable(s): "
                f"{', '.join(sorted(scrubbed.removed_keys))}"
            )
        env = scrubbed.env
        for key in _NESTED_SESSION_VARS:
            env.pop(key, None)
        return env
