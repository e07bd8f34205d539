"""In-chat command intercept: /agent, /team, /reset.

Checked for external messages before routing; a handled command never
reaches an agent. ``!`` works as an alternative prefix to ``/``.
"""

import logging
import re
from pathlib import Path
from typing import Callable, Optional

from .config import Settings, expand_tilde
from .routing import reset_flag_path

logger = logging.getLogger(__name__)

AGENT_LIST_RE = re.compile(r"^[!/]agent$", re.IGNORECASE)
TEAM_LIST_RE = re.compile(r"^[!/]team$", re.IGNORECASE)
RESET_USAGE_RE = re.compile(r"^[!/]reset$", re.IGNORECASE)
RESET_RE = re.compile(r"^[!/]reset\s+(.+)$", re.IGNORECASE)

RESET_USAGE = "Usage: /reset @agent_id [@agent_id2 ...]\nSpecify which agent(s) to reset."


class CommandHandler:
    """Callable intercept: ``handler(text, workspace_path) -> reply or None``."""

    def __init__(self, settings_provider: Callable[[], Settings]):
        self.settings_provider = settings_provider

    def __call__(self, text: str, workspace_path: Path) -> Optional[str]:
        text = text.strip()

        if AGENT_LIST_RE.match(text):
            return self.agent_list()
        if TEAM_LIST_RE.match(text):
            return self.team_list()
        if RESET_USAGE_RE.match(text):
            return RESET_USAGE

        match = RESET_RE.match(text)
        if match:
            return self.reset(match.group(1), workspace_path)

        return None

    def agent_list(self) -> str:
        settings = self.settings_provider()
        if not settings.agents:
            return (
                "No agents configured. Using default single-agent mode.\n\n"
                "Configure agents in settings.yaml under 'agents:'."
            )

        lines = ["Available Agents:"]
        for agent_id, agent in settings.agents.items():
            lines.append("")
            lines.append(f"@{agent_id} - {agent.name}")
            lines.append(f"  Provider: {agent.provider}/{agent.model}")
        lines.append("")
        lines.append("Usage: Start your message with @agent_id to route to a specific agent.")

        project = settings.get_active_project()
        if project:
            lines.append("")
            lines.append(f"Active project: {settings.active_project} ({project.name})")
        return "\n".join(lines)

    def team_list(self) -> str:
        settings = self.settings_provider()
        if not settings.teams:
            return "No teams configured.\n\nAdd teams in settings.yaml under 'teams:'."

        lines = ["Available Teams:"]
        for team_id, team in settings.teams.items():
            lines.append("")
            lines.append(f"@{team_id} - {team.name}")
            lines.append(f"  Agents: {', '.join(team.agents)}")
            lines.append(f"  Leader: @{team.leader_agent}")
        lines.append("")
        lines.append("Usage: Start your message with @team_id to route to a team.")
        return "\n".join(lines)

    def reset(self, args: str, workspace_path: Path) -> str:
        """Write a reset flag per named agent; the next invocation starts fresh."""
        agents = self.settings_provider().get_agents()
        workspace = Path(expand_tilde(str(workspace_path)))
        results = []

        for raw in args.split():
            agent_id = raw.lstrip("@").lower()
            if agent_id not in agents:
                results.append(f"Agent '{agent_id}' not found.")
                continue
            try:
                write_reset_flag(agent_id, workspace)
            except OSError as e:
                logger.error(f"Failed to write reset flag for {agent_id}: {e}")
                results.append(f"Could not reset @{agent_id}.")
                continue
            results.append(f"Reset @{agent_id} ({agents[agent_id].name}).")

        return "\n".join(results)


def write_reset_flag(agent_id: str, workspace_path: Path) -> Path:
    flag = reset_flag_path(agent_id, workspace_path)
    flag.parent.mkdir(parents=True, exist_ok=True)
    flag.write_text("reset")
    return flag
