"""Teammate roster written into each agent's working directory.

Agents learn who they can message from ``AGENTS.md``. The relay owns only
the block between its markers, so instructions a user keeps in the same
file survive every rewrite.
"""

import logging
from pathlib import Path
from typing import Mapping, Optional

from ..utils.atomic_io import write_text_atomic
from .config import AgentConfig, TeamConfig

logger = logging.getLogger(__name__)

TEAMMATES_FILENAME = "AGENTS.md"
BLOCK_START = "<!-- agent-relay:teammates -->"
BLOCK_END = "<!-- /agent-relay:teammates -->"


def _member_line(member_id: str, agents: Mapping[str, AgentConfig], agent_id: str, leader: str) -> str:
    agent = agents.get(member_id)
    line = f"- @{member_id}"
    if agent is not None:
        line += f" ({agent.name})"
    roles = []
    if member_id == leader:
        roles.append("leader")
    if member_id == agent_id:
        roles.append("you")
    if roles:
        line += f" [{', '.join(roles)}]"
    return line


def render_teammates(
    agent_id: str,
    agents: Mapping[str, AgentConfig],
    teams: Mapping[str, TeamConfig],
) -> Optional[str]:
    """Roster block for every team ``agent_id`` belongs to. None if it has no team."""
    sections = []
    for team_id, team in teams.items():
        if agent_id not in team.agents:
            continue
        lines = [f"## Team @{team_id} ({team.name})", ""]
        lines.extend(_member_line(m, agents, agent_id, team.leader_agent) for m in team.agents)
        sections.append("\n".join(lines))

    if not sections:
        return None

    header = (
        "# Teammates\n\n"
        "To message a teammate, put a tag anywhere in your reply:\n\n"
        "    [@agent_id: message]\n\n"
        "Each tag is delivered to that teammate on its own, and their reply joins "
        "the conversation. Only mention a teammate when you need their help."
    )
    body = "\n\n".join([header, *sections])
    return f"{BLOCK_START}\n{body}\n{BLOCK_END}"


def _strip_block(text: str) -> str:
    start = text.find(BLOCK_START)
    end = text.find(BLOCK_END, start)
    if start == -1 or end == -1:
        return text
    return text[:start] + text[end + len(BLOCK_END):]


def update_teammates_file(
    working_dir: Path,
    agent_id: str,
    agents: Mapping[str, AgentConfig],
    teams: Mapping[str, TeamConfig],
) -> Optional[Path]:
    """Rewrite the relay's roster block in ``AGENTS.md``.

    An agent outside every team gets its old block removed, and the file
    too if nothing else was in it. Returns the file path when a roster was
    written.
    """
    path = working_dir / TEAMMATES_FILENAME
    existing = path.read_text(encoding="utf-8") if path.exists() else ""
    rest = _strip_block(existing).strip("\n")
    block = render_teammates(agent_id, agents, teams)

    if block is None:
        if BLOCK_START not in existing:
            return None
        if rest.strip():
            write_text_atomic(path, rest + "\n")
        else:
            path.unlink()
        logger.debug(f"Removed teammate roster for agent {agent_id}")
        return None

    content = f"{block}\n\n{rest}\n" if rest.strip() else f"{block}\n"
    if content != existing:
        write_text_atomic(path, content)
        logger.debug(f"Updated {TEAMMATES_FILENAME} for agent {agent_id}")
    return path
