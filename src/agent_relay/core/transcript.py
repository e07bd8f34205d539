"""Markdown transcripts of completed team conversations."""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping, Optional

from ..utils.atomic_io import write_text_atomic
from .config import AgentConfig

logger = logging.getLogger(__name__)

SECTION_RULE = "------"


def transcript_filename(now: datetime) -> str:
    """``2026-10-19_14-03-22-117.md`` style name, sortable and filesystem safe."""
    stamp = now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3]
    return stamp.replace(":", "-").replace(".", "-").replace("T", "_") + ".md"


def render_transcript(conversation, agents: Mapping[str, AgentConfig], now: datetime) -> str:
    team_ctx = conversation.team_context
    lines = [
        f"# Team Conversation: {team_ctx.team.name} (@{team_ctx.team_id})",
        f"**Date:** {now.astimezone(timezone.utc).isoformat()}",
        f"**Channel:** {conversation.channel} | **Sender:** {conversation.sender}",
        f"**Messages:** {conversation.total_messages}",
        "",
        SECTION_RULE,
        "",
        "## User Message",
        "",
        conversation.original_message,
        "",
    ]

    for step in conversation.responses:
        agent = agents.get(step.agent_id)
        label = f"{agent.name} (@{step.agent_id})" if agent else f"@{step.agent_id}"
        lines.extend([SECTION_RULE, "", f"## {label}", "", step.response, ""])

    return "\n".join(lines)


def write_transcript(
    chats_dir: Path,
    conversation,
    agents: Mapping[str, AgentConfig],
    now: Optional[datetime] = None,
) -> Optional[Path]:
    """Write ``chats/<teamId>/<timestamp>.md``. Failures are logged, not raised."""
    now = now or datetime.now(timezone.utc)
    team_dir = chats_dir / conversation.team_context.team_id
    path = team_dir / transcript_filename(now)

    try:
        write_text_atomic(path, render_transcript(conversation, agents, now))
    except OSError as e:
        logger.error(f"Failed to save chat history for {conversation.id}: {e}")
        return None

    logger.info(f"Chat history saved to {path}")
    return path
