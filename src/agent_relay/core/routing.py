"""Message routing: @agent / @team prefixes, team lookup and teammate mentions.

Agents address each other inside a response with mention tags::

    [@reviewer: please check the migration]
    [@coder,tester: rebase onto main first]

Each surviving mention becomes an internal queue message for the target.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from .config import AgentConfig, TeamConfig

logger = logging.getLogger(__name__)

DEFAULT_AGENT_ID = "default"

ROUTING_PREFIX_RE = re.compile(r"^@(\S+)\s+([\s\S]*)$")
MENTION_TAG_RE = re.compile(r"\[@(\S+?):\s*([\s\S]*?)\]")

RESET_FLAG_NAME = "reset_flag"


@dataclass(frozen=True)
class RoutingResult:
    agent_id: str
    message: str
    is_team: bool = False


@dataclass(frozen=True)
class TeamContext:
    team_id: str
    team: TeamConfig


@dataclass(frozen=True)
class Mention:
    teammate_id: str
    message: str


def _lookup_ci(table: Mapping[str, object], key: str) -> Optional[str]:
    """Case-insensitive key lookup; exact match wins."""
    if key in table:
        return key
    lowered = key.lower()
    for candidate in table:
        if candidate.lower() == lowered:
            return candidate
    return None


def parse_agent_routing(
    raw_message: str,
    agents: Mapping[str, AgentConfig],
    teams: Mapping[str, TeamConfig],
) -> RoutingResult:
    """Resolve an ``@target`` prefix to an agent id.

    ``target`` may be an agent id, a team id (routes to the team leader) or an
    agent display name. Anything else goes to the default agent with the
    message untouched.
    """
    match = ROUTING_PREFIX_RE.match(raw_message.strip())
    if not match:
        return RoutingResult(agent_id=DEFAULT_AGENT_ID, message=raw_message)

    target, body = match.group(1), match.group(2)

    agent_id = _lookup_ci(agents, target)
    if agent_id is not None:
        return RoutingResult(agent_id=agent_id, message=body)

    team_id = _lookup_ci(teams, target)
    if team_id is not None:
        return RoutingResult(agent_id=teams[team_id].leader_agent, message=body, is_team=True)

    lowered = target.lower()
    for candidate_id, agent in agents.items():
        if agent.name.lower() == lowered:
            return RoutingResult(agent_id=candidate_id, message=body)

    return RoutingResult(agent_id=DEFAULT_AGENT_ID, message=raw_message)


def resolve_lane_agent(
    agent_id: str,
    agents: Mapping[str, AgentConfig],
) -> str:
    """Unknown targets fall back to ``default``, then to the first configured agent."""
    if agent_id in agents:
        return agent_id
    if DEFAULT_AGENT_ID in agents:
        return DEFAULT_AGENT_ID
    return next(iter(agents), DEFAULT_AGENT_ID)


def find_team_for_agent(
    agent_id: str, teams: Mapping[str, TeamConfig]
) -> Optional[TeamContext]:
    """First team (in settings order) that lists ``agent_id`` as a member."""
    for team_id, team in teams.items():
        if agent_id in team.agents:
            return TeamContext(team_id=team_id, team=team)
    return None


def find_team_led_by(
    agent_id: str, teams: Mapping[str, TeamConfig]
) -> Optional[TeamContext]:
    for team_id, team in teams.items():
        if team.leader_agent == agent_id and agent_id in team.agents:
            return TeamContext(team_id=team_id, team=team)
    return None


def extract_teammate_mentions(
    response: str,
    current_agent_id: str,
    agents: Mapping[str, AgentConfig],
    teams: Optional[Mapping[str, TeamConfig]] = None,
) -> List[Mention]:
    """Collect mention tags addressed to other known agents.

    A team id resolves to that team's leader. Self-mentions and unknown ids
    are ignored, and each target is kept once (first message wins).
    """
    teams = teams or {}
    mentions: List[Mention] = []
    seen: Dict[str, bool] = {}

    for match in MENTION_TAG_RE.finditer(response):
        targets, body = match.group(1), match.group(2).strip()
        for raw_target in targets.split(","):
            raw_target = raw_target.strip().lstrip("@")
            if not raw_target:
                continue

            target = _lookup_ci(agents, raw_target)
            if target is None:
                team_id = _lookup_ci(teams, raw_target)
                if team_id is not None:
                    target = teams[team_id].leader_agent
            if target is None or target not in agents:
                logger.debug(f"Ignoring mention of unknown agent @{raw_target} from @{current_agent_id}")
                continue
            if target == current_agent_id or target in seen:
                continue

            seen[target] = True
            mentions.append(Mention(teammate_id=target, message=body))

    return mentions


def reset_flag_path(agent_id: str, workspace_path: Path) -> Path:
    return workspace_path / agent_id / RESET_FLAG_NAME
