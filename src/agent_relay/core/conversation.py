"""Team conversation state machine: fan-out, fan-in and delegation limits.

A conversation starts when a team member answers an external message. Each
mention tag in an answer fans out one internal message; each processed
branch then settles as::

    pending += mentions_enqueued - 1

and the conversation completes exactly when ``pending`` reaches zero. No
timer ever completes a conversation.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional, Set

from .config import AgentConfig, Settings
from .events import EventStream
from .message import Message, OutgoingResponse, now_ms
from .outbound import collect_files, finalize_response
from .routing import TeamContext, extract_teammate_mentions, find_team_for_agent
from .transcript import write_transcript

if TYPE_CHECKING:
    from ..queue.file_queue import FileQueue

logger = logging.getLogger(__name__)

RESPONSE_SEPARATOR = "\n\n------\n\n"


@dataclass
class ChainStep:
    agent_id: str
    response: str


@dataclass
class Conversation:
    id: str
    channel: str
    sender: str
    sender_id: Optional[str]
    original_message: str
    message_id: str
    team_context: TeamContext
    config_snapshot: Settings
    correlation_id: str
    max_messages: int
    pending: int = 1
    responses: List[ChainStep] = field(default_factory=list)
    files: Set[str] = field(default_factory=set)
    total_messages: int = 0
    start_time: int = field(default_factory=now_ms)
    outgoing_mentions: Dict[str, int] = field(default_factory=dict)
    agents_in_chain: Set[str] = field(default_factory=set)
    transcript_written: bool = False

    def aggregate(self) -> str:
        """Single answer as-is; several joined in completion order."""
        if len(self.responses) == 1:
            return self.responses[0].response
        return RESPONSE_SEPARATOR.join(
            f"@{step.agent_id}: {step.response}" for step in self.responses
        )


class ConversationEngine:
    """Owns the in-memory conversation table and the completion logic.

    All methods run on the dispatcher's event loop without awaiting, so
    table mutation is never interleaved.
    """

    def __init__(self, queue: "FileQueue", events: EventStream, block_mention_cycles: bool = False):
        self.queue = queue
        self.paths = queue.paths
        self.events = events
        self.block_mention_cycles = block_mention_cycles
        self.conversations: Dict[str, Conversation] = {}
        # Queue file name -> conversation id, kept until the file leaves processing/
        self.settled: Dict[str, str] = {}

    def get(self, conversation_id: Optional[str]) -> Optional[Conversation]:
        if not conversation_id:
            return None
        return self.conversations.get(conversation_id)

    def resume_settled(self, source: str) -> bool:
        """Finish a retried file whose branch was already settled.

        A failure after settlement (writing the final reply, deleting the
        processing file) sends the file back to incoming. Its mentions are
        already enqueued and counted, so it must not be settled again: only
        a completion that never got written is flushed now.
        """
        conversation_id = self.settled.get(source)
        if conversation_id is None:
            return False

        conv = self.conversations.get(conversation_id)
        if conv is not None and conv.pending == 0:
            logger.info(f"Retrying completion of conversation {conv.id}")
            self.complete(conv)
        return True

    def forget_settled(self, source: str) -> None:
        self.settled.pop(source, None)

    def start(
        self,
        message: Message,
        team_context: TeamContext,
        settings: Settings,
    ) -> Conversation:
        """Open a conversation with ``pending = 1`` for ``message`` itself.

        Settings are deep-copied so later config edits never reach an
        in-flight conversation.
        """
        conv = Conversation(
            id=f"{message.message_id}_{now_ms()}",
            channel=message.channel,
            sender=message.sender,
            sender_id=message.sender_id,
            original_message=message.content,
            message_id=message.message_id,
            team_context=team_context,
            config_snapshot=settings.model_copy(deep=True),
            correlation_id=str(uuid.uuid4()),
            max_messages=settings.queue.max_conversation_messages,
        )
        self.conversations[conv.id] = conv

        logger.info(
            f"Conversation started: {conv.id} (team: {team_context.team.name}, "
            f"correlation: {conv.correlation_id})"
        )
        self.events.emit(
            "team_chain_start",
            team_id=team_context.team_id,
            team_name=team_context.team.name,
            agents=list(team_context.team.agents),
            leader=team_context.team.leader_agent,
            correlation_id=conv.correlation_id,
        )
        return conv

    def pending_note(self, conv: Conversation) -> Optional[str]:
        """Note for an internal hop while sibling branches are still running.

        ``pending`` still counts the hop being processed, hence the - 1.
        """
        others = conv.pending - 1
        if others <= 0:
            return None
        return (
            f"[{others} other teammate response(s) are still being processed and will be "
            f"delivered when ready. Do not re-mention teammates who haven't responded yet.]"
        )

    def record_response(
        self,
        conv: Conversation,
        message: Message,
        agent_id: str,
        agent: AgentConfig,
        response: str,
        source: Optional[str] = None,
    ) -> Optional[OutgoingResponse]:
        """Settle one branch. Returns the final response if this completed the conversation.

        ``source`` names the queue file being processed; a retry of the same
        file goes through :meth:`resume_settled` instead of settling twice.
        """
        conv.responses.append(ChainStep(agent_id=agent_id, response=response))
        conv.total_messages += 1
        collect_files(response, self.paths.files, conv.files)

        snapshot = conv.config_snapshot
        mentions = extract_teammate_mentions(
            response, agent_id, snapshot.get_agents(), snapshot.get_teams()
        )
        mentions = self._apply_cycle_policy(conv, agent_id, mentions)
        conv.agents_in_chain.add(agent_id)

        current_depth = message.delegation_depth
        max_depth = agent.max_delegation_depth
        enqueued = 0

        if mentions and current_depth >= max_depth:
            logger.warning(
                f"[DELEGATION] Agent {agent_id} at depth {current_depth} (max: {max_depth}), "
                f"dropping {len(mentions)} mention(s)"
            )
        elif mentions:
            for mention in mentions:
                if conv.total_messages + enqueued >= conv.max_messages:
                    logger.warning(
                        f"Conversation {conv.id} hit max messages ({conv.max_messages}), "
                        f"not enqueuing further mentions"
                    )
                    break
                self._enqueue_hop(conv, message, agent_id, mention.teammate_id, mention.message)
                enqueued += 1

        if enqueued:
            conv.outgoing_mentions[agent_id] = conv.outgoing_mentions.get(agent_id, 0) + enqueued

        conv.pending += enqueued - 1
        if source is not None:
            self.settled[source] = conv.id

        if conv.pending == 0:
            return self.complete(conv)

        logger.info(f"Conversation {conv.id}: {conv.pending} branch(es) still pending")
        return None

    def _apply_cycle_policy(self, conv: Conversation, agent_id: str, mentions):
        kept = []
        for mention in mentions:
            if mention.teammate_id in conv.agents_in_chain:
                if self.block_mention_cycles:
                    logger.warning(
                        f"[DELEGATION] Dropping back-mention @{agent_id} -> @{mention.teammate_id} "
                        f"in {conv.id}"
                    )
                    continue
                logger.info(
                    f"[DELEGATION] Back-mention @{agent_id} -> @{mention.teammate_id} in {conv.id}"
                )
            kept.append(mention)
        return kept

    def _enqueue_hop(
        self,
        conv: Conversation,
        message: Message,
        from_agent: str,
        target: str,
        text: str,
    ) -> None:
        depth = message.delegation_depth + 1
        target_team = find_team_for_agent(target, conv.config_snapshot.get_teams())
        cross_team = target_team is not None and target_team.team_id != conv.team_context.team_id

        if cross_team:
            logger.info(
                f"[CROSS-TEAM] @{from_agent} -> @{target} "
                f"({conv.team_context.team_id} -> {target_team.team_id}) (depth: {depth})"
            )
        else:
            logger.info(f"@{from_agent} -> @{target} (depth: {depth})")
        self.events.emit(
            "chain_handoff",
            team_id=conv.team_context.team_id,
            from_agent=from_agent,
            to_agent=target,
            cross_team=cross_team,
            depth=depth,
        )

        internal = Message(
            channel=message.channel,
            sender=message.sender,
            sender_id=message.sender_id,
            content=f"[Message from teammate @{from_agent}]:\n{text}",
            message_id=message.message_id,
            agent=target,
            conversation_id=conv.id,
            from_agent=from_agent,
            delegation_depth=depth,
            correlation_id=conv.correlation_id,
        )
        self.queue.push_internal(internal)
        logger.info(f"Enqueued internal message: @{from_agent} -> @{target} (depth: {depth})")

    def complete(self, conv: Conversation) -> OutgoingResponse:
        """Aggregate, persist the transcript, write the reply and drop the conversation."""
        logger.info(
            f"Conversation {conv.id} complete: {len(conv.responses)} response(s), "
            f"{conv.total_messages} total message(s)"
        )
        self.events.emit(
            "team_chain_end",
            team_id=conv.team_context.team_id,
            total_steps=len(conv.responses),
            agents=[step.agent_id for step in conv.responses],
            correlation_id=conv.correlation_id,
        )

        # A retried completion must not write a second transcript
        if not conv.transcript_written:
            write_transcript(self.paths.chats, conv, conv.config_snapshot.get_agents())
            conv.transcript_written = True

        text, files = finalize_response(
            conv.aggregate(),
            self.paths.files,
            conv.config_snapshot.queue.long_response_threshold,
            known_files=conv.files,
        )
        outgoing = OutgoingResponse(
            channel=conv.channel,
            sender=conv.sender,
            sender_id=conv.sender_id,
            content=text,
            original_content=conv.original_message,
            message_id=conv.message_id,
            files=files,
        )
        self.queue.push_response(outgoing)

        logger.info(f"Response ready [{conv.channel}] {conv.sender} ({len(text)} chars)")
        self.events.emit(
            "response_ready",
            channel=conv.channel,
            sender=conv.sender,
            response_length=len(text),
            message_id=conv.message_id,
        )

        self.conversations.pop(conv.id, None)
        return outgoing

    def respond_direct(
        self,
        message: Message,
        agent_id: str,
        response: str,
        settings: Settings,
    ) -> OutgoingResponse:
        """Reply for an agent outside any team: no fan-out, no transcript."""
        text, files = finalize_response(
            response,
            self.paths.files,
            settings.queue.long_response_threshold,
            strip_mentions=False,
        )
        outgoing = OutgoingResponse(
            channel=message.channel,
            sender=message.sender,
            sender_id=message.sender_id,
            content=text,
            original_content=message.content,
            message_id=message.message_id,
            agent=agent_id,
            files=files,
        )
        self.queue.push_response(outgoing)

        logger.info(
            f"Response ready [{message.channel}] {message.sender} via agent:{agent_id} "
            f"({len(text)} chars)"
        )
        self.events.emit(
            "response_ready",
            channel=message.channel,
            sender=message.sender,
            agent_id=agent_id,
            response_length=len(text),
            message_id=message.message_id,
        )
        return outgoing
