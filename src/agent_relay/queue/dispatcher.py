"""Queue dispatcher: per-agent lanes over the directory queue.

Every poll tick lists queue/incoming oldest-first and chains each new file
onto the lane of the agent it targets. Lanes run concurrently with each
other; inside a lane a message starts only after the previous one has
finished, so one agent never sees interleaved conversation context.

All shared tables (lanes, the queued-file set, the conversation table) are
only touched from the event loop between awaits, so no locks are needed.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Callable, Dict, Optional, Set

from pydantic import ValidationError

from ..channels.base import ChannelPlugin, IncomingChannelMessage
from ..channels.registry import ChannelRegistry
from ..core.commands import CommandHandler
from ..core.config import RelayPaths, Settings, load_settings
from ..core.conversation import RESPONSE_SEPARATOR, ConversationEngine
from ..core.events import EventStream
from ..core.invoker import AgentInvoker
from ..core.message import Message, OutgoingResponse, ProcessingStatus
from ..core.processing_status import StatusStore
from ..core.routing import (
    DEFAULT_AGENT_ID,
    find_team_for_agent,
    find_team_led_by,
    parse_agent_routing,
    resolve_lane_agent,
)
from ..errors.failover import InvocationError
from ..safeguards.security_gate import SecurityGate
from .delivery import OutgoingDelivery
from .file_queue import FileQueue

logger = logging.getLogger(__name__)

GENERIC_ERROR_REPLY = (
    "Sorry, I encountered an error processing your request. Please check the queue logs."
)

CommandIntercept = Callable[[str, Path], Optional[str]]


class QueueDispatcher:
    """Owns the lane table, the queued-file set and the conversation engine."""

    def __init__(
        self,
        paths: RelayPaths,
        settings_provider: Optional[Callable[[], Settings]] = None,
        invoker: Optional[AgentInvoker] = None,
        gate: Optional[SecurityGate] = None,
        command_handler: Optional[CommandIntercept] = None,
        registry: Optional[ChannelRegistry] = None,
        events: Optional[EventStream] = None,
    ):
        paths.ensure()
        self.paths = paths
        self.settings_provider = settings_provider or (lambda: load_settings(paths.settings_file))

        settings = self.settings_provider()
        self.queue = FileQueue(paths)
        self.events = events or EventStream(paths.events)

        # An injected gate keeps its own toggles; ours follows the settings file
        self._owns_gate = gate is None
        self.gate = gate or SecurityGate(settings.security)
        self.invoker = invoker or AgentInvoker(self.gate, self.events)
        self.command_handler = command_handler or CommandHandler(self.settings_provider)

        self.engine = ConversationEngine(
            self.queue, self.events, block_mention_cycles=settings.queue.block_mention_cycles
        )
        self.status = StatusStore(paths.status, settings.queue.status_max_age_seconds)
        self.registry = registry or ChannelRegistry()
        self.delivery = OutgoingDelivery(self.queue, self.registry)

        self._lanes: Dict[str, asyncio.Task] = {}
        self._queued: Set[str] = set()
        self._running = False

    # -- channels ----------------------------------------------------------

    def register_channel(self, plugin: ChannelPlugin) -> None:
        """Register a plugin and bridge its incoming messages into the queue."""
        self.registry.register(plugin)
        plugin.on_message(self._on_channel_message)
        plugin.on_ready(lambda: logger.info(f"[{plugin.id}] {plugin.meta.name or plugin.id} connected"))
        plugin.on_error(lambda err: logger.warning(f"[{plugin.id}] {err}"))

    def _on_channel_message(self, msg: IncomingChannelMessage) -> None:
        self.queue.push_from_channel(
            msg.channel_id,
            msg.chat_id,
            msg.content,
            sender_name=msg.sender_name,
            sender_id=msg.sender_id,
            timestamp=msg.timestamp,
        )

    # -- lanes -------------------------------------------------------------

    def _settings_for(self, message: Message, settings: Settings) -> Settings:
        """Internal hops of a live conversation resolve against its snapshot."""
        conv = self.engine.get(message.conversation_id) if message.is_internal else None
        return conv.config_snapshot if conv else settings

    def lane_for(self, path: Path) -> str:
        """Target agent id for a file, read without claiming or modifying it."""
        message = self.queue.peek(path)
        if message is None:
            return DEFAULT_AGENT_ID

        settings = self._settings_for(message, self.settings_provider())
        agents = settings.get_agents()
        if message.agent and message.agent in agents:
            return message.agent

        routing = parse_agent_routing(message.content, agents, settings.get_teams())
        return resolve_lane_agent(routing.agent_id, agents)

    def poll_once(self) -> int:
        """Schedule every new incoming file onto its lane. Returns the count scheduled."""
        scheduled = 0
        for path in self.queue.list_incoming():
            if path.name in self._queued:
                continue
            self._queued.add(path.name)

            lane = self.lane_for(path)
            previous = self._lanes.get(lane)
            self._lanes[lane] = asyncio.create_task(self._run_in_lane(lane, previous, path))
            scheduled += 1

        if scheduled:
            logger.debug(f"Scheduled {scheduled} message(s) across {len(self._lanes)} lane(s)")
        return scheduled

    async def _run_in_lane(self, lane: str, previous: Optional[asyncio.Task], path: Path) -> None:
        try:
            if previous is not None:
                await asyncio.wait([previous])
            await self._process_file(path)
        except Exception as e:
            logger.error(f"Error processing message for agent {lane}: {e}", exc_info=True)
        finally:
            self._queued.discard(path.name)
            if self._lanes.get(lane) is asyncio.current_task():
                del self._lanes[lane]

    async def drain(self) -> None:
        """Wait until every scheduled lane has finished."""
        while self._lanes:
            await asyncio.wait(list(self._lanes.values()))

    # -- processing --------------------------------------------------------

    async def _process_file(self, incoming_path: Path) -> None:
        processing_path = self.queue.claim(incoming_path)
        if processing_path is None:
            logger.debug(f"{incoming_path.name} already claimed, skipping")
            return

        try:
            message = self.queue.load_message(processing_path)
        except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as e:
            self.queue.discard(processing_path, f"({e.__class__.__name__})")
            return
        except OSError as e:
            logger.error(f"Could not read {processing_path.name}: {e}")
            self.queue.release(processing_path)
            return

        try:
            await self._handle_message(processing_path, message)
        except Exception as e:
            logger.error(f"Processing error for {processing_path.name}: {e}", exc_info=True)
            self.queue.release(processing_path)

    def _refresh(self, settings: Settings) -> None:
        if self._owns_gate:
            self.gate.security = settings.security
        self.engine.block_mention_cycles = settings.queue.block_mention_cycles
        self.status.max_age_ms = settings.queue.status_max_age_seconds * 1000

    async def _handle_message(self, processing_path: Path, message: Message) -> None:
        if self.engine.resume_settled(processing_path.name):
            self._finish(processing_path)
            return

        settings = self.settings_provider()
        self._refresh(settings)
        log_ctx = {"message_id": message.message_id}

        if message.is_internal:
            logger.info(
                f"Processing [internal] @{message.from_agent} -> @{message.agent}: "
                f"{message.content[:50]}...",
                extra=log_ctx,
            )
        else:
            logger.info(
                f"Processing [{message.channel}] from {message.sender}: {message.content[:50]}...",
                extra=log_ctx,
            )
            self.events.emit(
                "message_received",
                channel=message.channel,
                sender=message.sender,
                message=message.content[:120],
                message_id=message.message_id,
            )

            gated = self.gate.filter_inbound(message.content, message.message_id)
            if gated.modified:
                message.content = gated.content
                self.queue.rewrite(processing_path, message)

            reply = self.command_handler(message.content, settings.workspace_path)
            if reply is not None:
                logger.info(f"Command handled: {message.content[:40]}", extra=log_ctx)
                self.queue.push_response(OutgoingResponse(
                    channel=message.channel,
                    sender=message.sender,
                    sender_id=message.sender_id,
                    content=reply,
                    original_content=message.content,
                    message_id=message.message_id,
                ))
                self.queue.complete(processing_path)
                return

        conv = self.engine.get(message.conversation_id) if message.is_internal else None
        lookup = conv.config_snapshot if conv else settings
        agents = lookup.get_agents()
        teams = lookup.get_teams()

        is_team = False
        if message.agent and message.agent in agents:
            agent_id, text = message.agent, message.content
        else:
            routing = parse_agent_routing(message.content, agents, teams)
            agent_id, text, is_team = routing.agent_id, routing.message, routing.is_team
        if agent_id not in agents:
            agent_id, text = resolve_lane_agent(agent_id, agents), message.content

        agent = agents[agent_id]
        log_ctx["agent_id"] = agent_id
        logger.info(
            f"Routing to agent: {agent.name} ({agent_id}) [{agent.provider}/{agent.model}]",
            extra=log_ctx,
        )
        if not message.is_internal:
            self.events.emit(
                "agent_routed",
                agent_id=agent_id,
                agent_name=agent.name,
                provider=agent.provider,
                model=agent.model,
                is_team_routed=is_team,
            )

        if conv is not None:
            team_context = conv.team_context
            note = self.engine.pending_note(conv)
            if note:
                text += RESPONSE_SEPARATOR + note
        else:
            team_context = (find_team_led_by(agent_id, teams) if is_team else None) or find_team_for_agent(
                agent_id, teams
            )

        response = await self._invoke(message, agent_id, agent, text, lookup, settings)

        if team_context is None:
            self.engine.respond_direct(message, agent_id, response, settings)
        else:
            if conv is None:
                conv = self.engine.start(message, team_context, settings)
                message.correlation_id = conv.correlation_id
            self.engine.record_response(
                conv, message, agent_id, agent, response, source=processing_path.name
            )

        self._finish(processing_path)

    def _finish(self, processing_path: Path) -> None:
        self.queue.complete(processing_path)
        self.engine.forget_settled(processing_path.name)

    async def _invoke(self, message, agent_id, agent, text, lookup, settings) -> str:
        self.events.emit(
            "chain_step_start",
            agent_id=agent_id,
            agent_name=agent.name,
            from_agent=message.from_agent,
        )

        # Status files are for waiting users, so internal hops never get one
        status_enabled = not message.is_internal and settings.processing_status_enabled
        if status_enabled:
            self.status.write(ProcessingStatus(
                message_id=message.message_id,
                agent_id=agent_id,
                agent_name=agent.name,
                channel=message.channel,
                sender=message.sender,
                chat_id=message.chat_id,
            ))

        try:
            response = await self.invoker.invoke(agent, agent_id, text, lookup)
        except InvocationError as e:
            logger.error(
                f"Agent {agent_id} failed ({e.failure.reason.value}, provider: {e.failure.provider})",
                extra={"agent_id": agent_id, "message_id": message.message_id},
            )
            response = GENERIC_ERROR_REPLY
        finally:
            if status_enabled:
                self.status.clear(message.message_id)

        self.events.emit(
            "chain_step_done",
            agent_id=agent_id,
            agent_name=agent.name,
            response_length=len(response),
        )
        return response

    # -- main loop ---------------------------------------------------------

    def log_agent_config(self, settings: Settings) -> None:
        agents = settings.get_agents()
        logger.info(f"Loaded {len(agents)} agent(s):")
        for agent_id, agent in agents.items():
            logger.info(
                f"  {agent_id}: {agent.name} [{agent.provider}/{agent.model}] "
                f"cwd={agent.working_directory or settings.workspace_path / agent_id}"
            )

        teams = settings.get_teams()
        if teams:
            logger.info(f"Loaded {len(teams)} team(s):")
            for team_id, team in teams.items():
                logger.info(
                    f"  {team_id}: {team.name} [agents: {', '.join(team.agents)}] "
                    f"leader={team.leader_agent}"
                )

    async def run(self) -> None:
        """
        Poll until stopped.

        Orphans from a previous crash are moved back to incoming/ before the
        first tick. On stop, channels are disconnected and lanes already
        dispatched run to completion.
        """
        self._running = True
        recovered = self.queue.recover_orphans()
        if recovered:
            logger.info(f"Recovered {len(recovered)} orphaned file(s) from processing/")

        settings = self.settings_provider()
        logger.info(f"Queue processor started, watching {self.queue.incoming_dir}")
        self.log_agent_config(settings)
        self.events.emit(
            "processor_start",
            agents=list(settings.get_agents()),
            teams=list(settings.get_teams()),
        )

        await self.registry.connect_enabled(settings.channels.enabled)

        poll_interval = settings.queue.poll_interval
        while self._running:
            # A failed tick is retried on the next one; only stop() ends the loop
            try:
                self.poll_once()
                await self.delivery.deliver_once()
                poll_interval = self.settings_provider().queue.poll_interval
            except Exception as e:
                logger.error(f"Queue processing error: {e}", exc_info=True)
            await asyncio.sleep(poll_interval)

        logger.info("Shutting down queue processor...")
        await self.registry.disconnect_all()
        await self.drain()

    def stop(self) -> None:
        self._running = False
        self.delivery.shutdown()
