# rollsync/sync_manager.py

"""
Composition root for the roll sync engine.

``build_engine`` constructs every component in dependency order and wires
them together; nothing is looked up globally. ``SyncEngine`` owns the
transport lifecycle and feeds inbound messages through deduplication and
the message dispatcher, one at a time.
"""

import asyncio
import logging
import random
import time
from typing import Callable, Iterable, Optional

import httpx
import websockets

from rollsync.actors import ActorRegistry
from rollsync.bridge import RollBridge
from rollsync.character_sync import CharacterDataService, CharacterUpdateHandler, HitPointSync
from rollsync.config import SyncSettings, validate_settings
from rollsync.deduplicator import MessageDeduplicator, create_message_key
from rollsync.dice.strategies import (
    AbilityCheckRollStrategy,
    AttackRollStrategy,
    GenericRollStrategy,
    InitiativeRollStrategy,
    SaveRollStrategy,
)
from rollsync.dice.strategy_dispatcher import RollStrategyDispatcher
from rollsync.dice.substitution import RollBuilder
from rollsync.dispatcher import MessageDispatcher
from rollsync.errors import CredentialExpiredError
from rollsync.handlers import DiceRollMessageHandler
from rollsync.override import EvaluationOverride
from rollsync.prompts import DicePrompter, PromptBroker
from rollsync.proxy import ProxyClient
from rollsync.table import GameTable, JournalGameTable
from rollsync.transport import RemoteTransport
from schemas.actor import Actor

logger = logging.getLogger(__name__)


class SyncEngine:

    def __init__(self, settings: SyncSettings, actors: ActorRegistry, table: GameTable,
                 deduplicator: MessageDeduplicator, bridge: RollBridge,
                 message_dispatcher: MessageDispatcher, roll_dispatcher: RollStrategyDispatcher,
                 broker: PromptBroker, override: EvaluationOverride,
                 transport_factory: Callable[[SyncSettings], RemoteTransport]):
        self.settings = settings
        self.actors = actors
        self.table = table
        self.deduplicator = deduplicator
        self.bridge = bridge
        self.message_dispatcher = message_dispatcher
        self.roll_dispatcher = roll_dispatcher
        self.broker = broker
        self.override = override
        self.transport_factory = transport_factory
        self.transport: Optional[RemoteTransport] = None

    @property
    def connected(self) -> bool:
        return self.transport is not None and self.transport.is_connected

    async def connect(self) -> bool:
        """Open the remote connection; False when required settings are missing."""
        validation = validate_settings(self.settings)
        if not validation.is_valid:
            logger.warning(validation.message)
            self.table.notify("warn", validation.message)
            return False

        if self.transport is not None:
            await self.disconnect()

        logger.info(f"Connection attempt - campaign: {self.settings.campaign_id} user: {self.settings.user_id}")
        transport = self.transport_factory(self.settings)
        transport.on("message", self.handle_message)
        transport.on("connected", self._on_connected)
        transport.on("disconnected", self._on_disconnected)
        transport.on("credential_expired", self.handle_credential_expired)
        self.transport = transport

        await transport.connect()
        return True

    async def disconnect(self) -> None:
        transport, self.transport = self.transport, None
        if transport is not None:
            await transport.disconnect()
            transport.remove_all_listeners()

    async def reconnect(self) -> bool:
        if not self.settings.enabled:
            logger.info("Sync disabled, not reconnecting")
            return False
        await self.disconnect()
        return await self.connect()

    async def handle_message(self, message) -> None:
        message_key = create_message_key(message)
        if self.deduplicator.is_processed(message_key):
            logger.info(f"Skipping duplicate message {message_key}")
            return
        self.deduplicator.mark_processed(message_key)

        try:
            await self.message_dispatcher.dispatch(message)
        except Exception as e:
            logger.error(f"Error handling message {message_key}: {e}", exc_info=e)

    async def handle_credential_expired(self, error: CredentialExpiredError) -> None:
        logger.warning("Session cookie has expired or is invalid")
        self.table.notify(
            "error",
            "Roll Sync: your session cookie has expired. Update it in the settings and reconnect.",
        )
        await self.disconnect()

    def _on_connected(self) -> None:
        self.table.notify("info", "Connected to the remote platform")

    def _on_disconnected(self, info) -> None:
        if info.get("terminal"):
            self.table.notify("error", "Failed to connect to the remote platform after multiple attempts")
        else:
            self.table.notify("warn", "Disconnected from the remote platform")


def build_engine(settings: SyncSettings, actors: Iterable[Actor] = (), table: Optional[GameTable] = None,
                 http_client: Optional[httpx.AsyncClient] = None, connector: Callable = websockets.connect,
                 clock: Callable[[], float] = time.monotonic, sleep: Callable = asyncio.sleep,
                 rng=random) -> SyncEngine:
    registry = actors if isinstance(actors, ActorRegistry) else ActorRegistry(actors)
    table = table or JournalGameTable()

    deduplicator = MessageDeduplicator(settings.dedup_history)
    bridge = RollBridge(settings.cache_ttl, settings.processing_guard_delay, clock=clock)
    builder = RollBuilder(rng)
    proxy = ProxyClient(settings.proxy_url, settings.cobalt_cookie, client=http_client)

    roll_dispatcher = RollStrategyDispatcher()
    for strategy_cls in (InitiativeRollStrategy, SaveRollStrategy, AttackRollStrategy, AbilityCheckRollStrategy):
        roll_dispatcher.register(strategy_cls(builder, table))
    # Must stay last
    roll_dispatcher.register(GenericRollStrategy(builder, table))

    hit_points = HitPointSync(CharacterDataService(proxy, settings.campaign_id), registry, table)
    message_dispatcher = MessageDispatcher()
    message_dispatcher.register(CharacterUpdateHandler(hit_points))
    message_dispatcher.register(DiceRollMessageHandler(bridge, registry, roll_dispatcher, table))

    broker = PromptBroker()
    prompter = DicePrompter(broker, bridge, settings.auto_confirm_remote)
    override = EvaluationOverride(prompter, registry, rng)
    table.bind_evaluator(override.evaluate)

    def transport_factory(current: SyncSettings) -> RemoteTransport:
        return RemoteTransport(current, proxy=proxy, connector=connector, sleep=sleep)

    logger.info("Roll sync engine built")
    return SyncEngine(
        settings=settings,
        actors=registry,
        table=table,
        deduplicator=deduplicator,
        bridge=bridge,
        message_dispatcher=message_dispatcher,
        roll_dispatcher=roll_dispatcher,
        broker=broker,
        override=override,
        transport_factory=transport_factory,
    )
