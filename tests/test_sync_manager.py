"""
Tests for the composition root and hit point sync.
"""

import asyncio
import json

import httpx

from rollsync.config import SyncSettings
from rollsync.dice.roll import Roll
from rollsync.dispatcher import MessageHandler
from rollsync.sync_manager import build_engine
from schemas.actor import DiceMode
from tests.conftest import FakeConnector, FakeSocket, FixedRandom, RecordingTable


def mock_proxy(character=None, status=200, auth_status=200, requests=None):
    def handler(request):
        if requests is not None:
            requests.append(request)
        if request.url.path == "/proxy/auth":
            return httpx.Response(auth_status, json={"token": "tok"})
        body = {"success": True, "ddb": {"character": character}} if character is not None else {"success": False}
        return httpx.Response(status, json=body)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def no_sleep(delay):
    return None


def engine_for(settings, table, actors, connector=None, **proxy_kwargs):
    return build_engine(
        settings,
        actors,
        table,
        http_client=mock_proxy(**proxy_kwargs),
        connector=connector or FakeConnector(),
        sleep=no_sleep,
        rng=FixedRandom(1),
    )


def update_message(character_id=42, event_type="character-sheet/character-update/fulfilled", message_id="m-1"):
    return {"characterId": character_id, "eventType": event_type, "id": message_id}


# ============================================================================
# ENGINE
# ============================================================================

def test_build_wires_evaluator_and_handler_order(settings, table, aria):
    engine = engine_for(settings, table, [aria])

    assert table.evaluate == engine.override.evaluate
    assert [type(h).__name__ for h in engine.message_dispatcher.handlers] == [
        "CharacterUpdateHandler",
        "DiceRollMessageHandler",
    ]
    assert type(engine.roll_dispatcher.handlers[-1]).__name__ == "GenericRollStrategy"


def test_connect_with_missing_settings_only_warns(table):
    engine = engine_for(SyncSettings(), table, [])

    assert asyncio.run(engine.connect()) is False
    assert engine.transport is None
    level, message = table.notifications[0]
    assert level == "warn"
    assert "CobaltSession cookie" in message and "Campaign ID" in message


def test_duplicate_messages_dispatch_once(settings, table, aria, make_roll):
    engine = engine_for(settings, table, [aria])

    async def deliver():
        await engine.handle_message(make_roll())
        await engine.handle_message(make_roll())

    asyncio.run(deliver())
    assert len(table.posted) == 1
    assert engine.deduplicator.processed_count == 1


def test_handler_failure_is_contained(settings, table, aria):
    class Exploding(MessageHandler):
        def can_handle(self, message):
            return True

        async def handle(self, message):
            raise RuntimeError("boom")

    engine = engine_for(settings, table, [aria])
    engine.message_dispatcher.clear()
    engine.message_dispatcher.register(Exploding())

    asyncio.run(engine.handle_message({"eventType": "anything", "id": "1"}))
    assert engine.deduplicator.is_processed("unknown-anything-1")


def test_remote_roll_end_to_end(settings, table, aria, make_roll):
    socket = FakeSocket(frames=[
        {"eventType": "authenticated"},
        {"eventType": "dice/roll/fulfilled", "rollId": "roll-1", "data": make_roll(dice=[12])},
        # Re-delivery of the same roll
        {"eventType": "dice/roll/fulfilled", "rollId": "roll-1", "data": make_roll(dice=[12])},
    ])
    engine = engine_for(settings, table, [aria], connector=FakeConnector([socket]))

    async def scenario():
        assert await engine.connect()
        await engine.transport.wait_closed()

    asyncio.run(scenario())

    assert [(p["flavor"], p["total"]) for p in table.posted] == [("Stealth Check", 18)]
    levels = [level for level, _ in table.notifications]
    assert levels == ["info", "warn"]


def test_expired_credential_notifies_and_disconnects(settings, table, aria):
    engine = engine_for(settings, table, [aria], auth_status=401)

    async def scenario():
        await engine.connect()
        transport = engine.transport
        await transport.wait_closed()

    asyncio.run(scenario())

    assert engine.transport is None
    assert table.notifications[-1][0] == "error"
    assert "expired" in table.notifications[-1][1]


def test_terminal_disconnect_is_reported(settings, table, aria):
    engine = engine_for(settings, table, [aria], connector=FakeConnector(error=OSError("down")))

    async def scenario():
        await engine.connect()
        await engine.transport.wait_closed()

    asyncio.run(scenario())
    assert table.notifications == [("error", "Failed to connect to the remote platform after multiple attempts")]


def test_reconnect_requires_enabled(settings, table, aria):
    engine = engine_for(settings, table, [aria])
    assert asyncio.run(engine.reconnect()) is False


# ============================================================================
# HIT POINT SYNC
# ============================================================================

def test_character_update_applies_hit_points(settings, table, aria):
    requests = []
    engine = engine_for(settings, table, [aria], character={"removedHitPoints": 7}, requests=requests)

    asyncio.run(engine.handle_message(update_message()))

    assert table.hp_updates == [("actor-aria", 23)]
    body = json.loads(requests[0].content)
    assert requests[0].url.path == "/proxy/character"
    assert body["characterId"] == "42"
    assert body["campaignId"] == "1234"
    assert body["cobalt"] == "cookie"


def test_hit_points_never_negative(settings, table, aria):
    engine = engine_for(settings, table, [aria], character={"removedHitPoints": 99})
    asyncio.run(engine.handle_message(update_message()))
    assert table.hp_updates == [("actor-aria", 0)]


def test_unchanged_hit_points_are_not_written(settings, table, aria):
    engine = engine_for(settings, table, [aria], character={"removedHitPoints": 0})
    asyncio.run(engine.handle_message(update_message()))
    assert table.hp_updates == []


def test_unmapped_character_skips_fetch(settings, table, aria):
    requests = []
    engine = engine_for(settings, table, [aria], character={"removedHitPoints": 3}, requests=requests)
    asyncio.run(engine.handle_message(update_message(character_id=555)))
    assert requests == []
    assert table.hp_updates == []


def test_failed_fetch_leaves_hit_points(settings, table, aria):
    engine = engine_for(settings, table, [aria], character={"removedHitPoints": 3}, status=500)
    asyncio.run(engine.handle_message(update_message()))

    engine = engine_for(settings, table, [aria])
    asyncio.run(engine.handle_message(update_message(message_id="m-2")))

    assert table.hp_updates == []


def test_plain_update_event_is_not_handled(settings, table, aria):
    requests = []
    engine = engine_for(settings, table, [aria], character={"removedHitPoints": 3}, requests=requests)
    asyncio.run(engine.handle_message(update_message(event_type="character-sheet/character-update")))
    assert requests == []


# ============================================================================
# REMOTE-MODE ATTACKS
# ============================================================================

class EvaluatingTable(RecordingTable):
    """Uses items the way a host does: evaluate the attack roll, then post it."""

    async def use_item(self, actor, item_name):
        await super().use_item(actor, item_name)
        roll = Roll(actor.items[item_name], options={"item_name": item_name})
        await self.evaluate(roll, actor=actor, item_name=item_name)
        await self.post_roll(actor, roll, f"{item_name} - Attack Roll", roll_type="attack")


class SteppingClock:
    """Every reading is 100s after the previous one, so cached rolls are always stale."""

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        self.now += 100.0
        return self.now


def attack_frame(make_roll, roll_id, value):
    roll = make_roll(action="Longsword", roll_type="to hit", dice=[value], roll_id=roll_id)
    return {"eventType": "dice/roll/fulfilled", "rollId": roll_id, "data": roll}


def run_remote_attack(settings, aria, frames, **build_kwargs):
    aria.dice_mode = DiceMode.REMOTE
    table = EvaluatingTable()
    engine = build_engine(
        settings, [aria], table,
        http_client=mock_proxy(),
        connector=FakeConnector([FakeSocket(frames=frames)]),
        sleep=no_sleep,
        rng=FixedRandom(1),
        **build_kwargs,
    )

    async def scenario():
        await engine.connect()
        await asyncio.wait_for(engine.transport.wait_closed(), timeout=5)
        await asyncio.wait_for(engine.roll_dispatcher.wait_background(), timeout=5)

    asyncio.run(scenario())
    return engine, table


def test_remote_attack_uses_roll_cached_under_item_name(settings, aria, make_roll):
    engine, table = run_remote_attack(settings, aria, [attack_frame(make_roll, "r1", 15)])

    assert [(p["flavor"], p["total"]) for p in table.posted] == [("Longsword +1 - Attack Roll", 21)]
    assert engine.broker.pending() == []
    assert engine.bridge.subscription_count == 0


def test_waiting_attack_prompt_does_not_block_later_frames(settings, aria, make_roll):
    frames = [attack_frame(make_roll, "r1", 15), attack_frame(make_roll, "r2", 18)]
    engine, table = run_remote_attack(settings, aria, frames, clock=SteppingClock())

    assert engine.deduplicator.processed_count == 2
    # The second roll fills the prompt the first one opened
    assert [(p["flavor"], p["total"]) for p in table.posted] == [("Longsword +1 - Attack Roll", 24)]
    assert engine.broker.pending() == []
    assert engine.bridge.subscription_count == 0
