import asyncio
import json

import pytest

from rollsync.config import SyncSettings
from rollsync.table import GameTable
from schemas.actor import AbilityScore, Actor, DiceMode


class FixedRandom:
    """Stands in for ``random``: every die shows ``value`` (capped at its faces)."""

    def __init__(self, value=1):
        self.value = value

    def randint(self, low, high):
        return max(low, min(high, self.value))


class RecordingTable(GameTable):
    def __init__(self):
        self.posted = []
        self.initiative = {}
        self.used_items = []
        self.hp_updates = []
        self.notifications = []
        self.evaluate = None
        self.fail_on_post = None

    def bind_evaluator(self, evaluate):
        self.evaluate = evaluate

    async def post_roll(self, actor, roll, flavor, roll_type=None, remote_roll_id=None):
        if self.fail_on_post:
            raise self.fail_on_post
        self.posted.append({
            "actor": actor.id,
            "formula": roll.formula,
            "total": roll.total,
            "flavor": flavor,
            "roll_type": roll_type,
            "remote_roll_id": remote_roll_id,
            "dice": [term.values for term in roll.dice],
        })

    async def set_initiative(self, actor, total):
        self.initiative[actor.id] = total
        return True

    async def use_item(self, actor, item_name):
        self.used_items.append((actor.id, item_name))

    async def update_hit_points(self, actor, hp):
        actor.hp = hp
        self.hp_updates.append((actor.id, hp))

    def notify(self, level, message):
        self.notifications.append((level, message))


class FakeSocket:
    """In-memory websocket: yields ``frames`` then closes cleanly or raises ``error``."""

    def __init__(self, frames=(), error=None, close_code=1000):
        self.frames = [f if isinstance(f, str) else json.dumps(f) for f in frames]
        self.error = error
        self.close_code = close_code
        self.sent = []
        self.closed_with = None

    async def send(self, data):
        self.sent.append(json.loads(data))

    async def close(self, code=1000, reason=""):
        self.closed_with = code
        self.close_code = code

    def __aiter__(self):
        return self._frames()

    async def _frames(self):
        for frame in self.frames:
            # Let other tasks run between frames like a real socket read
            await asyncio.sleep(0)
            yield frame
        if self.error is not None:
            raise self.error


class FakeConnector:
    def __init__(self, sockets=(), error=None):
        self.sockets = list(sockets)
        self.error = error
        self.urls = []

    async def __call__(self, url):
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        return self.sockets.pop(0)


@pytest.fixture
def settings():
    return SyncSettings(
        cobalt_cookie="cookie",
        campaign_id="1234",
        user_id="99",
        proxy_url="http://proxy.test",
        socket_url="wss://socket.test/v1",
        api_key="devkey",
    )


@pytest.fixture
def table():
    return RecordingTable()


@pytest.fixture
def aria():
    return Actor(
        id="actor-aria",
        name="Aria",
        remote_id="42",
        initiative_bonus=3,
        abilities={
            "str": AbilityScore(check=-1, save=-1),
            "dex": AbilityScore(check=4, save=6),
            "wis": AbilityScore(check=1, save=1),
        },
        skills={"ste": 6, "prc": 3},
        items={"Longsword +1": "1d20+6", "Fireball": "8d6"},
        hp=30,
        max_hp=30,
    )


@pytest.fixture
def goblin():
    return Actor(id="actor-goblin", name="Goblin", actor_type="npc", remote_id="77", dice_mode=DiceMode.MANUAL)


@pytest.fixture
def make_roll():
    """Factory for ``dice/roll/fulfilled`` payloads as the transport emits them."""

    def _make(action="Stealth", roll_type="check", dice=None, die_type="d20", entity_id="42",
              roll_id="roll-1", roll_kind="", constant=0, values=None, sets=None):
        dice = [14] if dice is None else dice
        if sets is None:
            sets = [{"dieType": die_type, "count": len(dice), "dice": [{"dieValue": v} for v in dice]}]
        roll = {
            "rollType": roll_type,
            "rollKind": roll_kind,
            "diceNotation": {"set": sets, "constant": constant},
        }
        if values is not None:
            roll["result"] = {"values": values}
        return {
            "action": action,
            "rollId": roll_id,
            "context": {"entityId": entity_id},
            "rolls": [roll],
            "eventType": "dice/roll/fulfilled",
            "id": roll_id,
        }

    return _make
