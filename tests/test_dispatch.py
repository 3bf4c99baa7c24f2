"""
Tests for first-match dispatch and message deduplication.
"""

import asyncio

import pytest

from rollsync.deduplicator import MessageDeduplicator, create_message_key, create_roll_key
from rollsync.dice.strategies import RollStrategy
from rollsync.dice.strategy_dispatcher import RollStrategyDispatcher
from rollsync.bridge import RollBridge
from rollsync.dispatcher import MessageDispatcher, MessageHandler
from rollsync.errors import ContractViolation, HandlerError
from schemas.wire import RollPayload


class StubHandler(MessageHandler):
    def __init__(self, name, matches, calls, error=None):
        self.name = name
        self.matches = matches
        self.calls = calls
        self.error = error

    def can_handle(self, message):
        return self.matches

    async def handle(self, message):
        self.calls.append(self.name)
        if self.error:
            raise self.error


class StubStrategy(RollStrategy):
    def __init__(self, cached=False):
        super().__init__(builder=None, table=None)
        self.cached = cached
        self.handled = []

    def can_handle(self, payload):
        return True

    def uses_cache(self):
        return self.cached

    async def handle(self, actor, payload):
        self.handled.append(payload.roll_id)


# ============================================================================
# MESSAGE DISPATCHER
# ============================================================================

def test_first_matching_handler_wins():
    calls = []
    dispatcher = MessageDispatcher()
    dispatcher.register(StubHandler("A", False, calls))
    dispatcher.register(StubHandler("B", True, calls))
    dispatcher.register(StubHandler("C", True, calls))

    assert asyncio.run(dispatcher.dispatch({"eventType": "x"})) is True
    assert calls == ["B"]


def test_register_rejects_non_handlers():
    dispatcher = MessageDispatcher()
    with pytest.raises(ContractViolation):
        dispatcher.register(object())
    assert dispatcher.handlers == []


def test_no_match_returns_false():
    dispatcher = MessageDispatcher()
    dispatcher.register(StubHandler("A", False, []))
    assert asyncio.run(dispatcher.dispatch({"eventType": "unknown"})) is False


def test_handler_error_propagates_with_cause():
    calls = []
    boom = RuntimeError("boom")
    dispatcher = MessageDispatcher()
    dispatcher.register(StubHandler("A", True, calls, error=boom))
    dispatcher.register(StubHandler("B", True, calls))

    with pytest.raises(HandlerError) as exc_info:
        asyncio.run(dispatcher.dispatch({"eventType": "x"}))

    assert exc_info.value.original is boom
    assert exc_info.value.__cause__ is boom
    assert exc_info.value.handler_name == "StubHandler"
    assert calls == ["A"]


def test_clear_removes_handlers():
    dispatcher = MessageDispatcher()
    dispatcher.register(StubHandler("A", True, []))
    dispatcher.clear()
    assert dispatcher.handlers == []


# ============================================================================
# ROLL STRATEGY DISPATCHER
# ============================================================================

def test_roll_dispatcher_rejects_message_handlers():
    with pytest.raises(ContractViolation):
        RollStrategyDispatcher().register(StubHandler("A", True, []))


def test_roll_dispatcher_caches_before_handling(make_roll, aria):
    bridge = RollBridge()
    strategy = StubStrategy(cached=True)
    dispatcher = RollStrategyDispatcher()
    dispatcher.register(strategy)

    payload = RollPayload.from_message(make_roll(action="Longsword", roll_type="to hit"))
    assert asyncio.run(dispatcher.dispatch(aria, payload, bridge)) is True

    assert strategy.handled == ["roll-1"]
    assert bridge.has_cached_roll("42", "longsword")


def test_roll_dispatcher_skips_cache_when_not_requested(make_roll, aria):
    bridge = RollBridge()
    dispatcher = RollStrategyDispatcher()
    dispatcher.register(StubStrategy(cached=False))

    asyncio.run(dispatcher.dispatch(aria, RollPayload.from_message(make_roll()), bridge))
    assert bridge.cached_count == 0


# ============================================================================
# DEDUPLICATOR
# ============================================================================

def test_marked_key_is_processed():
    dedup = MessageDeduplicator()
    assert not dedup.is_processed("a")
    dedup.mark_processed("a")
    assert dedup.is_processed("a")


def test_fifo_eviction_after_capacity():
    dedup = MessageDeduplicator(max_history=50)
    for i in range(50):
        dedup.mark_processed(f"key-{i}")
    assert dedup.is_processed("key-0")

    dedup.mark_processed("key-50")
    assert not dedup.is_processed("key-0")
    assert dedup.is_processed("key-1")
    assert dedup.processed_count == 50


def test_lookup_does_not_refresh_key():
    dedup = MessageDeduplicator(max_history=2)
    dedup.mark_processed("a")
    dedup.mark_processed("b")
    assert dedup.is_processed("a")
    dedup.mark_processed("c")
    assert not dedup.is_processed("a")


def test_clear():
    dedup = MessageDeduplicator()
    dedup.mark_processed("a")
    dedup.clear()
    assert dedup.processed_count == 0


def test_message_keys(make_roll):
    assert create_message_key(make_roll()) == "42-dice/roll/fulfilled-roll-1"
    update = {"characterId": 42, "eventType": "character-sheet/character-update/fulfilled", "id": "m-9"}
    assert create_message_key(update) == "42-character-sheet/character-update/fulfilled-m-9"
    assert create_message_key({}) == "unknown-unknown-"
    assert create_roll_key("42", "Stealth", "roll-1") == "42-Stealth-roll-1"
