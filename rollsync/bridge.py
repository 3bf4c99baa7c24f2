# rollsync/bridge.py

"""
Subscription/cache bridge between the remote roll stream and dice prompts.

A prompt may open before or after its remote roll arrives. Rolls that arrive
first are cached under ``(entity_id, action)`` for a short time; prompts that
open first subscribe and wait. Every inbound roll is offered to every pending
subscription, but an offer can only be claimed once, so a single roll never
fills two prompts.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from schemas.wire import RollPayload

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str]


class RollOffer:
    """One inbound roll as seen by the subscriptions; ``claim()`` wins once."""

    def __init__(self, payload: RollPayload):
        self.payload = payload
        self.claimed_by: Optional[str] = None

    @property
    def claimed(self) -> bool:
        return self.claimed_by is not None

    def claim(self, subscription_id: str) -> bool:
        if self.claimed_by is not None:
            return False
        self.claimed_by = subscription_id
        return True


# handler(subscription_id, offer) -> consumed
SubscriptionHandler = Callable[[str, RollOffer], bool]


@dataclass
class Subscription:
    handler: SubscriptionHandler
    once: bool = False
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass
class CacheEntry:
    payload: RollPayload
    received_at: float


def cache_key(entity_id, action) -> CacheKey:
    return (str(entity_id or ""), (action or "").lower())


class RollBridge:

    def __init__(self, cache_ttl: float = 30.0, processing_guard_delay: float = 5.0,
                 clock: Callable[[], float] = time.monotonic):
        self.cache_ttl = cache_ttl
        self.processing_guard_delay = processing_guard_delay
        self.clock = clock
        self._subscriptions: List[Subscription] = []
        self._cache: Dict[CacheKey, CacheEntry] = {}
        # key -> None while in flight, release time once finished
        self._processing: Dict[str, Optional[float]] = {}

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, handler: SubscriptionHandler, once: bool = False) -> str:
        subscription = Subscription(handler=handler, once=once)
        self._subscriptions.append(subscription)
        logger.debug(f"Subscription added: {subscription.id} (once={once})")
        return subscription.id

    def unsubscribe(self, subscription_id: str) -> bool:
        before = len(self._subscriptions)
        self._subscriptions = [s for s in self._subscriptions if s.id != subscription_id]
        removed = len(self._subscriptions) < before
        if removed:
            logger.debug(f"Subscription removed: {subscription_id}")
        return removed

    def clear_subscriptions(self) -> None:
        self._subscriptions = []

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    def offer(self, payload: RollPayload) -> bool:
        """
        Offer a roll to every pending subscription in order.

        Returns True when a subscription consumed it. A ``once`` subscription
        that consumed the roll is removed; a handler that raises is logged and
        treated as not consuming.
        """
        offer = RollOffer(payload)
        consumed = False

        for subscription in list(self._subscriptions):
            try:
                took = bool(subscription.handler(subscription.id, offer))
            except Exception as e:
                logger.error(f"Subscription {subscription.id} handler failed: {e}", exc_info=e)
                continue

            if not took:
                continue
            if offer.claimed_by not in (None, subscription.id):
                logger.debug(f"Subscription {subscription.id} matched a roll already claimed")
                continue

            consumed = True
            if subscription.once:
                self.unsubscribe(subscription.id)

        if consumed:
            logger.info(f"Roll {payload.roll_id} consumed by subscription {offer.claimed_by}")
        return consumed

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def cache_roll(self, payload: RollPayload, action: Optional[str] = None) -> None:
        """Cache under ``action`` when given, else the roll's own action."""
        self._evict_stale_rolls()
        key = cache_key(payload.entity_id, action or payload.action)
        self._cache[key] = CacheEntry(payload=payload, received_at=self.clock())
        logger.debug(f"Cached roll for {key}")

    def _live_entry(self, key: CacheKey) -> Optional[CacheEntry]:
        entry = self._cache.get(key)
        if entry is None:
            return None
        if self.clock() - entry.received_at > self.cache_ttl:
            del self._cache[key]
            logger.debug(f"Cached roll for {key} expired")
            return None
        return entry

    def get_cached_roll(self, entity_id, action) -> Optional[RollPayload]:
        """Return and remove the cached roll for this entity and action, if still fresh."""
        key = cache_key(entity_id, action)
        entry = self._live_entry(key)
        if entry is None:
            return None
        del self._cache[key]
        return entry.payload

    def has_cached_roll(self, entity_id, action) -> bool:
        return self._live_entry(cache_key(entity_id, action)) is not None

    def discard_cached_roll(self, entity_id, action) -> None:
        self._cache.pop(cache_key(entity_id, action), None)

    def _evict_stale_rolls(self) -> None:
        for key in list(self._cache):
            self._live_entry(key)

    @property
    def cached_count(self) -> int:
        self._evict_stale_rolls()
        return len(self._cache)

    # ------------------------------------------------------------------
    # Processing guard
    # ------------------------------------------------------------------

    def is_processing(self, key: str) -> bool:
        if key not in self._processing:
            return False
        release_at = self._processing[key]
        if release_at is not None and self.clock() >= release_at:
            del self._processing[key]
            return False
        return True

    def _release_expired_guards(self) -> None:
        now = self.clock()
        for key in [k for k, release_at in self._processing.items() if release_at is not None and now >= release_at]:
            del self._processing[key]

    @property
    def guard_count(self) -> int:
        self._release_expired_guards()
        return len(self._processing)

    def begin_processing(self, key: str) -> bool:
        """Mark ``key`` in flight; False when it already is (or is still within its grace period)."""
        self._release_expired_guards()
        if self.is_processing(key):
            return False
        self._processing[key] = None
        return True

    def finish_processing(self, key: str) -> None:
        if key in self._processing:
            self._processing[key] = self.clock() + self.processing_guard_delay
