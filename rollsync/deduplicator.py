# rollsync/deduplicator.py

import logging
from collections import OrderedDict
from typing import Any, Dict

logger = logging.getLogger(__name__)


class MessageDeduplicator:
    """
    Bounded history of processed message keys.

    Eviction is strict FIFO once ``max_history`` is exceeded; looking a key
    up does not refresh it, and keys never expire by time.
    """

    def __init__(self, max_history: int = 50):
        self.max_history = max_history
        self._processed: "OrderedDict[str, None]" = OrderedDict()

    def is_processed(self, key: str) -> bool:
        return key in self._processed

    def mark_processed(self, key: str) -> None:
        if key in self._processed:
            return
        self._processed[key] = None
        while len(self._processed) > self.max_history:
            oldest, _ = self._processed.popitem(last=False)
            logger.debug(f"Evicted message key {oldest}")

    @property
    def processed_count(self) -> int:
        return len(self._processed)

    def clear(self) -> None:
        self._processed.clear()


def create_message_key(message: Dict[str, Any]) -> str:
    """``{characterId}-{eventType}-{messageId}`` for an emitted transport message."""
    data = message.get("data") if isinstance(message.get("data"), dict) else {}
    character = data.get("character") or message.get("character") or {}
    context = message.get("context") or {}
    character_id = (
        character.get("id")
        or message.get("characterId")
        or context.get("entityId")
        or message.get("entityId")
        or "unknown"
    )
    event_type = message.get("eventType") or message.get("type") or "unknown"
    message_id = message.get("id") or message.get("messageId") or message.get("rollId") or ""
    return f"{character_id}-{event_type}-{message_id}"


def create_roll_key(entity_id, action, roll_id) -> str:
    return f"{entity_id}-{action}-{roll_id}"
