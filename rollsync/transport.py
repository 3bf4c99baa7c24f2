# rollsync/transport.py

"""
Streaming connection to the remote platform's game log.

``RemoteTransport`` exchanges the session cookie for a socket token through
the proxy, opens the websocket, authenticates, and re-emits the roll and
character-update events it recognizes as ``message`` events. Unexpected
closes reconnect with a linearly growing delay until the attempt cap, after
which a single terminal ``disconnected`` event is emitted.

Events and their arguments:

* ``connected``: none
* ``disconnected``: ``{"code": int | None, "terminal": bool}``
* ``message``: the event payload with ``eventType`` and ``id`` added
* ``credential_expired``: the ``CredentialExpiredError``
"""

import asyncio
import inspect
import json
import logging
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlencode

import websockets
from pydantic import ValidationError

from rollsync.config import SyncSettings
from rollsync.errors import CredentialExpiredError, TransportError
from rollsync.proxy import ProxyClient
from schemas.wire import (
    EVENT_AUTHENTICATED,
    EVENT_CHARACTER_UPDATE,
    EVENT_CHARACTER_UPDATE_FULFILLED,
    EVENT_DICE_ROLL_FULFILLED,
    AuthenticateData,
    AuthenticateMessage,
    SubscribeData,
    SubscribeMessage,
    WireEnvelope,
)

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000
INTERNAL_ERROR = 1011

EVENTS = ("connected", "disconnected", "message", "credential_expired")


class RemoteTransport:

    def __init__(self, settings: SyncSettings, proxy: Optional[ProxyClient] = None,
                 connector: Callable = websockets.connect, sleep: Callable = asyncio.sleep):
        self.settings = settings
        self.proxy = proxy or ProxyClient(settings.proxy_url, settings.cobalt_cookie)
        self.connector = connector
        self.sleep = sleep
        self.max_reconnect_attempts = settings.max_reconnect_attempts
        self.reconnect_delay = settings.reconnect_delay

        self.reconnect_attempts = 0
        self._ws = None
        self._task: Optional[asyncio.Task] = None
        self._closing = False
        self._terminal_reported = False
        self._listeners: Dict[str, List[Callable]] = {event: [] for event in EVENTS}

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def on(self, event: str, callback: Callable) -> None:
        if event not in self._listeners:
            raise ValueError(f"Unknown transport event: {event}")
        self._listeners[event].append(callback)

    def off(self, event: str, callback: Callable) -> None:
        if callback in self._listeners.get(event, []):
            self._listeners[event].remove(callback)

    def remove_all_listeners(self) -> None:
        self._listeners = {event: [] for event in EVENTS}

    async def _emit(self, event: str, *args) -> None:
        for callback in list(self._listeners[event]):
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Listener for {event} failed: {e}", exc_info=e)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def connect(self) -> None:
        """Start (or restart) the connection loop in the background."""
        if self.running:
            logger.info("Transport already running, disconnecting first")
            await self.disconnect()

        self._closing = False
        self._terminal_reported = False
        self.reconnect_attempts = 0
        self._task = asyncio.create_task(self._run())

    async def wait_closed(self) -> None:
        """Wait until the connection loop has stopped for good."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    async def disconnect(self) -> None:
        self._closing = True
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close(code=NORMAL_CLOSURE, reason="Manual disconnect")
            logger.info("Socket closed by client")

        task = self._task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        if ws is not None:
            await self._emit("disconnected", {"code": NORMAL_CLOSURE, "terminal": False})

    async def _run(self) -> None:
        while not self._closing:
            try:
                reconnect = await self._connect_once()
            except CredentialExpiredError as e:
                await self._emit("credential_expired", e)
                return
            except (TransportError, OSError, asyncio.TimeoutError, websockets.exceptions.InvalidHandshake,
                    websockets.exceptions.InvalidURI) as e:
                logger.error(f"Connection error: {e} ({type(e).__name__})")
                reconnect = True
            except Exception as e:
                logger.error(f"Unexpected transport failure: {e}", exc_info=e)
                await self._drop_socket()
                reconnect = True

            if self._closing or not reconnect:
                return
            if not await self._schedule_reconnect():
                return

    async def _schedule_reconnect(self) -> bool:
        if self.reconnect_attempts >= self.max_reconnect_attempts:
            logger.error("Max reconnection attempts reached")
            if not self._terminal_reported:
                self._terminal_reported = True
                await self._emit("disconnected", {"code": None, "terminal": True})
            return False

        self.reconnect_attempts += 1
        delay = self.reconnect_delay * self.reconnect_attempts
        logger.info(f"Reconnecting in {delay}s (attempt {self.reconnect_attempts})")
        await self.sleep(delay)
        return not self._closing

    async def _drop_socket(self) -> None:
        """Abandon a socket whose loop failed, reporting the disconnect once."""
        ws, self._ws = self._ws, None
        if ws is None or self._closing:
            return
        try:
            await ws.close(code=INTERNAL_ERROR)
        except (websockets.exceptions.WebSocketException, OSError) as e:
            logger.debug(f"Closing failed socket raised: {e}")
        await self._emit("disconnected", {"code": None, "terminal": False})

    def _socket_url(self, token: str) -> str:
        query = urlencode({
            "gameId": self.settings.campaign_id,
            "userId": self.settings.user_id,
            "stt": token,
        })
        return f"{self.settings.socket_url}?{query}"

    async def _connect_once(self) -> bool:
        """One connection attempt; returns whether the close warrants a reconnect."""
        token = await self.proxy.fetch_token()

        logger.info("Connecting to socket")
        ws = await self.connector(self._socket_url(token))
        if self._closing:
            await ws.close(code=NORMAL_CLOSURE)
            return False

        self._ws = ws
        self.reconnect_attempts = 0
        logger.info("Socket connected")
        await self.send(AuthenticateMessage(
            data=AuthenticateData(token=token, campaign_id=self.settings.campaign_id)
        ).model_dump(by_alias=True))
        await self._emit("connected")

        code = None
        try:
            async for frame in ws:
                await self._on_frame(frame)
            code = getattr(ws, "close_code", None) or NORMAL_CLOSURE
        except websockets.ConnectionClosed as e:
            code = e.rcvd.code if e.rcvd is not None else None
            logger.warning(f"Connection closed: {code} {e.rcvd.reason if e.rcvd else ''}".rstrip())

        if self._closing:
            return False

        self._ws = None
        await self._emit("disconnected", {"code": code, "terminal": False})
        return code != NORMAL_CLOSURE

    # ------------------------------------------------------------------
    # Frames
    # ------------------------------------------------------------------

    async def send(self, data: Any) -> bool:
        if self._ws is None:
            logger.warning("Cannot send message, socket not open")
            return False
        await self._ws.send(data if isinstance(data, str) else json.dumps(data))
        return True

    async def _on_frame(self, frame) -> None:
        try:
            raw = json.loads(frame)
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to parse message: {e}")
            return
        if not isinstance(raw, dict):
            logger.warning(f"Ignoring non-object message: {raw!r}")
            return

        try:
            envelope = WireEnvelope.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Dropping malformed {raw.get('eventType')!r} message: {e}")
            return
        event_type = envelope.event_type

        if event_type == EVENT_AUTHENTICATED:
            logger.info("Authentication successful")
            await self.send(SubscribeMessage(
                data=SubscribeData(campaign_id=self.settings.campaign_id)
            ).model_dump(by_alias=True))
            logger.info("Subscribed to character updates")

        elif event_type == EVENT_DICE_ROLL_FULFILLED:
            detail = dict(envelope.data if envelope.data is not None else raw)
            detail["eventType"] = event_type
            detail["id"] = envelope.roll_id or _str_or_none(detail.get("rollId"))
            await self._emit("message", detail)

        elif event_type in (EVENT_CHARACTER_UPDATE, EVENT_CHARACTER_UPDATE_FULFILLED):
            detail = dict(envelope.data if envelope.data is not None else raw)
            detail["eventType"] = event_type
            detail["id"] = envelope.id
            await self._emit("message", detail)

        else:
            logger.debug(f"Unprocessed message type: {event_type}")


def _str_or_none(value) -> Optional[str]:
    return None if value is None else str(value)
