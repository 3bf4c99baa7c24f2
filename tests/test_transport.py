"""
Tests for the remote transport: handshake, event routing, reconnection.
"""

import asyncio

import httpx
import pytest
from websockets.exceptions import ConnectionClosedError

from rollsync.errors import CredentialExpiredError
from rollsync.proxy import ProxyClient
from rollsync.transport import RemoteTransport
from tests.conftest import FakeConnector, FakeSocket


def proxy_client(settings, status=200, body=None, requests=None):
    def handler(request):
        if requests is not None:
            requests.append(request)
        return httpx.Response(status, json=body if body is not None else {"token": "tok"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ProxyClient(settings.proxy_url, settings.cobalt_cookie, client=client)


class Recorder:
    def __init__(self, transport):
        self.events = []
        self.delays = []
        for event in ("connected", "disconnected", "message", "credential_expired"):
            transport.on(event, self._recorder(event))

    def _recorder(self, event):
        def record(*args):
            self.events.append((event,) + args)
        return record

    async def sleep(self, delay):
        self.delays.append(delay)

    def named(self, event):
        return [e for e in self.events if e[0] == event]


def make_transport(settings, connector, **proxy_kwargs):
    transport = RemoteTransport(settings, proxy=proxy_client(settings, **proxy_kwargs), connector=connector)
    recorder = Recorder(transport)
    transport.sleep = recorder.sleep
    return transport, recorder


async def run_until_closed(transport):
    await transport.connect()
    await transport.wait_closed()


def test_handshake_and_event_routing(settings, make_roll):
    roll = make_roll()
    roll_frame = {"eventType": "dice/roll/fulfilled", "rollId": "roll-1", "data": roll}
    update_frame = {
        "eventType": "character-sheet/character-update/fulfilled",
        "id": "m-9",
        "data": {"characterId": 42},
    }
    socket = FakeSocket(frames=[
        {"eventType": "authenticated"},
        roll_frame,
        {"eventType": "game-log/chat", "data": {}},
        "not json",
        update_frame,
    ])
    connector = FakeConnector([socket])
    requests = []
    transport, recorder = make_transport(settings, connector, requests=requests)

    asyncio.run(run_until_closed(transport))

    assert requests[0].url == "http://proxy.test/proxy/auth"
    assert connector.urls == ["wss://socket.test/v1?gameId=1234&userId=99&stt=tok"]
    assert socket.sent == [
        {"type": "authenticate", "data": {"token": "tok", "campaignId": "1234"}},
        {"type": "subscribe", "data": {"event": "character.update", "campaignId": "1234"}},
    ]

    messages = [e[1] for e in recorder.named("message")]
    assert [(m["eventType"], m["id"]) for m in messages] == [
        ("dice/roll/fulfilled", "roll-1"),
        ("character-sheet/character-update/fulfilled", "m-9"),
    ]
    assert messages[0]["action"] == "Stealth"
    assert messages[1]["characterId"] == 42

    # Clean close: reported, not retried
    assert recorder.named("connected") == [("connected",)]
    assert recorder.named("disconnected") == [("disconnected", {"code": 1000, "terminal": False})]
    assert recorder.delays == []
    assert not transport.is_connected


def test_abnormal_close_reconnects(settings):
    first = FakeSocket(error=ConnectionClosedError(None, None))
    second = FakeSocket()
    connector = FakeConnector([first, second])
    transport, recorder = make_transport(settings, connector)

    asyncio.run(run_until_closed(transport))

    assert len(connector.urls) == 2
    assert recorder.delays == [3.0]
    assert [e[1]["terminal"] for e in recorder.named("disconnected")] == [False, False]
    assert len(recorder.named("connected")) == 2
    assert transport.reconnect_attempts == 0


def test_reconnect_cap_reports_terminal_once(settings):
    connector = FakeConnector(error=OSError("unreachable"))
    transport, recorder = make_transport(settings, connector)

    asyncio.run(run_until_closed(transport))

    assert recorder.delays == [3.0, 6.0, 9.0, 12.0, 15.0]
    assert len(connector.urls) == 6
    assert recorder.named("disconnected") == [("disconnected", {"code": None, "terminal": True})]
    assert recorder.named("connected") == []


def test_proxy_failure_counts_as_attempt(settings):
    transport, recorder = make_transport(settings, FakeConnector(), status=500, body={})
    transport.max_reconnect_attempts = 1

    asyncio.run(run_until_closed(transport))

    assert recorder.delays == [3.0]
    assert recorder.named("disconnected")[-1][1]["terminal"] is True


@pytest.mark.parametrize("status", [401, 403])
def test_expired_credential_stops_without_retry(settings, status):
    connector = FakeConnector()
    transport, recorder = make_transport(settings, connector, status=status, body={})

    asyncio.run(run_until_closed(transport))

    [(_, error)] = recorder.named("credential_expired")
    assert isinstance(error, CredentialExpiredError)
    assert error.status_code == status
    assert connector.urls == []
    assert recorder.delays == []


def test_manual_disconnect_closes_cleanly(settings):
    class HangingSocket(FakeSocket):
        async def _frames(self):
            await asyncio.Event().wait()
            yield ""

    socket = HangingSocket()
    transport, recorder = make_transport(settings, FakeConnector([socket]))

    async def scenario():
        await transport.connect()
        for _ in range(100):
            if transport.is_connected:
                break
            await asyncio.sleep(0)
        assert transport.is_connected
        await transport.disconnect()

    asyncio.run(scenario())

    assert socket.closed_with == 1000
    assert recorder.named("disconnected") == [("disconnected", {"code": 1000, "terminal": False})]
    assert recorder.delays == []
    assert not transport.running


def test_send_when_closed_is_dropped(settings):
    transport, _ = make_transport(settings, FakeConnector())
    assert asyncio.run(transport.send({"type": "ping"})) is False


def test_async_listeners_and_off(settings):
    transport = RemoteTransport(settings, proxy=proxy_client(settings), connector=FakeConnector([FakeSocket()]))
    seen = []

    async def on_connected():
        seen.append("async")

    def on_sync():
        seen.append("sync")

    transport.on("connected", on_connected)
    transport.on("connected", on_sync)
    transport.off("connected", on_sync)

    asyncio.run(run_until_closed(transport))
    assert seen == ["async"]

    with pytest.raises(ValueError):
        transport.on("bogus", on_sync)


def test_malformed_frame_is_dropped(settings):
    socket = FakeSocket(frames=[
        {"eventType": "some/other/event", "data": [1, 2, 3]},
        {"eventType": "dice/roll/fulfilled", "data": "not an object"},
        {"eventType": "authenticated"},
    ])
    transport, recorder = make_transport(settings, FakeConnector([socket]))

    asyncio.run(run_until_closed(transport))

    assert [frame["type"] for frame in socket.sent] == ["authenticate", "subscribe"]
    assert recorder.named("message") == []
    assert recorder.named("disconnected") == [("disconnected", {"code": 1000, "terminal": False})]


def test_unexpected_socket_failure_reconnects(settings):
    first = FakeSocket(error=RuntimeError("decoder bug"))
    second = FakeSocket()
    connector = FakeConnector([first, second])
    transport, recorder = make_transport(settings, connector)

    asyncio.run(run_until_closed(transport))

    assert first.closed_with == 1011
    assert recorder.named("disconnected") == [
        ("disconnected", {"code": None, "terminal": False}),
        ("disconnected", {"code": 1000, "terminal": False}),
    ]
    assert recorder.delays == [3.0]
    assert len(connector.urls) == 2


def test_non_object_token_response_counts_as_attempt(settings):
    transport, recorder = make_transport(settings, FakeConnector(), body=["tok"])
    transport.max_reconnect_attempts = 1

    asyncio.run(run_until_closed(transport))

    assert recorder.delays == [3.0]
    assert recorder.named("disconnected") == [("disconnected", {"code": None, "terminal": True})]


def test_open_timeout_reconnects(settings):
    connector = FakeConnector(error=asyncio.TimeoutError())
    transport, recorder = make_transport(settings, connector)
    transport.max_reconnect_attempts = 2

    asyncio.run(run_until_closed(transport))

    assert recorder.delays == [3.0, 6.0]
    assert len(connector.urls) == 3
    assert recorder.named("disconnected")[-1][1]["terminal"] is True
