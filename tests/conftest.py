from __future__ import annotations

import asyncio
import os
from collections import defaultdict
from collections.abc import Callable, Mapping
from typing import Any, Optional

import pytest

from rtprobe.domain.models import ProbeTimeouts, RemediationResult, RemediationStatus
from rtprobe.domain.transport import ChangeNotification, SubscribeStatus
from rtprobe.infrastructure.errors import TransportError
from rtprobe.integrations.supabase.models import PublicationStatus


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("rtprobe")
    group.addoption(
        "--offline",
        action="store_true",
        dest="rtprobe_offline",
        help="Run offline tests only (deselect tests marked 'online').",
    )
    group.addoption(
        "--online-only",
        action="store_true",
        dest="rtprobe_online_only",
        help="Run only tests marked 'online' (deselect offline).",
    )


def _is_integration_path(s: str) -> bool:
    s = s.replace("\\", "/")
    return s.startswith("tests/integration/") or "/tests/integration/" in s


def _mark_by_path(items: list[pytest.Item]) -> None:
    for item in items:
        node_str = str(getattr(item, "fspath", item.nodeid))
        marker = (
            pytest.mark.online
            if _is_integration_path(node_str)
            else pytest.mark.offline
        )
        item.add_marker(marker)


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    _mark_by_path(items)

    offline_only = bool(config.getoption("rtprobe_offline"))
    online_only = bool(config.getoption("rtprobe_online_only"))

    if offline_only and online_only:
        raise pytest.UsageError("--offline and --online-only are mutually exclusive")

    deselect: list[pytest.Item] = []
    if online_only:
        deselect = [i for i in items if "online" not in i.keywords]
    elif offline_only:
        deselect = [i for i in items if "online" in i.keywords]

    if not deselect:
        return

    config.hook.pytest_deselected(items=deselect)
    items[:] = [i for i in items if i not in deselect]


# In-memory realtime transport ------------------------------------------------

# Subscribe behaviours understood by FakeChannel.
SUBSCRIBE_OK = "ok"
SUBSCRIBE_ERROR = "error"
SUBSCRIBE_CLOSED = "closed"
SUBSCRIBE_SILENT = "silent"
SUBSCRIBE_RAISE = "raise"
SUBSCRIBE_OK_THEN_CLOSED = "ok_then_closed"
SUBSCRIBE_ERROR_THEN_OK = "error_then_ok"

SEND_HANG = "hang"


class FakeChannel:
    def __init__(
        self,
        client: "FakeRealtimeClient",
        name: str,
        *,
        broadcast_self: bool,
        broadcast_ack: bool,
    ) -> None:
        self.client = client
        self.name = name
        self.broadcast_self = broadcast_self
        self.broadcast_ack = broadcast_ack
        self.broadcast_handlers: dict[str, list[Callable[[Mapping[str, Any]], None]]] = defaultdict(list)
        self.change_bindings: list[tuple[str, str, str, Callable[[ChangeNotification], None]]] = []
        self.sent: list[tuple[str, dict[str, Any], bool]] = []
        self.subscribed = False
        self.removed = False

    def on_broadcast(self, event: str, handler: Callable[[Mapping[str, Any]], None]) -> "FakeChannel":
        self.broadcast_handlers[event].append(handler)
        return self

    def on_postgres_changes(
        self,
        event: str,
        *,
        schema: str,
        table: str,
        handler: Callable[[ChangeNotification], None],
    ) -> "FakeChannel":
        self.change_bindings.append((event, schema, table, handler))
        return self

    async def subscribe(self, callback: Optional[Callable[..., None]] = None) -> None:
        behaviour = self.client.subscribe_behaviour(self.name)
        if behaviour == SUBSCRIBE_RAISE:
            raise TransportError("socket unreachable")
        if behaviour == SUBSCRIBE_SILENT or callback is None:
            return

        loop = asyncio.get_running_loop()
        sequence = {
            SUBSCRIBE_OK: [SubscribeStatus.SUBSCRIBED],
            SUBSCRIBE_ERROR: [SubscribeStatus.CHANNEL_ERROR],
            SUBSCRIBE_CLOSED: [SubscribeStatus.CLOSED],
            SUBSCRIBE_OK_THEN_CLOSED: [SubscribeStatus.SUBSCRIBED, SubscribeStatus.CLOSED],
            SUBSCRIBE_ERROR_THEN_OK: [SubscribeStatus.CHANNEL_ERROR, SubscribeStatus.SUBSCRIBED],
        }[behaviour]
        self.subscribed = SubscribeStatus.SUBSCRIBED in sequence
        for status in sequence:
            loop.call_soon(callback, status, None)

    async def send_broadcast(
        self, event: str, payload: Mapping[str, Any], *, ack: bool = True
    ) -> str:
        self.sent.append((event, dict(payload), ack))
        result = self.client.send_results.get(ack, "ok")
        if isinstance(result, BaseException):
            raise result
        if result == SEND_HANG:
            await asyncio.sleep(3600)
        if self.broadcast_self:
            self.client.deliver_broadcast(
                self, event, payload, include_own=ack in self.client.echo_on
            )
        return str(result)


class FakeRealtimeClient:
    """Configurable stand-in for a realtime client handle."""

    def __init__(
        self,
        *,
        subscribe: Optional[Mapping[str, str]] = None,
        default_subscribe: str = SUBSCRIBE_OK,
        send_results: Optional[Mapping[bool, Any]] = None,
        echo_on: tuple[bool, ...] = (True, False),
        notify_inserts: bool = True,
        insert_error: Optional[BaseException] = None,
        insert_hangs: bool = False,
        remediation: Optional[RemediationResult] = None,
        remediation_error: Optional[BaseException] = None,
        remediation_enables_notifications: bool = True,
        table_missing: bool = False,
        status_error: Optional[BaseException] = None,
    ) -> None:
        self._subscribe = dict(subscribe or {})
        self._default_subscribe = default_subscribe
        self.send_results: dict[bool, Any] = dict(send_results or {})
        self.echo_on = echo_on
        self.notify_inserts = notify_inserts
        self.insert_error = insert_error
        self.insert_hangs = insert_hangs
        self.remediation = remediation or RemediationResult(
            status=RemediationStatus.OK, added_count=1, ensured_count=1
        )
        self.remediation_error = remediation_error
        self.remediation_enables_notifications = remediation_enables_notifications
        self.table_missing = table_missing
        self.status_error = status_error
        self.deletes: list[tuple[str, str, str, str]] = []
        self.channels: list[FakeChannel] = []
        self.inserts: list[tuple[str, str, dict[str, Any]]] = []
        self.remediation_calls = 0
        self.closed = False
        # Broadcasts and change notifications from other runs, delivered alongside ours.
        self.foreign_tokens: list[str] = []
        self.drop_own = False

    def subscribe_behaviour(self, name: str) -> str:
        # Engine channels carry a per-attempt suffix after the base name.
        for base, behaviour in self._subscribe.items():
            if name == base or name.startswith(f"{base}:"):
                return behaviour
        return self._default_subscribe

    @property
    def open_channels(self) -> list[FakeChannel]:
        return [channel for channel in self.channels if not channel.removed]

    def channel(
        self,
        name: str,
        *,
        broadcast_self: bool = False,
        broadcast_ack: bool = False,
    ) -> FakeChannel:
        channel = FakeChannel(
            self, name, broadcast_self=broadcast_self, broadcast_ack=broadcast_ack
        )
        self.channels.append(channel)
        return channel

    async def remove_channel(self, channel: FakeChannel) -> None:
        channel.removed = True

    def deliver_broadcast(
        self,
        channel: FakeChannel,
        event: str,
        payload: Mapping[str, Any],
        *,
        include_own: bool,
    ) -> None:
        loop = asyncio.get_running_loop()
        for token in self.foreign_tokens:
            for handler in channel.broadcast_handlers.get(event, ()):
                loop.call_soon(handler, {**payload, "token": token})
        if not include_own or self.drop_own:
            return
        for handler in channel.broadcast_handlers.get(event, ()):
            loop.call_soon(handler, dict(payload))

    async def insert(
        self, table: str, record: Mapping[str, Any], *, schema: str = "public"
    ) -> None:
        self.inserts.append((schema, table, dict(record)))
        if self.insert_error is not None:
            raise self.insert_error
        if self.insert_hangs:
            await asyncio.sleep(3600)
        if not self.notify_inserts:
            return
        loop = asyncio.get_running_loop()
        records = [{key: token for key in record} for token in self.foreign_tokens]
        if not self.drop_own:
            records.append(dict(record))
        for channel in self.open_channels:
            for event, bound_schema, bound_table, handler in channel.change_bindings:
                if event not in ("*", "INSERT"):
                    continue
                if (bound_schema, bound_table) != (schema, table):
                    continue
                for row in records:
                    loop.call_soon(
                        handler,
                        ChangeNotification(
                            event_type="INSERT", schema=schema, table=table, record=row
                        ),
                    )

    async def ensure_realtime_publication(self) -> RemediationResult:
        self.remediation_calls += 1
        if self.remediation_error is not None:
            raise self.remediation_error
        if self.remediation.ok and self.remediation_enables_notifications:
            self.notify_inserts = True
        return self.remediation

    async def table_exists(self, table: str, *, schema: str = "public") -> bool:
        return not self.table_missing

    async def delete_rows(
        self, table: str, *, column: str, value: str, schema: str = "public"
    ) -> None:
        self.deletes.append((schema, table, column, value))

    async def check_realtime_publication(self) -> PublicationStatus:
        if self.status_error is not None:
            raise self.status_error
        return PublicationStatus(
            exists=True,
            status="complete" if self.notify_inserts else "incomplete",
            tables_count=1 if self.notify_inserts else 0,
            expected_count=1,
            missing_tables=[] if self.notify_inserts else ["realtime_diag"],
        )

    async def __aenter__(self) -> "FakeRealtimeClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.closed = True


FAST_TIMEOUTS = ProbeTimeouts(
    handshake=0.2,
    self_echo_subscribe=0.2,
    settle=0.0,
    echo_wait=0.2,
    change_subscribe=0.2,
    notification_wait=0.2,
)


@pytest.fixture
def fast_timeouts() -> ProbeTimeouts:
    return FAST_TIMEOUTS


@pytest.fixture
def make_client() -> Callable[..., FakeRealtimeClient]:
    return FakeRealtimeClient


@pytest.fixture
def fake_client() -> FakeRealtimeClient:
    return FakeRealtimeClient()


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Strip rtprobe and Supabase variables so tests see only what they set."""

    for name in list(os.environ):
        if name.startswith(("RTPROBE_", "SUPABASE_")) or name == "DEBUG":
            monkeypatch.delenv(name, raising=False)
    return monkeypatch
