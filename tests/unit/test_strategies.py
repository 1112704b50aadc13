from __future__ import annotations

import asyncio

import pytest

from rtprobe.application.strategies import ChangeNotificationStrategy, SelfEchoStrategy
from rtprobe.application.strategies.change_notification import MSG_NO_NOTIFICATION
from rtprobe.application.strategies.self_echo import PING_EVENT, SELF_ECHO_CHANNEL
from rtprobe.domain.models import (
    DiagnosticPath,
    ProbeToken,
    SendMode,
    Stage,
    WatchedResource,
)
from rtprobe.infrastructure.errors import ErrorCode, TransportError, WriteFailedError
from rtprobe.infrastructure.logging import get_logger

LOGGER = get_logger("tests.strategies")


@pytest.mark.asyncio
async def test_self_echo_matches_its_own_token(fake_client, fast_timeouts) -> None:
    attempt = await SelfEchoStrategy().attempt(fake_client, timeouts=fast_timeouts, logger=LOGGER)

    assert attempt.ok
    assert attempt.path is DiagnosticPath.SELF_ECHO
    assert attempt.send_mode is SendMode.WITH_ACK
    assert attempt.send_result == "ok"
    assert attempt.latency is not None and attempt.latency >= 0
    assert attempt.token is not None and attempt.token.startswith("rt_")

    channel = fake_client.channels[0]
    assert channel.name.startswith(f"{SELF_ECHO_CHANNEL}:")
    assert channel.broadcast_self is True
    assert channel.broadcast_ack is True
    event, payload, ack = channel.sent[0]
    assert event == PING_EVENT
    assert payload["token"] == attempt.token
    assert ack is True
    assert channel.removed


@pytest.mark.asyncio
async def test_self_echo_ignores_tokens_from_other_runs(make_client, fast_timeouts) -> None:
    client = make_client()
    client.foreign_tokens = [ProbeToken.generate("rt").value, "rt_0_deadbeef"]
    client.drop_own = True

    attempt = await SelfEchoStrategy().attempt(client, timeouts=fast_timeouts, logger=LOGGER)

    assert attempt.subscribe is Stage.PASS
    assert attempt.roundtrip is Stage.FAIL
    assert attempt.error_code is ErrorCode.ROUND_TRIP_TIMEOUT


@pytest.mark.asyncio
async def test_self_echo_retries_without_ack_when_ack_send_fails(make_client, fast_timeouts) -> None:
    client = make_client(send_results={True: "timed out", False: "ok"}, echo_on=(False,))

    attempt = await SelfEchoStrategy().attempt(client, timeouts=fast_timeouts, logger=LOGGER)

    assert attempt.ok
    assert attempt.send_mode is SendMode.WITHOUT_ACK
    sent = client.channels[0].sent
    assert [ack for _, _, ack in sent] == [True, False]
    assert sent[1][1]["retry"] is True
    assert sent[0][1]["token"] == sent[1][1]["token"]


@pytest.mark.asyncio
async def test_self_echo_bounds_a_hanging_send(make_client, fast_timeouts) -> None:
    client = make_client(send_results={True: "hang", False: "hang"}, echo_on=())

    attempt = await asyncio.wait_for(
        SelfEchoStrategy().attempt(client, timeouts=fast_timeouts, logger=LOGGER), timeout=2.0
    )

    assert attempt.roundtrip is Stage.FAIL
    assert attempt.send_result == "timed out"
    assert attempt.send_mode is SendMode.WITHOUT_ACK
    assert client.open_channels == []


@pytest.mark.asyncio
async def test_self_echo_reports_send_errors(make_client, fast_timeouts) -> None:
    client = make_client(
        send_results={True: TransportError("socket closed"), False: TransportError("socket closed")},
        echo_on=(),
    )

    attempt = await SelfEchoStrategy().attempt(client, timeouts=fast_timeouts, logger=LOGGER)

    assert attempt.roundtrip is Stage.FAIL
    assert attempt.send_result == "error: socket closed"
    assert attempt.error == "no self-echo received within timeout"


@pytest.mark.asyncio
async def test_change_notification_inserts_token_into_watched_table(fake_client, fast_timeouts) -> None:
    watched = WatchedResource(schema="diag", table="probes", token_column="probe_id")

    attempt = await ChangeNotificationStrategy(watched).attempt(
        fake_client, timeouts=fast_timeouts, logger=LOGGER
    )

    assert attempt.ok
    assert attempt.detail == "INSERT notification received"
    (schema, table, record), = fake_client.inserts
    assert (schema, table) == ("diag", "probes")
    assert record == {"probe_id": attempt.token}
    assert attempt.token.startswith("pc_")
    channel = fake_client.channels[0]
    assert channel.name.startswith("realtime:diag:probes:")
    assert channel.change_bindings[0][:3] == ("INSERT", "diag", "probes")
    assert channel.removed


@pytest.mark.asyncio
async def test_change_notification_ignores_other_tokens(make_client, fast_timeouts) -> None:
    client = make_client()
    client.foreign_tokens = ["pc_1_aaaaaaaa"]
    client.drop_own = True

    attempt = await ChangeNotificationStrategy().attempt(
        client, timeouts=fast_timeouts, logger=LOGGER
    )

    assert attempt.roundtrip is Stage.FAIL
    assert attempt.error == MSG_NO_NOTIFICATION


@pytest.mark.asyncio
async def test_change_notification_keeps_write_error_verbatim(make_client, fast_timeouts) -> None:
    message = "permission denied for table realtime_diag"
    client = make_client(insert_error=WriteFailedError(message, status_code=401, error_code="42501"))

    attempt = await ChangeNotificationStrategy().attempt(
        client, timeouts=fast_timeouts, logger=LOGGER
    )

    assert attempt.subscribe is Stage.PASS
    assert attempt.roundtrip is Stage.FAIL
    assert attempt.error == message
    assert attempt.error_code is ErrorCode.WRITE_FAILED
    assert attempt.detail == f"insert failed: {message}"
    assert client.open_channels == []


@pytest.mark.asyncio
async def test_change_notification_bounds_a_hanging_insert(make_client, fast_timeouts) -> None:
    client = make_client(insert_hangs=True)

    attempt = await asyncio.wait_for(
        ChangeNotificationStrategy().attempt(client, timeouts=fast_timeouts, logger=LOGGER),
        timeout=2.0,
    )

    assert attempt.error_code is ErrorCode.WRITE_FAILED
    assert attempt.error.startswith("insert timed out after")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("behaviour", "error", "code"),
    [
        ("silent", "channel subscription timeout", ErrorCode.SUBSCRIPTION_TIMEOUT),
        ("error", "channel subscription rejected", ErrorCode.SUBSCRIPTION_REJECTED),
        ("closed", "channel subscription closed", ErrorCode.SUBSCRIPTION_REJECTED),
    ],
)
async def test_change_notification_subscription_failures(
    make_client, fast_timeouts, behaviour: str, error: str, code: ErrorCode
) -> None:
    client = make_client(default_subscribe=behaviour)

    attempt = await ChangeNotificationStrategy().attempt(
        client, timeouts=fast_timeouts, logger=LOGGER
    )

    assert attempt.subscribe is Stage.FAIL
    assert attempt.error == error
    assert attempt.error_code is code
    assert client.inserts == []
    assert client.open_channels == []
