"""Self-echo round trip: broadcast a tagged ping and wait for our own copy."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from typing import Any, Final

from rtprobe.application.strategies.base import RoundTripStrategy
from rtprobe.application.subscription import (
    await_subscription,
    open_channel,
    scoped_channel_name,
)
from rtprobe.domain.models import (
    DiagnosticPath,
    ProbeTimeouts,
    ProbeToken,
    SendMode,
    Stage,
    StrategyAttempt,
    SubscriptionOutcome,
)
from rtprobe.domain.transport import RealtimeChannel, RealtimeClient
from rtprobe.infrastructure.errors import ErrorCode, error_message
from rtprobe.infrastructure.logging import BoundLogger, log_event

SELF_ECHO_CHANNEL: Final = "diagnostic"
PING_EVENT: Final = "ping"
SEND_OK: Final = "ok"
SEND_TIMED_OUT: Final = "timed out"
PROBE_SENDER: Final = "rtprobe"


class SelfEchoStrategy(RoundTripStrategy):
    path = DiagnosticPath.SELF_ECHO

    def __init__(self, channel_name: str = SELF_ECHO_CHANNEL) -> None:
        self.channel_name = channel_name

    async def attempt(
        self,
        client: RealtimeClient,
        *,
        timeouts: ProbeTimeouts,
        logger: BoundLogger,
    ) -> StrategyAttempt:
        log = logger.bind(strategy=self.path.value)
        async with open_channel(
            client,
            scoped_channel_name(self.channel_name),
            broadcast_self=True,
            broadcast_ack=True,
            logger=log,
        ) as channel:
            subscription = await await_subscription(
                channel, timeout=timeouts.self_echo_subscribe, logger=log
            )
            if not subscription.confirmed:
                return self.subscription_failed(subscription)
            return await self._round_trip(channel, subscription, timeouts, log)

    async def _round_trip(
        self,
        channel: RealtimeChannel,
        subscription: SubscriptionOutcome,
        timeouts: ProbeTimeouts,
        log: BoundLogger,
    ) -> StrategyAttempt:
        loop = asyncio.get_running_loop()
        token = ProbeToken.generate("rt")
        echoed = asyncio.Event()

        def _on_ping(payload: Mapping[str, Any]) -> None:
            if isinstance(payload, Mapping) and token.matches(payload.get("token")):
                echoed.set()

        channel.on_broadcast(PING_EVENT, _on_ping)
        # Give the listener a moment to attach before the ping can come back.
        await asyncio.sleep(timeouts.settle)

        message = {"token": token.value, "sent_at": int(time.time() * 1000), "who": PROBE_SENDER}
        sent_at = loop.time()
        send_mode = SendMode.WITH_ACK
        send_result = await self._send(channel, message, ack=True, timeout=timeouts.echo_wait, log=log)
        if send_result != SEND_OK:
            log_event(
                log,
                "self_echo.retry_without_ack",
                level=logging.INFO,
                send_result=send_result,
                token=token.value,
            )
            send_mode = SendMode.WITHOUT_ACK
            send_result = await self._send(
                channel,
                {**message, "retry": True},
                ack=False,
                timeout=timeouts.echo_wait,
                log=log,
            )

        try:
            await asyncio.wait_for(echoed.wait(), timeout=timeouts.echo_wait)
        except asyncio.TimeoutError:
            log_event(
                log,
                "self_echo.timeout",
                level=logging.INFO,
                token=token.value,
                send_mode=send_mode.value,
                send_result=send_result,
            )
            return StrategyAttempt(
                path=self.path,
                subscribe=Stage.PASS,
                roundtrip=Stage.FAIL,
                detail=(
                    f"no self-echo received within {timeouts.echo_wait:g}s "
                    f"(tried {send_mode.value}, send result: {send_result})"
                ),
                error="no self-echo received within timeout",
                error_code=ErrorCode.ROUND_TRIP_TIMEOUT,
                subscription=subscription,
                token=token.value,
                send_result=send_result,
                send_mode=send_mode,
            )

        latency = loop.time() - sent_at
        log_event(
            log,
            "self_echo.matched",
            token=token.value,
            latency_ms=round(latency * 1000, 1),
            send_mode=send_mode.value,
        )
        return StrategyAttempt(
            path=self.path,
            subscribe=Stage.PASS,
            roundtrip=Stage.PASS,
            detail="broadcast self-echo received",
            latency=latency,
            subscription=subscription,
            token=token.value,
            send_result=send_result,
            send_mode=send_mode,
        )

    async def _send(
        self,
        channel: RealtimeChannel,
        message: Mapping[str, Any],
        *,
        ack: bool,
        timeout: float,
        log: BoundLogger,
    ) -> str:
        try:
            result = await asyncio.wait_for(
                channel.send_broadcast(PING_EVENT, message, ack=ack), timeout=timeout
            )
        except asyncio.TimeoutError:
            result = SEND_TIMED_OUT
        except Exception as exc:
            result = f"error: {error_message(exc)}"
        log_event(
            log,
            "self_echo.send",
            level=logging.DEBUG,
            ack=ack,
            send_result=result,
        )
        return str(result)


__all__ = ["SelfEchoStrategy", "SELF_ECHO_CHANNEL", "PING_EVENT"]
