"""Change-notification round trip over the watched resource.

A record tagged with a fresh token is inserted into the watched table and the
strategy waits for the INSERT notification carrying that token. Concurrent runs
write into the same table; each one only accepts its own token, so they never
satisfy each other's wait.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Final, Optional

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
    Stage,
    StrategyAttempt,
    SubscriptionOutcome,
    WatchedResource,
)
from rtprobe.domain.transport import ChangeNotification, RealtimeClient
from rtprobe.infrastructure.errors import ErrorCode, error_message
from rtprobe.infrastructure.logging import BoundLogger, log_event

INSERT_EVENT: Final = "INSERT"
MSG_NO_NOTIFICATION: Final = "no change notification received within timeout"


class ChangeNotificationStrategy(RoundTripStrategy):
    path = DiagnosticPath.CHANGE_NOTIFICATION

    def __init__(self, watched: Optional[WatchedResource] = None) -> None:
        self.watched = watched or WatchedResource()

    async def attempt(
        self,
        client: RealtimeClient,
        *,
        timeouts: ProbeTimeouts,
        logger: BoundLogger,
    ) -> StrategyAttempt:
        log = logger.bind(strategy=self.path.value, table=self.watched.table)
        watched = self.watched
        token: Optional[ProbeToken] = None
        notified = asyncio.Event()

        def _on_insert(notification: ChangeNotification) -> None:
            if token is None:
                return
            record = notification.record or {}
            if token.matches(record.get(watched.token_column)):
                notified.set()

        async with open_channel(
            client, scoped_channel_name(watched.channel_name), logger=log
        ) as channel:
            channel.on_postgres_changes(
                INSERT_EVENT,
                schema=watched.schema,
                table=watched.table,
                handler=_on_insert,
            )
            subscription = await await_subscription(
                channel, timeout=timeouts.change_subscribe, logger=log
            )
            if not subscription.confirmed:
                return self.subscription_failed(subscription)

            token = ProbeToken.generate("pc")
            write_error = await self._write_probe(client, token, timeouts, log)
            if write_error is not None:
                return StrategyAttempt(
                    path=self.path,
                    subscribe=Stage.PASS,
                    roundtrip=Stage.FAIL,
                    detail=f"insert failed: {write_error}",
                    error=write_error,
                    error_code=ErrorCode.WRITE_FAILED,
                    subscription=subscription,
                    token=token.value,
                )

            return await self._await_notification(
                notified, token, subscription, timeouts, log
            )

    async def _write_probe(
        self,
        client: RealtimeClient,
        token: ProbeToken,
        timeouts: ProbeTimeouts,
        log: BoundLogger,
    ) -> Optional[str]:
        """Insert the probe record; return the write error message, if any."""

        record = {self.watched.token_column: token.value}
        try:
            await asyncio.wait_for(
                client.insert(self.watched.table, record, schema=self.watched.schema),
                timeout=timeouts.notification_wait,
            )
        except asyncio.TimeoutError:
            message = f"insert timed out after {timeouts.notification_wait:g}s"
        except Exception as exc:
            message = error_message(exc)
        else:
            log_event(log, "change_notification.inserted", level=logging.DEBUG, token=token.value)
            return None

        log_event(
            log,
            "change_notification.insert_failed",
            level=logging.WARNING,
            token=token.value,
            error=message,
        )
        return message

    async def _await_notification(
        self,
        notified: asyncio.Event,
        token: ProbeToken,
        subscription: SubscriptionOutcome,
        timeouts: ProbeTimeouts,
        log: BoundLogger,
    ) -> StrategyAttempt:
        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            await asyncio.wait_for(notified.wait(), timeout=timeouts.notification_wait)
        except asyncio.TimeoutError:
            log_event(
                log,
                "change_notification.timeout",
                level=logging.WARNING,
                token=token.value,
            )
            return StrategyAttempt(
                path=self.path,
                subscribe=Stage.PASS,
                roundtrip=Stage.FAIL,
                detail=(
                    f"no {INSERT_EVENT} notification for {self.watched.schema}."
                    f"{self.watched.table} within {timeouts.notification_wait:g}s"
                ),
                error=MSG_NO_NOTIFICATION,
                error_code=ErrorCode.ROUND_TRIP_TIMEOUT,
                subscription=subscription,
                token=token.value,
            )

        latency = loop.time() - started
        log_event(
            log,
            "change_notification.matched",
            token=token.value,
            latency_ms=round(latency * 1000, 1),
        )
        return StrategyAttempt(
            path=self.path,
            subscribe=Stage.PASS,
            roundtrip=Stage.PASS,
            detail=f"{INSERT_EVENT} notification received",
            latency=latency,
            subscription=subscription,
            token=token.value,
        )


__all__ = ["ChangeNotificationStrategy", "INSERT_EVENT", "MSG_NO_NOTIFICATION"]
