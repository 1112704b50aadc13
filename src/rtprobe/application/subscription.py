"""Channel subscription controller.

Subscribing is callback driven on every realtime transport we care about: the
status callback may fire several times (``SUBSCRIBED`` followed later by
``CLOSED`` when the channel is torn down, for example). The controller turns
that stream into a single bounded outcome. The first terminal status wins and
everything after it is ignored, while the channel itself stays open so the
round-trip stage can keep using it.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from rtprobe.domain.models import SubscriptionOutcome, SubscriptionState
from rtprobe.domain.transport import RealtimeChannel, RealtimeClient, SubscribeStatus
from rtprobe.infrastructure.errors import error_message
from rtprobe.infrastructure.logging import BoundLogger, get_logger, log_event

_STATE_BY_STATUS = {
    SubscribeStatus.SUBSCRIBED: SubscriptionState.CONFIRMED,
    SubscribeStatus.CHANNEL_ERROR: SubscriptionState.REJECTED,
    SubscribeStatus.CLOSED: SubscriptionState.CLOSED,
    SubscribeStatus.TIMED_OUT: SubscriptionState.TIMED_OUT,
}

_default_logger = get_logger("rtprobe.subscription")


def scoped_channel_name(base: str) -> str:
    """Return a topic for one attempt so runs sharing a socket never collide."""

    return f"{base}:{secrets.token_hex(4)}"


@asynccontextmanager
async def open_channel(
    client: RealtimeClient,
    name: str,
    *,
    broadcast_self: bool = False,
    broadcast_ack: bool = False,
    logger: Optional[BoundLogger] = None,
) -> AsyncIterator[RealtimeChannel]:
    """Yield a channel that is released on every exit path, cancellation included."""

    log = logger or _default_logger
    channel = client.channel(
        name, broadcast_self=broadcast_self, broadcast_ack=broadcast_ack
    )
    try:
        yield channel
    finally:
        try:
            await client.remove_channel(channel)
        except Exception as exc:
            log_event(
                log,
                "channel.release_failed",
                level=logging.WARNING,
                channel=name,
                error=error_message(exc),
            )
        else:
            log_event(log, "channel.released", level=logging.DEBUG, channel=name)


async def await_subscription(
    channel: RealtimeChannel,
    *,
    timeout: float,
    logger: Optional[BoundLogger] = None,
) -> SubscriptionOutcome:
    """Subscribe ``channel`` and wait at most ``timeout`` seconds for an outcome."""

    log = logger or _default_logger
    loop = asyncio.get_running_loop()
    started = loop.time()
    outcome: asyncio.Future[SubscriptionOutcome] = loop.create_future()

    def _on_status(status: SubscribeStatus, error: Optional[BaseException] = None) -> None:
        if outcome.done():
            return
        state = _STATE_BY_STATUS.get(SubscribeStatus(status), SubscriptionState.REJECTED)
        reason = error_message(error) if error is not None else None
        if reason is None and state is not SubscriptionState.CONFIRMED:
            reason = f"channel status: {SubscribeStatus(status).value}"
        outcome.set_result(
            SubscriptionOutcome(state=state, reason=reason, elapsed=loop.time() - started)
        )

    try:
        await channel.subscribe(_on_status)
    except Exception as exc:
        _on_status(SubscribeStatus.CHANNEL_ERROR, exc)

    try:
        result = await asyncio.wait_for(asyncio.shield(outcome), timeout=timeout)
    except asyncio.TimeoutError:
        result = SubscriptionOutcome(
            state=SubscriptionState.TIMED_OUT,
            reason=f"no subscription confirmation within {timeout:g}s",
            elapsed=loop.time() - started,
        )
        # Late callbacks must see a resolved future and be ignored.
        outcome.cancel()

    log_event(
        log,
        "subscription.resolved",
        level=logging.DEBUG if result.confirmed else logging.INFO,
        channel=getattr(channel, "name", None),
        state=result.state.value,
        reason=result.reason,
        elapsed_ms=round(result.elapsed * 1000, 1),
    )
    return result


__all__ = ["open_channel", "await_subscription", "scoped_channel_name"]
