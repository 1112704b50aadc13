"""Transport handshake probe."""

from __future__ import annotations

import logging
from typing import Final, Optional

from rtprobe.application.subscription import (
    await_subscription,
    open_channel,
    scoped_channel_name,
)
from rtprobe.domain.models import SubscriptionOutcome, SubscriptionState
from rtprobe.domain.transport import RealtimeClient
from rtprobe.infrastructure.errors import ErrorCode
from rtprobe.infrastructure.logging import BoundLogger, get_logger, log_event

HANDSHAKE_CHANNEL: Final = "diag_ws_probe"

_default_logger = get_logger("rtprobe.handshake")


async def probe_handshake(
    client: RealtimeClient,
    *,
    timeout: float,
    logger: Optional[BoundLogger] = None,
) -> SubscriptionOutcome:
    """Open a throwaway channel and wait for its confirmation.

    The confirmation proves a live connection exists (or could be opened)
    within ``timeout``. The channel never outlives this call.
    """

    log = logger or _default_logger
    async with open_channel(
        client, scoped_channel_name(HANDSHAKE_CHANNEL), logger=log
    ) as channel:
        outcome = await await_subscription(channel, timeout=timeout, logger=log)

    if outcome.confirmed:
        log_event(
            log,
            "handshake.passed",
            elapsed_ms=round(outcome.elapsed * 1000, 1),
        )
    else:
        log_event(
            log,
            "handshake.failed",
            level=logging.WARNING,
            state=outcome.state.value,
            reason=outcome.reason,
        )
    return outcome


def handshake_error_code(outcome: SubscriptionOutcome) -> ErrorCode:
    if outcome.state is SubscriptionState.TIMED_OUT:
        return ErrorCode.HANDSHAKE_TIMEOUT
    return ErrorCode.HANDSHAKE_REJECTED


__all__ = ["HANDSHAKE_CHANNEL", "probe_handshake", "handshake_error_code"]
