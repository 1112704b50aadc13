from __future__ import annotations

from abc import ABC, abstractmethod
from typing import ClassVar

from rtprobe.domain.models import (
    DiagnosticPath,
    ProbeTimeouts,
    Stage,
    StrategyAttempt,
    SubscriptionOutcome,
    SubscriptionState,
)
from rtprobe.domain.transport import RealtimeClient
from rtprobe.infrastructure.errors import ErrorCode
from rtprobe.infrastructure.logging import BoundLogger

MSG_SUBSCRIPTION_TIMEOUT = "channel subscription timeout"
MSG_SUBSCRIPTION_REJECTED = "channel subscription rejected"
MSG_SUBSCRIPTION_CLOSED = "channel subscription closed"


class RoundTripStrategy(ABC):
    """Prove that a message sent now arrives back over the transport."""

    path: ClassVar[DiagnosticPath]

    @abstractmethod
    async def attempt(
        self,
        client: RealtimeClient,
        *,
        timeouts: ProbeTimeouts,
        logger: BoundLogger,
    ) -> StrategyAttempt:
        """Run subscribe + round-trip; must release every channel it opens."""

    def subscription_failed(self, outcome: SubscriptionOutcome) -> StrategyAttempt:
        if outcome.state is SubscriptionState.TIMED_OUT:
            error, code = MSG_SUBSCRIPTION_TIMEOUT, ErrorCode.SUBSCRIPTION_TIMEOUT
        elif outcome.state is SubscriptionState.CLOSED:
            error, code = MSG_SUBSCRIPTION_CLOSED, ErrorCode.SUBSCRIPTION_REJECTED
        else:
            error, code = MSG_SUBSCRIPTION_REJECTED, ErrorCode.SUBSCRIPTION_REJECTED
        detail = f"{error}: {outcome.reason}" if outcome.reason else error
        return StrategyAttempt(
            path=self.path,
            subscribe=Stage.FAIL,
            roundtrip=Stage.FAIL,
            detail=detail,
            error=error,
            error_code=code,
            subscription=outcome,
        )


__all__ = [
    "RoundTripStrategy",
    "MSG_SUBSCRIPTION_TIMEOUT",
    "MSG_SUBSCRIPTION_REJECTED",
    "MSG_SUBSCRIPTION_CLOSED",
]
