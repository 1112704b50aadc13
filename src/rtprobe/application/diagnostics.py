"""Strategy arbiter for realtime connectivity diagnostics.

This module hosts the engine entry point. It only reasons about the client
handle it is given: kill switches, remediation and any "latest result" cache
belong to the caller (see :mod:`rtprobe.application.runner`).
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Optional

from rtprobe.application.handshake import handshake_error_code, probe_handshake
from rtprobe.application.strategies import (
    ChangeNotificationStrategy,
    RoundTripStrategy,
    SelfEchoStrategy,
)
from rtprobe.domain.models import (
    DEFAULT_TIMEOUTS,
    DiagnosticRun,
    DiagnosticRunBuilder,
    ProbeTimeouts,
    StrategyAttempt,
    WatchedResource,
)
from rtprobe.domain.transport import RealtimeClient
from rtprobe.infrastructure.errors import ErrorCode, error_message
from rtprobe.infrastructure.logging import (
    BoundLogger,
    attach_run_context,
    get_logger,
    log_event,
)

MSG_HANDSHAKE_FAILED = "WebSocket handshake failed"

_default_logger = get_logger("rtprobe.diagnostics")


def build_strategies(watched: Optional[WatchedResource] = None) -> tuple[RoundTripStrategy, ...]:
    """Strategies in fallback order."""
    return (SelfEchoStrategy(), ChangeNotificationStrategy(watched))


async def _attempt(
    strategy: RoundTripStrategy,
    client: RealtimeClient,
    timeouts: ProbeTimeouts,
    log: BoundLogger,
) -> StrategyAttempt:
    try:
        return await strategy.attempt(client, timeouts=timeouts, logger=log)
    except Exception as exc:
        message = error_message(exc)
        log.exception("Round-trip strategy raised", strategy=strategy.path.value)
        return StrategyAttempt(
            path=strategy.path,
            detail=f"unexpected error: {message}",
            error=message,
        )


async def run_diagnostics(
    client: RealtimeClient,
    *,
    timeouts: ProbeTimeouts = DEFAULT_TIMEOUTS,
    watched: Optional[WatchedResource] = None,
    strategies: Optional[Sequence[RoundTripStrategy]] = None,
    logger: Optional[BoundLogger] = None,
    run_id: Optional[str] = None,
) -> DiagnosticRun:
    """Diagnose ``client`` end to end and return an immutable verdict.

    Stages run strictly in order: handshake, then each strategy until one
    passes. Every wait is bounded by ``timeouts``; a stage that times out is
    reported as ``FAIL`` rather than raised. Cancelling the calling task
    releases every channel the run opened.
    """

    log = attach_run_context(logger or _default_logger, run_id=run_id)
    builder = DiagnosticRunBuilder()

    try:
        handshake = await probe_handshake(client, timeout=timeouts.handshake, logger=log)
    except Exception as exc:
        log.exception("Handshake probe raised")
        builder.fail_handshake(
            ErrorCode.HANDSHAKE_REJECTED,
            f"{MSG_HANDSHAKE_FAILED}: {error_message(exc)}",
        )
        return _finish(builder, log)

    if not handshake.confirmed:
        detail = MSG_HANDSHAKE_FAILED
        if handshake.reason:
            detail = f"{detail}: {handshake.reason}"
        builder.fail_handshake(handshake_error_code(handshake), detail)
        return _finish(builder, log)

    builder.pass_handshake()

    for strategy in strategies or build_strategies(watched):
        attempt = await _attempt(strategy, client, timeouts, log)
        builder.record(attempt)
        if attempt.ok:
            break
        log_event(
            log,
            "diagnostics.strategy_failed",
            level=logging.INFO,
            strategy=attempt.path.value,
            detail=attempt.detail,
        )

    return _finish(builder, log)


def _finish(builder: DiagnosticRunBuilder, log: BoundLogger) -> DiagnosticRun:
    run = builder.build()
    log_event(
        log,
        "diagnostics.completed",
        level=logging.INFO if run.ok else logging.WARNING,
        ok=run.ok,
        handshake=run.handshake.value,
        subscribe=run.subscribe.value,
        roundtrip=run.roundtrip.value,
        path=run.path.value if run.path else None,
        error=run.error,
        duration_ms=round(run.duration * 1000, 1),
    )
    return run


__all__ = ["run_diagnostics", "build_strategies", "MSG_HANDSHAKE_FAILED"]
