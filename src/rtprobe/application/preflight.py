"""Optional database checks run before the diagnostics engine.

The checks explain *why* a change-notification path may fail (missing
table, rejected inserts, table absent from the realtime publication). They
never gate the engine: every failure is recorded on the report and the run
goes ahead.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import Any, Final, Optional, TypeVar

from rtprobe.domain.models import PreflightReport, ProbeToken, WatchedResource
from rtprobe.domain.transport import PreflightClient
from rtprobe.infrastructure.errors import error_message
from rtprobe.infrastructure.logging import BoundLogger, get_logger, log_event

DEFAULT_PREFLIGHT_TIMEOUT: Final = 5.0
PREFLIGHT_TOKEN_PREFIX: Final = "rls"

_default_logger = get_logger("rtprobe.preflight")

T = TypeVar("T")


async def _bounded(awaitable: Awaitable[T], timeout: float) -> T:
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as exc:
        raise TimeoutError(f"no answer within {timeout:g}s") from exc


async def run_preflight(
    client: PreflightClient,
    watched: Optional[WatchedResource] = None,
    *,
    timeout: float = DEFAULT_PREFLIGHT_TIMEOUT,
    logger: Optional[BoundLogger] = None,
) -> PreflightReport:
    log = logger or _default_logger
    resource = watched or WatchedResource()
    errors: dict[str, str] = {}
    results: dict[str, Any] = {}

    try:
        results["table_exists"] = await _bounded(
            client.table_exists(resource.table, schema=resource.schema), timeout
        )
    except Exception as exc:
        errors["table_exists"] = error_message(exc)

    # Inserting into a missing table only repeats the first failure.
    if results.get("table_exists") is not False:
        token = ProbeToken.generate(PREFLIGHT_TOKEN_PREFIX)
        try:
            await _bounded(
                client.insert(
                    resource.table,
                    {resource.token_column: token.value},
                    schema=resource.schema,
                ),
                timeout,
            )
        except Exception as exc:
            results["insert_allowed"] = False
            errors["insert_allowed"] = error_message(exc)
        else:
            results["insert_allowed"] = True
            try:
                await _bounded(
                    client.delete_rows(
                        resource.table,
                        column=resource.token_column,
                        value=token.value,
                        schema=resource.schema,
                    ),
                    timeout,
                )
            except Exception as exc:
                log_event(
                    log,
                    "preflight.cleanup_failed",
                    level=logging.WARNING,
                    table=resource.table,
                    error=error_message(exc),
                )

    try:
        status = await _bounded(client.check_realtime_publication(), timeout)
    except Exception as exc:
        errors["publication"] = error_message(exc)
    else:
        results["replica_identity"] = True
        results["publication"] = bool(status.complete)
        results["publication_status"] = status.status
        results["missing_tables"] = tuple(status.missing_tables)

    report = PreflightReport(table=resource.table, errors=errors, **results)
    log_event(
        log,
        "preflight.completed" if not report.warnings else "preflight.warnings",
        level=logging.INFO if not report.warnings else logging.WARNING,
        table=resource.table,
        table_exists=report.table_exists,
        insert_allowed=report.insert_allowed,
        publication=report.publication,
        warnings=report.warnings,
    )
    return report


__all__ = ["DEFAULT_PREFLIGHT_TIMEOUT", "PreflightReport", "run_preflight"]
